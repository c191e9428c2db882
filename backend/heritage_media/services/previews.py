from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import anyio
from PIL import Image, UnidentifiedImageError

from heritage_media.core import metrics
from heritage_media.core.config import Settings, settings as default_settings
from heritage_media.models.media import BLOB_URI_PREFIX, LocalFile, MediaKind, media_kind


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PreviewBlob:
    data: bytes
    content_type: str


class PreviewStore:
    """Owns local preview bytes behind ``blob:`` handles until they are released."""

    def __init__(self) -> None:
        self._blobs: dict[str, PreviewBlob] = {}

    def register(self, data: bytes, content_type: str) -> str:
        handle = f"{BLOB_URI_PREFIX}{uuid.uuid4().hex}"
        self._blobs[handle] = PreviewBlob(data=data, content_type=content_type)
        return handle

    def get(self, handle: str) -> PreviewBlob | None:
        return self._blobs.get(handle)

    def release(self, handle: str) -> bool:
        blob = self._blobs.pop(handle, None)
        if blob is None:
            logger.warning("preview_release_unknown_handle", extra={"handle": handle})
            return False
        metrics.record_preview_released()
        return True

    def __contains__(self, handle: object) -> bool:
        return handle in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


def _encode_thumbnail(img: Image.Image, size: tuple[int, int]) -> tuple[bytes, str]:
    thumb = img.copy()
    thumb.thumbnail(size)
    buffer = BytesIO()
    if thumb.mode in ("RGBA", "LA", "P"):
        thumb.save(buffer, format="PNG", optimize=True)
        return buffer.getvalue(), "image/png"
    thumb.convert("RGB").save(buffer, format="JPEG", quality=85)
    return buffer.getvalue(), "image/jpeg"


def image_preview(content: bytes, *, size: tuple[int, int]) -> tuple[bytes, str] | None:
    try:
        with Image.open(BytesIO(content)) as img:
            img.load()
            return _encode_thumbnail(img, size)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("image_preview_failed", extra={"error": str(exc)})
        return None


def _frame_command(cfg: Settings, source: Path, target: Path) -> list[str]:
    width, height = cfg.video_frame_size
    return [
        cfg.ffmpeg_binary,
        "-hide_banner",
        "-loglevel",
        "error",
        "-nostdin",
        "-y",
        "-ss",
        f"{max(cfg.video_frame_offset_seconds, 0):.3f}",
        "-i",
        str(source),
        "-an",
        "-frames:v",
        "1",
        "-vf",
        f"scale={width}:{height}",
        "-f",
        "image2",
        "-vcodec",
        "mjpeg",
        str(target),
    ]


def _capture_video_frame(file: LocalFile, cfg: Settings) -> bytes | None:
    cleanup: list[Path] = []
    try:
        source = file.path
        if source is None:
            fd, tmp_name = tempfile.mkstemp(suffix=Path(file.name).suffix or ".bin")
            with os.fdopen(fd, "wb") as handle:
                handle.write(file.read_bytes())
            source = Path(tmp_name)
            cleanup.append(source)
        fd, frame_name = tempfile.mkstemp(suffix=".jpg")
        os.close(fd)
        target = Path(frame_name)
        cleanup.append(target)
        try:
            process = subprocess.run(
                _frame_command(cfg, source, target),
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=cfg.video_frame_timeout_seconds,
            )
        except FileNotFoundError:
            logger.warning("video_frame_ffmpeg_missing", extra={"binary": cfg.ffmpeg_binary})
            return None
        except subprocess.TimeoutExpired:
            logger.warning(
                "video_frame_capture_timed_out",
                extra={"file_name": file.name, "timeout": cfg.video_frame_timeout_seconds},
            )
            return None
        if process.returncode != 0:
            logger.warning(
                "video_frame_capture_failed",
                extra={"file_name": file.name, "stderr": process.stderr.decode("utf-8", errors="ignore")},
            )
            return None
        data = target.read_bytes()
        return data or None
    finally:
        for path in cleanup:
            path.unlink(missing_ok=True)


async def generate_preview(
    file: LocalFile,
    store: PreviewStore,
    *,
    settings: Settings | None = None,
) -> str | None:
    """Register a local preview for *file* and return its handle.

    Images are decoded and thumbnailed, videos contribute one captured frame,
    anything else has no preview. A file whose preview cannot be built for
    any reason simply has none.
    """
    cfg = settings or default_settings
    kind = media_kind(file.mime_type)
    try:
        if kind == MediaKind.image:
            encoded = image_preview(file.read_bytes(), size=cfg.preview_max_size)
            if encoded is None:
                return None
            data, content_type = encoded
        elif kind == MediaKind.video:
            frame = await anyio.to_thread.run_sync(_capture_video_frame, file, cfg)
            if frame is None:
                return None
            data, content_type = frame, "image/jpeg"
        else:
            return None
    except Exception:
        logger.exception("media_preview_failed", extra={"file_name": file.name, "kind": kind.value})
        return None
    return store.register(data, content_type)

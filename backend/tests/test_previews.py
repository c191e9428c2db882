from __future__ import annotations

import subprocess
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from heritage_media.core import metrics
from heritage_media.models.media import LocalFile
from heritage_media.services import previews


@pytest.mark.anyio
async def test_image_preview_is_registered_as_thumbnail(test_settings, make_image_bytes) -> None:
    store = previews.PreviewStore()
    data = make_image_bytes("PNG", size=(1200, 600))
    file = LocalFile(name="wall.png", mime_type="image/png", size_bytes=len(data), data=data)

    handle = await previews.generate_preview(file, store, settings=test_settings)

    assert handle is not None and handle.startswith("blob:")
    blob = store.get(handle)
    assert blob is not None
    with Image.open(BytesIO(blob.data)) as thumb:
        assert max(thumb.size) <= 320
        assert thumb.size == (320, 160)


def test_transparent_images_keep_png(make_image_bytes) -> None:
    buffer = BytesIO()
    Image.new("RGBA", (50, 50), color=(0, 0, 0, 0)).save(buffer, format="PNG")

    encoded = previews.image_preview(buffer.getvalue(), size=(32, 32))

    assert encoded is not None
    assert encoded[1] == "image/png"
    assert previews.image_preview(make_image_bytes("JPEG"), size=(32, 32))[1] == "image/jpeg"  # type: ignore[index]


@pytest.mark.anyio
async def test_corrupt_image_has_no_preview(test_settings, caplog: pytest.LogCaptureFixture) -> None:
    store = previews.PreviewStore()
    file = LocalFile(name="broken.jpg", mime_type="image/jpeg", size_bytes=4, data=b"nope")

    with caplog.at_level("WARNING"):
        handle = await previews.generate_preview(file, store, settings=test_settings)

    assert handle is None
    assert len(store) == 0
    assert "image_preview_failed" in caplog.text


@pytest.mark.anyio
async def test_video_without_ffmpeg_has_no_preview(test_settings, caplog: pytest.LogCaptureFixture) -> None:
    store = previews.PreviewStore()
    file = LocalFile(name="clip.mp4", mime_type="video/mp4", size_bytes=8, data=b"\x00" * 8)

    with caplog.at_level("WARNING"):
        handle = await previews.generate_preview(file, store, settings=test_settings)

    assert handle is None
    assert "video_frame_ffmpeg_missing" in caplog.text


@pytest.mark.anyio
async def test_video_frame_is_captured_at_configured_offset(monkeypatch: pytest.MonkeyPatch, test_settings) -> None:
    commands: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        Path(cmd[-1]).write_bytes(b"\xff\xd8frame")
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(previews.subprocess, "run", fake_run)
    store = previews.PreviewStore()
    file = LocalFile(name="clip.mp4", mime_type="video/mp4", size_bytes=8, data=b"\x00" * 8)

    handle = await previews.generate_preview(file, store, settings=test_settings)

    assert handle is not None
    assert store.get(handle).data == b"\xff\xd8frame"  # type: ignore[union-attr]
    cmd = commands[0]
    assert cmd[0] == test_settings.ffmpeg_binary
    assert cmd[cmd.index("-ss") + 1] == "1.000"
    assert cmd[cmd.index("-vf") + 1] == "scale=320:180"
    assert not Path(cmd[cmd.index("-i") + 1]).exists()


@pytest.mark.anyio
async def test_failed_frame_capture_is_logged(monkeypatch: pytest.MonkeyPatch, test_settings, caplog) -> None:
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, b"", b"moov atom not found")

    monkeypatch.setattr(previews.subprocess, "run", fake_run)
    file = LocalFile(name="clip.mov", mime_type="video/quicktime", size_bytes=8, data=b"\x00" * 8)

    with caplog.at_level("WARNING"):
        handle = await previews.generate_preview(file, previews.PreviewStore(), settings=test_settings)

    assert handle is None
    assert "video_frame_capture_failed" in caplog.text


@pytest.mark.anyio
async def test_documents_have_no_preview(test_settings) -> None:
    store = previews.PreviewStore()
    file = LocalFile(name="notes.pdf", mime_type="application/pdf", size_bytes=3, data=b"pdf")

    assert await previews.generate_preview(file, store, settings=test_settings) is None
    assert len(store) == 0


def test_release_is_idempotent(caplog: pytest.LogCaptureFixture) -> None:
    store = previews.PreviewStore()
    handle = store.register(b"x", "image/png")

    with caplog.at_level("WARNING"):
        assert store.release(handle) is True
        assert store.release(handle) is False

    assert handle not in store
    assert metrics.snapshot()["previews_released"] == 1
    assert "preview_release_unknown_handle" in caplog.text


@pytest.mark.anyio
async def test_hung_ffmpeg_is_stopped_by_timeout(monkeypatch: pytest.MonkeyPatch, test_settings, caplog) -> None:
    test_settings.video_frame_timeout_seconds = 2.5
    timeouts: list[float] = []

    def fake_run(cmd, **kwargs):
        timeouts.append(kwargs["timeout"])
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(previews.subprocess, "run", fake_run)
    file = LocalFile(name="clip.mp4", mime_type="video/mp4", size_bytes=8, data=b"\x00" * 8)

    with caplog.at_level("WARNING"):
        handle = await previews.generate_preview(file, previews.PreviewStore(), settings=test_settings)

    assert handle is None
    assert timeouts == [2.5]
    assert "video_frame_capture_timed_out" in caplog.text


@pytest.mark.anyio
async def test_unexpected_preview_errors_mean_no_preview(
    monkeypatch: pytest.MonkeyPatch, test_settings, make_image_bytes, caplog, tmp_path: Path
) -> None:
    def fake_run(cmd, **kwargs):
        raise PermissionError(13, "Permission denied", cmd[0])

    monkeypatch.setattr(previews.subprocess, "run", fake_run)
    monkeypatch.setattr(previews.Image, "MAX_IMAGE_PIXELS", 5000)
    store = previews.PreviewStore()
    bomb = make_image_bytes("PNG", size=(200, 200))
    files = [
        LocalFile(name="clip.mp4", mime_type="video/mp4", size_bytes=8, data=b"\x00" * 8),
        LocalFile(name="bomb.png", mime_type="image/png", size_bytes=len(bomb), data=bomb),
        LocalFile(name="gone.png", mime_type="image/png", size_bytes=10, path=tmp_path / "gone.png"),
    ]

    with caplog.at_level("WARNING"):
        handles = [await previews.generate_preview(file, store, settings=test_settings) for file in files]

    assert handles == [None, None, None]
    assert len(store) == 0
    assert [record.getMessage() for record in caplog.records] == ["media_preview_failed"] * 3

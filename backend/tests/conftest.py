import asyncio
import os
from collections import Counter
from collections.abc import Generator
from io import BytesIO
from typing import Any

import pytest
from PIL import Image

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["HERITAGE_MEDIA_SENTRY_DSN"] = ""

from heritage_media.core import metrics
from heritage_media.core.config import Settings
from heritage_media.core.errors import GatewayError
from heritage_media.models.media import LocalFile
from heritage_media.schemas.media import FolderRead, MediaPatchRequest, MediaUploadForm
from heritage_media.services.previews import PreviewStore


MB = 1024 * 1024


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    # Counters are process-global and would otherwise leak across tests.
    metrics.reset()
    yield
    metrics.reset()


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (64, 48)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color=(200, 120, 40)).save(buffer, format=fmt)
    return buffer.getvalue()


def image_file(name: str = "photo.png", *, size_bytes: int | None = None) -> LocalFile:
    data = image_bytes("JPEG" if name.endswith((".jpg", ".jpeg")) else "PNG")
    mime = "image/jpeg" if name.endswith((".jpg", ".jpeg")) else "image/png"
    return LocalFile(name=name, mime_type=mime, size_bytes=size_bytes or len(data), data=data)


def plain_file(name: str, mime_type: str, size_bytes: int) -> LocalFile:
    return LocalFile(name=name, mime_type=mime_type, size_bytes=size_bytes, data=b"x" * 16)


class CountingPreviewStore(PreviewStore):
    """Preview store that remembers how often each handle was released."""

    def __init__(self) -> None:
        super().__init__()
        self.registered: list[str] = []
        self.releases: Counter[str] = Counter()

    def register(self, data: bytes, content_type: str) -> str:
        handle = super().register(data, content_type)
        self.registered.append(handle)
        return handle

    def release(self, handle: str) -> bool:
        self.releases[handle] += 1
        return super().release(handle)


class FakeGateway:
    """In-memory gateway double with scripted per-item failures and delays."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.records: list[dict[str, Any]] = []
        self.folders: list[FolderRead] = []
        self.failing: set[tuple[str, str]] = set()
        self.delays: dict[str, float] = {}
        self.patches: list[tuple[str, dict[str, Any]]] = []
        self.upload_forms: list[MediaUploadForm] = []
        self.on_upload = None
        self._next_id = 100

    def fail(self, operation: str, key: str) -> None:
        self.failing.add((operation, key))

    def _check(self, operation: str, key: str) -> None:
        if (operation, key) in self.failing or (operation, "*") in self.failing:
            raise GatewayError.from_status(500, operation=operation)

    async def list_site_media(self, site_id: str) -> list[dict[str, Any]]:
        self.calls.append(("list_media", site_id))
        self._check("list_media", site_id)
        return list(self.records)

    async def upload(self, site_id: str, file: LocalFile, form: MediaUploadForm) -> dict[str, Any]:
        self.calls.append(("upload", file.name))
        self.upload_forms.append(form)
        if self.on_upload is not None:
            self.on_upload(file)
        await asyncio.sleep(self.delays.get(file.name, 0))
        self._check("upload", file.name)
        self._next_id += 1
        return {
            "id": self._next_id,
            "fileName": file.name,
            "fileSize": file.size_bytes,
            "fileType": file.mime_type,
            "category": form.category,
            "description": form.description,
            "folderId": form.folder_id,
        }

    async def delete(self, site_id: str, asset_id: str) -> None:
        self.calls.append(("delete", asset_id))
        await asyncio.sleep(self.delays.get(asset_id, 0))
        self._check("delete", asset_id)

    async def patch(self, asset_id: str, changes: MediaPatchRequest) -> dict[str, Any]:
        self.calls.append(("patch", asset_id))
        self.patches.append((asset_id, changes.to_wire()))
        await asyncio.sleep(self.delays.get(asset_id, 0))
        self._check("patch", asset_id)
        return {"id": asset_id, **changes.to_wire()}

    async def move(self, asset_id: str, folder_id: str) -> None:
        self.calls.append(("move", asset_id))
        await asyncio.sleep(self.delays.get(asset_id, 0))
        self._check("move", asset_id)

    async def list_folders(self, site_id: str) -> list[FolderRead]:
        self.calls.append(("list_folders", site_id))
        return list(self.folders)

    async def download(self, asset_id: str) -> bytes:
        self.calls.append(("download", asset_id))
        await asyncio.sleep(self.delays.get(asset_id, 0))
        self._check("download", asset_id)
        return f"content-{asset_id}".encode()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def preview_store() -> CountingPreviewStore:
    return CountingPreviewStore()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        upload_max_bytes=10 * MB,
        upload_max_bytes_by_kind={"video": 50 * MB},
        upload_max_files=50,
        upload_timeout_seconds=5.0,
        ffmpeg_binary="heritage-media-test-missing-ffmpeg",
        gateway_base_url="http://testserver",
    )


@pytest.fixture
def make_image():
    return image_file


@pytest.fixture
def make_file():
    return plain_file


@pytest.fixture
def make_image_bytes():
    return image_bytes

from __future__ import annotations

import enum
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


LOCAL_ID_PREFIX = "local-"
BLOB_URI_PREFIX = "blob:"
DEFAULT_NAME = "Unknown File"
DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_UPLOADER = "Unknown"


class MediaCategory(str, enum.Enum):
    hero = "hero"
    primary = "primary"
    photos = "photos"
    videos = "videos"
    documents = "documents"
    archive = "archive"


class MediaKind(str, enum.Enum):
    image = "image"
    video = "video"
    pdf = "pdf"
    document = "document"
    other = "other"


class AssetLifecycle(str, enum.Enum):
    uploading = "uploading"
    completed = "completed"
    error = "error"


_DOCUMENT_MIME_MARKERS = ("msword", "officedocument", "opendocument", "rtf")


def media_kind(mime_type: str | None) -> MediaKind:
    ctype = str(mime_type or "").lower().strip()
    if ctype.startswith("image/"):
        return MediaKind.image
    if ctype.startswith("video/"):
        return MediaKind.video
    if "pdf" in ctype:
        return MediaKind.pdf
    if ctype.startswith("text/") or any(marker in ctype for marker in _DOCUMENT_MIME_MARKERS):
        return MediaKind.document
    return MediaKind.other


def category_for_mime(mime_type: str | None) -> MediaCategory:
    kind = media_kind(mime_type)
    if kind == MediaKind.image:
        return MediaCategory.photos
    if kind == MediaKind.video:
        return MediaCategory.videos
    if kind in (MediaKind.pdf, MediaKind.document):
        return MediaCategory.documents
    return MediaCategory.archive


def is_local_id(asset_id: str) -> bool:
    return asset_id.startswith(LOCAL_ID_PREFIX)


def is_blob_uri(uri: str | None) -> bool:
    return bool(uri) and str(uri).startswith(BLOB_URI_PREFIX)


@dataclass(frozen=True, slots=True)
class Asset:
    """One tracked media item of a site.

    Instances are immutable; the cache is the only place where a new value
    replaces an old one.
    """

    id: str
    name: str = DEFAULT_NAME
    size_bytes: int = 0
    mime_type: str = DEFAULT_MIME_TYPE
    category: MediaCategory = MediaCategory.archive
    folder_id: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    description: str = ""
    preview_source: str = ""
    lifecycle_state: AssetLifecycle = AssetLifecycle.completed
    error_detail: str | None = None
    uploaded_at: datetime | None = None
    uploaded_by: str = DEFAULT_UPLOADER

    def __post_init__(self) -> None:
        if self.lifecycle_state == AssetLifecycle.error:
            if not self.error_detail:
                raise ValueError("error state requires an error detail")
        elif self.error_detail is not None:
            raise ValueError("error detail is only allowed in the error state")

    @property
    def is_persisted(self) -> bool:
        return not is_local_id(self.id)

    @property
    def has_local_preview(self) -> bool:
        return is_blob_uri(self.preview_source)

    @property
    def kind(self) -> MediaKind:
        return media_kind(self.mime_type)


@dataclass(frozen=True, slots=True)
class LocalFile:
    """A file picked by the user, not yet known to the server."""

    name: str
    mime_type: str
    size_bytes: int
    data: bytes | None = None
    path: Path | None = None

    @classmethod
    def from_path(cls, path: str | Path, *, mime_type: str | None = None) -> "LocalFile":
        source = Path(path)
        guessed, _ = mimetypes.guess_type(source.name)
        return cls(
            name=source.name,
            mime_type=mime_type or guessed or DEFAULT_MIME_TYPE,
            size_bytes=source.stat().st_size,
            path=source,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, *, mime_type: str | None = None) -> "LocalFile":
        guessed, _ = mimetypes.guess_type(name)
        return cls(name=name, mime_type=mime_type or guessed or DEFAULT_MIME_TYPE, size_bytes=len(data), data=data)

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is not None:
            return self.path.read_bytes()
        return b""

"""Convert gateway records, local selection records and assets into ``Asset``."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from heritage_media.models.media import (
    DEFAULT_MIME_TYPE,
    DEFAULT_NAME,
    DEFAULT_UPLOADER,
    Asset,
    AssetLifecycle,
    MediaCategory,
    category_for_mime,
    is_local_id,
)


logger = logging.getLogger(__name__)

DOWNLOAD_PATH_TEMPLATE = "/api/media/download/{asset_id}"
DEFAULT_ERROR_DETAIL = "Upload failed"

_CATEGORIES = {item.value for item in MediaCategory}
_STATES = {item.value for item in AssetLifecycle}


def download_uri(asset_id: str) -> str:
    return DOWNLOAD_PATH_TEMPLATE.format(asset_id=asset_id)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    return None


def _coerce_text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _coerce_size(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        size = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return size if size > 0 else 0


def _coerce_category(value: Any, mime_type: str) -> MediaCategory:
    raw = str(getattr(value, "value", value) or "").strip().lower()
    if raw in _CATEGORIES:
        return MediaCategory(raw)
    return category_for_mime(mime_type)


def _coerce_state(value: Any) -> AssetLifecycle:
    raw = str(getattr(value, "value", value) or "").strip().lower()
    if raw in _STATES:
        return AssetLifecycle(raw)
    return AssetLifecycle.completed


def _coerce_tags(value: Any) -> frozenset[str]:
    if value is None or isinstance(value, (str, bytes)):
        return frozenset()
    if not isinstance(value, Iterable):
        return frozenset()
    tags: set[str] = set()
    for item in value:
        if item is None:
            continue
        cleaned = " ".join(str(item).split())
        if cleaned:
            tags.add(cleaned)
    return frozenset(tags)


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            # Gateway timestamps are epoch milliseconds.
            return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _coerce_folder_id(raw: Mapping[str, Any]) -> str | None:
    value = _first(raw, "folder_id", "folderId")
    if value is None:
        folder = raw.get("folder")
        if isinstance(folder, Mapping):
            value = folder.get("id")
    return _coerce_id(value)


def _preview_for(raw: Mapping[str, Any], asset_id: str) -> str:
    explicit = _first(raw, "preview_source", "previewSource", "preview")
    if explicit is not None:
        return str(explicit)
    if is_local_id(asset_id):
        return str(_first(raw, "url", "thumbnail") or "")
    return download_uri(asset_id)


def _as_mapping(raw: Any) -> Mapping[str, Any] | None:
    if isinstance(raw, Asset):
        return asdict(raw)
    if isinstance(raw, Mapping):
        return raw
    return None


def normalize(raw: Any) -> Asset | None:
    """Return the canonical ``Asset`` for *raw*, or ``None`` without a usable id.

    Never raises. Every field other than the id falls back to its documented
    default, and feeding the result back in yields an equal asset.
    """
    record = _as_mapping(raw)
    if record is None:
        return None
    asset_id = _coerce_id(_first(record, "id", "backendId"))
    if asset_id is None:
        return None

    name = _coerce_text(_first(record, "name", "fileName", "originalFileName"), DEFAULT_NAME)
    mime_type = _coerce_text(_first(record, "mime_type", "fileType", "type", "mimeType"), DEFAULT_MIME_TYPE)
    if "/" not in mime_type:
        # Some records carry a kind ("image") instead of a MIME type in fileType.
        mime_type = _coerce_text(_first(record, "type", "mimeType"), DEFAULT_MIME_TYPE)
        if "/" not in mime_type:
            mime_type = DEFAULT_MIME_TYPE
    size_bytes = _coerce_size(_first(record, "size_bytes", "size", "fileSize", "fileLength"))
    state = _coerce_state(_first(record, "lifecycle_state", "status"))
    error_detail: str | None = None
    if state == AssetLifecycle.error:
        error_detail = _coerce_text(_first(record, "error_detail", "error", "errorDetail"), DEFAULT_ERROR_DETAIL)

    return Asset(
        id=asset_id,
        name=name,
        size_bytes=size_bytes,
        mime_type=mime_type,
        category=_coerce_category(record.get("category"), mime_type),
        folder_id=_coerce_folder_id(record),
        tags=_coerce_tags(record.get("tags")),
        description=str(record.get("description") or ""),
        preview_source=_preview_for(record, asset_id),
        lifecycle_state=state,
        error_detail=error_detail,
        uploaded_at=_coerce_datetime(_first(record, "uploaded_at", "uploadedAt", "createdDate")),
        uploaded_by=_coerce_text(_first(record, "uploaded_by", "uploadedBy", "uploaderUsername"), DEFAULT_UPLOADER),
    )


def normalize_many(records: Iterable[Any] | None) -> list[Asset]:
    if not records:
        return []
    assets: list[Asset] = []
    for index, raw in enumerate(records):
        asset = normalize(raw)
        if asset is None:
            logger.warning("media_record_dropped", extra={"index": index, "raw_type": type(raw).__name__})
            continue
        assets.append(asset)
    return assets

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Literal

from heritage_media.models.media import Asset


SortKey = Literal["name", "size", "type", "date"]
SortOrder = Literal["asc", "desc"]

ALL_CATEGORIES = "all"
ALL_FOLDERS = object()
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_value(asset: Asset, sort_by: str) -> Any:
    if sort_by == "name":
        return asset.name.lower()
    if sort_by == "size":
        return asset.size_bytes
    if sort_by == "type":
        return asset.mime_type
    return asset.uploaded_at or _EPOCH


def _matches(asset: Asset, query: str, category: str, folder_id: object) -> bool:
    if query and query not in asset.name.lower() and query not in asset.description.lower():
        return False
    if category != ALL_CATEGORIES and asset.category.value != category:
        return False
    if folder_id is not ALL_FOLDERS and asset.folder_id != folder_id:
        return False
    return True


def project_assets(
    assets: Iterable[Asset],
    *,
    query: str = "",
    category: str = ALL_CATEGORIES,
    sort_by: SortKey | str = "date",
    order: SortOrder | str = "desc",
    folder_id: object = ALL_FOLDERS,
) -> list[Asset]:
    """Filtered, sorted list for display. Recomputed from the snapshot on every call."""
    needle = (query or "").strip().lower()
    wanted = (category or ALL_CATEGORIES).strip().lower()
    visible = [asset for asset in assets if _matches(asset, needle, wanted, folder_id)]
    key = sort_by if sort_by in ("name", "size", "type", "date") else "date"
    return sorted(visible, key=lambda asset: _sort_value(asset, key), reverse=order != "asc")


def format_file_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    exponent = 0
    scaled = float(size_bytes)
    while scaled >= 1024 and exponent < len(units) - 1:
        scaled /= 1024
        exponent += 1
    text = f"{scaled:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[exponent]}"

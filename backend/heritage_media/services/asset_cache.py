from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from heritage_media.models.media import Asset


logger = logging.getLogger(__name__)

PreviewReleaser = Callable[[str], object]
ChangeListener = Callable[[tuple[Asset, ...]], None]


class AssetCache:
    """The single mutable collection of assets for one site.

    Entries keep insertion order. Every mutation is one synchronous step, and
    the cache alone releases local preview handles: a handle is released when
    its entry leaves the cache or when the entry's preview moves away from it.
    """

    def __init__(self, *, release_preview: PreviewReleaser | None = None, on_change: ChangeListener | None = None) -> None:
        self._entries: dict[str, Asset] = {}
        self._release_preview = release_preview
        self._on_change = on_change

    def upsert(self, asset: Asset, *, replaces: str | None = None) -> None:
        """Insert or replace *asset* by id.

        With ``replaces``, the asset takes the slot of that (provisional) id and
        the old key disappears, so a server id can supersede a local one in place.
        """
        released: list[Asset] = []
        if replaces is not None and replaces != asset.id and replaces in self._entries:
            rebuilt: dict[str, Asset] = {}
            for key, current in self._entries.items():
                if key == asset.id:
                    # A stale duplicate of the incoming id loses its own slot.
                    released.append(current)
                    continue
                if key == replaces:
                    released.append(current)
                    rebuilt[asset.id] = asset
                    continue
                rebuilt[key] = current
            self._entries = rebuilt
        else:
            previous = self._entries.get(asset.id)
            if previous is not None:
                released.append(previous)
            self._entries[asset.id] = asset
        for old in released:
            self._release_if_dropped(old, keep=asset)
        self._notify()

    def remove(self, asset_id: str) -> Asset | None:
        removed = self._entries.pop(asset_id, None)
        if removed is None:
            return None
        self._release_if_dropped(removed, keep=None)
        self._notify()
        return removed

    def replace_all(self, assets: Iterable[Asset]) -> None:
        fresh: dict[str, Asset] = {}
        for asset in assets:
            # Last occurrence wins, first slot is kept.
            fresh[asset.id] = asset
        kept_previews = {asset.preview_source for asset in fresh.values() if asset.has_local_preview}
        dropped = list(self._entries.values())
        self._entries = fresh
        for old in dropped:
            if old.has_local_preview and old.preview_source not in kept_previews:
                self._release(old)
        self._notify()

    def clear(self) -> None:
        """Drop every entry and release every preview still held (unmount)."""
        self.replace_all(())

    def snapshot(self) -> tuple[Asset, ...]:
        return tuple(self._entries.values())

    def get(self, asset_id: str) -> Asset | None:
        return self._entries.get(asset_id)

    def ids(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _release_if_dropped(self, old: Asset, *, keep: Asset | None) -> None:
        if not old.has_local_preview:
            return
        if keep is not None and keep.preview_source == old.preview_source:
            return
        if any(entry.preview_source == old.preview_source for entry in self._entries.values()):
            return
        self._release(old)

    def _release(self, asset: Asset) -> None:
        if self._release_preview is None:
            return
        self._release_preview(asset.preview_source)
        logger.debug("media_preview_released", extra={"asset_id": asset.id})

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from heritage_media.core.config import Settings, settings as default_settings
from heritage_media.core.errors import BulkOperationRejected, GatewayError
from heritage_media.models.media import Asset, LocalFile
from heritage_media.schemas.media import FolderRead
from heritage_media.services.asset_cache import AssetCache, ChangeListener
from heritage_media.services.asset_normalizer import normalize_many
from heritage_media.services.bulk_operations import (
    BulkOperationCoordinator,
    BulkOperationKind,
    BulkOutcome,
    BulkResult,
)
from heritage_media.services.media_gateway import AssetGateway
from heritage_media.services.previews import PreviewStore
from heritage_media.services.upload_pipeline import UploadBatch, UploadPipeline
from heritage_media.services.view_projection import ALL_CATEGORIES, ALL_FOLDERS, project_assets


logger = logging.getLogger(__name__)

ToastLevel = Literal["success", "error", "warning"]


@dataclass(frozen=True, slots=True)
class Toast:
    level: ToastLevel
    message: str


_VERBS: dict[BulkOperationKind, tuple[str, str]] = {
    BulkOperationKind.delete: ("deleted", "delete"),
    BulkOperationKind.recategorize: ("recategorized", "recategorize"),
    BulkOperationKind.move: ("moved", "move"),
    BulkOperationKind.add_tag: ("tagged", "tag"),
}


def bulk_toast(result: BulkResult) -> Toast:
    """One message per outcome: all succeeded, all failed, or partial."""
    done, verb = _VERBS[result.kind]
    ok = len(result.succeeded_ids)
    failed = len(result.failed_ids)
    if result.outcome == BulkOutcome.empty:
        return Toast("warning", f"No files selected to {verb}")
    if result.outcome == BulkOutcome.success:
        return Toast("success", f"Successfully {done} {ok} files")
    if result.outcome == BulkOutcome.failure:
        return Toast("error", f"Failed to {verb} any files")
    return Toast("warning", f"{done.capitalize()} {ok} files, {failed} failed")


class GallerySession:
    """State owned by one site's gallery: cache, selection, folders and toast."""

    def __init__(
        self,
        site_id: str | None,
        gateway: AssetGateway,
        *,
        settings: Settings | None = None,
        preview_store: PreviewStore | None = None,
        user: str | None = None,
        on_change: ChangeListener | None = None,
    ) -> None:
        self.site_id = site_id
        self.gateway = gateway
        self.settings = settings or default_settings
        self.previews = preview_store or PreviewStore()
        self.cache = AssetCache(release_preview=self.previews.release, on_change=on_change)
        self.uploads = UploadPipeline(
            site_id=site_id,
            cache=self.cache,
            gateway=gateway,
            preview_store=self.previews,
            settings=self.settings,
            uploaded_by=user,
        )
        self.bulk = BulkOperationCoordinator(site_id=site_id, cache=self.cache, gateway=gateway)
        self.folders: list[FolderRead] = []
        self.toast: Toast | None = None
        self._selection: set[str] = set()
        self._closed = False

    async def __aenter__(self) -> "GallerySession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def hydrate(self) -> list[Asset]:
        if self.site_id is None:
            return []
        records = await self.gateway.list_site_media(self.site_id)
        assets = normalize_many(records)
        self.cache.replace_all(assets)
        logger.info("media_gallery_hydrated", extra={"site_id": self.site_id, "count": len(assets)})
        return assets

    async def load_folders(self) -> list[FolderRead]:
        self.folders = [] if self.site_id is None else await self.gateway.list_folders(self.site_id)
        return self.folders

    async def upload(self, files: Iterable[LocalFile], folder_id: str | None = None) -> UploadBatch:
        batch = await self.uploads.submit(files, folder_id)
        if batch.rejections:
            self.toast = Toast("error", "; ".join(batch.errors))
        elif batch.failed_ids:
            self.toast = Toast("warning", f"Uploaded {len(batch.completed_ids)} files, {len(batch.failed_ids)} failed")
        elif batch.completed_ids:
            self.toast = Toast("success", f"Uploaded {len(batch.completed_ids)} files")
        return batch

    async def retry_upload(self, asset_id: str) -> bool:
        return await self.uploads.retry(asset_id)

    @property
    def selected(self) -> frozenset[str]:
        return frozenset(self._selection)

    def toggle_selection(self, asset_id: str) -> None:
        if asset_id in self._selection:
            self._selection.discard(asset_id)
        elif asset_id in self.cache:
            self._selection.add(asset_id)

    def select_all(self) -> None:
        self._selection = set(self.cache.ids())

    def clear_selection(self) -> None:
        self._selection.clear()

    async def _run_bulk(self, kind: BulkOperationKind, payload: dict[str, str | None] | None = None) -> BulkResult | None:
        try:
            result = await self.bulk.apply_bulk(kind, list(self._selection), payload)
        except BulkOperationRejected as exc:
            self.toast = Toast("error", str(exc))
            return None
        self.clear_selection()
        if kind == BulkOperationKind.delete:
            for asset_id in result.succeeded_ids:
                self.uploads.forget(asset_id)
        self.toast = bulk_toast(result)
        return result

    async def bulk_delete(self) -> BulkResult | None:
        return await self._run_bulk(BulkOperationKind.delete)

    async def bulk_recategorize(self, category: str) -> BulkResult | None:
        return await self._run_bulk(BulkOperationKind.recategorize, {"category": category})

    async def bulk_move(self, folder_id: str | None) -> BulkResult | None:
        return await self._run_bulk(BulkOperationKind.move, {"folder_id": folder_id})

    async def bulk_add_tag(self, tag: str) -> BulkResult | None:
        return await self._run_bulk(BulkOperationKind.add_tag, {"tag": tag})

    async def update_asset(self, asset_id: str, **changes: Any) -> bool:
        """Edit description, category, date taken, photographer or visibility of one asset."""
        try:
            error = await self.bulk.update_asset(asset_id, changes)
        except BulkOperationRejected as exc:
            self.toast = Toast("error", str(exc))
            return False
        if error is not None:
            self.toast = Toast("error", "Failed to update media file")
            return False
        self.toast = Toast("success", "Media file updated successfully")
        return True

    async def remove_tag(self, asset_id: str, tag: str) -> bool:
        asset = self.cache.get(asset_id)
        remaining = sorted(asset.tags - {tag}) if asset is not None else []
        if await self.bulk.update_asset(asset_id, {"tags": remaining}) is not None:
            self.toast = Toast("error", "Failed to remove tag")
            return False
        self.toast = Toast("success", f'Tag "{tag}" removed successfully')
        return True

    async def delete_asset(self, asset_id: str) -> bool:
        try:
            result = await self.bulk.apply_bulk(BulkOperationKind.delete, [asset_id])
        except BulkOperationRejected as exc:
            self.toast = Toast("error", str(exc))
            return False
        if asset_id not in result.succeeded_ids:
            self.toast = Toast("error", "Failed to delete media file")
            return False
        self._selection.discard(asset_id)
        self.uploads.forget(asset_id)
        self.toast = Toast("success", "Media file deleted successfully")
        return True

    async def _fetch(self, asset_id: str) -> bytes | None:
        asset = self.cache.get(asset_id)
        if asset is None or not asset.is_persisted:
            return None
        try:
            return await self.gateway.download(asset_id)
        except GatewayError as exc:
            logger.warning("media_download_failed", extra={"asset_id": asset_id, "error": exc.message})
            return None

    async def download(self, asset_id: str) -> bytes | None:
        asset = self.cache.get(asset_id)
        if asset is None or not asset.is_persisted:
            self.toast = Toast("error", "Invalid file for download")
            return None
        content = await self._fetch(asset_id)
        if content is None:
            self.toast = Toast("error", "Failed to download file")
            return None
        self.toast = Toast("success", f"Downloaded {asset.name}")
        return content

    async def download_selected(self) -> dict[str, bytes]:
        """Fetch every selected asset; the selection is kept."""
        if not self._selection:
            self.toast = Toast("warning", "No files selected for download")
            return {}
        ids = [asset_id for asset_id in self.cache.ids() if asset_id in self._selection]
        contents = await asyncio.gather(*(self._fetch(asset_id) for asset_id in ids))
        fetched = {asset_id: content for asset_id, content in zip(ids, contents) if content is not None}
        failed = len(ids) - len(fetched)
        if not fetched:
            self.toast = Toast("error", "Failed to download files")
        elif failed:
            self.toast = Toast("warning", f"Downloaded {len(fetched)} files, {failed} failed")
        else:
            self.toast = Toast("success", f"Downloaded {len(fetched)} files")
        return fetched

    def view(
        self,
        *,
        query: str = "",
        category: str = ALL_CATEGORIES,
        sort_by: str = "date",
        order: str = "desc",
        folder_id: object = ALL_FOLDERS,
    ) -> list[Asset]:
        return project_assets(
            self.cache.snapshot(),
            query=query,
            category=category,
            sort_by=sort_by,
            order=order,
            folder_id=folder_id,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.clear_selection()
        self.cache.clear()
        logger.info("media_gallery_closed", extra={"site_id": self.site_id})

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from heritage_media.core import metrics
from heritage_media.core.config import Settings, settings as default_settings
from heritage_media.core.errors import GatewayError, UploadRetryError
from heritage_media.core.logging_config import operation_scope
from heritage_media.models.media import (
    DEFAULT_MIME_TYPE,
    DEFAULT_NAME,
    LOCAL_ID_PREFIX,
    Asset,
    AssetLifecycle,
    LocalFile,
    MediaKind,
    category_for_mime,
    media_kind,
)
from heritage_media.schemas.media import MediaUploadForm
from heritage_media.services import previews
from heritage_media.services.asset_cache import AssetCache
from heritage_media.services.asset_normalizer import download_uri, normalize
from heritage_media.services.media_gateway import AssetGateway


logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT_MESSAGE = "Upload timed out"
MISSING_ID_MESSAGE = "Server response did not include an asset id"
UNEXPECTED_ERROR_MESSAGE = "Upload failed unexpectedly"


@dataclass(frozen=True, slots=True)
class ValidationRejection:
    file_name: str
    reason: str
    message: str


@dataclass(slots=True)
class UploadBatch:
    operation_id: str
    accepted_ids: list[str] = field(default_factory=list)
    rejections: list[ValidationRejection] = field(default_factory=list)
    completed_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [item.message for item in self.rejections]


def _megabytes(value: int) -> int:
    return round(value / 1024 / 1024)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UploadPipeline:
    """Validate, preview and concurrently upload local files into the cache."""

    def __init__(
        self,
        *,
        site_id: str | None,
        cache: AssetCache,
        gateway: AssetGateway,
        preview_store: previews.PreviewStore,
        settings: Settings | None = None,
        uploaded_by: str | None = None,
    ) -> None:
        self.site_id = site_id
        self.cache = cache
        self.gateway = gateway
        self.preview_store = preview_store
        self.settings = settings or default_settings
        self.uploaded_by = uploaded_by or self.settings.default_uploader
        self._sources: dict[str, LocalFile] = {}
        self._folder_targets: dict[str, str | None] = {}

    def _max_bytes_for(self, file: LocalFile) -> int:
        kind = media_kind(file.mime_type)
        overrides = self.settings.upload_max_bytes_by_kind or {}
        if kind.value in overrides:
            return int(overrides[kind.value])
        if kind == MediaKind.pdf and MediaKind.document.value in overrides:
            return int(overrides[MediaKind.document.value])
        return int(self.settings.upload_max_bytes)

    def validate(self, files: Iterable[LocalFile]) -> tuple[list[LocalFile], list[ValidationRejection]]:
        accepted: list[LocalFile] = []
        rejections: list[ValidationRejection] = []
        accepted_types = set(self.settings.upload_accepted_types)
        max_files = int(self.settings.upload_max_files)
        existing = len(self.cache)
        for file in files:
            if file.mime_type not in accepted_types:
                rejections.append(ValidationRejection(file.name, "unsupported_type", f"{file.name}: Unsupported file type"))
                continue
            limit = self._max_bytes_for(file)
            if file.size_bytes > limit:
                rejections.append(
                    ValidationRejection(file.name, "too_large", f"{file.name}: File too large (max {_megabytes(limit)}MB)")
                )
                continue
            if existing + len(accepted) + 1 > max_files:
                rejections.append(ValidationRejection(file.name, "quota", f"{file.name}: Maximum {max_files} files allowed"))
                continue
            accepted.append(file)
        for rejection in rejections:
            metrics.record_upload_rejected()
            logger.info("media_upload_rejected", extra={"file_name": rejection.file_name, "reason": rejection.reason})
        return accepted, rejections

    def _provisional_asset(self, file: LocalFile, *, local_id: str, folder_id: str | None) -> Asset:
        return Asset(
            id=local_id,
            name=file.name,
            size_bytes=file.size_bytes,
            mime_type=file.mime_type,
            category=category_for_mime(file.mime_type),
            folder_id=folder_id,
            lifecycle_state=AssetLifecycle.uploading,
            uploaded_at=_now(),
            uploaded_by=self.uploaded_by,
        )

    async def submit(self, files: Iterable[LocalFile], target_folder_id: str | None = None) -> UploadBatch:
        batch = UploadBatch(operation_id=f"upload-{uuid.uuid4().hex[:12]}")
        with operation_scope(batch.operation_id):
            accepted, batch.rejections = self.validate(list(files))
            if not accepted:
                return batch

            stamp = int(time.time() * 1000)
            for index, file in enumerate(accepted):
                local_id = f"{LOCAL_ID_PREFIX}{stamp}-{index}"
                while local_id in self.cache:
                    stamp += 1
                    local_id = f"{LOCAL_ID_PREFIX}{stamp}-{index}"
                self.cache.upsert(self._provisional_asset(file, local_id=local_id, folder_id=target_folder_id))
                self._sources[local_id] = file
                self._folder_targets[local_id] = target_folder_id
                batch.accepted_ids.append(local_id)
            logger.info(
                "media_upload_batch_started",
                extra={"site_id": self.site_id, "accepted": len(batch.accepted_ids), "rejected": len(batch.rejections)},
            )

            outcomes = await asyncio.gather(*(self._process(local_id) for local_id in batch.accepted_ids))
            for final_id, ok in outcomes:
                (batch.completed_ids if ok else batch.failed_ids).append(final_id)
            logger.info(
                "media_upload_batch_finished",
                extra={"site_id": self.site_id, "completed": len(batch.completed_ids), "failed": len(batch.failed_ids)},
            )
        return batch

    async def _process(self, local_id: str) -> tuple[str, bool]:
        await self._attach_preview(local_id)
        if local_id not in self.cache or local_id not in self._sources:
            logger.info("media_upload_orphaned", extra={"asset_id": local_id})
            self.forget(local_id)
            return local_id, False
        return await self._upload_one(local_id)

    async def _attach_preview(self, local_id: str) -> None:
        file = self._sources.get(local_id)
        if file is None:
            return
        handle = await previews.generate_preview(file, self.preview_store, settings=self.settings)
        if handle is None:
            return
        current = self.cache.get(local_id)
        if current is None or current.preview_source:
            # Never reached the cache, so the cache will not release it.
            self.preview_store.release(handle)
            return
        self.cache.upsert(replace(current, preview_source=handle))

    async def retry(self, asset_id: str) -> bool:
        """Re-submit the original file of a failed upload in the same cache slot."""
        current = self.cache.get(asset_id)
        source = self._sources.get(asset_id)
        if current is None or source is None or current.lifecycle_state != AssetLifecycle.error:
            raise UploadRetryError(f"Asset {asset_id} has no failed upload to retry")
        with operation_scope(f"retry-{uuid.uuid4().hex[:12]}"):
            self.cache.upsert(replace(current, lifecycle_state=AssetLifecycle.uploading, error_detail=None))
            _, ok = await self._upload_one(asset_id)
        return ok

    def forget(self, asset_id: str) -> None:
        self._sources.pop(asset_id, None)
        self._folder_targets.pop(asset_id, None)

    async def _upload_one(self, local_id: str) -> tuple[str, bool]:
        file = self._sources[local_id]
        metrics.record_upload_started()
        try:
            if self.site_id is None:
                record: dict[str, Any] | None = None
            else:
                record = await asyncio.wait_for(self._send(local_id, file), timeout=self.settings.upload_timeout_seconds)
        except asyncio.TimeoutError:
            self._fail(local_id, UPLOAD_TIMEOUT_MESSAGE)
            return local_id, False
        except GatewayError as exc:
            self._fail(local_id, exc.message)
            return local_id, False
        except Exception:
            logger.exception("media_upload_crashed", extra={"asset_id": local_id})
            self._fail(local_id, UNEXPECTED_ERROR_MESSAGE)
            return local_id, False
        return await self._complete(local_id, record)

    async def _send(self, local_id: str, file: LocalFile) -> dict[str, Any]:
        provisional = self.cache.get(local_id)
        category = provisional.category.value if provisional is not None else category_for_mime(file.mime_type).value
        form = MediaUploadForm(
            description=provisional.description if provisional is not None else "",
            category=category,
            is_public=self.settings.upload_is_public,
            folder_id=self._folder_targets.get(local_id),
        )
        return await self.gateway.upload(str(self.site_id), file, form)

    async def _complete(self, local_id: str, record: dict[str, Any] | None) -> tuple[str, bool]:
        provisional = self.cache.get(local_id)
        if provisional is None:
            logger.info("media_upload_orphaned", extra={"asset_id": local_id})
            self.forget(local_id)
            return local_id, False
        if record is None:
            # Preview-only mode: nothing to reconcile against.
            self.cache.upsert(replace(provisional, lifecycle_state=AssetLifecycle.completed))
            self.forget(local_id)
            metrics.record_upload_completed()
            return local_id, True

        confirmed = normalize(record)
        if confirmed is None:
            self._fail(local_id, MISSING_ID_MESSAGE)
            return local_id, False
        merged = self._merge(provisional, confirmed, record)
        target_folder = self._folder_targets.get(local_id)
        self.cache.upsert(merged, replaces=local_id)
        self.forget(local_id)
        metrics.record_upload_completed()
        logger.info("media_upload_completed", extra={"asset_id": merged.id, "site_id": self.site_id})
        if target_folder is not None and merged.folder_id != target_folder:
            await self._apply_folder(merged.id, target_folder)
        return merged.id, True

    @staticmethod
    def _merge(provisional: Asset, confirmed: Asset, record: dict[str, Any]) -> Asset:
        """Server fields win; provisional values fill what the server left out."""
        return replace(
            provisional,
            id=confirmed.id,
            name=confirmed.name if confirmed.name != DEFAULT_NAME else provisional.name,
            size_bytes=confirmed.size_bytes or provisional.size_bytes,
            mime_type=confirmed.mime_type if confirmed.mime_type != DEFAULT_MIME_TYPE else provisional.mime_type,
            category=confirmed.category if record.get("category") else provisional.category,
            description=confirmed.description or provisional.description,
            folder_id=confirmed.folder_id,
            tags=confirmed.tags or provisional.tags,
            preview_source=download_uri(confirmed.id),
            lifecycle_state=AssetLifecycle.completed,
            error_detail=None,
            uploaded_at=provisional.uploaded_at or confirmed.uploaded_at,
            uploaded_by=provisional.uploaded_by or confirmed.uploaded_by,
        )

    async def _apply_folder(self, asset_id: str, folder_id: str) -> None:
        try:
            await self.gateway.move(asset_id, folder_id)
        except GatewayError as exc:
            logger.warning("media_upload_folder_move_failed", extra={"asset_id": asset_id, "error": exc.message})
            return
        current = self.cache.get(asset_id)
        if current is not None:
            self.cache.upsert(replace(current, folder_id=folder_id))

    def _fail(self, local_id: str, detail: str) -> None:
        metrics.record_upload_failed()
        logger.warning("media_upload_failed", extra={"asset_id": local_id, "error": detail})
        current = self.cache.get(local_id)
        if current is None:
            self.forget(local_id)
            return
        self.cache.upsert(replace(current, lifecycle_state=AssetLifecycle.error, error_detail=detail or UNEXPECTED_ERROR_MESSAGE))

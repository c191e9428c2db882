from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import ValidationError

from heritage_media.core import metrics
from heritage_media.core.errors import BulkOperationRejected, GatewayError
from heritage_media.core.logging_config import operation_scope
from heritage_media.models.media import Asset, AssetLifecycle, MediaCategory
from heritage_media.schemas.media import BulkPayload, MediaPatchRequest
from heritage_media.services.asset_cache import AssetCache
from heritage_media.services.media_gateway import AssetGateway


logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Asset not found"
UPLOAD_IN_PROGRESS_MESSAGE = "Upload still in progress"
NOT_UPLOADED_MESSAGE = "Asset has not been uploaded"
UNEXPECTED_ERROR_MESSAGE = "Unexpected error"


class BulkOperationKind(str, enum.Enum):
    delete = "delete"
    recategorize = "recategorize"
    move = "move"
    add_tag = "add_tag"


class BulkOutcome(str, enum.Enum):
    success = "success"
    failure = "failure"
    partial = "partial"
    empty = "empty"


@dataclass(frozen=True, slots=True)
class BulkResult:
    kind: BulkOperationKind
    succeeded_ids: frozenset[str] = frozenset()
    failed_ids: frozenset[str] = frozenset()
    errors: Mapping[str, str] = field(default_factory=dict)

    @property
    def outcome(self) -> BulkOutcome:
        if not self.succeeded_ids and not self.failed_ids:
            return BulkOutcome.empty
        if not self.failed_ids:
            return BulkOutcome.success
        if not self.succeeded_ids:
            return BulkOutcome.failure
        return BulkOutcome.partial


@dataclass(slots=True)
class PendingField:
    """Committed and optimistic values of one field while its patch is in flight."""

    asset_id: str
    field: str
    committed: Any
    pending: Any


def _coerce_kind(kind: BulkOperationKind | str) -> BulkOperationKind:
    try:
        return BulkOperationKind(kind)
    except ValueError as exc:
        raise BulkOperationRejected(f"Unsupported bulk operation: {kind!r}") from exc


def _coerce_payload(payload: BulkPayload | Mapping[str, Any] | None) -> BulkPayload:
    if isinstance(payload, BulkPayload):
        return payload
    try:
        return BulkPayload.model_validate(dict(payload or {}))
    except ValidationError as exc:
        raise BulkOperationRejected("Invalid bulk operation payload") from exc


def _coerce_patch(changes: MediaPatchRequest | Mapping[str, Any]) -> MediaPatchRequest:
    if isinstance(changes, MediaPatchRequest):
        body = changes
    else:
        try:
            body = MediaPatchRequest.model_validate(dict(changes))
        except ValidationError as exc:
            raise BulkOperationRejected("Invalid media update") from exc
    if not body.to_wire():
        raise BulkOperationRejected("Nothing to update")
    return body


def _tracked_values(body: MediaPatchRequest) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if body.description is not None:
        values["description"] = body.description
    if body.category is not None:
        values["category"] = MediaCategory(body.category)
    if body.tags is not None:
        values["tags"] = frozenset(body.tags)
    return values


class BulkOperationCoordinator:
    """Apply one operation to a set of asset ids with per-item reconciliation.

    Deletes are applied to the cache only after the gateway confirms them.
    Category and tag changes are written optimistically and reverted per
    asset when that asset's patch fails. Moves are applied on confirmation.
    """

    def __init__(self, *, site_id: str | None, cache: AssetCache, gateway: AssetGateway) -> None:
        self.site_id = site_id
        self.cache = cache
        self.gateway = gateway

    def _check_request(self, kind: BulkOperationKind, payload: BulkPayload) -> None:
        if kind == BulkOperationKind.delete and self.site_id is None:
            raise BulkOperationRejected("Site ID is required for deletion")
        if kind == BulkOperationKind.move and not payload.folder_id:
            raise BulkOperationRejected("Please select a folder")
        if kind == BulkOperationKind.recategorize:
            raw = str(payload.category or "").strip().lower()
            if raw not in {item.value for item in MediaCategory}:
                raise BulkOperationRejected(f"Unknown category: {payload.category!r}")
        if kind == BulkOperationKind.add_tag and not payload.tag:
            raise BulkOperationRejected("Tag cannot be empty")

    @staticmethod
    def _precheck(asset: Asset | None, *, require_persisted: bool) -> str | None:
        if asset is None:
            return NOT_FOUND_MESSAGE
        if asset.lifecycle_state == AssetLifecycle.uploading:
            return UPLOAD_IN_PROGRESS_MESSAGE
        if require_persisted and not asset.is_persisted:
            return NOT_UPLOADED_MESSAGE
        return None

    async def apply_bulk(
        self,
        kind: BulkOperationKind | str,
        ids: Iterable[str],
        payload: BulkPayload | Mapping[str, Any] | None = None,
    ) -> BulkResult:
        op = _coerce_kind(kind)
        body = _coerce_payload(payload)
        self._check_request(op, body)

        ordered_ids = list(dict.fromkeys(str(item) for item in ids))
        if not ordered_ids:
            return BulkResult(kind=op)

        succeeded: set[str] = set()
        errors: dict[str, str] = {}
        dispatch: list[str] = []
        with operation_scope(f"bulk-{op.value}-{uuid.uuid4().hex[:12]}"):
            for asset_id in ordered_ids:
                asset = self.cache.get(asset_id)
                reason = self._precheck(asset, require_persisted=op != BulkOperationKind.delete)
                if reason is not None:
                    errors[asset_id] = reason
                    continue
                if op == BulkOperationKind.delete and asset is not None and not asset.is_persisted:
                    # Never reached the server: nothing to delete remotely.
                    self.cache.remove(asset_id)
                    succeeded.add(asset_id)
                    continue
                dispatch.append(asset_id)

            pending = self._apply_optimistic(op, body, dispatch)
            outcomes = await asyncio.gather(*(self._run_one(op, asset_id, body, pending.get(asset_id)) for asset_id in dispatch))
            for asset_id, error in outcomes:
                if error is None:
                    succeeded.add(asset_id)
                else:
                    errors[asset_id] = error

            result = BulkResult(
                kind=op,
                succeeded_ids=frozenset(succeeded),
                failed_ids=frozenset(errors),
                errors=errors,
            )
            metrics.record_bulk_result(succeeded=len(result.succeeded_ids), failed=len(result.failed_ids))
            logger.info(
                "media_bulk_operation_finished",
                extra={
                    "site_id": self.site_id,
                    "operation": op.value,
                    "outcome": result.outcome.value,
                    "succeeded": len(result.succeeded_ids),
                    "failed": len(result.failed_ids),
                },
            )
        return result

    def _apply_optimistic(self, op: BulkOperationKind, body: BulkPayload, ids: list[str]) -> dict[str, PendingField]:
        pending: dict[str, PendingField] = {}
        if op not in (BulkOperationKind.recategorize, BulkOperationKind.add_tag):
            return pending
        for asset_id in ids:
            asset = self.cache.get(asset_id)
            if asset is None:
                continue
            if op == BulkOperationKind.recategorize:
                entry = PendingField(
                    asset_id=asset_id,
                    field="category",
                    committed=asset.category,
                    pending=MediaCategory(str(body.category).strip().lower()),
                )
            else:
                entry = PendingField(
                    asset_id=asset_id,
                    field="tags",
                    committed=asset.tags,
                    pending=asset.tags | {str(body.tag)},
                )
            pending[asset_id] = entry
            self.cache.upsert(replace(asset, **{entry.field: entry.pending}))
        return pending

    async def _call_gateway(self, op: BulkOperationKind, asset_id: str, body: BulkPayload, entry: PendingField | None) -> None:
        if op == BulkOperationKind.delete:
            await self.gateway.delete(str(self.site_id), asset_id)
        elif op == BulkOperationKind.move:
            await self.gateway.move(asset_id, str(body.folder_id))
        elif op == BulkOperationKind.recategorize and entry is not None:
            await self.gateway.patch(asset_id, MediaPatchRequest(category=entry.pending.value))
        elif op == BulkOperationKind.add_tag and entry is not None:
            await self.gateway.patch(asset_id, MediaPatchRequest(tags=sorted(entry.pending)))

    async def _run_one(
        self,
        op: BulkOperationKind,
        asset_id: str,
        body: BulkPayload,
        entry: PendingField | None,
    ) -> tuple[str, str | None]:
        entries = [entry] if entry is not None else []
        try:
            await self._call_gateway(op, asset_id, body, entry)
        except GatewayError as exc:
            self._reconcile_failure(asset_id, entries)
            logger.warning("media_bulk_item_failed", extra={"asset_id": asset_id, "operation": op.value, "error": exc.message})
            return asset_id, exc.message
        except Exception:
            self._reconcile_failure(asset_id, entries)
            logger.exception("media_bulk_item_crashed", extra={"asset_id": asset_id, "operation": op.value})
            return asset_id, UNEXPECTED_ERROR_MESSAGE
        if op == BulkOperationKind.delete:
            self.cache.remove(asset_id)
        elif op == BulkOperationKind.move:
            current = self.cache.get(asset_id)
            if current is not None:
                self.cache.upsert(replace(current, folder_id=body.folder_id))
        else:
            self._reconcile_success(asset_id, entries)
        return asset_id, None

    async def update_asset(self, asset_id: str, changes: MediaPatchRequest | Mapping[str, Any]) -> str | None:
        """Patch the metadata of one asset.

        Fields the cache tracks (description, category, tags) are written
        optimistically and reverted if the gateway refuses the patch. Returns
        the failure message, or ``None`` once the patch is confirmed.
        """
        body = _coerce_patch(changes)
        asset = self.cache.get(asset_id)
        reason = self._precheck(asset, require_persisted=True)
        if asset is None or reason is not None:
            return reason

        entries = [
            PendingField(asset_id=asset_id, field=name, committed=getattr(asset, name), pending=value)
            for name, value in _tracked_values(body).items()
        ]
        if entries:
            self.cache.upsert(replace(asset, **{entry.field: entry.pending for entry in entries}))
        with operation_scope(f"update-{uuid.uuid4().hex[:12]}"):
            try:
                await self.gateway.patch(asset_id, body)
            except GatewayError as exc:
                self._reconcile_failure(asset_id, entries)
                logger.warning("media_update_failed", extra={"asset_id": asset_id, "error": exc.message})
                return exc.message
            except Exception:
                self._reconcile_failure(asset_id, entries)
                logger.exception("media_update_crashed", extra={"asset_id": asset_id})
                return UNEXPECTED_ERROR_MESSAGE
            self._reconcile_success(asset_id, entries)
            logger.info("media_update_applied", extra={"asset_id": asset_id, "fields": sorted(body.to_wire())})
        return None

    def _reconcile_success(self, asset_id: str, entries: list[PendingField]) -> None:
        current = self.cache.get(asset_id)
        if current is None:
            return
        stale = {entry.field: entry.pending for entry in entries if getattr(current, entry.field) != entry.pending}
        if stale:
            # Last confirmed write wins over writes that resolved earlier.
            self.cache.upsert(replace(current, **stale))

    def _reconcile_failure(self, asset_id: str, entries: list[PendingField]) -> None:
        if not entries:
            return
        current = self.cache.get(asset_id)
        if current is None:
            return
        self.cache.upsert(replace(current, **{entry.field: entry.committed for entry in entries}))

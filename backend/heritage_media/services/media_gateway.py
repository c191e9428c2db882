from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from heritage_media.core.config import Settings, settings as default_settings
from heritage_media.core.errors import GatewayError
from heritage_media.models.media import LocalFile
from heritage_media.schemas.media import (
    FolderRead,
    MediaMoveRequest,
    MediaPatchRequest,
    MediaUploadForm,
)
from heritage_media.services.asset_normalizer import download_uri


logger = logging.getLogger(__name__)


class AssetGateway(Protocol):
    async def list_site_media(self, site_id: str) -> list[dict[str, Any]]: ...

    async def upload(self, site_id: str, file: LocalFile, form: MediaUploadForm) -> dict[str, Any]: ...

    async def delete(self, site_id: str, asset_id: str) -> None: ...

    async def patch(self, asset_id: str, changes: MediaPatchRequest) -> dict[str, Any]: ...

    async def move(self, asset_id: str, folder_id: str) -> None: ...

    async def list_folders(self, site_id: str) -> list[FolderRead]: ...

    async def download(self, asset_id: str) -> bytes: ...


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload and len(payload) <= 3:
        return payload["data"]
    return payload


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


class MediaGateway:
    """Async client for the heritage backend media endpoints.

    Every failure surfaces as ``GatewayError`` carrying a message that can be
    shown to the user as-is.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.gateway_base_url,
            timeout=self._settings.gateway_timeout_seconds,
            headers=self._default_headers(),
            transport=transport,
        )

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._settings.gateway_token:
            headers["Authorization"] = f"Bearer {self._settings.gateway_token}"
        return headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "MediaGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError.timeout(operation=operation) from exc
        except httpx.HTTPError as exc:
            raise GatewayError.network(operation=operation) from exc
        if resp.is_success:
            return resp
        error = GatewayError.from_status(resp.status_code, operation=operation)
        logger.warning(
            "media_gateway_request_failed",
            extra={
                "operation": operation,
                "status_code": resp.status_code,
                "server_detail": _error_detail(resp),
            },
        )
        raise error

    @staticmethod
    def _json(resp: httpx.Response, operation: str) -> Any:
        if not resp.content:
            return None
        try:
            return _unwrap(resp.json())
        except ValueError as exc:
            raise GatewayError("Unexpected response from the server.", status_code=resp.status_code, operation=operation) from exc

    async def list_site_media(self, site_id: str) -> list[dict[str, Any]]:
        resp = await self._request("list_media", "GET", f"/api/heritage-sites/{site_id}/media")
        payload = self._json(resp, "list_media")
        if isinstance(payload, dict):
            payload = payload.get("content") or payload.get("items") or []
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    async def upload(self, site_id: str, file: LocalFile, form: MediaUploadForm) -> dict[str, Any]:
        files = {"file": (file.name, file.read_bytes(), file.mime_type)}
        resp = await self._request("upload", "POST", f"/api/media/upload/{site_id}", data=form.to_form(), files=files)
        payload = self._json(resp, "upload")
        if not isinstance(payload, dict):
            raise GatewayError("Unexpected response from the server.", status_code=resp.status_code, operation="upload")
        return payload

    async def delete(self, site_id: str, asset_id: str) -> None:
        await self._request("delete", "DELETE", f"/api/heritage-sites/{site_id}/media/{asset_id}")

    async def patch(self, asset_id: str, changes: MediaPatchRequest) -> dict[str, Any]:
        resp = await self._request("patch", "PATCH", f"/api/media/{asset_id}", json=changes.to_wire())
        payload = self._json(resp, "patch")
        return payload if isinstance(payload, dict) else {}

    async def move(self, asset_id: str, folder_id: str) -> None:
        body = MediaMoveRequest(folder_id=folder_id)
        await self._request("move", "POST", f"/api/media/{asset_id}/move", json=body.to_wire())

    async def list_folders(self, site_id: str) -> list[FolderRead]:
        try:
            resp = await self._request("list_folders", "GET", f"/api/folders/site/{site_id}")
            payload = self._json(resp, "list_folders")
        except GatewayError:
            logger.warning("media_gateway_folders_unavailable", extra={"site_id": site_id})
            return []
        if not isinstance(payload, list):
            return []
        folders: list[FolderRead] = []
        for item in payload:
            try:
                folders.append(FolderRead.model_validate(item))
            except ValidationError:
                continue
        return folders

    async def download(self, asset_id: str) -> bytes:
        resp = await self._request("download", "GET", download_uri(asset_id))
        return resp.content

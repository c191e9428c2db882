from __future__ import annotations

import json

import httpx
import pytest

from heritage_media.core.config import Settings
from heritage_media.core.errors import GATEWAY_ERROR_MESSAGES, GatewayError
from heritage_media.models.media import LocalFile
from heritage_media.schemas.media import MediaPatchRequest, MediaUploadForm
from heritage_media.services.media_gateway import MediaGateway


def _gateway(handler, **overrides) -> MediaGateway:
    cfg = Settings(_env_file=None, gateway_base_url="http://testserver", **overrides)
    return MediaGateway(settings=cfg, transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_list_site_media_unwraps_envelopes_and_sends_token() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/api/heritage-sites/7/media":
            return httpx.Response(200, json={"data": {"content": [{"id": 1}, "junk", {"id": 2}]}}, request=request)
        return httpx.Response(404, request=request)

    async with _gateway(handler, gateway_token="secret") as gateway:
        records = await gateway.list_site_media("7")

    assert records == [{"id": 1}, {"id": 2}]
    assert seen[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.anyio
async def test_list_site_media_accepts_plain_lists_without_token() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        return httpx.Response(200, json=[{"id": "a"}], request=request)

    async with _gateway(handler) as gateway:
        assert await gateway.list_site_media("7") == [{"id": "a"}]


@pytest.mark.anyio
async def test_upload_posts_multipart_form_fields() -> None:
    captured: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["content_type"] = request.headers["content-type"]
        captured["body"] = request.content
        return httpx.Response(201, json={"id": 55, "fileName": "gate.png"}, request=request)

    file = LocalFile(name="gate.png", mime_type="image/png", size_bytes=4, data=b"\x89PNG")
    form = MediaUploadForm(category="hero", description="Gate", is_public=False, folder_id="3")

    async with _gateway(handler) as gateway:
        record = await gateway.upload("7", file, form)

    assert record == {"id": 55, "fileName": "gate.png"}
    assert captured["path"] == "/api/media/upload/7"
    assert str(captured["content_type"]).startswith("multipart/form-data")
    body = bytes(captured["body"])  # type: ignore[arg-type]
    assert b'name="file"; filename="gate.png"' in body
    assert b'name="isPublic"\r\n\r\nfalse' in body
    assert b'name="folderId"\r\n\r\n3' in body
    assert b'name="category"\r\n\r\nhero' in body


@pytest.mark.anyio
async def test_patch_move_delete_and_download_routes() -> None:
    requests: list[tuple[str, str, bytes]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, request.content))
        if request.url.path.startswith("/api/media/download/"):
            return httpx.Response(200, content=b"binary", request=request)
        if request.method == "PATCH":
            return httpx.Response(200, json={"id": 9, "category": "hero"}, request=request)
        return httpx.Response(204, request=request)

    async with _gateway(handler) as gateway:
        patched = await gateway.patch("9", MediaPatchRequest(category="hero"))
        await gateway.move("9", "4")
        await gateway.delete("7", "9")
        content = await gateway.download("9")

    assert patched == {"id": 9, "category": "hero"}
    assert content == b"binary"
    assert [(method, path) for method, path, _ in requests] == [
        ("PATCH", "/api/media/9"),
        ("POST", "/api/media/9/move"),
        ("DELETE", "/api/heritage-sites/7/media/9"),
        ("GET", "/api/media/download/9"),
    ]
    assert json.loads(requests[0][2]) == {"category": "hero"}
    assert json.loads(requests[1][2]) == {"folderId": "4"}


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [400, 401, 403, 404, 413, 429, 500, 503])
async def test_http_errors_map_to_friendly_messages(status_code: int, caplog: pytest.LogCaptureFixture) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"message": "raw server detail"}, request=request)

    async with _gateway(handler) as gateway:
        with caplog.at_level("WARNING"), pytest.raises(GatewayError) as excinfo:
            await gateway.delete("7", "1")

    assert excinfo.value.status_code == status_code
    assert excinfo.value.operation == "delete"
    assert excinfo.value.message == GATEWAY_ERROR_MESSAGES[status_code]
    assert "raw server detail" not in excinfo.value.message
    assert "media_gateway_request_failed" in caplog.text


@pytest.mark.anyio
async def test_unmapped_status_uses_generic_message() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(418, request=request)

    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError) as excinfo:
            await gateway.patch("1", MediaPatchRequest(description="x"))

    assert excinfo.value.message == GATEWAY_ERROR_MESSAGES["unknown"]


@pytest.mark.anyio
async def test_transport_failures_become_gateway_errors() -> None:
    async def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with _gateway(refused) as gateway:
        with pytest.raises(GatewayError) as network:
            await gateway.list_site_media("7")
    async with _gateway(slow) as gateway:
        with pytest.raises(GatewayError) as timeout:
            await gateway.list_site_media("7")

    assert network.value.message == GATEWAY_ERROR_MESSAGES["network"]
    assert network.value.status_code is None
    assert timeout.value.message == GATEWAY_ERROR_MESSAGES["timeout"]


@pytest.mark.anyio
async def test_upload_rejects_non_object_response() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>ok</html>", request=request)

    file = LocalFile(name="a.txt", mime_type="text/plain", size_bytes=1, data=b"a")
    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError, match="Unexpected response"):
            await gateway.upload("7", file, MediaUploadForm())


@pytest.mark.anyio
async def test_list_folders_degrades_to_empty_list(caplog: pytest.LogCaptureFixture) -> None:
    async def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, request=request)

    async def listing(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/folders/site/7"
        return httpx.Response(200, json=[{"id": 1, "name": "Facade"}, {"name": "no id"}, {"id": "b", "name": "Roof"}], request=request)

    async with _gateway(failing) as gateway:
        with caplog.at_level("WARNING"):
            assert await gateway.list_folders("7") == []
    async with _gateway(listing) as gateway:
        folders = await gateway.list_folders("7")

    assert "media_gateway_folders_unavailable" in caplog.text
    assert [(folder.id, folder.name) for folder in folders] == [("1", "Facade"), ("b", "Roof")]


@pytest.mark.anyio
async def test_shared_client_is_not_closed_by_gateway() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[], request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver") as client:
        async with MediaGateway(client=client) as gateway:
            await gateway.list_site_media("1")
        assert not client.is_closed

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from heritage_media.core.config import Settings, settings as default_settings
from heritage_media.core.logging_config import configure_logging
from heritage_media.core.sentry import init_sentry
from heritage_media.services.gallery import GallerySession
from heritage_media.services.media_gateway import MediaGateway


def configure(settings: Settings | None = None) -> None:
    """Process-wide logging and error reporting for an embedding application."""
    cfg = settings or default_settings
    configure_logging(cfg.log_json)
    init_sentry(cfg)


@asynccontextmanager
async def open_gallery(
    site_id: str | None,
    *,
    settings: Settings | None = None,
    user: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    hydrate: bool = True,
) -> AsyncIterator[GallerySession]:
    """Gallery session wired to the HTTP gateway; previews are released on exit."""
    cfg = settings or default_settings
    gateway = MediaGateway(settings=cfg, transport=transport)
    session = GallerySession(site_id, gateway, settings=cfg, user=user)
    try:
        if hydrate:
            await session.hydrate()
            await session.load_folders()
        yield session
    finally:
        session.close()
        await gateway.aclose()

from __future__ import annotations

import logging

from heritage_media.core.config import Settings, settings as default_settings


def init_sentry(settings: Settings | None = None) -> bool:
    cfg = settings or default_settings
    if not cfg.sentry_dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations import Integration
    from sentry_sdk.integrations.httpx import HttpxIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    integrations: list[Integration] = [HttpxIntegration()]
    if cfg.sentry_enable_logs:
        log_level_name = str(cfg.sentry_log_level or "error").strip().upper()
        event_level = getattr(logging, log_level_name, logging.ERROR)
        integrations.append(
            LoggingIntegration(
                level=event_level,
                event_level=event_level,
            )
        )

    sentry_sdk.init(
        dsn=cfg.sentry_dsn,
        environment=cfg.environment,
        release=cfg.app_version,
        traces_sample_rate=cfg.sentry_traces_sample_rate,
        integrations=integrations,
        attach_stacktrace=True,
        send_default_pii=False,
    )
    return True

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


_MB = 1024 * 1024


class Settings(BaseSettings):
    """Gallery sync settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HERITAGE_MEDIA_",
        case_sensitive=False,
    )

    app_name: str = "heritage-media"
    app_version: str = "0.1.0"
    environment: str = "local"

    gateway_base_url: str = "http://localhost:8080"
    gateway_token: str | None = None
    gateway_timeout_seconds: float = 30.0

    upload_max_bytes: int = 100 * _MB
    upload_max_bytes_by_kind: dict[str, int] = {}
    upload_max_files: int = 50
    upload_accepted_types: list[str] = [
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "video/mp4",
        "video/webm",
        "video/quicktime",
        "application/pdf",
        "text/plain",
    ]
    upload_timeout_seconds: float = 300.0
    upload_is_public: bool = True

    preview_max_size: tuple[int, int] = (320, 320)
    video_frame_size: tuple[int, int] = (320, 180)
    video_frame_offset_seconds: float = 1.0
    ffmpeg_binary: str = "ffmpeg"
    video_frame_timeout_seconds: float = 30.0

    default_uploader: str = "Unknown"

    log_json: bool = False
    sentry_dsn: str | None = None
    sentry_traces_sample_rate: float = 0.0
    sentry_enable_logs: bool = False
    sentry_log_level: str = "error"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

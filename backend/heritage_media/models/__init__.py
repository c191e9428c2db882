from heritage_media.models.media import (  # noqa: F401
    Asset,
    AssetLifecycle,
    LocalFile,
    MediaCategory,
    MediaKind,
)

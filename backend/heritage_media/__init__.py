from heritage_media.main import configure, open_gallery  # noqa: F401
from heritage_media.models.media import Asset, AssetLifecycle, LocalFile, MediaCategory  # noqa: F401
from heritage_media.services.asset_normalizer import normalize  # noqa: F401
from heritage_media.services.bulk_operations import BulkOperationKind, BulkResult  # noqa: F401
from heritage_media.services.gallery import GallerySession  # noqa: F401

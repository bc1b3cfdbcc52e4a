"""
Persistence Module.
SQLite-backed storage for video jobs, generated media, generations and the catalog.
"""
from .database import get_connection, transaction, close_connection, init_schema
from .video_jobs_repo import (
    VideoJobsRepository,
    VideoJobRecord,
    get_video_jobs_repository,
)
from .media_repo import (
    MediaRepository,
    CompositeImageRecord,
    VeoClipRecord,
    get_media_repository,
)
from .catalog_repo import (
    CatalogRepository,
    ProductRecord,
    AvatarRecord,
    DemoRecord,
    IndexedClipRecord,
    get_catalog_repository,
)
from .generations_repo import (
    GenerationsRepository,
    GenerationRecord,
    AnimationRecord,
    get_generations_repository,
)

__all__ = [
    "get_connection",
    "transaction",
    "close_connection",
    "init_schema",
    "VideoJobsRepository",
    "VideoJobRecord",
    "get_video_jobs_repository",
    "MediaRepository",
    "CompositeImageRecord",
    "VeoClipRecord",
    "get_media_repository",
    "CatalogRepository",
    "ProductRecord",
    "AvatarRecord",
    "DemoRecord",
    "IndexedClipRecord",
    "get_catalog_repository",
    "GenerationsRepository",
    "GenerationRecord",
    "AnimationRecord",
    "get_generations_repository",
]

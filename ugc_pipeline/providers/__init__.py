"""
Providers Layer.

External collaborators used by the pipeline:
- Gemini image generation and Veo video generation
- Media storage (local or S3)
"""
from .exceptions import (
    ProviderError,
    ProviderUnavailable,
    GenerationFailure,
    ContentPolicyError,
    StorageError,
)
from .gemini import (
    GeminiClient,
    ImageOptions,
    GeneratedImage,
    VideoOptions,
    GeneratedVideo,
)
from .storage import (
    StorageBackend,
    LocalStorage,
    S3Storage,
    get_storage,
    set_storage,
    upload_to_storage,
    upload_to_storage_async,
    load_media,
)

__all__ = [
    "ProviderError",
    "ProviderUnavailable",
    "GenerationFailure",
    "ContentPolicyError",
    "StorageError",
    "GeminiClient",
    "ImageOptions",
    "GeneratedImage",
    "VideoOptions",
    "GeneratedVideo",
    "StorageBackend",
    "LocalStorage",
    "S3Storage",
    "get_storage",
    "set_storage",
    "upload_to_storage",
    "upload_to_storage_async",
    "load_media",
]

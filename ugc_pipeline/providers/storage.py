"""
Media storage.

Uploads generated images and videos and resolves stored URLs back to
bytes. Two backends:
- local: files under MEDIA_DIR, served from PUBLIC_MEDIA_URL
- s3: boto3 put_object, public URL from AWS_PUBLIC_URL or the bucket host
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from ..config import config
from .exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract object store."""

    name: str = "base"

    @abstractmethod
    def put(self, data: bytes, key: str, content_type: str) -> str:
        """Store bytes under key and return the public URL."""
        pass

    def upload_image(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        return self.put(data, key, content_type)

    def upload_video(self, data: bytes, key: str, content_type: str = "video/mp4") -> str:
        return self.put(data, key, content_type)


class LocalStorage(StorageBackend):
    """Writes under the media directory."""

    name = "local"

    def __init__(self, media_dir: Optional[Path] = None, public_url: Optional[str] = None):
        self.media_dir = Path(media_dir or config.paths.media_dir)
        self.public_url = (public_url or config.storage.public_media_url).rstrip("/")

    def put(self, data: bytes, key: str, content_type: str) -> str:
        path = self.media_dir / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}", provider=self.name) from e

        logger.debug(f"[STORAGE] Wrote {len(data)} bytes to {path}")
        return f"{self.public_url}/{key}"

    def resolve(self, url: str) -> Optional[Path]:
        """Map a public URL produced by this backend back to its file."""
        prefix = f"{self.public_url}/"
        if not url.startswith(prefix):
            return None
        return self.media_dir / url[len(prefix):]


class S3Storage(StorageBackend):
    """Uploads to an S3 bucket."""

    name = "s3"

    def __init__(self):
        storage = config.storage
        if not storage.has_s3:
            raise StorageError(
                "Missing S3 configuration. Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY and AWS_BUCKET_NAME.",
                provider=self.name,
            )

        self.bucket_name = storage.bucket_name
        self.region = storage.aws_region
        self.public_url = storage.aws_public_url
        self.s3_client = boto3.client(
            "s3",
            aws_access_key_id=storage.aws_access_key_id,
            aws_secret_access_key=storage.aws_secret_access_key,
            region_name=self.region,
        )
        logger.info(f"[STORAGE] S3 storage initialized for bucket: {self.bucket_name}")

    def put(self, data: bytes, key: str, content_type: str) -> str:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[STORAGE] S3 upload failed for {key}: {e}")
            raise StorageError(f"S3 upload failed for {key}: {e}", provider=self.name) from e

        if self.public_url:
            return f"{self.public_url.rstrip('/')}/{key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"


_storage: Optional[StorageBackend] = None


def get_storage() -> StorageBackend:
    """Get the configured storage backend singleton."""
    global _storage
    if _storage is None:
        if config.storage.backend == "s3":
            _storage = S3Storage()
        else:
            _storage = LocalStorage()
        logger.info(f"[STORAGE] Using {_storage.name} backend")
    return _storage


def set_storage(storage: Optional[StorageBackend]) -> None:
    """Replace the storage singleton (None resets to the configured backend)."""
    global _storage
    _storage = storage


def upload_to_storage(
    data: bytes,
    key: str,
    content_type: str,
    storage: Optional[StorageBackend] = None,
) -> str:
    """
    Upload a buffer and return its public URL.

    The content type prefix picks the uploader: image/* goes to the image
    uploader, video/* and audio/* to the video uploader.

    Raises:
        StorageError: for any other content type or a failed upload
    """
    storage = storage or get_storage()

    if content_type.startswith("image/"):
        return storage.upload_image(data, key, content_type)
    elif content_type.startswith("video/") or content_type.startswith("audio/"):
        return storage.upload_video(data, key, content_type)
    else:
        raise StorageError(f"Unsupported content type: {content_type}")


async def upload_to_storage_async(
    data: bytes,
    key: str,
    content_type: str,
    storage: Optional[StorageBackend] = None,
) -> str:
    """Run upload_to_storage in the default thread pool so the event loop keeps going."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, partial(upload_to_storage, data, key, content_type, storage=storage)
    )


async def load_media(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    storage: Optional[StorageBackend] = None,
) -> bytes:
    """Fetch stored media by URL, reading local files directly."""
    storage = storage or get_storage()

    if isinstance(storage, LocalStorage):
        path = storage.resolve(url)
        if path is not None:
            try:
                return path.read_bytes()
            except OSError as e:
                raise StorageError(f"Failed to read {url}: {e}", provider=storage.name) from e

    if not url.startswith(("http://", "https://")):
        raise StorageError(f"Cannot load media from {url}")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=120.0, follow_redirects=True)
    try:
        response = await client.get(url)
        if response.status_code != 200:
            raise StorageError(f"Download failed ({response.status_code}) for {url}")
        return response.content
    except httpx.HTTPError as e:
        raise StorageError(f"Download failed for {url}: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

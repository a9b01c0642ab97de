"""Object storage backends for media assets.

Two backends share one interface: the BunnyCDN storage API (remote) and a
directory served statically by the web tier (local). URLs persisted for an
asset carry a backend tag so deletion can be routed without sniffing the URL.
"""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional, Union
from urllib.parse import urlparse

import httpx

from reelshop.core.logging import log_info, log_warning
from reelshop.core.metrics import STORAGE_UPLOADS_TOTAL

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024

# Hostname suffixes of URLs written before backend tags were persisted
LEGACY_CDN_HOST_SUFFIXES = (".b-cdn.net", "bunnycdn.com")


class StorageBackend(str, Enum):
    """Backend tag stored alongside an asset URL."""
    REMOTE = "remote"
    LOCAL = "local"


class StorageError(Exception):
    """Base error for object store operations."""


class StorageNotConfiguredError(StorageError):
    """The backend is missing credentials or its base URL."""


class StorageUploadError(StorageError):
    """A put operation failed (network, auth, quota, disk)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageDeleteError(StorageError):
    """A delete operation failed for a reason other than the object being absent."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StoredObject:
    """Result of a successful put."""
    url: str
    key: str
    backend: StorageBackend
    size_bytes: int = 0
    # Absolute path of the served file, local backend only
    local_path: Optional[str] = None


class ObjectStore(ABC):
    """Abstract base class for storage backends."""

    backend: StorageBackend

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the backend can accept operations."""

    @abstractmethod
    async def put(self, local_path: Union[str, Path], folder: str) -> StoredObject:
        """Store a local file under ``folder`` and return its public URL."""

    @abstractmethod
    async def delete(self, url_or_key: str) -> None:
        """Delete an object. Deleting an absent object is not an error."""

    @abstractmethod
    def owns_url(self, url: str) -> bool:
        """Whether ``url`` was produced by this backend."""

    @abstractmethod
    def key_from_url(self, url_or_key: str) -> Optional[str]:
        """Strip the backend URL prefix to recover the backend-relative key."""

    async def aclose(self) -> None:
        """Release network resources held by the backend."""

    @staticmethod
    def build_key(folder: str, filename: str) -> str:
        folder = folder.strip("/")
        return f"{folder}/{filename}" if folder else filename


class LocalStorage(ObjectStore):
    """Local filesystem backend.

    Files are moved under ``root_dir`` and addressed by root-relative URLs
    (``/uploads/videos/x.mp4``); the host is resolved by the caller building
    the response.
    """

    backend = StorageBackend.LOCAL

    def __init__(self, root_dir: Union[str, Path], url_prefix: str = "/uploads"):
        self.root = Path(root_dir).resolve()
        self.url_prefix = "/" + url_prefix.strip("/")

    def is_configured(self) -> bool:
        return True

    def path_for_key(self, key: str) -> Path:
        """Absolute path for ``key``, refusing keys that escape the root."""
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def url_for_key(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def owns_url(self, url: str) -> bool:
        if not url:
            return False
        return url.startswith(self.url_prefix + "/")

    def key_from_url(self, url_or_key: str) -> Optional[str]:
        if not url_or_key:
            return None
        path = url_or_key
        if url_or_key.startswith(("http://", "https://")):
            path = urlparse(url_or_key).path
        if path.startswith(self.url_prefix + "/"):
            return path[len(self.url_prefix) + 1:]
        if not path.startswith("/"):
            return path
        return None

    async def put(self, local_path: Union[str, Path], folder: str) -> StoredObject:
        source = Path(local_path)
        key = self.build_key(folder, source.name)
        destination = self.path_for_key(key)

        try:
            size = await asyncio.to_thread(self._move, source, destination)
        except OSError as e:
            STORAGE_UPLOADS_TOTAL.labels(backend=self.backend.value, result="error").inc()
            raise StorageUploadError(f"Local store failed for {source}: {e}") from e

        STORAGE_UPLOADS_TOTAL.labels(backend=self.backend.value, result="success").inc()
        log_info(logger, "Stored file locally", key=key, size_bytes=size)
        return StoredObject(
            url=self.url_for_key(key),
            key=key,
            backend=self.backend,
            size_bytes=size,
            local_path=str(destination),
        )

    @staticmethod
    def _move(source: Path, destination: Path) -> int:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if source.resolve() != destination:
            shutil.move(str(source), str(destination))
        return destination.stat().st_size

    async def delete(self, url_or_key: str) -> None:
        key = self.key_from_url(url_or_key)
        if not key:
            raise StorageDeleteError(f"Not a local storage URL: {url_or_key!r}")

        path = self.path_for_key(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageDeleteError(f"Local delete failed for {key}: {e}") from e


class BunnyStorage(ObjectStore):
    """BunnyCDN storage zone backend.

    Uploads go to ``https://{endpoint}/{zone}/{key}`` authenticated with the
    zone's ``AccessKey``; public URLs are ``{cdn_url}/{key}`` on the pull zone.
    """

    backend = StorageBackend.REMOTE

    def __init__(
        self,
        storage_zone: str,
        api_key: str,
        cdn_url: str,
        endpoint: str = "storage.bunnycdn.com",
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.storage_zone = storage_zone
        self.api_key = api_key
        self.cdn_url = cdn_url.rstrip("/")
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def is_configured(self) -> bool:
        return bool(self.storage_zone and self.api_key and self.cdn_url)

    @property
    def storage_base_url(self) -> str:
        return f"https://{self.endpoint}/{self.storage_zone}"

    def url_for_key(self, key: str) -> str:
        return f"{self.cdn_url}/{key}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise StorageNotConfiguredError(
                "BunnyCDN is not configured: set BUNNY_STORAGE_ZONE, "
                "BUNNY_STORAGE_API_KEY and BUNNY_CDN_URL"
            )

    def owns_url(self, url: str) -> bool:
        if not url or not self.cdn_url:
            return False
        return url.startswith(self.cdn_url + "/")

    def key_from_url(self, url_or_key: str) -> Optional[str]:
        if not url_or_key:
            return None
        if self.cdn_url and url_or_key.startswith(self.cdn_url + "/"):
            key = url_or_key[len(self.cdn_url) + 1:]
            return key.split("?", 1)[0] or None
        if url_or_key.startswith(("http://", "https://")):
            return urlparse(url_or_key).path.lstrip("/") or None
        return url_or_key.lstrip("/") or None

    async def put(self, local_path: Union[str, Path], folder: str) -> StoredObject:
        self._require_configured()
        source = Path(local_path)
        try:
            size = source.stat().st_size
        except OSError as e:
            raise StorageUploadError(f"Local file unavailable for upload: {source}") from e

        key = self.build_key(folder, source.name)
        headers = {
            "AccessKey": self.api_key,
            "Content-Type": "application/octet-stream",
            "Content-Length": str(size),
        }

        log_info(logger, "Uploading to BunnyCDN", key=key, size_bytes=size)
        try:
            response = await self._get_client().put(
                f"{self.storage_base_url}/{key}",
                content=_iter_file(source),
                headers=headers,
            )
        except (httpx.HTTPError, OSError) as e:
            STORAGE_UPLOADS_TOTAL.labels(backend=self.backend.value, result="error").inc()
            raise StorageUploadError(f"BunnyCDN upload failed for {key}: {e}") from e

        if response.status_code not in (200, 201):
            STORAGE_UPLOADS_TOTAL.labels(backend=self.backend.value, result="error").inc()
            raise StorageUploadError(
                f"BunnyCDN upload failed for {key}: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        STORAGE_UPLOADS_TOTAL.labels(backend=self.backend.value, result="success").inc()
        return StoredObject(
            url=self.url_for_key(key),
            key=key,
            backend=self.backend,
            size_bytes=size,
        )

    async def delete(self, url_or_key: str) -> None:
        self._require_configured()
        key = self.key_from_url(url_or_key)
        if not key:
            raise StorageDeleteError(f"Cannot derive a storage key from {url_or_key!r}")

        try:
            response = await self._get_client().delete(
                f"{self.storage_base_url}/{key}",
                headers={"AccessKey": self.api_key},
            )
        except httpx.HTTPError as e:
            raise StorageDeleteError(f"BunnyCDN delete failed for {key}: {e}") from e

        # 404: already gone
        if response.status_code in (200, 404):
            return
        raise StorageDeleteError(
            f"BunnyCDN delete failed for {key}: {response.status_code}",
            status_code=response.status_code,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


async def _iter_file(path: Path, chunk_size: int = UPLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
    with open(path, "rb") as f:
        while True:
            chunk = await asyncio.to_thread(f.read, chunk_size)
            if not chunk:
                break
            yield chunk


def legacy_backend_from_url(url: str) -> Optional[StorageBackend]:
    """Guess the backend of a URL persisted without a backend tag.

    Only CDN hostnames are recognised; anything else is left to the caller.
    """
    if not url or not url.startswith(("http://", "https://")):
        return None
    hostname = (urlparse(url).hostname or "").lower()
    if any(hostname.endswith(suffix) for suffix in LEGACY_CDN_HOST_SUFFIXES):
        return StorageBackend.REMOTE
    return None


class StoreResolver:
    """Picks the backend responsible for a stored asset."""

    def __init__(self, remote: ObjectStore, local: ObjectStore):
        self._stores = {
            StorageBackend.REMOTE: remote,
            StorageBackend.LOCAL: local,
        }

    @property
    def remote(self) -> ObjectStore:
        return self._stores[StorageBackend.REMOTE]

    @property
    def local(self) -> ObjectStore:
        return self._stores[StorageBackend.LOCAL]

    def for_backend(self, backend: Union[StorageBackend, str]) -> ObjectStore:
        return self._stores[StorageBackend(backend)]

    def for_url(
        self,
        url: str,
        backend: Optional[Union[StorageBackend, str]] = None,
    ) -> Optional[ObjectStore]:
        """Resolve the owning store: explicit tag, then URL prefix, then legacy hostnames."""
        if backend:
            return self.for_backend(backend)
        for store in self._stores.values():
            if store.owns_url(url):
                return store
        legacy = legacy_backend_from_url(url)
        if legacy is not None:
            return self._stores[legacy]
        return None


async def delete_quietly(
    resolver: StoreResolver,
    url: Optional[str],
    backend: Optional[Union[StorageBackend, str]] = None,
) -> bool:
    """Best-effort delete for cleanup callers. Failures are logged, never raised."""
    if not url:
        return False

    store = resolver.for_url(url, backend)
    if store is None:
        log_warning(logger, "No storage backend owns URL, skipping delete", url=url)
        return False

    try:
        await store.delete(url)
    except StorageError as e:
        log_warning(
            logger,
            "Best-effort delete failed",
            url=url,
            backend=store.backend.value,
            error=str(e),
        )
        return False
    return True

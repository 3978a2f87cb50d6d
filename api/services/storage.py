"""
Storage service: blob uploads and public URLs
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import re
import secrets

import yaml
import structlog

from api.config import settings
from api.utils.error_handlers import StorageError
from storage.base import Content, LocalStorageBackend, StorageBackend
from storage.factory import create_storage_backend

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredBlob:
    """A blob written through the storage service."""
    key: str
    url: str
    download_url: str
    size: int


def blob_key(file_name: str, prefix: str = "", random_suffix: bool = True) -> str:
    """
    Build a storage key from a user-supplied file name.

    `clip.mp4` becomes `clip-3fa9c1d2e0b4.mp4` (plus prefix) so repeated
    uploads of the same name never collide.
    """
    name = Path(file_name or "file").name
    stem, suffix = Path(name).stem, Path(name).suffix.lower()
    stem = _UNSAFE_CHARS.sub("-", stem).strip("-") or "file"
    if random_suffix:
        stem = f"{stem}-{secrets.token_hex(6)}"
    key = f"{stem}{suffix}"
    return f"{prefix.strip('/')}/{key}" if prefix else key


class StorageService:
    """Service owning the configured storage backend."""

    def __init__(self, backend: Optional[StorageBackend] = None):
        self.backend: Optional[StorageBackend] = backend
        self.config: Dict[str, Any] = {}

    async def initialize(self) -> None:
        """Create the default backend from STORAGE_CONFIG, or local storage."""
        if self.backend is not None:
            return

        config_path = Path(settings.STORAGE_CONFIG)
        if config_path.exists():
            with open(config_path, "r") as f:
                self.config = yaml.safe_load(f) or {}
        else:
            self.config = {
                "storage": {
                    "default_backend": "local",
                    "backends": {
                        "local": {
                            "type": "filesystem",
                            "name": "local",
                            "base_path": settings.STORAGE_PATH,
                        }
                    },
                }
            }

        storage_config = self.config.get("storage", {})
        backends = storage_config.get("backends", {})
        default_name = storage_config.get("default_backend", "local")
        if default_name not in backends:
            raise RuntimeError(f"Default storage backend '{default_name}' is not configured")

        backend_config = dict(backends[default_name])
        backend_config.setdefault("name", default_name)
        backend_config.setdefault("public_url", settings.PUBLIC_URL)
        self.backend = create_storage_backend(backend_config)
        logger.info("Storage service initialized", backend=default_name, type=backend_config.get("type"))

    def _require_backend(self) -> StorageBackend:
        if self.backend is None:
            raise StorageError("Storage service is not initialized")
        return self.backend

    async def put(
        self,
        file_name: str,
        content: Content,
        content_type: str = "application/octet-stream",
        prefix: str = "",
        random_suffix: bool = True,
    ) -> StoredBlob:
        """Store a blob and return its key and public URLs."""
        backend = self._require_backend()
        key = blob_key(file_name, prefix=prefix, random_suffix=random_suffix)
        try:
            size = await backend.write(key, content, content_type=content_type)
            url = await backend.get_url(key)
            download_url = await backend.get_url(key, download=True)
        except Exception as e:
            logger.error("Blob upload failed", key=key, error=str(e))
            raise StorageError(f"Failed to store {key}: {e}", backend=backend.name)

        logger.info("Blob stored", key=key, size=size, content_type=content_type)
        return StoredBlob(key=key, url=url, download_url=download_url, size=size)

    async def read_bytes(self, key: str) -> bytes:
        backend = self._require_backend()
        try:
            return await backend.read_bytes(key)
        except FileNotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {key}: {e}", backend=backend.name)

    async def delete(self, key: str) -> bool:
        return await self._require_backend().delete(key)

    def local_path(self, key: str) -> Optional[Path]:
        """Filesystem path for a key when the backend is local storage."""
        backend = self._require_backend()
        if isinstance(backend, LocalStorageBackend):
            return backend.full_path(key)
        return None

    async def cleanup(self) -> None:
        self.backend = None

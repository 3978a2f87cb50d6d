"""
Base storage backend interface
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Union
from urllib.parse import quote

import aiofiles

Content = Union[bytes, AsyncIterator[bytes]]


async def iter_content(content: Content, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
    """Yield chunks from raw bytes or an async chunk iterator."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        data = bytes(content)
        for offset in range(0, len(data), chunk_size):
            yield data[offset:offset + chunk_size]
        return
    async for chunk in content:
        yield chunk


class StorageBackend(ABC):
    """Abstract base class for blob storage backends."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.name = config.get("name", "unknown")

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if a blob exists."""

    @abstractmethod
    async def read(self, path: str, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        """Read blob content as chunks."""

    @abstractmethod
    async def write(self, path: str, content: Content, content_type: str = "application/octet-stream") -> int:
        """Write content to a blob. Returns bytes written."""

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a blob. Returns True if something was removed."""

    @abstractmethod
    async def get_url(self, path: str, download: bool = False) -> str:
        """Public URL for the blob, optionally forcing a download disposition."""

    async def read_bytes(self, path: str) -> bytes:
        """Read a whole blob into memory."""
        chunks = []
        async for chunk in self.read(path):
            chunks.append(chunk)
        return b"".join(chunks)


class LocalStorageBackend(StorageBackend):
    """Local filesystem storage, served back through the API's files route."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_path = Path(config.get("base_path", "./storage_data"))
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_url = config.get("public_url", "http://localhost:8000").rstrip("/")
        self.files_prefix = config.get("files_prefix", "/api/files")

    def full_path(self, path: str) -> Path:
        """Filesystem path of a blob, confined to base_path."""
        path = path.lstrip("/")
        full_path = self.base_path / path

        try:
            full_path.resolve().relative_to(self.base_path.resolve())
        except ValueError:
            raise ValueError(f"Path '{path}' is outside storage boundary")

        return full_path

    async def exists(self, path: str) -> bool:
        return self.full_path(path).is_file()

    async def read(self, path: str, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        full_path = self.full_path(path)
        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        async with aiofiles.open(full_path, "rb") as f:
            while chunk := await f.read(chunk_size):
                yield chunk

    async def write(self, path: str, content: Content, content_type: str = "application/octet-stream") -> int:
        full_path = self.full_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        bytes_written = 0
        async with aiofiles.open(full_path, "wb") as f:
            async for chunk in iter_content(content):
                await f.write(chunk)
                bytes_written += len(chunk)

        return bytes_written

    async def delete(self, path: str) -> bool:
        full_path = self.full_path(path)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    async def get_url(self, path: str, download: bool = False) -> str:
        url = f"{self.public_url}{self.files_prefix}/{quote(path.lstrip('/'))}"
        return f"{url}?download=1" if download else url

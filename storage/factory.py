"""
Factory for creating storage backends
"""
from typing import Any, Dict, Optional, Type
import importlib

import structlog

from storage.base import LocalStorageBackend, StorageBackend

logger = structlog.get_logger()


# Registry of available storage backends
STORAGE_BACKENDS: Dict[str, Type[StorageBackend]] = {
    "filesystem": LocalStorageBackend,
    "local": LocalStorageBackend,
}

# Backends with optional dependencies, imported on first use
LAZY_BACKENDS = {
    "s3": ("storage.backends.s3", "S3StorageBackend", ["aioboto3", "botocore"]),
}


def _lazy_import_backend(backend_type: str) -> Optional[Type[StorageBackend]]:
    """Import a backend only when it is configured."""
    if backend_type not in LAZY_BACKENDS:
        return None

    module_name, class_name, dependencies = LAZY_BACKENDS[backend_type]

    for dep in dependencies:
        try:
            importlib.import_module(dep)
        except ImportError:
            logger.error("Missing storage dependency", backend=backend_type, dependency=dep)
            raise ValueError(
                f"Storage backend '{backend_type}' requires {dep}. "
                f"Install with: pip install {dep}"
            )

    module = importlib.import_module(module_name)
    backend_class = getattr(module, class_name)
    if not issubclass(backend_class, StorageBackend):
        raise ValueError(f"Backend {class_name} must inherit from StorageBackend")

    STORAGE_BACKENDS[backend_type] = backend_class
    return backend_class


def create_storage_backend(config: Dict[str, Any]) -> StorageBackend:
    """
    Create a storage backend from configuration.

    Args:
        config: Backend configuration dictionary, must include 'type'

    Returns:
        Initialized storage backend

    Raises:
        ValueError: If backend type is unknown or configuration is invalid
    """
    backend_type = config.get("type")
    if not backend_type:
        raise ValueError("Storage backend configuration must include 'type'")

    if backend_type in STORAGE_BACKENDS:
        return STORAGE_BACKENDS[backend_type](config)

    backend_class = _lazy_import_backend(backend_type)
    if backend_class:
        return backend_class(config)

    raise ValueError(f"Unknown storage backend type: {backend_type}")


def register_backend(name: str, backend_class: type) -> None:
    """Register a new storage backend type."""
    if not issubclass(backend_class, StorageBackend):
        raise ValueError("Backend class must inherit from StorageBackend")

    STORAGE_BACKENDS[name] = backend_class

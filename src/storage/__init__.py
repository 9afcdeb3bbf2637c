from __future__ import annotations

from pathlib import Path

from src.storage.base import (
    BaseStorage,
    DuplicateKeyError,
    MemoryStorage,
    NotFoundError,
    StorageError,
    StorageUnavailableError,
)
from src.storage.json_store import JsonFileStorage

__all__ = [
    "BaseStorage",
    "DuplicateKeyError",
    "JsonFileStorage",
    "MemoryStorage",
    "NotFoundError",
    "StorageError",
    "StorageUnavailableError",
    "build_storage",
]


def build_storage(backend: str, data_dir: str | Path) -> BaseStorage:
    if backend == "memory":
        return MemoryStorage()
    return JsonFileStorage(Path(data_dir) / "store")

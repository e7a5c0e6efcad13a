"""
Storage — feature catalog backends.

Public API:
    from storage import get_store, FeatureStore
    from storage import MemoryStorage, GitStorage, HttpStorage
"""

from __future__ import annotations

import config
from models.errors import ConfigError
from storage.base import FeatureStore
from storage.git import GitStorage
from storage.http import HttpStorage
from storage.memory import MemoryStorage, load_catalog

__all__ = ["FeatureStore", "GitStorage", "HttpStorage", "MemoryStorage", "get_store", "load_catalog"]


def get_store(settings: config.Settings) -> FeatureStore:
    """Create the storage backend selected by ``settings.storage``."""
    if settings.storage == config.STORAGE_MEMORY:
        if settings.memory.path:
            return load_catalog(settings.memory.path)
        return MemoryStorage()
    if settings.storage == config.STORAGE_GIT:
        return GitStorage(settings.git.url, ref=settings.git.ref)
    if settings.storage == config.STORAGE_HTTP:
        return HttpStorage(settings.http.url, timeout=settings.http.timeout)
    raise ConfigError(f"unknown storage type '{settings.storage}'")

"""Tree store backends for the device registry."""

import logging

from dosi.store.base import StoreError, StoreKeyError, TreeStore, join_key, split_key
from dosi.store.filesystem import FileSystemStore

logger = logging.getLogger(__name__)

__all__ = [
    "StoreError",
    "StoreKeyError",
    "TreeStore",
    "FileSystemStore",
    "create_store",
    "join_key",
    "split_key",
]


def create_store(settings) -> TreeStore:
    """Build the store selected by ``settings.store_backend``."""
    backend = settings.store_backend.lower()
    if backend == "filesystem":
        logger.info("Using filesystem store at %s", settings.registry_dir)
        return FileSystemStore(settings.registry_dir)
    if backend == "sqlite":
        from dosi.database import engine, init_db
        from dosi.store.sql import SqlStore

        init_db(engine)
        logger.info("Using SQLite store at %s", settings.database_path)
        return SqlStore(engine)
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")

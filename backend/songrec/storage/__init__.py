"""
Storage layer for audio fingerprints and the song registry.

Usage:

    from songrec.storage import new_db_client

    db = new_db_client()                          # STORAGE_TYPE, default "document"
    db = new_db_client("relational", url="sqlite:///songs.db")
    db = new_db_client("document", db_path="/data/songs.lmdb")

Construct one client at startup and pass it to whatever needs persistence.
"""

import os

from songrec.core.config import settings
from songrec.errors import UnsupportedBackendError

from .base import FILTER_KEYS, Couple, DBClient, Song
from .lmdb_store import LMDBStore
from .sql_store import SQLStore

__all__ = [
    "new_db_client",
    "DBClient",
    "Couple",
    "Song",
    "FILTER_KEYS",
    "LMDBStore",
    "SQLStore",
]

DEFAULT_STORAGE_TYPE = "document"

# ── Storage type → backend mapping ────────────────────────────

_STORAGE_TYPES = {
    "relational": "relational",
    "sql": "relational",
    "sqlite": "relational",
    "document": "document",
    "lmdb": "document",
    "mongodb": "document",
}


def new_db_client(storage_type: str = None, **overrides) -> DBClient:
    """
    Create the storage backend for this process.

    Args:
        storage_type: "relational" or "document" (aliases accepted).
                      If omitted, reads STORAGE_TYPE; defaults to "document".
        **overrides:  Passed to the backend constructor (url / db_path,
                      map_size, id_factory, key_factory, ...).

    Raises:
        UnsupportedBackendError: unknown storage type
    """
    requested = (storage_type or settings.STORAGE_TYPE or DEFAULT_STORAGE_TYPE).lower().strip()
    backend = _STORAGE_TYPES.get(requested)

    if backend == "relational":
        if "url" not in overrides:
            os.makedirs(settings.DATA_DIR, exist_ok=True)
            overrides["url"] = settings.DATABASE_URL
        return SQLStore(**overrides)

    if backend == "document":
        overrides.setdefault("db_path", settings.LMDB_PATH)
        overrides.setdefault("map_size", settings.LMDB_MAP_SIZE)
        return LMDBStore(**overrides)

    raise UnsupportedBackendError(
        f"Unsupported storage type '{requested}'. "
        f"Supported: {', '.join(sorted(set(_STORAGE_TYPES.values())))}"
    )

"""Errors raised by the storage backends."""


class StorageError(Exception):
    """Base class for every storage failure."""


class WriteError(StorageError):
    """The engine failed to apply a write; nothing was persisted."""


class ReadError(StorageError):
    """The engine failed to serve a read."""


class DuplicateSongError(WriteError):
    """A song with the same id, key or ytID is already registered."""


class InvalidFilterError(StorageError):
    """Song lookup on a field outside FILTER_KEYS."""


class CorruptRecordError(StorageError):
    """A stored song key does not decompose into title and artist."""


class UnsupportedBackendError(StorageError, ValueError):
    """Unknown storage type or SQL dialect."""

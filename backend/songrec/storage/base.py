"""
Storage contract shared by every backend.

Every backend implements the same surface:

    store_fingerprints(batch)   → None         atomic upsert keyed by address
    get_couples(addresses)      → dict         address → [Couple] (0 or 1)
    total_songs()               → int
    register_song(t, a, yt)     → int          new song id
    get_song(field, value)      → (Song, bool) field in FILTER_KEYS
    delete_song_by_id(id)       → None         idempotent
    delete_storage(name)        → None         wipe a table/collection
    close()                     → None         idempotent
    get_storage_name()          → str

Backends satisfy the contract structurally; there is no shared base class.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Tuple

from songrec.errors import WriteError


# Fields a song can be looked up by
FILTER_KEYS = ("id", "ytID", "key")

# Collection / table names
FINGERPRINTS = "fingerprints"
SONGS = "songs"

UINT32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class Couple:
    """One occurrence of a fingerprint address: anchor time (ms) in a song."""
    anchor_time_ms: int
    song_id: int


@dataclass(frozen=True)
class Song:
    title: str = ""
    artist: str = ""
    youtube_id: str = ""


class DBClient(Protocol):
    """Capability surface of a storage backend."""

    def store_fingerprints(self, fingerprints: Mapping[int, Couple]) -> None: ...

    def get_couples(self, addresses: Iterable[int]) -> Dict[int, List[Couple]]: ...

    def total_songs(self) -> int: ...

    def register_song(self, title: str, artist: str, yt_id: str) -> int: ...

    def get_song(self, filter_key: str, value: Any) -> Tuple[Song, bool]: ...

    def get_song_by_id(self, song_id: int) -> Tuple[Song, bool]: ...

    def get_song_by_ytid(self, yt_id: str) -> Tuple[Song, bool]: ...

    def get_song_by_key(self, key: str) -> Tuple[Song, bool]: ...

    def delete_song_by_id(self, song_id: int) -> None: ...

    def delete_storage(self, name: str) -> None: ...

    def close(self) -> None: ...

    def get_storage_name(self) -> str: ...


def is_uint32(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= UINT32_MAX


def fingerprint_row(address: int, couple: Couple) -> Dict[str, int]:
    """
    Flatten one fingerprint into its stored fields.

    Raises:
        WriteError: if the address or a couple field is not a uint32
    """
    row = {
        "address": address,
        "anchorTimeMs": couple.anchor_time_ms,
        "songID": couple.song_id,
    }
    for field, value in row.items():
        if not is_uint32(value):
            raise WriteError(f"invalid {field} for address {address!r}: {value!r}")
    return row


def require_text(**fields: Any):
    """Raise WriteError unless every given song field is a str."""
    for field, value in fields.items():
        if not isinstance(value, str):
            raise WriteError(f"{field} must be a string, got {value!r}")

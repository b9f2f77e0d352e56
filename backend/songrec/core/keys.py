"""
Song identifiers and keys.

- generate_unique_id: random 32-bit song id (xxhash32 of a UUID4)
- generate_song_key:  deterministic "title---artist" key
- split_song_key:     inverse of generate_song_key
"""

import threading
import uuid
from typing import Set, Tuple

import xxhash

from songrec.errors import CorruptRecordError


KEY_SEPARATOR = "---"

# Ids handed out by this process; an id is never issued twice
_ISSUED_IDS: Set[int] = set()
_ISSUED_LOCK = threading.Lock()


def generate_unique_id() -> int:
    """Return a fresh song id in [1, 2**32)."""
    with _ISSUED_LOCK:
        while True:
            song_id = xxhash.xxh32_intdigest(uuid.uuid4().bytes)
            if song_id and song_id not in _ISSUED_IDS:
                _ISSUED_IDS.add(song_id)
                return song_id


def generate_song_key(title: str, artist: str) -> str:
    """Build the registry key for a song ("Song A", "Artist X" -> "Song A---Artist X")."""
    return f"{title}{KEY_SEPARATOR}{artist}"


def split_song_key(key: str) -> Tuple[str, str]:
    """
    Split a stored key back into (title, artist).

    Raises:
        CorruptRecordError: if the key does not split into exactly two parts
    """
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 2:
        raise CorruptRecordError(f"invalid key format: {key!r}")
    return parts[0], parts[1]

"""
LMDB Document Storage for Fingerprints and Songs

Document-store backend over a single LMDB environment:
- Named sub-databases act as collections (fingerprints, songs)
- Documents are JSON, keyed by packed little-endian uint32 (address / song id)
- Unique indexes on song key and ytID live in their own sub-databases
- Every operation runs in one LMDB transaction (single writer, MVCC readers)
"""

import json
import logging
import os
import struct
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import lmdb

from songrec.core.keys import generate_song_key, generate_unique_id, split_song_key
from songrec.errors import (
    DuplicateSongError,
    InvalidFilterError,
    ReadError,
    WriteError,
)
from songrec.storage.base import (
    FILTER_KEYS,
    FINGERPRINTS,
    SONGS,
    Couple,
    Song,
    fingerprint_row,
    is_uint32,
    require_text,
)

logger = logging.getLogger(__name__)

# Unique index sub-databases: field -> sub-database name
SONG_INDEXES = {
    "key": b"songs.key",
    "ytID": b"songs.ytID",
}

_UINT32 = struct.Struct('<I')


def pack_uint32(value: int) -> bytes:
    """Encode an address or song id as a 4-byte key."""
    return _UINT32.pack(value)


def index_key(value: Any) -> bytes:
    """Key of a unique index entry; prefixed so empty strings are valid keys."""
    return b"=" + str(value).encode()


def encode_document(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, separators=(',', ':')).encode()


def decode_document(data: bytes) -> Dict[str, Any]:
    return json.loads(bytes(data).decode())


class LMDBStore:
    """
    LMDB-based document store.

    Features:
    - Memory-mapped, no server process
    - Atomic batch upserts (one write transaction per batch)
    - Unique key / ytID indexes enforced with overwrite=False puts

    Usage:
        db = LMDBStore('/path/to/song-recognition.lmdb')
        db.store_fingerprints({100: Couple(500, 1)})
        db.get_couples([100, 300])   # {100: [Couple(500, 1)], 300: []}
        db.close()
    """

    def __init__(
        self,
        db_path: str,
        map_size: int = 500 * 1024 * 1024,  # 500 MB default
        id_factory: Callable[[], int] = generate_unique_id,
        key_factory: Callable[[str, str], str] = generate_song_key,
    ):
        """
        Open (or create) the LMDB environment and its collections.

        Args:
            db_path: Path to LMDB database directory
            map_size: Maximum database size in bytes
            id_factory: Produces new song ids
            key_factory: Builds the song key from (title, artist)
        """
        self.db_path = db_path
        self.id_factory = id_factory
        self.key_factory = key_factory

        os.makedirs(db_path, exist_ok=True)

        try:
            self.env = lmdb.open(
                db_path,
                map_size=map_size,
                max_dbs=8,          # collections + indexes, with room for strays
                meminit=False,      # Don't zero memory (faster)
            )
        except lmdb.Error as exc:
            raise WriteError(f"failed to open LMDB environment at {db_path}: {exc}") from exc

        self.init_collections()
        logger.info("Opened LMDB storage at %s", db_path)

    def init_collections(self):
        """Create the collection and index sub-databases if they don't exist."""
        try:
            with self.env.begin(write=True) as txn:
                self.fingerprints_db = self.env.open_db(FINGERPRINTS.encode(), txn=txn)
                self.songs_db = self.env.open_db(SONGS.encode(), txn=txn)
                self.index_dbs = {
                    field: self.env.open_db(name, txn=txn)
                    for field, name in SONG_INDEXES.items()
                }
        except lmdb.Error as exc:
            raise WriteError(f"failed to initialize collections: {exc}") from exc

    # ── Fingerprints ──────────────────────────────────────────

    def store_fingerprints(self, fingerprints: Mapping[int, Couple]):
        """
        Replace-or-insert a batch of fingerprints in one write transaction.

        Args:
            fingerprints: address -> Couple

        Raises:
            WriteError: on any failure (transaction aborted, nothing written)
        """
        if not fingerprints:
            return

        try:
            with self.env.begin(write=True) as txn:
                for address, couple in fingerprints.items():
                    document = fingerprint_row(address, couple)
                    txn.put(pack_uint32(address), encode_document(document), db=self.fingerprints_db)
        except (lmdb.Error, struct.error) as exc:
            logger.error("Fingerprint batch of %d aborted: %s", len(fingerprints), exc)
            raise WriteError(f"error upserting fingerprints: {exc}") from exc

    def get_couples(self, addresses: Iterable[int]) -> Dict[int, List[Couple]]:
        """
        Retrieve the stored couple for each address (single read transaction).

        Returns:
            Dictionary of address -> [Couple] (empty list when not stored)
        """
        couples: Dict[int, List[Couple]] = {}

        try:
            with self.env.begin(db=self.fingerprints_db) as txn:
                for address in addresses:
                    value = self._get_uint32(txn, address, self.fingerprints_db)
                    if value is None:
                        couples[address] = []
                        continue
                    document = decode_document(value)
                    couples[address] = [Couple(document["anchorTimeMs"], document["songID"])]
        except lmdb.Error as exc:
            raise ReadError(f"error retrieving fingerprints: {exc}") from exc

        return couples

    @staticmethod
    def _get_uint32(txn, value: Any, db) -> Optional[bytes]:
        """Get by uint32 key; values that are not a uint32 are simply absent."""
        if not is_uint32(value):
            return None
        return txn.get(pack_uint32(value), db=db)

    # ── Songs ─────────────────────────────────────────────────

    def total_songs(self) -> int:
        try:
            with self.env.begin() as txn:
                return txn.stat(self.songs_db)['entries']
        except lmdb.Error as exc:
            raise ReadError(f"failed to count songs: {exc}") from exc

    def register_song(self, title: str, artist: str, yt_id: str) -> int:
        """
        Register a song and return its new id.

        The song document and both index entries are written in one
        transaction; a clash on any of them aborts all three.

        Raises:
            DuplicateSongError: id, key or ytID already registered
            WriteError: non-string field, id outside uint32, or any other engine failure
        """
        require_text(title=title, artist=artist, ytID=yt_id)
        song_id = self.id_factory()
        key = self.key_factory(title, artist)
        require_text(key=key)
        if not is_uint32(song_id):
            raise WriteError(f"song id is not a uint32: {song_id!r}")
        document = {"id": song_id, "key": key, "ytID": yt_id}

        try:
            with self.env.begin(write=True) as txn:
                inserted = txn.put(
                    pack_uint32(song_id), encode_document(document),
                    overwrite=False, db=self.songs_db,
                )
                for field, index_db in self.index_dbs.items():
                    inserted = inserted and txn.put(
                        index_key(document[field]), pack_uint32(song_id),
                        overwrite=False, db=index_db,
                    )
                if not inserted:
                    raise DuplicateSongError(
                        f"song with ytID or key already exists: {key!r} / {yt_id!r}"
                    )
        except (lmdb.Error, struct.error) as exc:
            raise WriteError(f"failed to register song: {exc}") from exc

        return song_id

    def get_song(self, filter_key: str, value: Any) -> Tuple[Song, bool]:
        """
        Look up one song by id, ytID or key.

        Returns:
            (Song, True) when found, (Song(), False) otherwise

        Raises:
            InvalidFilterError: filter_key not in FILTER_KEYS
            CorruptRecordError: stored key is not "title---artist"
            ReadError: engine failure
        """
        if filter_key not in FILTER_KEYS:
            raise InvalidFilterError(f"invalid filter key: {filter_key!r}")

        try:
            with self.env.begin() as txn:
                if filter_key == "id":
                    data = self._get_uint32(txn, value, self.songs_db)
                else:
                    song_key = txn.get(index_key(value), db=self.index_dbs[filter_key])
                    data = txn.get(song_key, db=self.songs_db) if song_key else None
        except lmdb.Error as exc:
            raise ReadError(f"failed to retrieve song: {exc}") from exc

        if data is None:
            return Song(), False

        document = decode_document(data)
        title, artist = split_song_key(document["key"])
        return Song(title=title, artist=artist, youtube_id=document["ytID"]), True

    def get_song_by_id(self, song_id: int) -> Tuple[Song, bool]:
        return self.get_song("id", song_id)

    def get_song_by_ytid(self, yt_id: str) -> Tuple[Song, bool]:
        return self.get_song("ytID", yt_id)

    def get_song_by_key(self, key: str) -> Tuple[Song, bool]:
        return self.get_song("key", key)

    def delete_song_by_id(self, song_id: int):
        """Delete a song and its index entries. Unknown ids are ignored."""
        try:
            with self.env.begin(write=True) as txn:
                data = self._get_uint32(txn, song_id, self.songs_db)
                if data is None:
                    return
                document = decode_document(data)
                for field, index_db in self.index_dbs.items():
                    txn.delete(index_key(document[field]), db=index_db)
                txn.delete(pack_uint32(song_id), db=self.songs_db)
        except lmdb.Error as exc:
            raise WriteError(f"failed to delete song: {exc}") from exc

    # ── Maintenance ───────────────────────────────────────────

    def delete_storage(self, name: str):
        """
        Remove every document of a collection.

        fingerprints and songs (with its indexes) are emptied in place;
        any other named sub-database is dropped if it exists.
        """
        logger.warning("Dropping collection %s from LMDB storage", name)
        try:
            with self.env.begin(write=True) as txn:
                if name == FINGERPRINTS:
                    txn.drop(self.fingerprints_db, delete=False)
                elif name == SONGS:
                    txn.drop(self.songs_db, delete=False)
                    for index_db in self.index_dbs.values():
                        txn.drop(index_db, delete=False)
                else:
                    self._drop_named(txn, name)
        except lmdb.Error as exc:
            raise WriteError(f"error deleting collection {name}: {exc}") from exc

    def _drop_named(self, txn, name: str):
        for field, index_name in SONG_INDEXES.items():
            if name.encode() == index_name:
                txn.drop(self.index_dbs[field], delete=False)
                return
        if txn.get(name.encode()) is None:
            return
        db = self.env.open_db(name.encode(), txn=txn, create=False)
        txn.drop(db, delete=True)

    def get_storage_name(self) -> str:
        return "LMDB"

    def close(self):
        """Close database environment."""
        if self.env:
            self.env.close()
            self.env = None

    def __enter__(self):
        """Context manager support."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager support."""
        self.close()

    def __repr__(self):
        return f"<LMDBStore {self.db_path}>"

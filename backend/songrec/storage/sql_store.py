"""
Relational Storage Backend for Fingerprints and Songs

SQLAlchemy Core over any supported SQL engine (SQLite by default):
- fingerprints table keyed by address, upserted in one transaction per batch
- songs table with unique key / ytID constraints
- dialect-specific ON CONFLICT / ON DUPLICATE KEY upserts

Isolation is the engine default (SQLite: serializable, PostgreSQL: read
committed). A batch is all-or-nothing; concurrent readers may or may not see
it before commit, depending on that level.

SCHEMA:

  CREATE TABLE fingerprints (
      address      BIGINT PRIMARY KEY,   -- 32-bit fingerprint hash
      anchorTimeMs BIGINT NOT NULL,
      songID       BIGINT NOT NULL,
      CHECK (address BETWEEN 0 AND 4294967295),
      CHECK (anchorTimeMs >= 0 AND songID >= 0)
  );

  CREATE TABLE songs (
      id    BIGINT PRIMARY KEY,
      key   VARCHAR UNIQUE NOT NULL,     -- "title---artist"
      ytID  VARCHAR UNIQUE NOT NULL
  );
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

import sqlalchemy
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from songrec.core.keys import generate_song_key, generate_unique_id, split_song_key
from songrec.errors import (
    DuplicateSongError,
    InvalidFilterError,
    ReadError,
    UnsupportedBackendError,
    WriteError,
)
from songrec.storage.base import (
    FILTER_KEYS,
    FINGERPRINTS,
    SONGS,
    UINT32_MAX,
    Couple,
    Song,
    fingerprint_row,
    is_uint32,
    require_text,
)

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement; stay well below it
ADDRESS_CHUNK_SIZE = 500

# Driver messages for unique / primary key violations (SQLite, PostgreSQL, MySQL)
_UNIQUE_VIOLATIONS = ("UNIQUE constraint failed", "duplicate key value", "Duplicate entry")

_STORAGE_NAMES = {
    "sqlite": "SQLite",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "mariadb": "MySQL",
}

metadata = sqlalchemy.MetaData()

fingerprints_table = sqlalchemy.Table(
    FINGERPRINTS,
    metadata,
    sqlalchemy.Column("address", sqlalchemy.BigInteger, primary_key=True, autoincrement=False),
    sqlalchemy.Column("anchorTimeMs", sqlalchemy.BigInteger, nullable=False),
    sqlalchemy.Column("songID", sqlalchemy.BigInteger, nullable=False),
)
fingerprints_table.append_constraint(sqlalchemy.CheckConstraint(
    sqlalchemy.and_(fingerprints_table.c.address >= 0, fingerprints_table.c.address <= UINT32_MAX),
    name="ck_fingerprints_address",
))
fingerprints_table.append_constraint(sqlalchemy.CheckConstraint(
    sqlalchemy.and_(fingerprints_table.c.anchorTimeMs >= 0, fingerprints_table.c.songID >= 0),
    name="ck_fingerprints_couple",
))

songs_table = sqlalchemy.Table(
    SONGS,
    metadata,
    sqlalchemy.Column("id", sqlalchemy.BigInteger, primary_key=True, autoincrement=False),
    sqlalchemy.Column("key", sqlalchemy.String(512), unique=True, nullable=False),
    sqlalchemy.Column("ytID", sqlalchemy.String(64), unique=True, nullable=False),
)


class SQLStore:
    """
    Relational backend.

    Usage:
        db = SQLStore("sqlite:///song-recognition.db")
        db.store_fingerprints({100: Couple(500, 1)})
        db.get_couples([100, 300])   # {100: [Couple(500, 1)], 300: []}
        db.close()
    """

    def __init__(
        self,
        url: str,
        id_factory: Callable[[], int] = generate_unique_id,
        key_factory: Callable[[str, str], str] = generate_song_key,
        **engine_options,
    ):
        """
        Connect to the database and create missing tables.

        Args:
            url: SQLAlchemy database URL (sqlite:///path, postgresql://...)
            id_factory: Produces new song ids
            key_factory: Builds the song key from (title, artist)
            **engine_options: Passed through to sqlalchemy.create_engine
        """
        try:
            self.engine = sqlalchemy.create_engine(url, **engine_options)
        except (SQLAlchemyError, ValueError) as exc:
            raise UnsupportedBackendError(f"cannot create SQL engine for {url!r}: {exc}") from exc

        dialect = self.engine.dialect.name
        if dialect not in _STORAGE_NAMES:
            self.engine.dispose()
            raise UnsupportedBackendError(f"unsupported SQL dialect: {dialect}")

        self.dialect = dialect
        self.id_factory = id_factory
        self.key_factory = key_factory

        self.init_tables()
        logger.info("Opened %s storage at %s", self.get_storage_name(), self.engine.url)

    def init_tables(self):
        """Create the fingerprints and songs tables if they don't exist."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise WriteError(f"failed to initialize tables: {exc}") from exc

    def _upsert_fingerprint(self):
        """INSERT ... keyed by address, replacing anchorTimeMs/songID on conflict."""
        if self.dialect == "sqlite":
            stmt = sqlite.insert(fingerprints_table)
            return stmt.on_conflict_do_update(
                index_elements=[fingerprints_table.c.address],
                set_={"anchorTimeMs": stmt.excluded.anchorTimeMs, "songID": stmt.excluded.songID},
            )
        if self.dialect == "postgresql":
            stmt = postgresql.insert(fingerprints_table)
            return stmt.on_conflict_do_update(
                index_elements=[fingerprints_table.c.address],
                set_={"anchorTimeMs": stmt.excluded.anchorTimeMs, "songID": stmt.excluded.songID},
            )
        stmt = mysql.insert(fingerprints_table)
        return stmt.on_duplicate_key_update(
            anchorTimeMs=stmt.inserted.anchorTimeMs,
            songID=stmt.inserted.songID,
        )

    # ── Fingerprints ──────────────────────────────────────────

    def store_fingerprints(self, fingerprints: Mapping[int, Couple]):
        """
        Upsert a batch of fingerprints in a single transaction.

        Args:
            fingerprints: address -> Couple

        Raises:
            WriteError: invalid field, or any engine or constraint failure (batch rolled back)
        """
        rows = [fingerprint_row(address, couple) for address, couple in fingerprints.items()]
        if not rows:
            return

        try:
            with self.engine.begin() as conn:
                conn.execute(self._upsert_fingerprint(), rows)
        except (SQLAlchemyError, OverflowError) as exc:
            logger.error("Fingerprint batch of %d rolled back: %s", len(rows), exc)
            raise WriteError(f"error upserting fingerprints: {exc}") from exc

    def get_couples(self, addresses: Iterable[int]) -> Dict[int, List[Couple]]:
        """
        Retrieve the stored couple for each address.

        Returns:
            Dictionary of address -> [Couple] (empty list when not stored)
        """
        addresses = list(addresses)
        couples: Dict[int, List[Couple]] = {address: [] for address in addresses}
        unique = list(couples)

        try:
            with self.engine.connect() as conn:
                for start in range(0, len(unique), ADDRESS_CHUNK_SIZE):
                    chunk = unique[start:start + ADDRESS_CHUNK_SIZE]
                    query = sqlalchemy.select(
                        fingerprints_table.c.address,
                        fingerprints_table.c.anchorTimeMs,
                        fingerprints_table.c.songID,
                    ).where(fingerprints_table.c.address.in_(chunk))
                    for row in conn.execute(query):
                        couples[row.address].append(Couple(row.anchorTimeMs, row.songID))
        except SQLAlchemyError as exc:
            raise ReadError(f"error retrieving fingerprints: {exc}") from exc

        return couples

    # ── Songs ─────────────────────────────────────────────────

    def total_songs(self) -> int:
        query = sqlalchemy.select(sqlalchemy.func.count()).select_from(songs_table)
        try:
            with self.engine.connect() as conn:
                return conn.execute(query).scalar_one()
        except SQLAlchemyError as exc:
            raise ReadError(f"failed to count songs: {exc}") from exc

    def register_song(self, title: str, artist: str, yt_id: str) -> int:
        """
        Register a song and return its new id.

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

        try:
            with self.engine.begin() as conn:
                conn.execute(songs_table.insert().values(id=song_id, key=key, ytID=yt_id))
        except IntegrityError as exc:
            if not _is_unique_violation(exc):
                raise WriteError(f"failed to register song: {exc}") from exc
            raise DuplicateSongError(f"song with ytID or key already exists: {key!r} / {yt_id!r}") from exc
        except (SQLAlchemyError, OverflowError) as exc:
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

        # Ids are uint32; anything else never matches
        if filter_key == "id" and not is_uint32(value):
            return Song(), False

        query = sqlalchemy.select(songs_table.c.key, songs_table.c.ytID).where(
            songs_table.c[filter_key] == value
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).first()
        except SQLAlchemyError as exc:
            raise ReadError(f"failed to retrieve song: {exc}") from exc

        if row is None:
            return Song(), False

        title, artist = split_song_key(row.key)
        return Song(title=title, artist=artist, youtube_id=row.ytID), True

    def get_song_by_id(self, song_id: int) -> Tuple[Song, bool]:
        return self.get_song("id", song_id)

    def get_song_by_ytid(self, yt_id: str) -> Tuple[Song, bool]:
        return self.get_song("ytID", yt_id)

    def get_song_by_key(self, key: str) -> Tuple[Song, bool]:
        return self.get_song("key", key)

    def delete_song_by_id(self, song_id: int):
        if not is_uint32(song_id):
            return
        try:
            with self.engine.begin() as conn:
                conn.execute(songs_table.delete().where(songs_table.c.id == song_id))
        except SQLAlchemyError as exc:
            raise WriteError(f"failed to delete song: {exc}") from exc

    # ── Maintenance ───────────────────────────────────────────

    def delete_storage(self, name: str):
        """
        Drop a table. The fingerprints and songs tables are recreated empty.
        """
        table = metadata.tables.get(name)
        if table is None:
            table = sqlalchemy.Table(name, sqlalchemy.MetaData())

        logger.warning("Dropping table %s from %s storage", name, self.get_storage_name())
        try:
            table.drop(self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise WriteError(f"error deleting table {name}: {exc}") from exc

        if name in metadata.tables:
            self.init_tables()

    def get_storage_name(self) -> str:
        return _STORAGE_NAMES[self.dialect]

    def close(self):
        """Dispose of the connection pool."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"<SQLStore {self.dialect}>"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True when the integrity failure comes from a unique or primary key constraint."""
    message = str(exc.orig)
    return any(marker in message for marker in _UNIQUE_VIOLATIONS)

import itertools

import pytest

from songrec.errors import (
    CorruptRecordError,
    DuplicateSongError,
    InvalidFilterError,
    WriteError,
)
from songrec.storage import Couple, Song


def test_get_couples_returns_stored_and_empty(db):
    db.store_fingerprints({
        100: Couple(anchor_time_ms=500, song_id=1),
        200: Couple(anchor_time_ms=900, song_id=2),
    })

    couples = db.get_couples([100, 200, 300])

    assert couples == {
        100: [Couple(500, 1)],
        200: [Couple(900, 2)],
        300: [],
    }


def test_round_trip_large_batch(db):
    batch = {address: Couple(address * 10, address % 7) for address in range(1, 1201)}
    db.store_fingerprints(batch)

    couples = db.get_couples(list(batch))

    assert couples == {address: [couple] for address, couple in batch.items()}


def test_same_address_overwrites(db):
    db.store_fingerprints({42: Couple(100, 1)})
    db.store_fingerprints({42: Couple(200, 2)})

    assert db.get_couples([42]) == {42: [Couple(200, 2)]}


def test_empty_batch_and_empty_query(db):
    db.store_fingerprints({})
    assert db.get_couples([]) == {}


def test_address_edges_of_uint32(db):
    db.store_fingerprints({0: Couple(1, 1), 0xFFFFFFFF: Couple(2, 2)})

    assert db.get_couples([0, 0xFFFFFFFF]) == {0: [Couple(1, 1)], 0xFFFFFFFF: [Couple(2, 2)]}


@pytest.mark.parametrize("bad_couple", [Couple(None, 3), Couple(10, -1)])
def test_failed_batch_writes_nothing(db, bad_couple):
    db.store_fingerprints({1: Couple(5, 5)})

    with pytest.raises(WriteError):
        db.store_fingerprints({
            1: Couple(99, 99),
            2: Couple(20, 2),
            3: bad_couple,
        })

    assert db.get_couples([1, 2, 3]) == {1: [Couple(5, 5)], 2: [], 3: []}


def test_address_out_of_range_is_rejected(db):
    with pytest.raises(WriteError):
        db.store_fingerprints({7: Couple(1, 1), 2 ** 32: Couple(1, 1)})

    assert db.get_couples([7]) == {7: []}


@pytest.mark.parametrize("bad_couple", [
    Couple(2 ** 64, 1),
    Couple(1, 2 ** 32),
    Couple(-1, 1),
    Couple(True, 1),
    Couple("10", 1),
])
def test_couple_fields_out_of_range_are_rejected(db, bad_couple):
    with pytest.raises(WriteError):
        db.store_fingerprints({7: Couple(1, 1), 8: bad_couple})

    assert db.get_couples([7, 8]) == {7: [], 8: []}


def test_store_fingerprints_by_keyword(db):
    db.store_fingerprints(fingerprints={9: Couple(90, 1)})

    assert db.get_couples(addresses=[9]) == {9: [Couple(90, 1)]}


def test_register_and_lookup_song(db):
    song_id = db.register_song("Song A", "Artist X", "yt123")

    expected = Song(title="Song A", artist="Artist X", youtube_id="yt123")
    assert db.get_song_by_key("Song A---Artist X") == (expected, True)
    assert db.get_song_by_id(song_id) == (expected, True)
    assert db.get_song_by_ytid("yt123") == (expected, True)
    assert db.get_song("ytID", "yt123") == (expected, True)
    assert db.total_songs() == 1


def test_delete_song(db):
    song_id = db.register_song("Song A", "Artist X", "yt123")

    db.delete_song_by_id(song_id)

    assert db.get_song_by_id(song_id) == (Song(), False)
    assert db.get_song_by_key("Song A---Artist X") == (Song(), False)
    assert db.get_song_by_ytid("yt123") == (Song(), False)
    assert db.total_songs() == 0


def test_deleted_song_frees_key_and_ytid(db):
    song_id = db.register_song("Song A", "Artist X", "yt123")
    db.delete_song_by_id(song_id)

    new_id = db.register_song("Song A", "Artist X", "yt123")

    assert new_id != song_id
    assert db.get_song_by_id(new_id)[1] is True


def test_delete_unknown_song_is_noop(db):
    db.delete_song_by_id(123456)
    assert db.total_songs() == 0


@pytest.mark.parametrize("title, artist, yt_id", [
    ("Song A", "Artist X", None),
    (None, "Artist X", "yt1"),
    ("Song A", 7, "yt1"),
])
def test_non_string_song_fields_are_rejected(db, title, artist, yt_id):
    with pytest.raises(WriteError) as excinfo:
        db.register_song(title, artist, yt_id)

    assert not isinstance(excinfo.value, DuplicateSongError)
    assert db.total_songs() == 0


def test_id_outside_uint32_is_rejected(make_db):
    db = make_db(id_factory=lambda: 2 ** 40)

    with pytest.raises(WriteError):
        db.register_song("Song A", "Artist X", "yt1")

    assert db.total_songs() == 0


@pytest.mark.parametrize("song_id", ["not-a-number", -1, 2 ** 40, 42.0, True])
def test_non_uint32_id_is_not_found(db, song_id):
    assert db.get_song_by_id(song_id) == (Song(), False)


def test_id_given_as_string_is_not_found(db):
    song_id = db.register_song("Song A", "Artist X", "yt1")

    assert db.get_song_by_id(str(song_id)) == (Song(), False)
    db.delete_song_by_id(str(song_id))
    assert db.total_songs() == 1


def test_not_found_is_not_an_error(db):
    assert db.get_song_by_id(9999999) == (Song(), False)
    assert db.get_song_by_ytid("missing") == (Song(), False)
    assert db.get_song_by_key("No---One") == (Song(), False)


def test_duplicate_title_and_artist(db):
    db.register_song("Song A", "Artist X", "yt1")

    with pytest.raises(DuplicateSongError):
        db.register_song("Song A", "Artist X", "yt2")

    assert db.total_songs() == 1
    assert db.get_song_by_ytid("yt2") == (Song(), False)


def test_duplicate_ytid(db):
    db.register_song("Song A", "Artist X", "yt1")

    with pytest.raises(DuplicateSongError):
        db.register_song("Song B", "Artist Y", "yt1")

    assert db.total_songs() == 1
    assert db.get_song_by_key("Song B---Artist Y") == (Song(), False)


def test_id_collision_is_duplicate(make_db):
    db = make_db(id_factory=lambda: 42)
    db.register_song("Song A", "Artist X", "yt1")

    with pytest.raises(DuplicateSongError):
        db.register_song("Song B", "Artist Y", "yt2")

    assert db.get_song_by_id(42) == (Song("Song A", "Artist X", "yt1"), True)
    assert db.get_song_by_key("Song B---Artist Y") == (Song(), False)
    assert db.get_song_by_ytid("yt2") == (Song(), False)


def test_duplicate_is_a_write_error(db):
    db.register_song("Song A", "Artist X", "yt1")

    with pytest.raises(WriteError):
        db.register_song("Song A", "Artist X", "yt1")


@pytest.mark.parametrize("field", ["address", "_id", "title", "", "ID"])
def test_invalid_filter(db, field):
    with pytest.raises(InvalidFilterError):
        db.get_song(field, 1)


def test_corrupt_key_is_reported(make_db):
    db = make_db(key_factory=lambda title, artist: f"{title}---{artist}---extra")
    song_id = db.register_song("Song A", "Artist X", "yt1")

    with pytest.raises(CorruptRecordError):
        db.get_song_by_id(song_id)


def test_ids_are_unique(db):
    ids = [db.register_song(f"Song {i}", "Artist", f"yt{i}") for i in range(20)]

    assert len(set(ids)) == 20
    assert all(0 < song_id < 2 ** 32 for song_id in ids)
    assert db.total_songs() == 20


def test_delete_storage_fingerprints(db):
    db.store_fingerprints({1: Couple(1, 1)})
    db.register_song("Song A", "Artist X", "yt1")

    db.delete_storage("fingerprints")

    assert db.get_couples([1]) == {1: []}
    assert db.total_songs() == 1
    db.store_fingerprints({1: Couple(2, 2)})
    assert db.get_couples([1]) == {1: [Couple(2, 2)]}


def test_delete_storage_songs_keeps_constraints(db):
    db.register_song("Song A", "Artist X", "yt1")

    db.delete_storage("songs")

    assert db.total_songs() == 0
    db.register_song("Song A", "Artist X", "yt1")
    with pytest.raises(DuplicateSongError):
        db.register_song("Song A", "Artist X", "yt2")


def test_delete_unknown_storage_is_noop(db):
    db.delete_storage("does_not_exist")
    assert db.total_songs() == 0


def test_close_twice(db):
    db.close()
    db.close()


def test_context_manager_closes(make_db):
    with make_db() as db:
        db.store_fingerprints({1: Couple(1, 1)})
    db.close()


def test_repeated_addresses_in_query(db):
    db.store_fingerprints({5: Couple(50, 1)})

    assert db.get_couples(itertools.chain([5], [5, 6])) == {5: [Couple(50, 1)], 6: []}

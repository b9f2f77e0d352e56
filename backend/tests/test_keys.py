import pytest

from songrec.core.keys import generate_song_key, generate_unique_id, split_song_key
from songrec.errors import CorruptRecordError


def test_song_key_format():
    assert generate_song_key("Song A", "Artist X") == "Song A---Artist X"


def test_split_song_key():
    assert split_song_key("Song A---Artist X") == ("Song A", "Artist X")
    assert split_song_key("---") == ("", "")


@pytest.mark.parametrize("key", ["no separator", "a---b---c", "Title-Artist"])
def test_split_rejects_malformed_keys(key):
    with pytest.raises(CorruptRecordError):
        split_song_key(key)


def test_unique_ids_are_uint32_and_never_repeat():
    ids = [generate_unique_id() for _ in range(1000)]

    assert len(set(ids)) == len(ids)
    assert all(isinstance(song_id, int) and 0 < song_id <= 0xFFFFFFFF for song_id in ids)

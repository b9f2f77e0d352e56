import pytest

from songrec.storage import new_db_client


@pytest.fixture(params=["relational", "document"])
def make_db(request, tmp_path):
    """Build a fresh client of each backend variant; closed after the test."""
    clients = []

    def _make(**overrides):
        if request.param == "relational":
            overrides.setdefault("url", f"sqlite:///{tmp_path / 'songs.db'}")
        else:
            overrides.setdefault("db_path", str(tmp_path / "songs.lmdb"))
            overrides.setdefault("map_size", 16 * 1024 * 1024)
        client = new_db_client(request.param, **overrides)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


@pytest.fixture
def db(make_db):
    return make_db()

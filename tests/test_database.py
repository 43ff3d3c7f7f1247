import database
from database import FileBackend, MemoryBackend, MongoBackend
from schemas import Course
from store import RecordStore


class FakeCollection:
    def __init__(self):
        self.docs = {}

    def find_one(self, query):
        return self.docs.get(query["_id"])

    def replace_one(self, query, doc, upsert=False):
        assert upsert
        self.docs[query["_id"]] = doc


def test_memory_backend():
    backend = MemoryBackend()
    assert backend.get("k") is None
    backend.set("k", b"one")
    backend.set("k", b"two")
    assert backend.get("k") == b"two"


def test_file_backend_overwrites(tmp_path):
    backend = FileBackend(str(tmp_path / "data"))
    assert backend.get("autom8-store") is None
    backend.set("autom8-store", b'{"courses": []}')
    backend.set("autom8-store", b'{"students": []}')
    assert backend.get("autom8-store") == b'{"students": []}'
    assert sorted(p.name for p in (tmp_path / "data").iterdir()) == ["autom8-store.json"]


def test_mongo_backend_upserts_by_key():
    collection = FakeCollection()
    backend = MongoBackend(collection)
    assert backend.get("autom8-store") is None
    backend.set("autom8-store", b"blob")
    backend.set("autom8-store", b"blob2")
    assert backend.get("autom8-store") == b"blob2"
    assert list(collection.docs) == ["autom8-store"]


def test_store_round_trip_through_file_backend(tmp_path):
    course = Course(id="c1", code="CS101", name="Intro")
    RecordStore(FileBackend(str(tmp_path))).add_course(course)
    fresh = RecordStore(FileBackend(str(tmp_path)))
    assert fresh.load_from_storage()
    assert fresh.get_course("c1") == course


def test_get_backend_defaults_to_files(monkeypatch, tmp_path):
    monkeypatch.setattr(database.Config, "DATABASE_URL", None)
    monkeypatch.setattr(database.Config, "STORE_DIR", str(tmp_path))
    backend = database.get_backend()
    assert isinstance(backend, FileBackend)
    assert backend.directory == str(tmp_path)

"""
Tests for storage backends and transaction support
"""

import pytest
import threading
from datetime import datetime, timezone
from dataclasses import dataclass

from process_flow.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage
)


test_data = {
    "id": "record_1",
    "name": "Test Record",
    "amount": "100.50",
    "tags": ["a", "b"]
}


@dataclass
class SampleRecord(StorageRecord):
    name: str
    count: int = 0


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Both backends behind the same interface"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestBasicOperations:
    """CRUD behaviour shared by all backends"""

    def test_save_and_load(self, storage):
        storage.save("items", "record_1", test_data)
        assert storage.load("items", "record_1") == test_data
        assert storage.load("items", "missing") is None

    def test_exists_and_delete(self, storage):
        storage.save("items", "record_1", test_data)
        assert storage.exists("items", "record_1")
        assert storage.delete("items", "record_1") is True
        assert not storage.exists("items", "record_1")
        assert storage.delete("items", "record_1") is False

    def test_loaded_records_are_copies(self, storage):
        storage.save("items", "record_1", test_data)
        loaded = storage.load("items", "record_1")
        loaded["tags"].append("c")
        assert storage.load("items", "record_1")["tags"] == ["a", "b"]

    def test_find_filters_on_fields(self, storage):
        storage.save("items", "1", {"id": "1", "kind": "x", "owner": "ana"})
        storage.save("items", "2", {"id": "2", "kind": "y", "owner": "ana"})
        storage.save("items", "3", {"id": "3", "kind": "x", "owner": "bruno"})

        assert {r["id"] for r in storage.find("items", {"owner": "ana"})} == {"1", "2"}
        assert [r["id"] for r in storage.find("items", {"kind": "x", "owner": "bruno"})] == ["3"]
        assert storage.find("items", {"kind": "z"}) == []

    def test_count_and_clear(self, storage):
        for i in range(3):
            storage.save("items", str(i), {"id": str(i)})
        assert storage.count("items") == 3
        storage.clear_table("items")
        assert storage.count("items") == 0
        assert storage.load_all("items") == []


class TestAtomic:
    """Transactions through the atomic() context manager"""

    def test_commit_on_success(self, storage):
        with storage.atomic():
            storage.save("items", "1", {"id": "1"})
            storage.save("items", "2", {"id": "2"})
        assert storage.count("items") == 2
        assert not storage.in_transaction

    def test_rollback_on_exception(self, storage):
        storage.save("items", "1", {"id": "1", "value": "original"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("items", "1", {"id": "1", "value": "changed"})
                storage.save("items", "2", {"id": "2"})
                raise RuntimeError("boom")

        assert storage.load("items", "1")["value"] == "original"
        assert not storage.exists("items", "2")
        assert not storage.in_transaction

    def test_nested_blocks_join_outer_transaction(self, storage):
        storage.save("items", "seed", {"id": "seed"})

        with pytest.raises(ValueError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("items", "inner", {"id": "inner"})
                assert storage.exists("items", "inner")
                raise ValueError("outer fails")

        assert not storage.exists("items", "inner")
        assert storage.exists("items", "seed")

    def test_delete_rolled_back(self, storage):
        storage.save("items", "1", {"id": "1"})
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.delete("items", "1")
                raise RuntimeError("boom")
        assert storage.exists("items", "1")


class TestSequences:
    """Atomic named counters"""

    def test_next_sequence_increments(self, storage):
        assert storage.next_sequence("process_number") == 1
        assert storage.next_sequence("process_number") == 2
        assert storage.next_sequence("other") == 1

    def test_sequence_rolled_back_with_transaction(self, storage):
        storage.next_sequence("process_number")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.next_sequence("process_number")
                raise RuntimeError("boom")
        assert storage.next_sequence("process_number") == 2

    def test_concurrent_sequence_values_are_unique(self, storage):
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                value = storage.next_sequence("shared")
                with lock:
                    results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == list(range(1, 81))


class TestStorageRecord:
    """Dataclass records to and from documents"""

    def test_record_round_trip_parses_timestamps(self):
        now = datetime.now(timezone.utc)
        record = SampleRecord(id="r1", created_at=now, updated_at=now, name="Sample", count=3)

        data = record.to_dict()
        assert data["created_at"] == now.isoformat()

        restored = SampleRecord.from_dict(data)
        assert restored == record


class TestSQLitePersistence:
    """SQLite-specific behaviour"""

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteStorage(path)
        first.save("items", "1", {"id": "1", "name": "kept"})
        first.close()

        second = SQLiteStorage(path)
        assert second.load("items", "1") == {"id": "1", "name": "kept"}
        second.close()

    def test_load_all_keeps_insertion_order(self):
        storage = SQLiteStorage(":memory:")
        for key in ["c", "a", "b"]:
            storage.save("items", key, {"id": key})
        assert [r["id"] for r in storage.load_all("items")] == ["c", "a", "b"]
        storage.close()


class TestCreateStorage:
    """Backend selection from a database URL"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_in_memory_url(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file_url(self, tmp_path):
        path = tmp_path / "app.db"
        storage = create_storage(f"sqlite:///{path}")
        assert isinstance(storage, SQLiteStorage)
        storage.save("items", "1", {"id": "1"})
        storage.close()
        assert path.exists()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/db")

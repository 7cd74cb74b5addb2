"""
Tests for storage backends and transaction support
"""

import pytest
from datetime import datetime, timezone

from gold_lending.storage import InMemoryStorage, SQLiteStorage, StorageInterface


# Test data
test_data = {
    "id": "test_001",
    "loan_code": "GL240101",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "loans.db")
    yield backend
    backend.close()


class TestStorageOperations:
    """Test basic CRUD operations against every backend"""

    def test_is_storage_interface(self, storage):
        assert isinstance(storage, StorageInterface)

    def test_save_and_load(self, storage):
        storage.save("loans", "test_001", test_data)
        assert storage.load("loans", "test_001") == test_data
        assert storage.load("loans", "missing") is None

    def test_exists_and_delete(self, storage):
        storage.save("loans", "test_001", test_data)
        assert storage.exists("loans", "test_001")
        assert storage.delete("loans", "test_001")
        assert not storage.exists("loans", "test_001")
        assert not storage.delete("loans", "test_001")

    def test_load_all_in_insertion_order(self, storage):
        for i in range(3):
            storage.save("loans", f"r{i}", {"id": f"r{i}", "n": i})
        assert [r["n"] for r in storage.load_all("loans")] == [0, 1, 2]
        assert storage.count("loans") == 3

    def test_find(self, storage):
        storage.save("loans", "a", {"id": "a", "customer_id": "C1", "status": "active"})
        storage.save("loans", "b", {"id": "b", "customer_id": "C2", "status": "active"})
        storage.save("loans", "c", {"id": "c", "customer_id": "C1", "status": "closed"})

        assert {r["id"] for r in storage.find("loans", {"customer_id": "C1"})} == {"a", "c"}
        assert [r["id"] for r in storage.find("loans", {"customer_id": "C1", "status": "closed"})] == ["c"]
        assert len(storage.find("loans", {})) == 3

    def test_save_replaces(self, storage):
        storage.save("loans", "a", {"id": "a", "version": 1})
        storage.save("loans", "a", {"id": "a", "version": 2})
        assert storage.load("loans", "a")["version"] == 2
        assert storage.count("loans") == 1

    def test_clear_table(self, storage):
        storage.save("loans", "a", {"id": "a"})
        storage.clear_table("loans")
        assert storage.count("loans") == 0

    def test_loaded_records_are_copies(self, storage):
        storage.save("loans", "a", {"id": "a", "payments": []})
        loaded = storage.load("loans", "a")
        loaded["payments"].append("mutated")
        assert storage.load("loans", "a")["payments"] == []


class TestTransactions:
    """Test atomic blocks"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("loans", "a", {"id": "a"})
            storage.save("audit_events", "e1", {"id": "e1"})
        assert storage.exists("loans", "a")
        assert storage.exists("audit_events", "e1")

    def test_rollback_on_error(self, storage):
        storage.save("loans", "a", {"id": "a", "version": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("loans", "a", {"id": "a", "version": 2})
                storage.save("loans", "b", {"id": "b"})
                raise RuntimeError("boom")

        assert storage.load("loans", "a")["version"] == 1
        assert not storage.exists("loans", "b")

    def test_nested_blocks_commit_together(self, storage):
        with storage.atomic():
            storage.save("loans", "a", {"id": "a"})
            with storage.atomic():
                storage.save("loans", "b", {"id": "b"})
        assert storage.count("loans") == 2

    def test_inner_failure_rolls_back_outer(self, storage):
        with storage.atomic():
            storage.save("loans", "a", {"id": "a"})
            try:
                with storage.atomic():
                    storage.save("loans", "b", {"id": "b"})
                    raise ValueError("inner")
            except ValueError:
                pass

        assert not storage.exists("loans", "a")
        assert not storage.exists("loans", "b")

    def test_table_created_in_rolled_back_transaction_is_usable(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("brand_new", "x", {"id": "x"})
                raise RuntimeError("boom")

        storage.save("brand_new", "y", {"id": "y"})
        assert storage.load("brand_new", "y") == {"id": "y"}
        assert not storage.exists("brand_new", "x")


class TestSQLitePersistence:

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteStorage(path)
        first.save("loans", "a", test_data)
        first.close()

        second = SQLiteStorage(path)
        assert second.load("loans", "a") == test_data
        second.close()

"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
from decimal import Decimal
from datetime import datetime, timezone, date
from pathlib import Path
from dataclasses import dataclass

from debt_ledger.currency import Money, Currency
from debt_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage, parse_date, to_storage_value
)


# Test data
test_data = {
    "id": "record_1",
    "workspace_id": "ws-1",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    backend = create_storage(request.param)
    yield backend
    backend.close()


class TestStorageBackends:
    """CRUD behaviour shared by every backend"""

    def test_save_and_load(self, storage):
        storage.save("loans", "record_1", test_data)
        assert storage.load("loans", "record_1") == test_data
        assert storage.exists("loans", "record_1")
        assert not storage.exists("loans", "missing")
        assert storage.load("loans", "missing") is None

    def test_loaded_records_are_copies(self, storage):
        storage.save("loans", "record_1", test_data)
        loaded = storage.load("loans", "record_1")
        loaded["amount"] = "0"
        assert storage.load("loans", "record_1")["amount"] == "100.50"

    def test_find_and_count(self, storage):
        storage.save("loans", "a", {**test_data, "id": "a"})
        storage.save("loans", "b", {**test_data, "id": "b", "workspace_id": "ws-2"})
        assert [r["id"] for r in storage.find("loans", {"workspace_id": "ws-2"})] == ["b"]
        assert storage.find("loans", {"missing_key": 1}) == []
        assert storage.count("loans") == 2

    def test_delete_and_clear(self, storage):
        storage.save("loans", "a", {**test_data, "id": "a"})
        storage.save("loans", "b", {**test_data, "id": "b"})
        assert storage.delete("loans", "a")
        assert not storage.delete("loans", "a")
        storage.clear_table("loans")
        assert storage.count("loans") == 0


class TestTransactionSupport:
    """Test atomic transaction support"""

    def test_atomic_commit(self, storage):
        with storage.atomic():
            storage.save("loans", "a", {**test_data, "id": "a"})
            storage.save("loans", "b", {**test_data, "id": "b"})
        assert storage.count("loans") == 2

    def test_atomic_rollback(self, storage):
        storage.save("loans", "a", {**test_data, "id": "a"})

        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("loans", "b", {**test_data, "id": "b"})
                storage.save("loans", "a", {**test_data, "id": "a", "amount": "0"})
                storage.delete("loans", "a")
                raise ValueError("Simulated error")

        assert storage.count("loans") == 1
        assert not storage.exists("loans", "b")
        assert storage.load("loans", "a")["amount"] == "100.50"

    def test_nested_atomic_rolls_back_outer_work(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("loans", "outer", {**test_data, "id": "outer"})
                with storage.atomic():
                    storage.save("loans", "inner", {**test_data, "id": "inner"})
                raise ValueError("Simulated error")

        assert storage.count("loans") == 0

    def test_storage_usable_after_rollback(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("loans", "a", {**test_data, "id": "a"})
                raise ValueError("Simulated error")

        with storage.atomic():
            storage.save("loans", "b", {**test_data, "id": "b"})
        assert [r["id"] for r in storage.load_all("loans")] == ["b"]

    def test_sqlite_file_persists_committed_data(self):
        """Committed rows survive reopening the database file"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "ledger.db"
            storage = SQLiteStorage(db_path)
            with storage.atomic():
                storage.save("loans", "a", {**test_data, "id": "a"})
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("loans", "a")["amount"] == "100.50"
            reopened.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage("postgres")

    def test_in_memory_factory(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)


class TestStorageRecord:
    """Test StorageRecord functionality"""

    def test_storage_record_serialization(self):
        """Money, Decimal, dates and enums become strings"""
        @dataclass
        class TestRecord(StorageRecord):
            amount: Money
            rate: Decimal
            due: date
            currency: Currency

        now = datetime.now(timezone.utc)
        record = TestRecord(
            id="test_001",
            created_at=now,
            updated_at=now,
            amount=Money(Decimal("100.5")),
            rate=Decimal("0.015"),
            due=date(2024, 3, 1),
            currency=Currency.USD
        )

        data = record.to_dict()
        assert data["id"] == "test_001"
        assert data["amount"] == "100.50"
        assert data["rate"] == "0.015"
        assert data["due"] == "2024-03-01"
        assert data["currency"] == "USD"
        assert data["created_at"] == now.isoformat()

    def test_nested_values(self):
        assert to_storage_value({"paid": [Money(Decimal("1"))], "on": date(2024, 1, 2)}) == {
            "paid": ["1.00"], "on": "2024-01-02"
        }

    def test_parse_date(self):
        assert parse_date("2024-03-01") == date(2024, 3, 1)
        assert parse_date("2024-03-01T10:00:00+07:00") == date(2024, 3, 1)
        assert parse_date(None) is None

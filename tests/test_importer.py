import pytest

from fuelrecon.config import ReconSettings
from fuelrecon.data.importer import ImportCoordinator, import_batch, validate_batch
from fuelrecon.data.schemas import ImportBatch
from fuelrecon.errors import StructuralError, TransientStorageError

from conftest import TENANT, TODAY, raw_row


def three_rows():
    return [
        raw_row(),
        raw_row(litres=None),
        raw_row(card_id="C404"),
    ]


class FlakyStorage:
    """Wraps a DataStore; the first `failures` inserts raise TransientStorageError."""

    def __init__(self, store, failures):
        self.store = store
        self.failures = failures
        self.attempts = 0

    def transaction_insert(self, tenant_id, record):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransientStorageError("Could not acquire storage lock within 5s")
        return self.store.transaction_insert(tenant_id, record)

    def transaction_find_by_dedup_key(self, tenant_id, key):
        return self.store.transaction_find_by_dedup_key(tenant_id, key)

    def transaction_query(self, tenant_id, date_range=None):
        return self.store.transaction_query(tenant_id, date_range)


def test_end_to_end_three_row_scenario(store):
    checked = validate_batch(store, TENANT, three_rows(), today=TODAY)
    assert (checked["total"], checked["valid"], checked["invalid"]) == (3, 1, 2)
    assert [d["status"] for d in checked["details"]] == ["valid", "invalid", "invalid"]
    assert checked["details"][1]["reasons"] == ["Litres is required"]
    assert checked["details"][2]["codes"] == ["card_not_found"]

    first = import_batch(store, TENANT, three_rows(), today=TODAY)
    assert (first["imported"], first["failed"], first["skipped_duplicate"]) == (1, 2, 0)
    txn_id = first["details"][0]["transaction_id"]

    again = import_batch(store, TENANT, three_rows(), today=TODAY)
    assert (again["imported"], again["failed"], again["skipped_duplicate"]) == (0, 2, 1)
    dup = again["details"][0]
    assert dup["status"] == "skipped_duplicate"
    assert dup["transaction_id"] == txn_id
    assert dup["code"] == "already_imported"
    assert len(store.transaction_query(TENANT)) == 1


def test_validate_only_has_no_side_effects(store):
    for _ in range(2):
        result = validate_batch(store, TENANT, [raw_row()], today=TODAY)
        assert result["valid"] == 1
    assert store.transaction_query(TENANT) == []


def test_validate_flags_rows_already_imported(store):
    import_batch(store, TENANT, [raw_row()], today=TODAY)
    result = validate_batch(store, TENANT, [raw_row(), raw_row(total_cost="75.00", litres="50")], today=TODAY)
    assert [d["already_imported"] for d in result["details"]] == [True, False]


def test_double_import_of_n_rows(store):
    rows = [raw_row(transaction_date=f"2024-09-0{d}") for d in range(1, 6)]
    assert import_batch(store, TENANT, rows, today=TODAY)["imported"] == 5
    second = import_batch(store, TENANT, rows, today=TODAY)
    assert second["imported"] == 0
    assert second["skipped_duplicate"] == 5


def test_identical_rows_in_one_batch_import_once(store):
    result = import_batch(store, TENANT, [raw_row(), raw_row(station_name="SHELL LEEDS")], today=TODAY)
    assert result["imported"] == 1
    assert result["skipped_duplicate"] == 1


def test_parallel_workers_keep_row_order_and_dedup(store):
    rows = [raw_row(transaction_date=f"2024-09-0{1 + i % 3}") for i in range(12)]
    coordinator = ImportCoordinator(store, store, today=TODAY, max_workers=4)
    result = coordinator.run(ImportBatch(TENANT, rows, validate_only=False))
    assert [d["row"] for d in result["details"]] == list(range(1, 13))
    assert result["imported"] == 3
    assert result["skipped_duplicate"] == 9
    assert len(store.transaction_query(TENANT)) == 3


def test_imported_record_fields(store):
    result = import_batch(store, TENANT, [raw_row(price_per_litre=None, total_cost="59.999", receipt_number="R-1")],
                          provider_label="Allstar September", today=TODAY)
    txn = store.transaction_get(TENANT, result["details"][0]["transaction_id"])
    assert txn.transaction_id == "FT-000001"
    assert txn.total_cost == 60.0
    assert txn.price_per_litre == 1.5
    assert txn.receipt_number == "R-1"
    assert txn.provider_label == "Allstar September"


class TestStructuralErrors:
    def test_empty_batch(self, store):
        with pytest.raises(StructuralError):
            import_batch(store, TENANT, [], today=TODAY)

    def test_oversized_batch(self, store):
        settings = ReconSettings(max_batch_rows=2)
        with pytest.raises(StructuralError, match="maximum is 2"):
            validate_batch(store, TENANT, [raw_row()] * 3, settings=settings, today=TODAY)

    def test_zero_of_n_imported_is_not_an_error(self, store):
        result = import_batch(store, TENANT, [raw_row(card_id="C404")], today=TODAY)
        assert result["imported"] == 0
        assert result["failed"] == 1


class TestStorageRetry:
    def run(self, storage, store, rows):
        coordinator = ImportCoordinator(store, storage, today=TODAY)
        return coordinator.run(ImportBatch(TENANT, rows, validate_only=False))

    def test_one_transient_failure_is_retried(self, store):
        storage = FlakyStorage(store, failures=1)
        result = self.run(storage, store, [raw_row()])
        assert result["imported"] == 1
        assert storage.attempts == 2

    def test_second_failure_fails_row_verbatim_and_continues(self, store):
        storage = FlakyStorage(store, failures=2)
        result = self.run(storage, store, [raw_row(), raw_row(transaction_date="2024-09-06")])
        failed, imported = result["details"]
        assert failed["status"] == "failed"
        assert failed["reasons"] == ["Could not acquire storage lock within 5s"]
        assert failed["codes"] == ["storage_error"]
        assert imported["status"] == "imported"
        assert storage.attempts == 3


class TimeoutStorage(FlakyStorage):
    """Wraps a DataStore; the first dedup lookup or insert raises TimeoutError."""

    def __init__(self, store, on):
        super().__init__(store, failures=0)
        self.on = on

    def transaction_find_by_dedup_key(self, tenant_id, key):
        if self.on == "lookup":
            self.on = None
            raise TimeoutError("read timed out")
        return super().transaction_find_by_dedup_key(tenant_id, key)

    def transaction_insert(self, tenant_id, record):
        if self.on == "insert":
            self.on = None
            self.attempts += 1
            raise TimeoutError("insert timed out")
        return super().transaction_insert(tenant_id, record)


class TestStorageTimeouts:
    def rows(self):
        return [raw_row(), raw_row(transaction_date="2024-09-06")]

    def run(self, storage, store, validate_only=False):
        coordinator = ImportCoordinator(store, storage, today=TODAY)
        return coordinator.run(ImportBatch(TENANT, self.rows(), validate_only=validate_only))

    def test_dedup_lookup_timeout_fails_only_that_row(self, store):
        result = self.run(TimeoutStorage(store, "lookup"), store)
        assert (result["imported"], result["failed"]) == (1, 1)
        failed = result["details"][0]
        assert failed["status"] == "failed"
        assert failed["reasons"] == ["read timed out"]
        assert failed["codes"] == ["lookup_timeout"]
        assert len(store.transaction_query(TENANT)) == 1

    def test_dedup_lookup_timeout_in_validate_mode(self, store):
        result = self.run(TimeoutStorage(store, "lookup"), store, validate_only=True)
        assert (result["valid"], result["invalid"]) == (1, 1)
        invalid = result["details"][0]
        assert invalid["status"] == "invalid"
        assert invalid["codes"] == ["lookup_timeout"]
        assert invalid["reasons"] == ["read timed out"]
        assert store.transaction_query(TENANT) == []

    def test_insert_timeout_is_not_retried_and_batch_continues(self, store):
        storage = TimeoutStorage(store, "insert")
        result = self.run(storage, store)
        assert (result["imported"], result["failed"]) == (1, 1)
        failed, imported = result["details"]
        assert failed["reasons"] == ["insert timed out"]
        assert failed["codes"] == ["storage_error"]
        assert imported["status"] == "imported"
        assert storage.attempts == 2

    def test_timeouts_under_parallel_workers(self, store):
        coordinator = ImportCoordinator(store, TimeoutStorage(store, "insert"), today=TODAY, max_workers=4)
        result = coordinator.run(ImportBatch(TENANT, self.rows(), validate_only=False))
        assert result["total"] == 2
        assert (result["imported"], result["failed"]) == (1, 1)
        assert [d["row"] for d in result["details"]] == [1, 2]

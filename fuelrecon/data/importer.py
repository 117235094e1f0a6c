"""
Batch Import Coordinator — validate-only and commit runs over an ImportBatch.

Each row is normalised and validated on its own; one bad row never blocks its
siblings. Commit runs persist valid rows exactly once: the dedup lookup and the
insert happen under the card's lock, and a row whose dedup key already exists
is reported as skipped_duplicate (neither imported nor failed).
"""
from __future__ import annotations

import datetime as dt
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Protocol

from fuelrecon import errors
from fuelrecon.config import DEFAULT_SETTINGS, PERSIST_DATA, ReconSettings
from fuelrecon.data.normalize import NormalizedRow, build_header_map, normalize_row
from fuelrecon.data.schemas import DateRange, DedupKey, FuelTransaction, ImportBatch
from fuelrecon.data.validate import Directory, RowValidator, ValidationResult
from fuelrecon.errors import StructuralError, TransientStorageError

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def transaction_insert(self, tenant_id: str, record: FuelTransaction) -> str: ...
    def transaction_find_by_dedup_key(self, tenant_id: str, key: DedupKey) -> Optional[str]: ...
    def transaction_query(self, tenant_id: str, date_range: DateRange | None = None) -> list[FuelTransaction]: ...


def _detail(index: int, status: str, result: ValidationResult, **extra: Any) -> dict:
    d = {
        "row": index + 1,
        "status": status,
        "reasons": result.reasons,
        "codes": result.codes,
        "warnings": [w.message for w in result.warnings],
    }
    d.update(extra)
    return d


def _row_error(index: int, status: str, result: ValidationResult, message: str, code: str) -> dict:
    d = _detail(index, status, result)
    d["reasons"] = d["reasons"] + [message]
    d["codes"] = d["codes"] + [code]
    return d


class ImportCoordinator:
    """Runs one ImportBatch against a directory and a storage collaborator."""

    def __init__(
        self,
        directory: Directory,
        storage: Storage,
        settings: ReconSettings = DEFAULT_SETTINGS,
        today: dt.date | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.directory = directory
        self.storage = storage
        self.settings = settings
        self.validator = RowValidator(directory, settings, today)
        self.max_workers = max(1, max_workers or settings.import_workers)
        self._fallback_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def run(self, batch: ImportBatch) -> dict:
        n = len(batch.rows or [])
        if n == 0:
            raise StructuralError("Import batch contains no rows")
        if n > self.settings.max_batch_rows:
            raise StructuralError(
                f"Import batch has {n:,} rows; the maximum is {self.settings.max_batch_rows:,}"
            )

        # All rows of one file share a header, but API callers may mix key spellings
        header_map = build_header_map({k for row in batch.rows for k in row.keys()})
        mode = "validate" if batch.validate_only else "commit"
        logger.info(
            "Import %s started: tenant=%s rows=%d provider=%s",
            mode, batch.tenant_id, n, batch.provider_label or "-",
        )

        handle = self._validate_row if batch.validate_only else self._commit_row
        jobs = [(i, row) for i, row in enumerate(batch.rows)]
        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                details = list(pool.map(lambda job: handle(batch, header_map, *job), jobs))
        else:
            details = [handle(batch, header_map, *job) for job in jobs]

        summary = self._summarise(batch, details)
        logger.info("Import %s finished: tenant=%s %s", mode, batch.tenant_id,
                    {k: v for k, v in summary.items() if k != "details"})
        return summary

    # ------------------------------------------------------------------
    # Per-row
    # ------------------------------------------------------------------

    def _check(self, batch: ImportBatch, header_map: dict, row: dict) -> tuple[NormalizedRow, ValidationResult]:
        normalized = normalize_row(row, header_map)
        return normalized, self.validator.validate(batch.tenant_id, normalized)

    def _validate_row(self, batch: ImportBatch, header_map: dict, index: int, row: dict) -> dict:
        normalized, result = self._check(batch, header_map, row)
        already = False
        if result.valid:
            try:
                already = self.storage.transaction_find_by_dedup_key(
                    batch.tenant_id, normalized.dedup_key()) is not None
            except TimeoutError as exc:
                logger.warning("Row %d dedup lookup timed out: %s", index + 1, exc)
                return _row_error(index, "invalid", result, str(exc), errors.LOOKUP_TIMEOUT)
        return _detail(index, "valid" if result.valid else "invalid", result, already_imported=already)

    def _commit_row(self, batch: ImportBatch, header_map: dict, index: int, row: dict) -> dict:
        normalized, result = self._check(batch, header_map, row)
        if not result.valid:
            return _detail(index, "failed", result)

        record = self._to_record(batch, normalized)
        key = record.dedup_key
        lock = self._card_lock(batch.tenant_id, record.card_id)
        with lock:
            try:
                existing = self.storage.transaction_find_by_dedup_key(batch.tenant_id, key)
            except TimeoutError as exc:
                logger.warning("Row %d dedup lookup timed out: %s", index + 1, exc)
                return _row_error(index, "failed", result, str(exc), errors.LOOKUP_TIMEOUT)
            if existing is not None:
                return _detail(
                    index, "skipped_duplicate", result,
                    transaction_id=existing, code=errors.ALREADY_IMPORTED,
                )
            try:
                txn_id = self._insert_with_retry(batch.tenant_id, record)
            except (TransientStorageError, TimeoutError) as exc:
                logger.warning("Row %d failed to persist: %s", index + 1, exc)
                return _row_error(index, "failed", result, str(exc), errors.STORAGE_ERROR)
        return _detail(index, "imported", result, transaction_id=txn_id)

    def _insert_with_retry(self, tenant_id: str, record: FuelTransaction) -> str:
        """One immediate retry on a transient failure; the second one propagates.

        A timeout is not retried.
        """
        try:
            return self.storage.transaction_insert(tenant_id, record)
        except TransientStorageError as exc:
            logger.info("Transient storage error, retrying: %s", exc.message)
        return self.storage.transaction_insert(tenant_id, record)

    def _card_lock(self, tenant_id: str, card_id: str) -> threading.Lock:
        # Storage without per-card locks shares one coordinator-wide lock
        get = getattr(self.storage, "card_lock", None)
        return get(tenant_id, card_id) if get is not None else self._fallback_lock

    def _to_record(self, batch: ImportBatch, row: NormalizedRow) -> FuelTransaction:
        return FuelTransaction(
            transaction_id="",
            tenant_id=batch.tenant_id,
            card_id=row.card_id,
            transaction_date=row.transaction_date,
            transaction_time=row.transaction_time,
            station_name=row.station_name,
            litres=row.litres,
            price_per_litre=round(row.price_per_litre, 3),
            total_cost=round(row.total_cost, 2),
            driver_id=row.driver_id,
            vehicle_id=row.vehicle_id,
            mileage=row.mileage,
            previous_mileage=row.previous_mileage,
            receipt_number=row.receipt_number,
            notes=row.notes,
            provider_label=batch.provider_label,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _summarise(self, batch: ImportBatch, details: list[dict]) -> dict:
        counts: dict[str, int] = {}
        for d in details:
            counts[d["status"]] = counts.get(d["status"], 0) + 1
        if batch.validate_only:
            return {
                "total": len(details),
                "valid": counts.get("valid", 0),
                "invalid": counts.get("invalid", 0),
                "details": details,
            }
        return {
            "total": len(details),
            "imported": counts.get("imported", 0),
            "failed": counts.get("failed", 0),
            "skipped_duplicate": counts.get("skipped_duplicate", 0),
            "details": details,
        }


# ---------------------------------------------------------------------------
# Facades
# ---------------------------------------------------------------------------

def validate_batch(
    store,
    tenant_id: str,
    rows: list[dict],
    provider_label: str | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    """Validate rows without persisting anything. Safe to call repeatedly."""
    batch = ImportBatch(tenant_id, rows, validate_only=True, provider_label=provider_label)
    return ImportCoordinator(store, store, settings, today).run(batch)


def import_batch(
    store,
    tenant_id: str,
    rows: list[dict],
    provider_label: str | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    """Persist the valid rows; duplicates of stored transactions are skipped."""
    batch = ImportBatch(tenant_id, rows, validate_only=False, provider_label=provider_label)
    result = ImportCoordinator(store, store, settings, today).run(batch)
    if PERSIST_DATA and result["imported"] and hasattr(store, "save"):
        store.save()
    return result

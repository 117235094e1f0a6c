"""
DataStore — In-memory card directory and transaction storage.

Loaded once at startup from the inbox snapshot CSVs, queried on every request.
Implements both collaborator interfaces the pipeline consumes (Directory and
Storage), so swapping to a database later only changes this module.
"""
from __future__ import annotations

import datetime as dt
import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd

from fuelrecon import errors
from fuelrecon.config import (
    CARD_PROVIDERS, CARDS_FILE, DEFAULT_SETTINGS, DRIVERS_FILE, INBOX_FOLDER,
    TRANSACTIONS_FILE, VEHICLES_FILE, ReconSettings,
)
from fuelrecon.data.loader import load_snapshot
from fuelrecon.data.normalize import clean_id, clean_text, parse_date, parse_decimal, parse_time
from fuelrecon.data.schemas import (
    CardStatus, DateRange, DedupKey, FuelCard, FuelTransaction, is_valid_last_four,
)
from fuelrecon.errors import ConfigurationError, TransientStorageError

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = [
    "transaction_id", "tenant_id", "card_id", "driver_id", "vehicle_id",
    "transaction_date", "transaction_time", "station_name", "litres",
    "price_per_litre", "total_cost", "mileage", "previous_mileage",
    "receipt_number", "notes", "provider_label", "created_at",
]

CARD_COLUMNS = [
    "tenant_id", "card_id", "last_four", "provider", "driver_id", "vehicle_id",
    "monthly_limit", "daily_limit", "status", "created_on",
]


class DataStore:
    """Per-tenant cards, drivers, vehicles and transactions."""

    def __init__(self, settings: ReconSettings = DEFAULT_SETTINGS) -> None:
        self.settings = settings
        self.cards: dict[str, dict[str, FuelCard]] = {}
        self.drivers: dict[str, dict[str, str]] = {}
        self.vehicles: dict[str, dict[str, str]] = {}
        self.transactions: dict[str, list[FuelTransaction]] = {}
        self._dedup: dict[str, dict[DedupKey, str]] = {}
        self._write_lock = threading.Lock()
        self._card_locks: dict[tuple[str, str], threading.Lock] = {}
        self._card_locks_guard = threading.Lock()
        self._ids = itertools.count(1)
        self._loaded = False

    # ------------------------------------------------------------------
    # Loading / saving
    # ------------------------------------------------------------------

    def load(self, inbox: Path = INBOX_FOLDER) -> "DataStore":
        """Load drivers, vehicles, cards and transactions snapshots from inbox."""
        print("Loading fuel data...")
        for _, r in load_snapshot(inbox / DRIVERS_FILE).iterrows():
            self.add_driver(r["tenant_id"], r["driver_id"], r.get("name") or None)
        for _, r in load_snapshot(inbox / VEHICLES_FILE).iterrows():
            self.add_vehicle(r["tenant_id"], r["vehicle_id"], r.get("registration") or None)

        for _, r in load_snapshot(inbox / CARDS_FILE).iterrows():
            card = FuelCard(
                card_id=clean_id(r["card_id"]),
                tenant_id=r["tenant_id"],
                last_four=str(r["last_four"]).zfill(4),
                provider=r.get("provider") or "other",
                driver_id=clean_id(r.get("driver_id")),
                vehicle_id=clean_id(r.get("vehicle_id")),
                monthly_limit=parse_decimal(r.get("monthly_limit")),
                daily_limit=parse_decimal(r.get("daily_limit")),
                status=r.get("status") or CardStatus.ACTIVE,
                created_on=parse_date(r.get("created_on")) or dt.date.min,
            )
            self.cards.setdefault(card.tenant_id, {})[card.card_id] = card

        txns = load_snapshot(inbox / TRANSACTIONS_FILE)
        highest = 0
        for _, r in txns.iterrows():
            txn = FuelTransaction(
                transaction_id=r["transaction_id"],
                tenant_id=r["tenant_id"],
                card_id=clean_id(r["card_id"]),
                transaction_date=parse_date(r["transaction_date"]),
                station_name=clean_text(r["station_name"]) or "",
                litres=parse_decimal(r["litres"]) or 0.0,
                price_per_litre=parse_decimal(r["price_per_litre"]) or 0.0,
                total_cost=parse_decimal(r["total_cost"]) or 0.0,
                driver_id=clean_id(r.get("driver_id")),
                vehicle_id=clean_id(r.get("vehicle_id")),
                transaction_time=parse_time(r.get("transaction_time")),
                mileage=parse_decimal(r.get("mileage")),
                previous_mileage=parse_decimal(r.get("previous_mileage")),
                receipt_number=clean_id(r.get("receipt_number")),
                notes=clean_text(r.get("notes")),
                provider_label=clean_text(r.get("provider_label")),
            )
            self._append(txn)
            digits = "".join(ch for ch in txn.transaction_id if ch.isdigit())
            if digits:
                highest = max(highest, int(digits))
        self._ids = itertools.count(highest + 1)

        total = sum(len(v) for v in self.transactions.values())
        print(f"  Loaded {total:,} transactions across {len(self.cards)} tenants")
        self._loaded = True
        return self

    def save(self, inbox: Path = INBOX_FOLDER) -> None:
        """Write drivers, vehicles, cards and transactions snapshots back to inbox."""
        inbox.mkdir(parents=True, exist_ok=True)
        with self._write():
            drivers = [(t, d, n) for t, ds in self.drivers.items() for d, n in ds.items()]
            vehicles = [(t, v, r) for t, vs in self.vehicles.items() for v, r in vs.items()]
            cards = [c.to_dict() for tenant in self.cards.values() for c in tenant.values()]
            txns = [t.to_dict() for tenant in self.transactions.values() for t in tenant]
        pd.DataFrame(drivers, columns=["tenant_id", "driver_id", "name"]).to_csv(inbox / DRIVERS_FILE, index=False)
        pd.DataFrame(vehicles, columns=["tenant_id", "vehicle_id", "registration"]).to_csv(inbox / VEHICLES_FILE, index=False)
        pd.DataFrame(cards, columns=CARD_COLUMNS).to_csv(inbox / CARDS_FILE, index=False)
        pd.DataFrame(txns, columns=TRANSACTION_COLUMNS).to_csv(inbox / TRANSACTIONS_FILE, index=False)
        logger.info("Saved %d cards and %d transactions to %s", len(cards), len(txns), inbox)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    @contextmanager
    def _write(self) -> Iterator[None]:
        timeout = self.settings.storage_lock_timeout
        if not self._write_lock.acquire(timeout=timeout):
            raise TransientStorageError(f"Could not acquire storage lock within {timeout:g}s")
        try:
            yield
        finally:
            self._write_lock.release()

    def card_lock(self, tenant_id: str, card_id: str) -> threading.Lock:
        """The lock serialising dedup-check + insert for one card."""
        key = (tenant_id, str(card_id))
        with self._card_locks_guard:
            lock = self._card_locks.get(key)
            if lock is None:
                lock = self._card_locks[key] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def add_driver(self, tenant_id: str, driver_id: str, name: str | None = None) -> None:
        self.drivers.setdefault(tenant_id, {})[str(driver_id)] = name or str(driver_id)

    def add_vehicle(self, tenant_id: str, vehicle_id: str, registration: str | None = None) -> None:
        self.vehicles.setdefault(tenant_id, {})[str(vehicle_id)] = registration or str(vehicle_id)

    def driver_exists(self, tenant_id: str, driver_id: str) -> bool:
        return str(driver_id) in self.drivers.get(tenant_id, {})

    def vehicle_exists(self, tenant_id: str, vehicle_id: str) -> bool:
        return str(vehicle_id) in self.vehicles.get(tenant_id, {})

    def driver_name(self, tenant_id: str, driver_id: str | None) -> Optional[str]:
        if driver_id is None:
            return None
        return self.drivers.get(tenant_id, {}).get(str(driver_id))

    def vehicle_label(self, tenant_id: str, vehicle_id: str | None) -> Optional[str]:
        if vehicle_id is None:
            return None
        return self.vehicles.get(tenant_id, {}).get(str(vehicle_id))

    def card_get(self, tenant_id: str, card_id: str) -> Optional[FuelCard]:
        return self.cards.get(tenant_id, {}).get(str(card_id))

    def cards_for(self, tenant_id: str) -> list[FuelCard]:
        return sorted(self.cards.get(tenant_id, {}).values(), key=lambda c: c.card_id)

    # ------------------------------------------------------------------
    # Card management
    # ------------------------------------------------------------------

    def _check_card(self, card: FuelCard, exclude: str | None = None) -> None:
        if not is_valid_last_four(card.last_four):
            raise ConfigurationError("Last four digits must be exactly 4 numbers", code="invalid_last_four")
        if card.provider not in CARD_PROVIDERS:
            raise ConfigurationError(f"Unknown card provider '{card.provider}'", code="invalid_provider")
        for other in self.cards.get(card.tenant_id, {}).values():
            if other.card_id != exclude and other.last_four == card.last_four:
                raise ConfigurationError(
                    f"A card ending in {card.last_four} already exists", code="duplicate_card",
                )
        if card.driver_id and not self.driver_exists(card.tenant_id, card.driver_id):
            raise ConfigurationError(f"Driver '{card.driver_id}' not found", code=errors.DRIVER_NOT_FOUND)
        if card.vehicle_id and not self.vehicle_exists(card.tenant_id, card.vehicle_id):
            raise ConfigurationError(f"Vehicle '{card.vehicle_id}' not found", code=errors.VEHICLE_NOT_FOUND)

    def register_card(self, card: FuelCard) -> FuelCard:
        with self._write():
            if card.card_id in self.cards.get(card.tenant_id, {}):
                raise ConfigurationError(f"Card '{card.card_id}' already exists", code="duplicate_card")
            self._check_card(card)
            self.cards.setdefault(card.tenant_id, {})[card.card_id] = card
        logger.info("Registered card %s for tenant %s", card.card_id, card.tenant_id)
        return card

    def update_card(self, tenant_id: str, card_id: str, **changes) -> FuelCard:
        """Change assignment, limits or status. Unknown keys are ignored."""
        allowed = {"last_four", "provider", "driver_id", "vehicle_id", "monthly_limit", "daily_limit", "status"}
        with self._write():
            card = self.card_get(tenant_id, card_id)
            if card is None:
                raise ConfigurationError(f"Fuel card '{card_id}' not found", code=errors.CARD_NOT_FOUND)
            updated = replace(card, **{k: v for k, v in changes.items() if k in allowed})
            self._check_card(updated, exclude=card.card_id)
            self.cards[tenant_id][card.card_id] = updated
        logger.info("Updated card %s for tenant %s: %s", card_id, tenant_id, sorted(changes))
        return updated

    # ------------------------------------------------------------------
    # Transaction storage
    # ------------------------------------------------------------------

    def next_transaction_id(self) -> str:
        return f"FT-{next(self._ids):06d}"

    def _append(self, txn: FuelTransaction) -> None:
        self.transactions.setdefault(txn.tenant_id, []).append(txn)
        self._dedup.setdefault(txn.tenant_id, {})[txn.dedup_key] = txn.transaction_id

    def transaction_insert(self, tenant_id: str, record: FuelTransaction) -> str:
        with self._write():
            if not record.transaction_id:
                record.transaction_id = self.next_transaction_id()
            record.tenant_id = tenant_id
            self._append(record)
        return record.transaction_id

    def transaction_find_by_dedup_key(self, tenant_id: str, key: DedupKey) -> Optional[str]:
        return self._dedup.get(tenant_id, {}).get(key)

    def transaction_query(self, tenant_id: str, date_range: DateRange | None = None) -> list[FuelTransaction]:
        """Snapshot of a tenant's transactions within date_range (inclusive)."""
        with self._write():
            txns = list(self.transactions.get(tenant_id, []))
        if date_range is None:
            return txns
        return [t for t in txns if date_range.contains(t.transaction_date)]

    def transaction_get(self, tenant_id: str, transaction_id: str) -> Optional[FuelTransaction]:
        for txn in self.transactions.get(tenant_id, []):
            if txn.transaction_id == transaction_id:
                return txn
        return None

    def update_notes(self, tenant_id: str, transaction_id: str, notes: str | None) -> FuelTransaction:
        """Notes are the only field that may change after creation."""
        with self._write():
            txn = self.transaction_get(tenant_id, transaction_id)
            if txn is None:
                raise ConfigurationError(f"Transaction '{transaction_id}' not found", code="transaction_not_found")
            txn.notes = clean_text(notes)
        return txn

    # ------------------------------------------------------------------
    # Frames for analytics
    # ------------------------------------------------------------------

    def frame(self, tenant_id: str, date_range: DateRange | None = None) -> pd.DataFrame:
        """Transactions as a DataFrame with driver/vehicle display names joined."""
        txns = self.transaction_query(tenant_id, date_range)
        if not txns:
            return pd.DataFrame(columns=TRANSACTION_COLUMNS + ["driver_name", "vehicle_label"])
        df = pd.DataFrame([t.to_dict() for t in txns])
        df["transaction_date"] = pd.to_datetime(df["transaction_date"])
        for col in ("litres", "price_per_litre", "total_cost", "mileage", "previous_mileage"):
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df["driver_name"] = df["driver_id"].map(lambda d: self.driver_name(tenant_id, d))
        df["vehicle_label"] = df["vehicle_id"].map(lambda v: self.vehicle_label(tenant_id, v))
        return df

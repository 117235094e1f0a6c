"""
FastAPI dependencies — DataStore singleton, settings, date-range parsing.
"""
from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import HTTPException, Query

from fuelrecon.config import DEFAULT_SETTINGS, ReconSettings
from fuelrecon.data.schemas import DateRange
from fuelrecon.data.store import DataStore

# ---------------------------------------------------------------------------
# Global store singleton (set during startup)
# ---------------------------------------------------------------------------
_store: DataStore | None = None


def set_store(store: DataStore) -> None:
    global _store
    _store = store


def get_store() -> DataStore:
    if _store is None or not _store.is_loaded:
        raise HTTPException(503, "Data not loaded yet")
    return _store


def get_store_or_empty() -> DataStore:
    """Return the store even if nothing has been loaded (health/reload)."""
    if _store is None:
        raise HTTPException(503, "Server not initialized yet")
    return _store


def get_settings() -> ReconSettings:
    return DEFAULT_SETTINGS


def get_today() -> dt.date:
    """Reference date for 'current month' and future-date checks."""
    return dt.date.today()


# ---------------------------------------------------------------------------
# Date range from query params
# ---------------------------------------------------------------------------

def _iso(value: Optional[str], name: str) -> Optional[dt.date]:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(400, f"Invalid {name}: {value} (expected YYYY-MM-DD)")


def parse_date_range(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
) -> DateRange:
    rng = DateRange(_iso(start_date, "start_date"), _iso(end_date, "end_date"))
    if rng.start_date and rng.end_date and rng.start_date > rng.end_date:
        raise HTTPException(400, "start_date must not be after end_date")
    return rng

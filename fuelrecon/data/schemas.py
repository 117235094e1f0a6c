"""
Data model: fuel cards, transactions, import batches, date ranges.
"""
from __future__ import annotations

import calendar
import datetime as dt
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Optional

_LAST_FOUR_RE = re.compile(r"^\d{4}$")


class CardStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


def is_valid_last_four(value: Any) -> bool:
    return isinstance(value, str) and bool(_LAST_FOUR_RE.match(value))


@dataclass
class FuelCard:
    """A physical or virtual fuel card, optionally fixed to a driver/vehicle."""
    card_id: str
    tenant_id: str
    last_four: str
    provider: str = "other"
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    monthly_limit: Optional[float] = None
    daily_limit: Optional[float] = None
    status: CardStatus = CardStatus.ACTIVE
    created_on: dt.date = field(default_factory=dt.date.today)

    def __post_init__(self) -> None:
        self.status = CardStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status == CardStatus.ACTIVE

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["created_on"] = self.created_on.isoformat()
        return d


@dataclass
class FuelTransaction:
    """One persisted fuel purchase."""
    transaction_id: str
    tenant_id: str
    card_id: str
    transaction_date: dt.date
    station_name: str
    litres: float
    price_per_litre: float
    total_cost: float
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    transaction_time: Optional[dt.time] = None
    mileage: Optional[float] = None
    previous_mileage: Optional[float] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None
    provider_label: Optional[str] = None
    created_at: dt.datetime = field(default_factory=dt.datetime.now)

    @property
    def dedup_key(self) -> "DedupKey":
        return DedupKey.build(
            self.card_id, self.transaction_date, self.transaction_time,
            self.total_cost, self.station_name,
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["transaction_date"] = self.transaction_date.isoformat()
        d["transaction_time"] = self.transaction_time.strftime("%H:%M:%S") if self.transaction_time else None
        d["created_at"] = self.created_at.isoformat(timespec="seconds")
        return d


class DedupKey(NamedTuple):
    """Identity of an imported row: (card, date, time-or-empty, cost, station)."""
    card_id: str
    transaction_date: dt.date
    transaction_time: str
    total_cost: float
    station_name: str

    @classmethod
    def build(
        cls,
        card_id: str,
        transaction_date: dt.date,
        transaction_time: Optional[dt.time],
        total_cost: float,
        station_name: str,
    ) -> "DedupKey":
        return cls(
            str(card_id).strip(),
            transaction_date,
            transaction_time.strftime("%H:%M:%S") if transaction_time else "",
            round(float(total_cost), 2),
            " ".join(str(station_name).split()).casefold(),
        )


@dataclass
class ImportBatch:
    """Candidate rows for one validate or import run. Never persisted."""
    tenant_id: str
    rows: list[dict]
    validate_only: bool = True
    provider_label: Optional[str] = None


# ---------------------------------------------------------------------------
# Date ranges
# ---------------------------------------------------------------------------

def month_start(day: dt.date) -> dt.date:
    return day.replace(day=1)


def month_end(day: dt.date) -> dt.date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def days_in_month(day: dt.date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def shift_months(day: dt.date, months: int) -> dt.date:
    """First day of the month `months` away from `day`'s month (negative = back)."""
    index = day.year * 12 + (day.month - 1) + months
    return dt.date(index // 12, index % 12 + 1, 1)


@dataclass
class DateRange:
    """Inclusive date range; either bound may be open."""
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None

    @classmethod
    def month_of(cls, day: dt.date) -> "DateRange":
        return cls(month_start(day), month_end(day))

    @classmethod
    def trailing_months(cls, today: dt.date, months: int) -> "DateRange":
        """From the first of the month `months - 1` back up to `today`."""
        return cls(shift_months(today, -(max(months, 1) - 1)), today)

    def contains(self, day: dt.date) -> bool:
        if self.start_date is not None and day < self.start_date:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        return True

    def previous_month(self) -> "DateRange":
        """The calendar month before the one containing start_date."""
        if self.start_date is None:
            return DateRange()
        return DateRange.month_of(shift_months(self.start_date, -1))

    @property
    def label(self) -> str:
        if self.start_date is None and self.end_date is None:
            return "All Time"
        s = self.start_date.isoformat() if self.start_date else "?"
        e = self.end_date.isoformat() if self.end_date else "?"
        return f"{s} to {e}"

    def to_dict(self) -> dict:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

"""
Header alias mapping and locale-tolerant parsing of raw import rows.

Nothing in here raises on bad input: a value that cannot be parsed becomes
None and the Row Validator reports it, so one batch yields one consolidated
error report.
"""
from __future__ import annotations

import datetime as dt
import math
import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from fuelrecon.config import COLUMN_ALIASES, REQUIRED_FIELDS
from fuelrecon.data.schemas import DedupKey


# ---------------------------------------------------------------------------
# Header mapping
# ---------------------------------------------------------------------------

def canonical_header(header: Any) -> str:
    """Fold a header for comparison: 'Card ID', 'card_id', 'CardID' → 'cardid'."""
    return re.sub(r"[\s_\-]+", "", str(header).strip().lower())


def _alias_index(aliases: Mapping[str, list[str]]) -> dict[str, str]:
    index: dict[str, str] = {}
    for canonical, names in aliases.items():
        index.setdefault(canonical_header(canonical), canonical)
        for name in names:
            index.setdefault(canonical_header(name), canonical)
    return index


_DEFAULT_INDEX = _alias_index(COLUMN_ALIASES)


def build_header_map(
    headers: Iterable[Any],
    aliases: Mapping[str, list[str]] | None = None,
) -> dict[Any, str]:
    """Map each recognised raw header to its canonical field name."""
    index = _DEFAULT_INDEX if aliases is None else _alias_index(aliases)
    mapping: dict[Any, str] = {}
    for h in headers:
        canonical = index.get(canonical_header(h))
        if canonical is not None:
            mapping[h] = canonical
    return mapping


# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


_CURRENCY_RE = re.compile(r"(GBP|EUR|USD|[£$€\s'])", re.IGNORECASE)
_THOUSANDS_COMMA_RE = re.compile(r"^\d{1,3}(,\d{3})+$")
_NUMBER_RE = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")


def parse_decimal(value: Any) -> Optional[float]:
    """Parse '1,234.56', '1.234,56', '45,50', '£45.00', '(12.00)' etc. None on failure."""
    if isinstance(value, bool) or _is_blank(value):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        v = float(value)
        return None if math.isnan(v) or math.isinf(v) else v

    text = str(value).strip()
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative, text = True, text[1:-1]
    text = _CURRENCY_RE.sub("", text)
    if text.startswith("-"):
        negative, text = not negative, text[1:]
    elif text.startswith("+"):
        text = text[1:]

    if "," in text and "." in text:
        # Whichever separator comes last is the decimal point
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", "") if _THOUSANDS_COMMA_RE.match(text) else text.replace(",", ".")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    if not _NUMBER_RE.match(text):
        return None
    v = float(text)
    return -v if negative else v


_DATE_FORMATS = [
    "%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d",
    "%d/%m/%y", "%d %b %Y", "%d %B %Y", "%Y%m%d",
]
_DATETIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M",
    "%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M",
]


def parse_datetime(value: Any) -> tuple[Optional[dt.date], Optional[dt.time]]:
    """Parse a date cell that may also carry a time of day."""
    if _is_blank(value):
        return None, None
    if isinstance(value, (pd.Timestamp, dt.datetime)):
        t = value.time()
        return value.date(), (t if t != dt.time(0, 0) else None)
    if isinstance(value, dt.date):
        return value, None

    text = str(value).strip()
    for fmt in _DATETIME_FORMATS:
        try:
            parsed = dt.datetime.strptime(text, fmt)
            return parsed.date(), parsed.time()
        except ValueError:
            continue
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date(), None
        except ValueError:
            continue

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        ts = pd.to_datetime(text, dayfirst=True, errors="coerce")
    if pd.isna(ts):
        return None, None
    t = ts.time()
    return ts.date(), (t if t != dt.time(0, 0) else None)


def parse_date(value: Any) -> Optional[dt.date]:
    return parse_datetime(value)[0]


_TIME_FORMATS = ["%H:%M:%S", "%H:%M", "%I:%M %p", "%I:%M:%S %p", "%I:%M%p", "%H%M"]


def parse_time(value: Any) -> Optional[dt.time]:
    """Parse '14:30', '14:30:05', '2:30 PM', '1430'. None on failure."""
    if _is_blank(value):
        return None
    if isinstance(value, dt.time):
        return value
    if isinstance(value, (pd.Timestamp, dt.datetime)):
        return value.time()
    text = str(value).strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def clean_text(value: Any) -> Optional[str]:
    """Strip a free-text cell; blank → None."""
    if _is_blank(value):
        return None
    return " ".join(str(value).split())


def clean_id(value: Any) -> Optional[str]:
    """Identifier cell → string. Spreadsheet floats like 12.0 become '12'."""
    if _is_blank(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    text = str(value).strip()
    if re.fullmatch(r"\d+\.0+", text):
        text = text.split(".")[0]
    return text or None


# ---------------------------------------------------------------------------
# Row normalisation
# ---------------------------------------------------------------------------

@dataclass
class NormalizedRow:
    """Typed view of one import row. Unparseable values are None."""
    card_id: Optional[str] = None
    transaction_date: Optional[dt.date] = None
    transaction_time: Optional[dt.time] = None
    litres: Optional[float] = None
    total_cost: Optional[float] = None
    price_per_litre: Optional[float] = None
    station_name: Optional[str] = None
    receipt_number: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    mileage: Optional[float] = None
    previous_mileage: Optional[float] = None
    notes: Optional[str] = None
    price_derived: bool = False
    raw: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def missing_required(self) -> list[str]:
        return [f for f in REQUIRED_FIELDS if getattr(self, f) is None]

    def raw_text(self, name: str) -> Optional[str]:
        """Original cell text for a field, or None when the cell was blank."""
        value = self.raw.get(name)
        return None if _is_blank(value) else str(value).strip()

    def dedup_key(self) -> Optional[DedupKey]:
        if self.missing_required():
            return None
        return DedupKey.build(
            self.card_id, self.transaction_date, self.transaction_time,
            self.total_cost, self.station_name,
        )


_PARSERS = {
    "card_id": clean_id,
    "driver_id": clean_id,
    "vehicle_id": clean_id,
    "receipt_number": clean_id,
    "station_name": clean_text,
    "notes": clean_text,
    "litres": parse_decimal,
    "total_cost": parse_decimal,
    "price_per_litre": parse_decimal,
    "mileage": parse_decimal,
    "previous_mileage": parse_decimal,
    "transaction_time": parse_time,
}


def normalize_row(
    row: Mapping[Any, Any],
    header_map: Mapping[Any, str] | None = None,
) -> NormalizedRow:
    """Turn one raw row into a NormalizedRow. Pure; never raises on bad cells."""
    if header_map is None:
        header_map = build_header_map(row.keys())

    raw: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for header, cell in row.items():
        name = header_map.get(header)
        if name is None:
            extra[str(header)] = cell
            continue
        # Two headers aliasing the same field: first non-blank wins
        if name not in raw or (_is_blank(raw[name]) and not _is_blank(cell)):
            raw[name] = cell

    out = NormalizedRow(raw=raw, extra=extra)
    for name, cell in raw.items():
        if name == "transaction_date":
            continue
        setattr(out, name, _PARSERS[name](cell))

    date_value, embedded_time = parse_datetime(raw.get("transaction_date"))
    out.transaction_date = date_value
    if out.transaction_time is None and embedded_time is not None:
        out.transaction_time = embedded_time

    # Derive only when the price cell was blank; garbage stays None for the validator
    if (
        out.price_per_litre is None
        and out.raw_text("price_per_litre") is None
        and out.total_cost is not None
        and out.litres is not None
        and out.litres > 0
    ):
        out.price_per_litre = out.total_cost / out.litres
        out.price_derived = True

    return out

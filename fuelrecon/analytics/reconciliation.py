"""
Reconciliation — buckets a tenant's transactions into four review categories.

Unmatched, Exceeded (cards over their monthly limit), Unusual (multiple-of-median
outliers) and Suspicious (same card, same day, near-identical cost). Categories
are independent; one transaction may appear in several. Nothing is cached or
persisted: every call recomputes from the store.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

import pandas as pd

from fuelrecon.analytics.common import median_of, money, sanitize_for_json
from fuelrecon.config import DEFAULT_SETTINGS, ReconSettings
from fuelrecon.data.normalize import parse_date
from fuelrecon.data.schemas import DateRange
from fuelrecon.data.store import DataStore

logger = logging.getLogger(__name__)

_UNUSUAL_FIELDS = ["litres", "total_cost", "price_per_litre"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ordered(df: pd.DataFrame) -> pd.DataFrame:
    """Most recent first, then most expensive first."""
    return df.sort_values(["transaction_date", "total_cost"], ascending=[False, False], kind="mergesort")


def _opt(value):
    return None if value is None or pd.isna(value) else value


def _entry(r) -> dict:
    return {
        "transaction_id": r.transaction_id,
        "card_id": r.card_id,
        "driver_id": _opt(r.driver_id),
        "driver_name": _opt(r.driver_name),
        "vehicle_id": _opt(r.vehicle_id),
        "vehicle_label": _opt(r.vehicle_label),
        "transaction_date": r.transaction_date.date().isoformat(),
        "transaction_time": _opt(r.transaction_time),
        "station_name": r.station_name,
        "litres": float(r.litres),
        "price_per_litre": float(r.price_per_litre),
        "total_cost": money(r.total_cost),
    }


def median_window(end: dt.date, settings: ReconSettings = DEFAULT_SETTINGS) -> DateRange:
    """The trailing window (inclusive) whose medians define 'usual' for a tenant."""
    return DateRange(end - dt.timedelta(days=settings.median_window_days - 1), end)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def find_unmatched(df: pd.DataFrame) -> list[dict]:
    if df.empty:
        return []
    no_driver = df["driver_id"].isna()
    no_vehicle = df["vehicle_id"].isna()
    flagged = _ordered(df[no_driver | no_vehicle])

    rows = []
    for r in flagged.itertuples(index=False):
        missing = [name for name, absent in (("driver", pd.isna(r.driver_id)), ("vehicle", pd.isna(r.vehicle_id))) if absent]
        e = _entry(r)
        e["missing"] = missing
        if len(missing) == 2:
            e["issue_type"] = "No driver or vehicle assigned"
        else:
            e["issue_type"] = f"No {missing[0]} assigned"
        rows.append(e)
    return rows


def find_exceeded(store: DataStore, tenant_id: str, today: dt.date) -> list[dict]:
    """Active cards whose spend in today's calendar month is over their monthly limit."""
    month = DateRange.month_of(today)
    df = store.frame(tenant_id, month)
    totals = df.groupby("card_id").agg(
        monthly_total=("total_cost", "sum"),
        transaction_count=("transaction_id", "count"),
    ) if not df.empty else pd.DataFrame(columns=["monthly_total", "transaction_count"])

    rows = []
    for card in store.cards_for(tenant_id):
        if not card.is_active or card.monthly_limit is None or card.card_id not in totals.index:
            continue
        total = float(totals.loc[card.card_id, "monthly_total"])
        if total <= card.monthly_limit:
            continue
        rows.append({
            "card_id": card.card_id,
            "last_four": card.last_four,
            "provider": card.provider,
            "status": card.status.value,
            "driver_id": card.driver_id,
            "driver_name": store.driver_name(tenant_id, card.driver_id),
            "vehicle_id": card.vehicle_id,
            "vehicle_label": store.vehicle_label(tenant_id, card.vehicle_id),
            "monthly_limit": money(card.monthly_limit),
            "monthly_total": money(total),
            "overage": money(total - card.monthly_limit),
            "transaction_count": int(totals.loc[card.card_id, "transaction_count"]),
            "month": today.strftime("%Y-%m"),
        })
    rows.sort(key=lambda r: r["overage"], reverse=True)
    return rows


def tenant_medians(
    store: DataStore,
    tenant_id: str,
    end: dt.date,
    settings: ReconSettings = DEFAULT_SETTINGS,
) -> dict[str, Optional[float]]:
    window = store.frame(tenant_id, median_window(end, settings))
    return {f: (median_of(window[f]) if not window.empty else None) for f in _UNUSUAL_FIELDS}


def find_unusual(df: pd.DataFrame, medians: dict[str, Optional[float]], settings: ReconSettings) -> list[dict]:
    if df.empty:
        return []
    high = settings.unusual_multiple
    low = settings.cheap_price_multiple

    rows = []
    for r in _ordered(df).itertuples(index=False):
        triggers = []
        for f in _UNUSUAL_FIELDS:
            med = medians.get(f)
            value = getattr(r, f)
            if med is None or med <= 0 or pd.isna(value):
                continue
            if value > high * med:
                triggers.append({"field": f, "value": float(value), "median": med,
                                 "threshold": high * med, "rule": "above_median_multiple"})
            elif f == "price_per_litre" and value < low * med:
                triggers.append({"field": f, "value": float(value), "median": med,
                                 "threshold": low * med, "rule": "below_median_multiple"})
        if triggers:
            e = _entry(r)
            e["triggers"] = triggers
            e["fields"] = [t["field"] for t in triggers]
            rows.append(e)
    return rows


def cost_clusters(costs: list[tuple[float, str]], tolerance: float) -> list[list[str]]:
    """Chain sorted (cost, id) pairs whose neighbours differ by at most tolerance."""
    clusters: list[list[str]] = []
    prev: Optional[float] = None
    for cost, txn_id in sorted(costs):
        if prev is None or round(cost - prev, 2) > tolerance + 1e-9:
            clusters.append([])
        clusters[-1].append(txn_id)
        prev = cost
    return clusters


def find_suspicious(df: pd.DataFrame, settings: ReconSettings) -> list[dict]:
    if df.empty:
        return []
    similar: dict[str, list[str]] = {}
    for _, group in df.groupby(["card_id", "transaction_date"]):
        if len(group) < 2:
            continue
        pairs = list(zip(group["total_cost"].astype(float), group["transaction_id"]))
        for cluster in cost_clusters(pairs, settings.duplicate_cost_tolerance):
            if len(cluster) < 2:
                continue
            for txn_id in cluster:
                similar[txn_id] = [other for other in cluster if other != txn_id]

    flagged = _ordered(df[df["transaction_id"].isin(similar)])
    rows = []
    for r in flagged.itertuples(index=False):
        e = _entry(r)
        e["similar_count"] = len(similar[r.transaction_id])
        e["similar_transaction_ids"] = similar[r.transaction_id]
        rows.append(e)
    return rows


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def classify(
    store: DataStore,
    tenant_id: str,
    date_range: DateRange | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    """All four categories plus summary counts for transactions in date_range."""
    today = today or dt.date.today()
    date_range = date_range or DateRange()
    df = store.frame(tenant_id, date_range)

    median_end = date_range.end_date or today
    medians = tenant_medians(store, tenant_id, median_end, settings)

    unmatched = find_unmatched(df)
    exceeded = find_exceeded(store, tenant_id, today)
    unusual = find_unusual(df, medians, settings)
    suspicious = find_suspicious(df, settings)

    summary = {
        "unmatched_transactions": len(unmatched),
        "cards_exceeding_limits": len(exceeded),
        "unusual_transactions": len(unusual),
        "suspicious_transactions": len(suspicious),
    }
    summary["total_issues"] = sum(summary.values())
    logger.info("Reconciliation for tenant %s (%s): %s", tenant_id, date_range.label, summary)

    return {
        "summary": summary,
        "unmatched": unmatched,
        "exceeded": exceeded,
        "unusual": unusual,
        "suspicious": suspicious,
        "medians": {**medians, "window": median_window(median_end, settings).to_dict()},
        "date_range": date_range.to_dict(),
        "transactions_reviewed": len(df),
    }


def get_reconciliation(
    store: DataStore,
    tenant_id: str,
    start_date: dt.date | str | None = None,
    end_date: dt.date | str | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    date_range = DateRange(
        parse_date(start_date) if start_date is not None else None,
        parse_date(end_date) if end_date is not None else None,
    )
    return sanitize_for_json(classify(store, tenant_id, date_range, settings, today))

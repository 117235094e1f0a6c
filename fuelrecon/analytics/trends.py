"""
Fuel analytics — monthly trend, driver rankings, vehicle efficiency, station
price comparison and day-of-week usage over a trailing window of months.
"""
from __future__ import annotations

import datetime as dt

import pandas as pd

from fuelrecon.analytics.common import money, safe_divide, sanitize_for_json
from fuelrecon.config import DEFAULT_SETTINGS, ReconSettings
from fuelrecon.data.schemas import DateRange
from fuelrecon.data.store import DataStore

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# ---------------------------------------------------------------------------
# Efficiency
# ---------------------------------------------------------------------------

def efficiency_samples(df: pd.DataFrame) -> pd.DataFrame:
    """One distance-per-litre sample per reading that has an earlier reading.

    A row carrying its own previous_mileage uses that; otherwise the vehicle's
    previous chronological reading is used.
    """
    cols = ["vehicle_id", "transaction_date", "distance", "litres", "efficiency"]
    if df.empty:
        return pd.DataFrame(columns=cols)
    readings = df[df["vehicle_id"].notna() & df["mileage"].notna()]
    if readings.empty:
        return pd.DataFrame(columns=cols)
    readings = readings.sort_values(
        ["vehicle_id", "transaction_date", "transaction_time", "mileage"],
        na_position="first", kind="mergesort",
    )

    samples = []
    for vehicle_id, group in readings.groupby("vehicle_id", sort=False):
        prior = None
        for r in group.itertuples(index=False):
            start = r.previous_mileage if pd.notna(r.previous_mileage) else prior
            prior = r.mileage
            if start is None or r.litres <= 0:
                continue
            distance = r.mileage - start
            if distance <= 0:
                continue
            samples.append({
                "vehicle_id": vehicle_id,
                "transaction_date": r.transaction_date,
                "distance": float(distance),
                "litres": float(r.litres),
                "efficiency": float(distance) / float(r.litres),
            })
    return pd.DataFrame(samples, columns=cols)


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------

def monthly_trend(df: pd.DataFrame, samples: pd.DataFrame, window: DateRange) -> list[dict]:
    months = pd.period_range(pd.Timestamp(window.start_date), pd.Timestamp(window.end_date), freq="M")
    if not df.empty:
        df = df.assign(period=df["transaction_date"].dt.to_period("M"))
    if not samples.empty:
        samples = samples.assign(period=pd.to_datetime(samples["transaction_date"]).dt.to_period("M"))

    rows = []
    for period in months:
        month_df = df[df["period"] == period] if not df.empty else df
        month_samples = samples[samples["period"] == period] if not samples.empty else samples
        count = len(month_df)
        rows.append({
            "month": str(period),
            "label": period.strftime("%B %Y"),
            "transactions": count,
            "total_cost": money(month_df["total_cost"].sum()) if count else 0.0,
            "total_litres": round(float(month_df["litres"].sum()), 2) if count else 0.0,
            "avg_price_per_litre": round(float(month_df["price_per_litre"].mean()), 3) if count else None,
            "avg_efficiency": round(float(month_samples["efficiency"].mean()), 2) if len(month_samples) else None,
        })
    return rows


def driver_rankings(df: pd.DataFrame, limit: int) -> list[dict]:
    drivers = df[df["driver_id"].notna()] if not df.empty else df
    if drivers.empty:
        return []
    g = drivers.groupby("driver_id").agg(
        driver_name=("driver_name", "first"),
        transaction_count=("transaction_id", "count"),
        total_spent=("total_cost", "sum"),
        total_litres=("litres", "sum"),
    ).reset_index()
    g["avg_cost_per_transaction"] = g["total_spent"] / g["transaction_count"]
    g = g.sort_values(["total_spent", "driver_id"], ascending=[False, True]).head(limit)
    return [
        {
            "driver_id": r.driver_id,
            "driver_name": r.driver_name,
            "transaction_count": int(r.transaction_count),
            "total_spent": money(r.total_spent),
            "total_litres": round(float(r.total_litres), 2),
            "avg_cost_per_transaction": money(r.avg_cost_per_transaction),
        }
        for r in g.itertuples(index=False)
    ]


def vehicle_efficiency(store: DataStore, tenant_id: str, samples: pd.DataFrame) -> list[dict]:
    if samples.empty:
        return []
    g = samples.groupby("vehicle_id").agg(
        samples=("efficiency", "count"),
        avg_efficiency=("efficiency", "mean"),
        best_efficiency=("efficiency", "max"),
        worst_efficiency=("efficiency", "min"),
        total_distance=("distance", "sum"),
        total_litres=("litres", "sum"),
    ).reset_index().sort_values(["avg_efficiency", "vehicle_id"], ascending=[False, True])
    return [
        {
            "vehicle_id": r.vehicle_id,
            "vehicle_label": store.vehicle_label(tenant_id, r.vehicle_id),
            "samples": int(r.samples),
            "avg_efficiency": round(float(r.avg_efficiency), 2),
            "best_efficiency": round(float(r.best_efficiency), 2),
            "worst_efficiency": round(float(r.worst_efficiency), 2),
            "total_distance": round(float(r.total_distance), 1),
            "total_litres": round(float(r.total_litres), 2),
        }
        for r in g.itertuples(index=False)
    ]


def station_comparison(df: pd.DataFrame, min_transactions: int, limit: int) -> list[dict]:
    if df.empty:
        return []
    g = df.groupby("station_name").agg(
        transaction_count=("transaction_id", "count"),
        avg_price_per_litre=("price_per_litre", "mean"),
        min_price_per_litre=("price_per_litre", "min"),
        max_price_per_litre=("price_per_litre", "max"),
        total_spent=("total_cost", "sum"),
        total_litres=("litres", "sum"),
    ).reset_index()
    g = g[g["transaction_count"] >= min_transactions]
    g = g.sort_values(["avg_price_per_litre", "station_name"]).head(limit)
    return [
        {
            "station_name": r.station_name,
            "transaction_count": int(r.transaction_count),
            "avg_price_per_litre": round(float(r.avg_price_per_litre), 3),
            "min_price_per_litre": round(float(r.min_price_per_litre), 3),
            "max_price_per_litre": round(float(r.max_price_per_litre), 3),
            "total_spent": money(r.total_spent),
            "total_litres": round(float(r.total_litres), 2),
        }
        for r in g.itertuples(index=False)
    ]


def usage_patterns(df: pd.DataFrame) -> list[dict]:
    """All seven weekdays, Monday first, zero-filled."""
    if df.empty:
        counts = pd.DataFrame(columns=["transaction_count", "total_cost", "total_litres"])
    else:
        counts = df.assign(dow=df["transaction_date"].dt.dayofweek).groupby("dow").agg(
            transaction_count=("transaction_id", "count"),
            total_cost=("total_cost", "sum"),
            total_litres=("litres", "sum"),
        )
    rows = []
    for i, name in enumerate(WEEKDAYS):
        present = i in counts.index
        rows.append({
            "day_of_week": i,
            "day_name": name,
            "transaction_count": int(counts.loc[i, "transaction_count"]) if present else 0,
            "total_cost": money(counts.loc[i, "total_cost"]) if present else 0.0,
            "total_litres": round(float(counts.loc[i, "total_litres"]), 2) if present else 0.0,
        })
    return rows


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def get_analytics(
    store: DataStore,
    tenant_id: str,
    months: int = 6,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    today = today or dt.date.today()
    months = max(1, int(months))
    window = DateRange.trailing_months(today, months)
    df = store.frame(tenant_id, window)

    # Efficiency needs readings from before the window to seed the first sample
    history = store.frame(tenant_id, DateRange(None, today))
    samples = efficiency_samples(history)
    if not samples.empty:
        in_window = pd.to_datetime(samples["transaction_date"]) >= pd.Timestamp(window.start_date)
        samples = samples[in_window]

    return sanitize_for_json({
        "period": {**window.to_dict(), "months": months},
        "trend": monthly_trend(df, samples, window),
        "driver_rankings": driver_rankings(df, settings.ranking_limit),
        "vehicle_efficiency": vehicle_efficiency(store, tenant_id, samples),
        "station_comparison": station_comparison(df, settings.station_min_transactions, settings.station_limit),
        "usage_patterns": usage_patterns(df),
    })


def fuel_statistics(store: DataStore, tenant_id: str, today: dt.date | None = None) -> dict:
    """Headline card and month-to-date figures for the fuel dashboard."""
    today = today or dt.date.today()
    month = DateRange.month_of(today)
    cards = store.cards_for(tenant_id)
    df = store.frame(tenant_id, month)

    samples = efficiency_samples(store.frame(tenant_id, DateRange(None, today)))
    if not samples.empty:
        samples = samples[pd.to_datetime(samples["transaction_date"]) >= pd.Timestamp(month.start_date)]

    count = len(df)
    cost = float(df["total_cost"].sum()) if count else 0.0
    litres = float(df["litres"].sum()) if count else 0.0
    return sanitize_for_json({
        "total_cards": len(cards),
        "active_cards": sum(1 for c in cards if c.is_active),
        "suspended_cards": sum(1 for c in cards if not c.is_active),
        "month": today.strftime("%Y-%m"),
        "transactions_this_month": count,
        "total_cost_this_month": money(cost),
        "total_litres_this_month": round(litres, 2),
        "avg_price_per_litre": round(safe_divide(cost, litres), 3) if litres else None,
        "avg_efficiency": round(float(samples["efficiency"].mean()), 2) if len(samples) else None,
    })

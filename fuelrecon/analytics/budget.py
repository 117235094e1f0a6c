"""
Budget projection — month-to-date spend, prior-month deltas, linear month-end
projection per card and per tenant, and the budget alerts derived from them.
"""
from __future__ import annotations

import datetime as dt
import logging

import pandas as pd

from fuelrecon import errors
from fuelrecon.analytics.common import money, pct_change, safe_divide, sanitize_for_json
from fuelrecon.config import DEFAULT_SETTINGS, ReconSettings
from fuelrecon.data.schemas import DateRange, FuelCard, days_in_month
from fuelrecon.data.store import DataStore
from fuelrecon.errors import ConfigurationError

logger = logging.getLogger(__name__)

STATUS_NO_LIMIT = "No limit set"
STATUS_NOT_USED = "Not used"
STATUS_EXCEEDED = "Exceeded"
STATUS_OK = "OK"


def warning_label(settings: ReconSettings = DEFAULT_SETTINGS) -> str:
    return f"Warning (>{settings.budget_warning_pct:g}%)"


def linear_projection(total: float, days_elapsed: int, month_days: int) -> dict:
    """Straight-line month-end projection. days_elapsed is clamped to at least 1."""
    days = max(1, int(days_elapsed))
    daily = total / days
    return {
        "days_elapsed_in_month": days,
        "days_in_month": month_days,
        "daily_average": daily,
        "projected_month_total": daily * month_days,
    }


def _month_summary(df: pd.DataFrame, month: DateRange) -> dict:
    count = len(df)
    cost = float(df["total_cost"].sum()) if count else 0.0
    litres = float(df["litres"].sum()) if count else 0.0
    return {
        "month": month.start_date.strftime("%Y-%m"),
        "transactions": count,
        "total_cost": money(cost),
        "total_litres": round(litres, 2),
        "avg_per_transaction": money(safe_divide(cost, count)),
        "avg_price_per_litre": round(safe_divide(cost, litres), 3) if litres else None,
    }


def card_status(spend: float, used: bool, limit: float | None, settings: ReconSettings) -> str:
    if limit is None:
        return STATUS_NO_LIMIT
    if not used:
        return STATUS_NOT_USED
    if spend > limit:
        return STATUS_EXCEEDED
    if safe_divide(spend, limit) * 100 > settings.budget_warning_pct:
        return warning_label(settings)
    return STATUS_OK


def _budget_rows(
    store: DataStore,
    tenant_id: str,
    cards: list[FuelCard],
    current: pd.DataFrame,
    days_elapsed: int,
    month_days: int,
    settings: ReconSettings,
) -> list[dict]:
    by_card = current.groupby("card_id")["total_cost"].agg(["sum", "count"]) if not current.empty else None

    rows = []
    for card in cards:
        used = by_card is not None and card.card_id in by_card.index
        spend = float(by_card.loc[card.card_id, "sum"]) if used else 0.0
        count = int(by_card.loc[card.card_id, "count"]) if used else 0
        limit = card.monthly_limit
        projected = linear_projection(spend, days_elapsed, month_days)["projected_month_total"]
        rows.append({
            "card_id": card.card_id,
            "last_four": card.last_four,
            "provider": card.provider,
            "driver_name": store.driver_name(tenant_id, card.driver_id),
            "vehicle_label": store.vehicle_label(tenant_id, card.vehicle_id),
            "monthly_limit": money(limit) if limit is not None else None,
            "current_spending": money(spend),
            "transaction_count": count,
            "budget_used_percentage": round(safe_divide(spend, limit) * 100, 1) if limit is not None else None,
            "remaining": money(limit - spend) if limit is not None else None,
            "projected_spending": money(projected),
            "status": card_status(spend, used, limit, settings),
        })
    # Highest usage first, cards without a limit last
    rows.sort(key=lambda r: (r["budget_used_percentage"] is None, -(r["budget_used_percentage"] or 0)))
    return rows


def _alerts(rows: list[dict], projected: dict, settings: ReconSettings) -> list[dict]:
    alerts = []
    warning = warning_label(settings)
    for r in rows:
        base = {"card_id": r["card_id"], "last_four": r["last_four"], "driver_name": r["driver_name"]}
        limit = r["monthly_limit"]
        if r["status"] == STATUS_EXCEEDED:
            alerts.append({**base, "kind": "exceeded", "severity": "critical",
                           "message": f"Card ending {r['last_four']} is £{r['current_spending'] - limit:,.2f} over its £{limit:,.2f} monthly limit"})
        elif r["status"] == warning:
            alerts.append({**base, "kind": "warning", "severity": "warning",
                           "message": f"Card ending {r['last_four']} has used {r['budget_used_percentage']:g}% of its monthly limit"})
        if limit is not None and r["current_spending"] <= limit < r["projected_spending"]:
            alerts.append({**base, "kind": "projected_overrun", "severity": "warning",
                           "message": f"Card ending {r['last_four']} is projected to reach £{r['projected_spending']:,.2f} against a £{limit:,.2f} limit"})

    total = projected["projected_month_total"]
    if total >= settings.projection_alert_total:
        alerts.append({"card_id": None, "kind": "projected_total", "severity": "warning",
                       "message": f"Projected fuel spend this month is £{total:,.2f}"})
    return alerts


def project(
    store: DataStore,
    tenant_id: str,
    card_id: str | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    """Current vs previous month, linear projection, per-card budget status, alerts."""
    today = today or dt.date.today()
    this_month = DateRange.month_of(today)
    last_month = this_month.previous_month()

    if card_id is not None:
        card = store.card_get(tenant_id, card_id)
        if card is None:
            raise ConfigurationError(f"Fuel card '{card_id}' not found", code=errors.CARD_NOT_FOUND)
        cards = [card]
    else:
        cards = [c for c in store.cards_for(tenant_id) if c.is_active]

    current = store.frame(tenant_id, this_month)
    previous = store.frame(tenant_id, last_month)
    if card_id is not None:
        current = current[current["card_id"] == card_id]
        previous = previous[previous["card_id"] == card_id]

    cur = _month_summary(current, this_month)
    prev = _month_summary(previous, last_month)
    changes = {
        "cost_change_percent": pct_change(cur["total_cost"], prev["total_cost"]),
        "litres_change_percent": pct_change(cur["total_litres"], prev["total_litres"]),
        "transactions_change_percent": pct_change(cur["transactions"], prev["transactions"]),
        "cost_change_amount": money(cur["total_cost"] - prev["total_cost"]),
    }

    month_days = days_in_month(today)
    projected = {
        "current_month_total": cur["total_cost"],
        "previous_month_total": prev["total_cost"],
        **linear_projection(cur["total_cost"], today.day, month_days),
    }

    rows = _budget_rows(store, tenant_id, cards, current, today.day, month_days, settings)
    alerts = _alerts(rows, projected, settings)
    logger.info(
        "Budget projection for tenant %s: %.2f to date, %.2f projected, %d alerts",
        tenant_id, projected["current_month_total"], projected["projected_month_total"], len(alerts),
    )
    return {
        "card_id": card_id,
        "current_month": cur,
        "previous_month": prev,
        "changes": changes,
        "projected": projected,
        "budget_status": rows,
        "alerts": alerts,
    }


def get_budget_projection(
    store: DataStore,
    tenant_id: str,
    card_id: str | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    result = project(store, tenant_id, card_id, settings, today)
    p = result["projected"]
    p["daily_average"] = money(p["daily_average"])
    p["projected_month_total"] = money(p["projected_month_total"])
    return sanitize_for_json(result)

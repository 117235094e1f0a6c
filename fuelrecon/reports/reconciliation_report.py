"""
Fuel Reconciliation Report — Summary with budget projection, then one sheet per
issue category.
"""
from __future__ import annotations

import datetime as dt
from pathlib import Path

from fuelrecon.analytics.budget import STATUS_EXCEEDED, get_budget_projection
from fuelrecon.analytics.reconciliation import get_reconciliation
from fuelrecon.config import DEFAULT_SETTINGS, ReconSettings
from fuelrecon.data.store import DataStore
from fuelrecon.excel.writer import ExcelWriter


CATEGORY_LEGEND = [
    ("UNMATCHED", "Transactions with no driver or no vehicle recorded"),
    ("EXCEEDED", "Cards whose spend this calendar month is over their monthly limit"),
    ("UNUSUAL", "Litres, cost or price per litre far above the 90-day median, or a price far below it"),
    ("SUSPICIOUS", "Same card, same day, near-identical amount: possible double entry or cloned card"),
]

_TXN_COLS = [
    ("transaction_date", "date", "Date"),
    ("transaction_time", "text", "Time"),
    ("card_id", "text", "Card"),
    ("driver_name", "text", "Driver"),
    ("vehicle_label", "text", "Vehicle"),
    ("station_name", "text", "Station"),
    ("litres", "decimal", "Litres"),
    ("price_per_litre", "price", "Price/L"),
    ("total_cost", "currency", "Total Cost"),
]


def _range_label(date_range: dict) -> str:
    start, end = date_range.get("start_date"), date_range.get("end_date")
    if not start and not end:
        return "All Time"
    return f"{start or 'start'} to {end or 'today'}"


def generate_json(
    store: DataStore,
    tenant_id: str,
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> dict:
    return {
        "tenant_id": tenant_id,
        "reconciliation": get_reconciliation(store, tenant_id, start_date, end_date, settings, today),
        "budget": get_budget_projection(store, tenant_id, settings=settings, today=today),
    }


def build_workbook(data: dict) -> ExcelWriter:
    recon = data["reconciliation"]
    budget = data["budget"]
    summary = recon["summary"]
    ew = ExcelWriter()

    # Summary
    ws = ew.add_sheet("Summary")
    ew.write_title(ws, "FUEL RECONCILIATION", f"Tenant {data['tenant_id']}  |  {_range_label(recon['date_range'])}")
    row = ew.write_section(ws, 4, "ISSUES")
    row = ew.write_kpi_row(ws, row, [
        (summary["unmatched_transactions"], "Unmatched", "number"),
        (summary["cards_exceeding_limits"], "Cards Over Limit", "number"),
        (summary["unusual_transactions"], "Unusual", "number"),
        (summary["suspicious_transactions"], "Suspicious", "number"),
    ])

    projected = budget["projected"]
    row = ew.write_section(ws, row, "BUDGET PROJECTION")
    row = ew.write_kpi_row(ws, row, [
        (projected["current_month_total"], "Spend This Month", "currency"),
        (projected["previous_month_total"], "Spend Last Month", "currency"),
        (projected["projected_month_total"], "Projected Month-End", "currency"),
    ])
    ew.write_delta_kpi(ws, row - 3, 7, budget["changes"]["cost_change_percent"], "Change vs Last Month")
    row = ew.write_insight(
        ws, row, "Projection basis",
        f"£{projected['daily_average']:,.2f}/day over {projected['days_elapsed_in_month']} of "
        f"{projected['days_in_month']} days",
    )
    for alert in budget["alerts"]:
        row = ew.write_insight(ws, row, alert["kind"].replace("_", " ").title(), alert["message"])

    row = ew.write_section(ws, row, "CATEGORY KEY")
    ew.write_legend(ws, row, CATEGORY_LEGEND)

    # Unmatched
    ws = ew.add_sheet("Unmatched")
    ew.write_table(ws, 1, _TXN_COLS + [("issue_type", "text", "Issue")], recon["unmatched"])

    # Exceeded
    ws = ew.add_sheet("Exceeded")
    ew.write_table(ws, 1, [
        ("card_id", "text", "Card"),
        ("last_four", "text", "Last Four"),
        ("driver_name", "text", "Driver"),
        ("monthly_limit", "currency", "Monthly Limit"),
        ("monthly_total", "currency", "Spent This Month"),
        ("overage", "currency", "Overage"),
        ("transaction_count", "number", "Transactions"),
    ], recon["exceeded"], highlight_fn=lambda i, r: "danger", show_total=bool(recon["exceeded"]))

    # Unusual
    ws = ew.add_sheet("Unusual")
    ew.write_table(ws, 1, _TXN_COLS + [("fields", "text", "Triggered By")], recon["unusual"])

    # Suspicious
    ws = ew.add_sheet("Suspicious")
    ew.write_table(
        ws, 1,
        _TXN_COLS + [("similar_count", "number", "Similar"), ("similar_transaction_ids", "text", "Similar To")],
        recon["suspicious"],
    )

    # Budget status
    ws = ew.add_sheet("Budget Status")
    ew.write_table(ws, 1, [
        ("card_id", "text", "Card"),
        ("last_four", "text", "Last Four"),
        ("driver_name", "text", "Driver"),
        ("monthly_limit", "currency", "Monthly Limit"),
        ("current_spending", "currency", "Spent"),
        ("budget_used_percentage", "percent", "Used"),
        ("projected_spending", "currency", "Projected"),
        ("status", "text", "Status"),
    ], budget["budget_status"], highlight_fn=_status_highlight)

    return ew


def _status_highlight(_idx: int, row: dict) -> str | None:
    status = row.get("status") or ""
    if status == STATUS_EXCEEDED:
        return "danger"
    if status.startswith("Warning"):
        return "warning"
    return None


def generate_excel(
    store: DataStore,
    tenant_id: str,
    output_path: str | Path,
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: dt.date | None = None,
) -> Path:
    data = generate_json(store, tenant_id, start_date, end_date, settings, today)
    return build_workbook(data).save(output_path)

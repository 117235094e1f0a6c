"""
Dashboard endpoints — reconciliation, spending analysis, analytics, statistics.
"""
from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response

from fuelrecon.analytics.budget import get_budget_projection
from fuelrecon.analytics.reconciliation import get_reconciliation
from fuelrecon.analytics.trends import fuel_statistics, get_analytics
from fuelrecon.api.dependencies import get_settings, get_store, get_today, parse_date_range
from fuelrecon.config import ReconSettings
from fuelrecon.data.schemas import DateRange
from fuelrecon.data.store import DataStore
from fuelrecon.reports.reconciliation_report import build_workbook, generate_json

router = APIRouter(prefix="/api/tenants/{tenant_id}", tags=["dashboard"])

_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/fuel-reconciliation")
def reconciliation(
    tenant_id: str,
    date_range: DateRange = Depends(parse_date_range),
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    """Unmatched, over-limit, unusual and suspicious transactions."""
    return JSONResponse(content=get_reconciliation(
        store, tenant_id, date_range.start_date, date_range.end_date, settings, today,
    ))


@router.get("/fuel-reconciliation/excel")
def reconciliation_excel(
    tenant_id: str,
    date_range: DateRange = Depends(parse_date_range),
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    data = generate_json(store, tenant_id, date_range.start_date, date_range.end_date, settings, today)
    filename = f"fuel-reconciliation-{tenant_id}-{today.isoformat()}.xlsx"
    return Response(
        content=build_workbook(data).to_bytes(),
        media_type=_XLSX,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/fuel-spending-analysis")
def spending_analysis(
    tenant_id: str,
    card_id: Optional[str] = Query(None),
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    """Month comparison, projection, per-card budget status and alerts."""
    return JSONResponse(content=get_budget_projection(store, tenant_id, card_id, settings, today))


@router.get("/fuel-analytics")
def analytics(
    tenant_id: str,
    months: int = Query(6, ge=1, le=36),
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    return JSONResponse(content=get_analytics(store, tenant_id, months, settings, today))


@router.get("/fuel-statistics")
def statistics(
    tenant_id: str,
    store: DataStore = Depends(get_store),
    today: dt.date = Depends(get_today),
):
    return JSONResponse(content=fuel_statistics(store, tenant_id, today))

"""
Transaction endpoints: manual entry, bulk validate/import, file upload, export.
"""
from __future__ import annotations

import datetime as dt
from typing import Optional

import pandas as pd
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, Response

from fuelrecon.analytics.common import sanitize_for_json
from fuelrecon.api.dependencies import get_settings, get_store, get_today, parse_date_range
from fuelrecon.api.response_models import BatchRequest, TransactionCreate
from fuelrecon.config import ReconSettings
from fuelrecon.data.importer import import_batch, validate_batch
from fuelrecon.data.loader import frame_to_rows, read_upload
from fuelrecon.data.schemas import DateRange
from fuelrecon.data.store import TRANSACTION_COLUMNS, DataStore

router = APIRouter(prefix="/api/tenants/{tenant_id}/fuel-transactions", tags=["transactions"])


@router.post("", status_code=201)
def create_transaction(
    tenant_id: str,
    body: TransactionCreate,
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    """Manual entry: same validation and duplicate protection as a one-row import."""
    result = import_batch(store, tenant_id, [body.model_dump(exclude_none=True)], settings=settings, today=today)
    detail = result["details"][0]
    if detail["status"] == "skipped_duplicate":
        raise HTTPException(409, detail)
    if detail["status"] == "failed":
        raise HTTPException(400, detail)
    txn = store.transaction_get(tenant_id, detail["transaction_id"])
    return {**sanitize_for_json(txn.to_dict()), "warnings": detail["warnings"]}


@router.post("/validate")
def validate(
    tenant_id: str,
    body: BatchRequest,
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    return validate_batch(store, tenant_id, body.rows, body.provider_label, settings, today)


@router.post("/import")
def import_rows(
    tenant_id: str,
    body: BatchRequest,
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    """Commit a batch. Importing 0 of N rows is still a 200; read the counts."""
    return import_batch(store, tenant_id, body.rows, body.provider_label, settings, today)


@router.post("/upload")
async def upload(
    tenant_id: str,
    file: UploadFile = File(...),
    validate_only: bool = Form(True),
    provider_label: Optional[str] = Form(None),
    store: DataStore = Depends(get_store),
    settings: ReconSettings = Depends(get_settings),
    today: dt.date = Depends(get_today),
):
    """Validate or import a provider CSV/XLSX statement."""
    if not file.filename:
        raise HTTPException(400, "Missing filename")
    content = await file.read()
    rows = frame_to_rows(read_upload(content, file.filename), file.filename)
    run = validate_batch if validate_only else import_batch
    result = run(store, tenant_id, rows, provider_label, settings, today)
    return {"filename": file.filename, "provider_label": provider_label, **result}


@router.get("/export")
def export(
    tenant_id: str,
    format: str = Query("csv", pattern="^(csv|json)$"),
    date_range: DateRange = Depends(parse_date_range),
    store: DataStore = Depends(get_store),
):
    txns = sorted(store.transaction_query(tenant_id, date_range), key=lambda t: (t.transaction_date, t.transaction_id))
    records = [sanitize_for_json(t.to_dict()) for t in txns]
    if format == "json":
        return JSONResponse(content={"transactions": records, "count": len(records)})

    csv = pd.DataFrame(records, columns=TRANSACTION_COLUMNS).to_csv(index=False)
    filename = f"fuel-transactions-{tenant_id}-{dt.date.today().isoformat()}.csv"
    return Response(
        content=csv,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

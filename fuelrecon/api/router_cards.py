"""
Card management endpoints: list/create/update cards, card history, directory seeding.
"""
from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, Query

from fuelrecon.analytics.common import sanitize_for_json
from fuelrecon.api.dependencies import get_store, get_today, parse_date_range
from fuelrecon.api.response_models import (
    CardCreate, CardTransactionsResponse, CardUpdate, DriverCreate, NotesUpdate, Pagination, VehicleCreate,
)
from fuelrecon.data.schemas import DateRange, FuelCard
from fuelrecon.data.store import DataStore

router = APIRouter(prefix="/api/tenants/{tenant_id}", tags=["cards"])


def _card_json(store: DataStore, tenant_id: str, card: FuelCard) -> dict:
    d = card.to_dict()
    d["driver_name"] = store.driver_name(tenant_id, card.driver_id)
    d["vehicle_label"] = store.vehicle_label(tenant_id, card.vehicle_id)
    return d


@router.get("/fuelcards")
def list_cards(tenant_id: str, store: DataStore = Depends(get_store)):
    cards = [_card_json(store, tenant_id, c) for c in store.cards_for(tenant_id)]
    return {"cards": cards, "count": len(cards)}


@router.post("/fuelcards", status_code=201)
def create_card(
    tenant_id: str,
    body: CardCreate,
    store: DataStore = Depends(get_store),
    today: dt.date = Depends(get_today),
):
    fields = body.model_dump()
    fields["created_on"] = fields["created_on"] or today
    card = store.register_card(FuelCard(tenant_id=tenant_id, **fields))
    return _card_json(store, tenant_id, card)


@router.put("/fuelcards/{card_id}")
def update_card(tenant_id: str, card_id: str, body: CardUpdate, store: DataStore = Depends(get_store)):
    card = store.update_card(tenant_id, card_id, **body.model_dump(exclude_unset=True))
    return _card_json(store, tenant_id, card)


@router.get("/fuelcards/{card_id}/transactions", response_model=CardTransactionsResponse)
def card_transactions(
    tenant_id: str,
    card_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    date_range: DateRange = Depends(parse_date_range),
    store: DataStore = Depends(get_store),
):
    """Paginated history for one card, newest first."""
    card = store.card_get(tenant_id, card_id)
    if card is None:
        raise HTTPException(404, f"Fuel card '{card_id}' not found")
    txns = [t for t in store.transaction_query(tenant_id, date_range) if t.card_id == card.card_id]
    txns.sort(key=lambda t: (t.transaction_date, t.transaction_time or dt.time.min), reverse=True)
    page = txns[offset:offset + limit]
    return CardTransactionsResponse(
        card=sanitize_for_json(_card_json(store, tenant_id, card)),
        transactions=[sanitize_for_json(t.to_dict()) for t in page],
        pagination=Pagination(
            total=len(txns), limit=limit, offset=offset, has_more=offset + len(page) < len(txns),
        ),
    )


@router.patch("/fuel-transactions/{transaction_id}/notes")
def update_notes(tenant_id: str, transaction_id: str, body: NotesUpdate, store: DataStore = Depends(get_store)):
    return sanitize_for_json(store.update_notes(tenant_id, transaction_id, body.notes).to_dict())


@router.post("/drivers", status_code=201)
def add_driver(tenant_id: str, body: DriverCreate, store: DataStore = Depends(get_store)):
    store.add_driver(tenant_id, body.driver_id, body.name)
    return {"driver_id": body.driver_id, "name": store.driver_name(tenant_id, body.driver_id)}


@router.post("/vehicles", status_code=201)
def add_vehicle(tenant_id: str, body: VehicleCreate, store: DataStore = Depends(get_store)):
    store.add_vehicle(tenant_id, body.vehicle_id, body.registration)
    return {"vehicle_id": body.vehicle_id, "registration": store.vehicle_label(tenant_id, body.vehicle_id)}

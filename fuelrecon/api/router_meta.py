"""
Meta endpoints: health, reload.
"""
from __future__ import annotations

import logging
import threading

from fastapi import APIRouter, Depends

from fuelrecon.data.store import DataStore
from fuelrecon.api.dependencies import get_store_or_empty, set_store
from fuelrecon.api.response_models import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["meta"])


@router.get("/health", response_model=HealthResponse)
def health(store: DataStore = Depends(get_store_or_empty)):
    tenants = set(store.cards) | set(store.transactions)
    return HealthResponse(
        status="ok" if store.is_loaded else "loading",
        tenants=len(tenants),
        cards=sum(len(c) for c in store.cards.values()),
        transactions=sum(len(t) for t in store.transactions.values()),
    )


@router.post("/reload")
def reload_data(store: DataStore = Depends(get_store_or_empty)):
    """Re-read the inbox snapshots into a fresh store.

    Returns immediately, reload happens in background; the old store keeps
    serving until the new one is ready.
    """
    def _do_reload():
        fresh = DataStore(store.settings).load()
        set_store(fresh)
        logger.info("Reload complete: %d transactions", sum(len(t) for t in fresh.transactions.values()))

    threading.Thread(target=_do_reload, daemon=True).start()
    return {
        "status": "reloading",
        "message": "Data reload started in background. Check /api/health for updated counts.",
    }

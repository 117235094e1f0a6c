"""
Fuel Recon — FastAPI app factory with startup data loading.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fuelrecon.config import BASE_FOLDER, EXPORTS_FOLDER, INBOX_FOLDER, REPORTS_FOLDER
from fuelrecon.data.store import DataStore
from fuelrecon.errors import ConfigurationError, StructuralError
from fuelrecon.logging_config import setup_logging
from fuelrecon.api.dependencies import set_store
from fuelrecon.api.router_meta import router as meta_router
from fuelrecon.api.router_cards import router as cards_router
from fuelrecon.api.router_import import router as import_router
from fuelrecon.api.router_dashboard import router as dashboard_router

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"card_not_found", "transaction_not_found"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the inbox snapshots at startup."""
    setup_logging()
    for d in [INBOX_FOLDER, REPORTS_FOLDER, EXPORTS_FOLDER]:
        d.mkdir(parents=True, exist_ok=True)
    print(f"  FUELRECON_DATA_DIR = {BASE_FOLDER}")

    store = DataStore()
    store.load(INBOX_FOLDER)
    set_store(store)

    total = sum(len(t) for t in store.transactions.values())
    if total:
        print(f"\nFuel Recon ready — {total:,} transactions\n")
    else:
        print("\nFuel Recon ready — no transactions yet. Import a provider statement to begin.\n")
    yield


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Fuel Recon API",
        description="Fuel card transaction import, reconciliation, budget projection and analytics",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StructuralError)
    async def structural_error(request: Request, exc: StructuralError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        status = 404 if exc.code in _NOT_FOUND_CODES else 400
        return JSONResponse(status_code=status, content=exc.to_dict())

    app.include_router(meta_router)
    app.include_router(cards_router)
    app.include_router(import_router)
    app.include_router(dashboard_router)
    return app


app = create_app()

"""
Pydantic request/response schemas for the API.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    tenants: int
    cards: int
    transactions: int


class BatchRequest(BaseModel):
    rows: list[dict[str, Any]]
    provider_label: Optional[str] = None


class CardCreate(BaseModel):
    card_id: str
    last_four: str = Field(..., description="Exactly four digits")
    provider: str = "other"
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    monthly_limit: Optional[float] = Field(None, ge=0)
    daily_limit: Optional[float] = Field(None, ge=0)
    status: str = Field("active", pattern="^(active|suspended)$")
    created_on: Optional[dt.date] = None


class CardUpdate(BaseModel):
    last_four: Optional[str] = None
    provider: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    monthly_limit: Optional[float] = Field(None, ge=0)
    daily_limit: Optional[float] = Field(None, ge=0)
    status: Optional[str] = Field(None, pattern="^(active|suspended)$")


class TransactionCreate(BaseModel):
    card_id: str
    transaction_date: str
    station_name: str
    litres: float
    total_cost: float
    price_per_litre: Optional[float] = None
    transaction_time: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    mileage: Optional[float] = None
    previous_mileage: Optional[float] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None


class NotesUpdate(BaseModel):
    notes: Optional[str] = None


class DriverCreate(BaseModel):
    driver_id: str
    name: Optional[str] = None


class VehicleCreate(BaseModel):
    vehicle_id: str
    registration: Optional[str] = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class CardTransactionsResponse(BaseModel):
    card: dict[str, Any]
    transactions: list[dict[str, Any]]
    pagination: Pagination

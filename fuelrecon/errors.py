"""
Error taxonomy shared by the import pipeline and the API layer.

Only StructuralError aborts a whole call. Everything else is reported per row
through reason codes; the exception classes exist for the places that raise
them (storage, card management).
"""
from __future__ import annotations


class FuelReconError(Exception):
    """Base class for all fuel recon errors."""

    code = "error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class StructuralError(FuelReconError):
    """Malformed input: empty batch, oversized batch, unreadable file, no header."""

    code = "structural_error"


class ConfigurationError(FuelReconError):
    """Card not found, card suspended, tenant mismatch, bad card definition."""

    code = "configuration_error"


class TransientStorageError(FuelReconError):
    """Lock contention or a similar short-lived storage failure. Safe to retry."""

    code = "storage_error"


# ---------------------------------------------------------------------------
# Row-level reason codes
# ---------------------------------------------------------------------------

MISSING_FIELD = "missing_field"
UNPARSEABLE_FIELD = "unparseable_field"
CARD_NOT_FOUND = "card_not_found"
CARD_SUSPENDED = "card_suspended"
TENANT_MISMATCH = "tenant_mismatch"
DRIVER_MISMATCH = "driver_mismatch"
VEHICLE_MISMATCH = "vehicle_mismatch"
DRIVER_NOT_FOUND = "driver_not_found"
VEHICLE_NOT_FOUND = "vehicle_not_found"
INVALID_LITRES = "invalid_litres"
INVALID_PRICE = "invalid_price"
INVALID_COST = "invalid_cost"
COST_MISMATCH = "cost_mismatch"
FUTURE_DATE = "future_date"
PREDATES_CARD = "predates_card"
MILEAGE_REGRESSION = "mileage_regression"
LOOKUP_TIMEOUT = "lookup_timeout"
STORAGE_ERROR = "storage_error"
ALREADY_IMPORTED = "already_imported"

# Warnings
PRICE_OUT_OF_RANGE = "price_out_of_range"
LITRES_OVER_CAPACITY = "litres_over_capacity"

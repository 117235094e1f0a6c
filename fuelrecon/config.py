"""
Fuel Recon — Configuration: paths, header aliases, thresholds.
"""
import os
from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# Paths: override with FUELRECON_DATA_DIR env var for cloud deployment
# ---------------------------------------------------------------------------
_data_dir = Path(os.environ.get("FUELRECON_DATA_DIR", str(Path.home() / "FuelRecon")))
BASE_FOLDER = _data_dir
INBOX_FOLDER = _data_dir / "inbox"
REPORTS_FOLDER = _data_dir / "reports"
EXPORTS_FOLDER = _data_dir / "exports"

# Write transactions.csv back to the inbox after every committed import
PERSIST_DATA = os.environ.get("FUELRECON_PERSIST", "false").lower() == "true"

LOG_LEVEL = os.environ.get("FUELRECON_LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("FUELRECON_LOG_FORMAT", "text")  # text | json

# ---------------------------------------------------------------------------
# Snapshot files inside the inbox (one row per record, tenant_id column)
# ---------------------------------------------------------------------------
CARDS_FILE = "cards.csv"
DRIVERS_FILE = "drivers.csv"
VEHICLES_FILE = "vehicles.csv"
TRANSACTIONS_FILE = "transactions.csv"

# ---------------------------------------------------------------------------
# Header aliases for bulk import → canonical field names.
# Matching ignores case, spaces, underscores and hyphens.
# ---------------------------------------------------------------------------
COLUMN_ALIASES = {
    "card_id": ["card_id", "CardID", "Card ID", "Card", "Card Number"],
    "transaction_date": ["transaction_date", "Date", "TransactionDate", "Txn Date"],
    "transaction_time": ["transaction_time", "Time", "TransactionTime", "Txn Time"],
    "litres": ["litres", "Litres", "Volume", "Liters", "Quantity"],
    "total_cost": ["total_cost", "Cost", "TotalCost", "Amount", "Total"],
    "price_per_litre": ["price_per_litre", "Price/L", "PPL", "Price Per Litre", "Unit Price"],
    "station_name": ["station_name", "Station", "StationName", "Site", "Location"],
    "receipt_number": ["receipt_number", "Receipt", "ReceiptNumber", "Receipt No"],
    "driver_id": ["driver_id", "Driver", "DriverID"],
    "vehicle_id": ["vehicle_id", "Vehicle", "VehicleID", "Registration"],
    "mileage": ["mileage", "Odometer", "Mileage Reading"],
    "previous_mileage": ["previous_mileage", "Prior Mileage", "Previous Odometer"],
    "notes": ["notes", "Note", "Comments"],
}

REQUIRED_FIELDS = ["card_id", "transaction_date", "litres", "total_cost", "station_name"]

# ---------------------------------------------------------------------------
# Card providers
# ---------------------------------------------------------------------------
CARD_PROVIDERS = {"allstar", "keyfuels", "shell", "bp", "esso", "texaco", "ukfuels", "other"}


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


@dataclass(frozen=True)
class ReconSettings:
    """Tunable thresholds for import validation, reconciliation and budgeting."""

    # Import
    max_batch_rows: int = _env_int("FUELRECON_MAX_BATCH_ROWS", 5000)
    cost_tolerance: float = _env_float("FUELRECON_COST_TOL", 0.01)
    storage_lock_timeout: float = _env_float("FUELRECON_LOCK_TIMEOUT", 5.0)
    import_workers: int = _env_int("FUELRECON_IMPORT_WORKERS", 1)

    # Sanity bounds produce warnings, never rejections
    price_floor: float = 0.50
    price_ceiling: float = 5.00
    max_tank_litres: float = 200.0

    # Reconciliation
    unusual_multiple: float = _env_float("FUELRECON_UNUSUAL_MULTIPLE", 2.5)
    cheap_price_multiple: float = _env_float("FUELRECON_CHEAP_PRICE_MULTIPLE", 0.2)
    median_window_days: int = _env_int("FUELRECON_MEDIAN_WINDOW_DAYS", 90)
    duplicate_cost_tolerance: float = _env_float("FUELRECON_DUPLICATE_TOL", 0.01)

    # Budget
    budget_warning_pct: float = _env_float("FUELRECON_BUDGET_WARNING_PCT", 80.0)
    projection_alert_total: float = _env_float("FUELRECON_PROJECTION_ALERT_TOTAL", 10000.0)

    # Analytics
    ranking_limit: int = 20
    station_min_transactions: int = 3
    station_limit: int = 15


DEFAULT_SETTINGS = ReconSettings()

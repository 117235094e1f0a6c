"""Data loading, normalization, validation, import and in-memory storage."""
from .loader import discover_imports, load_rows
from .store import DataStore
from .schemas import DateRange, FuelCard, FuelTransaction
from .normalize import normalize_row, build_header_map
from .importer import import_batch, validate_batch

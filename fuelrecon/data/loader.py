"""
Tabular file reading: provider import files and the inbox snapshot CSVs.
"""
from __future__ import annotations

import io
from pathlib import Path

import pandas as pd

from fuelrecon.config import INBOX_FOLDER, REQUIRED_FIELDS
from fuelrecon.data.normalize import build_header_map
from fuelrecon.errors import StructuralError

IMPORT_SUFFIXES = {".csv", ".xlsx", ".xls"}

# Snapshot files written by DataStore.save(), skipped during import discovery
_SNAPSHOT_NAMES = {"cards.csv", "drivers.csv", "vehicles.csv", "transactions.csv"}


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def discover_imports(folder: Path = INBOX_FOLDER) -> list[Path]:
    """Recursively find provider import files, newest first."""
    if not folder.exists():
        return []
    matches = [
        p for p in folder.rglob("*")
        if p.is_file() and p.suffix.lower() in IMPORT_SUFFIXES and p.name.lower() not in _SNAPSHOT_NAMES
    ]
    matches.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return matches


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _read(source, suffix: str, name: str) -> pd.DataFrame:
    # Everything as text: the normaliser owns number and date parsing
    try:
        if suffix == ".csv":
            return pd.read_csv(source, dtype=str, keep_default_na=False, skip_blank_lines=True)
        if suffix in (".xlsx", ".xls"):
            return pd.read_excel(source, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError as exc:
        raise StructuralError(f"{name} is empty") from exc
    except (ValueError, OSError, pd.errors.ParserError) as exc:
        raise StructuralError(f"Could not read {name}: {exc}") from exc
    raise StructuralError(f"Unsupported file type '{suffix}' for {name} (expected CSV or XLSX)")


def read_table(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise StructuralError(f"File not found: {path}")
    return _read(path, path.suffix.lower(), path.name)


def read_upload(content: bytes, filename: str) -> pd.DataFrame:
    """Read an uploaded CSV/XLSX held in memory."""
    if not content:
        raise StructuralError(f"{filename} is empty")
    return _read(io.BytesIO(content), Path(filename).suffix.lower(), filename)


def frame_to_rows(df: pd.DataFrame, name: str = "file") -> list[dict]:
    """Raw row dicts from a frame, after checking the header is usable."""
    if len(df.columns) == 0:
        raise StructuralError(f"{name} has no header row")
    header_map = build_header_map(df.columns)
    if not any(field in header_map.values() for field in REQUIRED_FIELDS):
        raise StructuralError(
            f"{name} has no recognised columns; expected headers such as "
            + ", ".join(REQUIRED_FIELDS)
        )
    df = df.dropna(how="all")
    df = df[~(df.astype(str).apply(lambda col: col.str.strip()) == "").all(axis=1)]
    return df.to_dict(orient="records")


def load_rows(path: Path) -> list[dict]:
    return frame_to_rows(read_table(path), path.name)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

def load_snapshot(path: Path) -> pd.DataFrame:
    """Read one snapshot CSV; a missing file is an empty frame."""
    if not path.exists():
        return pd.DataFrame()
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    print(f"  {path.name}: {len(df):,} rows")
    return df

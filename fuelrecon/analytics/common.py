"""
Safe math and JSON helpers used across all analytics modules.
"""
from __future__ import annotations

import datetime as dt
import math
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide safely, returning default if denominator is zero or NaN."""
    if denominator == 0 or pd.isna(denominator):
        return default
    result = numerator / denominator
    return default if pd.isna(result) else result


def pct_change(current: float, previous: float) -> float | None:
    """Percentage change from previous to current. Returns None if previous is 0."""
    if previous == 0 or pd.isna(previous):
        return None
    return (current - previous) / abs(previous) * 100


def money(value: float) -> float:
    return round(float(value), 2)


def median_of(values: pd.Series) -> Optional[float]:
    """Median of the non-null values, None when there are none."""
    result = pd.to_numeric(values, errors="coerce").median()
    return None if pd.isna(result) else float(result)


def sanitize_for_json(obj):
    """Recursively convert numpy/pandas/date types to native Python for JSON serialization.

    NaN and infinity become None: an undefined figure is "not applicable", never 0.
    """
    if isinstance(obj, dict):
        clean = {}
        for k, v in obj.items():
            if k is None:
                continue
            if isinstance(k, (float, np.floating)) and (math.isnan(float(k)) or math.isinf(float(k))):
                continue
            clean[k if isinstance(k, str) else str(k)] = sanitize_for_json(v)
        return clean
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        v = float(obj)
        return None if (math.isnan(v) or math.isinf(v)) else v
    if isinstance(obj, np.ndarray):
        return sanitize_for_json(obj.tolist())
    if isinstance(obj, pd.Timestamp):
        return None if pd.isna(obj) else obj.date().isoformat()
    if isinstance(obj, (dt.datetime, dt.date)):
        return obj.isoformat()
    if isinstance(obj, dt.time):
        return obj.strftime("%H:%M:%S")
    if pd.api.types.is_scalar(obj) and pd.isna(obj):
        return None
    return obj

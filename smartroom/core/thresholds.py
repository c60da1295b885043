"""
Threshold validation helpers.

Operator input is never rejected: out-of-range values are clamped to the
nearest bound and the corrected value is reflected back to the caller. Config
loading uses the strict :func:`validate_threshold` instead.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Tuple

from smartroom.domain.errors import ValidationError
from smartroom.domain.models import (
    DEFAULT_GAS_THRESHOLD,
    DEFAULT_TEMP_THRESHOLD,
    GAS_THRESHOLD_MAX,
    GAS_THRESHOLD_MIN,
    TEMP_THRESHOLD_MAX,
    TEMP_THRESHOLD_MIN,
)

# name -> (low, high, default)
THRESHOLD_RANGES: Dict[str, Tuple[float, float, float]] = {
    "temp_threshold": (TEMP_THRESHOLD_MIN, TEMP_THRESHOLD_MAX, DEFAULT_TEMP_THRESHOLD),
    "gas_threshold": (GAS_THRESHOLD_MIN, GAS_THRESHOLD_MAX, DEFAULT_GAS_THRESHOLD),
}


@dataclass(frozen=True)
class ClampResult:
    value: float
    corrected: bool


def clamp_threshold(name: str, value: float) -> ClampResult:
    """
    Clamp a staged threshold to its valid range.

    Parameters
    ----------
    name
        ``"temp_threshold"`` or ``"gas_threshold"``.
    value
        Staged input. NaN/inf falls back to the default before clamping.

    Returns
    -------
    ClampResult
        Committed value and whether it differs from the input.
    """
    low, high, default = THRESHOLD_RANGES[name]
    try:
        v = float(value)
    except (TypeError, ValueError):
        return ClampResult(value=default, corrected=True)
    if not math.isfinite(v):
        return ClampResult(value=default, corrected=True)
    clamped = max(low, min(high, v))
    return ClampResult(value=clamped, corrected=clamped != v)


def validate_threshold(name: str, value: float) -> float:
    """
    Strict variant of :func:`clamp_threshold`.

    Raises
    ------
    ValidationError
        If ``value`` is outside the valid range.
    """
    low, high, _ = THRESHOLD_RANGES[name]
    v = float(value)
    if not (low <= v <= high):
        raise ValidationError(name, v, low, high)
    return v


def format_number(value: float) -> str:
    """Render ``20.0`` as ``"20"`` and ``42.5`` as ``"42.5"``."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))

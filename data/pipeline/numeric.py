"""Guarded arithmetic shared by the validator, analyzer and feature extractor."""

import math
from typing import Optional


def is_finite(value) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def safe_divide(a: float, b: float) -> float:
    """a / b, or 0 when the denominator is zero, NaN or infinite."""
    if not is_finite(b) or b == 0:
        return 0.0
    result = a / b
    return result if is_finite(result) else 0.0


def safe_change(start: Optional[float], end: Optional[float]) -> float:
    """Relative change from start to end, 0 for a missing, zero or negative start."""
    if not start or not end or start < 0:
        return 0.0
    return safe_divide(end - start, start)

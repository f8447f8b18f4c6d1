from __future__ import annotations

import math
from typing import Optional, Sequence

# Stand-in for an undefined ratio when the denominator is zero.
RATIO_CAP = 99


def ratio_with_cap(numerator: float, denominator: float, cap: float = RATIO_CAP) -> float:
    """Ratio rounded to 2 decimals, capped instead of dividing by zero.

    ``cap`` is returned when the denominator is zero and the numerator is
    positive; ``0`` when both are zero. Shared by K/D and EKIA/D.
    """
    if denominator > 0:
        return round(numerator / denominator, 2)
    return cap if numerator > 0 else 0


def headshot_percent(headshots: Optional[float], kills: Optional[float]) -> Optional[float]:
    if headshots is None or kills is None or kills <= 0:
        return None
    return round(headshots / kills * 100, 1)


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Product-moment correlation; 0 when either series has no variance."""
    n = len(xs)
    x_mean = sum(xs) / n
    y_mean = sum(ys) / n

    covariance = 0.0
    x_ss = 0.0
    y_ss = 0.0
    for x, y in zip(xs, ys):
        x_diff = x - x_mean
        y_diff = y - y_mean
        covariance += x_diff * y_diff
        x_ss += x_diff * x_diff
        y_ss += y_diff * y_diff

    if x_ss == 0 or y_ss == 0:
        return 0.0
    value = covariance / math.sqrt(x_ss * y_ss)
    # Float error can push a perfect correlation just past +/-1.
    return max(-1.0, min(1.0, value))

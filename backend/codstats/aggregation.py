from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from codstats.matches import CanonicalMatch, Outcome, metric_value
from codstats.metrics import pearson_correlation

SESSION_GAP = timedelta(hours=2)
MIN_SESSION_SIZE = 3
MIN_CORRELATION_SAMPLES = 6
HISTOGRAM_BINS = 20

CORRELATION_METRICS = [
    "K/D Ratio",
    "EKIA/D Ratio",
    "Skill",
    "Score",
    "Kills",
    "Deaths",
    "Accuracy %",
    "Headshot %",
    "Damage Done",
]


class WinLossCounts(NamedTuple):
    wins: int
    losses: int

    @property
    def total(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        """Percentage of decided games won; 0 when none are decided."""
        if self.total == 0:
            return 0.0
        return self.wins / self.total * 100


@dataclass(frozen=True)
class Dispersion:
    mean: float
    std_dev: float
    cv: float
    count: int


@dataclass(frozen=True)
class HistogramBin:
    x0: float
    x1: float
    count: int


def win_loss_counts(matches: Iterable[CanonicalMatch]) -> WinLossCounts:
    wins = 0
    losses = 0
    for match in matches:
        if match.outcome is Outcome.WIN:
            wins += 1
        elif match.outcome is Outcome.LOSS:
            losses += 1
    return WinLossCounts(wins, losses)


def metric_values(matches: Iterable[CanonicalMatch], metric: str) -> List[float]:
    return [
        value
        for value in (metric_value(match, metric) for match in matches)
        if value is not None
    ]


def average(matches: Iterable[CanonicalMatch], metric: str) -> float:
    """Mean of the defined values of ``metric``; NaN when there are none."""
    values = metric_values(matches, metric)
    if not values:
        return math.nan
    return sum(values) / len(values)


def standard_deviation_and_cv(values: Iterable[Optional[float]]) -> Dispersion:
    """Sample standard deviation and coefficient of variation (percent).

    None/NaN/inf entries are dropped first. With fewer than two values the
    deviation is 0; with a zero or undefined mean the CV is 0.
    """
    clean = np.array(
        [value for value in values if value is not None and math.isfinite(value)],
        dtype=float,
    )
    if clean.size == 0:
        return Dispersion(mean=math.nan, std_dev=0.0, cv=0.0, count=0)
    mean = float(clean.mean())
    std_dev = float(clean.std(ddof=1)) if clean.size > 1 else 0.0
    cv = std_dev / mean * 100 if mean != 0 else 0.0
    return Dispersion(mean=mean, std_dev=std_dev, cv=cv, count=int(clean.size))


def histogram_bins(
    values: Sequence[float],
    domain: Optional[Tuple[float, float]] = None,
    threshold_count: int = HISTOGRAM_BINS,
) -> List[HistogramBin]:
    """Equal-width bins over ``domain`` (default ``[0, max(values)]``)."""
    if not values:
        return []
    low, high = domain if domain is not None else (0.0, float(max(values)))
    if high <= low:
        inside = sum(1 for value in values if value == low)
        return [HistogramBin(x0=float(low), x1=float(high), count=inside)]
    counts, edges = np.histogram(
        np.asarray(values, dtype=float), bins=threshold_count, range=(low, high)
    )
    return [
        HistogramBin(x0=float(edges[i]), x1=float(edges[i + 1]), count=int(counts[i]))
        for i in range(len(counts))
    ]


def session_segmentation(
    sorted_matches: Sequence[CanonicalMatch],
    gap_threshold: timedelta = SESSION_GAP,
    min_size: int = MIN_SESSION_SIZE,
) -> List[List[CanonicalMatch]]:
    """Split a time-ordered run of matches wherever the gap exceeds the threshold.

    Sessions shorter than ``min_size`` are dropped.
    """
    sessions: List[List[CanonicalMatch]] = []
    current: List[CanonicalMatch] = []
    for match in sorted_matches:
        if current and match.timestamp - current[-1].timestamp > gap_threshold:
            if len(current) >= min_size:
                sessions.append(current)
            current = []
        current.append(match)
    if len(current) >= min_size:
        sessions.append(current)
    return sessions


def session_fatigue(
    sessions: Sequence[Sequence[CanonicalMatch]],
    metric: str = "K/D Ratio",
    min_samples: int = MIN_SESSION_SIZE,
) -> List[Dict[str, float]]:
    """Average ``metric`` by game number within a session."""
    if not sessions:
        return []
    longest = max(len(session) for session in sessions)
    stats: List[Dict[str, float]] = []
    for position in range(longest):
        games = [session[position] for session in sessions if len(session) > position]
        if len(games) < min_samples:
            continue
        stats.append(
            {
                "game_number": position + 1,
                "average": average(games, metric),
                "count": len(games),
            }
        )
    return stats


def correlation_matrix(
    matches: Sequence[CanonicalMatch],
    metrics: Sequence[str] = CORRELATION_METRICS,
) -> List[List[Dict[str, object]]]:
    """Pearson correlation for every metric pair.

    Cells with fewer than ``MIN_CORRELATION_SAMPLES`` co-present values report
    0; ``samples`` tells that apart from a genuine zero correlation.
    """
    columns = {metric: [metric_value(match, metric) for match in matches] for metric in metrics}
    matrix: List[List[Dict[str, object]]] = []
    for i, metric_y in enumerate(metrics):
        row: List[Dict[str, object]] = []
        for j, metric_x in enumerate(metrics):
            pairs = [
                (y, x)
                for y, x in zip(columns[metric_y], columns[metric_x])
                if y is not None and x is not None
            ]
            correlation = 0.0
            if len(pairs) >= MIN_CORRELATION_SAMPLES:
                ys, xs = zip(*pairs)
                correlation = pearson_correlation(ys, xs)
            row.append(
                {
                    "x": j,
                    "y": i,
                    "metric1": metric_y,
                    "metric2": metric_x,
                    "correlation": correlation,
                    "samples": len(pairs),
                }
            )
        matrix.append(row)
    return matrix

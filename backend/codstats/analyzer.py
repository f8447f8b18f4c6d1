from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from datetime import timedelta
import logging
import math
import time

import numpy as np
import pandas as pd

from codstats.aggregation import (
    CORRELATION_METRICS,
    MIN_SESSION_SIZE,
    SESSION_GAP,
    average,
    correlation_matrix,
    histogram_bins,
    session_fatigue,
    session_segmentation,
    standard_deviation_and_cv,
    win_loss_counts,
)
from codstats.matches import (
    DEFAULT_METRIC,
    METRIC_FIELDS,
    RANKED_GAME_TYPES,
    RANKED_MAPS,
    CanonicalMatch,
    Outcome,
    metric_value,
)

logger = logging.getLogger(__name__)

RECENT_WINDOW = 10
MAX_INSIGHTS = 4

MAIN_GAME_MODES = [
    "Control",
    "Domination",
    "FFA",
    "Hardpoint",
    "Search and Destroy",
    "Search & Destroy",
    "S&D",
    "SnD",
    "Team Deathmatch",
    "Kill Confirmed",
]

CHARTS = (
    "ranked-overview",
    "map-veto",
    "consistency",
    "win-rate-grid",
    "map-performance",
    "time-of-day",
    "session-fatigue",
    "bar",
    "donut",
    "heatmap",
)


def _convert_to_serializable(obj: Any) -> Any:
    """Recursively convert numpy/pandas types to native Python types for JSON serialization."""
    if isinstance(obj, dict):
        return {k: _convert_to_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_convert_to_serializable(v) for v in obj]
    elif isinstance(obj, (np.integer, np.int64, np.int32)):
        return int(obj)
    elif isinstance(obj, (np.floating, np.float64, np.float32)):
        return None if math.isnan(obj) else float(obj)
    elif isinstance(obj, float) and math.isnan(obj):
        return None
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, pd.Timestamp):
        return obj.isoformat()
    elif isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj
    elif pd.isna(obj):
        return None
    return obj


class PerformanceAnalyzer:
    """Summaries, insights and chart data over one filtered view."""

    def __init__(
        self,
        matches: Sequence[CanonicalMatch],
        metric: str = DEFAULT_METRIC,
        session_gap: timedelta = SESSION_GAP,
        min_session_size: int = MIN_SESSION_SIZE,
    ) -> None:
        if metric not in METRIC_FIELDS:
            raise ValueError(f"Unknown metric: {metric}")
        self.matches = list(matches)
        self.metric = metric
        self.session_gap = session_gap
        self.min_session_size = min_session_size
        self.df = pd.DataFrame()
        self._normalize_data()

    def _normalize_data(self) -> None:
        t0 = time.perf_counter()
        rows: List[Dict[str, Any]] = []
        for match in self.matches:
            row: Dict[str, Any] = {
                "timestamp": match.timestamp,
                "game_type": match.game_type,
                "map": match.map,
                "outcome": match.outcome.value,
                "won": match.outcome.as_metric(),
                "is_ranked": match.is_ranked,
            }
            for name in METRIC_FIELDS:
                row[name] = metric_value(match, name)
            rows.append(row)
        self.df = pd.DataFrame(rows)
        if not self.df.empty:
            numeric = ["won"] + list(METRIC_FIELDS)
            self.df[numeric] = self.df[numeric].apply(pd.to_numeric, errors="coerce")
        logger.debug(
            f"[ANALYZER TIMING] _normalize_data: {time.perf_counter() - t0:.2f}s ({len(rows)} matches)"
        )

    def _ranked_frame(self) -> pd.DataFrame:
        if self.df.empty:
            return self.df
        mask = self.df["map"].isin(RANKED_MAPS) & self.df["game_type"].isin(RANKED_GAME_TYPES)
        return self.df[mask]

    def get_stats_summary(self) -> Dict[str, Any]:
        counts = win_loss_counts(self.matches)
        avg = average(self.matches, self.metric)
        return {
            "total_games": counts.total,
            "wins": counts.wins,
            "losses": counts.losses,
            "win_rate": round(counts.win_rate, 1),
            "metric": self.metric,
            "average": None if math.isnan(avg) else round(avg, 2),
        }

    def get_quick_insights(self) -> List[Dict[str, str]]:
        if not self.matches:
            return []
        insights: List[Dict[str, str]] = []

        win_rate = win_loss_counts(self.matches).win_rate
        recent_rate = win_loss_counts(self.matches[-RECENT_WINDOW:]).win_rate
        if recent_rate > win_rate + 10:
            insights.append(
                {
                    "text": f"You're on fire! Recent win rate ({recent_rate:.0f}%) is up "
                    f"{recent_rate - win_rate:.0f}% from your average.",
                    "type": "positive",
                }
            )
        elif recent_rate < win_rate - 10:
            insights.append(
                {
                    "text": f"Recent slump detected. Win rate dropped {win_rate - recent_rate:.0f}%. "
                    "Take a break or review your playstyle.",
                    "type": "warning",
                }
            )
        else:
            insights.append(
                {
                    "text": f"Consistent performance! Your recent win rate ({recent_rate:.0f}%) "
                    "matches your overall average.",
                    "type": "neutral",
                }
            )

        avg_kd = average(self.matches, "K/D Ratio")
        kd_wins = average([m for m in self.matches if m.outcome is Outcome.WIN], "K/D Ratio")
        kd_losses = average([m for m in self.matches if m.outcome is Outcome.LOSS], "K/D Ratio")
        if not math.isnan(avg_kd):
            if avg_kd < 1.0:
                insights.append(
                    {
                        "text": f"Focus on staying alive. Your K/D ({avg_kd:.2f}) suggests "
                        "playing more conservatively might help.",
                        "type": "tip",
                    }
                )
            elif avg_kd > 1.3:
                insights.append(
                    {
                        "text": f"Strong gunfights! Your {avg_kd:.2f} K/D shows you're "
                        "winning most engagements.",
                        "type": "positive",
                    }
                )
            elif kd_wins > kd_losses + 0.3:
                insights.append(
                    {
                        "text": f"You play better in wins ({kd_wins:.2f} K/D) vs losses "
                        f"({kd_losses:.2f}). Keep that momentum!",
                        "type": "positive",
                    }
                )

        ranked = [m for m in self.matches if m.is_ranked]
        if len(ranked) > 5:
            ranked_rate = win_loss_counts(ranked).win_rate
            if ranked_rate > 55:
                insights.append(
                    {
                        "text": f"Ranked dominance! {ranked_rate:.0f}% win rate in ranked "
                        "shows you're competitive.",
                        "type": "positive",
                    }
                )
            elif ranked_rate < 45:
                insights.append(
                    {
                        "text": f"Ranked is tough ({ranked_rate:.0f}% WR). Study pro gameplay "
                        "or focus on one mode to improve.",
                        "type": "tip",
                    }
                )

        modes = {m.game_type for m in self.matches}
        if len(modes) == 1:
            insights.append(
                {
                    "text": "You're specializing in one mode. Try others to develop diverse skills!",
                    "type": "tip",
                }
            )
        elif len(modes) >= 5:
            insights.append(
                {
                    "text": f"Versatile player! You've played {len(modes)} different game modes.",
                    "type": "neutral",
                }
            )

        if len(insights) < 3:
            avg_score = average(self.matches, "Score")
            score_text = "n/a" if math.isnan(avg_score) else f"{avg_score:.0f}"
            insights.append(
                {
                    "text": f"You've logged {len(self.matches)} matches with an average "
                    f"score of {score_text}.",
                    "type": "neutral",
                }
            )
        return insights[:MAX_INSIGHTS]

    def get_recent_streak(self, window: int = RECENT_WINDOW) -> Dict[str, Any]:
        recent = self.matches[-window:]
        streak_type: Optional[Outcome] = None
        length = 0
        for match in reversed(recent):
            if match.outcome is Outcome.UNKNOWN:
                break
            if streak_type is None:
                streak_type = match.outcome
            elif match.outcome is not streak_type:
                break
            length += 1
        symbols = {Outcome.WIN: "W", Outcome.LOSS: "L", Outcome.UNKNOWN: "-"}
        return {
            "streak_type": streak_type.value if streak_type else None,
            "length": length,
            "games": [symbols[match.outcome] for match in recent],
        }

    def _map_scores(self, ranked: pd.DataFrame) -> List[Dict[str, Any]]:
        results = []
        for map_name in RANKED_MAPS:
            subset = ranked[ranked["map"] == map_name]
            if subset.empty:
                continue
            win_rate = _rate(subset["won"])
            avg_kd = _mean(subset["K/D Ratio"])
            avg_score = _mean(subset["Score"])
            mode_stats = []
            for mode in RANKED_GAME_TYPES:
                mode_subset = subset[subset["game_type"] == mode]
                if mode_subset.empty:
                    continue
                mode_stats.append(
                    {
                        "mode": mode,
                        "win_rate": _rate(mode_subset["won"]),
                        "matches": len(mode_subset),
                    }
                )
            results.append(
                {
                    "map": map_name,
                    "win_rate": win_rate,
                    "avg_kd": avg_kd,
                    "avg_score": avg_score,
                    "matches": len(subset),
                    "mode_stats": mode_stats,
                    "score": win_rate * 0.5 + (avg_kd or 0) * 20 + (avg_score or 0) / 100,
                }
            )
        return sorted(results, key=lambda entry: entry["score"])

    def get_map_veto_guide(self) -> Dict[str, Any]:
        ranked = self._ranked_frame()
        if ranked.empty:
            return {
                "available": False,
                "message": "Play more ranked matches to see map veto recommendations",
            }
        scores = self._map_scores(ranked)
        if len(scores) < 2:
            return {
                "available": False,
                "message": "Play more maps to get veto recommendations",
            }
        return {
            "available": True,
            "ban": scores[:2],
            "protect": list(reversed(scores[-2:])),
            "maps": scores,
        }

    def get_ranked_overview(self) -> Dict[str, Any]:
        ranked = self._ranked_frame()
        if ranked.empty:
            return {"available": False, "message": "No ranked matches found"}
        wins = int((ranked["won"] == 1).sum())
        losses = int((ranked["won"] == 0).sum())
        maps = []
        for map_name in RANKED_MAPS:
            subset = ranked[ranked["map"] == map_name]
            if subset.empty:
                continue
            modes = {}
            for mode in RANKED_GAME_TYPES:
                mode_subset = subset[subset["game_type"] == mode]
                if not mode_subset.empty:
                    modes[mode] = {
                        "win_rate": _rate(mode_subset["won"]),
                        "matches": len(mode_subset),
                    }
            maps.append({"map": map_name, "modes": modes})
        return {
            "available": True,
            "win_rate": round(_rate(ranked["won"]), 1),
            "wins": wins,
            "losses": losses,
            "avg_kd": _round(_mean(ranked["K/D Ratio"]), 2),
            "matches": len(ranked),
            "maps": maps,
            "modes": [mode for mode in RANKED_GAME_TYPES if (ranked["game_type"] == mode).any()],
        }

    def get_consistency(self) -> Dict[str, Any]:
        if not self.matches:
            return {"available": False, "message": "No data available"}
        kd_values = self._positive("K/D Ratio")
        kd = standard_deviation_and_cv(kd_values)
        skill = standard_deviation_and_cv(self._positive("Skill"))
        score = standard_deviation_and_cv(self._positive("Score"))

        consistency_score: Optional[float] = None
        if kd.count and kd.mean > 0:
            consistency_score = max(0.0, min(100.0, 100 - kd.cv))
        return {
            "available": True,
            "score": consistency_score,
            "grade": consistency_grade(consistency_score),
            "kd": _dispersion_payload(kd),
            "skill": _dispersion_payload(skill) if skill.count else None,
            "score_variation": _dispersion_payload(score),
            "kd_histogram": [vars(b) for b in histogram_bins(kd_values)],
        }

    def _positive(self, metric: str) -> List[float]:
        values = (metric_value(match, metric) for match in self.matches)
        return [value for value in values if value is not None and value > 0]

    def get_win_rate_grid(self) -> Dict[str, Any]:
        if self.df.empty:
            return {"maps": [], "modes": [], "cells": []}
        maps = sorted(m for m in self.df["map"].unique() if m)
        modes = sorted(m for m in self.df["game_type"].unique() if m in MAIN_GAME_MODES)
        cells = []
        for (map_name, mode), group in self.df.groupby(["map", "game_type"]):
            if map_name not in maps or mode not in modes:
                continue
            cells.append(
                {
                    "map": map_name,
                    "mode": mode,
                    "win_rate": _rate(group["won"]),
                    "matches": len(group),
                    "is_ranked": map_name in RANKED_MAPS and mode in RANKED_GAME_TYPES,
                }
            )
        return {"maps": maps, "modes": modes, "cells": cells}

    def get_map_performance(self) -> List[Dict[str, Any]]:
        if self.df.empty:
            return []
        stats = []
        for map_name, group in self.df.groupby("map", sort=False):
            stats.append(
                {
                    "map": map_name,
                    "win_rate": _rate(group["won"]),
                    "avg_kd": _mean(group["K/D Ratio"]),
                    "total": len(group),
                    "wins": int((group["won"] == 1).sum()),
                }
            )
        return sorted(stats, key=lambda entry: entry["win_rate"], reverse=True)

    def get_time_of_day(self) -> List[Dict[str, Any]]:
        if self.df.empty:
            return []
        hours = pd.to_datetime(self.df["timestamp"]).dt.hour
        stats = []
        for hour, group in self.df.groupby(hours):
            stats.append(
                {
                    "hour": int(hour),
                    "win_rate": _rate(group["won"]),
                    "avg_kd": _mean(group["K/D Ratio"]),
                    "total": len(group),
                }
            )
        return stats

    def get_game_type_averages(self, metric: str = "K/D Ratio") -> List[Dict[str, Any]]:
        if metric not in METRIC_FIELDS:
            raise ValueError(f"Unknown metric: {metric}")
        if self.df.empty:
            return []
        return [
            {
                "game_type": game_type,
                "value": _mean(group[metric]) or 0.0,
                "count": len(group),
            }
            for game_type, group in self.df.groupby("game_type", sort=False)
        ]

    def get_outcome_breakdown(self, ranked_only: bool = False) -> Dict[str, Any]:
        matches = [m for m in self.matches if m.is_ranked] if ranked_only else self.matches
        counts = win_loss_counts(matches)
        if counts.total == 0:
            return {"available": False, "message": "No Match Data"}
        return {
            "available": True,
            "wins": counts.wins,
            "losses": counts.losses,
            "win_rate": round(counts.win_rate, 1),
        }

    def get_session_fatigue(self, metric: str = "K/D Ratio") -> Dict[str, Any]:
        ordered = sorted(self.matches, key=lambda match: match.timestamp)
        sessions = session_segmentation(ordered, self.session_gap, self.min_session_size)
        if not sessions:
            return {
                "available": False,
                "message": "Need at least one session with 3+ games to analyze fatigue patterns.",
            }
        positions = session_fatigue(sessions, metric, self.min_session_size)
        if not positions:
            return {
                "available": False,
                "message": "Need more games per session to analyze fatigue patterns.",
            }
        return {
            "available": True,
            "sessions": len(sessions),
            "session_lengths": [len(session) for session in sessions],
            "positions": positions,
        }

    def get_correlation_matrix(self, metrics: Sequence[str] = CORRELATION_METRICS) -> Dict[str, Any]:
        return {"metrics": list(metrics), "cells": correlation_matrix(self.matches, metrics)}

    def get_chart(self, chart: str, **options: Any) -> Dict[str, Any]:
        renderers = {
            "ranked-overview": self.get_ranked_overview,
            "map-veto": self.get_map_veto_guide,
            "consistency": self.get_consistency,
            "win-rate-grid": self.get_win_rate_grid,
            "map-performance": self.get_map_performance,
            "time-of-day": self.get_time_of_day,
            "session-fatigue": self.get_session_fatigue,
            "bar": lambda: self.get_game_type_averages(options.get("bar_metric") or "K/D Ratio"),
            "donut": lambda: self.get_outcome_breakdown(options.get("donut_filter") == "ranked"),
            "heatmap": self.get_correlation_matrix,
        }
        renderer = renderers.get(chart)
        if renderer is None:
            raise KeyError(chart)
        return _convert_to_serializable({"chart": chart, "data": renderer()})

    def generate_dashboard(self) -> Dict[str, Any]:
        t0 = time.perf_counter()
        payload = {
            "summary": self.get_stats_summary(),
            "insights": self.get_quick_insights(),
            "streak": self.get_recent_streak(),
            "veto": self.get_map_veto_guide(),
        }
        logger.info(f"[ANALYZER TIMING] generate_dashboard: {time.perf_counter() - t0:.2f}s")
        return _convert_to_serializable(payload)


def consistency_grade(score: Optional[float]) -> str:
    if score is None:
        return "N/A"
    if score >= 80:
        return "S"
    if score >= 70:
        return "A"
    if score >= 60:
        return "B"
    if score >= 50:
        return "C"
    return "D"


def _dispersion_payload(dispersion) -> Dict[str, Any]:
    return {
        "mean": dispersion.mean,
        "std_dev": dispersion.std_dev,
        "cv": dispersion.cv,
        "count": dispersion.count,
    }


def _rate(series: pd.Series) -> float:
    decided = series.dropna()
    if decided.empty:
        return 0.0
    return float(decided.mean() * 100)


def _mean(series: pd.Series) -> Optional[float]:
    values = series.dropna()
    if values.empty:
        return None
    return float(values.mean())


def _round(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round(value, digits)

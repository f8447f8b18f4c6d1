from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from codstats.matches import (
    DATE_FIELD,
    DEFAULT_METRIC,
    METRIC_FIELDS,
    RANKED_GAME_TYPES,
    CanonicalMatch,
    Outcome,
    metric_value,
    ordered_metrics,
)

ALL = "all"
RANKED = "ranked"

RATIO_METRICS = ("K/D Ratio", "EKIA/D Ratio")
RATIO_OUTLIER_CUTOFF = 30

ROWS_PER_PAGE = 25

EXPORT_COLUMNS: List[Tuple[str, str]] = [
    (DATE_FIELD, "Date"),
    ("Game Type", "Game Type"),
    ("Map", "Map"),
    ("Match Outcome", "Outcome"),
    ("Kills", "Kills"),
    ("Deaths", "Deaths"),
    ("Assists", "Assists"),
    ("K/D Ratio", "K/D Ratio"),
    ("EKIA", "EKIA"),
    ("EKIA/D Ratio", "EKIA/D Ratio"),
    ("Skill", "Skill"),
    ("Score", "Score"),
    ("Accuracy %", "Accuracy %"),
    ("Headshot %", "Headshot %"),
    ("Damage Done", "Damage Done"),
    ("Damage Taken", "Damage Taken"),
]


@dataclass(frozen=True)
class QueryState:
    gamemode: str = ALL
    map: str = ALL
    metric: str = DEFAULT_METRIC

    def __post_init__(self) -> None:
        if self.metric not in METRIC_FIELDS:
            raise ValueError(f"Unknown metric: {self.metric}")


def matches_gamemode(match: CanonicalMatch, gamemode: str) -> bool:
    if gamemode == ALL:
        return True
    if gamemode == RANKED:
        return match.game_type in RANKED_GAME_TYPES
    return match.game_type == gamemode


def compute_filtered_view(
    matches: Iterable[CanonicalMatch], query: QueryState
) -> List[CanonicalMatch]:
    """Matches visible under ``query``; shares the input objects."""
    view: List[CanonicalMatch] = []
    clamp = query.metric in RATIO_METRICS
    for match in matches:
        if not matches_gamemode(match, query.gamemode):
            continue
        if query.map != ALL and match.map != query.map:
            continue
        value = metric_value(match, query.metric)
        if value is None:
            continue
        if clamp and value > RATIO_OUTLIER_CUTOFF:
            continue
        view.append(match)
    return view


def available_controls(matches: Sequence[CanonicalMatch]) -> Dict[str, List[Dict[str, str]]]:
    game_types = _unique(match.game_type for match in matches)
    gamemodes = [
        {"value": ALL, "label": "All Game Modes"},
        {"value": RANKED, "label": "Ranked Only"},
    ] + [
        {"value": mode, "label": mode}
        for mode in game_types
        if mode in RANKED_GAME_TYPES
    ]

    maps = [{"value": ALL, "label": "All Maps"}] + [
        {"value": name, "label": name} for name in _unique(match.map for match in matches)
    ]

    present = [
        name
        for name in METRIC_FIELDS
        if any(metric_value(match, name) is not None for match in matches)
    ]
    metrics = [{"value": name, "label": name} for name in ordered_metrics(present)]
    return {"gamemodes": gamemodes, "maps": maps, "metrics": metrics}


def search_matches(
    matches: Iterable[CanonicalMatch],
    search: str = "",
    game_type: str = "",
    map_name: str = "",
    sort_column: str = DATE_FIELD,
    descending: bool = True,
) -> List[CanonicalMatch]:
    """Match-table filtering and sorting."""
    rows = list(matches)
    term = search.strip().lower()
    if term:
        rows = [
            match
            for match in rows
            if term in match.game_type.lower()
            or term in match.map.lower()
            or term in (match.match_outcome_raw or "").lower()
        ]
    if game_type:
        rows = [match for match in rows if match.game_type == game_type]
    if map_name:
        rows = [match for match in rows if match.map == map_name]

    key = _sort_key(sort_column)
    present = [match for match in rows if key(match) is not None]
    missing = [match for match in rows if key(match) is None]
    present.sort(key=key, reverse=descending)
    return present + missing


def paginate(rows: Sequence[Any], page: int = 1, per_page: int = ROWS_PER_PAGE) -> Dict[str, Any]:
    per_page = max(1, per_page)
    total_pages = max(1, math.ceil(len(rows) / per_page))
    page = min(max(1, page), total_pages)
    start = (page - 1) * per_page
    return {
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "total_rows": len(rows),
        "rows": list(rows[start:start + per_page]),
    }


def export_csv(matches: Iterable[CanonicalMatch]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([label for _, label in EXPORT_COLUMNS])
    for match in matches:
        writer.writerow([_export_value(match, column) for column, _ in EXPORT_COLUMNS])
    return buffer.getvalue()


def _export_value(match: CanonicalMatch, column: str) -> str:
    if column == DATE_FIELD:
        return match.timestamp.strftime("%Y-%m-%d %H:%M")
    if column == "Game Type":
        return match.game_type
    if column == "Map":
        return match.map
    if column == "Match Outcome":
        return "Win" if match.outcome is Outcome.WIN else "Loss"
    value = metric_value(match, column)
    if value is None:
        return ""
    return f"{value:.2f}"


def _sort_key(column: str):
    if column == DATE_FIELD:
        return lambda match: match.timestamp
    if column == "Game Type":
        return lambda match: match.game_type.lower()
    if column == "Map":
        return lambda match: match.map.lower()
    if column not in METRIC_FIELDS:
        raise ValueError(f"Unknown sort column: {column}")
    return lambda match: metric_value(match, column)


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

RANKED_GAME_TYPES = ("Hardpoint", "Search and Destroy", "Control")

RANKED_MAPS = (
    "Vault",
    "Rewind",
    "Protocol",
    "Hacienda",
    "Skyline",
    "Red Card",
    "Dealership",
)

DATE_FIELD = "UTC Timestamp"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, value: Any) -> "Outcome":
        if value is None:
            return cls.UNKNOWN
        text = str(value).strip()
        if not text:
            return cls.UNKNOWN
        return cls.WIN if text.lower() == "win" else cls.LOSS

    def as_metric(self) -> Optional[float]:
        if self is Outcome.WIN:
            return 1.0
        if self is Outcome.LOSS:
            return 0.0
        return None


@dataclass(frozen=True)
class CanonicalMatch:
    timestamp: datetime
    game_type: str = ""
    map: str = ""
    team: str = ""
    outcome: Outcome = Outcome.UNKNOWN
    match_outcome_raw: Optional[str] = None
    is_ranked: bool = False

    skill: Optional[float] = None
    score: Optional[float] = None
    kills: Optional[float] = None
    deaths: Optional[float] = None
    assists: Optional[float] = None
    headshots: Optional[float] = None
    shots: Optional[float] = None
    hits: Optional[float] = None
    damage_done: Optional[float] = None
    damage_taken: Optional[float] = None

    kd_ratio: Optional[float] = None
    ekia: Optional[float] = None
    ekia_over_d: Optional[float] = None
    headshot_pct: Optional[float] = None
    accuracy_pct: Optional[float] = None

    total_xp: Optional[float] = None
    score_xp: Optional[float] = None
    challenge_xp: Optional[float] = None
    match_xp: Optional[float] = None
    medal_xp: Optional[float] = None

    percentage_time_moving: Optional[float] = None
    operator: str = ""
    operator_skin: str = ""

    source: str = ""
    timestamp_synthesized: bool = False


# Display name -> CanonicalMatch attribute. "Match Outcome" is derived.
METRIC_FIELDS: Dict[str, str] = {
    "Skill": "skill",
    "Match Outcome": "outcome",
    "K/D Ratio": "kd_ratio",
    "Kills": "kills",
    "EKIA/D Ratio": "ekia_over_d",
    "EKIA": "ekia",
    "Deaths": "deaths",
    "Damage Done": "damage_done",
    "Damage Taken": "damage_taken",
    "Assists": "assists",
    "Score": "score",
    "Headshot %": "headshot_pct",
    "Accuracy %": "accuracy_pct",
    "Percentage Of Time Moving": "percentage_time_moving",
    "Headshots": "headshots",
    "Shots": "shots",
    "Hits": "hits",
    "Total XP": "total_xp",
    "Score XP": "score_xp",
    "Challenge XP": "challenge_xp",
    "Match XP": "match_xp",
    "Medal XP": "medal_xp",
}

PREFERRED_METRICS = [
    "Skill",
    "Match Outcome",
    "K/D Ratio",
    "Kills",
    "EKIA/D Ratio",
    "EKIA",
    "Deaths",
    "Damage Done",
    "Damage Taken",
    "Assists",
    "Score",
    "Headshot %",
    "Accuracy %",
    "Percentage Of Time Moving",
]

DEFAULT_METRIC = "Skill"


def ordered_metrics(names: List[str]) -> List[str]:
    preferred = [name for name in PREFERRED_METRICS if name in names]
    rest = sorted(name for name in names if name not in PREFERRED_METRICS)
    return preferred + rest


def metric_value(match: CanonicalMatch, metric: str) -> Optional[float]:
    """Numeric value of ``metric`` on ``match``; None when absent or NaN."""
    attribute = METRIC_FIELDS.get(metric)
    if attribute is None:
        raise KeyError(f"Unknown metric: {metric}")
    if attribute == "outcome":
        return match.outcome.as_metric()
    value = getattr(match, attribute)
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def match_to_dict(match: CanonicalMatch) -> Dict[str, Any]:
    payload = asdict(match)
    payload["timestamp"] = match.timestamp.isoformat()
    payload["outcome"] = match.outcome.value
    return payload


def match_from_dict(payload: Dict[str, Any]) -> CanonicalMatch:
    known = {field.name for field in fields(CanonicalMatch)}
    values = {key: value for key, value in payload.items() if key in known}
    values["timestamp"] = datetime.fromisoformat(payload["timestamp"])
    values["outcome"] = Outcome(payload.get("outcome", Outcome.UNKNOWN.value))
    return CanonicalMatch(**values)

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from codstats.matches import DATE_FIELD, RANKED_GAME_TYPES, CanonicalMatch, Outcome
from codstats.metrics import headshot_percent, ratio_with_cap

logger = logging.getLogger(__name__)

SOURCE_API = "api"
SOURCE_CSV = "csv"
SOURCE_UPLOAD = "upload"
SOURCES = (SOURCE_API, SOURCE_CSV, SOURCE_UPLOAD)

CSV_DATE_FORMAT = "%Y-%m-%d %H:%M"
MOVING_COLUMN = "Percentage Of Time Moving"

# snake_case API/upload key -> canonical attribute
API_NUMERIC_FIELDS: Dict[str, str] = {
    "skill": "skill",
    "score": "score",
    "kills": "kills",
    "deaths": "deaths",
    "assists": "assists",
    "headshots": "headshots",
    "shots": "shots",
    "hits": "hits",
    "damage_done": "damage_done",
    "damage_taken": "damage_taken",
    "total_xp": "total_xp",
    "score_xp": "score_xp",
    "challenge_xp": "challenge_xp",
    "match_xp": "match_xp",
    "medal_xp": "medal_xp",
    "percentage_of_time_moving": "percentage_time_moving",
}
API_DERIVED_FIELDS: Dict[str, str] = {
    "kd_ratio": "kd_ratio",
    "ekia": "ekia",
    "ekia_d_ratio": "ekia_over_d",
    "headshot_percentage": "headshot_pct",
    "accuracy_percentage": "accuracy_pct",
}
API_TEXT_FIELDS: Dict[str, str] = {
    "game_type": "game_type",
    "map": "map",
    "team": "team",
    "operator": "operator",
    "operator_skin": "operator_skin",
}

# Human-readable CSV header -> canonical attribute
CSV_NUMERIC_FIELDS: Dict[str, str] = {
    "Skill": "skill",
    "Score": "score",
    "Kills": "kills",
    "Deaths": "deaths",
    "Assists": "assists",
    "Headshots": "headshots",
    "Shots": "shots",
    "Hits": "hits",
    "Damage Done": "damage_done",
    "Damage Taken": "damage_taken",
    "Total XP": "total_xp",
    "Score XP": "score_xp",
    "Challenge XP": "challenge_xp",
    "Match XP": "match_xp",
    "Medal XP": "medal_xp",
    MOVING_COLUMN: "percentage_time_moving",
}
CSV_DERIVED_FIELDS: Dict[str, str] = {
    "K/D Ratio": "kd_ratio",
    "EKIA": "ekia",
    "EKIA/D Ratio": "ekia_over_d",
    "Headshot %": "headshot_pct",
    "Accuracy %": "accuracy_pct",
}
CSV_TEXT_FIELDS: Dict[str, str] = {
    "Game Type": "game_type",
    "Map": "map",
    "Team": "team",
    "Operator": "operator",
    "Operator Skin": "operator_skin",
}

# Derived attributes the recompute strategy owns; accuracy is always taken as-is.
RECOMPUTED_ATTRIBUTES = ("kd_ratio", "ekia", "ekia_over_d", "headshot_pct")


class RecordError(ValueError):
    pass


def normalize_record(
    raw: Any,
    source: str,
    trust_precomputed_metrics: Optional[bool] = None,
    index: Optional[int] = None,
) -> Optional[CanonicalMatch]:
    """Map one raw record into a CanonicalMatch, or None if it is malformed.

    ``trust_precomputed_metrics`` defaults per source: the API and upload
    paths keep the ratios the server computed, the CSV path recomputes them
    from raw counts.
    """
    if source not in SOURCES:
        raise ValueError(f"Unsupported source: {source}")
    if trust_precomputed_metrics is None:
        trust_precomputed_metrics = source != SOURCE_CSV
    label = f"{source} row {index + 1}" if index is not None else f"{source} row"

    try:
        if not isinstance(raw, Mapping):
            raise RecordError(f"expected an object, got {type(raw).__name__}")
        if source == SOURCE_CSV:
            values, derived = _csv_values(raw)
        else:
            values, derived = _api_values(raw, defaults=source == SOURCE_UPLOAD)

        timestamp = _resolve_timestamp(raw, source)
        synthesized = timestamp is None
        if synthesized:
            logger.warning("%s: missing or invalid timestamp, using current time", label)
            timestamp = datetime.now(timezone.utc).replace(tzinfo=None)

        if trust_precomputed_metrics:
            values.update(derived)
        else:
            values["accuracy_pct"] = derived.get("accuracy_pct")
            values.update(
                _derive_metrics(
                    values.get("kills"),
                    values.get("deaths"),
                    values.get("assists"),
                    values.get("headshots"),
                )
            )

        return CanonicalMatch(
            timestamp=timestamp,
            source=source,
            timestamp_synthesized=synthesized,
            **values,
        )
    except (RecordError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Skipping %s: %s", label, exc)
        return None


def normalize_batch(
    records: Iterable[Any],
    source: str,
    trust_precomputed_metrics: Optional[bool] = None,
) -> List[CanonicalMatch]:
    matches: List[CanonicalMatch] = []
    skipped = 0
    for index, raw in enumerate(records):
        match = normalize_record(raw, source, trust_precomputed_metrics, index=index)
        if match is None:
            skipped += 1
            continue
        matches.append(match)
    if skipped:
        logger.warning("Skipped %s malformed %s records", skipped, source)
    logger.info("Normalized %s %s records", len(matches), source)
    return matches


def is_valid_match(match: CanonicalMatch) -> bool:
    """Bot-game filter: keep matches with no XP figure or positive XP."""
    return match.total_xp is None or match.total_xp > 0


def filter_valid_matches(matches: Iterable[CanonicalMatch]) -> List[CanonicalMatch]:
    return [match for match in matches if is_valid_match(match)]


def sort_by_timestamp(matches: Iterable[CanonicalMatch]) -> List[CanonicalMatch]:
    return sorted(matches, key=lambda match: match.timestamp)


def _derive_metrics(
    kills: Optional[float],
    deaths: Optional[float],
    assists: Optional[float],
    headshots: Optional[float],
) -> Dict[str, Optional[float]]:
    derived: Dict[str, Optional[float]] = {name: None for name in RECOMPUTED_ATTRIBUTES}
    if kills is None:
        return derived
    ekia = kills + (assists or 0)
    derived["ekia"] = ekia
    derived["headshot_pct"] = headshot_percent(headshots, kills)
    if deaths is not None:
        derived["kd_ratio"] = ratio_with_cap(kills, deaths)
        derived["ekia_over_d"] = ratio_with_cap(ekia, deaths)
    return derived


def _api_values(raw: Mapping, defaults: bool) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    values: Dict[str, Any] = {}
    for key, attribute in API_NUMERIC_FIELDS.items():
        number = _parse_number(raw.get(key), key)
        if number is None and defaults and attribute != "total_xp":
            number = 0
        values[attribute] = number
    for key, attribute in API_TEXT_FIELDS.items():
        values[attribute] = _parse_text(raw.get(key))

    outcome_raw = raw.get("match_outcome")
    values["match_outcome_raw"] = None if outcome_raw is None else str(outcome_raw)
    values["outcome"] = Outcome.from_raw(outcome_raw)
    values["is_ranked"] = _parse_flag(raw.get("is_ranked"))

    derived = {
        attribute: _parse_number(raw.get(key), key)
        for key, attribute in API_DERIVED_FIELDS.items()
    }
    return values, derived


def _csv_values(raw: Mapping) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    values: Dict[str, Any] = {}
    for column, attribute in CSV_NUMERIC_FIELDS.items():
        values[attribute] = _parse_csv_number(raw.get(column), column)
    for column, attribute in CSV_TEXT_FIELDS.items():
        values[attribute] = _parse_text(raw.get(column))

    if "Match Outcome" in raw:
        outcome_raw = _parse_text(raw.get("Match Outcome"))
        values["match_outcome_raw"] = outcome_raw
        values["outcome"] = Outcome.from_raw(outcome_raw)
    values["is_ranked"] = values["game_type"] in RANKED_GAME_TYPES

    derived = {
        attribute: _parse_csv_number(raw.get(column), column)
        for column, attribute in CSV_DERIVED_FIELDS.items()
    }
    return values, derived


def _resolve_timestamp(raw: Mapping, source: str) -> Optional[datetime]:
    if source == SOURCE_CSV:
        text = _parse_text(raw.get(DATE_FIELD))
        if not text:
            return None
        try:
            return datetime.strptime(text, CSV_DATE_FORMAT)
        except ValueError:
            return None

    timestamp = _parse_instant(raw.get("match_start_timestamp"))
    if timestamp is None and source == SOURCE_UPLOAD:
        timestamp = _parse_instant(raw.get("utc_timestamp"))
    return timestamp


def _parse_instant(value: Any) -> Optional[datetime]:
    """Parse an API timestamp into a naive UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            parsed = pd.to_datetime(value, unit="ms", utc=True)
        else:
            text = str(value).strip()
            if not text:
                return None
            parsed = pd.to_datetime(text, utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.tz_convert(None).to_pydatetime()


def _parse_number(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        logger.warning("%s is not numeric (%r), leaving it empty", name, text)
        return None
    if math.isnan(number):
        return None
    return number


def _parse_csv_number(value: Any, column: str) -> Optional[float]:
    if isinstance(value, str) and column == MOVING_COLUMN:
        value = value.strip().replace("%", "")
    return _parse_number(value, column)


def _parse_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)

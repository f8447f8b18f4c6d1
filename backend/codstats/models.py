from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from codstats.matches import CanonicalMatch

EMPTY_MESSAGE = "Upload your Call of Duty match data CSV to start analyzing your performance."


class EmptyState(BaseModel):
    status: str = "empty"
    message: str = EMPTY_MESSAGE


class ControlOption(BaseModel):
    value: str
    label: str


class Controls(BaseModel):
    gamemodes: List[ControlOption]
    maps: List[ControlOption]
    metrics: List[ControlOption]


class StatsSummary(BaseModel):
    total_games: int
    wins: int
    losses: int
    win_rate: float
    metric: str
    average: Optional[float] = None


class Insight(BaseModel):
    text: str
    type: str


class Streak(BaseModel):
    streak_type: Optional[str] = None
    length: int = 0
    games: List[str] = Field(default_factory=list)


class Dashboard(BaseModel):
    status: str = "ready"
    source: Optional[str] = None
    matches_analyzed: int
    summary: StatsSummary
    insights: List[Insight] = Field(default_factory=list)
    streak: Streak
    veto: Dict = Field(default_factory=dict)


class MatchRow(BaseModel):
    timestamp: datetime
    game_type: str
    map: str
    outcome: str
    is_ranked: bool
    skill: Optional[float] = None
    score: Optional[float] = None
    kills: Optional[float] = None
    deaths: Optional[float] = None
    assists: Optional[float] = None
    kd_ratio: Optional[float] = None
    ekia: Optional[float] = None
    ekia_over_d: Optional[float] = None
    headshot_pct: Optional[float] = None
    accuracy_pct: Optional[float] = None
    damage_done: Optional[float] = None
    damage_taken: Optional[float] = None
    total_xp: Optional[float] = None

    @classmethod
    def from_match(cls, match: CanonicalMatch) -> "MatchRow":
        return cls(
            timestamp=match.timestamp,
            game_type=match.game_type,
            map=match.map,
            outcome=match.outcome.value,
            is_ranked=match.is_ranked,
            skill=match.skill,
            score=match.score,
            kills=match.kills,
            deaths=match.deaths,
            assists=match.assists,
            kd_ratio=match.kd_ratio,
            ekia=match.ekia,
            ekia_over_d=match.ekia_over_d,
            headshot_pct=match.headshot_pct,
            accuracy_pct=match.accuracy_pct,
            damage_done=match.damage_done,
            damage_taken=match.damage_taken,
            total_xp=match.total_xp,
        )


class MatchView(BaseModel):
    status: str = "ready"
    metric: str
    count: int
    matches: List[MatchRow]


class MatchTablePage(BaseModel):
    status: str = "ready"
    page: int
    per_page: int
    total_pages: int
    total_rows: int
    rows: List[MatchRow]


class UploadResult(BaseModel):
    status: str
    message: str = ""
    received: int
    kept: int


class IngestionStatus(BaseModel):
    state: str
    source: Optional[str] = None
    match_count: int
    use_api: bool

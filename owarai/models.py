from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

CompetitionType = Literal["m1", "r1", "koc"]
CompetitionStatus = Literal["upcoming", "active", "scoring", "closed"]
ScoringType = Literal["100point", "ranking"]
ViewingMode = Literal["realtime", "delayed"]


# -----------------------
# Stored records
# -----------------------
class Judge(BaseModel):
    id: int
    name: str


class Competition(BaseModel):
    id: int
    type: CompetitionType
    year: int
    name: str
    status: CompetitionStatus = "upcoming"
    join_code: str
    created_at: datetime


class Round(BaseModel):
    id: int
    competition_id: int
    name: str
    round_order: int
    scoring_type: ScoringType = "100point"


class Performer(BaseModel):
    id: int
    competition_id: int
    round_id: int
    name: str
    performance_order: Optional[int] = None


class ScoreRecord(BaseModel):
    """One judge's score for one performer. Unique per (judge_id, performer_id)."""

    judge_id: int
    performer_id: int
    round_id: int
    competition_id: int
    score: int
    comment: Optional[str] = None
    scored_at: datetime
    is_realtime: bool = True


class ScoreInput(BaseModel):
    """What a judge submits; validated here so the stats never have to."""

    judge_id: int
    performer_id: int
    round_id: int
    competition_id: int
    score: int = Field(ge=0, le=100)
    comment: Optional[str] = None
    is_realtime: bool = True


class JudgeStatus(BaseModel):
    judge_id: int
    competition_id: int
    viewing_mode: ViewingMode = "realtime"
    has_completed_scoring: bool = False
    completed_at: Optional[datetime] = None


# -----------------------
# Derived views (never persisted)
# -----------------------
class PerformerStat(BaseModel):
    performer_id: int
    name: str
    scores: List[int] = Field(default_factory=list)
    mean: float = 0.0
    std_dev: float = 0.0
    min: int = 0
    max: int = 0
    rank: int = 0


class JudgeStat(BaseModel):
    judge_id: int
    name: str
    mean: float = 0.0
    std_dev: float = 0.0
    scored_count: int = 0
    highest_scored: Optional[str] = None
    highest_score: int = 0
    lowest_scored: Optional[str] = None
    lowest_score: int = 0


class CorrelationEntry(BaseModel):
    judge_a: int
    judge_b: int
    pearson_r: float


class JudgeType(BaseModel):
    label: str
    symbol: str


class JudgeProfile(BaseModel):
    stat: JudgeStat
    type: JudgeType


class RoundAnalysis(BaseModel):
    round_id: int
    performers: List[PerformerStat]
    champion: Optional[PerformerStat] = None
    most_agreed: Optional[PerformerStat] = None
    most_disagreed: Optional[PerformerStat] = None


class OverallAnalysis(BaseModel):
    competition_id: int
    total_scores: int
    performers: List[PerformerStat]
    champion: Optional[PerformerStat] = None
    most_agreed: Optional[PerformerStat] = None
    most_disagreed: Optional[PerformerStat] = None
    judges: List[JudgeProfile]
    correlations: List[CorrelationEntry]


# -----------------------
# Competition formats
# -----------------------
class RoundFormat(BaseModel):
    name: str
    default_performer_count: int
    scoring_type: ScoringType = "100point"


class CompetitionFormat(BaseModel):
    type: CompetitionType
    label: str
    rounds: List[RoundFormat]


COMPETITION_FORMATS: Dict[str, CompetitionFormat] = {
    "m1": CompetitionFormat(
        type="m1",
        label="M-1 Grand Prix",
        rounds=[
            RoundFormat(name="1st round", default_performer_count=10),
            RoundFormat(name="Final round", default_performer_count=3),
        ],
    ),
    "r1": CompetitionFormat(
        type="r1",
        label="R-1 Grand Prix",
        rounds=[
            RoundFormat(name="1st round", default_performer_count=10),
            RoundFormat(name="Final round", default_performer_count=3),
        ],
    ),
    "koc": CompetitionFormat(
        type="koc",
        label="King of Conte",
        rounds=[
            RoundFormat(name="1st stage", default_performer_count=10),
            RoundFormat(name="Final stage", default_performer_count=3),
        ],
    ),
}

from __future__ import annotations

from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np
import pandas as pd

from .identity import performer_names, resolve_identities
from .models import (
    CorrelationEntry,
    Judge,
    JudgeProfile,
    JudgeStat,
    JudgeStatus,
    JudgeType,
    OverallAnalysis,
    Performer,
    PerformerStat,
    RoundAnalysis,
    ScoreRecord,
)

# Distance from the cohort mean (in points) that marks a harsh or generous judge
JUDGE_TYPE_THRESHOLD = 5

HARSH_CRITIC = JudgeType(label="harsh critic", symbol="🧐")
GENEROUS_SOUL = JudgeType(label="generous soul", symbol="😇")
MERCURIAL_JUDGE = JudgeType(label="mercurial judge", symbol="🎢")
STEADY_CRAFTSMAN = JudgeType(label="steady craftsman", symbol="🧑‍🎨")
BALANCED_JUDGE = JudgeType(label="balanced judge", symbol="⚖️")

SCORE_COLUMNS = ["judge_id", "performer_id", "round_id", "score"]


# -----------------------
# Numeric helpers
# -----------------------
def population_std(values: Iterable[float]) -> float:
    """Standard deviation dividing by N. 0 for fewer than two values."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr))


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson r of two aligned vectors.

    Returns 0 (no signal) for empty or unequal-length vectors, or when either
    side has zero variance.
    """
    xa = np.asarray(x, dtype=float)
    ya = np.asarray(y, dtype=float)
    if xa.size == 0 or xa.size != ya.size:
        return 0.0
    dx = xa - xa.mean()
    dy = ya - ya.mean()
    den = np.sqrt((dx * dx).sum() * (dy * dy).sum())
    if den == 0:
        return 0.0
    return float((dx * dy).sum() / den)


def scores_frame(scores: Iterable[ScoreRecord]) -> pd.DataFrame:
    """Snapshot of score records as a DataFrame, input order preserved."""
    rows = [{c: getattr(s, c) for c in SCORE_COLUMNS} for s in scores]
    frame = pd.DataFrame(rows, columns=SCORE_COLUMNS)
    return frame.astype({c: "int64" for c in SCORE_COLUMNS})


def _summarize(performer_id: int, name: str, values: List[int]) -> PerformerStat:
    return PerformerStat(
        performer_id=performer_id,
        name=name,
        scores=values,
        mean=float(np.mean(values)) if values else 0.0,
        std_dev=population_std(values),
        min=min(values) if values else 0,
        max=max(values) if values else 0,
    )


def _rank(stats: List[PerformerStat]) -> List[PerformerStat]:
    # mergesort is stable: equal means keep their input order
    means = pd.Series([s.mean for s in stats], dtype=float)
    order = means.sort_values(ascending=False, kind="mergesort").index
    return [
        stats[i].model_copy(update={"rank": rank})
        for rank, i in enumerate(order, start=1)
    ]


def _eligible(frame: pd.DataFrame, eligible_judges: Optional[Set[int]]) -> pd.DataFrame:
    if eligible_judges is None:
        return frame
    return frame[frame["judge_id"].isin(list(eligible_judges))]


# -----------------------
# Performer statistics
# -----------------------
def per_performer_stats(
    scores: Iterable[ScoreRecord],
    performers: Sequence[Performer],
    eligible_judges: Optional[Set[int]] = None,
) -> List[PerformerStat]:
    """
    Mean / population SD / min / max of each performer's scores, ranked by
    mean (highest first). Only scores from eligible_judges count; None means
    every judge counts. Performers without scores get zeros and still rank.
    """
    frame = _eligible(scores_frame(scores), eligible_judges)
    stats = []
    for p in performers:
        values = frame.loc[frame["performer_id"] == p.id, "score"].tolist()
        stats.append(_summarize(p.id, p.name, [int(v) for v in values]))
    return _rank(stats)


def per_identity_stats(
    scores: Iterable[ScoreRecord],
    identities: Dict[str, List[int]],
    eligible_judges: Optional[Set[int]] = None,
) -> List[PerformerStat]:
    """Same as per_performer_stats, pooled over every round an act appeared in."""
    frame = _eligible(scores_frame(scores), eligible_judges)
    stats = []
    for name, ids in identities.items():
        values = frame.loc[frame["performer_id"].isin(ids), "score"].tolist()
        stats.append(_summarize(ids[0], name, [int(v) for v in values]))
    return _rank(stats)


def champion(stats: Sequence[PerformerStat]) -> Optional[PerformerStat]:
    for s in stats:
        if s.rank == 1:
            return s
    return None


def _contested(stats: Sequence[PerformerStat]) -> List[PerformerStat]:
    return [s for s in stats if len(s.scores) >= 2]


def most_agreed(stats: Sequence[PerformerStat]) -> Optional[PerformerStat]:
    candidates = _contested(stats)
    if not candidates:
        return None
    return min(candidates, key=lambda s: s.std_dev)


def most_disagreed(stats: Sequence[PerformerStat]) -> Optional[PerformerStat]:
    candidates = _contested(stats)
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.std_dev)


# -----------------------
# Judge statistics
# -----------------------
def per_judge_stats(
    scores: Iterable[ScoreRecord],
    judges: Sequence[Judge],
    performers: Sequence[Performer],
) -> List[JudgeStat]:
    """
    Each judge's mean and population SD over the whole competition, with the
    act behind their single highest and lowest score (first one on ties).
    """
    frame = scores_frame(scores)
    names = performer_names(performers)

    out: List[JudgeStat] = []
    for j in judges:
        mine = frame[frame["judge_id"] == j.id].reset_index(drop=True)
        if mine.empty:
            out.append(JudgeStat(judge_id=j.id, name=j.name))
            continue

        values = mine["score"].tolist()
        # idxmax / idxmin return the first occurrence
        hi = mine.loc[mine["score"].idxmax()]
        lo = mine.loc[mine["score"].idxmin()]
        out.append(
            JudgeStat(
                judge_id=j.id,
                name=j.name,
                mean=float(np.mean(values)),
                std_dev=population_std(values),
                scored_count=len(values),
                highest_scored=names.get(int(hi["performer_id"])),
                highest_score=int(hi["score"]),
                lowest_scored=names.get(int(lo["performer_id"])),
                lowest_score=int(lo["score"]),
            )
        )
    return out


def pairwise_correlation(
    scores: Iterable[ScoreRecord],
    judge_a: int,
    judge_b: int,
    identities: Dict[str, List[int]],
) -> float:
    """
    Pearson r between two judges over the acts both of them scored.

    Acts are matched by resolved identity, so a first-round score by one
    judge pairs with a final-round score by the other.
    """
    frame = scores_frame(scores)
    a_frame = frame[frame["judge_id"] == judge_a]
    b_frame = frame[frame["judge_id"] == judge_b]

    x: List[int] = []
    y: List[int] = []
    for ids in identities.values():
        a = a_frame.loc[a_frame["performer_id"].isin(ids), "score"]
        b = b_frame.loc[b_frame["performer_id"].isin(ids), "score"]
        if len(a) and len(b):
            x.append(int(a.iloc[0]))
            y.append(int(b.iloc[0]))
    return pearson(x, y)


def correlation_ranking(
    scores: Iterable[ScoreRecord],
    judges: Sequence[Judge],
    identities: Dict[str, List[int]],
) -> List[CorrelationEntry]:
    """Every unordered judge pair, best-matched pair first."""
    scores = list(scores)
    entries = [
        CorrelationEntry(
            judge_a=a.id,
            judge_b=b.id,
            pearson_r=pairwise_correlation(scores, a.id, b.id, identities),
        )
        for a, b in combinations(judges, 2)
    ]
    return sorted(entries, key=lambda e: -e.pearson_r)


def judge_type(stat: JudgeStat, all_stats: Sequence[JudgeStat]) -> JudgeType:
    """Classify a judge against the cohort. Rules apply in order."""
    cohort = list(all_stats) or [stat]
    global_mean = float(np.mean([s.mean for s in cohort]))
    max_std = max(s.std_dev for s in cohort)
    min_std = min(s.std_dev for s in cohort)

    if stat.mean < global_mean - JUDGE_TYPE_THRESHOLD:
        return HARSH_CRITIC
    if stat.mean > global_mean + JUDGE_TYPE_THRESHOLD:
        return GENEROUS_SOUL
    if stat.std_dev == max_std:
        return MERCURIAL_JUDGE
    if stat.std_dev == min_std:
        return STEADY_CRAFTSMAN
    return BALANCED_JUDGE


# -----------------------
# Visibility
# -----------------------
def eligible_judges(statuses: Iterable[JudgeStatus], viewer_id: int) -> Set[int]:
    """
    Judges whose scores the viewer may see.

    A delayed viewer who has not finished scoring sees only their own scores.
    Otherwise every judge with a status counts, except delayed judges still
    scoring.
    """
    by_judge = {s.judge_id: s for s in statuses}
    mine = by_judge.get(viewer_id)
    if mine is None or (mine.viewing_mode == "delayed" and not mine.has_completed_scoring):
        return {viewer_id}
    return {
        jid
        for jid, s in by_judge.items()
        if s.viewing_mode == "realtime" or s.has_completed_scoring
    }


# -----------------------
# Views
# -----------------------
def round_analysis(
    round_id: int,
    scores: Iterable[ScoreRecord],
    performers: Sequence[Performer],
    eligible: Optional[Set[int]] = None,
) -> RoundAnalysis:
    stats = per_performer_stats(scores, performers, eligible)
    return RoundAnalysis(
        round_id=round_id,
        performers=stats,
        champion=champion(stats),
        most_agreed=most_agreed(stats),
        most_disagreed=most_disagreed(stats),
    )


def overall_analysis(
    competition_id: int,
    scores: Iterable[ScoreRecord],
    performers: Sequence[Performer],
    judges: Sequence[Judge],
    eligible: Optional[Set[int]] = None,
) -> OverallAnalysis:
    """Competition-wide view: every round, acts merged by name."""
    scores = list(scores)
    if eligible is not None:
        judges = [j for j in judges if j.id in eligible]

    identities = resolve_identities(performers)
    stats = per_identity_stats(scores, identities, eligible)
    judge_stats = per_judge_stats(scores, judges, performers)

    return OverallAnalysis(
        competition_id=competition_id,
        total_scores=len(scores),
        performers=stats,
        champion=champion(stats),
        most_agreed=most_agreed(stats),
        most_disagreed=most_disagreed(stats),
        judges=[JudgeProfile(stat=s, type=judge_type(s, judge_stats)) for s in judge_stats],
        correlations=correlation_ranking(scores, judges, identities),
    )


def round_score_table(
    scores: Iterable[ScoreRecord],
    performers: Sequence[Performer],
    judges: Sequence[Judge],
) -> pd.DataFrame:
    """
    Returns:
      columns: Rank, Performer, <one column per judge>, Average
      rows ranked by Average (highest first), unscored performers last
    """
    lookup = {(s.judge_id, s.performer_id): s.score for s in scores}
    table = pd.DataFrame(
        {j.name: [lookup.get((j.id, p.id)) for p in performers] for j in judges},
        index=range(len(performers)),
        dtype=float,
    )
    table["Average"] = table.mean(axis=1).round(1)
    table.insert(0, "Performer", [p.name for p in performers])

    table = table.sort_values(
        by="Average", ascending=False, kind="mergesort", na_position="last"
    ).reset_index(drop=True)
    table.insert(0, "Rank", range(1, len(table) + 1))
    return table

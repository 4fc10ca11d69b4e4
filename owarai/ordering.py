from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Dict, Iterable, List, Sequence, TypeVar

import icu

from .models import Performer, ScoreRecord

T = TypeVar("T")

ALT_SEED_SUFFIX = "-alt"


def _int32(v: int) -> int:
    v &= 0xFFFFFFFF
    return v - 0x100000000 if v & 0x80000000 else v


# -----------------------
# Seeded sequence
# -----------------------
class SeededSequence:
    """
    Reproducible stream of floats in [0, 1) keyed by a string.

    The seed is folded into a signed 32-bit accumulator (acc * 31 + code unit,
    over UTF-16 code units) which becomes the state of a 13/17/5 xorshift32.
    The 17-bit shift is arithmetic on the signed state.
    """

    def __init__(self, seed: str):
        self.state = self.hash_seed(seed)

    @staticmethod
    def hash_seed(seed: str) -> int:
        data = seed.encode("utf-16-le")
        acc = 0
        for i in range(0, len(data), 2):
            unit = data[i] | (data[i + 1] << 8)
            acc = _int32((acc << 5) - acc + unit)
        return acc

    def random(self) -> float:
        s = self.state
        s = _int32(s ^ (s << 13))
        s = _int32(s ^ (s >> 17))
        s = _int32(s ^ (s << 5))
        self.state = s
        return (s & 0xFFFFFFFF) / 4294967296


def shuffle(items: Sequence[T], seed: str) -> List[T]:
    """Fisher-Yates from the back, one draw per index down to 1."""
    arr = list(items)
    rng = SeededSequence(seed)
    for i in range(len(arr) - 1, 0, -1):
        j = int(rng.random() * (i + 1))
        arr[i], arr[j] = arr[j], arr[i]
    return arr


# -----------------------
# Natural (collated) order check
# -----------------------
@lru_cache(maxsize=1)
def _collator() -> icu.Collator:
    # Japanese tailoring: kana by reading, kanji in JIS X 0208 order
    return icu.Collator.createInstance(icu.Locale("ja_JP"))


def is_naturally_ordered(names: Sequence[str]) -> bool:
    names = list(names)
    return names == sorted(names, key=_collator().getSortKey)


# -----------------------
# Per-judge orders
# -----------------------
def viewing_seed(judge_id, competition_id, round_id) -> str:
    return f"{judge_id}-{competition_id}-{round_id}"


def viewing_order(
    performers: Sequence[Performer],
    judge_id: int,
    competition_id: int,
    round_id: int,
    viewing_mode: str,
) -> List[Performer]:
    """
    Order in which a judge is shown a round's performers.

    Realtime judges see the performance order. Delayed judges get a shuffle
    that is stable across reloads; if it happens to come out sorted by name
    it is re-derived once from the alternate seed.
    """
    if viewing_mode != "delayed":
        return list(performers)

    seed = viewing_seed(judge_id, competition_id, round_id)
    shuffled = shuffle(performers, seed)
    if is_naturally_ordered([p.name for p in shuffled]):
        shuffled = shuffle(performers, seed + ALT_SEED_SUFFIX)
    return shuffled


def viewing_queue(
    performers: Sequence[Performer],
    scores: Iterable[ScoreRecord],
    judge_id: int,
    competition_id: int,
    round_id: int,
    viewing_mode: str,
) -> List[Performer]:
    """Viewing order minus the performers this judge already scored."""
    scored = {s.performer_id for s in scores if s.judge_id == judge_id}
    ordered = viewing_order(performers, judge_id, competition_id, round_id, viewing_mode)
    return [p for p in ordered if p.id not in scored]


def display_order(
    performers: Sequence[Performer],
    scores: Iterable[ScoreRecord],
    judge_id: int,
) -> List[Performer]:
    """The order the judge actually scored in; unscored performers go last."""
    scored_at: Dict[int, datetime] = {
        s.performer_id: s.scored_at for s in scores if s.judge_id == judge_id
    }

    def key(p: Performer):
        ts = scored_at.get(p.id)
        return (ts is None, ts.timestamp() if ts is not None else 0.0)

    return sorted(performers, key=key)

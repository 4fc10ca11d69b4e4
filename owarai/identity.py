from __future__ import annotations

from typing import Dict, Iterable, List

from .models import Performer


def resolve_identities(performers: Iterable[Performer]) -> Dict[str, List[int]]:
    """
    Group per-round performer ids by performer name.

    Finalists are re-entered as new performers in the final round, so the
    name is the only key that links them to their first-round entry. Two
    different acts sharing a name end up merged.
    """
    identities: Dict[str, List[int]] = {}
    for p in performers:
        identities.setdefault(p.name, []).append(p.id)
    return identities


def performer_names(performers: Iterable[Performer]) -> Dict[int, str]:
    return {p.id: p.name for p in performers}

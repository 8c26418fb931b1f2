"""
Dense, tie-aware ranking for family members and family leaderboards.

Entries are ordered by (stars, tasks) descending. The first entry gets rank 1;
an entry with the same (stars, tasks) as the one before it shares that rank,
otherwise it gets the previous rank + 1. There are no gaps after ties.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from familyquest.models.family import Family, Period, PERIODS
from familyquest.models.ledger import RankedEntry
from familyquest.models.user import User

DEFAULT_TOP_N = 10


def dense_rank(entries: Iterable[Tuple[str, int, int]]) -> List[RankedEntry]:
    """Rank (key, stars, tasks) tuples. Input order breaks exact ties for display only."""
    ordered = sorted(entries, key=lambda entry: (entry[1], entry[2]), reverse=True)

    ranked: List[RankedEntry] = []
    rank = 0
    previous: Optional[Tuple[int, int]] = None
    for key, stars, tasks in ordered:
        if (stars, tasks) != previous:
            rank += 1
            previous = (stars, tasks)
        ranked.append(RankedEntry(key=key, stars=stars, tasks=tasks, rank=rank))
    return ranked


def recalculate_member_ranks(members: List[User], family: Optional[Family] = None) -> Dict[str, int]:
    """Assign rank_in_family to every member in place and mirror it into the family roster."""
    ranked = dense_rank((m.id, m.stars, m.tasks_completed) for m in members)
    ranks = {entry.key: entry.rank for entry in ranked}

    for member in members:
        member.rank_in_family = ranks[member.id]

    if family is not None:
        for roster_entry in family.members:
            if roster_entry.member_id in ranks:
                roster_entry.rank_cache = ranks[roster_entry.member_id]

    return ranks


def member_leaderboard(members: List[User]) -> List[RankedEntry]:
    return dense_rank((m.id, m.stars, m.tasks_completed) for m in members)


def period_leaderboard(
    families: List[Family],
    period: Period,
    *,
    top_n: int = DEFAULT_TOP_N,
    family_id: Optional[str] = None,
) -> dict:
    """Cross-family leaderboard for one period bucket.

    Returns entries ranked within the top ``top_n`` ranks (ties can push the
    list past ``top_n`` rows) and the requested family's own entry.
    """
    ranked = dense_rank(
        (f.id, f.period_stars.get(period), f.period_task_counts.get(period)) for f in families
    )
    names = {f.id: f.family_name for f in families}

    def _row(entry: RankedEntry) -> dict:
        return {
            "family_id": entry.key,
            "family_name": names[entry.key],
            "stars": entry.stars,
            "tasks": entry.tasks,
            "rank": entry.rank,
        }

    top = [_row(entry) for entry in ranked if entry.rank <= top_n]
    own = None
    if family_id:
        own = next((_row(entry) for entry in ranked if entry.key == family_id), None)
    return {"top": top, "family_rank": own}


def all_period_leaderboards(
    families: List[Family], *, top_n: int = DEFAULT_TOP_N, family_id: Optional[str] = None
) -> Dict[str, dict]:
    return {
        period: period_leaderboard(families, period, top_n=top_n, family_id=family_id)
        for period in PERIODS
    }

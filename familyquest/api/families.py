from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from familyquest.features.ledger.service import LedgerService, get_ledger_service

router = APIRouter(tags=["families"])


@router.post("/v1/families/{family_id}/ranks/recalculate")
def recalculate_ranks(
    family_id: str,
    user_id: Optional[str] = Query(None),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Re-derive rank_in_family for every member. Idempotent."""
    result = ledger.recalculate_ranks(family_id=family_id, user_id=user_id)
    return {"family_id": family_id, "ranks": result.ranks, "rank": result.rank}


@router.post("/v1/families/{family_id}/stars/reconcile")
def reconcile_stars(family_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    """Reset total_stars to the sum of member stars and report the drift."""
    outcome = ledger.reconcile_family_stars(family_id=family_id)
    return {"family_id": family_id, **outcome}


@router.get("/v1/families/{family_id}/leaderboard")
def family_leaderboard(family_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    entries = ledger.member_leaderboard(family_id=family_id)
    return {
        "family_id": family_id,
        "members": [
            {"user_id": e.key, "stars": e.stars, "tasks_completed": e.tasks, "rank": e.rank}
            for e in entries
        ],
    }


@router.get("/v1/leaderboard")
def leaderboard(family_id: Optional[str] = Query(None), ledger: LedgerService = Depends(get_ledger_service)):
    """Cross-family daily/weekly/monthly/yearly leaderboards."""
    return ledger.period_leaderboards(family_id=family_id)

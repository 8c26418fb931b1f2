from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from familyquest.features.ledger.service import LedgerService, get_ledger_service

router = APIRouter(tags=["stats"])


@router.get("/v1/users/{user_id}/stats")
def user_stats(
    user_id: str,
    frame: str = Query("monthly"),
    ledger: LedgerService = Depends(get_ledger_service),
):
    stats = ledger.user_stats(user_id=user_id, frame=frame)
    return stats.model_dump(mode="json", exclude_none=True)


@router.get("/v1/families/{family_id}/stats")
def family_stats(
    family_id: str,
    frame: str = Query("monthly"),
    ledger: LedgerService = Depends(get_ledger_service),
):
    stats = ledger.family_stats(family_id=family_id, frame=frame)
    return stats.model_dump(mode="json")

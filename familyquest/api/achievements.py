from __future__ import annotations

from fastapi import APIRouter, Depends

from familyquest.features.ledger.service import LedgerService, get_ledger_service

router = APIRouter(tags=["achievements"])


@router.post("/v1/users/{user_id}/achievements/{achievement_id}/unlock")
def unlock_user_achievement(user_id: str, achievement_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    result = ledger.unlock_user_achievement(user_id=user_id, achievement_id=achievement_id)
    return {"user_id": user_id, "unlocked_achievement": result.unlocked.model_dump(mode="json")}


@router.post("/v1/families/{family_id}/achievements/{achievement_id}/unlock")
def unlock_family_achievement(family_id: str, achievement_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    result = ledger.unlock_family_achievement(family_id=family_id, achievement_id=achievement_id)
    return {"family_id": family_id, "unlocked_achievement": result.unlocked.model_dump(mode="json")}

from __future__ import annotations

from fastapi import APIRouter, Depends

from familyquest.api.payloads import challenge_payload
from familyquest.features.ledger.service import LedgerService, get_ledger_service

router = APIRouter(tags=["adventures"])


@router.post("/v1/users/{user_id}/adventures/{adventure_id}/start", status_code=201)
def start_adventure(user_id: str, adventure_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    result = ledger.start_adventure(user_id=user_id, adventure_id=adventure_id)
    progress = result.user.find_adventure(adventure_id)
    return {"adventure": progress.model_dump(mode="json")}


@router.post("/v1/users/{user_id}/adventures/{adventure_id}/challenges/{challenge_id}/complete")
def complete_challenge(
    user_id: str,
    adventure_id: str,
    challenge_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Complete one challenge; the adventure is started on the fly if needed."""
    result = ledger.complete_challenge(user_id=user_id, adventure_id=adventure_id, challenge_id=challenge_id)
    return challenge_payload(result)

from __future__ import annotations

from fastapi import APIRouter, Depends

from familyquest.api.payloads import task_payload
from familyquest.features.ledger.service import LedgerService, get_ledger_service

router = APIRouter(tags=["goals"])


@router.post("/v1/users/{user_id}/goals/{goal_id}/tasks/{task_id}/complete")
def complete_user_task(
    user_id: str,
    goal_id: str,
    task_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Complete a personal task, cascading into goal, achievement, family totals and ranks."""
    result = ledger.complete_task(user_id=user_id, goal_id=goal_id, task_id=task_id)
    return task_payload(result)


@router.post("/v1/families/{family_id}/goals/{goal_id}/tasks/{task_id}/complete")
def complete_family_task(
    family_id: str,
    goal_id: str,
    task_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Complete a family task. Every member is credited; the family keeps the achievement."""
    result = ledger.complete_family_task(family_id=family_id, goal_id=goal_id, task_id=task_id)
    return task_payload(result)

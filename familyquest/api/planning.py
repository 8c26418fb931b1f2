from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from familyquest.api.payloads import actor_snapshot
from familyquest.features.ledger.service import LedgerService, get_ledger_service
from familyquest.models.family import MemberRole
from familyquest.models.goal import Goal, GoalRewards, Task, TaskRewards, new_id
from familyquest.models.ledger import TaskAddition

router = APIRouter(tags=["planning"])


class NewUser(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    name: str = ""
    family_id: Optional[str] = Field(None, min_length=1)
    role: MemberRole = "child"


class NewFamily(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    family_name: str = Field(..., min_length=1)


class NewTask(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    rewards: TaskRewards = Field(default_factory=TaskRewards)

    def to_task(self) -> Task:
        return Task(id=self.id or new_id(), title=self.title, description=self.description, rewards=self.rewards)


class NewGoal(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    due_date: Optional[datetime] = None
    rewards: GoalRewards = Field(default_factory=GoalRewards)
    tasks: List[NewTask] = Field(default_factory=list)

    def to_goal(self) -> Goal:
        return Goal(
            id=self.id or new_id(),
            title=self.title,
            description=self.description,
            due_date=self.due_date,
            rewards=self.rewards,
            tasks=[task.to_task() for task in self.tasks],
        )


def _addition_payload(addition: TaskAddition) -> dict:
    return {
        "task": addition.task.model_dump(mode="json"),
        "goal": {
            "id": addition.goal.id,
            "progress": addition.goal.progress,
            "is_completed": addition.goal.is_completed,
        },
        "reopened": addition.reopened,
        "stars_withdrawn": addition.stars_withdrawn,
        "coins_withdrawn": addition.coins_withdrawn,
    }


@router.post("/v1/users", status_code=201)
def create_user(body: NewUser, ledger: LedgerService = Depends(get_ledger_service)):
    """Register a user, optionally joining a family (ranks are refreshed)."""
    result = ledger.register_user(
        user_id=body.id or new_id(), name=body.name, family_id=body.family_id, role=body.role
    )
    return {"ranks": result.ranks, **actor_snapshot(result)}


@router.post("/v1/families", status_code=201)
def create_family(body: NewFamily, ledger: LedgerService = Depends(get_ledger_service)):
    family = ledger.create_family(family_id=body.id or new_id(), family_name=body.family_name)
    return {"family": family.model_dump(mode="json")}


@router.post("/v1/users/{user_id}/goals", status_code=201)
def create_user_goal(user_id: str, body: NewGoal, ledger: LedgerService = Depends(get_ledger_service)):
    goal = ledger.create_goal(goal=body.to_goal(), user_id=user_id)
    return {"goal": goal.model_dump(mode="json")}


@router.post("/v1/families/{family_id}/goals", status_code=201)
def create_family_goal(family_id: str, body: NewGoal, ledger: LedgerService = Depends(get_ledger_service)):
    goal = ledger.create_goal(goal=body.to_goal(), family_id=family_id)
    return {"goal": goal.model_dump(mode="json")}


@router.post("/v1/users/{user_id}/goals/{goal_id}/tasks", status_code=201)
def create_user_task(
    user_id: str,
    goal_id: str,
    body: NewTask,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Append a task. Adding to a completed goal reopens it and takes its reward back."""
    addition = ledger.add_task(goal_id=goal_id, task=body.to_task(), user_id=user_id)
    return _addition_payload(addition)


@router.post("/v1/families/{family_id}/goals/{goal_id}/tasks", status_code=201)
def create_family_task(
    family_id: str,
    goal_id: str,
    body: NewTask,
    ledger: LedgerService = Depends(get_ledger_service),
):
    addition = ledger.add_task(goal_id=goal_id, task=body.to_task(), family_id=family_id)
    return _addition_payload(addition)

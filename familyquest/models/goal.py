from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

GoalType = Literal["personal", "family"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class TaskRewards(BaseModel):
    stars: int = Field(2, ge=0)
    coins: int = Field(1, ge=0)


class GoalRewards(BaseModel):
    stars: int = Field(10, ge=0)
    coins: int = Field(5, ge=0)
    achievement_id: Optional[str] = None


class Task(BaseModel):
    """A unit of work inside a goal. Completion is one-way."""

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    is_completed: bool = False
    rewards: TaskRewards = Field(default_factory=TaskRewards)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class Goal(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    type: GoalType = "personal"
    due_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    progress: float = Field(0.0, ge=0, le=100)
    nb_of_tasks_completed: int = Field(0, ge=0)
    rewards: GoalRewards = Field(default_factory=GoalRewards)
    tasks: List[Task] = Field(default_factory=list)

    def find_task(self, task_id: str) -> Optional[Task]:
        return next((task for task in self.tasks if task.id == task_id), None)

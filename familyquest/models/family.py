from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from familyquest.models.achievement import UnlockedAchievement
from familyquest.models.goal import Goal, new_id

Period = Literal["daily", "weekly", "monthly", "yearly"]
PERIODS: tuple[Period, ...] = ("daily", "weekly", "monthly", "yearly")

MemberRole = Literal["parent", "grandparent", "admin", "child"]


class PeriodCounters(BaseModel):
    daily: int = Field(0, ge=0)
    weekly: int = Field(0, ge=0)
    monthly: int = Field(0, ge=0)
    yearly: int = Field(0, ge=0)

    def get(self, period: Period) -> int:
        return getattr(self, period)

    def add(self, amount: int) -> None:
        for period in PERIODS:
            setattr(self, period, getattr(self, period) + amount)

    def reset(self, period: Period) -> None:
        setattr(self, period, 0)


class FamilyMember(BaseModel):
    member_id: str
    name: str = ""
    role: MemberRole = "child"
    rank_cache: int = Field(0, ge=0)


class Family(BaseModel):
    """Family actor: aggregate totals plus windowed leaderboard counters."""

    id: str = Field(default_factory=new_id)
    family_name: str
    total_stars: int = Field(0, ge=0)
    period_stars: PeriodCounters = Field(default_factory=PeriodCounters)
    period_task_counts: PeriodCounters = Field(default_factory=PeriodCounters)
    tasks: int = Field(0, ge=0)
    members: List[FamilyMember] = Field(default_factory=list)
    goals: List[Goal] = Field(default_factory=list)
    achievements: List[UnlockedAchievement] = Field(default_factory=list)

    def find_goal(self, goal_id: str) -> Optional[Goal]:
        return next((goal for goal in self.goals if goal.id == goal_id), None)

    def find_member(self, member_id: str) -> Optional[FamilyMember]:
        return next((m for m in self.members if m.member_id == member_id), None)

    def has_unlocked(self, achievement_id: str) -> bool:
        return any(a.achievement_id == achievement_id for a in self.achievements)

    @property
    def member_ids(self) -> List[str]:
        return [m.member_id for m in self.members]

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from familyquest.models.achievement import UnlockedAchievement
from familyquest.models.adventure import AdventureProgress
from familyquest.models.goal import Goal, new_id


class User(BaseModel):
    """Individual actor: earns stars/coins and holds a rank inside its family."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    stars: int = Field(0, ge=0)
    coins: int = Field(0, ge=0)
    tasks_completed: int = Field(0, ge=0)
    rank_in_family: int = Field(0, ge=0)
    family_id: Optional[str] = None
    goals: List[Goal] = Field(default_factory=list)
    adventures: List[AdventureProgress] = Field(default_factory=list)
    achievements: List[UnlockedAchievement] = Field(default_factory=list)

    def find_goal(self, goal_id: str) -> Optional[Goal]:
        return next((goal for goal in self.goals if goal.id == goal_id), None)

    def find_adventure(self, adventure_id: str) -> Optional[AdventureProgress]:
        return next((p for p in self.adventures if p.adventure_id == adventure_id), None)

    def has_unlocked(self, achievement_id: str) -> bool:
        return any(a.achievement_id == achievement_id for a in self.achievements)

    @property
    def rank_key(self) -> tuple[int, int]:
        return (self.stars, self.tasks_completed)

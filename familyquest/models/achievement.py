from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from familyquest.models.goal import new_id, utcnow

AchievementType = Literal["personal", "family"]


class Achievement(BaseModel):
    """Catalog entry. Not owned by any actor."""

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    type: AchievementType = "personal"
    criteria: str = ""
    stars_reward: int = Field(0, ge=0)
    coins_reward: int = Field(0, ge=0)


class UnlockedAchievement(BaseModel):
    """Append-only join record, at most one per (actor, achievement)."""

    achievement_id: str
    unlocked_at: datetime = Field(default_factory=utcnow)

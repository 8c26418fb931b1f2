from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from familyquest.models.goal import new_id, utcnow

AdventureStatus = Literal["in-progress", "completed"]

# Adventures close one day after they open unless told otherwise
ADVENTURE_WINDOW = timedelta(hours=24)


class AdventureChallenge(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    content: str = ""
    stars_reward: int = Field(2, ge=0)
    coins_reward: int = Field(1, ge=0)


class Adventure(BaseModel):
    """Shared adventure template from the catalog."""

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    stars_reward: int = Field(10, ge=0)
    coins_reward: int = Field(5, ge=0)
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    challenges: List[AdventureChallenge] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_end_date(self) -> "Adventure":
        if self.end_date is None:
            self.end_date = self.start_date + ADVENTURE_WINDOW
        return self

    def find_challenge(self, challenge_id: str) -> Optional[AdventureChallenge]:
        return next((ch for ch in self.challenges if ch.id == challenge_id), None)


class ChallengeProgress(BaseModel):
    challenge_id: str
    is_completed: bool = False
    completed_at: Optional[datetime] = None


class AdventureProgress(BaseModel):
    """A user's run through an adventure. Rewards are snapshotted at start."""

    adventure_id: str
    challenges: List[ChallengeProgress] = Field(default_factory=list)
    progress: float = Field(0.0, ge=0, le=100)
    status: AdventureStatus = "in-progress"
    is_adventure_completed: bool = False
    stars_reward: int = Field(0, ge=0)
    coins_reward: int = Field(0, ge=0)

    @classmethod
    def start(cls, adventure: Adventure) -> "AdventureProgress":
        return cls(
            adventure_id=adventure.id,
            challenges=[ChallengeProgress(challenge_id=ch.id) for ch in adventure.challenges],
            stars_reward=adventure.stars_reward,
            coins_reward=adventure.coins_reward,
        )

    def find_challenge(self, challenge_id: str) -> Optional[ChallengeProgress]:
        return next((ch for ch in self.challenges if ch.challenge_id == challenge_id), None)

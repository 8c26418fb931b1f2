from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from familyquest.features.ledger.service import LedgerService, get_ledger_service
from familyquest.models.achievement import Achievement, AchievementType
from familyquest.models.adventure import Adventure, AdventureChallenge
from familyquest.models.goal import new_id

router = APIRouter(tags=["catalog"])


class NewAchievement(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    type: AchievementType = "personal"
    criteria: str = ""
    stars_reward: int = Field(0, ge=0)
    coins_reward: int = Field(0, ge=0)


class NewChallenge(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    title: str = Field(..., min_length=1)
    content: str = ""
    stars_reward: int = Field(2, ge=0)
    coins_reward: int = Field(1, ge=0)


class NewAdventure(BaseModel):
    id: Optional[str] = Field(None, min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    stars_reward: int = Field(10, ge=0)
    coins_reward: int = Field(5, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    challenges: List[NewChallenge] = Field(default_factory=list)


@router.post("/v1/achievements", status_code=201)
def create_achievement(body: NewAchievement, ledger: LedgerService = Depends(get_ledger_service)):
    achievement = Achievement(**body.model_dump(exclude={"id"}), id=body.id or new_id())
    return {"achievement": ledger.create_achievement(achievement=achievement).model_dump(mode="json")}


@router.post("/v1/adventures", status_code=201)
def create_adventure(body: NewAdventure, ledger: LedgerService = Depends(get_ledger_service)):
    # Unset dates fall back to the model defaults
    fields = body.model_dump(exclude={"id", "challenges"}, exclude_none=True)
    adventure = Adventure(
        id=body.id or new_id(),
        challenges=[
            AdventureChallenge(**ch.model_dump(exclude={"id"}), id=ch.id or new_id()) for ch in body.challenges
        ],
        **fields,
    )
    return {"adventure": ledger.create_adventure(adventure=adventure).model_dump(mode="json")}

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from familyquest.models.achievement import UnlockedAchievement
from familyquest.models.adventure import AdventureProgress, ChallengeProgress
from familyquest.models.family import Family
from familyquest.models.goal import Goal, Task
from familyquest.models.user import User


@dataclass
class TaskCompletion:
    """Result of completing one task, cascade included."""

    task: Task
    goal: Goal
    stars_awarded: int
    coins_awarded: int
    goal_completed: bool = False
    unlocked: Optional[UnlockedAchievement] = None
    # Goal reward achievement was already held
    unlock_rejected: bool = False


@dataclass
class TaskAddition:
    """A task appended to an existing goal."""

    task: Task
    goal: Goal
    reopened: bool = False
    # Goal reward taken back on reopen, summed over every credited holder
    stars_withdrawn: int = 0
    coins_withdrawn: int = 0


@dataclass
class ChallengeCompletion:
    challenge: ChallengeProgress
    adventure_progress: AdventureProgress
    stars_awarded: int
    coins_awarded: int
    adventure_completed: bool = False
    started_implicitly: bool = False


@dataclass
class RankedEntry:
    """One row of a dense-ranked table."""

    key: str
    stars: int
    tasks: int
    rank: int


@dataclass
class LedgerResult:
    """What a ledger operation hands back to the HTTP layer."""

    user: Optional[User] = None
    family: Optional[Family] = None
    task: Optional[TaskCompletion] = None
    challenge: Optional[ChallengeCompletion] = None
    unlocked: Optional[UnlockedAchievement] = None
    family_stars_delta: int = 0
    aggregate_skipped: bool = False
    ranks: Dict[str, int] = field(default_factory=dict)
    members: List[User] = field(default_factory=list)

    @property
    def rank(self) -> Optional[int]:
        if self.user is None:
            return None
        return self.user.rank_in_family

"""
Reward application for tasks, goals, adventure challenges and achievements.

Pure functions over already-loaded documents: they mutate the models they are
handed and return what was awarded. Persistence, family aggregates and ranks
are the ledger service's job.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Union

from familyquest.core.errors import (
    AchievementNotFoundError,
    AlreadyCompletedError,
    AlreadyUnlockedError,
    InvalidStateError,
    NotFoundError,
)
from familyquest.models.achievement import Achievement, UnlockedAchievement
from familyquest.models.adventure import Adventure, AdventureProgress
from familyquest.models.family import Family
from familyquest.models.goal import Goal, Task, utcnow
from familyquest.models.ledger import ChallengeCompletion, TaskCompletion
from familyquest.models.user import User

AchievementLookup = Callable[[str], Optional[Achievement]]
Owner = Union[User, Family]


def completion_percent(completed: int, total: int) -> float:
    """Share of completed units, 0 for an empty container."""
    if total <= 0:
        return 0.0
    if completed >= total:
        return 100.0
    return 100.0 * completed / total


def resolve_goal_task(owner: Owner, goal_id: str, task_id: str) -> tuple[Goal, Task]:
    goal = owner.find_goal(goal_id)
    if goal is None:
        raise NotFoundError("Goal not found")
    task = goal.find_task(task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return goal, task


def _mark_task(task: Task, goal: Goal, now: datetime) -> bool:
    """Complete the task and refresh goal progress. True if the goal just completed."""
    if task.is_completed:
        raise AlreadyCompletedError("Task already completed")
    if goal.is_completed:
        raise InvalidStateError("Goal is already completed")

    task.is_completed = True
    task.completed_at = now

    done = sum(1 for t in goal.tasks if t.is_completed)
    goal.progress = completion_percent(done, len(goal.tasks))

    if goal.progress == 100.0:
        goal.is_completed = True
        goal.completed_at = now
        return True
    return False


def unlock(owner: Owner, achievement_id: str, find_achievement: AchievementLookup, now: datetime) -> UnlockedAchievement:
    achievement = find_achievement(achievement_id)
    if achievement is None:
        raise AchievementNotFoundError("Achievement not found")
    if owner.has_unlocked(achievement_id):
        raise AlreadyUnlockedError("Achievement already unlocked")
    record = UnlockedAchievement(achievement_id=achievement.id, unlocked_at=now)
    owner.achievements.append(record)
    return record


def _cascade_unlock(
    owner: Owner, achievement_id: str, find_achievement: AchievementLookup, now: datetime
) -> tuple[Optional[UnlockedAchievement], bool]:
    """Goal reward unlock. A held achievement is skipped, never re-appended.

    Returns the new record (or None) and whether the unlock was rejected as a
    duplicate. The completion itself still stands.
    """
    try:
        return unlock(owner, achievement_id, find_achievement, now), False
    except AlreadyUnlockedError:
        return None, True


def complete_task(
    user: User,
    goal_id: str,
    task_id: str,
    *,
    find_achievement: AchievementLookup,
    now: Optional[datetime] = None,
) -> TaskCompletion:
    """Complete a personal task and cascade into its goal."""
    now = now or utcnow()
    goal, task = resolve_goal_task(user, goal_id, task_id)
    goal_completed = _mark_task(task, goal, now)

    stars = task.rewards.stars
    coins = task.rewards.coins
    user.tasks_completed += 1
    goal.nb_of_tasks_completed += 1

    unlocked = None
    unlock_rejected = False
    if goal_completed:
        stars += goal.rewards.stars
        coins += goal.rewards.coins
        if goal.rewards.achievement_id:
            unlocked, unlock_rejected = _cascade_unlock(user, goal.rewards.achievement_id, find_achievement, now)

    user.stars += stars
    user.coins += coins

    return TaskCompletion(
        task=task,
        goal=goal,
        stars_awarded=stars,
        coins_awarded=coins,
        goal_completed=goal_completed,
        unlocked=unlocked,
        unlock_rejected=unlock_rejected,
    )


def complete_family_task(
    family: Family,
    members: List[User],
    goal_id: str,
    task_id: str,
    *,
    find_achievement: AchievementLookup,
    now: Optional[datetime] = None,
) -> TaskCompletion:
    """Complete a family task: every member is credited, the family keeps the achievement.

    ``stars_awarded``/``coins_awarded`` are per member.
    """
    now = now or utcnow()
    goal, task = resolve_goal_task(family, goal_id, task_id)
    goal_completed = _mark_task(task, goal, now)

    stars = task.rewards.stars
    coins = task.rewards.coins
    unlocked = None
    unlock_rejected = False
    if goal_completed:
        stars += goal.rewards.stars
        coins += goal.rewards.coins
        if goal.rewards.achievement_id:
            unlocked, unlock_rejected = _cascade_unlock(family, goal.rewards.achievement_id, find_achievement, now)

    for member in members:
        member.stars += stars
        member.coins += coins

    return TaskCompletion(
        task=task,
        goal=goal,
        stars_awarded=stars,
        coins_awarded=coins,
        goal_completed=goal_completed,
        unlocked=unlocked,
        unlock_rejected=unlock_rejected,
    )


def start_adventure(user: User, adventure: Adventure) -> AdventureProgress:
    if user.find_adventure(adventure.id) is not None:
        raise InvalidStateError("Adventure already started")
    progress = AdventureProgress.start(adventure)
    user.adventures.append(progress)
    return progress


def complete_challenge(
    user: User,
    adventure: Adventure,
    challenge_id: str,
    *,
    now: Optional[datetime] = None,
) -> ChallengeCompletion:
    """Complete one adventure challenge, starting the adventure if needed."""
    now = now or utcnow()

    template = adventure.find_challenge(challenge_id)
    if template is None:
        raise NotFoundError("Challenge not found in adventure")

    progress = user.find_adventure(adventure.id)
    started = progress is None
    if started:
        progress = start_adventure(user, adventure)

    challenge = progress.find_challenge(challenge_id)
    if challenge is None:
        # Challenge added to the template after this run started
        raise NotFoundError("Challenge not found in adventure progress")
    if challenge.is_completed:
        raise AlreadyCompletedError("Challenge already completed")
    if progress.is_adventure_completed:
        raise InvalidStateError("Adventure is already completed")

    challenge.is_completed = True
    challenge.completed_at = now
    stars = template.stars_reward
    coins = template.coins_reward

    done = sum(1 for ch in progress.challenges if ch.is_completed)
    progress.progress = completion_percent(done, len(progress.challenges))

    adventure_completed = progress.progress == 100.0
    if adventure_completed:
        progress.is_adventure_completed = True
        progress.status = "completed"
        stars += progress.stars_reward
        coins += progress.coins_reward

    user.stars += stars
    user.coins += coins

    return ChallengeCompletion(
        challenge=challenge,
        adventure_progress=progress,
        stars_awarded=stars,
        coins_awarded=coins,
        adventure_completed=adventure_completed,
        started_implicitly=started,
    )


def unlock_for_actor(owner: Owner, achievement: Optional[Achievement], *, now: Optional[datetime] = None) -> UnlockedAchievement:
    """Explicit unlock. Personal achievements go to users, family ones to families."""
    if achievement is None:
        raise AchievementNotFoundError("Achievement not found")
    expected = "family" if isinstance(owner, Family) else "personal"
    if achievement.type != expected:
        raise InvalidStateError(f"It is not a {expected} achievement")
    return unlock(owner, achievement.id, lambda _id: achievement, now or utcnow())

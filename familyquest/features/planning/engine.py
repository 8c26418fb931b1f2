"""
Goal and task creation for users and families.

Like the reward engine these functions only mutate the models they are handed.
Adding a task to a completed goal reopens it and takes the goal reward back
from whoever was paid, so completing the new task pays it again exactly once.
"""
from __future__ import annotations

from typing import Callable, List, Optional, Union

from familyquest.core.errors import AchievementNotFoundError, InvalidStateError, NotFoundError
from familyquest.features.rewards.engine import completion_percent
from familyquest.models.achievement import Achievement
from familyquest.models.family import Family
from familyquest.models.goal import Goal, Task
from familyquest.models.ledger import TaskAddition
from familyquest.models.user import User

Owner = Union[User, Family]


def add_goal(owner: Owner, goal: Goal, *, find_achievement: Callable[[str], Optional[Achievement]]) -> Goal:
    """Attach a fresh goal. Its reward achievement must exist in the catalog."""
    if owner.find_goal(goal.id) is not None:
        raise InvalidStateError("Goal already exists")
    achievement_id = goal.rewards.achievement_id
    if achievement_id and find_achievement(achievement_id) is None:
        raise AchievementNotFoundError("Achievement not found")

    goal.type = "family" if isinstance(owner, Family) else "personal"
    goal.is_completed = False
    goal.completed_at = None
    goal.nb_of_tasks_completed = 0
    for task in goal.tasks:
        task.is_completed = False
        task.completed_at = None
    goal.progress = 0.0
    owner.goals.append(goal)
    return goal


def _take_back(holder: User, stars: int, coins: int) -> tuple[int, int]:
    taken_stars = min(holder.stars, stars)
    taken_coins = min(holder.coins, coins)
    holder.stars -= taken_stars
    holder.coins -= taken_coins
    return taken_stars, taken_coins


def add_task(owner: Owner, goal_id: str, task: Task, *, members: Optional[List[User]] = None) -> TaskAddition:
    """Append a task to one of the owner's goals.

    ``members`` are the users credited by a family goal; ignored for users.
    """
    goal = owner.find_goal(goal_id)
    if goal is None:
        raise NotFoundError("Goal not found")
    if goal.find_task(task.id) is not None:
        raise InvalidStateError("Task already exists")

    task.is_completed = False
    task.completed_at = None
    reopened = goal.is_completed
    goal.tasks.append(task)

    addition = TaskAddition(task=task, goal=goal, reopened=reopened)
    if reopened:
        goal.is_completed = False
        goal.completed_at = None
        holders = (members or []) if isinstance(owner, Family) else [owner]
        for holder in holders:
            stars, coins = _take_back(holder, goal.rewards.stars, goal.rewards.coins)
            addition.stars_withdrawn += stars
            addition.coins_withdrawn += coins

    done = sum(1 for t in goal.tasks if t.is_completed)
    goal.progress = completion_percent(done, len(goal.tasks))
    return addition

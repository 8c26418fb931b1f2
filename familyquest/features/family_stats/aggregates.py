from __future__ import annotations

from typing import List

from familyquest.core.errors import ValidationError
from familyquest.models.family import Family, Period, PERIODS
from familyquest.models.user import User


def apply_family_delta(family: Family, stars_delta: int, task_increment: int) -> Family:
    """Push one completion event into the family's all-time and windowed counters.

    Every bucket is bumped unconditionally; the scheduled resets zero them at
    period boundaries.
    """
    if task_increment not in (0, 1):
        raise ValidationError("task_increment must be 0 or 1")
    if stars_delta < 0:
        raise ValidationError("stars_delta must be >= 0")

    family.total_stars += stars_delta
    family.period_stars.add(stars_delta)
    family.period_task_counts.add(task_increment)
    family.tasks += task_increment
    return family


def withdraw_family_stars(family: Family, stars: int) -> int:
    """Take back stars already pushed into the family, never below zero.

    Task counters are left alone. Returns what came off the all-time total.
    """
    if stars < 0:
        raise ValidationError("stars must be >= 0")
    taken = min(family.total_stars, stars)
    family.total_stars -= taken
    for period in PERIODS:
        current = family.period_stars.get(period)
        setattr(family.period_stars, period, current - min(current, stars))
    return taken


def reconcile_total_stars(family: Family, members: List[User]) -> int:
    """Reset total_stars to the members' sum. Returns the drift that was corrected."""
    actual = sum(member.stars for member in members)
    drift = actual - family.total_stars
    family.total_stars = actual
    return drift


def reset_bucket(family: Family, period: Period) -> bool:
    """Zero one period bucket. Returns False when it was already zero."""
    if period not in PERIODS:
        raise ValidationError(f"Unknown period: {period}")
    changed = bool(family.period_stars.get(period) or family.period_task_counts.get(period))
    family.period_stars.reset(period)
    family.period_task_counts.reset(period)
    return changed

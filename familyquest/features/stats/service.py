"""
Progress statistics over goals and tasks created inside a calendar window.
"""
from __future__ import annotations

import calendar
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel

from familyquest.models.goal import Goal, utcnow

TIME_FRAMES = ("daily", "weekly", "monthly", "yearly")


class ProgressStats(BaseModel):
    frame: str
    start: datetime
    end: datetime
    total_tasks: int = 0
    completed_tasks: int = 0
    total_goals: int = 0
    completed_goals: int = 0
    # Family stats only
    total_achievements: Optional[int] = None
    unlocked_achievements: Optional[int] = None


def _start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)


def _end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo)


def _end_of_month(moment: datetime) -> datetime:
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return _end_of_day(moment.replace(day=last_day))


def time_period(frame: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Inclusive [start, end] window for a frame. Weeks run Sunday to Saturday.

    Unknown frames fall back to today's start through the end of the month.
    """
    now = now or utcnow()
    today = _start_of_day(now)

    if frame == "daily":
        return today, _end_of_day(now)
    if frame == "weekly":
        # weekday(): Monday=0 .. Sunday=6
        start = today - timedelta(days=(now.weekday() + 1) % 7)
        return start, _end_of_day(start + timedelta(days=6))
    if frame == "monthly":
        return today.replace(day=1), _end_of_month(now)
    if frame == "yearly":
        return today.replace(month=1, day=1), _end_of_day(now.replace(month=12, day=31))
    return today, _end_of_month(now)


def _in_window(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    if moment is None:
        return False
    if moment.tzinfo is None and start.tzinfo is not None:
        moment = moment.replace(tzinfo=start.tzinfo)
    return start <= moment <= end


def progress_stats(goals: Iterable[Goal], frame: str, now: Optional[datetime] = None) -> ProgressStats:
    start, end = time_period(frame, now)
    goals = list(goals)

    tasks = [task for goal in goals for task in goal.tasks if _in_window(task.created_at, start, end)]
    windowed_goals = [goal for goal in goals if _in_window(goal.created_at, start, end)]

    return ProgressStats(
        frame=frame,
        start=start,
        end=end,
        total_tasks=len(tasks),
        completed_tasks=sum(1 for task in tasks if task.is_completed),
        total_goals=len(windowed_goals),
        completed_goals=sum(1 for goal in windowed_goals if goal.is_completed),
    )

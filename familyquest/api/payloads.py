"""Response shaping shared by the ledger routers."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from familyquest.models.ledger import LedgerResult, TaskCompletion


def _json(model: Optional[BaseModel]) -> Optional[dict]:
    return model.model_dump(mode="json") if model is not None else None


def actor_snapshot(result: LedgerResult) -> dict:
    payload = {}
    if result.user is not None:
        payload["user"] = {
            "id": result.user.id,
            "stars": result.user.stars,
            "coins": result.user.coins,
            "tasks_completed": result.user.tasks_completed,
            "rank_in_family": result.user.rank_in_family,
            "family_id": result.user.family_id,
        }
    if result.family is not None:
        payload["family"] = {
            "id": result.family.id,
            "total_stars": result.family.total_stars,
            "tasks": result.family.tasks,
            "period_stars": result.family.period_stars.model_dump(),
            "period_task_counts": result.family.period_task_counts.model_dump(),
        }
    return payload


def task_payload(result: LedgerResult) -> dict:
    completion: TaskCompletion = result.task
    goal = completion.goal
    return {
        "task": _json(completion.task),
        "goal": {
            "id": goal.id,
            "progress": goal.progress,
            "is_completed": goal.is_completed,
            "nb_of_tasks_completed": goal.nb_of_tasks_completed,
        },
        "stars_awarded": completion.stars_awarded,
        "coins_awarded": completion.coins_awarded,
        "goal_completed": completion.goal_completed,
        "unlocked_achievement": _json(completion.unlocked),
        "unlock_rejected": completion.unlock_rejected,
        "rank": result.rank,
        "ranks": result.ranks,
        "aggregate_skipped": result.aggregate_skipped,
        **actor_snapshot(result),
    }


def challenge_payload(result: LedgerResult) -> dict:
    completion = result.challenge
    return {
        "challenge": _json(completion.challenge),
        "adventure": _json(completion.adventure_progress),
        "stars_awarded": completion.stars_awarded,
        "coins_awarded": completion.coins_awarded,
        "adventure_completed": completion.adventure_completed,
        "started_implicitly": completion.started_implicitly,
        "rank": result.rank,
        "aggregate_skipped": result.aggregate_skipped,
        **actor_snapshot(result),
    }

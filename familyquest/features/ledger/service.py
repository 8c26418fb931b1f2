"""
Ledger service: one completion event = reward, family aggregates, ranks, one commit.

Each public operation runs inside a fresh UnitOfWork. If the commit hits a
VersionConflict (another request changed one of the documents meanwhile) the
whole event is recomputed from a fresh load, up to ``max_retries`` attempts.
Engine errors abort the attempt before anything is written.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List, Optional, TypeVar

from familyquest.core.config import settings
from familyquest.core.documents import ACHIEVEMENTS, ADVENTURES, FAMILIES, USERS, DocumentStore, get_document_store
from familyquest.core.errors import ConflictError, ValidationError, VersionConflict
from familyquest.core.logging import log_event
from familyquest.features.family_stats.aggregates import (
    apply_family_delta,
    reconcile_total_stars,
    withdraw_family_stars,
)
from familyquest.features.ledger.unit_of_work import UnitOfWork
from familyquest.features.planning import engine as planning
from familyquest.features.ranking import engine as ranking
from familyquest.features.rewards import engine as rewards
from familyquest.features.stats.service import ProgressStats, progress_stats
from familyquest.models.achievement import Achievement
from familyquest.models.adventure import Adventure
from familyquest.models.family import Family, FamilyMember, MemberRole
from familyquest.models.goal import Goal, Task, utcnow
from familyquest.models.ledger import LedgerResult, RankedEntry, TaskAddition
from familyquest.models.user import User

T = TypeVar("T")


class LedgerService:
    """Reward ledger and ranking engine bound to a document store."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        *,
        max_retries: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._max_retries = max(1, settings.LEDGER_MAX_RETRIES if max_retries is None else max_retries)
        self._clock = clock or utcnow

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            self._store = get_document_store()
        return self._store

    # Completion events -------------------------------------------------
    def complete_task(self, *, user_id: str, goal_id: str, task_id: str) -> LedgerResult:
        def op(uow: UnitOfWork) -> LedgerResult:
            user = uow.get_user(user_id)
            completion = rewards.complete_task(
                user, goal_id, task_id, find_achievement=uow.find_achievement, now=self._clock()
            )
            result = LedgerResult(user=user, task=completion, unlocked=completion.unlocked)
            self._propagate(uow, user, completion.stars_awarded, 1, result)
            return result

        result = self._run("complete_task", op, user_id=user_id)
        log_event(
            "info",
            "ledger.task_completed",
            user_id=user_id,
            family_id=result.user.family_id if result.user else None,
            event_type="task.completed",
            extra={
                "goal_id": goal_id,
                "task_id": task_id,
                "stars": result.task.stars_awarded,
                "goal_completed": result.task.goal_completed,
            },
        )
        self._note_unlock_rejected(result, user_id=user_id)
        return result

    def complete_family_task(self, *, family_id: str, goal_id: str, task_id: str) -> LedgerResult:
        def op(uow: UnitOfWork) -> LedgerResult:
            family = uow.get_family(family_id)
            members = uow.family_members(family_id)
            completion = rewards.complete_family_task(
                family, members, goal_id, task_id,
                find_achievement=uow.find_achievement, now=self._clock(),
            )
            delta = completion.stars_awarded * len(members)
            apply_family_delta(family, delta, 1)
            ranks = ranking.recalculate_member_ranks(members, family)
            return LedgerResult(
                family=family,
                task=completion,
                unlocked=completion.unlocked,
                family_stars_delta=delta,
                ranks=ranks,
                members=members,
            )

        result = self._run("complete_family_task", op, family_id=family_id)
        log_event(
            "info",
            "ledger.family_task_completed",
            family_id=family_id,
            event_type="family_task.completed",
            extra={"goal_id": goal_id, "task_id": task_id, "family_stars_delta": result.family_stars_delta},
        )
        self._note_unlock_rejected(result, family_id=family_id)
        return result

    def start_adventure(self, *, user_id: str, adventure_id: str) -> LedgerResult:
        def op(uow: UnitOfWork) -> LedgerResult:
            user = uow.get_user(user_id)
            rewards.start_adventure(user, uow.get_adventure(adventure_id))
            return LedgerResult(user=user)

        return self._run("start_adventure", op, user_id=user_id)

    def complete_challenge(self, *, user_id: str, adventure_id: str, challenge_id: str) -> LedgerResult:
        def op(uow: UnitOfWork) -> LedgerResult:
            user = uow.get_user(user_id)
            adventure = uow.get_adventure(adventure_id)
            completion = rewards.complete_challenge(user, adventure, challenge_id, now=self._clock())
            result = LedgerResult(user=user, challenge=completion)
            # Challenges feed the star buckets but not the task counters
            self._propagate(uow, user, completion.stars_awarded, 0, result)
            return result

        result = self._run("complete_challenge", op, user_id=user_id)
        log_event(
            "info",
            "ledger.challenge_completed",
            user_id=user_id,
            event_type="challenge.completed",
            extra={
                "adventure_id": adventure_id,
                "challenge_id": challenge_id,
                "stars": result.challenge.stars_awarded,
                "adventure_completed": result.challenge.adventure_completed,
            },
        )
        return result

    # Achievements ------------------------------------------------------
    def unlock_user_achievement(self, *, user_id: str, achievement_id: str) -> LedgerResult:
        def op(uow: UnitOfWork) -> LedgerResult:
            user = uow.get_user(user_id)
            record = rewards.unlock_for_actor(user, uow.find_achievement(achievement_id), now=self._clock())
            return LedgerResult(user=user, unlocked=record)

        return self._run("unlock_user_achievement", op, user_id=user_id)

    def unlock_family_achievement(self, *, family_id: str, achievement_id: str) -> LedgerResult:
        def op(uow: UnitOfWork) -> LedgerResult:
            family = uow.get_family(family_id)
            record = rewards.unlock_for_actor(family, uow.find_achievement(achievement_id), now=self._clock())
            return LedgerResult(family=family, unlocked=record)

        return self._run("unlock_family_achievement", op, family_id=family_id)

    # Members, goals and catalog ---------------------------------------
    def register_user(
        self,
        *,
        user_id: str,
        name: str = "",
        family_id: Optional[str] = None,
        role: MemberRole = "child",
    ) -> LedgerResult:
        """Create a user with empty balances, joining ``family_id`` when given."""

        def op(uow: UnitOfWork) -> LedgerResult:
            user = uow.add(USERS, User(id=user_id, name=name, family_id=family_id))
            result = LedgerResult(user=user)
            if family_id:
                family = uow.get_family(family_id)
                family.members.append(FamilyMember(member_id=user_id, name=name, role=role))
                result.family = family
                result.members = uow.family_members(family_id)
                result.ranks = ranking.recalculate_member_ranks(result.members, family)
            return result

        result = self._run("register_user", op, user_id=user_id, family_id=family_id)
        log_event("info", "ledger.user_registered", user_id=user_id, family_id=family_id, event_type="user.registered")
        return result

    def create_family(self, *, family_id: str, family_name: str) -> Family:
        family = self._run(
            "create_family",
            lambda uow: uow.add(FAMILIES, Family(id=family_id, family_name=family_name)),
            family_id=family_id,
        )
        log_event("info", "ledger.family_created", family_id=family_id, event_type="family.created")
        return family

    def create_goal(self, *, goal: Goal, user_id: Optional[str] = None, family_id: Optional[str] = None) -> Goal:
        """Attach ``goal`` to a user or a family (exactly one)."""
        if bool(user_id) == bool(family_id):
            raise ValidationError("Pass exactly one of user_id or family_id")

        def op(uow: UnitOfWork) -> Goal:
            owner = uow.get_family(family_id) if family_id else uow.get_user(user_id)
            # Fresh copy per attempt; a retried attempt must not reuse a mutated model
            return planning.add_goal(owner, goal.model_copy(deep=True), find_achievement=uow.find_achievement)

        return self._run("create_goal", op, user_id=user_id, family_id=family_id)

    def add_task(
        self,
        *,
        goal_id: str,
        task: Task,
        user_id: Optional[str] = None,
        family_id: Optional[str] = None,
    ) -> TaskAddition:
        """Append a task to a goal. A completed goal reopens and its reward is taken back."""
        if bool(user_id) == bool(family_id):
            raise ValidationError("Pass exactly one of user_id or family_id")

        def op(uow: UnitOfWork) -> TaskAddition:
            if family_id:
                family = uow.get_family(family_id)
                members = uow.family_members(family_id)
                addition = planning.add_task(family, goal_id, task.model_copy(deep=True), members=members)
            else:
                user = uow.get_user(user_id)
                addition = planning.add_task(user, goal_id, task.model_copy(deep=True))
                family = uow.get_family(user.family_id) if user.family_id and addition.stars_withdrawn else None
                members = uow.family_members(family.id) if family is not None else []
            if family is not None and addition.stars_withdrawn:
                withdraw_family_stars(family, addition.stars_withdrawn)
                ranking.recalculate_member_ranks(members, family)
            return addition

        addition = self._run("add_task", op, user_id=user_id, family_id=family_id)
        if addition.reopened:
            log_event(
                "info",
                "ledger.goal_reopened",
                user_id=user_id,
                family_id=family_id,
                event_type="goal.reopened",
                extra={"goal_id": goal_id, "stars_withdrawn": addition.stars_withdrawn},
            )
        return addition

    def create_achievement(self, *, achievement: Achievement) -> Achievement:
        return self._run("create_achievement", lambda uow: uow.add(ACHIEVEMENTS, achievement.model_copy(deep=True)))

    def create_adventure(self, *, adventure: Adventure) -> Adventure:
        return self._run("create_adventure", lambda uow: uow.add(ADVENTURES, adventure.model_copy(deep=True)))

    # Ranks and totals --------------------------------------------------
    def recalculate_ranks(self, *, family_id: str, user_id: Optional[str] = None) -> LedgerResult:
        """Re-derive member ranks. ``user_id`` picks whose snapshot is returned."""

        def op(uow: UnitOfWork) -> LedgerResult:
            family = uow.get_family(family_id)
            members = uow.family_members(family_id)
            ranks = ranking.recalculate_member_ranks(members, family)
            user = next((m for m in members if m.id == user_id), None) if user_id else None
            return LedgerResult(user=user, family=family, ranks=ranks, members=members)

        return self._run("recalculate_ranks", op, family_id=family_id)

    def reconcile_family_stars(self, *, family_id: str) -> Dict[str, int]:
        def op(uow: UnitOfWork) -> Dict[str, int]:
            family = uow.get_family(family_id)
            drift = reconcile_total_stars(family, uow.family_members(family_id))
            return {"total_stars": family.total_stars, "drift": drift}

        outcome = self._run("reconcile_family_stars", op, family_id=family_id)
        if outcome["drift"]:
            log_event(
                "warning",
                "ledger.family_total_drift",
                family_id=family_id,
                event_type="family.reconciled",
                extra=outcome,
            )
        return outcome

    # Read models -------------------------------------------------------
    def member_leaderboard(self, *, family_id: str) -> List[RankedEntry]:
        uow = UnitOfWork(self.store)
        uow.get_family(family_id)
        return ranking.member_leaderboard(uow.family_members(family_id))

    def period_leaderboards(self, *, family_id: Optional[str] = None) -> Dict[str, dict]:
        uow = UnitOfWork(self.store)
        if family_id:
            uow.get_family(family_id)
        return ranking.all_period_leaderboards(
            uow.all_families(), top_n=settings.LEADERBOARD_TOP_N, family_id=family_id
        )

    def user_stats(self, *, user_id: str, frame: str) -> ProgressStats:
        uow = UnitOfWork(self.store)
        user = uow.get_user(user_id)
        return progress_stats(user.goals, frame, now=self._clock())

    def family_stats(self, *, family_id: str, frame: str) -> ProgressStats:
        uow = UnitOfWork(self.store)
        family = uow.get_family(family_id)
        stats = progress_stats(family.goals, frame, now=self._clock())
        stats.total_achievements = uow.count(ACHIEVEMENTS)
        stats.unlocked_achievements = len(family.achievements)
        return stats

    # Internal helpers --------------------------------------------------
    def _note_unlock_rejected(self, result: LedgerResult, **actor) -> None:
        completion = result.task
        if completion is None or not completion.unlock_rejected:
            return
        log_event(
            "info",
            "ledger.unlock_rejected",
            event_type="achievement.unlock_rejected",
            error_code="already_unlocked",
            extra={"goal_id": completion.goal.id, "achievement_id": completion.goal.rewards.achievement_id},
            **actor,
        )

    def _propagate(self, uow: UnitOfWork, user: User, stars_delta: int, task_increment: int, result: LedgerResult) -> None:
        """Family aggregates and ranks for a user's completion; skipped without a family."""
        if not user.family_id:
            result.aggregate_skipped = True
            log_event(
                "info",
                "ledger.aggregate_skipped",
                user_id=user.id,
                event_type="aggregate.skipped",
                extra={"reason": "no_family"},
            )
            return

        family: Family = uow.get_family(user.family_id)
        apply_family_delta(family, stars_delta, task_increment)
        members = uow.family_members(family.id)
        result.family = family
        result.family_stars_delta = stars_delta
        result.members = members
        result.ranks = ranking.recalculate_member_ranks(members, family)

    def _run(self, name: str, op: Callable[[UnitOfWork], T], **context) -> T:
        for attempt in range(1, self._max_retries + 1):
            uow = UnitOfWork(self.store)
            outcome = op(uow)
            try:
                uow.commit()
            except VersionConflict as exc:
                log_event(
                    "warning",
                    "ledger.version_conflict",
                    user_id=context.get("user_id"),
                    family_id=context.get("family_id"),
                    event_type=name,
                    error_code="version_conflict",
                    extra={"attempt": attempt, "document": f"{exc.collection}/{exc.doc_id}"},
                )
                continue
            return outcome

        raise ConflictError(f"{name} kept conflicting with concurrent updates; retry later")


_ledger_service: Optional[LedgerService] = None


def get_ledger_service() -> LedgerService:
    """Process-wide service bound to the process-wide store (FastAPI dependency)."""
    global _ledger_service
    if _ledger_service is None:
        _ledger_service = LedgerService()
    return _ledger_service


def set_ledger_service(service: Optional[LedgerService]) -> None:
    global _ledger_service
    _ledger_service = service

"""End-to-end ledger behavior over the in-memory document store."""

import logging
from datetime import datetime, timezone

import pytest

from familyquest.core.documents import FAMILIES, USERS, InMemoryDocumentStore
from familyquest.core.errors import (
    AchievementNotFoundError,
    AlreadyCompletedError,
    AlreadyUnlockedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    VersionConflict,
)
from familyquest.features.ledger.service import LedgerService
from familyquest.models.family import PERIODS, Family
from familyquest.models.user import User
from familyquest.tests.factories import FIXED_NOW, Seeder, make_goal


def load_user(store, user_id) -> User:
    return User.model_validate(store.load(USERS, user_id).body)


def load_family(store, family_id) -> Family:
    return Family.model_validate(store.load(FAMILIES, family_id).body)


class InterleavingStore(InMemoryDocumentStore):
    """Runs ``before_next_commit`` once, right before the next commit lands."""

    def __init__(self):
        super().__init__()
        self.before_next_commit = None

    def commit(self, writes):
        hook, self.before_next_commit = self.before_next_commit, None
        if hook:
            hook()
        return super().commit(writes)


class AlwaysConflictingStore(InMemoryDocumentStore):
    def __init__(self):
        super().__init__()
        self.armed = False
        self.rejected = 0

    def commit(self, writes):
        if self.armed:
            self.rejected += 1
            first = writes[0]
            raise VersionConflict(first.collection, first.doc_id, first.expected_version or 0)
        return super().commit(writes)


class TestCompleteTask:
    def test_sole_task_completes_goal(self, seed, ledger, memory_store):
        goal = make_goal("g", ["t"], task_stars=10, task_coins=5, goal_stars=50, goal_coins=20)
        seed.user("u", goals=[goal])

        result = ledger.complete_task(user_id="u", goal_id="g", task_id="t")

        assert result.task.stars_awarded == 60
        assert result.task.coins_awarded == 25
        stored = load_user(memory_store, "u")
        assert (stored.stars, stored.coins) == (60, 25)
        stored_goal = stored.find_goal("g")
        assert stored_goal.is_completed is True
        assert stored_goal.progress == 100
        assert stored_goal.tasks[0].is_completed is True

    def test_half_done_goal_pays_only_task(self, seed, ledger, memory_store):
        goal = make_goal("g", ["t1", "t2"], task_stars=10, task_coins=5, goal_stars=50, goal_coins=20)
        seed.user("u", goals=[goal])

        result = ledger.complete_task(user_id="u", goal_id="g", task_id="t1")

        assert result.task.stars_awarded == 10
        stored = load_user(memory_store, "u")
        assert stored.stars == 10
        assert stored.find_goal("g").progress == 50
        assert stored.find_goal("g").is_completed is False

    def test_family_totals_follow_member_completion(self, seed, ledger, memory_store):
        seed.family_with_members(
            "fam", [("kid", 200, 3)], member_goals={"kid": [make_goal("g", ["t1", "t2"], task_stars=10)]}
        )

        result = ledger.complete_task(user_id="kid", goal_id="g", task_id="t1")

        family = load_family(memory_store, "fam")
        assert family.total_stars == 210
        assert family.tasks == 1
        for period in PERIODS:
            assert family.period_stars.get(period) == 10
            assert family.period_task_counts.get(period) == 1
        assert result.family_stars_delta == 10
        assert result.aggregate_skipped is False
        assert family.total_stars == load_user(memory_store, "kid").stars

    def test_second_completion_is_rejected(self, seed, ledger, memory_store):
        seed.user("u", goals=[make_goal("g", ["t1", "t2"], task_stars=10)])
        ledger.complete_task(user_id="u", goal_id="g", task_id="t1")
        version_before = memory_store.load(USERS, "u").version

        with pytest.raises(AlreadyCompletedError):
            ledger.complete_task(user_id="u", goal_id="g", task_id="t1")

        after = memory_store.load(USERS, "u")
        assert after.version == version_before
        assert after.body["stars"] == 10

    def test_no_family_skips_aggregates(self, seed, ledger, memory_store, caplog):
        seed.family("bystander", total_stars=5)
        seed.user("solo", goals=[make_goal("g", ["t"], task_stars=3, goal_stars=7)])

        with caplog.at_level(logging.INFO, logger="familyquest"):
            result = ledger.complete_task(user_id="solo", goal_id="g", task_id="t")

        assert result.aggregate_skipped is True
        assert result.family is None
        assert load_user(memory_store, "solo").stars == 10
        bystander = memory_store.load(FAMILIES, "bystander")
        assert bystander.version == 1
        assert bystander.body["total_stars"] == 5
        assert any(r.getMessage() == "ledger.aggregate_skipped" for r in caplog.records)

    def test_caller_gets_fresh_rank(self, seed, ledger, memory_store):
        seed.family_with_members(
            "fam", [("a", 0, 0), ("b", 5, 0)], member_goals={"a": [make_goal("g", ["t1", "t2"], task_stars=10)]}
        )

        result = ledger.complete_task(user_id="a", goal_id="g", task_id="t1")

        assert result.rank == 1
        assert result.ranks == {"a": 1, "b": 2}
        assert load_user(memory_store, "b").rank_in_family == 2
        family = load_family(memory_store, "fam")
        assert family.find_member("a").rank_cache == 1
        assert family.total_stars == 15

    def test_dangling_achievement_aborts_whole_event(self, seed, ledger, memory_store):
        seed.family_with_members(
            "fam", [("u", 0, 0)], member_goals={"u": [make_goal("g", ["t"], achievement_id="deleted")]}
        )

        with pytest.raises(AchievementNotFoundError):
            ledger.complete_task(user_id="u", goal_id="g", task_id="t")

        stored = load_user(memory_store, "u")
        assert stored.stars == 0
        assert stored.find_goal("g").tasks[0].is_completed is False
        assert memory_store.load(FAMILIES, "fam").version == 1

    def test_goal_achievement_is_unlocked(self, seed, ledger, memory_store):
        seed.achievement("tidy")
        seed.user("u", goals=[make_goal("g", ["t"], achievement_id="tidy")])

        result = ledger.complete_task(user_id="u", goal_id="g", task_id="t")

        assert result.unlocked.achievement_id == "tidy"
        assert load_user(memory_store, "u").has_unlocked("tidy")

    def test_missing_user_or_family(self, seed, ledger, memory_store):
        with pytest.raises(NotFoundError):
            ledger.complete_task(user_id="ghost", goal_id="g", task_id="t")

        seed.user("orphan", family_id="deleted-family", goals=[make_goal("g", ["t"])])
        with pytest.raises(NotFoundError):
            ledger.complete_task(user_id="orphan", goal_id="g", task_id="t")
        assert load_user(memory_store, "orphan").stars == 0


class TestFamilyTask:
    def test_every_member_is_credited(self, seed, ledger, memory_store):
        goal = make_goal("fg", ["t1", "t2"], task_stars=4)
        seed.family_with_members("fam", [("a", 10, 1), ("b", 2, 0)], goals=[goal])

        result = ledger.complete_family_task(family_id="fam", goal_id="fg", task_id="t1")

        assert result.family_stars_delta == 8
        assert load_user(memory_store, "a").stars == 14
        assert load_user(memory_store, "b").stars == 6
        family = load_family(memory_store, "fam")
        assert family.total_stars == 20
        assert family.tasks == 1
        assert family.period_task_counts.daily == 1
        assert family.find_goal("fg").progress == 50
        assert result.ranks == {"a": 1, "b": 2}

    def test_family_goal_completion_unlocks_for_family(self, seed, ledger, memory_store):
        seed.achievement("team", type="family")
        goal = make_goal("fg", ["t"], task_stars=1, goal_stars=9, achievement_id="team")
        seed.family_with_members("fam", [("a", 0, 0)], goals=[goal])

        ledger.complete_family_task(family_id="fam", goal_id="fg", task_id="t")

        family = load_family(memory_store, "fam")
        assert family.has_unlocked("team")
        assert family.total_stars == 10
        assert load_user(memory_store, "a").stars == 10
        assert not load_user(memory_store, "a").has_unlocked("team")


class TestAdventures:
    def test_challenge_feeds_family_stars_but_not_task_counts(self, seed, ledger, memory_store):
        seed.family_with_members("fam", [("a", 0, 0)])
        seed.adventure("adv", challenges=["c1"], stars=10, challenge_stars=2)

        result = ledger.complete_challenge(user_id="a", adventure_id="adv", challenge_id="c1")

        assert result.challenge.adventure_completed is True
        assert result.challenge.stars_awarded == 12
        family = load_family(memory_store, "fam")
        assert family.total_stars == 12
        assert family.period_stars.weekly == 12
        assert family.period_task_counts.weekly == 0
        assert family.tasks == 0
        progress = load_user(memory_store, "a").find_adventure("adv")
        assert progress.status == "completed"

    def test_start_then_start_again(self, seed, ledger):
        seed.user("u")
        seed.adventure("adv")

        ledger.start_adventure(user_id="u", adventure_id="adv")

        with pytest.raises(InvalidStateError):
            ledger.start_adventure(user_id="u", adventure_id="adv")

    def test_unknown_adventure(self, seed, ledger):
        seed.user("u")
        with pytest.raises(NotFoundError):
            ledger.complete_challenge(user_id="u", adventure_id="nope", challenge_id="c1")


class TestRanksAndTotals:
    def test_recalculate_ranks_dense(self, seed, ledger, memory_store):
        seed.family_with_members("fam", [("a", 100, 5), ("b", 100, 5), ("c", 90, 1)])

        result = ledger.recalculate_ranks(family_id="fam", user_id="c")

        assert result.ranks == {"a": 1, "b": 1, "c": 2}
        assert result.rank == 2
        assert load_user(memory_store, "a").rank_in_family == 1
        assert load_user(memory_store, "c").rank_in_family == 2

    def test_recalculate_twice_writes_nothing_new(self, seed, ledger, memory_store):
        seed.family_with_members("fam", [("a", 3, 0), ("b", 1, 0)])
        ledger.recalculate_ranks(family_id="fam")
        versions = {uid: memory_store.load(USERS, uid).version for uid in ("a", "b")}

        again = ledger.recalculate_ranks(family_id="fam")

        assert again.ranks == {"a": 1, "b": 2}
        assert {uid: memory_store.load(USERS, uid).version for uid in ("a", "b")} == versions

    def test_reconcile_corrects_drift(self, seed, ledger, memory_store):
        seed.family_with_members("fam", [("a", 30, 0), ("b", 25, 0)], total_stars=50)

        outcome = ledger.reconcile_family_stars(family_id="fam")

        assert outcome == {"total_stars": 55, "drift": 5}
        assert load_family(memory_store, "fam").total_stars == 55


class TestAchievements:
    def test_unlock_user_achievement(self, seed, ledger, memory_store):
        seed.user("u")
        seed.achievement("early-bird")

        result = ledger.unlock_user_achievement(user_id="u", achievement_id="early-bird")

        assert result.unlocked.unlocked_at == FIXED_NOW
        assert load_user(memory_store, "u").has_unlocked("early-bird")
        with pytest.raises(AlreadyUnlockedError):
            ledger.unlock_user_achievement(user_id="u", achievement_id="early-bird")

    def test_unlock_family_achievement(self, seed, ledger, memory_store):
        seed.family("fam")
        seed.achievement("camp", type="family")

        ledger.unlock_family_achievement(family_id="fam", achievement_id="camp")

        assert load_family(memory_store, "fam").has_unlocked("camp")

    def test_goal_reward_already_held_does_not_block_completion(self, seed, ledger, memory_store, caplog):
        seed.achievement("tidy")
        seed.user(
            "u",
            goals=[
                make_goal("g1", ["t1"], task_stars=2, goal_stars=10, achievement_id="tidy"),
                make_goal("g2", ["t2"], task_stars=2, goal_stars=10, achievement_id="tidy"),
            ],
        )
        ledger.complete_task(user_id="u", goal_id="g1", task_id="t1")

        with caplog.at_level(logging.INFO, logger="familyquest"):
            result = ledger.complete_task(user_id="u", goal_id="g2", task_id="t2")

        assert result.task.goal_completed is True
        assert result.task.unlock_rejected is True
        stored = load_user(memory_store, "u")
        assert stored.find_goal("g2").is_completed is True
        assert stored.stars == 24
        assert [a.achievement_id for a in stored.achievements] == ["tidy"]
        assert any(r.getMessage() == "ledger.unlock_rejected" for r in caplog.records)

    def test_explicit_unlock_then_goal_reward(self, seed, ledger, memory_store):
        seed.achievement("tidy")
        seed.user("u", goals=[make_goal("g", ["t"], achievement_id="tidy")])
        ledger.unlock_user_achievement(user_id="u", achievement_id="tidy")

        result = ledger.complete_task(user_id="u", goal_id="g", task_id="t")

        assert result.task.unlock_rejected is True
        assert load_user(memory_store, "u").find_goal("g").is_completed is True

    def test_unknown_achievement(self, seed, ledger):
        seed.user("u")
        with pytest.raises(AchievementNotFoundError):
            ledger.unlock_user_achievement(user_id="u", achievement_id="nope")


class TestConcurrency:
    def test_concurrent_member_completion_is_not_lost(self):
        store = InterleavingStore()
        seeder = Seeder(store)
        seeder.family("fam", members=[])
        seeder.user("a", "fam", goals=[make_goal("ga", ["t1", "t2"], task_stars=10)])
        seeder.user("b", "fam", goals=[make_goal("gb", ["t1", "t2"], task_stars=10)])
        ledger = LedgerService(store, clock=lambda: FIXED_NOW)
        other = LedgerService(store, clock=lambda: FIXED_NOW)

        store.before_next_commit = lambda: other.complete_task(user_id="b", goal_id="gb", task_id="t1")
        result = ledger.complete_task(user_id="a", goal_id="ga", task_id="t1")

        family = load_family(store, "fam")
        assert family.total_stars == 20
        assert family.tasks == 2
        assert family.period_stars.daily == 20
        assert load_user(store, "a").stars == 10
        assert load_user(store, "b").stars == 10
        assert result.ranks == {"a": 1, "b": 1}

    def test_retries_exhausted_raise_conflict(self, caplog):
        store = AlwaysConflictingStore()
        Seeder(store).user("u", goals=[make_goal("g", ["t"])])
        store.armed = True
        ledger = LedgerService(store, max_retries=2)

        with caplog.at_level(logging.WARNING, logger="familyquest"):
            with pytest.raises(ConflictError):
                ledger.complete_task(user_id="u", goal_id="g", task_id="t")

        assert store.rejected == 2
        assert load_user(store, "u").stars == 0
        conflicts = [r for r in caplog.records if r.getMessage() == "ledger.version_conflict"]
        assert len(conflicts) == 2

    def test_zero_retries_still_makes_one_attempt(self, monkeypatch):
        from familyquest.core.config import settings

        monkeypatch.setattr(settings, "LEDGER_MAX_RETRIES", 5)
        store = AlwaysConflictingStore()
        Seeder(store).user("u", goals=[make_goal("g", ["t"])])
        store.armed = True
        ledger = LedgerService(store, max_retries=0)

        with pytest.raises(ConflictError):
            ledger.complete_task(user_id="u", goal_id="g", task_id="t")

        # An explicit 0 is not replaced by the configured default
        assert store.rejected == 1


class TestStats:
    def test_user_stats_counts_current_window(self, seed, ledger):
        old = datetime(2023, 1, 1, tzinfo=timezone.utc)
        goals = [
            make_goal("new", ["t1", "t2"], created_at=FIXED_NOW),
            make_goal("old", ["t3"], created_at=old),
        ]
        seed.user("u", goals=goals)
        ledger.complete_task(user_id="u", goal_id="new", task_id="t1")

        stats = ledger.user_stats(user_id="u", frame="monthly")

        assert stats.total_goals == 1
        assert stats.completed_goals == 0
        assert stats.completed_tasks == 1
        assert stats.total_achievements is None

    def test_family_stats_include_achievements(self, seed, ledger):
        seed.achievement("a1", type="family")
        seed.achievement("a2")
        seed.family("fam", goals=[make_goal("g", ["t"], created_at=FIXED_NOW)])
        ledger.unlock_family_achievement(family_id="fam", achievement_id="a1")

        stats = ledger.family_stats(family_id="fam", frame="yearly")

        assert stats.total_goals == 1
        assert stats.total_achievements == 2
        assert stats.unlocked_achievements == 1

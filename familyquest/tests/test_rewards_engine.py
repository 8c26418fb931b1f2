from datetime import datetime, timezone

import pytest

from familyquest.core.errors import (
    AchievementNotFoundError,
    AlreadyCompletedError,
    AlreadyUnlockedError,
    InvalidStateError,
    NotFoundError,
)
from familyquest.features.rewards import engine
from familyquest.models.achievement import Achievement
from familyquest.models.adventure import Adventure, AdventureChallenge
from familyquest.models.family import Family
from familyquest.models.goal import Goal, GoalRewards, Task, TaskRewards
from familyquest.models.user import User

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def no_achievements(_achievement_id):
    return None


def _goal(task_count=1, task_stars=10, task_coins=5, goal_stars=50, goal_coins=20, achievement_id=None):
    return Goal(
        id="g",
        title="Tidy room",
        rewards=GoalRewards(stars=goal_stars, coins=goal_coins, achievement_id=achievement_id),
        tasks=[
            Task(id=f"t{i}", title=f"step {i}", rewards=TaskRewards(stars=task_stars, coins=task_coins))
            for i in range(1, task_count + 1)
        ],
    )


def test_completion_percent():
    assert engine.completion_percent(0, 0) == 0.0
    assert engine.completion_percent(1, 2) == 50.0
    assert engine.completion_percent(3, 3) == 100.0


def test_sole_task_completes_goal_and_cascades_reward():
    user = User(id="u", goals=[_goal()])

    result = engine.complete_task(user, "g", "t1", find_achievement=no_achievements, now=NOW)

    assert result.stars_awarded == 60
    assert result.coins_awarded == 25
    assert result.goal_completed is True
    assert user.stars == 60
    assert user.coins == 25
    goal = user.find_goal("g")
    assert goal.tasks[0].is_completed is True
    assert goal.tasks[0].completed_at == NOW
    assert goal.is_completed is True
    assert goal.progress == 100
    assert goal.completed_at == NOW


def test_first_of_two_tasks_only_pays_task_reward():
    user = User(id="u", goals=[_goal(task_count=2)])

    result = engine.complete_task(user, "g", "t1", find_achievement=no_achievements, now=NOW)

    assert result.stars_awarded == 10
    assert result.goal_completed is False
    goal = user.find_goal("g")
    assert goal.progress == 50
    assert goal.is_completed is False
    assert user.tasks_completed == 1
    assert goal.nb_of_tasks_completed == 1


def test_three_task_goal_reaches_exactly_100():
    user = User(id="u", goals=[_goal(task_count=3)])

    for tid in ("t1", "t2", "t3"):
        engine.complete_task(user, "g", tid, find_achievement=no_achievements, now=NOW)

    goal = user.find_goal("g")
    assert goal.progress == 100
    assert goal.is_completed is True


def test_second_completion_is_rejected_without_reward():
    user = User(id="u", goals=[_goal(task_count=2)])
    engine.complete_task(user, "g", "t1", find_achievement=no_achievements, now=NOW)

    with pytest.raises(AlreadyCompletedError):
        engine.complete_task(user, "g", "t1", find_achievement=no_achievements, now=NOW)

    assert user.stars == 10
    assert user.tasks_completed == 1


def test_unknown_goal_or_task():
    user = User(id="u", goals=[_goal()])

    with pytest.raises(NotFoundError):
        engine.complete_task(user, "nope", "t1", find_achievement=no_achievements)
    with pytest.raises(NotFoundError):
        engine.complete_task(user, "g", "nope", find_achievement=no_achievements)


def test_open_task_under_completed_goal_is_invalid_state():
    goal = _goal(task_count=2)
    goal.is_completed = True
    user = User(id="u", goals=[goal])

    with pytest.raises(InvalidStateError):
        engine.complete_task(user, "g", "t1", find_achievement=no_achievements)


def test_empty_goal_stays_at_zero():
    goal = Goal(id="g", title="empty")
    assert goal.progress == 0
    assert engine.completion_percent(0, len(goal.tasks)) == 0
    assert goal.is_completed is False


def test_goal_cascade_unlocks_achievement():
    badge = Achievement(id="tidy", title="Tidy", type="personal")
    user = User(id="u", goals=[_goal(achievement_id="tidy")])

    result = engine.complete_task(user, "g", "t1", find_achievement={"tidy": badge}.get, now=NOW)

    assert result.unlocked.achievement_id == "tidy"
    assert user.has_unlocked("tidy")


def test_goal_cascade_with_dangling_achievement_fails():
    user = User(id="u", goals=[_goal(achievement_id="gone")])

    with pytest.raises(AchievementNotFoundError):
        engine.complete_task(user, "g", "t1", find_achievement=no_achievements, now=NOW)


def test_goals_sharing_an_achievement_both_complete():
    badge = Achievement(id="tidy", title="Tidy", type="personal")
    first = _goal(achievement_id="tidy")
    second = _goal(goal_stars=2, goal_coins=1, achievement_id="tidy")
    second.id = "g2"
    user = User(id="u", goals=[first, second])
    engine.complete_task(user, "g", "t1", find_achievement={"tidy": badge}.get, now=NOW)

    result = engine.complete_task(user, "g2", "t1", find_achievement={"tidy": badge}.get, now=NOW)

    assert result.goal_completed is True
    assert result.unlocked is None
    assert result.unlock_rejected is True
    assert result.stars_awarded == 12
    assert user.find_goal("g2").is_completed is True
    assert user.stars == 72
    assert [a.achievement_id for a in user.achievements] == ["tidy"]


def test_family_goal_with_held_achievement_still_completes():
    badge = Achievement(id="team", title="Team", type="family")
    family = Family(id="f", family_name="F", goals=[_goal(achievement_id="team")])
    engine.unlock_for_actor(family, badge, now=NOW)
    member = User(id="a", family_id="f")

    result = engine.complete_family_task(family, [member], "g", "t1", find_achievement={"team": badge}.get, now=NOW)

    assert result.unlock_rejected is True
    assert member.stars == 60
    assert len(family.achievements) == 1


def test_family_task_credits_every_member():
    family = Family(id="f", family_name="F", goals=[_goal(task_count=2)])
    members = [User(id="a", family_id="f"), User(id="b", family_id="f", stars=4)]

    result = engine.complete_family_task(family, members, "g", "t1", find_achievement=no_achievements, now=NOW)

    assert result.stars_awarded == 10
    assert [m.stars for m in members] == [10, 14]
    assert [m.coins for m in members] == [5, 5]
    # Family goals are not an individual statistic
    assert [m.tasks_completed for m in members] == [0, 0]


def test_family_goal_achievement_goes_to_family():
    badge = Achievement(id="team", title="Team", type="family")
    family = Family(id="f", family_name="F", goals=[_goal(achievement_id="team")])
    member = User(id="a", family_id="f")

    engine.complete_family_task(family, [member], "g", "t1", find_achievement={"team": badge}.get, now=NOW)

    assert family.has_unlocked("team")
    assert not member.has_unlocked("team")


def _adventure():
    return Adventure(
        id="adv",
        title="Camping",
        stars_reward=10,
        coins_reward=5,
        challenges=[
            AdventureChallenge(id="c1", title="Tent", stars_reward=2, coins_reward=1),
            AdventureChallenge(id="c2", title="Fire", stars_reward=3, coins_reward=1),
        ],
    )


def test_challenge_completion_starts_adventure_implicitly():
    user = User(id="u")

    result = engine.complete_challenge(user, _adventure(), "c1", now=NOW)

    assert result.started_implicitly is True
    assert result.stars_awarded == 2
    progress = user.find_adventure("adv")
    assert progress.status == "in-progress"
    assert progress.progress == 50


def test_last_challenge_pays_adventure_reward():
    user = User(id="u")
    adventure = _adventure()
    engine.complete_challenge(user, adventure, "c1", now=NOW)

    result = engine.complete_challenge(user, adventure, "c2", now=NOW)

    assert result.adventure_completed is True
    assert result.stars_awarded == 13
    assert user.stars == 15
    assert user.coins == 7
    progress = user.find_adventure("adv")
    assert progress.status == "completed"
    assert progress.is_adventure_completed is True


def test_challenge_errors():
    user = User(id="u")
    adventure = _adventure()

    with pytest.raises(NotFoundError):
        engine.complete_challenge(user, adventure, "missing")

    engine.complete_challenge(user, adventure, "c1")
    with pytest.raises(AlreadyCompletedError):
        engine.complete_challenge(user, adventure, "c1")


def test_start_adventure_twice_is_invalid_state():
    user = User(id="u")
    engine.start_adventure(user, _adventure())

    with pytest.raises(InvalidStateError):
        engine.start_adventure(user, _adventure())


def test_unlock_for_actor_checks_type_and_duplicates():
    personal = Achievement(id="p", title="P", type="personal")
    family_badge = Achievement(id="f", title="F", type="family")
    user = User(id="u")
    family = Family(id="fam", family_name="Fam")

    engine.unlock_for_actor(user, personal, now=NOW)
    with pytest.raises(AlreadyUnlockedError):
        engine.unlock_for_actor(user, personal, now=NOW)
    with pytest.raises(InvalidStateError):
        engine.unlock_for_actor(user, family_badge)
    with pytest.raises(InvalidStateError):
        engine.unlock_for_actor(family, personal)
    with pytest.raises(AchievementNotFoundError):
        engine.unlock_for_actor(user, None)

    engine.unlock_for_actor(family, family_badge, now=NOW)
    assert family.has_unlocked("f")

from datetime import timedelta

import pytest

from bac_badges.errors import PersistenceFailure
from bac_badges.models import Badge
from bac_badges.orchestrator import DRINK_ADDED, SESSION_ENDED, AwardOrchestrator, AwardSummary

from conftest import T0, badge, cond, drink

NOW = T0 + timedelta(days=30)


def make_orchestrator(store, **kwargs):
    return AwardOrchestrator(store, clock=lambda: NOW, **kwargs)


@pytest.fixture
def badges(memory_store):
    memory_store.badges = [
        badge(1, "first_drink", "milestone", cond("total_drinks", ">=", 1)),
        badge(2, "veteran", "global", cond("session_count", ">=", 10)),
        badge(3, "session_king", "session", cond("max_bac_in_session", ">=", 0.08, "session")),
        badge(4, "beer_and_wine", "session",
              cond("session_has_beer", "==", 1, "session"), cond("session_has_wine", "==", 1, "session")),
    ]
    return memory_store.badges


def heavy_session(session_id, start_minutes=0):
    return [drink(start_minutes, volume_ml=500, session_id=session_id, drink_id=(session_id, i)) for i in range(4)]


def test_milestone_awarded_once_with_null_session(memory_store, badges):
    memory_store.counts[("total_drinks", 1, None)] = 1
    orchestrator = make_orchestrator(memory_store)

    first = orchestrator.check_and_award(DRINK_ADDED, 1, 1)
    second = orchestrator.check_and_award(DRINK_ADDED, 1, 2)

    assert first == AwardSummary(awarded=1)
    assert second == AwardSummary(already_held=1)
    assert [(ub.badge_id, ub.session_id) for ub in memory_store.user_badges] == [(1, None)]


def test_session_badge_awarded_in_each_session(memory_store, badges):
    memory_store.drinks = heavy_session(1) + heavy_session(2, start_minutes=7 * 24 * 60)
    orchestrator = make_orchestrator(memory_store)

    assert orchestrator.check_and_award(SESSION_ENDED, 1, 1) == AwardSummary(awarded=1)
    assert orchestrator.check_and_award(SESSION_ENDED, 1, 2) == AwardSummary(awarded=1)
    assert orchestrator.check_and_award(SESSION_ENDED, 1, 1) == AwardSummary(already_held=1)

    king = [ub for ub in memory_store.user_badges if ub.badge_id == 3]
    assert sorted(ub.session_id for ub in king) == [1, 2]


def test_trigger_only_checks_its_categories(memory_store, badges):
    memory_store.drinks = heavy_session(1)
    memory_store.counts[("total_drinks", 1, None)] = 4
    orchestrator = make_orchestrator(memory_store)

    orchestrator.check_and_award(DRINK_ADDED, 1, 1)
    assert {ub.badge_id for ub in memory_store.user_badges} == {1}

    orchestrator.check_and_award(SESSION_ENDED, 1, 1)
    assert {ub.badge_id for ub in memory_store.user_badges} == {1, 3}


def test_progress_recorded_for_unearned_badges(memory_store, badges):
    memory_store.counts[("session_count", 1, None)] = 3
    make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 1)
    assert memory_store.progress[(1, 2)] == 30
    assert memory_store.progress[(1, 1)] == 0


def test_award_metadata(memory_store, badges):
    memory_store.counts[("total_drinks", 1, None)] = 2
    make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 1)
    metadata = memory_store.user_badges[0].metadata
    assert metadata["metrics"] == {"total_drinks": 2.0}
    assert metadata["trigger"] == DRINK_ADDED
    assert metadata["session_id"] == 1
    assert metadata["evaluated_at"] == NOW.isoformat()


def test_one_failing_badge_does_not_stop_the_rest(memory_store, badges):
    memory_store.badges.append(badge(5, "also_first", "milestone", cond("total_drinks", ">=", 1)))
    memory_store.counts[("total_drinks", 1, None)] = 1
    memory_store.failing_badges.add(1)

    summary = make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 1)

    assert summary == AwardSummary(awarded=1, failed=1)
    assert [ub.badge_id for ub in memory_store.user_badges] == [5]


def test_malformed_stored_criteria_counts_as_failed(memory_store, badges):
    memory_store.badges.append(
        Badge(id=6, code="broken", category="milestone",
              criteria={"conditions": [{"metric": "total_drinks", "operator": "~", "value": 1}]})
    )
    memory_store.badges.append(badge(7, "mystery", "global", cond("total_burritos", ">=", 1)))
    memory_store.counts[("total_drinks", 1, None)] = 1

    summary = make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 1)
    assert summary == AwardSummary(awarded=1, failed=2)


def test_missing_profile_is_a_no_op(memory_store, badges):
    assert make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 42, 1) == AwardSummary()
    assert memory_store.user_badges == []


def test_store_failure_while_loading(memory_store, badges):
    def broken(user_id):
        raise PersistenceFailure("database is locked")

    memory_store.fetch_profile = broken
    assert make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 1) == AwardSummary(failed=1)


def test_unknown_context(memory_store):
    with pytest.raises(ValueError):
        make_orchestrator(memory_store).check_and_award("badge_viewed", 1, 1)


def test_inactive_and_manual_badges_are_skipped(memory_store):
    memory_store.badges = [
        badge(1, "retired", "milestone", cond("total_drinks", ">=", 1), is_active=False),
        badge(2, "staff_pick", "milestone", cond("total_drinks", ">=", 1), is_automatic=False),
    ]
    memory_store.counts[("total_drinks", 1, None)] = 1
    assert make_orchestrator(memory_store).candidate_badges(DRINK_ADDED) == []
    assert make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 1) == AwardSummary()


def test_parallel_checks_match_sequential(memory_store, badges):
    memory_store.drinks = heavy_session(1) + [drink(30, volume_ml=150, pct=12, drink_id="wine")]
    summary = make_orchestrator(memory_store, max_workers=4).check_and_award(SESSION_ENDED, 1, 1)
    assert summary == AwardSummary(awarded=2)


@pytest.mark.parametrize("session_id", [None, 99])
def test_session_ended_without_a_known_session_is_a_no_op(memory_store, badges, session_id):
    memory_store.drinks = heavy_session(1)
    summary = make_orchestrator(memory_store).check_and_award(SESSION_ENDED, 1, session_id)
    assert summary == AwardSummary()
    assert memory_store.user_badges == []
    assert memory_store.progress == {}


def test_drink_added_with_unknown_session_is_a_no_op(memory_store, badges):
    memory_store.counts[("total_drinks", 1, None)] = 1
    assert make_orchestrator(memory_store).check_and_award(DRINK_ADDED, 1, 99) == AwardSummary()
    assert memory_store.user_badges == []

import pytest

from bac_badges.criteria import Eligibility
from bac_badges.errors import MissingSessionContext
from bac_badges.policy import AlreadyHeld, Award, AwardPolicy, NotEligible, scope_session_id

from conftest import badge, cond

ELIGIBLE = Eligibility(eligible=True, values={"total_drinks": 1.0}, progress=100)

FIRST_DRINK = badge(1, "first_drink", "milestone", cond("total_drinks", ">=", 1))
SESSION_KING = badge(2, "session_king", "session", cond("max_bac_in_session", ">=", 0.08, "session"))


def test_scope_session_id():
    assert scope_session_id(FIRST_DRINK, 7) is None
    assert scope_session_id(SESSION_KING, 7) == 7
    with pytest.raises(MissingSessionContext):
        scope_session_id(SESSION_KING, None)


def test_unknown_category_is_rejected():
    odd = badge(3, "odd", "seasonal", cond("total_drinks", ">=", 1))
    with pytest.raises(ValueError):
        scope_session_id(odd, 1)


def test_decide_does_not_touch_store():
    policy = AwardPolicy()
    assert policy.decide(FIRST_DRINK, Eligibility(eligible=False), 1, 7) == NotEligible()
    assert policy.decide(FIRST_DRINK, ELIGIBLE, 1, 7) == Award(scope_session_id=None)
    assert policy.decide(SESSION_KING, ELIGIBLE, 1, 7) == Award(scope_session_id=7)


def test_milestone_awarded_once_across_sessions(memory_store):
    policy = AwardPolicy()
    first = policy.award(memory_store, FIRST_DRINK, ELIGIBLE, 1, session_id=1)
    again = policy.award(memory_store, FIRST_DRINK, ELIGIBLE, 1, session_id=2)

    assert isinstance(first, Award)
    assert first.user_badge_id is not None
    assert again == AlreadyHeld(user_badge_id=first.user_badge_id)
    assert [ub.session_id for ub in memory_store.user_badges] == [None]


def test_session_badge_awarded_per_session(memory_store):
    policy = AwardPolicy()
    a = policy.award(memory_store, SESSION_KING, ELIGIBLE, 1, session_id=1)
    b = policy.award(memory_store, SESSION_KING, ELIGIBLE, 1, session_id=2)
    again = policy.award(memory_store, SESSION_KING, ELIGIBLE, 1, session_id=1)

    assert isinstance(a, Award) and isinstance(b, Award)
    assert a.user_badge_id != b.user_badge_id
    assert again == AlreadyHeld(user_badge_id=a.user_badge_id)
    assert sorted(ub.session_id for ub in memory_store.user_badges) == [1, 2]


def test_not_eligible_writes_nothing(memory_store):
    decision = AwardPolicy().award(memory_store, FIRST_DRINK, Eligibility(eligible=False), 1, 1)
    assert decision == NotEligible()
    assert memory_store.user_badges == []


def test_metadata_is_stored(memory_store):
    AwardPolicy().award(memory_store, FIRST_DRINK, ELIGIBLE, 1, 1, metadata={"trigger": "drink_added"})
    assert memory_store.user_badges[0].metadata == {"trigger": "drink_added"}


def test_award_answers_already_held_where_decide_cannot(memory_store):
    policy = AwardPolicy()
    policy.award(memory_store, FIRST_DRINK, ELIGIBLE, 1, 1)
    assert policy.decide(FIRST_DRINK, ELIGIBLE, 1, 1) == Award(scope_session_id=None)
    assert isinstance(policy.award(memory_store, FIRST_DRINK, ELIGIBLE, 1, 1), AlreadyHeld)

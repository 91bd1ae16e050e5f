import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from bac_badges.criteria import parse_criteria
from bac_badges.errors import PersistenceFailure
from bac_badges.models import AwardResult, Badge, DrinkEntry, Profile, Session, UserBadge, utcnow
from bac_badges.sqlite_store import SQLiteStore, init_db

T0 = datetime(2026, 10, 17, 18, 0, tzinfo=timezone.utc)
LATER = T0 + timedelta(days=1)


def drink(minutes=0, volume_ml=330.0, pct=4.7, user_id=1, session_id=1, drink_id=None):
    return DrinkEntry(
        id=drink_id if drink_id is not None else minutes,
        user_id=user_id,
        session_id=session_id,
        volume_ml=volume_ml,
        alcohol_percentage=pct,
        consumed_at=T0 + timedelta(minutes=minutes),
    )


def badge(badge_id, code, category, *conditions, is_automatic=True, is_active=True):
    return Badge(
        id=badge_id,
        code=code,
        category=category,
        criteria=parse_criteria({"conditions": list(conditions)}),
        is_automatic=is_automatic,
        is_active=is_active,
    )


def cond(metric, operator, value, timeframe="all_time"):
    return {"metric": metric, "operator": operator, "value": value, "timeframe": timeframe}


class MemoryStore:
    """In-memory BadgeStore for unit tests."""

    def __init__(self):
        self.profiles = {}
        self.sessions = {}
        self.drinks = []
        self.badges = []
        self.user_badges = []
        self.progress = {}
        self.counts = {}
        self.failing_badges = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def fetch_drinks(self, user_id, session_id=None):
        return [
            d for d in self.drinks
            if d.user_id == user_id and (session_id is None or d.session_id == session_id)
        ]

    def fetch_profile(self, user_id):
        return self.profiles.get(user_id)

    def fetch_session(self, session_id):
        return self.sessions.get(session_id)

    def count_all_time(self, metric, user_id):
        return self.counts.get((metric, user_id, None), 0)

    def count_in_session(self, metric, user_id, session_id):
        return self.counts.get((metric, user_id, session_id), 0)

    def fetch_active_automatic_badges(self, categories):
        return [b for b in self.badges if b.is_active and b.is_automatic and b.category in categories]

    def award_if_absent(self, user_id, badge_id, session_id, metadata=None):
        if badge_id in self.failing_badges:
            raise PersistenceFailure("connection reset")
        with self._lock:
            for ub in self.user_badges:
                if (ub.user_id, ub.badge_id, ub.session_id) == (user_id, badge_id, session_id):
                    return AwardResult(created=False, user_badge_id=ub.id)
            ub = UserBadge(next(self._ids), user_id, badge_id, session_id, utcnow(), metadata or {})
            self.user_badges.append(ub)
            return AwardResult(created=True, user_badge_id=ub.id)

    def record_progress(self, user_id, badge_id, current_value):
        self.progress[(user_id, badge_id)] = current_value


@pytest.fixture
def male_75():
    return Profile(id=1, weight_kg=75.0, gender="male")


@pytest.fixture
def memory_store(male_75):
    store = MemoryStore()
    store.profiles[1] = male_75
    store.sessions[1] = Session(id=1, start_time=T0, end_time=T0 + timedelta(hours=4))
    store.sessions[2] = Session(id=2, start_time=T0 + timedelta(days=7), end_time=T0 + timedelta(days=7, hours=4))
    return store


@pytest.fixture
def sqlite_store(tmp_path):
    db_path = str(tmp_path / "app.db")
    init_db(db_path)
    return SQLiteStore(db_path)

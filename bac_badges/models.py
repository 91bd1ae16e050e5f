"""Value types shared by the BAC engine, the badge engine and the store.

All instants are timezone-aware datetimes. The engine never mutates these
objects; the persistence layer owns the underlying rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

MALE = "male"
FEMALE = "female"
GENDERS = (MALE, FEMALE)

# Badge categories.
MILESTONE = "milestone"
GLOBAL = "global"
SESSION = "session"
SOCIAL = "social"
CATEGORIES = (MILESTONE, GLOBAL, SESSION, SOCIAL)

# Awarded at most once per user, ever.
GLOBAL_SCOPED = frozenset({MILESTONE, GLOBAL})
# Awarded at most once per user per session.
SESSION_SCOPED = frozenset({SESSION, SOCIAL})

# Criteria timeframes.
ALL_TIME = "all_time"
IN_SESSION = "session"
TIMEFRAMES = (ALL_TIME, IN_SESSION)


@dataclass(frozen=True)
class Profile:
    id: Any
    weight_kg: float
    gender: str
    age: Optional[int] = None


@dataclass(frozen=True)
class DrinkEntry:
    id: Any
    user_id: Any
    session_id: Any
    volume_ml: float
    alcohol_percentage: float
    consumed_at: datetime


@dataclass(frozen=True)
class Session:
    id: Any
    start_time: datetime
    end_time: datetime

    def has_ended(self, now: datetime) -> bool:
        return now > self.end_time

    def bac_window(self, now: datetime) -> tuple[datetime, datetime]:
        """Window used for session BAC metrics: start until now or end, whichever is first."""
        return self.start_time, min(now, self.end_time)


@dataclass(frozen=True)
class Condition:
    metric: str
    operator: str
    value: float
    timeframe: str = ALL_TIME


@dataclass(frozen=True)
class CriteriaDoc:
    conditions: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class Badge:
    id: Any
    code: str
    category: str
    # CriteriaDoc, or its JSON form as stored; parsed when evaluated.
    criteria: Any
    is_automatic: bool = True
    is_active: bool = True
    points: int = 0
    title: str = ""

    @property
    def session_scoped(self) -> bool:
        return self.category in SESSION_SCOPED


@dataclass(frozen=True)
class UserBadge:
    id: Any
    user_id: Any
    badge_id: Any
    session_id: Any
    earned_at: datetime
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class BadgeProgress:
    """Advisory snapshot of how close a user is to an unearned badge."""

    user_id: Any
    badge_id: Any
    current_value: float
    last_updated: datetime


@dataclass(frozen=True)
class BadgeStats:
    """Totals over the badges a user holds. Per-session badges count once per session."""

    total_earned: int = 0
    total_points: int = 0
    by_category: dict = field(default_factory=lambda: {c: 0 for c in CATEGORIES})


@dataclass(frozen=True)
class AwardResult:
    """Answer of the store's atomic award-or-return-existing call."""

    created: bool
    user_badge_id: Any


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start) / timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

"""Named metrics a badge criteria document can refer to.

all_time metrics aggregate over every session the user took part in;
session metrics only look at one session and need its id.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from bac_badges import calculations
from bac_badges.drinks import BEER, WINE, has_drink_type
from bac_badges.errors import InvalidProfile, MissingSessionContext, UnknownMetric
from bac_badges.models import ALL_TIME, IN_SESSION, Session, utcnow
from bac_badges.store import BadgeStore

logger = logging.getLogger(__name__)

# Counted by the store.
ALL_TIME_COUNTS = ("total_drinks", "session_count", "total_volume", "friend_count")
SESSION_COUNTS = (
    "session_drink_count",
    "unique_friends_in_session",
    "session_friend_has_beer",
    "session_friend_has_wine",
)

# Computed here from the session's drinks and times.
SESSION_COMPUTED = (
    "max_bac_in_session",
    "avg_bac_in_session",
    "session_has_beer",
    "session_has_wine",
    "session_ended_after_midnight",
)

CATALOG: dict[str, str] = {
    **{name: ALL_TIME for name in ALL_TIME_COUNTS},
    **{name: IN_SESSION for name in SESSION_COUNTS + SESSION_COMPUTED},
}

# Sessions ending in [00:00, 06:00) local time count as after midnight.
LATE_NIGHT_END_HOUR = 6


def timeframe_of(metric: str) -> str:
    try:
        return CATALOG[metric]
    except KeyError:
        raise UnknownMetric(metric) from None


class MetricResolver:
    """Resolves catalog metrics for a user, optionally within one session."""

    def __init__(
        self,
        store: BadgeStore,
        model: calculations.BACModel = calculations.DEFAULT_MODEL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.model = model
        self.clock = clock
        self._computed: dict[str, Callable[[Any, Any], float]] = {
            "max_bac_in_session": self._max_bac,
            "avg_bac_in_session": self._avg_bac,
            "session_has_beer": lambda u, s: self._has_type(u, s, BEER),
            "session_has_wine": lambda u, s: self._has_type(u, s, WINE),
            "session_ended_after_midnight": self._ended_after_midnight,
        }

    def resolve(self, metric: str, user_id: Any, session_id: Optional[Any] = None) -> float:
        timeframe = timeframe_of(metric)
        if timeframe == ALL_TIME:
            return float(self.store.count_all_time(metric, user_id))

        if session_id is None:
            raise MissingSessionContext(f"Metric {metric!r} needs a session id")
        compute = self._computed.get(metric)
        if compute is None:
            return float(self.store.count_in_session(metric, user_id, session_id))
        value = float(compute(user_id, session_id))
        logger.debug("Resolved %s=%.4f for user %s in session %s", metric, value, user_id, session_id)
        return value

    def _session(self, session_id: Any) -> Session:
        session = self.store.fetch_session(session_id)
        if session is None:
            raise MissingSessionContext(f"Session {session_id!r} not found")
        return session

    def _bac_inputs(self, user_id: Any, session_id: Any):
        profile = self.store.fetch_profile(user_id)
        if profile is None:
            raise InvalidProfile(f"No profile for user {user_id!r}")
        start, end = self._session(session_id).bac_window(self.clock())
        drinks = self.store.fetch_drinks(user_id, session_id)
        return drinks, profile, start, end

    def _max_bac(self, user_id: Any, session_id: Any) -> float:
        drinks, profile, start, end = self._bac_inputs(user_id, session_id)
        return calculations.peak(drinks, profile, start, end, model=self.model)

    def _avg_bac(self, user_id: Any, session_id: Any) -> float:
        drinks, profile, start, end = self._bac_inputs(user_id, session_id)
        return calculations.average(drinks, profile, start, end, model=self.model)

    def _has_type(self, user_id: Any, session_id: Any, drink_type: str) -> float:
        return 1.0 if has_drink_type(self.store.fetch_drinks(user_id, session_id), drink_type) else 0.0

    def _ended_after_midnight(self, user_id: Any, session_id: Any) -> float:
        return 1.0 if self._session(session_id).end_time.hour < LATE_NIGHT_END_HOUR else 0.0

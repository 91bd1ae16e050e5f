"""Interface the engine needs from the persistence layer.

Any object with these methods works; SQLiteStore is the bundled
implementation. Every method may raise PersistenceFailure.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from bac_badges.models import AwardResult, Badge, DrinkEntry, Profile, Session


@runtime_checkable
class BadgeStore(Protocol):

    def fetch_drinks(self, user_id: Any, session_id: Any = None) -> list[DrinkEntry]: ...

    def fetch_profile(self, user_id: Any) -> Optional[Profile]: ...

    def fetch_session(self, session_id: Any) -> Optional[Session]: ...

    def count_all_time(self, metric: str, user_id: Any) -> float: ...

    def count_in_session(self, metric: str, user_id: Any, session_id: Any) -> float: ...

    def fetch_active_automatic_badges(self, categories: Iterable[str]) -> list[Badge]: ...

    def award_if_absent(
        self,
        user_id: Any,
        badge_id: Any,
        session_id: Any,
        metadata: Optional[dict] = None,
    ) -> AwardResult:
        """Insert the award unless one exists for the scope key, atomically.

        session_id None means the (user_id, badge_id) slot; otherwise the
        (user_id, badge_id, session_id) slot.
        """
        ...

    def record_progress(self, user_id: Any, badge_id: Any, current_value: float) -> None: ...

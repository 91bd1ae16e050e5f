"""Award policy: which slot a qualifying badge goes into, and claiming it.

milestone and global badges own a single (user, badge) slot and are stored
with session_id NULL whichever session triggered them. session and social
badges own one (user, badge, session) slot per session.

Whether the slot is already taken is decided by the store's atomic
award_if_absent, never by a separate read; two devices racing on the same
slot both end up pointing at the one row that won.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from bac_badges.criteria import Eligibility
from bac_badges.errors import MissingSessionContext
from bac_badges.models import GLOBAL_SCOPED, SESSION_SCOPED, Badge
from bac_badges.store import BadgeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Award:
    scope_session_id: Any = None
    # Set once the store has created the row.
    user_badge_id: Any = None


@dataclass(frozen=True)
class AlreadyHeld:
    user_badge_id: Any = None


@dataclass(frozen=True)
class NotEligible:
    pass


AwardDecision = Union[Award, AlreadyHeld, NotEligible]


def scope_session_id(badge: Badge, session_id: Optional[Any]) -> Any:
    """Session id stored on the award row: None for once-ever badges."""
    if badge.category in GLOBAL_SCOPED:
        return None
    if badge.category in SESSION_SCOPED:
        if session_id is None:
            raise MissingSessionContext(f"Badge {badge.code!r} is awarded per session and needs a session id")
        return session_id
    raise ValueError(f"Unknown badge category: {badge.category!r}")


class AwardPolicy:
    """Turns an evaluation into an award decision.

    award() is the full decision: it yields Award, AlreadyHeld or NotEligible.
    decide() alone never answers AlreadyHeld, because whether the slot is taken
    is only known once apply() has made the atomic store call.
    """

    def decide(
        self,
        badge: Badge,
        eligibility: Eligibility,
        user_id: Any,
        session_id: Optional[Any] = None,
    ) -> AwardDecision:
        """Award(scope) for an eligible badge, NotEligible otherwise.

        Does not consult the store; apply() resolves Award vs AlreadyHeld.
        """
        if not eligibility.eligible:
            return NotEligible()
        return Award(scope_session_id=scope_session_id(badge, session_id))

    def apply(
        self,
        store: BadgeStore,
        decision: AwardDecision,
        badge: Badge,
        user_id: Any,
        metadata: Optional[dict] = None,
    ) -> AwardDecision:
        """Claim the slot for an Award decision; other decisions pass through."""
        if not isinstance(decision, Award):
            return decision
        result = store.award_if_absent(user_id, badge.id, decision.scope_session_id, metadata)
        if not result.created:
            logger.debug("Badge %s already held by user %s (row %s)", badge.code, user_id, result.user_badge_id)
            return AlreadyHeld(user_badge_id=result.user_badge_id)
        logger.info("Awarded badge %s to user %s (session %s)", badge.code, user_id, decision.scope_session_id)
        return Award(scope_session_id=decision.scope_session_id, user_badge_id=result.user_badge_id)

    def award(
        self,
        store: BadgeStore,
        badge: Badge,
        eligibility: Eligibility,
        user_id: Any,
        session_id: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> AwardDecision:
        """decide() then apply(): award the badge or return the existing one."""
        decision = self.decide(badge, eligibility, user_id, session_id)
        return self.apply(store, decision, badge, user_id, metadata)

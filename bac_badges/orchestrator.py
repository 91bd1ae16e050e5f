"""Badge check-and-award trigger layer.

Called by the app right after a drink is stored (DRINK_ADDED) and when a
session passes its end time (SESSION_ENDED). Each trigger only looks at the
badge categories it can settle:

- DRINK_ADDED: milestone and global badges, which can be earned mid-session.
- SESSION_ENDED: session and social badges, which need the whole session.

Badges are checked independently; one failing badge is counted and logged
and the rest of the batch carries on.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from bac_badges import calculations
from bac_badges.criteria import CriteriaEvaluator
from bac_badges.errors import PersistenceFailure
from bac_badges.metrics import MetricResolver
from bac_badges.models import GLOBAL_SCOPED, SESSION_SCOPED, Badge, utcnow
from bac_badges.policy import AlreadyHeld, Award, AwardPolicy
from bac_badges.store import BadgeStore

logger = logging.getLogger(__name__)

DRINK_ADDED = "drink_added"
SESSION_ENDED = "session_ended"

TRIGGER_CATEGORIES = {
    DRINK_ADDED: GLOBAL_SCOPED,
    SESSION_ENDED: SESSION_SCOPED,
}

AWARDED = "awarded"
ALREADY_HELD = "already_held"
NOT_ELIGIBLE = "not_eligible"
FAILED = "failed"


@dataclass(frozen=True)
class AwardSummary:
    awarded: int = 0
    already_held: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class AwardOrchestrator:

    def __init__(
        self,
        store: BadgeStore,
        model: calculations.BACModel = calculations.DEFAULT_MODEL,
        clock: Callable[[], datetime] = utcnow,
        policy: Optional[AwardPolicy] = None,
        max_workers: int = 1,
    ) -> None:
        self.store = store
        self.clock = clock
        self.evaluator = CriteriaEvaluator(MetricResolver(store, model, clock))
        self.policy = policy or AwardPolicy()
        self.max_workers = max(1, max_workers)

    def candidate_badges(self, context: str) -> list[Badge]:
        try:
            categories = TRIGGER_CATEGORIES[context]
        except KeyError:
            raise ValueError(f"Unknown trigger context: {context!r}") from None
        badges = self.store.fetch_active_automatic_badges(categories)
        # The store filters already; keep the rule here too.
        return [
            b for b in badges
            if b.is_active and b.is_automatic and b.category in categories
        ]

    def check_and_award(self, context: str, user_id: Any, session_id: Optional[Any] = None) -> AwardSummary:
        """Evaluate and award every candidate badge for this trigger."""
        if context not in TRIGGER_CATEGORIES:
            raise ValueError(f"Unknown trigger context: {context!r}")

        try:
            if self.store.fetch_profile(user_id) is None:
                logger.debug("No profile for user %s, skipping badge check", user_id)
                return AwardSummary()
            if session_id is None and context == SESSION_ENDED:
                logger.warning("session_ended trigger for user %s without a session id", user_id)
                return AwardSummary()
            if session_id is not None and self.store.fetch_session(session_id) is None:
                logger.warning("Session %s not found, skipping badge check for user %s", session_id, user_id)
                return AwardSummary()
            badges = self.candidate_badges(context)
        except PersistenceFailure:
            logger.warning("Could not load badges for user %s", user_id, exc_info=True)
            return AwardSummary(failed=1)

        if not badges:
            logger.debug("No %s badges to check for user %s", context, user_id)
            return AwardSummary()

        logger.debug("Checking %d badges for %s (user %s, session %s)", len(badges), context, user_id, session_id)

        def check(badge: Badge) -> str:
            return self._check_one(badge, context, user_id, session_id)

        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(check, badges))
        else:
            outcomes = [check(badge) for badge in badges]

        summary = AwardSummary(
            awarded=outcomes.count(AWARDED),
            already_held=outcomes.count(ALREADY_HELD),
            failed=outcomes.count(FAILED),
        )
        logger.debug("Badge check for user %s done: %s", user_id, summary)
        return summary

    def _check_one(self, badge: Badge, context: str, user_id: Any, session_id: Optional[Any]) -> str:
        try:
            eligibility = self.evaluator.evaluate(badge.criteria, user_id, session_id)
            if not eligibility.eligible:
                self._record_progress(badge, user_id, eligibility.progress)
                return NOT_ELIGIBLE

            metadata = {
                "metrics": eligibility.values,
                "progress": eligibility.progress,
                "evaluated_at": self.clock().isoformat(),
                "trigger": context,
            }
            if session_id is not None:
                metadata["session_id"] = session_id
            decision = self.policy.award(self.store, badge, eligibility, user_id, session_id, metadata)
        except Exception:
            logger.warning("Badge %s check failed for user %s", badge.code, user_id, exc_info=True)
            return FAILED

        if isinstance(decision, AlreadyHeld):
            return ALREADY_HELD
        if isinstance(decision, Award):
            return AWARDED
        return NOT_ELIGIBLE

    def _record_progress(self, badge: Badge, user_id: Any, progress: int) -> None:
        try:
            self.store.record_progress(user_id, badge.id, progress)
        except Exception:
            logger.warning("Could not record progress for badge %s", badge.code, exc_info=True)

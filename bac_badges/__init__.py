"""
BAC estimation and badge awarding for group drinking sessions.
Use from project root: python -m bac_badges.main
"""

from bac_badges.calculations import (
    BACModel,
    average,
    estimate_bac,
    peak,
    sample_series,
    time_to_sober,
    trend,
)
from bac_badges.criteria import CriteriaEvaluator, Eligibility, parse_criteria
from bac_badges.errors import (
    InvalidCriteria,
    InvalidProfile,
    MissingSessionContext,
    PersistenceFailure,
    UnknownMetric,
)
from bac_badges.metrics import MetricResolver
from bac_badges.models import Badge, DrinkEntry, Profile, Session, UserBadge
from bac_badges.orchestrator import DRINK_ADDED, SESSION_ENDED, AwardOrchestrator, AwardSummary
from bac_badges.policy import AlreadyHeld, Award, AwardPolicy, NotEligible
from bac_badges.sqlite_store import SQLiteStore, init_db

__all__ = [
    "BACModel",
    "estimate_bac",
    "sample_series",
    "peak",
    "average",
    "trend",
    "time_to_sober",
    "Profile",
    "DrinkEntry",
    "Session",
    "Badge",
    "UserBadge",
    "MetricResolver",
    "CriteriaEvaluator",
    "Eligibility",
    "parse_criteria",
    "AwardPolicy",
    "Award",
    "AlreadyHeld",
    "NotEligible",
    "AwardOrchestrator",
    "AwardSummary",
    "DRINK_ADDED",
    "SESSION_ENDED",
    "SQLiteStore",
    "init_db",
    "InvalidProfile",
    "InvalidCriteria",
    "UnknownMetric",
    "MissingSessionContext",
    "PersistenceFailure",
]

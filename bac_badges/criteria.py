"""Badge criteria documents and their evaluation.

A criteria document is a list of threshold conditions, all of which must
hold for the badge to be earned:

    {"conditions": [
        {"metric": "max_bac_in_session", "operator": ">=", "value": 0.08, "timeframe": "session"}
    ]}
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Optional

from bac_badges.errors import InvalidCriteria
from bac_badges.metrics import MetricResolver
from bac_badges.models import ALL_TIME, IN_SESSION, TIMEFRAMES, Condition, CriteriaDoc

logger = logging.getLogger(__name__)

COMPARATORS = {
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    ">": operator.gt,
    "<": operator.lt,
}

# Unmet conditions stay below 100 so an unearned badge never looks complete.
MAX_UNMET_PROGRESS = 99


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    values: dict[str, float] = field(default_factory=dict)
    # 0-100, how close the user is to meeting every condition.
    progress: int = 0


def _parse_condition(raw: Any) -> Condition:
    if isinstance(raw, Condition):
        return raw
    if not isinstance(raw, dict):
        raise InvalidCriteria(f"Condition must be an object, got {type(raw).__name__}")

    metric = raw.get("metric")
    if not isinstance(metric, str) or not metric:
        raise InvalidCriteria("Condition metric is required")
    op = raw.get("operator")
    if op not in COMPARATORS:
        raise InvalidCriteria(f"Unsupported operator {op!r} for metric {metric!r}")
    value = raw.get("value")
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidCriteria(f"Condition value for {metric!r} must be a number")
    timeframe = raw.get("timeframe", ALL_TIME)
    if timeframe not in TIMEFRAMES:
        raise InvalidCriteria(f"Unsupported timeframe {timeframe!r} for metric {metric!r}")
    return Condition(metric=metric, operator=op, value=float(value), timeframe=timeframe)


def parse_criteria(doc: Any) -> CriteriaDoc:
    """Build a CriteriaDoc from its JSON form, validating every condition."""
    if isinstance(doc, CriteriaDoc):
        return doc
    if not isinstance(doc, dict):
        raise InvalidCriteria("Criteria must be an object with a 'conditions' list")
    if doc.get("requireAll", True) is not True:
        raise InvalidCriteria("Only AND-combined conditions are supported")
    conditions = doc.get("conditions", [])
    if not isinstance(conditions, list):
        raise InvalidCriteria("'conditions' must be a list")
    return CriteriaDoc(conditions=tuple(_parse_condition(c) for c in conditions))


def criteria_to_dict(criteria: CriteriaDoc) -> dict:
    return {
        "conditions": [
            {"metric": c.metric, "operator": c.operator, "value": c.value, "timeframe": c.timeframe}
            for c in criteria.conditions
        ]
    }


def condition_met(condition: Condition, value: float) -> bool:
    return COMPARATORS[condition.operator](value, condition.value)


def _condition_progress(condition: Condition, value: float) -> float:
    if condition_met(condition, value):
        return 100.0
    # Only lower bounds have a distance to close; an unmet upper bound or equality has none.
    if condition.operator in (">=", ">") and condition.value > 0:
        return max(0.0, min(MAX_UNMET_PROGRESS, value / condition.value * 100.0))
    return 0.0


class CriteriaEvaluator:
    """Evaluates criteria documents against resolved metrics. Holds no state of its own."""

    def __init__(self, resolver: MetricResolver) -> None:
        self.resolver = resolver

    def evaluate(self, criteria: CriteriaDoc, user_id: Any, session_id: Optional[Any] = None) -> Eligibility:
        criteria = parse_criteria(criteria)
        if not criteria.conditions:
            logger.warning("Criteria has no conditions; treating as not eligible")
            return Eligibility(eligible=False)

        resolved: dict[tuple, float] = {}
        values: dict[str, float] = {}
        met = []
        progress = []
        for condition in criteria.conditions:
            scope = session_id if condition.timeframe == IN_SESSION else None
            key = (condition.metric, scope)
            if key not in resolved:
                resolved[key] = self.resolver.resolve(condition.metric, user_id, scope)
            value = resolved[key]
            values[condition.metric] = value
            met.append(condition_met(condition, value))
            progress.append(_condition_progress(condition, value))

        eligible = all(met)
        overall = round(sum(progress) / len(progress))
        return Eligibility(
            eligible=eligible,
            values=values,
            progress=overall if eligible else min(overall, MAX_UNMET_PROGRESS),
        )

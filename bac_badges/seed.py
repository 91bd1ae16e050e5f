"""Starter badge definitions."""

from __future__ import annotations

import logging

from bac_badges.models import GLOBAL, MILESTONE, SESSION, SOCIAL

logger = logging.getLogger(__name__)

STARTER_BADGES: list[dict] = [
    {
        "code": "first_drink",
        "title": "First Drink",
        "category": MILESTONE,
        "points": 10,
        "criteria": {"conditions": [
            {"metric": "total_drinks", "operator": ">=", "value": 1, "timeframe": "all_time"},
        ]},
    },
    {
        "code": "veteran",
        "title": "Veteran",
        "category": GLOBAL,
        "points": 50,
        "criteria": {"conditions": [
            {"metric": "session_count", "operator": ">=", "value": 10, "timeframe": "all_time"},
        ]},
    },
    {
        "code": "social_butterfly",
        "title": "Social Butterfly",
        "category": SOCIAL,
        "points": 100,
        "criteria": {"conditions": [
            {"metric": "unique_friends_in_session", "operator": ">=", "value": 5, "timeframe": "session"},
        ]},
    },
    {
        "code": "session_king",
        "title": "Session King",
        "category": SESSION,
        "points": 75,
        "criteria": {"conditions": [
            {"metric": "max_bac_in_session", "operator": ">=", "value": 0.08, "timeframe": "session"},
        ]},
    },
    {
        "code": "night_owl",
        "title": "Night Owl",
        "category": SESSION,
        "points": 25,
        "criteria": {"conditions": [
            {"metric": "session_ended_after_midnight", "operator": "==", "value": 1, "timeframe": "session"},
        ]},
    },
    {
        "code": "beer_and_wine",
        "title": "Beer and Wine",
        "category": SESSION,
        "points": 25,
        "criteria": {"conditions": [
            {"metric": "session_has_beer", "operator": "==", "value": 1, "timeframe": "session"},
            {"metric": "session_has_wine", "operator": "==", "value": 1, "timeframe": "session"},
        ]},
    },
]


def seed_badges(store) -> int:
    """Insert any starter badges the store does not have yet. Returns how many were added."""
    added = 0
    for definition in STARTER_BADGES:
        if store.add_badge(**definition) is not None:
            added += 1
    if added:
        logger.info("Seeded %d starter badges", added)
    return added

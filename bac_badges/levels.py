"""Impairment bands and driving guidance for an estimated BAC.

Educational only; an estimate never guarantees it is legal or safe to drive.
"""

from bac_badges.calculations import DEFAULT_MODEL, BACModel, time_to_sober

LEGAL_LIMIT_BAC = 0.08

# (upper bound exclusive, label), checked in order.
BANDS = (
    (0.02, "minimal effects"),
    (0.05, "lightly impaired"),
    (0.08, "reduced coordination"),
    (0.15, "clearly impaired"),
    (0.30, "heavily impaired"),
)


def describe_bac(bac: float) -> str:
    if bac <= 0:
        return "sober"
    for upper, label in BANDS:
        if bac < upper:
            return label
    return "life-threatening"


def is_over_driving_limit(bac: float) -> bool:
    return bac >= LEGAL_LIMIT_BAC


def drive_advice(bac: float, model: BACModel = DEFAULT_MODEL) -> dict:
    """Conservative drive guidance for the given BAC."""
    hours = round(time_to_sober(bac, model), 1)
    if is_over_driving_limit(bac):
        return {
            "status": "do_not_drive",
            "message": "Estimated BAC is at or above the legal limit. Do not drive.",
            "hours_until_sober": hours,
        }
    if bac > 0:
        return {
            "status": "do_not_drive",
            "message": f"Alcohol is still present. Wait about {max(hours, 0.1)}h and recheck.",
            "hours_until_sober": hours,
        }
    return {
        "status": "ok",
        "message": "Estimated BAC is 0.000 right now.",
        "hours_until_sober": 0.0,
    }

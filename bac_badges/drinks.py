"""Alcohol content helpers for logged drinks.

Drinks are logged as volume (mL) and alcohol percentage (0 to 100).
"""

import math
from typing import Iterable, List

from bac_badges.models import DrinkEntry

# Ethanol density (g/mL) for volume x ABV -> grams.
ETHANOL_DENSITY = 0.789

BEER = "beer"
WINE = "wine"
SPIRITS = "spirits"

# Upper bounds (alcohol %) used to classify a drink by strength.
BEER_MAX_PERCENTAGE = 8.0
WINE_MAX_PERCENTAGE = 20.0


def grams_from_volume(volume_ml: float, alcohol_percentage: float, density: float = ETHANOL_DENSITY) -> float:
    """Convert mL and alcohol percentage (0 to 100) to grams of ethanol."""
    return volume_ml * (alcohol_percentage / 100.0) * density


def check_amounts(volume_ml: float, alcohol_percentage: float) -> None:
    """Raise ValueError unless volume is finite and > 0 and alcohol % is within 0 to 100."""
    if not math.isfinite(volume_ml) or not volume_ml > 0:
        raise ValueError(f"volume_ml must be a finite number > 0, got {volume_ml!r}")
    if not 0 <= alcohol_percentage <= 100:
        raise ValueError(f"alcohol_percentage must be between 0 and 100, got {alcohol_percentage!r}")


def infer_drink_type(alcohol_percentage: float) -> str:
    """Classify by strength: <8% beer, 8-20% wine, >20% spirits."""
    if alcohol_percentage < BEER_MAX_PERCENTAGE:
        return BEER
    if alcohol_percentage <= WINE_MAX_PERCENTAGE:
        return WINE
    return SPIRITS


def consumed_by(drinks: Iterable[DrinkEntry], instant) -> List[DrinkEntry]:
    """Drinks logged at or before instant, oldest first."""
    return sorted((d for d in drinks if d.consumed_at <= instant), key=lambda d: d.consumed_at)


def has_drink_type(drinks: Iterable[DrinkEntry], drink_type: str) -> bool:
    return any(infer_drink_type(d.alcohol_percentage) == drink_type for d in drinks)

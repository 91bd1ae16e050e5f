"""BAC calculations using Widmark-style rise and linear elimination.

Model:
- Grams of ethanol = volume_ml * (alcohol_percentage / 100) * 0.789
- Rise: BAC = [grams / (weight_kg * 1000 * r)] * 100
- r = 0.68 (male), 0.55 (female)
- Elimination: 0.015 BAC percentage points per hour, counted from the
  first drink consumed up to the instant being estimated

All alcohol counts as absorbed the moment it is logged. BACModel(absorption="sigmoid")
switches to a per-drink absorption ramp instead; that changes peak and average
values and is not the default.
"""

import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Mapping, Optional, Sequence, Tuple

from bac_badges.drinks import (
    BEER,
    ETHANOL_DENSITY,
    SPIRITS,
    WINE,
    check_amounts,
    consumed_by,
    grams_from_volume,
    infer_drink_type,
)
from bac_badges.errors import InvalidProfile
from bac_badges.models import FEMALE, MALE, DrinkEntry, Profile, hours_between

# Distribution ratio (Widmark r)
R_MALE = 0.68
R_FEMALE = 0.55

# Elimination rate (% BAC per hour)
ELIMINATION_PER_HOUR = 0.015

DEFAULT_STEP = timedelta(minutes=10)
TREND_WINDOW = timedelta(minutes=15)
TREND_TOLERANCE = 0.0005

INSTANT = "instant"
SIGMOID = "sigmoid"

# Minutes until a drink is fully absorbed under the sigmoid model.
ABSORPTION_MINUTES = {BEER: 20.0, WINE: 15.0, SPIRITS: 15.0}

Sample = Tuple[datetime, float]


@dataclass(frozen=True)
class BACModel:
    """Tunable constants of the estimator. Defaults are textbook Widmark values."""

    r_male: float = R_MALE
    r_female: float = R_FEMALE
    elimination_per_hour: float = ELIMINATION_PER_HOUR
    ethanol_density: float = ETHANOL_DENSITY
    step: timedelta = DEFAULT_STEP
    absorption: str = INSTANT

    def __post_init__(self):
        if self.absorption not in (INSTANT, SIGMOID):
            raise ValueError(f"absorption must be {INSTANT!r} or {SIGMOID!r}")
        if self.step <= timedelta(0):
            raise ValueError("step must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BACModel":
        env = os.environ if environ is None else environ
        return cls(
            r_male=float(env.get("BAC_R_MALE", R_MALE)),
            r_female=float(env.get("BAC_R_FEMALE", R_FEMALE)),
            elimination_per_hour=float(env.get("BAC_ELIMINATION_PER_HOUR", ELIMINATION_PER_HOUR)),
            step=timedelta(minutes=float(env.get("BAC_SAMPLE_STEP_MINUTES", 10))),
            absorption=env.get("BAC_ABSORPTION", INSTANT),
        )

    def ratio(self, gender: str) -> float:
        if gender == MALE:
            return self.r_male
        if gender == FEMALE:
            return self.r_female
        raise InvalidProfile(f"Unrecognized gender: {gender!r}")


DEFAULT_MODEL = BACModel()


def _check_profile(profile: Profile, model: BACModel) -> float:
    """Return the Widmark ratio for profile, or raise InvalidProfile."""
    weight = profile.weight_kg
    if weight is None or isinstance(weight, bool) or not weight > 0 or not math.isfinite(weight):
        raise InvalidProfile(f"weight_kg must be a finite number > 0, got {weight!r}")
    return model.ratio(profile.gender)


def _check_drinks(drinks: Sequence[DrinkEntry]) -> None:
    for drink in drinks:
        check_amounts(drink.volume_ml, drink.alcohol_percentage)


def bac_rise_from_grams(grams_alcohol: float, weight_kg: float, r: float) -> float:
    """Immediate BAC rise (%) from a dose of alcohol."""
    return (grams_alcohol / (r * weight_kg * 1000.0)) * 100.0


def _absorbed_fraction(minutes: float, absorption_minutes: float) -> float:
    midpoint = absorption_minutes / 2.0
    k = 8.0 / absorption_minutes
    return 1.0 / (1.0 + math.exp(-k * (minutes - midpoint)))


def _instant_bac(taken: Sequence[DrinkEntry], weight_kg: float, r: float, instant: datetime, model: BACModel) -> float:
    grams = sum(grams_from_volume(d.volume_ml, d.alcohol_percentage, model.ethanol_density) for d in taken)
    raw = bac_rise_from_grams(grams, weight_kg, r)
    elapsed = hours_between(taken[0].consumed_at, instant)
    return raw - model.elimination_per_hour * elapsed


def _sigmoid_bac(taken: Sequence[DrinkEntry], weight_kg: float, r: float, instant: datetime, model: BACModel) -> float:
    bac = 0.0
    for drink in taken:
        hours = hours_between(drink.consumed_at, instant)
        grams = grams_from_volume(drink.volume_ml, drink.alcohol_percentage, model.ethanol_density)
        ramp = ABSORPTION_MINUTES[infer_drink_type(drink.alcohol_percentage)]
        absorbed = bac_rise_from_grams(grams, weight_kg, r) * _absorbed_fraction(hours * 60.0, ramp)
        bac += max(0.0, absorbed - model.elimination_per_hour * hours)
    return bac


def _estimate(taken: Sequence[DrinkEntry], profile: Profile, r: float, instant: datetime, model: BACModel) -> float:
    if not taken:
        return 0.0
    if model.absorption == SIGMOID:
        bac = _sigmoid_bac(taken, profile.weight_kg, r, instant, model)
    else:
        bac = _instant_bac(taken, profile.weight_kg, r, instant, model)
    return round(max(0.0, bac), 4)


def estimate_bac(
    drinks: Sequence[DrinkEntry],
    profile: Profile,
    instant: datetime,
    model: BACModel = DEFAULT_MODEL,
) -> float:
    """BAC (%) at instant. Drinks logged after instant are ignored."""
    r = _check_profile(profile, model)
    _check_drinks(drinks)
    return _estimate(consumed_by(drinks, instant), profile, r, instant, model)


class BACSeries:
    """BAC sampled every step from start to end inclusive.

    Iterating computes samples lazily; the series can be iterated any number
    of times and always yields the same values.
    """

    def __init__(self, drinks, profile, start, end, step, model):
        self._drinks = tuple(sorted(drinks, key=lambda d: d.consumed_at))
        self._profile = profile
        self._start = start
        self._end = end
        self._step = step
        self._model = model
        self._r = _check_profile(profile, model)
        _check_drinks(self._drinks)

    def __iter__(self) -> Iterator[Sample]:
        t = self._start
        while t <= self._end:
            taken = [d for d in self._drinks if d.consumed_at <= t]
            yield t, _estimate(taken, self._profile, self._r, t, self._model)
            t += self._step


def sample_series(
    drinks: Sequence[DrinkEntry],
    profile: Profile,
    start: datetime,
    end: datetime,
    step: Optional[timedelta] = None,
    model: BACModel = DEFAULT_MODEL,
) -> BACSeries:
    """Return (instant, bac) samples from start to end; empty when start > end."""
    step = model.step if step is None else step
    if step <= timedelta(0):
        raise ValueError("step must be positive")
    return BACSeries(drinks, profile, start, end, step, model)


def peak(drinks, profile, start, end, step=None, model=DEFAULT_MODEL) -> float:
    """Highest sampled BAC in [start, end]; 0 for an empty window."""
    return max((bac for _, bac in sample_series(drinks, profile, start, end, step, model)), default=0.0)


def average(drinks, profile, start, end, step=None, model=DEFAULT_MODEL) -> float:
    """Mean sampled BAC in [start, end]; 0 for an empty window."""
    values = [bac for _, bac in sample_series(drinks, profile, start, end, step, model)]
    if not values:
        return 0.0
    return sum(values) / len(values)


def trend(
    drinks: Sequence[DrinkEntry],
    profile: Profile,
    instant: datetime,
    window: timedelta = TREND_WINDOW,
    model: BACModel = DEFAULT_MODEL,
) -> str:
    """'rising', 'falling' or 'steady' over the window ending at instant."""
    before = estimate_bac(drinks, profile, instant - window, model)
    now = estimate_bac(drinks, profile, instant, model)
    if now - before > TREND_TOLERANCE:
        return "rising"
    if before - now > TREND_TOLERANCE:
        return "falling"
    return "steady"


def time_to_sober(bac: float, model: BACModel = DEFAULT_MODEL) -> float:
    """Hours until the given BAC is fully eliminated."""
    if bac <= 0:
        return 0.0
    return bac / model.elimination_per_hour

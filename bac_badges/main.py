"""
BAC CLI demo. Run from project root: python -m bac_badges.main
Builds a sample drink log, prints BAC now, the session peak/average and trend.
"""

import argparse
import logging
import sys
from datetime import timedelta

from bac_badges.calculations import BACModel, average, estimate_bac, peak, time_to_sober, trend
from bac_badges.levels import describe_bac
from bac_badges.models import FEMALE, MALE, DrinkEntry, Profile, utcnow


def demo_drinks(now):
    """Two beers two hours ago, a glass of wine one hour ago."""
    return [
        DrinkEntry(1, "demo", "demo", 500.0, 4.7, now - timedelta(hours=2)),
        DrinkEntry(2, "demo", "demo", 500.0, 4.7, now - timedelta(hours=2)),
        DrinkEntry(3, "demo", "demo", 150.0, 12.0, now - timedelta(hours=1)),
    ]


def main():
    parser = argparse.ArgumentParser(description="Estimate BAC for a demo drink log")
    parser.add_argument("--weight", type=float, default=75.0, help="Body weight (kg)")
    parser.add_argument("--female", action="store_true", help="Use the female distribution ratio")
    parser.add_argument("--step", type=float, default=10.0, help="Sampling step in minutes")
    parser.add_argument("--sigmoid", action="store_true", help="Gradual absorption instead of instant uptake")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    model = BACModel(step=timedelta(minutes=args.step), absorption="sigmoid" if args.sigmoid else "instant")
    profile = Profile(id="demo", weight_kg=args.weight, gender=FEMALE if args.female else MALE)
    now = utcnow()
    drinks = demo_drinks(now)
    start = min(d.consumed_at for d in drinks)

    bac = estimate_bac(drinks, profile, now, model)
    print(f"Weight: {profile.weight_kg} kg ({profile.gender}), BAC now: {bac:.3f}% ({describe_bac(bac)})")
    print(f"Peak since first drink: {peak(drinks, profile, start, now, model=model):.3f}%")
    print(f"Average since first drink: {average(drinks, profile, start, now, model=model):.3f}%")
    print(f"Trend: {trend(drinks, profile, now, model=model)}")
    print(f"Hours until sober: {time_to_sober(bac, model):.1f}h")
    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)

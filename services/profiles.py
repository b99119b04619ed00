"""Shape functions turning daily kWh averages into 24-hour profiles."""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np

from utils.time_ranges import HOURS_PER_DAY

STANDARD_PEAK_HOURS: Tuple[int, ...] = (7, 8, 9, 16, 17, 18, 19, 20, 21)
STANDARD_SHOULDER_HOURS: Tuple[int, ...] = (10, 11, 12, 13, 14, 15)
STANDARD_OFF_PEAK_HOURS: Tuple[int, ...] = tuple(
    h for h in range(HOURS_PER_DAY) if h not in STANDARD_PEAK_HOURS and h not in STANDARD_SHOULDER_HOURS
)

# Relative hourly generation weights; normalised to the daily total on use.
_GENERIC_SOLAR = (0, 0, 0, 0, 0, 0, 0, 0.01, 0.05, 0.1, 0.15, 0.19, 0.2, 0.15, 0.1, 0.04, 0.01, 0, 0, 0, 0, 0, 0, 0)
_SUMMER_SOLAR = (0, 0, 0, 0, 0, 0, 0.01, 0.04, 0.08, 0.12, 0.15, 0.18, 0.19, 0.15, 0.12, 0.08, 0.04, 0.01, 0, 0, 0, 0, 0, 0)
_WINTER_SOLAR = (0, 0, 0, 0, 0, 0, 0, 0, 0.05, 0.1, 0.18, 0.22, 0.2, 0.15, 0.1, 0, 0, 0, 0, 0, 0, 0, 0, 0)
_SHOULDER_SOLAR = (0, 0, 0, 0, 0, 0, 0, 0.02, 0.06, 0.11, 0.16, 0.19, 0.19, 0.16, 0.11, 0.06, 0.02, 0, 0, 0, 0, 0, 0, 0)

SOLAR_DISTRIBUTIONS: Dict[str, Tuple[float, ...]] = {
    "Q1_Summer": _SUMMER_SOLAR,
    "Q2_Autumn": _SHOULDER_SOLAR,
    "Q3_Winter": _WINTER_SOLAR,
    "Q4_Spring": _SHOULDER_SOLAR,
}


def consumption_profile_from_tou(daily_peak: float, daily_shoulder: float, daily_off_peak: float) -> Tuple[float, ...]:
    """Spread daily band totals evenly over the standard 9 peak, 6 shoulder and 9 off-peak hours."""

    per_hour = {
        "peak": daily_peak / len(STANDARD_PEAK_HOURS) if daily_peak > 0 else 0.0,
        "shoulder": daily_shoulder / len(STANDARD_SHOULDER_HOURS) if daily_shoulder > 0 else 0.0,
        "off_peak": daily_off_peak / len(STANDARD_OFF_PEAK_HOURS) if daily_off_peak > 0 else 0.0,
    }
    profile = []
    for hour in range(HOURS_PER_DAY):
        if hour in STANDARD_PEAK_HOURS:
            profile.append(per_hour["peak"])
        elif hour in STANDARD_SHOULDER_HOURS:
            profile.append(per_hour["shoulder"])
        else:
            profile.append(per_hour["off_peak"])
    return tuple(profile)


def solar_profile_from_daily(daily_total: float, season: str = "") -> Tuple[float, ...]:
    """Distribute a daily solar total over the hours using the season's curve.

    Unknown seasons (for example a single manually entered average) use a
    generic annual curve.
    """

    if daily_total <= 0:
        return (0.0,) * HOURS_PER_DAY
    weights = np.asarray(SOLAR_DISTRIBUTIONS.get(season, _GENERIC_SOLAR), dtype=float)
    scaled = weights / weights.sum() * float(daily_total)
    return tuple(float(v) for v in scaled)

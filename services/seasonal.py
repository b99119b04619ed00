"""Reduce daily usage and solar history into four representative seasonal days."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from services.models import DailySolar, DailyUsage
from services.profiles import STANDARD_PEAK_HOURS, STANDARD_SHOULDER_HOURS
from utils.time_ranges import HOURS_PER_DAY, normalize_hours

logger = logging.getLogger(__name__)

SEASONS = ("Q1_Summer", "Q2_Autumn", "Q3_Winter", "Q4_Spring")
SEASON_MONTHS: Dict[str, tuple[int, ...]] = {
    "Q1_Summer": (12, 1, 2),
    "Q2_Autumn": (3, 4, 5),
    "Q3_Winter": (6, 7, 8),
    "Q4_Spring": (9, 10, 11),
}
SEASON_DAYS: Dict[str, int] = {"Q1_Summer": 90, "Q2_Autumn": 91, "Q3_Winter": 92, "Q4_Spring": 92}
MONTH_TO_SEASON: Dict[int, str] = {m: season for season, months in SEASON_MONTHS.items() for m in months}


@dataclass(frozen=True)
class SeasonalProfile:
    """Average daily kWh per band for one season."""

    season: str
    avg_peak: float
    avg_shoulder: float
    avg_off_peak: float
    avg_solar: float
    days: int = 0

    @property
    def avg_consumption(self) -> float:
        return self.avg_peak + self.avg_shoulder + self.avg_off_peak

    def to_dict(self) -> Dict[str, object]:
        return {
            "season": self.season,
            "avg_peak": self.avg_peak,
            "avg_shoulder": self.avg_shoulder,
            "avg_off_peak": self.avg_off_peak,
            "avg_solar": self.avg_solar,
            "days": self.days,
        }


def season_for_date(date_key: str) -> str:
    """Return the season of a 'YYYY-MM-DD' key (calendar month, no timezone shift)."""

    return MONTH_TO_SEASON[int(date_key[5:7])]


def _band_masks(
    peak_hours: Optional[Iterable[int]],
    shoulder_hours: Optional[Iterable[int]],
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    peak = set(normalize_hours(peak_hours)) if peak_hours is not None else set(STANDARD_PEAK_HOURS)
    shoulder = set(normalize_hours(shoulder_hours)) if shoulder_hours is not None else set(STANDARD_SHOULDER_HOURS)
    shoulder -= peak
    hours = np.arange(HOURS_PER_DAY)
    peak_mask = np.isin(hours, sorted(peak))
    shoulder_mask = np.isin(hours, sorted(shoulder))
    return peak_mask, shoulder_mask, ~(peak_mask | shoulder_mask)


def aggregate_seasons(
    usage: Sequence[DailyUsage],
    solar: Sequence[DailySolar] = (),
    peak_hours: Optional[Iterable[int]] = None,
    shoulder_hours: Optional[Iterable[int]] = None,
) -> Dict[str, SeasonalProfile]:
    """Average each season's daily band consumption and solar generation.

    Consumption is split into peak/shoulder/off-peak using the standard bands
    unless custom hour sets are given; any hour in neither set is off-peak.
    Solar is matched to usage days by date key (missing solar counts as 0).
    Seasons without observed days are omitted; no usage gives an empty dict.
    """

    if not usage:
        return {}

    peak_mask, shoulder_mask, off_peak_mask = _band_masks(peak_hours, shoulder_hours)
    solar_totals = {day.date: day.total_kwh for day in solar}

    consumption = np.asarray([day.consumption for day in usage], dtype=float)
    frame = pd.DataFrame(
        {
            "date": [day.date for day in usage],
            "peak": consumption[:, peak_mask].sum(axis=1),
            "shoulder": consumption[:, shoulder_mask].sum(axis=1),
            "off_peak": consumption[:, off_peak_mask].sum(axis=1),
        }
    )
    frame["solar"] = frame["date"].map(solar_totals).fillna(0.0)
    frame["season"] = frame["date"].map(season_for_date)

    grouped = frame.groupby("season").agg(
        avg_peak=("peak", "mean"),
        avg_shoulder=("shoulder", "mean"),
        avg_off_peak=("off_peak", "mean"),
        avg_solar=("solar", "mean"),
        days=("date", "count"),
    )

    profiles: Dict[str, SeasonalProfile] = {}
    for season in SEASONS:
        if season not in grouped.index:
            continue
        row = grouped.loc[season]
        profiles[season] = SeasonalProfile(
            season=season,
            avg_peak=float(row["avg_peak"]),
            avg_shoulder=float(row["avg_shoulder"]),
            avg_off_peak=float(row["avg_off_peak"]),
            avg_solar=float(row["avg_solar"]),
            days=int(row["days"]),
        )
    logger.debug("Aggregated %d usage days into seasons %s", len(usage), list(profiles))
    return profiles


def reconstruct_true_consumption(usage: Sequence[DailyUsage], solar: Sequence[DailySolar]) -> List[DailyUsage]:
    """Add self-consumed solar back onto metered grid import.

    Household load is grid import plus ``max(0, solar - feed_in)`` for each
    hour. Only days with matching solar are returned.
    """

    solar_by_date = {day.date: day for day in solar}
    rebuilt: List[DailyUsage] = []
    for day in usage:
        solar_day = solar_by_date.get(day.date)
        if solar_day is None:
            continue
        grid = np.asarray(day.consumption, dtype=float)
        generated = np.asarray(solar_day.hourly, dtype=float)
        exported = np.asarray(day.feed_in, dtype=float)
        self_consumed = np.maximum(0.0, generated - exported)
        rebuilt.append(DailyUsage(date=day.date, consumption=tuple(grid + self_consumed), feed_in=day.feed_in))
    return rebuilt


def manual_profiles(values: Mapping[str, Mapping[str, float]]) -> Dict[str, SeasonalProfile]:
    """Build seasonal profiles from user-entered daily averages.

    ``values`` maps a season key to ``{"avg_peak", "avg_shoulder",
    "avg_off_peak", "avg_solar"}``. Unknown season keys raise ValueError.
    """

    profiles: Dict[str, SeasonalProfile] = {}
    for season, entry in values.items():
        if season not in SEASON_DAYS:
            raise ValueError(f"Unknown season '{season}'. Expected one of {', '.join(SEASONS)}.")
        profiles[season] = SeasonalProfile(
            season=season,
            avg_peak=float(entry.get("avg_peak", 0.0) or 0.0),
            avg_shoulder=float(entry.get("avg_shoulder", 0.0) or 0.0),
            avg_off_peak=float(entry.get("avg_off_peak", 0.0) or 0.0),
            avg_solar=float(entry.get("avg_solar", 0.0) or 0.0),
            days=SEASON_DAYS[season],
        )
    return {season: profiles[season] for season in SEASONS if season in profiles}

"""Battery, inverter and solar size recommendations from usage history."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from services.dispatch_core import simulate_day
from services.models import BatteryConfig, DailySolar, DailyUsage, InsufficientData, ProviderTariff
from services.profiles import STANDARD_PEAK_HOURS, solar_profile_from_daily
from services.seasonal import (
    SEASON_DAYS,
    SeasonalProfile,
    aggregate_seasons,
    reconstruct_true_consumption,
    season_for_date,
)

logger = logging.getLogger(__name__)

STANDARD_BATTERY_SIZES_KWH: Tuple[float, ...] = (5, 10, 13.5, 16, 20, 24, 32, 40, 48)
DEFAULT_SOLAR_YIELD_KWH_PER_KW = 4.0
DEFAULT_PERCENTILE = 0.90


@dataclass(frozen=True)
class SizingOptions:
    """Scenario settings for sizing; percentages are entered as percents."""

    existing_solar_kw: float = 0.0
    new_solar_kw: float = 0.0
    replace_existing_system: bool = False
    solar_yield_kwh_per_kw: float = DEFAULT_SOLAR_YIELD_KWH_PER_KW
    blackout_duration_hours: int = 0
    blackout_coverage_pct: float = 0.0
    peak_hours: Optional[Tuple[int, ...]] = None
    percentile: float = DEFAULT_PERCENTILE

    def __post_init__(self) -> None:
        if not 0 < self.percentile <= 1:
            raise ValueError("percentile must be in (0, 1]")
        if self.blackout_duration_hours < 0 or self.blackout_coverage_pct < 0:
            raise ValueError("Blackout duration and coverage must be non-negative.")

    @property
    def total_solar_kw(self) -> float:
        if self.replace_existing_system:
            return self.new_solar_kw
        return self.existing_solar_kw + self.new_solar_kw

    @property
    def solar_source_kw(self) -> float:
        return self.existing_solar_kw if self.existing_solar_kw > 0 else 1.0


@dataclass(frozen=True)
class HeuristicSizing:
    solar_kw: float
    battery_kwh: float
    inverter_kw: float
    coverage_target: float


@dataclass(frozen=True)
class DetailedSizing:
    battery_kwh: float
    inverter_kw: float
    battery_coverage_days: int
    inverter_coverage_days: int
    total_days: int
    configured_battery_coverage_days: int
    configured_inverter_coverage_days: int
    peak_period_kwh: Tuple[float, ...] = ()
    max_hourly_kwh: Tuple[float, ...] = ()


@dataclass(frozen=True)
class BlackoutSizing:
    max_window_kwh: float
    required_reserve_kwh: float
    total_calculated_kwh: float
    practical_size_kwh: float


@dataclass(frozen=True)
class SizingRecommendation:
    heuristic: HeuristicSizing
    detailed: DetailedSizing
    blackout: Optional[BlackoutSizing] = None
    seasonal: Dict[str, SeasonalProfile] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        detailed = self.detailed
        return {
            "status": "ok",
            "heuristic": {
                "solar_kw": self.heuristic.solar_kw,
                "battery_kwh": self.heuristic.battery_kwh,
                "inverter_kw": self.heuristic.inverter_kw,
                "coverage_target": self.heuristic.coverage_target,
            },
            "detailed": {
                "battery_kwh": detailed.battery_kwh,
                "inverter_kw": detailed.inverter_kw,
                "battery_coverage_days": detailed.battery_coverage_days,
                "inverter_coverage_days": detailed.inverter_coverage_days,
                "total_days": detailed.total_days,
                "configured_battery_coverage_days": detailed.configured_battery_coverage_days,
                "configured_inverter_coverage_days": detailed.configured_inverter_coverage_days,
            },
            "distributions": {
                "peak_period_kwh": list(detailed.peak_period_kwh),
                "max_hourly_kwh": list(detailed.max_hourly_kwh),
            },
            "blackout": None
            if self.blackout is None
            else {
                "max_window_kwh": self.blackout.max_window_kwh,
                "required_reserve_kwh": self.blackout.required_reserve_kwh,
                "total_calculated_kwh": self.blackout.total_calculated_kwh,
                "practical_size_kwh": self.blackout.practical_size_kwh,
            },
        }


def percentile_value(values: Sequence[float], percentile: float = DEFAULT_PERCENTILE) -> float:
    """Return the ``ceil(p * N) - 1`` order statistic of ``values`` (ascending).

    No interpolation, so the result is always an observed value. ``p * N`` is
    rounded before the ceiling to keep 0.9 * 10 at index 8.
    """

    if len(values) == 0:
        raise ValueError("percentile_value requires at least one value")
    ordered = np.sort(np.asarray(values, dtype=float))
    index = math.ceil(round(percentile * len(ordered), 9)) - 1
    return float(ordered[max(0, index)])


def snap_to_standard_size(size_kwh: float) -> float:
    """Round up to the next standard battery size, or the ceiling beyond the list."""

    for standard in STANDARD_BATTERY_SIZES_KWH:
        if standard >= size_kwh:
            return float(standard)
    return float(math.ceil(size_kwh))


def yield_per_kw(solar: Sequence[DailySolar], existing_solar_kw: float, default: float = DEFAULT_SOLAR_YIELD_KWH_PER_KW) -> float:
    """Average daily generation per installed kW, from history when available."""

    if not solar or existing_solar_kw <= 0:
        return default
    average_daily = float(np.mean([day.total_kwh for day in solar]))
    return average_daily / existing_solar_kw


def heuristic_sizing(
    profiles: Mapping[str, SeasonalProfile],
    coverage_target: float,
    solar_yield_kwh_per_kw: float = DEFAULT_SOLAR_YIELD_KWH_PER_KW,
) -> HeuristicSizing:
    """Closed-form sizing from seasonal averages.

    Solar covers ``coverage_target`` % of annual consumption. The battery is
    sized on evening demand (peak plus half of off-peak) scaled by
    ``coverage_target / 90`` and snapped to 5, 10 or 13.5 kWh below 13.5.
    The inverter follows the solar size.
    """

    total_kwh = evening_kwh = 0.0
    total_days = 0
    for season, profile in profiles.items():
        days = SEASON_DAYS.get(season)
        if not days:
            continue
        total_kwh += profile.avg_consumption * days
        evening_kwh += (profile.avg_peak + profile.avg_off_peak * 0.5) * days
        total_days += days

    if total_days == 0:
        return HeuristicSizing(solar_kw=0.0, battery_kwh=0.0, inverter_kw=0.0, coverage_target=coverage_target)

    annual_kwh = total_kwh / total_days * 365
    target_generation = annual_kwh * coverage_target / 100.0
    solar_kw = target_generation / (solar_yield_kwh_per_kw * 365) if solar_yield_kwh_per_kw > 0 else 0.0
    solar_kw = round(solar_kw * 2) / 2

    target_evening = evening_kwh / total_days * (coverage_target / 90.0)
    if target_evening <= 5:
        battery_kwh = 5.0
    elif target_evening <= 10:
        battery_kwh = 10.0
    elif target_evening <= 13.5:
        battery_kwh = 13.5
    else:
        battery_kwh = float(round(target_evening))

    if solar_kw <= 6.6:
        inverter_kw = 5.0
    elif solar_kw <= 10:
        inverter_kw = 8.0
    else:
        inverter_kw = 10.0

    return HeuristicSizing(solar_kw=solar_kw, battery_kwh=battery_kwh, inverter_kw=inverter_kw, coverage_target=coverage_target)


def detailed_sizing(
    true_usage: Sequence[DailyUsage],
    solar: Sequence[DailySolar],
    battery: BatteryConfig,
    options: SizingOptions,
) -> Union[DetailedSizing, InsufficientData]:
    """Percentile sizing from a per-day replay of the dispatch simulator.

    Each day runs without a battery against solar scaled to the proposed total
    capacity. The statistics are peak-period consumption and the largest
    single-hour grid import left after solar.
    """

    solar_by_date = {day.date: day for day in solar}
    peak_hours = tuple(options.peak_hours) if options.peak_hours else STANDARD_PEAK_HOURS
    replay_tariff = ProviderTariff(provider_id="sizing", peak_hours=peak_hours)
    scale = options.total_solar_kw / options.solar_source_kw
    no_battery = BatteryConfig()

    peak_period: List[float] = []
    max_hourly: List[float] = []
    for day in true_usage:
        solar_day = solar_by_date.get(day.date)
        if solar_day is None:
            continue
        scaled_solar = [kwh * scale for kwh in solar_day.hourly]
        breakdown = simulate_day(day.consumption, scaled_solar, replay_tariff, no_battery)
        peak_period.append(float(sum(day.consumption[h] for h in peak_hours)))
        max_hourly.append(float(max(breakdown.hourly_imports)))

    if not peak_period:
        return InsufficientData("No usage days have matching solar data for detailed sizing.")

    battery_kwh = float(math.ceil(percentile_value(peak_period, options.percentile)))
    inverter_kw = math.ceil(percentile_value(max_hourly, options.percentile) * 2) / 2

    peak_arr = np.asarray(peak_period)
    max_arr = np.asarray(max_hourly)
    return DetailedSizing(
        battery_kwh=battery_kwh,
        inverter_kw=float(inverter_kw),
        battery_coverage_days=int((peak_arr <= battery_kwh).sum()),
        inverter_coverage_days=int((max_arr <= inverter_kw).sum()),
        total_days=len(peak_period),
        configured_battery_coverage_days=int((peak_arr <= battery.capacity_kwh).sum()),
        configured_inverter_coverage_days=int((max_arr <= battery.inverter_kw).sum()),
        peak_period_kwh=tuple(peak_period),
        max_hourly_kwh=tuple(max_hourly),
    )


def blackout_sizing(
    hourly_consumption: Sequence[float],
    duration_hours: int,
    coverage_fraction: float,
    base_battery_kwh: float,
) -> Optional[BlackoutSizing]:
    """Size a reserve for the worst ``duration_hours`` window of consumption.

    Returns None when duration or coverage is zero. A window longer than the
    series covers the whole series.
    """

    if duration_hours <= 0 or coverage_fraction <= 0:
        return None
    series = np.asarray(hourly_consumption, dtype=float)
    if series.size == 0:
        max_window = 0.0
    elif duration_hours >= series.size:
        max_window = float(series.sum())
    else:
        windows = np.lib.stride_tricks.sliding_window_view(series, duration_hours)
        max_window = float(windows.sum(axis=1).max())

    reserve = max_window * coverage_fraction
    total = base_battery_kwh + reserve
    return BlackoutSizing(
        max_window_kwh=max_window,
        required_reserve_kwh=reserve,
        total_calculated_kwh=total,
        practical_size_kwh=snap_to_standard_size(total),
    )


def modelled_solar(usage: Sequence[DailyUsage], solar_yield_kwh_per_kw: float) -> List[DailySolar]:
    """Generation of 1 kW of panels on each usage day, shaped by season."""

    return [
        DailySolar(date=day.date, hourly=solar_profile_from_daily(solar_yield_kwh_per_kw, season_for_date(day.date)))
        for day in usage
    ]


def recommend(
    usage: Sequence[DailyUsage],
    solar: Sequence[DailySolar],
    coverage_target: float,
    battery: Optional[BatteryConfig] = None,
    options: Optional[SizingOptions] = None,
) -> Union[SizingRecommendation, InsufficientData]:
    """Return heuristic, detailed and (when configured) blackout sizing.

    A household without solar history or an existing array is sized against
    modelled generation for the proposed panels.
    """

    battery = battery or BatteryConfig()
    options = options or SizingOptions()
    if not usage:
        return InsufficientData("Sizing needs usage history.")
    if solar:
        true_usage = reconstruct_true_consumption(usage, solar)
        replay_solar = list(solar)
    elif options.existing_solar_kw > 0:
        return InsufficientData("Sizing with an existing solar system needs its solar history.")
    else:
        # No system means nothing was self-consumed; replay modelled output per kW.
        true_usage = list(usage)
        replay_solar = modelled_solar(usage, options.solar_yield_kwh_per_kw)
    if not true_usage:
        return InsufficientData("No usage days have matching solar data for detailed sizing.")

    detailed = detailed_sizing(true_usage, replay_solar, battery, options)
    if isinstance(detailed, InsufficientData):
        return detailed

    profiles = aggregate_seasons(true_usage, solar, peak_hours=options.peak_hours)
    heuristic = heuristic_sizing(
        profiles,
        coverage_target,
        yield_per_kw(solar, options.existing_solar_kw, options.solar_yield_kwh_per_kw),
    )

    all_hours = [kwh for day in true_usage for kwh in day.consumption]
    blackout = blackout_sizing(
        all_hours,
        int(options.blackout_duration_hours),
        options.blackout_coverage_pct / 100.0,
        detailed.battery_kwh,
    )
    logger.debug(
        "Sizing over %d days: battery=%.1f kWh inverter=%.1f kW",
        detailed.total_days,
        detailed.battery_kwh,
        detailed.inverter_kw,
    )
    return SizingRecommendation(heuristic=heuristic, detailed=detailed, blackout=blackout, seasonal=profiles)

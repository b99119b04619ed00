"""Hour-by-hour solar, battery and grid dispatch for a single day."""
from __future__ import annotations

from typing import List, Optional, Sequence

from services.models import BatteryConfig, DailyEnergyBreakdown, ProviderTariff
from utils.time_ranges import HOURS_PER_DAY


def classify_imports(hourly_imports: Sequence[float], provider: ProviderTariff) -> tuple[float, float, float]:
    """Split hourly import into (peak, shoulder, off_peak) using the provider's hour sets.

    Hours outside the peak and shoulder sets fall into off-peak, so a flat-rate
    provider without bands books everything as off-peak.
    """

    peak_hours = set(provider.peak_hours)
    shoulder_hours = set(provider.shoulder_hours)
    peak = shoulder = off_peak = 0.0
    for hour, kwh in enumerate(hourly_imports):
        if hour in peak_hours:
            peak += kwh
        elif hour in shoulder_hours:
            shoulder += kwh
        else:
            off_peak += kwh
    return peak, shoulder, off_peak


def split_export_tiers(total_export_kwh: float, tier1_limit: Optional[float]) -> tuple[float, float]:
    if tier1_limit is None:
        return total_export_kwh, 0.0
    tier1 = min(total_export_kwh, max(0.0, tier1_limit))
    return tier1, total_export_kwh - tier1


def simulate_day(
    hourly_consumption: Sequence[float],
    hourly_solar: Sequence[float],
    provider: ProviderTariff,
    battery: Optional[BatteryConfig] = None,
) -> DailyEnergyBreakdown:
    """Dispatch one day of solar, battery and grid energy hour by hour.

    The battery starts empty; nothing carries over between days. Each hour:
    self-consume solar, discharge to the remaining load, charge from excess
    solar, then top up from the grid once the provider's grid-charge rule has
    triggered, using whatever inverter headroom is left in the hour. A started
    grid charge continues until the target SOC is reached or the window ends.
    Inputs are assumed validated (24 non-negative values).
    """

    battery = battery or BatteryConfig()
    capacity = battery.capacity_kwh if battery.is_active else 0.0
    inverter = battery.inverter_kw if battery.is_active else 0.0
    grid_charge = provider.grid_charge

    target = grid_charge.target_soc_kwh(capacity)
    charging = False

    soc = 0.0
    grid_charge_kwh = 0.0
    hourly_imports: List[float] = [0.0] * HOURS_PER_DAY
    hourly_exports: List[float] = [0.0] * HOURS_PER_DAY
    soc_log: List[float] = [0.0] * HOURS_PER_DAY

    for h in range(HOURS_PER_DAY):
        consumption = float(hourly_consumption[h])
        solar = float(hourly_solar[h])

        self_consumed = min(consumption, solar)
        remaining = consumption - self_consumed
        excess_solar = solar - self_consumed

        discharge = min(remaining, soc, inverter)
        soc -= discharge
        grid_import = remaining - discharge

        charge = min(excess_solar, capacity - soc, inverter)
        soc += charge
        hourly_exports[h] = excess_solar - charge

        if grid_charge.is_active(h, soc, capacity):
            charging = True
        elif not grid_charge.in_window(h):
            charging = False
        if charging:
            headroom = max(0.0, inverter - discharge - charge)
            top_up = min(target - soc, capacity - soc, headroom)
            if top_up > 0:
                soc += top_up
                grid_import += top_up
                grid_charge_kwh += top_up
            if soc >= target:
                charging = False

        hourly_imports[h] = grid_import
        soc_log[h] = soc

    peak, shoulder, off_peak = classify_imports(hourly_imports, provider)
    tier1, tier2 = split_export_tiers(sum(hourly_exports), provider.tier1_export_limit())

    return DailyEnergyBreakdown(
        peak_kwh=peak,
        shoulder_kwh=shoulder,
        off_peak_kwh=off_peak,
        tier1_export_kwh=tier1,
        tier2_export_kwh=tier2,
        hourly_imports=tuple(hourly_imports),
        hourly_exports=tuple(hourly_exports),
        grid_charge_kwh=grid_charge_kwh,
        soc_kwh=tuple(soc_log),
    )

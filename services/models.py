"""Shared data model for the dispatch, tariff and projection services."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from utils.time_ranges import HOURS_PER_DAY, hours_in_window

FLAT_RATE_IMPORT = "FLAT_RATE_IMPORT"
TIME_OF_USE_IMPORT = "TIME_OF_USE_IMPORT"
FLAT_RATE_FIT = "FLAT_RATE_FIT"
MULTI_TIER_FIT = "MULTI_TIER_FIT"
GLOBIRD_COMPLEX_FIT = "GLOBIRD_COMPLEX_FIT"

IMPORT_COMPONENTS = (FLAT_RATE_IMPORT, TIME_OF_USE_IMPORT)
EXPORT_COMPONENTS = (FLAT_RATE_FIT, MULTI_TIER_FIT, GLOBIRD_COMPLEX_FIT)


def _validate_hourly(values: Sequence[Any], name: str) -> Tuple[float, ...]:
    """Return a 24-value tuple of non-negative floats or raise ValueError."""

    if values is None or len(values) != HOURS_PER_DAY:
        raise ValueError(f"{name} must contain exactly {HOURS_PER_DAY} hourly values")

    cleaned: List[float] = []
    for hour, value in enumerate(values):
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"{name}[{hour}] must be a finite number")
        if number < 0:
            raise ValueError(f"{name}[{hour}] must be non-negative")
        cleaned.append(number)
    return tuple(cleaned)


def _validate_date_key(value: str) -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"date must be a 'YYYY-MM-DD' key, got {value!r}") from exc
    return value


@dataclass(frozen=True)
class DailyUsage:
    """Grid import and export for one calendar day, in kWh per hour."""

    date: str
    consumption: Tuple[float, ...]
    feed_in: Tuple[float, ...] = field(default=(0.0,) * HOURS_PER_DAY)

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", _validate_date_key(self.date))
        object.__setattr__(self, "consumption", _validate_hourly(self.consumption, "consumption"))
        object.__setattr__(self, "feed_in", _validate_hourly(self.feed_in, "feed_in"))

    @property
    def month(self) -> int:
        return int(self.date[5:7])


@dataclass(frozen=True)
class DailySolar:
    """Solar generation for one calendar day, in kWh per hour."""

    date: str
    hourly: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", _validate_date_key(self.date))
        object.__setattr__(self, "hourly", _validate_hourly(self.hourly, "hourly"))

    @property
    def total_kwh(self) -> float:
        return float(sum(self.hourly))


@dataclass(frozen=True)
class BatteryConfig:
    capacity_kwh: float = 0.0  # usable energy
    inverter_kw: float = 0.0  # max charge/discharge per hour

    def __post_init__(self) -> None:
        if self.capacity_kwh < 0 or self.inverter_kw < 0:
            raise ValueError("Battery capacity and inverter power must be non-negative.")

    @property
    def is_active(self) -> bool:
        return self.capacity_kwh > 0 and self.inverter_kw > 0

    def scaled(self, capacity_factor: float) -> "BatteryConfig":
        """Return a copy with usable capacity scaled (e.g. by degradation)."""

        return BatteryConfig(
            capacity_kwh=max(0.0, self.capacity_kwh * capacity_factor),
            inverter_kw=self.inverter_kw,
        )


@dataclass(frozen=True)
class GridChargeConfig:
    """Scheduled or threshold-triggered charging of the battery from the grid.

    ``end_hour=None`` selects threshold mode: at any hour of the day the
    battery is topped up whenever SOC is below the trigger level. Otherwise
    charging runs in the window [start_hour, end_hour), wrapping past midnight.

    Two levels govern a charge: it starts in an hour where SOC is below
    ``trigger_soc_pct`` and keeps drawing, hour after hour while the window
    lasts, until SOC reaches ``target_soc_pct``. Without a trigger the target
    doubles as the trigger.
    """

    enabled: bool = False
    start_hour: int = 23
    end_hour: Optional[int] = 5
    target_soc_pct: float = 80.0
    trigger_soc_pct: Optional[float] = None

    @property
    def threshold_mode(self) -> bool:
        return self.end_hour is None

    def window_hours(self) -> Tuple[int, ...]:
        if self.threshold_mode:
            return tuple(range(HOURS_PER_DAY))
        return tuple(hours_in_window(int(self.start_hour), int(self.end_hour)))  # type: ignore[arg-type]

    def in_window(self, hour: int) -> bool:
        if not self.enabled:
            return False
        return self.threshold_mode or hour in self.window_hours()

    def is_active(self, hour: int, soc_kwh: float, capacity_kwh: float) -> bool:
        """True when a grid charge should start this hour."""

        if capacity_kwh <= 0 or not self.in_window(hour):
            return False
        return soc_kwh < self.trigger_soc_kwh(capacity_kwh)

    def target_soc_kwh(self, capacity_kwh: float) -> float:
        return capacity_kwh * _clamp_pct(self.target_soc_pct) / 100.0

    def trigger_soc_kwh(self, capacity_kwh: float) -> float:
        if self.trigger_soc_pct is None:
            return self.target_soc_kwh(capacity_kwh)
        return capacity_kwh * _clamp_pct(self.trigger_soc_pct) / 100.0


def _clamp_pct(value: float) -> float:
    return min(max(float(value), 0.0), 100.0)


@dataclass(frozen=True)
class SpecialCondition:
    """Conditional daily credit or charge, e.g. a credit for low peak import.

    ``metric`` is one of 'peak_import', 'net_grid_usage' or 'import_in_window'
    (the latter sums hourly import over ``hours``). ``months`` restricts the
    condition to calendar months; empty means every month.
    """

    metric: str
    operator: str
    threshold: float
    action: str = "flat_credit"
    amount: float = 0.0
    hours: Tuple[int, ...] = ()
    months: Tuple[int, ...] = ()


@dataclass
class ProviderTariff:
    """A retailer's rate structure.

    ``import_data`` and ``export_data`` are rate tables read by the recipe
    registered for ``import_component`` / ``export_component``:

    - FLAT_RATE_IMPORT: ``{"rate": ...}``
    - TIME_OF_USE_IMPORT: ``{"peak": ..., "shoulder": ..., "off_peak": ...}``
    - FLAT_RATE_FIT: ``{"rate": ...}``
    - MULTI_TIER_FIT: ``{"tiers": [{"limit": kWh, "rate": ...}, {"limit": None, "rate": ...}]}``
    - GLOBIRD_COMPLEX_FIT: ``{"bonus_rate": ..., "bonus_limit": kWh,
      "tou_rates": [{"name": ..., "hours": [...], "rate": ...}, ...]}``
    """

    provider_id: str
    name: str = ""
    import_component: str = FLAT_RATE_IMPORT
    export_component: str = FLAT_RATE_FIT
    import_data: Dict[str, Any] = field(default_factory=dict)
    export_data: Dict[str, Any] = field(default_factory=dict)
    peak_hours: Tuple[int, ...] = ()
    shoulder_hours: Tuple[int, ...] = ()
    off_peak_hours: Tuple[int, ...] = ()
    grid_charge: GridChargeConfig = field(default_factory=GridChargeConfig)
    daily_charge: float = 0.0
    monthly_fee: float = 0.0
    rebate: float = 0.0
    special_conditions: List[SpecialCondition] = field(default_factory=list)

    def tier1_export_limit(self) -> Optional[float]:
        """Return the tier-1 export limit (kWh/day) for multi-tier feed-in, else None."""

        if self.export_component != MULTI_TIER_FIT:
            return None
        tiers = self.export_data.get("tiers") or []
        if not tiers or not isinstance(tiers[0], Mapping):
            return None
        limit = tiers[0].get("limit")
        try:
            value = float(limit)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None


@dataclass(frozen=True)
class DailyEnergyBreakdown:
    """Energy flows for one simulated day, categorised for billing."""

    peak_kwh: float
    shoulder_kwh: float
    off_peak_kwh: float
    tier1_export_kwh: float
    tier2_export_kwh: float
    hourly_imports: Tuple[float, ...]
    hourly_exports: Tuple[float, ...]
    grid_charge_kwh: float = 0.0
    soc_kwh: Tuple[float, ...] = ()

    @property
    def total_import_kwh(self) -> float:
        return self.peak_kwh + self.shoulder_kwh + self.off_peak_kwh

    @property
    def total_export_kwh(self) -> float:
        return self.tier1_export_kwh + self.tier2_export_kwh

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peak_kwh": self.peak_kwh,
            "shoulder_kwh": self.shoulder_kwh,
            "off_peak_kwh": self.off_peak_kwh,
            "tier1_export_kwh": self.tier1_export_kwh,
            "tier2_export_kwh": self.tier2_export_kwh,
            "grid_charge_kwh": self.grid_charge_kwh,
            "hourly_imports": list(self.hourly_imports),
            "hourly_exports": list(self.hourly_exports),
            "soc_kwh": list(self.soc_kwh),
        }


@dataclass(frozen=True)
class InsufficientData:
    """Recoverable 'cannot compute' signal returned instead of raising."""

    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": "insufficient_data", "message": self.reason}

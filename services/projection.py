"""Multi-year cost, savings and return projection across provider tariffs."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from services.dispatch_core import simulate_day
from services.models import (
    BatteryConfig,
    DailyEnergyBreakdown,
    DailySolar,
    DailyUsage,
    InsufficientData,
    ProviderTariff,
)
from services.profiles import consumption_profile_from_tou, solar_profile_from_daily
from services.seasonal import (
    SEASON_DAYS,
    SEASON_MONTHS,
    SEASONS,
    SeasonalProfile,
    reconstruct_true_consumption,
    season_for_date,
)
from services.tariffs import DailyCost, FitDegradationConfig, daily_cost, escalation_factor
from utils.economics import (
    LoanInputs,
    _discount_factor,
    _ensure_non_negative_finite,
    amortized_annual_repayment,
    compute_cash_flow_metrics,
    opportunity_cost_series,
)
from utils.time_ranges import HOURS_PER_DAY

logger = logging.getLogger(__name__)

# Seasonal diagnostics are kept for the first two analysis years.
DIAGNOSTIC_YEARS = (1, 2)
DAYS_PER_YEAR = 365

YEARLY_RESULT_COLUMNS: tuple[str, ...] = (
    "provider_id",
    "year",
    "baseline_cost",
    "annual_cost",
    "annual_savings",
    "loan_repayment",
    "net_cash_flow",
    "cumulative_savings",
    "discounted_savings",
    "opportunity_cost",
)


@dataclass
class AnalysisConfig:
    """Inputs for one projection run.

    Percent fields are entered as percents (2.0 = 2%/year). Costs are in the
    same currency as the tariff rates.
    """

    selected_providers: Sequence[str] = ()
    num_years: int = 15
    tariff_escalation_pct: float = 2.0
    solar_degradation_pct: float = 0.5
    battery_degradation_pct: float = 2.0
    loan_enabled: bool = True
    loan_amount: float = 0.0
    loan_interest_rate_pct: float = 0.0
    loan_term_years: int = 0
    discount_rate_enabled: bool = False
    discount_rate_pct: float = 0.0
    coverage_target: float = 90.0
    blackout_duration_hours: int = 0
    blackout_coverage_pct: float = 0.0
    battery_config: BatteryConfig = field(default_factory=BatteryConfig)
    existing_battery: BatteryConfig = field(default_factory=BatteryConfig)
    existing_system_age_years: float = 0.0
    existing_solar_kw: float = 0.0
    new_solar_kw: float = 0.0
    replace_existing_system: bool = False
    cost_solar: float = 0.0
    cost_battery: float = 0.0
    solar_yield_kwh_per_kw: float = 4.0
    fit_degradation_pct: float = 0.0
    fit_minimum_rate: Optional[float] = None

    def __post_init__(self) -> None:
        if int(self.num_years) < 1:
            raise ValueError("num_years must be at least 1")
        for name in (
            "tariff_escalation_pct",
            "solar_degradation_pct",
            "battery_degradation_pct",
            "loan_amount",
            "loan_interest_rate_pct",
            "discount_rate_pct",
            "coverage_target",
            "blackout_coverage_pct",
            "existing_solar_kw",
            "existing_system_age_years",
            "new_solar_kw",
            "cost_solar",
            "cost_battery",
            "solar_yield_kwh_per_kw",
            "fit_degradation_pct",
        ):
            _ensure_non_negative_finite(float(getattr(self, name)), name)
        for name in ("solar_degradation_pct", "battery_degradation_pct", "fit_degradation_pct"):
            if getattr(self, name) > 100:
                raise ValueError(f"{name} must be between 0 and 100")
        if self.loan_term_years < 0 or self.blackout_duration_hours < 0:
            raise ValueError("loan_term_years and blackout_duration_hours must be non-negative")
        self.selected_providers = tuple(self.selected_providers)

    @property
    def initial_system_cost(self) -> float:
        return self.cost_solar + self.cost_battery

    @property
    def escalation_rate(self) -> float:
        return self.tariff_escalation_pct / 100.0

    @property
    def discount_rate(self) -> Optional[float]:
        if not self.discount_rate_enabled:
            return None
        return self.discount_rate_pct / 100.0

    def fit_degradation(self) -> FitDegradationConfig:
        return FitDegradationConfig(
            annual_degradation_pct=self.fit_degradation_pct / 100.0,
            minimum_rate=self.fit_minimum_rate,
        )

    def loan(self) -> Optional[LoanInputs]:
        if not self.loan_enabled or self.loan_amount <= 0 or self.loan_term_years <= 0:
            return None
        return LoanInputs(
            principal=self.loan_amount,
            annual_interest_rate=self.loan_interest_rate_pct / 100.0,
            term_years=int(self.loan_term_years),
        )

    def solar_factor(self, year: int) -> float:
        return (1.0 - self.solar_degradation_pct / 100.0) ** (year - 1)

    def battery_factor(self, year: int) -> float:
        return (1.0 - self.battery_degradation_pct / 100.0) ** (year - 1)

    def existing_solar_factor(self, year: int) -> float:
        return (1.0 - self.solar_degradation_pct / 100.0) ** (self.existing_system_age_years + year - 1)

    def existing_battery_factor(self, year: int) -> float:
        return (1.0 - self.battery_degradation_pct / 100.0) ** (self.existing_system_age_years + year - 1)

    def existing_solar_daily(self, measured_kwh: float, year: int) -> float:
        """Daily generation of the existing array in ``year``.

        Measured generation already reflects the array's current age, so it
        only degrades from year one. Without a measurement the nameplate
        estimate degrades from the array's age.
        """

        if measured_kwh > 0:
            return measured_kwh * self.solar_factor(year)
        return self.existing_solar_kw * self.solar_yield_kwh_per_kw * self.existing_solar_factor(year)

    def new_solar_daily(self, year: int) -> float:
        return self.new_solar_kw * self.solar_yield_kwh_per_kw * self.solar_factor(year)

    def system_solar_daily(self, measured_kwh: float, year: int) -> float:
        existing = 0.0 if self.replace_existing_system else self.existing_solar_daily(measured_kwh, year)
        return existing + self.new_solar_daily(year)

    def baseline_battery(self, year: int) -> BatteryConfig:
        return self.existing_battery.scaled(self.existing_battery_factor(year))

    def system_battery(self, year: int) -> BatteryConfig:
        """Degraded battery for the proposed system in ``year``.

        A kept existing battery adds its capacity and inverter to the new one.
        """

        batteries = [(self.battery_config, self.battery_factor(year))]
        if not self.replace_existing_system:
            batteries.append((self.existing_battery, self.existing_battery_factor(year)))
        active = [(battery, factor) for battery, factor in batteries if battery.is_active]
        if not active:
            return BatteryConfig()
        return BatteryConfig(
            capacity_kwh=sum(battery.scaled(factor).capacity_kwh for battery, factor in active),
            inverter_kw=sum(battery.inverter_kw for battery, _ in active),
        )


@dataclass(frozen=True)
class SeasonResult:
    """Representative-day outcome for one season of one year."""

    season: str
    days: int
    breakdown: DailyEnergyBreakdown
    cost: DailyCost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "season": self.season,
            "days": self.days,
            "daily_import_cost": self.cost.import_cost,
            "daily_export_credit": self.cost.export_credit,
            "daily_supply_charge": self.cost.supply_charge,
            "daily_adjustments": self.cost.adjustments,
            "daily_net_cost": self.cost.net,
            **self.breakdown.to_dict(),
        }


@dataclass
class ProviderProjection:
    provider_id: str
    name: str
    upfront_cost: float
    annual_costs: List[float]
    annual_savings: List[float]
    net_cash_flow: List[float]
    cumulative_savings: List[float]
    discounted_savings: List[Optional[float]]
    payback_year: Optional[int]
    npv: Optional[float]
    irr_pct: float
    opportunity_cost: List[Optional[float]]
    diagnostics: Dict[int, List[SeasonResult]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "name": self.name,
            "upfront_cost": self.upfront_cost,
            "annual_costs": list(self.annual_costs),
            "annual_savings": list(self.annual_savings),
            "net_cash_flow": list(self.net_cash_flow),
            "cumulative_savings": list(self.cumulative_savings),
            "discounted_savings": list(self.discounted_savings),
            "payback_year": self.payback_year,
            "npv": self.npv,
            "irr_pct": self.irr_pct,
            "opportunity_cost": list(self.opportunity_cost),
            "diagnostics": {
                str(year): [season.to_dict() for season in seasons]
                for year, seasons in self.diagnostics.items()
            },
        }


@dataclass
class ProjectionResult:
    num_years: int
    baseline_provider_id: str
    baseline_costs: List[float]
    annual_loan_repayment: float
    providers: Dict[str, ProviderProjection]
    baseline_diagnostics: Dict[int, List[SeasonResult]] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Return one row per provider and year."""

        rows = []
        for projection in self.providers.values():
            for idx in range(self.num_years):
                rows.append(
                    {
                        "provider_id": projection.provider_id,
                        "year": idx + 1,
                        "baseline_cost": self.baseline_costs[idx],
                        "annual_cost": projection.annual_costs[idx],
                        "annual_savings": projection.annual_savings[idx],
                        "loan_repayment": self.annual_loan_repayment,
                        "net_cash_flow": projection.net_cash_flow[idx],
                        "cumulative_savings": projection.cumulative_savings[idx],
                        "discounted_savings": projection.discounted_savings[idx],
                        "opportunity_cost": projection.opportunity_cost[idx],
                    }
                )
        return pd.DataFrame(rows, columns=list(YEARLY_RESULT_COLUMNS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "num_years": self.num_years,
            "baseline_provider_id": self.baseline_provider_id,
            "baseline_costs": list(self.baseline_costs),
            "annual_loan_repayment": self.annual_loan_repayment,
            "providers": {pid: p.to_dict() for pid, p in self.providers.items()},
            "baseline_diagnostics": {
                str(year): [season.to_dict() for season in seasons]
                for year, seasons in self.baseline_diagnostics.items()
            },
        }


YearSimulator = Callable[[ProviderTariff, int, bool], Tuple[float, List[SeasonResult]]]


def _annual_total(provider: ProviderTariff, config: AnalysisConfig, year: int, energy_cost: float, days: int) -> float:
    """Scale ``days`` worth of daily costs to a year and add the monthly fees."""

    annual = energy_cost * DAYS_PER_YEAR / days if days > 0 else 0.0
    return annual + float(provider.monthly_fee or 0.0) * 12 * escalation_factor(config.escalation_rate, year)


def _bill_day(
    provider: ProviderTariff,
    config: AnalysisConfig,
    year: int,
    consumption: Sequence[float],
    solar: Sequence[float],
    battery: BatteryConfig,
    months: Sequence[int],
) -> tuple[DailyEnergyBreakdown, DailyCost]:
    breakdown = simulate_day(consumption, solar, provider, battery)
    cost = daily_cost(
        provider,
        breakdown,
        year,
        escalation_pct=config.escalation_rate,
        degradation=config.fit_degradation(),
        months=months,
    )
    return breakdown, cost


def _simulate_year(
    provider: ProviderTariff,
    profiles: Mapping[str, SeasonalProfile],
    config: AnalysisConfig,
    year: int,
    with_system: bool,
) -> tuple[float, List[SeasonResult]]:
    """Return the year's cost for ``provider`` and the per-season detail.

    Each season's representative day is weighted by the season's length. When
    only some seasons were observed the total is scaled up to a full year.
    """

    battery = config.system_battery(year) if with_system else config.baseline_battery(year)
    total = 0.0
    observed_days = 0
    seasons: List[SeasonResult] = []
    for season in SEASONS:
        profile = profiles.get(season)
        if profile is None:
            continue
        if with_system:
            solar_kwh = config.system_solar_daily(profile.avg_solar, year)
        else:
            solar_kwh = config.existing_solar_daily(profile.avg_solar, year)
        consumption = consumption_profile_from_tou(profile.avg_peak, profile.avg_shoulder, profile.avg_off_peak)
        solar = solar_profile_from_daily(solar_kwh, season)
        breakdown, cost = _bill_day(provider, config, year, consumption, solar, battery, SEASON_MONTHS[season])
        days = SEASON_DAYS[season]
        total += cost.net * days
        observed_days += days
        seasons.append(SeasonResult(season=season, days=days, breakdown=breakdown, cost=cost))

    return _annual_total(provider, config, year, total, observed_days), seasons


@dataclass(frozen=True)
class _HistoryDay:
    date: str
    season: str
    month: int
    consumption: Tuple[float, ...]
    solar: Tuple[float, ...]


def _history_days(usage: Sequence[DailyUsage], solar: Sequence[DailySolar]) -> List[_HistoryDay]:
    """Pair usage days with measured solar, rebuilding household load.

    With any solar history only days that have a solar record are kept.
    Without one every usage day is kept with no existing generation.
    """

    if not solar:
        return [
            _HistoryDay(day.date, season_for_date(day.date), day.month, tuple(day.consumption), (0.0,) * HOURS_PER_DAY)
            for day in usage
        ]
    solar_by_date = {day.date: day.hourly for day in solar}
    return [
        _HistoryDay(
            day.date, season_for_date(day.date), day.month, tuple(day.consumption), tuple(solar_by_date[day.date])
        )
        for day in reconstruct_true_consumption(usage, solar)
    ]


def _mean_season(season: str, entries: Sequence[tuple[DailyEnergyBreakdown, DailyCost]]) -> SeasonResult:
    """Collapse replayed days of one season into an average day."""

    breakdowns = [breakdown for breakdown, _ in entries]
    costs = [cost for _, cost in entries]

    def mean(values: Sequence[float]) -> float:
        return float(np.mean(values))

    def hourly_mean(attr: str) -> Tuple[float, ...]:
        return tuple(np.mean([getattr(b, attr) for b in breakdowns], axis=0).tolist())

    breakdown = DailyEnergyBreakdown(
        peak_kwh=mean([b.peak_kwh for b in breakdowns]),
        shoulder_kwh=mean([b.shoulder_kwh for b in breakdowns]),
        off_peak_kwh=mean([b.off_peak_kwh for b in breakdowns]),
        tier1_export_kwh=mean([b.tier1_export_kwh for b in breakdowns]),
        tier2_export_kwh=mean([b.tier2_export_kwh for b in breakdowns]),
        hourly_imports=hourly_mean("hourly_imports"),
        hourly_exports=hourly_mean("hourly_exports"),
        grid_charge_kwh=mean([b.grid_charge_kwh for b in breakdowns]),
        soc_kwh=hourly_mean("soc_kwh"),
    )
    cost = DailyCost(
        import_cost=mean([c.import_cost for c in costs]),
        export_credit=mean([c.export_credit for c in costs]),
        supply_charge=mean([c.supply_charge for c in costs]),
        adjustments=mean([c.adjustments for c in costs]),
    )
    return SeasonResult(season=season, days=len(entries), breakdown=breakdown, cost=cost)


def _replay_year(
    provider: ProviderTariff,
    days: Sequence[_HistoryDay],
    config: AnalysisConfig,
    year: int,
    with_system: bool,
) -> tuple[float, List[SeasonResult]]:
    """Simulate every historical day and annualise by the days replayed."""

    battery = config.system_battery(year) if with_system else config.baseline_battery(year)
    existing_factor = config.solar_factor(year)
    keep_existing = not (with_system and config.replace_existing_system)
    new_daily = config.new_solar_daily(year) if with_system else 0.0

    total = 0.0
    by_season: Dict[str, List[tuple[DailyEnergyBreakdown, DailyCost]]] = {season: [] for season in SEASONS}
    for day in days:
        solar = np.zeros(HOURS_PER_DAY)
        if keep_existing:
            solar += np.asarray(day.solar, dtype=float) * existing_factor
        if new_daily > 0:
            solar += np.asarray(solar_profile_from_daily(new_daily, day.season), dtype=float)
        breakdown, cost = _bill_day(provider, config, year, day.consumption, solar.tolist(), battery, (day.month,))
        total += cost.net
        by_season[day.season].append((breakdown, cost))

    seasons = [_mean_season(season, entries) for season, entries in by_season.items() if entries]
    return _annual_total(provider, config, year, total, len(days)), seasons


def _resolve_providers(
    selected: Sequence[str],
    providers: Union[Mapping[str, ProviderTariff], Sequence[ProviderTariff]],
) -> List[ProviderTariff]:
    if isinstance(providers, Mapping):
        lookup = dict(providers)
    else:
        lookup = {p.provider_id: p for p in providers}
    resolved = []
    for provider_id in selected:
        provider = lookup.get(provider_id)
        if provider is None:
            logger.warning("Selected provider '%s' is not configured; skipping.", provider_id)
            continue
        resolved.append(provider)
    return resolved


def _check_providers(
    config: AnalysisConfig,
    providers: Union[Mapping[str, ProviderTariff], Sequence[ProviderTariff]],
) -> Union[List[ProviderTariff], InsufficientData]:
    if not config.selected_providers:
        return InsufficientData("No providers selected for comparison.")
    resolved = _resolve_providers(config.selected_providers, providers)
    if not resolved:
        return InsufficientData("None of the selected providers are configured.")
    return resolved


def project(
    config: AnalysisConfig,
    profiles: Mapping[str, SeasonalProfile],
    providers: Union[Mapping[str, ProviderTariff], Sequence[ProviderTariff]],
) -> Union[ProjectionResult, InsufficientData]:
    """Project annual costs and savings for each selected provider.

    The baseline is the first selected provider with only the existing solar
    and battery. Each provider is then simulated with the proposed system: new
    solar and battery added to the existing ones (unless replaced). Every
    component degrades yearly, existing ones offset by their age. Loan
    repayments reduce the net cash flow every year; the opportunity cost of
    the outlay is reported alongside but never deducted.
    """

    if not profiles:
        return InsufficientData("No seasonal profiles available; upload usage data or enter manual averages.")
    resolved = _check_providers(config, providers)
    if isinstance(resolved, InsufficientData):
        return resolved

    def simulate(provider: ProviderTariff, year: int, with_system: bool) -> tuple[float, List[SeasonResult]]:
        return _simulate_year(provider, profiles, config, year, with_system)

    return _run_projection(config, resolved, simulate)


def project_history(
    config: AnalysisConfig,
    usage: Sequence[DailyUsage],
    solar: Sequence[DailySolar],
    providers: Union[Mapping[str, ProviderTariff], Sequence[ProviderTariff]],
) -> Union[ProjectionResult, InsufficientData]:
    """Like :func:`project`, but replays every historical day each year.

    Household load is rebuilt from metered import plus self-consumed solar.
    Each day is billed on its own calendar month and the year's energy cost is
    scaled by ``365 / days replayed``. Diagnostics report the average replayed
    day per season.
    """

    days = _history_days(usage, solar)
    if not days:
        return InsufficientData("No usage days with matching solar data to replay.")
    resolved = _check_providers(config, providers)
    if isinstance(resolved, InsufficientData):
        return resolved

    def simulate(provider: ProviderTariff, year: int, with_system: bool) -> tuple[float, List[SeasonResult]]:
        return _replay_year(provider, days, config, year, with_system)

    logger.debug("Replaying %d historical days per projection year", len(days))
    return _run_projection(config, resolved, simulate)


def _run_projection(
    config: AnalysisConfig,
    resolved: Sequence[ProviderTariff],
    simulate: YearSimulator,
) -> ProjectionResult:
    baseline_provider = resolved[0]
    loan = config.loan()
    annual_repayment = amortized_annual_repayment(loan) if loan is not None else 0.0
    discount_rate = config.discount_rate

    baseline_costs: List[float] = []
    baseline_diagnostics: Dict[int, List[SeasonResult]] = {}
    for year in range(1, config.num_years + 1):
        cost, seasons = simulate(baseline_provider, year, False)
        baseline_costs.append(cost)
        if year in DIAGNOSTIC_YEARS:
            baseline_diagnostics[year] = seasons

    results: Dict[str, ProviderProjection] = {}
    for provider in resolved:
        annual_costs: List[float] = []
        diagnostics: Dict[int, List[SeasonResult]] = {}
        for year in range(1, config.num_years + 1):
            cost, seasons = simulate(provider, year, True)
            annual_costs.append(cost)
            if year in DIAGNOSTIC_YEARS:
                diagnostics[year] = seasons

        savings = [base - cost for base, cost in zip(baseline_costs, annual_costs)]
        upfront = config.initial_system_cost - float(provider.rebate or 0.0)
        metrics = compute_cash_flow_metrics(
            upfront,
            savings,
            annual_loan_repayment=annual_repayment,
            discount_rate=discount_rate,
        )
        if discount_rate is not None:
            discounted: List[Optional[float]] = [
                value * _discount_factor(discount_rate, idx) for idx, value in enumerate(savings, start=1)
            ]
            opportunity: List[Optional[float]] = list(opportunity_cost_series(upfront, discount_rate, config.num_years))
        else:
            discounted = [None] * config.num_years
            opportunity = [None] * config.num_years

        results[provider.provider_id] = ProviderProjection(
            provider_id=provider.provider_id,
            name=provider.name or provider.provider_id,
            upfront_cost=upfront,
            annual_costs=annual_costs,
            annual_savings=savings,
            net_cash_flow=[value - annual_repayment for value in savings],
            cumulative_savings=list(metrics.cumulative_savings),
            discounted_savings=discounted,
            payback_year=metrics.payback_year,
            npv=metrics.npv,
            irr_pct=metrics.irr_pct,
            opportunity_cost=opportunity,
            diagnostics=diagnostics,
        )
        logger.debug(
            "Projected %s over %d years: payback=%s irr=%.2f%%",
            provider.provider_id,
            config.num_years,
            metrics.payback_year,
            metrics.irr_pct,
        )

    return ProjectionResult(
        num_years=config.num_years,
        baseline_provider_id=baseline_provider.provider_id,
        baseline_costs=baseline_costs,
        annual_loan_repayment=annual_repayment,
        providers=results,
        baseline_diagnostics=baseline_diagnostics,
    )

"""Tariff recipes that turn a day's energy breakdown into billed cost and credit.

Each import/export component tag maps to one recipe class in a registry. New
tariff shapes are added with :func:`register_recipe` without touching the
existing recipes.
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Type

from services.models import (
    FLAT_RATE_FIT,
    FLAT_RATE_IMPORT,
    GLOBIRD_COMPLEX_FIT,
    MULTI_TIER_FIT,
    TIME_OF_USE_IMPORT,
    DailyEnergyBreakdown,
    ProviderTariff,
    SpecialCondition,
)
from utils.time_ranges import normalize_hours

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitDegradationConfig:
    """Year-over-year step-down applied to feed-in (export) rates.

    ``annual_degradation_pct`` is a fraction (0.05 = 5%/year). ``minimum_rate``
    optionally floors the degraded rate.
    """

    annual_degradation_pct: float = 0.0
    minimum_rate: Optional[float] = None


def degraded_rate(rate: float, year: int, config: Optional[FitDegradationConfig] = None) -> float:
    """Return ``rate * (1 - annual_degradation_pct) ** (year - 1)``."""

    config = config or FitDegradationConfig()
    factor = (1.0 - config.annual_degradation_pct) ** max(year - 1, 0)
    value = rate * factor
    if config.minimum_rate is not None:
        value = max(value, min(rate, config.minimum_rate))
    return value


def escalation_factor(escalation_pct: float, year: int) -> float:
    """Return the compound import-rate escalator ``(1 + pct) ** (year - 1)``."""

    return (1.0 + escalation_pct) ** max(year - 1, 0)


def rate_value(data: Optional[Mapping[str, Any]], key: str) -> float:
    """Read a rate leniently: missing or non-numeric fields count as 0."""

    if not data:
        return 0.0
    raw = data.get(key)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.debug("Rate field '%s' is missing or non-numeric (%r); using 0.", key, raw)
        return 0.0
    if not math.isfinite(value):
        logger.debug("Rate field '%s' is not finite (%r); using 0.", key, raw)
        return 0.0
    return value


def rate_for_hour(hour: int, bands: Optional[Sequence[Mapping[str, Any]]]) -> float:
    """Return the rate of the first band covering ``hour``.

    Falls back to the first band with no hours (the 'other' band) and then 0.
    """

    bands = [b for b in (bands or []) if isinstance(b, Mapping)]
    for band in bands:
        hours = normalize_hours(band.get("hours"))
        if hours and hour in hours:
            return rate_value(band, "rate")
    for band in bands:
        if not normalize_hours(band.get("hours")):
            return rate_value(band, "rate")
    return 0.0


@dataclass(frozen=True)
class RateResolvers:
    """Shared helpers handed to every recipe so none re-implements them."""

    degraded_rate: Callable[[float, int, Optional[FitDegradationConfig]], float] = degraded_rate
    rate_for_hour: Callable[[int, Optional[Sequence[Mapping[str, Any]]]], float] = rate_for_hour


DEFAULT_RESOLVERS = RateResolvers()


class TariffRecipe(ABC):
    """Interface every import or export recipe implements."""

    tag: str = ""

    @abstractmethod
    def calculate(
        self,
        rate_data: Mapping[str, Any],
        breakdown: DailyEnergyBreakdown,
        year: int,
        factor: float,
        degradation: Optional[FitDegradationConfig],
        resolvers: RateResolvers,
    ) -> float:
        """Return the day's amount in dollars.

        ``factor`` is the import escalation factor for the year; export
        recipes ignore it and degrade their rates by ``year`` instead.
        """


_IMPORT_RECIPES: Dict[str, TariffRecipe] = {}
_EXPORT_RECIPES: Dict[str, TariffRecipe] = {}


def register_recipe(tag: str, kind: str) -> Callable[[Type[TariffRecipe]], Type[TariffRecipe]]:
    """Class decorator adding a recipe to the import or export registry."""

    if kind not in ("import", "export"):
        raise ValueError("kind must be 'import' or 'export'")

    def _decorator(cls: Type[TariffRecipe]) -> Type[TariffRecipe]:
        registry = _IMPORT_RECIPES if kind == "import" else _EXPORT_RECIPES
        recipe = cls()
        recipe.tag = tag
        registry[tag] = recipe
        return cls

    return _decorator


class _ZeroRecipe(TariffRecipe):
    def calculate(self, rate_data, breakdown, year, factor, degradation, resolvers) -> float:  # type: ignore[override]
        return 0.0


def get_import_recipe(tag: str) -> TariffRecipe:
    recipe = _IMPORT_RECIPES.get(tag)
    if recipe is None:
        logger.warning("Unknown import component '%s'; import cost treated as 0.", tag)
        return _ZeroRecipe()
    return recipe


def get_export_recipe(tag: str) -> TariffRecipe:
    recipe = _EXPORT_RECIPES.get(tag)
    if recipe is None:
        logger.warning("Unknown export component '%s'; export credit treated as 0.", tag)
        return _ZeroRecipe()
    return recipe


def registered_components() -> Dict[str, list[str]]:
    return {"import": sorted(_IMPORT_RECIPES), "export": sorted(_EXPORT_RECIPES)}


@register_recipe(FLAT_RATE_IMPORT, "import")
class FlatRateImport(TariffRecipe):
    def calculate(self, rate_data, breakdown, year, factor, degradation, resolvers) -> float:  # type: ignore[override]
        return breakdown.total_import_kwh * rate_value(rate_data, "rate") * factor


@register_recipe(TIME_OF_USE_IMPORT, "import")
class TimeOfUseImport(TariffRecipe):
    def calculate(self, rate_data, breakdown, year, factor, degradation, resolvers) -> float:  # type: ignore[override]
        cost = breakdown.peak_kwh * rate_value(rate_data, "peak")
        cost += breakdown.shoulder_kwh * rate_value(rate_data, "shoulder")
        cost += breakdown.off_peak_kwh * rate_value(rate_data, "off_peak")
        return cost * factor


@register_recipe(FLAT_RATE_FIT, "export")
class FlatRateFit(TariffRecipe):
    def calculate(self, rate_data, breakdown, year, factor, degradation, resolvers) -> float:  # type: ignore[override]
        rate = resolvers.degraded_rate(rate_value(rate_data, "rate"), year, degradation)
        return breakdown.total_export_kwh * rate


@register_recipe(MULTI_TIER_FIT, "export")
class MultiTierFit(TariffRecipe):
    """Tier 1 up to the configured daily limit, tier 2 unbounded."""

    def calculate(self, rate_data, breakdown, year, factor, degradation, resolvers) -> float:  # type: ignore[override]
        tiers = list((rate_data or {}).get("tiers") or [])
        tier1 = tiers[0] if len(tiers) > 0 and isinstance(tiers[0], Mapping) else {}
        tier2 = tiers[1] if len(tiers) > 1 and isinstance(tiers[1], Mapping) else {}
        credit = breakdown.tier1_export_kwh * resolvers.degraded_rate(rate_value(tier1, "rate"), year, degradation)
        credit += breakdown.tier2_export_kwh * resolvers.degraded_rate(rate_value(tier2, "rate"), year, degradation)
        return credit


@register_recipe(GLOBIRD_COMPLEX_FIT, "export")
class GloBirdComplexFit(TariffRecipe):
    """Bonus rate on the first ``bonus_limit`` kWh plus a per-hour TOU credit.

    The bonus is stacked on top of the hourly time-of-use credit for the same
    energy rather than replacing it.
    """

    def calculate(self, rate_data, breakdown, year, factor, degradation, resolvers) -> float:  # type: ignore[override]
        total_export = sum(breakdown.hourly_exports)
        bonus_kwh = min(total_export, max(0.0, rate_value(rate_data, "bonus_limit")))
        credit = bonus_kwh * resolvers.degraded_rate(rate_value(rate_data, "bonus_rate"), year, degradation)

        tou_rates = (rate_data or {}).get("tou_rates") or []
        for hour, kwh in enumerate(breakdown.hourly_exports):
            if kwh > 0:
                hour_rate = resolvers.rate_for_hour(hour, tou_rates)
                credit += kwh * resolvers.degraded_rate(hour_rate, year, degradation)
        return credit


@dataclass(frozen=True)
class DailyCost:
    """Billed amounts for one day; ``net`` is what the household pays."""

    import_cost: float
    export_credit: float
    supply_charge: float
    adjustments: float = 0.0

    @property
    def net(self) -> float:
        return self.import_cost + self.supply_charge + self.adjustments - self.export_credit


def calculate_import_cost(provider: ProviderTariff, breakdown: DailyEnergyBreakdown, year: int, escalation_pct: float) -> float:
    recipe = get_import_recipe(provider.import_component)
    return recipe.calculate(
        provider.import_data,
        breakdown,
        year,
        escalation_factor(escalation_pct, year),
        None,
        DEFAULT_RESOLVERS,
    )


def calculate_export_credit(
    provider: ProviderTariff,
    breakdown: DailyEnergyBreakdown,
    year: int,
    degradation: Optional[FitDegradationConfig] = None,
) -> float:
    recipe = get_export_recipe(provider.export_component)
    return recipe.calculate(provider.export_data, breakdown, year, 1.0, degradation, DEFAULT_RESOLVERS)


def _condition_metric(condition: SpecialCondition, breakdown: DailyEnergyBreakdown) -> Optional[float]:
    if condition.metric == "peak_import":
        return breakdown.peak_kwh
    if condition.metric == "net_grid_usage":
        return breakdown.total_import_kwh - breakdown.total_export_kwh
    if condition.metric == "import_in_window":
        return float(sum(breakdown.hourly_imports[h] for h in condition.hours if 0 <= h < len(breakdown.hourly_imports)))
    logger.warning("Unknown special-condition metric '%s'; condition skipped.", condition.metric)
    return None


_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "less_than": lambda a, b: a < b,
    "less_than_or_equal_to": lambda a, b: a <= b,
    "greater_than": lambda a, b: a > b,
    "greater_than_or_equal_to": lambda a, b: a >= b,
}


def special_condition_adjustment(
    conditions: Sequence[SpecialCondition],
    breakdown: DailyEnergyBreakdown,
    months: Sequence[int] = (),
) -> float:
    """Return the net daily adjustment (credits negative) from special conditions.

    When ``months`` is given (a representative season day), a month-restricted
    condition is weighted by the share of those months it covers.
    """

    total = 0.0
    for condition in conditions:
        weight = 1.0
        if condition.months and months:
            covered = sum(1 for m in months if m in condition.months)
            if covered == 0:
                continue
            weight = covered / len(months)

        metric = _condition_metric(condition, breakdown)
        compare = _OPERATORS.get(condition.operator)
        if metric is None or compare is None:
            continue
        if not compare(metric, condition.threshold):
            continue

        if condition.action == "flat_credit":
            total -= condition.amount * weight
        elif condition.action == "flat_charge":
            total += condition.amount * weight
    return total


def daily_cost(
    provider: ProviderTariff,
    breakdown: DailyEnergyBreakdown,
    year: int,
    escalation_pct: float = 0.0,
    degradation: Optional[FitDegradationConfig] = None,
    months: Sequence[int] = (),
) -> DailyCost:
    """Bill one simulated day: escalated import and supply, degraded export credit."""

    return DailyCost(
        import_cost=calculate_import_cost(provider, breakdown, year, escalation_pct),
        export_credit=calculate_export_credit(provider, breakdown, year, degradation),
        supply_charge=float(provider.daily_charge or 0.0) * escalation_factor(escalation_pct, year),
        adjustments=special_condition_adjustment(provider.special_conditions, breakdown, months),
    )

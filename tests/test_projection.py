import logging
import math

import pytest

from services.models import BatteryConfig, DailySolar, DailyUsage, InsufficientData, ProviderTariff
from services.projection import YEARLY_RESULT_COLUMNS, AnalysisConfig, ProjectionResult, project, project_history
from services.seasonal import SEASONS, manual_profiles

# A flat 1 kWh every hour of every season day: 24 kWh/day, 365 days/year.
FLAT_DAY = {"avg_peak": 9.0, "avg_shoulder": 6.0, "avg_off_peak": 9.0, "avg_solar": 0.0}
FLAT_ANNUAL_COST = 365 * (24 * 0.3 + 1.0)


def _profiles(avg_solar: float = 0.0):
    return manual_profiles({season: {**FLAT_DAY, "avg_solar": avg_solar} for season in SEASONS})


def _flat_provider(provider_id: str = "flat", **overrides) -> ProviderTariff:
    fields = {
        "provider_id": provider_id,
        "name": provider_id.title(),
        "import_data": {"rate": 0.3},
        "export_data": {"rate": 0.05},
        "daily_charge": 1.0,
    }
    fields.update(overrides)
    return ProviderTariff(**fields)


def _config(**overrides) -> AnalysisConfig:
    fields = {
        "selected_providers": ["flat"],
        "num_years": 2,
        "tariff_escalation_pct": 0.0,
        "solar_degradation_pct": 0.0,
        "battery_degradation_pct": 0.0,
        "loan_enabled": False,
    }
    fields.update(overrides)
    return AnalysisConfig(**fields)


def _project(config: AnalysisConfig, profiles=None, providers=None) -> ProjectionResult:
    result = project(config, profiles if profiles is not None else _profiles(), providers or [_flat_provider()])
    assert isinstance(result, ProjectionResult)
    return result


def test_identical_system_has_no_savings() -> None:
    result = _project(_config())

    flat = result.providers["flat"]
    assert result.baseline_costs == pytest.approx([FLAT_ANNUAL_COST, FLAT_ANNUAL_COST])
    assert flat.annual_costs == pytest.approx(result.baseline_costs)
    assert flat.annual_savings == pytest.approx([0.0, 0.0])
    assert flat.payback_year is None
    assert math.isnan(flat.irr_pct)


def test_tariff_escalation_compounds_from_year_two() -> None:
    result = _project(_config(tariff_escalation_pct=10.0))

    assert result.baseline_costs[0] == pytest.approx(FLAT_ANNUAL_COST)
    assert result.baseline_costs[1] == pytest.approx(FLAT_ANNUAL_COST * 1.1)


def test_new_solar_saves_less_as_panels_degrade() -> None:
    result = _project(_config(new_solar_kw=2.0, solar_yield_kwh_per_kw=4.0, solar_degradation_pct=5.0))

    savings = result.providers["flat"].annual_savings
    assert savings[0] > 0
    assert savings[1] < savings[0]


def test_baseline_keeps_existing_solar_unless_replaced() -> None:
    profiles = _profiles(avg_solar=5.0)

    kept = _project(_config(), profiles=profiles)
    replaced = _project(_config(replace_existing_system=True), profiles=profiles)

    assert kept.providers["flat"].annual_savings == pytest.approx([0.0, 0.0])
    assert all(value < 0 for value in replaced.providers["flat"].annual_savings)


def test_loan_repayment_reduces_cash_flow_every_year() -> None:
    config = _config(
        num_years=7,
        new_solar_kw=3.0,
        cost_solar=10000.0,
        loan_enabled=True,
        loan_amount=10000.0,
        loan_interest_rate_pct=6.0,
        loan_term_years=5,
    )

    result = _project(config)

    flat = result.providers["flat"]
    repayment = result.annual_loan_repayment
    assert repayment == pytest.approx(2319.94, abs=0.05)
    assert flat.net_cash_flow[6] == pytest.approx(flat.annual_savings[6] - repayment)
    assert flat.cumulative_savings[6] == pytest.approx(sum(flat.annual_savings) - 7 * repayment)


def test_disabled_loan_costs_nothing() -> None:
    result = _project(_config(loan_enabled=False, loan_amount=10000.0, loan_interest_rate_pct=6.0, loan_term_years=5))

    assert result.annual_loan_repayment == 0.0


def test_discounting_adds_npv_and_opportunity_cost_only() -> None:
    plain = _project(_config(new_solar_kw=2.0, cost_solar=1000.0))
    discounted = _project(_config(new_solar_kw=2.0, cost_solar=1000.0, discount_rate_enabled=True, discount_rate_pct=5.0))

    assert plain.providers["flat"].npv is None
    assert plain.providers["flat"].opportunity_cost == [None, None]
    flat = discounted.providers["flat"]
    assert flat.npv is not None
    assert flat.opportunity_cost == pytest.approx([1050.0, 1102.5])
    assert flat.discounted_savings[0] == pytest.approx(flat.annual_savings[0] / 1.05)
    assert flat.cumulative_savings == pytest.approx(plain.providers["flat"].cumulative_savings)


def test_first_selected_provider_is_the_baseline() -> None:
    providers = {
        "flat": _flat_provider(),
        "fee": _flat_provider("fee", monthly_fee=25.0, rebate=500.0),
    }

    result = _project(_config(selected_providers=["flat", "fee"], cost_solar=2000.0), providers=providers)

    assert result.baseline_provider_id == "flat"
    assert result.providers["fee"].annual_savings == pytest.approx([-300.0, -300.0])
    assert result.providers["fee"].upfront_cost == pytest.approx(1500.0)
    assert result.providers["flat"].upfront_cost == pytest.approx(2000.0)


def test_yearly_frame_has_one_row_per_provider_and_year() -> None:
    providers = [_flat_provider(), _flat_provider("other", import_data={"rate": 0.25})]

    frame = _project(_config(selected_providers=["flat", "other"], num_years=3), providers=providers).to_frame()

    assert list(frame.columns) == list(YEARLY_RESULT_COLUMNS)
    assert len(frame) == 6
    other = frame[frame["provider_id"] == "other"]
    assert list(other["year"]) == [1, 2, 3]
    assert (other["annual_savings"] > 0).all()


def test_diagnostics_cover_first_two_years_per_season() -> None:
    result = _project(_config(num_years=4))

    assert sorted(result.baseline_diagnostics) == [1, 2]
    seasons = result.providers["flat"].diagnostics[1]
    assert [s.season for s in seasons] == list(SEASONS)
    assert sum(s.days for s in seasons) == 365
    assert result.to_dict()["status"] == "ok"


def test_battery_capacity_degrades_geometrically() -> None:
    config = _config(battery_degradation_pct=10.0, battery_config=BatteryConfig(capacity_kwh=10.0, inverter_kw=5.0))

    assert config.battery_factor(1) == 1.0
    assert config.battery_factor(3) == pytest.approx(0.81)


def test_missing_inputs_are_reported_not_raised() -> None:
    assert isinstance(project(_config(), {}, [_flat_provider()]), InsufficientData)
    assert isinstance(project(_config(selected_providers=[]), _profiles(), [_flat_provider()]), InsufficientData)
    assert isinstance(project(_config(selected_providers=["nope"]), _profiles(), [_flat_provider()]), InsufficientData)


def test_unknown_selected_provider_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="services.projection"):
        result = _project(_config(selected_providers=["ghost", "flat"]))

    assert list(result.providers) == ["flat"]
    assert result.baseline_provider_id == "flat"
    assert "ghost" in caplog.text


def test_partial_year_profiles_are_annualised() -> None:
    summer_only = manual_profiles({"Q1_Summer": FLAT_DAY})
    provider = _flat_provider(monthly_fee=10.0)

    result = _project(_config(), profiles=summer_only, providers=[provider])

    assert result.baseline_costs[0] == pytest.approx(FLAT_ANNUAL_COST + 120.0)
    assert [s.days for s in result.baseline_diagnostics[1]] == [90]


def test_existing_solar_degrades_in_baseline_too() -> None:
    result = _project(_config(num_years=3, solar_degradation_pct=5.0), profiles=_profiles(avg_solar=5.0))

    assert result.providers["flat"].annual_savings == pytest.approx([0.0, 0.0, 0.0])
    assert result.baseline_costs[2] > result.baseline_costs[0]


def test_existing_battery_is_in_both_scenarios() -> None:
    existing = BatteryConfig(capacity_kwh=6.0, inverter_kw=3.0)
    profiles = _profiles(avg_solar=10.0)

    kept = _project(_config(existing_battery=existing), profiles=profiles)
    replaced = _project(_config(existing_battery=existing, replace_existing_system=True), profiles=profiles)

    assert kept.providers["flat"].annual_savings == pytest.approx([0.0, 0.0])
    assert kept.baseline_diagnostics[1][0].breakdown.soc_kwh[12] > 0
    assert all(value < 0 for value in replaced.providers["flat"].annual_savings)


def test_existing_system_age_offsets_degradation() -> None:
    config = _config(
        solar_degradation_pct=10.0,
        battery_degradation_pct=10.0,
        existing_system_age_years=2,
        existing_solar_kw=2.0,
        solar_yield_kwh_per_kw=4.0,
        existing_battery=BatteryConfig(capacity_kwh=10.0, inverter_kw=2.0),
        battery_config=BatteryConfig(capacity_kwh=10.0, inverter_kw=5.0),
    )

    assert config.existing_battery_factor(1) == pytest.approx(0.81)
    assert config.baseline_battery(2).capacity_kwh == pytest.approx(7.29)
    # Nameplate output ages with the array; a measurement is taken as current.
    assert config.existing_solar_daily(0.0, 1) == pytest.approx(6.48)
    assert config.existing_solar_daily(5.0, 2) == pytest.approx(4.5)
    combined = config.system_battery(2)
    assert combined.capacity_kwh == pytest.approx(9.0 + 7.29)
    assert combined.inverter_kw == pytest.approx(7.0)


def test_replaced_existing_battery_leaves_only_the_new_one() -> None:
    config = _config(
        replace_existing_system=True,
        existing_battery=BatteryConfig(capacity_kwh=5.0, inverter_kw=2.5),
        battery_config=BatteryConfig(capacity_kwh=10.0, inverter_kw=5.0),
    )

    assert config.system_battery(1) == BatteryConfig(capacity_kwh=10.0, inverter_kw=5.0)
    assert config.baseline_battery(1) == BatteryConfig(capacity_kwh=5.0, inverter_kw=2.5)


def _history(days: int = 10, with_solar: bool = True):
    usage, solar = [], []
    for day in range(1, days + 1):
        date = f"2024-01-{day:02d}"
        metered = [1.0] * 24
        metered[12] = 0.0
        feed_in = [0.0] * 24
        feed_in[12] = 2.0
        generation = [0.0] * 24
        generation[12] = 3.0
        usage.append(DailyUsage(date=date, consumption=tuple(metered), feed_in=tuple(feed_in)))
        solar.append(DailySolar(date=date, hourly=tuple(generation)))
    return usage, (solar if with_solar else [])


def test_history_replay_rebuilds_household_load() -> None:
    usage, solar = _history()
    # A usage day without a solar record is not replayed.
    usage.append(DailyUsage(date="2024-01-20", consumption=(5.0,) * 24))

    result = project_history(_config(), usage, solar, [_flat_provider()])

    assert isinstance(result, ProjectionResult)
    summer = result.baseline_diagnostics[1]
    assert [s.season for s in summer] == ["Q1_Summer"]
    assert summer[0].days == 10
    assert summer[0].breakdown.total_import_kwh == pytest.approx(23.0)
    assert summer[0].breakdown.total_export_kwh == pytest.approx(2.0)
    assert result.baseline_costs[0] == pytest.approx(365 * (23 * 0.3 + 1.0 - 2 * 0.05))
    assert result.providers["flat"].annual_savings == pytest.approx([0.0, 0.0])


def test_history_without_solar_replays_every_usage_day() -> None:
    usage = [DailyUsage(date=f"2024-07-{day:02d}", consumption=(1.0,) * 24) for day in range(1, 8)]

    result = project_history(_config(), usage, [], [_flat_provider(monthly_fee=10.0)])

    assert isinstance(result, ProjectionResult)
    assert result.baseline_costs[0] == pytest.approx(FLAT_ANNUAL_COST + 120.0)
    assert [(s.season, s.days) for s in result.baseline_diagnostics[1]] == [("Q3_Winter", 7)]


def test_history_replay_adds_new_solar_and_drops_replaced_array() -> None:
    usage, solar = _history()

    added = project_history(_config(new_solar_kw=2.0), usage, solar, [_flat_provider()])
    replaced = project_history(_config(replace_existing_system=True), usage, solar, [_flat_provider()])

    assert all(value > 0 for value in added.providers["flat"].annual_savings)
    assert all(value < 0 for value in replaced.providers["flat"].annual_savings)


def test_history_replay_without_usable_days_is_insufficient() -> None:
    usage, solar = _history(with_solar=True)
    other_month = [DailySolar(date="2024-03-01", hourly=(1.0,) * 24)]

    assert isinstance(project_history(_config(), [], solar, [_flat_provider()]), InsufficientData)
    assert isinstance(project_history(_config(), usage, other_month, [_flat_provider()]), InsufficientData)


@pytest.mark.parametrize(
    "overrides",
    [{"num_years": 0}, {"tariff_escalation_pct": -1.0}, {"solar_degradation_pct": 150.0}],
)
def test_analysis_config_rejects_invalid_values(overrides: dict) -> None:
    with pytest.raises(ValueError):
        _config(**overrides)

import pytest

from services.models import DailySolar, DailyUsage
from services.profiles import consumption_profile_from_tou, solar_profile_from_daily
from services.seasonal import (
    SEASON_DAYS,
    aggregate_seasons,
    manual_profiles,
    reconstruct_true_consumption,
    season_for_date,
)


def _solar_at(hour: int, kwh: float) -> tuple:
    values = [0.0] * 24
    values[hour] = kwh
    return tuple(values)


def test_daily_band_totals_are_averaged_per_season() -> None:
    usage = [
        DailyUsage(date="2024-01-01", consumption=[1.0] * 24),
        DailyUsage(date="2024-01-02", consumption=[3.0] * 24),
    ]
    solar = [DailySolar(date="2024-01-01", hourly=_solar_at(12, 10.0))]

    profiles = aggregate_seasons(usage, solar)

    assert list(profiles) == ["Q1_Summer"]
    summer = profiles["Q1_Summer"]
    assert summer.avg_peak == pytest.approx(18.0)
    assert summer.avg_shoulder == pytest.approx(12.0)
    assert summer.avg_off_peak == pytest.approx(18.0)
    # The day without solar history counts as zero generation.
    assert summer.avg_solar == pytest.approx(5.0)
    assert summer.days == 2


def test_seasons_follow_calendar_months() -> None:
    assert season_for_date("2023-12-31") == "Q1_Summer"
    assert season_for_date("2024-03-01") == "Q2_Autumn"
    assert season_for_date("2024-08-31") == "Q3_Winter"
    assert season_for_date("2024-11-15") == "Q4_Spring"


def test_only_observed_seasons_are_reported_in_season_order() -> None:
    usage = [
        DailyUsage(date="2024-07-01", consumption=[1.0] * 24),
        DailyUsage(date="2024-12-01", consumption=[1.0] * 24),
    ]

    profiles = aggregate_seasons(usage)

    assert list(profiles) == ["Q1_Summer", "Q3_Winter"]


def test_empty_usage_gives_no_profiles() -> None:
    assert aggregate_seasons([]) == {}


def test_custom_bands_put_unlisted_hours_off_peak() -> None:
    usage = [DailyUsage(date="2024-05-01", consumption=[1.0] * 24)]

    profiles = aggregate_seasons(usage, peak_hours=[0], shoulder_hours=[])

    autumn = profiles["Q2_Autumn"]
    assert (autumn.avg_peak, autumn.avg_shoulder, autumn.avg_off_peak) == (1.0, 0.0, 23.0)


def test_true_consumption_adds_back_self_consumed_solar() -> None:
    feed_in = [0.0] * 24
    feed_in[12] = 2.0
    usage = [
        DailyUsage(date="2024-01-01", consumption=[1.0] * 24, feed_in=feed_in),
        DailyUsage(date="2024-01-02", consumption=[1.0] * 24),
    ]
    solar = [DailySolar(date="2024-01-01", hourly=_solar_at(12, 3.0))]

    rebuilt = reconstruct_true_consumption(usage, solar)

    assert [day.date for day in rebuilt] == ["2024-01-01"]
    assert rebuilt[0].consumption[12] == pytest.approx(2.0)
    assert rebuilt[0].consumption[11] == pytest.approx(1.0)


def test_manual_profiles_use_season_day_counts() -> None:
    profiles = manual_profiles(
        {
            "Q3_Winter": {"avg_peak": 10, "avg_shoulder": 5, "avg_off_peak": 8, "avg_solar": 6},
            "Q1_Summer": {"avg_peak": 8},
        }
    )

    assert list(profiles) == ["Q1_Summer", "Q3_Winter"]
    assert profiles["Q3_Winter"].days == SEASON_DAYS["Q3_Winter"]
    assert profiles["Q3_Winter"].avg_consumption == pytest.approx(23.0)
    assert profiles["Q1_Summer"].avg_solar == 0.0


def test_manual_profiles_reject_unknown_season() -> None:
    with pytest.raises(ValueError):
        manual_profiles({"Monsoon": {"avg_peak": 1}})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"date": "2024-01-01", "consumption": [1.0] * 23},
        {"date": "2024-01-01", "consumption": [1.0] * 23 + [-0.1]},
        {"date": "01/01/2024", "consumption": [1.0] * 24},
    ],
)
def test_daily_usage_rejects_malformed_rows(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        DailyUsage(**kwargs)


def test_consumption_profile_spreads_bands_evenly() -> None:
    profile = consumption_profile_from_tou(9.0, 6.0, 18.0)

    assert len(profile) == 24
    assert sum(profile) == pytest.approx(33.0)
    assert profile[18] == pytest.approx(1.0)
    assert profile[12] == pytest.approx(1.0)
    assert profile[2] == pytest.approx(2.0)


def test_solar_profile_preserves_daily_total() -> None:
    winter = solar_profile_from_daily(12.0, "Q3_Winter")

    assert sum(winter) == pytest.approx(12.0)
    assert winter[6] == 0.0
    assert sum(solar_profile_from_daily(8.0)) == pytest.approx(8.0)
    assert solar_profile_from_daily(0.0, "Q1_Summer") == (0.0,) * 24

import io
import logging

import pandas as pd
import pytest

from utils.io import read_solar_csv, read_usage_csv


USAGE_CSV = """timestamp,usage_type,kwh
2024-01-01 00:00,Consumption,0.5
2024-01-01 00:30,Consumption,0.25
2024-01-01 12:00,Feed In,1.0
2024-01-01 12:30,Feed In,0.5
2024-01-02 07:00,Consumption,bad
2024-01-02 08:00,Generation,2
"""


def test_usage_intervals_are_summed_into_hours() -> None:
    days = read_usage_csv(io.StringIO(USAGE_CSV))

    assert [day.date for day in days] == ["2024-01-01"]
    day = days[0]
    assert day.consumption[0] == pytest.approx(0.75)
    assert sum(day.consumption) == pytest.approx(0.75)
    assert day.feed_in[12] == pytest.approx(1.5)
    assert len(day.feed_in) == 24


def test_unusable_usage_rows_are_dropped_with_warnings(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="utils.io"):
        read_usage_csv(io.StringIO(USAGE_CSV))

    assert "dropping 1 rows" in caplog.text
    assert "Generation" in caplog.text


def test_usage_reader_accepts_dataframes_and_custom_columns() -> None:
    frame = pd.DataFrame(
        {
            "Interval": ["2024-06-01 18:00", "2024-06-02 18:00"],
            "Type": ["consumption", "consumption"],
            "Energy": [1.0, 2.0],
        }
    )

    days = read_usage_csv(frame, timestamp_col="Interval", type_col="Type", kwh_col="Energy")

    assert [day.date for day in days] == ["2024-06-01", "2024-06-02"]
    assert days[1].consumption[18] == pytest.approx(2.0)
    assert sum(days[0].feed_in) == 0.0


def test_usage_reader_requires_type_column() -> None:
    with pytest.raises(ValueError):
        read_usage_csv(io.StringIO("timestamp,kwh\n2024-01-01 00:00,1\n"))


def test_negative_readings_are_dropped() -> None:
    csv_text = "timestamp,kwh\n2024-03-01 10:00,2.0\n2024-03-01 11:00,-1.0\n"

    days = read_solar_csv(io.StringIO(csv_text))

    assert days[0].hourly[10] == pytest.approx(2.0)
    assert days[0].hourly[11] == 0.0


def test_solar_reader_honours_day_first_dates() -> None:
    csv_text = "timestamp,kwh\n02/01/2024 10:00,1.5\n02/01/2024 11:00,2.5\n"

    days = read_solar_csv(io.StringIO(csv_text), dayfirst=True)

    assert len(days) == 1
    assert days[0].date == "2024-01-02"
    assert days[0].total_kwh == pytest.approx(4.0)


def test_solar_reader_requires_columns() -> None:
    with pytest.raises(ValueError):
        read_solar_csv(io.StringIO("when,kwh\n2024-01-01 00:00,1\n"))

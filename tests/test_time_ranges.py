import pytest

from utils.time_ranges import (
    format_hours_to_ranges,
    hours_in_window,
    normalize_hours,
    parse_clock_hour,
    parse_ranges_to_hours,
)


@pytest.mark.parametrize(
    ("token", "expected"),
    [("7am", 7), ("12am", 0), ("12pm", 12), ("10pm", 22), ("14", 14), ("14:00", 14), ("noon", None), ("", None)],
)
def test_parse_clock_hour(token: str, expected) -> None:
    assert parse_clock_hour(token) == expected


def test_ranges_are_end_exclusive() -> None:
    assert parse_ranges_to_hours("7am-10am, 4pm-10pm") == (7, 8, 9, 16, 17, 18, 19, 20, 21)


def test_ranges_wrap_past_midnight() -> None:
    assert parse_ranges_to_hours("10pm-7am") == (0, 1, 2, 3, 4, 5, 6, 22, 23)
    assert parse_ranges_to_hours("10pm-12am") == (22, 23)
    assert hours_in_window(23, 5) == [23, 0, 1, 2, 3, 4]


def test_unparseable_parts_are_skipped() -> None:
    assert parse_ranges_to_hours("dawn-dusk, 3pm") == (15,)
    assert parse_ranges_to_hours("") == ()
    assert parse_ranges_to_hours(None) == ()


def test_normalize_hours_accepts_strings_and_iterables() -> None:
    assert normalize_hours("3pm-5pm") == (15, 16)
    assert normalize_hours([16, 15, 15, 30, "x"]) == (15, 16)
    assert normalize_hours(None) == ()


def test_format_hours_to_ranges() -> None:
    assert format_hours_to_ranges((7, 8, 9, 15, 16)) == "7am-10am, 3pm-5pm"
    assert format_hours_to_ranges([22, 23]) == "10pm-12am"
    assert format_hours_to_ranges([]) == "N/A"

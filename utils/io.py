"""Input parsing utilities for interval usage and solar generation CSVs."""

from __future__ import annotations

import logging
from typing import Any, List

import numpy as np
import pandas as pd

from services.models import DailySolar, DailyUsage
from utils.time_ranges import HOURS_PER_DAY

logger = logging.getLogger(__name__)

HOUR_COLUMNS = list(range(HOURS_PER_DAY))


def _load_frame(source: Any) -> pd.DataFrame:
    if isinstance(source, pd.DataFrame):
        return source.copy()
    return pd.read_csv(source)


def _clean_intervals(
    df: pd.DataFrame,
    timestamp_col: str,
    kwh_col: str,
    dayfirst: bool,
) -> pd.DataFrame:
    """Coerce timestamps and kWh, dropping unusable rows with a warning."""

    missing = {timestamp_col, kwh_col}.difference(df.columns)
    if missing:
        raise ValueError(f"CSV must contain columns: {', '.join(sorted(missing))}")

    df = df.copy()
    df[timestamp_col] = pd.to_datetime(df[timestamp_col], errors="coerce", dayfirst=dayfirst, format="mixed")
    df[kwh_col] = pd.to_numeric(df[kwh_col], errors="coerce")

    invalid_rows = df[timestamp_col].isna() | ~np.isfinite(df[kwh_col].astype(float))
    if invalid_rows.any():
        logger.warning(
            "CSV contains unparseable %s/%s entries; dropping %d rows.",
            timestamp_col,
            kwh_col,
            int(invalid_rows.sum()),
        )
        df = df.loc[~invalid_rows].copy()

    negative = df[kwh_col] < 0
    if negative.any():
        logger.warning("Dropping %d rows with negative kWh values.", int(negative.sum()))
        df = df.loc[~negative].copy()

    df["date"] = df[timestamp_col].dt.strftime("%Y-%m-%d")
    df["hour"] = df[timestamp_col].dt.hour
    return df


def _daily_matrix(df: pd.DataFrame, kwh_col: str) -> pd.DataFrame:
    """Sum interval kWh into a date x hour (0-23) table."""

    if df.empty:
        return pd.DataFrame(columns=HOUR_COLUMNS, dtype=float)
    table = df.pivot_table(index="date", columns="hour", values=kwh_col, aggfunc="sum", fill_value=0.0)
    return table.reindex(columns=HOUR_COLUMNS, fill_value=0.0).sort_index()


def read_usage_csv(
    source: Any,
    timestamp_col: str = "timestamp",
    type_col: str = "usage_type",
    kwh_col: str = "kwh",
    dayfirst: bool = False,
) -> List[DailyUsage]:
    """Read a meter export with one row per interval into daily usage records.

    Rows whose ``type_col`` mentions 'consumption' are grid import; rows
    mentioning 'feed' are export. Sub-hourly intervals are summed into their
    hour. Other row types are dropped with a warning.
    """

    df = _load_frame(source)
    if type_col not in df.columns:
        raise ValueError(f"CSV must contain columns: {type_col}")
    df = _clean_intervals(df, timestamp_col, kwh_col, dayfirst)

    kind = df[type_col].astype(str).str.strip().str.lower()
    is_consumption = kind.str.contains("consumption")
    is_feed_in = kind.str.contains("feed") & ~is_consumption
    unknown = ~(is_consumption | is_feed_in)
    if unknown.any():
        logger.warning(
            "Ignoring %d rows with unrecognised %s values: %s",
            int(unknown.sum()),
            type_col,
            sorted(df.loc[unknown, type_col].astype(str).unique().tolist()),
        )

    consumption = _daily_matrix(df.loc[is_consumption], kwh_col)
    feed_in = _daily_matrix(df.loc[is_feed_in], kwh_col)
    dates = consumption.index.union(feed_in.index)
    consumption = consumption.reindex(dates, fill_value=0.0)
    feed_in = feed_in.reindex(dates, fill_value=0.0)

    records = [
        DailyUsage(
            date=str(date),
            consumption=tuple(float(v) for v in consumption.loc[date].to_numpy()),
            feed_in=tuple(float(v) for v in feed_in.loc[date].to_numpy()),
        )
        for date in dates
    ]
    logger.debug("Parsed %d usage days from %d interval rows", len(records), len(df))
    return records


def read_solar_csv(
    source: Any,
    timestamp_col: str = "timestamp",
    kwh_col: str = "kwh",
    dayfirst: bool = False,
) -> List[DailySolar]:
    """Read interval solar generation into daily records (kWh per hour)."""

    df = _clean_intervals(_load_frame(source), timestamp_col, kwh_col, dayfirst)
    table = _daily_matrix(df, kwh_col)
    records = [
        DailySolar(date=str(date), hourly=tuple(float(v) for v in table.loc[date].to_numpy()))
        for date in table.index
    ]
    logger.debug("Parsed %d solar days from %d interval rows", len(records), len(df))
    return records

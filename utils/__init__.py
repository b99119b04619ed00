"""Utility helpers shared across the services and API modules."""

from utils.economics import amortized_annual_repayment, compute_cash_flow_metrics, future_value
from utils.time_ranges import format_hours_to_ranges, normalize_hours, parse_ranges_to_hours

__all__ = [
    "amortized_annual_repayment",
    "compute_cash_flow_metrics",
    "future_value",
    "format_hours_to_ranges",
    "normalize_hours",
    "parse_ranges_to_hours",
]

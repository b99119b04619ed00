"""Financial helpers for household solar and battery projections."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence


MONTHS_PER_YEAR = 12


@dataclass
class LoanInputs:
    """Loan used to finance the upfront outlay.

    ``annual_interest_rate`` is a fraction (0.069 = 6.9%/year); repayments are
    monthly over ``term_years``.
    """

    principal: float
    annual_interest_rate: float
    term_years: int


@dataclass
class CashFlowOutputs:
    """Cash-flow metrics derived from upfront outlay and annual savings."""

    npv: Optional[float]
    irr_pct: float
    payback_year: Optional[int]
    cumulative_savings: tuple[float, ...]


def _discount_factor(discount_rate: float, year_index: int) -> float:
    """Return the discount factor for a given year index (1-indexed)."""

    return 1.0 / ((1.0 + discount_rate) ** year_index)


def _ensure_non_negative_finite(value: float, name: str) -> None:
    """Raise ValueError when a numeric value is negative or non-finite."""

    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def _validate_loan(loan: LoanInputs) -> None:
    _ensure_non_negative_finite(loan.principal, "principal")
    _ensure_non_negative_finite(loan.annual_interest_rate, "annual_interest_rate")
    if loan.term_years < 0:
        raise ValueError("term_years must be non-negative")


def amortized_annual_repayment(loan: LoanInputs) -> float:
    """Return twelve times the fixed monthly repayment of an amortised loan.

    Uses ``P * i * (1 + i)^n / ((1 + i)^n - 1)`` with monthly rate ``i`` and
    ``n`` total months. A zero-interest loan is repaid linearly; a zero
    principal or term gives no repayment.
    """

    _validate_loan(loan)
    months = int(loan.term_years) * MONTHS_PER_YEAR
    if loan.principal <= 0 or months <= 0:
        return 0.0

    monthly_rate = loan.annual_interest_rate / MONTHS_PER_YEAR
    if monthly_rate == 0:
        return loan.principal / months * MONTHS_PER_YEAR

    growth = (1.0 + monthly_rate) ** months
    monthly_payment = loan.principal * monthly_rate * growth / (growth - 1.0)
    return monthly_payment * MONTHS_PER_YEAR


def future_value(amount: float, rate: float, years: int) -> float:
    """Return ``amount`` compounded annually at ``rate`` for ``years`` years."""

    return amount * (1.0 + rate) ** years


def opportunity_cost_series(outlay: float, rate: float, num_years: int) -> list[float]:
    """Future value of the upfront outlay at the end of each year 1..num_years.

    Informational only: what the capital would have grown to if invested at
    ``rate`` instead of spent on the system.
    """

    return [future_value(outlay, rate, year) for year in range(1, num_years + 1)]


def _compute_npv(cash_flows: Sequence[float], discount_rate: float) -> float:
    """Return the net present value of the provided cash flows."""

    return sum(cf / ((1.0 + discount_rate) ** idx) for idx, cf in enumerate(cash_flows))


def _solve_irr_pct(cash_flows: Sequence[float], max_iterations: int = 200) -> float:
    """Compute IRR (%) using a robust bisection search.

    ``numpy.irr`` was removed in NumPy 2.0, and numpy_financial may not be
    available in all environments. This helper performs a simple bisection
    search for a rate that drives NPV to zero. It returns NaN when cash flows do
    not change sign or when a root cannot be located within the search bounds.
    """

    if not any(cf < 0 for cf in cash_flows) or not any(cf > 0 for cf in cash_flows):
        return float("nan")

    def npv(rate: float) -> float:
        return sum(cf / ((1.0 + rate) ** idx) for idx, cf in enumerate(cash_flows))

    low = -0.99
    high = 1.0
    npv_low = npv(low)
    npv_high = npv(high)

    while npv_low * npv_high > 0 and high < 1000:
        high *= 2.0
        npv_high = npv(high)

    if npv_low * npv_high > 0:
        return float("nan")

    mid = low
    for _ in range(max_iterations):
        mid = (low + high) / 2.0
        npv_mid = npv(mid)
        if abs(npv_mid) < 1e-6:
            return mid * 100.0
        if npv_low * npv_mid < 0:
            high = mid
            npv_high = npv_mid
        else:
            low = mid
            npv_low = npv_mid

    return mid * 100.0 if math.isfinite(mid) else float("nan")


def payback_year(cumulative_net_savings: Sequence[float], outlay: float) -> Optional[int]:
    """Return the first 1-indexed year whose cumulative savings exceed ``outlay``."""

    for year, value in enumerate(cumulative_net_savings, start=1):
        if value > outlay:
            return year
    return None


def compute_cash_flow_metrics(
    outlay: float,
    annual_savings: Sequence[float],
    annual_loan_repayment: float = 0.0,
    discount_rate: Optional[float] = None,
    max_iterations: int = 200,
) -> CashFlowOutputs:
    """Compute cumulative savings, payback year, NPV and IRR.

    ``annual_savings`` are baseline cost minus system cost for years 1..N.
    Cumulative savings deduct the loan repayment every year. NPV is only
    computed when ``discount_rate`` is given. The IRR uses the undiscounted
    ``[-outlay, savings_1, ..., savings_N]`` series.
    """

    _ensure_non_negative_finite(float(annual_loan_repayment), "annual_loan_repayment")
    if discount_rate is not None:
        _ensure_non_negative_finite(float(discount_rate), "discount_rate")
    for idx, value in enumerate(annual_savings, start=1):
        if not math.isfinite(float(value)):
            raise ValueError(f"annual_savings[{idx}] must be a finite number")

    cumulative: list[float] = []
    running = 0.0
    for value in annual_savings:
        running += float(value) - annual_loan_repayment
        cumulative.append(running)

    cash_flows = [-float(outlay)] + [float(v) for v in annual_savings]
    npv = _compute_npv(cash_flows, discount_rate) if discount_rate is not None else None
    irr_pct = _solve_irr_pct(cash_flows, max_iterations=max_iterations)

    return CashFlowOutputs(
        npv=npv,
        irr_pct=irr_pct,
        payback_year=payback_year(cumulative, outlay),
        cumulative_savings=tuple(cumulative),
    )


__all__ = [
    "MONTHS_PER_YEAR",
    "LoanInputs",
    "CashFlowOutputs",
    "amortized_annual_repayment",
    "future_value",
    "opportunity_cost_series",
    "payback_year",
    "compute_cash_flow_metrics",
    "_discount_factor",
    "_ensure_non_negative_finite",
    "_compute_npv",
    "_solve_irr_pct",
]

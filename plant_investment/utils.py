from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)


def year_for_tick(start_year, tick: int) -> int:
    """
    Map a zero-based model tick to a calendar year.

    Parameters:
        start_year: Simulation start year (int).
        tick: Zero-based model tick (int).
    Returns:
        Calendar year (int).
    """
    return int(start_year) + int(tick)


def tick_for_year(start_year, year: int) -> int:
    """
    Map a calendar year to a zero-based model tick.

    Parameters:
        start_year: Simulation start year (int).
        year: Calendar year (int).
    Returns:
        Zero-based model tick (int).
    """
    return int(year) - int(start_year)


def look_back_ticks(current_tick: int, window: int) -> range:
    """
    Ticks inside a forecasting look-back window.

    The window counts the current tick as one of its ticks and is clipped at tick 0,
    so a window of 5 at tick 2 covers ticks 0, 1 and 2.
    """
    first_tick = max(0, int(current_tick) - int(window) + 1)
    return range(first_tick, int(current_tick) + 1)


@dataclass
class TimeSeries:
    """
    A value that changes per tick.

    Explicit per-tick values take precedence; between explicit ticks the latest value at
    or before the tick holds. Without explicit values the series grows geometrically:

        value(t) = start * (1 + growth_rate) ** t
    """

    start: float = 0.0
    growth_rate: float = 0.0
    values: Dict[int, float] = field(default_factory=dict)

    def value(self, tick: int) -> float:
        if self.values:
            if tick in self.values:
                return float(self.values[tick])
            earlier = [t for t in self.values if t <= tick]
            key = max(earlier) if earlier else min(self.values)
            return float(self.values[key])
        return float(self.start * (1 + self.growth_rate) ** tick)


class GeometricTrendRegression:
    """
    Least-squares fit of ln(value) = a + b * time, extrapolated as exp(a + b * time).

    Every observation must be strictly positive. A single observation (or several at
    the same time) yields a flat trend through their geometric mean.
    """

    def __init__(self) -> None:
        self.times: List[float] = []
        self.values: List[float] = []

    def add_data(self, time: float, value: float) -> None:
        if value <= 0 or not math.isfinite(value):
            raise ValueError(
                f"geometric trend needs strictly positive values, got {value} at time {time}"
            )
        self.times.append(float(time))
        self.values.append(float(value))

    def predict(self, time: float) -> float:
        if not self.values:
            raise ValueError("no observations to extrapolate from")
        log_values = np.log(np.asarray(self.values))
        if len(set(self.times)) < 2:
            return float(np.exp(log_values.mean()))
        slope, intercept = np.polyfit(np.asarray(self.times), log_values, 1)
        return float(np.exp(intercept + slope * time))


def forecast_geometric_trend(
    observations: Iterable[Tuple[float, float]], target_tick: int
) -> float:
    """
    Fit a geometric trend through (time, value) observations and predict the value at target_tick.

    Raises:
        ValueError: If there are no observations or a value is not strictly positive.
    """
    regression = GeometricTrendRegression()
    for time, value in observations:
        regression.add_data(time, value)
    return regression.predict(target_tick)


def calculate_investment_cash_flow(
    depreciation_time: int,
    building_time: int,
    total_investment: float,
    operating_profit: float,
) -> Dict[int, float]:
    """
    Build the simple cash-flow schedule of a power plant project.

    Schedule:
      - Ticks 0 .. building_time - 1: equal installments of -total_investment / building_time.
      - Ticks building_time .. building_time + depreciation_time - 1: operating_profit.

    Parameters:
        depreciation_time: Number of operating ticks.
        building_time: Number of construction ticks (>= 1).
        total_investment: Capital spent during construction.
        operating_profit: Flat yearly operating profit once built.
    Returns:
        Mapping tick offset -> cash flow.
    """
    if building_time < 1:
        raise ValueError(f"building_time must be at least 1, got {building_time}")
    installment = total_investment / building_time
    cash_flow = {t: -installment for t in range(building_time)}
    for t in range(building_time, building_time + depreciation_time):
        cash_flow[t] = operating_profit
    return cash_flow


def npv(cash_flow: Dict[int, float], wacc: float) -> float:
    """
    Net present value of a cash-flow schedule.

    Equation:
      - NPV = sum(cash_flow[t] / (1 + wacc) ** t)
    """
    return sum(value / (1 + wacc) ** t for t, value in cash_flow.items())


def calculate_wacc(
    debt_ratio: float,
    equity_interest_rate: float,
    loan_interest_rate: float,
    permit_risk: float = 1.0,
) -> float:
    """Weighted average cost of capital, scaled by the technology's permit-risk multiplier."""
    return (
        (1 - debt_ratio) * equity_interest_rate + debt_ratio * loan_interest_rate
    ) * permit_risk


def determine_loan_annuity(
    total_loan: float, payback_time: int, interest_rate: float
) -> float:
    """
    Equal periodic payment that repays a loan over payback_time periods.

    Equation:
      - annuity = P * r / (1 - (1 + r) ** -n), or P / n when r == 0
    """
    if payback_time <= 0:
        raise ValueError(f"payback_time must be positive, got {payback_time}")
    if math.isclose(interest_rate, 0.0):
        return total_loan / payback_time
    return total_loan * interest_rate / (1 - (1 + interest_rate) ** -payback_time)


def logistic(x: float) -> float:
    """Standard logistic function 1 / (1 + exp(-x)), safe for large |x|."""
    if x < -700:
        return 0.0
    return 1.0 / (1.0 + math.exp(-x))

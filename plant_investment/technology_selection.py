"""
Technology selection.

Every technology is evaluated on a proposed plant at the investor's market node. An
ordered list of named filters screens the proposal (the first rejection ends the
evaluation); survivors are dispatched against the expected segment prices and valued
with a discounted cash flow. The technology with the highest positive NPV per MW wins.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import math

from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.cooldowns import TECHNOLOGY, CooldownRegistry
from plant_investment.domain import (
    ElectricitySpotMarket,
    PowerGridNode,
    Technology,
    TechnologyNodeLimit,
    TechnologyTarget,
)
from plant_investment.merit_order import (
    MarketInformation,
    calculate_fuel_mix,
    determine_expected_marginal_cost,
)
from plant_investment.repository import PlantRepository
from plant_investment.utils import calculate_investment_cash_flow, calculate_wacc, npv

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_FRACTION_OF_PEAK_LOAD = 0.2
DEFAULT_TECHNOLOGY_PIPELINE_MULTIPLE = 2.0
DEFAULT_TECHNOLOGY_PIPELINE_FLOOR = 9000.0


@dataclass
class FilterResult:
    accepted: bool
    reason: str = ""


ACCEPT = FilterResult(True)


def reject(reason: str) -> FilterResult:
    return FilterResult(False, reason)


@dataclass
class SelectionContext:
    """
    Everything a technology evaluation reads.

    Attributes:
        agent: Investing energy producer (cash, financing and portfolio parameters).
        market: Investor's market.
        node: Grid node of the market's zone.
        tick: Current tick.
        future_tick: Tick the expectations are formed for.
        market_information: Expected merit-order outcome at future_tick.
        fuel_prices: Expected fuel prices by substance name.
        co2_price: Expected CO2 price.
        repository: Fleet of committed plants.
        cooldowns: Shared cooldown registry.
        technology_targets: Policy targets (raise the expected capacity of a technology).
        node_limits: Capacity limits per technology and node.
        ccs_places_used: CCS places taken by existing plants in the node.
        config: Model configuration.
    """

    agent: Any
    market: ElectricitySpotMarket
    node: PowerGridNode
    tick: int
    future_tick: int
    market_information: MarketInformation
    fuel_prices: Dict[str, float]
    co2_price: float
    repository: PlantRepository
    cooldowns: CooldownRegistry
    technology_targets: Sequence[TechnologyTarget] = ()
    node_limits: Sequence[TechnologyNodeLimit] = ()
    ccs_places_used: float = 0.0
    config: Dict[str, Any] = field(default_factory=dict)

    def expected_technology_capacity(self, technology: Technology) -> float:
        """Expected market capacity of a technology, raised to its policy target if higher."""
        expected = self.repository.operational_capacity(
            self.future_tick, market=self.market, technology=technology
        )
        for target in self.technology_targets:
            if target.technology is technology and target.market is self.market:
                expected = max(expected, target.trend.value(self.future_tick))
        return expected

    def node_limit(self, technology: Technology) -> float:
        for limit in self.node_limits:
            if limit.technology is technology and limit.node is self.node:
                return limit.get_upper_capacity_limit(self.future_tick)
        return math.inf


def check_ccs_headroom(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    technology = plant.technology
    if technology.carbon_capture_required and (
        context.node.maximum_ccs_in_node - context.ccs_places_used <= 0
    ):
        context.cooldowns.block_technology(
            technology, context.tick, context.node.time_not_using_tech
        )
        logger.warning(
            f"{context.agent} will not invest in {technology.name}: no CCS capacity left in {context.node.name}"
        )
        return reject("no CCS capacity left in node")
    return ACCEPT


def check_cooldown(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    if not context.cooldowns.technology_available(plant.technology, context.tick):
        return reject("no suitable location previously; technology in cooldown")
    return ACCEPT


def check_country_share(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    technology = plant.technology
    capacity = plant.actual_nominal_capacity
    share = (context.expected_technology_capacity(technology) + capacity) / (
        context.market_information.max_expected_load + capacity
    )
    if share > technology.maximum_installed_capacity_fraction_in_country:
        return reject(f"market share {share:.3f} above country cap")
    return ACCEPT


def check_node_limit(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    technology = plant.technology
    expected_in_node = context.repository.operational_capacity(
        context.future_tick, node=context.node, technology=technology
    )
    if expected_in_node + plant.actual_nominal_capacity > context.node_limit(technology):
        return reject("node capacity limit reached")
    return ACCEPT


def check_agent_share(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    technology = plant.technology
    owned_total = context.repository.operational_capacity(
        context.future_tick, market=context.market, owner=context.agent
    )
    owned_technology = context.repository.operational_capacity(
        context.future_tick, market=context.market, technology=technology, owner=context.agent
    )
    if owned_technology > owned_total * technology.maximum_installed_capacity_fraction_per_agent:
        return reject("too much of own portfolio in this technology")
    return ACCEPT


def check_market_pipeline(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    fraction = float(
        context.config.get("pipeline_fraction_of_peak_load", DEFAULT_PIPELINE_FRACTION_OF_PEAK_LOAD)
    )
    in_pipeline = context.repository.pipeline_capacity(context.tick, market=context.market)
    if in_pipeline > fraction * context.market_information.max_expected_load:
        return reject(f"{in_pipeline:.0f} MW in market pipeline")
    return ACCEPT


def check_technology_pipeline(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    multiple = float(
        context.config.get("technology_pipeline_multiple", DEFAULT_TECHNOLOGY_PIPELINE_MULTIPLE)
    )
    floor = float(
        context.config.get("technology_pipeline_floor", DEFAULT_TECHNOLOGY_PIPELINE_FLOOR)
    )
    technology = plant.technology
    in_pipeline = context.repository.pipeline_capacity(context.tick, technology=technology)
    operational = context.repository.operational_capacity(context.tick, technology=technology)
    # the floor keeps a technology buildable before any of it is operational
    if in_pipeline > multiple * operational and in_pipeline > floor:
        return reject(f"{in_pipeline:.0f} MW of technology in pipeline")
    return ACCEPT


def check_downpayment(context: SelectionContext, plant: PowerPlant) -> FilterResult:
    agent = context.agent
    equity = plant.actual_invested_capital * (1 - agent.debt_ratio_of_investments)
    if equity > agent.downpayment_fraction_of_cash * agent.cash:
        return reject("not enough cash for down payment")
    return ACCEPT


TechnologyFilter = Callable[[SelectionContext, PowerPlant], FilterResult]

TECHNOLOGY_FILTERS: List[Tuple[str, TechnologyFilter]] = [
    ("ccs_headroom", check_ccs_headroom),
    ("cooldown", check_cooldown),
    ("country_share", check_country_share),
    ("node_limit", check_node_limit),
    ("agent_share", check_agent_share),
    ("market_pipeline", check_market_pipeline),
    ("technology_pipeline", check_technology_pipeline),
    ("downpayment", check_downpayment),
]


@dataclass
class TechnologyEvaluation:
    """
    Outcome of evaluating one technology.

    rejected_by names the filter (or "running_hours") that stopped the evaluation; the
    financial fields are only filled for technologies that passed every filter.
    """

    technology: Technology
    plant: PowerPlant
    rejected_by: Optional[str] = None
    reason: str = ""
    expected_marginal_cost: Optional[float] = None
    running_hours: float = 0.0
    gross_profit: float = 0.0
    fixed_operating_cost: float = 0.0
    operating_profit: float = 0.0
    wacc: Optional[float] = None
    npv: Optional[float] = None
    npv_delay: Optional[float] = None

    @property
    def eligible(self) -> bool:
        return self.rejected_by is None

    @property
    def npv_per_mw(self) -> Optional[float]:
        if self.npv is None:
            return None
        return self.npv / self.plant.actual_nominal_capacity


def evaluate_project_value(
    technology: Technology, lead_time: int, invested_capital: float, operating_profit: float, wacc: float
) -> float:
    """NPV of building over lead_time ticks and earning operating_profit for the depreciation time."""
    capital_outflow = calculate_investment_cash_flow(
        technology.depreciation_time, lead_time, invested_capital, 0.0
    )
    cash_inflow = calculate_investment_cash_flow(
        technology.depreciation_time, lead_time, 0.0, operating_profit
    )
    return npv(capital_outflow, wacc) + npv(cash_inflow, wacc)


class TechnologySelector:
    """Screens and values every technology and picks the best one for an investor."""

    def __init__(self, filters: Optional[Sequence[Tuple[str, TechnologyFilter]]] = None) -> None:
        self.filters: List[Tuple[str, TechnologyFilter]] = list(
            TECHNOLOGY_FILTERS if filters is None else filters
        )

    def propose_plant(self, context: SelectionContext, technology: Technology) -> PowerPlant:
        return PowerPlant(
            technology,
            owner=context.agent,
            node=context.node,
            site=None,
            construction_start_tick=context.tick,
            plant_id=f"proposal_{technology.name}",
        )

    def evaluate(self, context: SelectionContext, technology: Technology) -> TechnologyEvaluation:
        """
        Evaluate one technology.

        Logic:
          - An expired technology cooldown is released first.
          - Filters run in order; the first rejection ends the evaluation.
          - Dispatch against the expected segment prices: a segment counts when the expected
            marginal cost is at or below its price, adding its hours to the running hours and
            (price - marginal cost) * hours * available capacity to the gross profit.
          - Fewer running hours than the technology minimum rejects the technology.
          - Operating profit = gross profit - fixed O&M.
          - WACC = (equity share * equity rate + debt share * loan rate) * permit risk.
          - NPV for the nominal and the delayed lead time.
        """
        context.cooldowns.release_expired(TECHNOLOGY, technology.name, context.tick)
        plant = self.propose_plant(context, technology)
        evaluation = TechnologyEvaluation(technology=technology, plant=plant)

        for name, check in self.filters:
            result = check(context, plant)
            if not result.accepted:
                evaluation.rejected_by = name
                evaluation.reason = result.reason
                logger.debug(f"{context.agent} rejects {technology.name} ({name}): {result.reason}")
                return evaluation

        plant.fuel_mix = calculate_fuel_mix(technology, context.fuel_prices, context.co2_price)
        marginal_cost = determine_expected_marginal_cost(plant, context.fuel_prices, context.co2_price)
        evaluation.expected_marginal_cost = marginal_cost

        load_duration_curve = context.market.load_duration_curve
        number_of_segments = len(load_duration_curve)
        for segment_load in load_duration_curve:
            segment = segment_load.segment
            price = context.market_information.expected_prices[segment.segment_id]
            if marginal_cost <= price:
                evaluation.running_hours += segment.length_in_hours
                evaluation.gross_profit += (
                    (price - marginal_cost)
                    * segment.length_in_hours
                    * plant.get_available_capacity(segment, number_of_segments)
                )

        if evaluation.running_hours < technology.minimum_running_hours:
            evaluation.rejected_by = "running_hours"
            evaluation.reason = (
                f"expected {evaluation.running_hours:.0f} running hours, "
                f"minimum is {technology.minimum_running_hours:.0f}"
            )
            logger.debug(f"{context.agent} rejects {technology.name}: {evaluation.reason}")
            return evaluation

        agent = context.agent
        evaluation.fixed_operating_cost = (
            technology.fixed_operating_cost.value(context.tick) * plant.actual_nominal_capacity
        )
        evaluation.operating_profit = evaluation.gross_profit - evaluation.fixed_operating_cost
        evaluation.wacc = calculate_wacc(
            agent.debt_ratio_of_investments,
            agent.equity_interest_rate,
            agent.loan_interest_rate,
            technology.permit_risk,
        )
        evaluation.npv = evaluate_project_value(
            technology,
            technology.expected_leadtime,
            plant.actual_invested_capital,
            evaluation.operating_profit,
            evaluation.wacc,
        )
        evaluation.npv_delay = evaluate_project_value(
            technology,
            technology.expected_leadtime_delay,
            plant.actual_invested_capital,
            evaluation.operating_profit,
            evaluation.wacc,
        )
        logger.debug(
            f"{agent} values {technology.name}: NPV {evaluation.npv:,.0f}, "
            f"delayed NPV {evaluation.npv_delay:,.0f}, {evaluation.running_hours:.0f} h"
        )
        return evaluation

    def select(
        self, context: SelectionContext, technologies: Iterable[Technology]
    ) -> Tuple[Optional[TechnologyEvaluation], List[TechnologyEvaluation]]:
        """
        Pick the technology with the highest positive NPV per MW.

        Technologies are evaluated in name order and a later technology only wins with a
        strictly higher metric. The winner's NPV and delayed NPV are stored on the technology.

        Returns:
            (best evaluation or None, all evaluations)
        """
        best: Optional[TechnologyEvaluation] = None
        evaluations = []
        for technology in sorted(technologies, key=lambda t: t.name):
            evaluation = self.evaluate(context, technology)
            evaluations.append(evaluation)
            if not evaluation.eligible or evaluation.npv <= 0:
                continue
            if best is None or evaluation.npv_per_mw > best.npv_per_mw:
                best = evaluation
        if best is not None:
            best.technology.npv = best.npv
            best.technology.npv_delay = best.npv_delay
            logger.info(
                f"{context.agent} selects {best.technology.name} with NPV {best.npv:,.0f} "
                f"({best.npv_per_mw:,.0f} per MW)"
            )
        return best, evaluations

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.domain import (
    ElectricitySpotMarket,
    PowerGridNode,
    SegmentLoad,
    StrategicReserve,
    Substance,
    Technology,
    TechnologyTarget,
)
from plant_investment.errors import MissingReferenceDataError
from plant_investment.repository import PlantRepository

logger = logging.getLogger(__name__)

# GJ per MWh
MWH_TO_GJ = 3.6


def fuel_price(fuel_prices: Dict[str, float], substance: Substance) -> float:
    try:
        return fuel_prices[substance.name]
    except KeyError:
        raise MissingReferenceDataError(
            f"no expected price for substance {substance.name}"
        ) from None


def calculate_fuel_mix(
    technology: Technology, fuel_prices: Dict[str, float], co2_price: float
) -> Dict[Substance, float]:
    """
    Fuel amount per MWh for a technology at the given prices.

    Logic:
      - Amount of a fuel per MWh = 3.6 / (efficiency * energy density).
      - Among the technology's fuels the one with the lowest fuel plus CO2 cost per MWh
        is used for the full output (first fuel wins ties).
      - Technologies without fuels have an empty mix.
    """
    best: Optional[Tuple[Substance, float]] = None
    best_cost = None
    retained = 1 - technology.co2_capture_efficiency
    for fuel in technology.fuels:
        amount = MWH_TO_GJ / (technology.efficiency * fuel.energy_density)
        cost = amount * (fuel_price(fuel_prices, fuel) + fuel.co2_density * retained * co2_price)
        if best_cost is None or cost < best_cost:
            best_cost = cost
            best = (fuel, amount)
    return {best[0]: best[1]} if best else {}


def determine_expected_marginal_cost(
    plant: PowerPlant, fuel_prices: Dict[str, float], co2_price: float
) -> float:
    """
    Expected marginal cost of a plant.

    Equation:
      - MC = sum(fuel share * expected fuel price) + emission intensity * expected CO2 price

    Plants without a fixed fuel mix are evaluated with the cheapest mix at the given prices.
    """
    mix = plant.fuel_mix or calculate_fuel_mix(plant.technology, fuel_prices, co2_price)
    fuel_cost = sum(amount * fuel_price(fuel_prices, fuel) for fuel, amount in mix.items())
    return fuel_cost + plant.calculate_emission_intensity(mix) * co2_price


@dataclass
class MarketInformation:
    """
    Expected outcome of a market at a future tick.

    Attributes:
        expected_prices: Expected electricity price per segment id.
        max_expected_load: Highest expected segment load.
        merit_order: (plant, marginal cost) pairs in ascending cost order.
        capacity_sum: Nominal capacity of all plants in the merit order.
    """

    expected_prices: Dict[int, float] = field(default_factory=dict)
    max_expected_load: float = 0.0
    merit_order: List[Tuple[PowerPlant, float]] = field(default_factory=list)
    capacity_sum: float = 0.0


def resolve_segment_price(
    segment_supply: float,
    total_capacity_available: float,
    expected_segment_load: float,
    merit_order_price: float,
    value_of_lost_load: float,
    reserve: Optional[StrategicReserve] = None,
) -> float:
    """
    Expected price of one segment.

    Logic:
      - Supply meets demand with a margin above the reserve volume: merit-order price.
      - Supply meets demand with a margin within the reserve volume: reserve price.
      - Supply falls short by no more than the reserve volume: reserve price.
      - Otherwise: value of lost load.
    Without a strategic reserve the reserve volume is zero and never sets the price while
    supply meets demand.
    """
    reserve_volume = reserve.reserve_volume if reserve is not None else 0.0
    margin = total_capacity_available - expected_segment_load
    if segment_supply >= expected_segment_load:
        if reserve is not None and reserve_volume > 0 and margin <= reserve_volume:
            return reserve.reserve_price
        return merit_order_price
    if reserve is not None and -margin <= reserve_volume:
        return reserve.reserve_price
    return value_of_lost_load


def clear_expected_segments(
    merit_order: Sequence[Tuple[PowerPlant, float]],
    load_duration_curve: Sequence[SegmentLoad],
    demand_factor: float,
    value_of_lost_load: float,
    reserve: Optional[StrategicReserve] = None,
) -> Tuple[Dict[int, float], float]:
    """
    Walk the merit order for every segment of the load-duration curve.

    Per segment:
      - Expected load = base load * demand factor.
      - Plants are added in merit order until accumulated supply reaches the load; the
        marginal cost of the last plant added is the merit-order price.
      - Available capacity is segment-dependent (see PowerPlant.get_available_capacity).

    Returns:
        (expected price per segment id, max expected load)
    """
    number_of_segments = len(load_duration_curve)
    expected_prices: Dict[int, float] = {}
    max_expected_load = 0.0
    for segment_load in load_duration_curve:
        segment = segment_load.segment
        expected_segment_load = segment_load.base_load * demand_factor
        max_expected_load = max(max_expected_load, expected_segment_load)
        segment_supply = 0.0
        segment_price = 0.0
        total_capacity_available = 0.0
        for plant, marginal_cost in merit_order:
            plant_capacity = plant.get_available_capacity(segment, number_of_segments)
            total_capacity_available += plant_capacity
            if segment_supply < expected_segment_load:
                segment_supply += plant_capacity
                segment_price = marginal_cost
        expected_prices[segment.segment_id] = resolve_segment_price(
            segment_supply,
            total_capacity_available,
            expected_segment_load,
            segment_price,
            value_of_lost_load,
            reserve,
        )
        logger.debug(
            f"Segment {segment.segment_id}: load {expected_segment_load:.1f}, "
            f"supply {segment_supply:.1f}, price {expected_prices[segment.segment_id]:.2f}"
        )
    return expected_prices, max_expected_load


class MeritOrderEngine:
    """
    Simulates the expected dispatch of a market at a future tick.

    The merit order holds every plant expected to be operational in the market plus one
    shortfall plant per technology target whose target exceeds the expected capacity of
    that technology.
    """

    def __init__(
        self,
        repository: PlantRepository,
        technology_targets: Iterable[TechnologyTarget] = (),
    ) -> None:
        self.repository = repository
        self.technology_targets: List[TechnologyTarget] = list(technology_targets)

    def targets_for_market(self, market: ElectricitySpotMarket) -> List[TechnologyTarget]:
        return [target for target in self.technology_targets if target.market is market]

    def target_shortfall_plants(
        self, market: ElectricitySpotMarket, node: Optional[PowerGridNode], tick: int, current_tick: int
    ) -> List[PowerPlant]:
        plants = []
        for target in self.targets_for_market(market):
            expected_capacity = self.repository.operational_capacity(
                tick, market=market, technology=target.technology
            )
            shortfall = target.trend.value(tick) - expected_capacity
            if shortfall > 0:
                plants.append(
                    PowerPlant(
                        target.technology,
                        owner=None,
                        node=node,
                        construction_start_tick=current_tick,
                        capacity=shortfall,
                        plant_id=f"target_{target.technology.name}_{market.name}",
                    )
                )
        return plants

    def expected_market_information(
        self,
        market: ElectricitySpotMarket,
        demand_factor: float,
        fuel_prices: Dict[str, float],
        co2_price: float,
        tick: int,
        node: Optional[PowerGridNode] = None,
        current_tick: int = 0,
    ) -> MarketInformation:
        """
        Build the expected merit order and segment prices of a market.

        Parameters:
            market: Market to simulate.
            demand_factor: Expected demand multiplier of the market at tick.
            fuel_prices: Expected fuel prices by substance name.
            co2_price: Expected CO2 price.
            tick: Future tick the expectation is for.
            node: Grid node hosting target shortfall plants.
            current_tick: Tick the expectation is formed at.
        Returns:
            MarketInformation with per-segment prices and max expected load.
        """
        plants = self.repository.operational_plants(tick, market=market)
        plants += self.target_shortfall_plants(market, node, tick, current_tick)
        costed = [
            (plant, determine_expected_marginal_cost(plant, fuel_prices, co2_price))
            for plant in plants
        ]
        merit_order = sorted(costed, key=lambda item: (item[1], item[0].plant_id))
        expected_prices, max_expected_load = clear_expected_segments(
            merit_order,
            market.load_duration_curve,
            demand_factor,
            market.value_of_lost_load,
            market.strategic_reserve,
        )
        return MarketInformation(
            expected_prices=expected_prices,
            max_expected_load=max_expected_load,
            merit_order=merit_order,
            capacity_sum=sum(plant.actual_nominal_capacity for plant in plants),
        )

"""
Domain records of the electricity investment model.

Substances, technologies, candidate sites, grid nodes, local authorities, opposition
parties, spot markets and the policy records attached to them. Records validate their
parameters after initialization and raise ConfigurationError on values that would make
later calculations undefined.

Entities with mutable state (technologies, sites, nodes, authorities) compare by
identity: the same object is shared by every agent of the simulation.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import math

from plant_investment.errors import ConfigurationError
from plant_investment.utils import TimeSeries

FUEL = "fuel"
WIND = "wind"
OFFSHORE_WIND = "offshore_wind"
SOLAR = "solar"
TECHNOLOGY_CATEGORIES = (FUEL, WIND, OFFSHORE_WIND, SOLAR)


@dataclass(frozen=True)
class Substance:
    """
    A fuel (or CO2) traded on a commodity market.

    Attributes:
        name: Unique substance name.
        energy_density: Energy content per unit of substance (GJ/unit).
        co2_density: CO2 emitted per unit of substance burned (tonne/unit).
    """

    name: str
    energy_density: float = 1.0
    co2_density: float = 0.0

    def __post_init__(self):
        if self.energy_density <= 0:
            raise ConfigurationError(
                f"energy_density of {self.name} must be positive, got {self.energy_density}"
            )
        if self.co2_density < 0:
            raise ConfigurationError(
                f"co2_density of {self.name} cannot be negative, got {self.co2_density}"
            )


@dataclass(eq=False)
class Technology:
    """
    A power generating technology an investor can build.

    Attributes:
        name: Unique technology name.
        category: Resource category (fuel, wind, offshore_wind, solar); drives site eligibility
            and the site/authority utility formulas.
        capacity: Nominal capacity of one plant (MW).
        fuels: Candidate fuels; the first is the main fuel matched against site feedstocks.
        efficiency: Electrical efficiency (fraction of fuel energy converted).
        investment_cost: Investment cost per MW over time.
        fixed_operating_cost: Fixed O&M cost per MW per tick over time.
        depreciation_time: Operating ticks of the DCF evaluation and loan term.
        expected_leadtime: Nominal construction ticks.
        expected_leadtime_delay: Construction ticks if building is delayed by local opposition.
        expected_permittime: Permit ticks before construction counts down.
        expected_lifetime: Operating ticks before dismantling.
        minimum_running_hours: Minimum expected running hours per tick for an investment.
        maximum_installed_capacity_fraction_in_country: Cap on the technology's share of peak load.
        maximum_installed_capacity_fraction_per_agent: Cap on the technology's share of an agent's portfolio.
        carbon_capture_required: Whether the technology needs CCS capacity and CCS-capable sites.
        co2_capture_efficiency: Fraction of CO2 captured.
        ccs_places: CCS places one plant uses in its node.
        peak_segment_dependent_availability: Availability factor in the peak segment.
        base_segment_dependent_availability: Availability factor in the base segment.
        environmental_costs: Environmental burden assessed by local authorities.
        employment: Jobs created, assessed by local authorities.
        technology_preference: Public preference score assessed by local parties.
        feedstock_id: Family used to count prior plants in a province (defaults to the main fuel
            or the category).
        permit_risk: WACC multiplier updated from permit negotiation experience.
        npv / npv_delay: Last evaluation result (nominal and delayed construction).
        compensation_paid / number_of_investments: Cumulative negotiation bookkeeping.
    """

    name: str
    category: str
    capacity: float
    fuels: List[Substance] = field(default_factory=list)
    efficiency: float = 1.0
    investment_cost: TimeSeries = field(default_factory=TimeSeries)
    fixed_operating_cost: TimeSeries = field(default_factory=TimeSeries)
    depreciation_time: int = 20
    expected_leadtime: int = 1
    expected_leadtime_delay: Optional[int] = None
    expected_permittime: int = 0
    expected_lifetime: int = 40
    minimum_running_hours: float = 0.0
    maximum_installed_capacity_fraction_in_country: float = 1.0
    maximum_installed_capacity_fraction_per_agent: float = 1.0
    carbon_capture_required: bool = False
    co2_capture_efficiency: float = 0.0
    ccs_places: float = 1.0
    peak_segment_dependent_availability: float = 1.0
    base_segment_dependent_availability: float = 1.0
    environmental_costs: float = 0.0
    employment: float = 0.0
    technology_preference: float = 0.0
    feedstock_id: Optional[str] = None
    permit_risk: float = 1.0
    npv: float = 0.0
    npv_delay: float = 0.0
    compensation_paid: float = 0.0
    number_of_investments: int = 0

    def __post_init__(self):
        if self.category not in TECHNOLOGY_CATEGORIES:
            raise ConfigurationError(
                f"category of {self.name} must be one of {TECHNOLOGY_CATEGORIES}, got {self.category!r}"
            )
        if self.capacity <= 0:
            raise ConfigurationError(
                f"capacity of {self.name} must be positive, got {self.capacity}"
            )
        if self.expected_leadtime < 1:
            raise ConfigurationError(
                f"expected_leadtime of {self.name} must be at least 1, got {self.expected_leadtime}"
            )
        if self.expected_leadtime_delay is None:
            self.expected_leadtime_delay = self.expected_leadtime
        if self.expected_leadtime_delay < self.expected_leadtime:
            raise ConfigurationError(
                f"expected_leadtime_delay of {self.name} ({self.expected_leadtime_delay}) "
                f"cannot be shorter than expected_leadtime ({self.expected_leadtime})"
            )
        if self.depreciation_time < 1:
            raise ConfigurationError(
                f"depreciation_time of {self.name} must be at least 1, got {self.depreciation_time}"
            )
        if self.category == FUEL and not self.fuels:
            raise ConfigurationError(f"fuel technology {self.name} needs at least one fuel")
        if self.fuels and self.efficiency <= 0:
            raise ConfigurationError(
                f"efficiency of {self.name} must be positive, got {self.efficiency}"
            )
        if self.feedstock_id is None:
            self.feedstock_id = self.main_fuel.name if self.main_fuel else self.category

    @property
    def main_fuel(self) -> Optional[Substance]:
        return self.fuels[0] if self.fuels else None

    @property
    def is_wind(self) -> bool:
        return self.category in (WIND, OFFSHORE_WIND)

    def __repr__(self) -> str:
        return f"Technology(name='{self.name}', category='{self.category}', capacity={self.capacity})"


@dataclass(eq=False)
class Site:
    """
    A candidate location for new power plants.

    Resource attributes feed the investor's site utility; the weight factors belong to the
    local population and feed the opposition-party utility. Permit bookkeeping fields are
    updated by the permit negotiation.
    """

    name: str
    province: str
    population_density: float = 0.0
    wealth: float = 0.0
    distance_grid: float = 0.0
    quality_water: float = 0.0
    depth_water: float = 0.0
    wind_power: float = 0.0
    sun_hours: float = 0.0
    distance_shore: float = 0.0
    offshore: bool = False
    wind_available: bool = False
    sun_available: bool = False
    ccs_available: bool = False
    feedstocks: List[str] = field(default_factory=list)
    possible_plants: float = 1.0
    weight_factor_density: float = 1.0
    weight_factor_wealth: float = 1.0
    weight_factor_tech_pref: float = 1.0
    weight_factor_compensation: float = 1.0
    effectiveness_compensation: float = 1.0
    court_chance: float = 0.0
    permit_tries: int = 0
    count_permit_failures: int = 0
    local_party_compensation: float = 0.0
    total_compensation_paid: float = 0.0
    average_utility: float = 0.0
    utility: float = 0.0

    def __post_init__(self):
        if not 0 <= self.court_chance <= 1:
            raise ConfigurationError(
                f"court_chance of site {self.name} must be between 0 and 1, got {self.court_chance}"
            )
        if self.effectiveness_compensation <= 0:
            raise ConfigurationError(
                f"effectiveness_compensation of site {self.name} must be positive, "
                f"got {self.effectiveness_compensation}"
            )

    def __repr__(self) -> str:
        return f"Site(name='{self.name}', province='{self.province}', offshore={self.offshore})"


@dataclass(eq=False)
class PowerGridNode:
    """
    Grid node of a market zone.

    Holds the normalization bounds (min/max and delta per dimension) shared by every utility
    formula, the compensation step sizes of the permit negotiation, the cooldown durations for
    technologies and sites, and the number of sites assessed per negotiation round.
    """

    name: str
    zone: str
    min_population_density: float = 0.0
    max_population_density: float = 0.0
    delta_population_density: float = 1.0
    min_wealth: float = 0.0
    max_wealth: float = 0.0
    delta_wealth: float = 1.0
    max_technology_preference: float = 0.0
    delta_technology_preference: float = 1.0
    max_distance_grid: float = 0.0
    delta_distance_grid: float = 1.0
    min_quality_water: float = 0.0
    delta_quality_water: float = 1.0
    min_wind_power: float = 0.0
    delta_wind_power: float = 1.0
    max_water_depth: float = 0.0
    delta_water_depth: float = 1.0
    max_distance_shore: float = 0.0
    delta_distance_shore: float = 1.0
    min_sun_hours: float = 0.0
    delta_sun_hours: float = 1.0
    min_environmental_costs: float = 0.0
    delta_environmental_costs: float = 1.0
    min_employment: float = 0.0
    delta_employment: float = 1.0
    min_plants_of_technology: float = 0.0
    delta_plants_of_technology: float = 1.0
    delta_plants_of_technology_wind: float = 1.0
    max_compensation_government_percentage_of_investment: float = 1.0
    compensation_government: float = 0.0
    compensation_locals: float = 0.0
    time_not_using_tech: int = 1
    time_not_using_location: int = 1
    number_of_locations_assessed: int = 3
    maximum_ccs_in_node: float = math.inf

    def __post_init__(self):
        if self.number_of_locations_assessed < 1:
            raise ConfigurationError(
                f"number_of_locations_assessed of node {self.name} must be at least 1, "
                f"got {self.number_of_locations_assessed}"
            )
        if self.compensation_government < 0 or self.compensation_locals < 0:
            raise ConfigurationError(
                f"compensation steps of node {self.name} cannot be negative"
            )
        if self.max_compensation_government_percentage_of_investment <= 0:
            raise ConfigurationError(
                f"max_compensation_government_percentage_of_investment of node {self.name} must be positive, "
                f"got {self.max_compensation_government_percentage_of_investment}"
            )

    def gap(self, value: float, bound: str, delta: str) -> float:
        """
        Normalized gap (value - bound) / delta for one utility dimension.

        Raises:
            ConfigurationError: If the delta is zero or not finite.
        """
        scale = getattr(self, delta)
        if scale == 0 or not math.isfinite(scale):
            raise ConfigurationError(
                f"node {self.name} has an unusable normalization range {delta}={scale}"
            )
        return (value - getattr(self, bound)) / scale

    def __repr__(self) -> str:
        return f"PowerGridNode(name='{self.name}', zone='{self.zone}')"


@dataclass(eq=False)
class LocalGovernment:
    """
    Authority of a province that grants permits.

    The weight_* factors score a proposed plant; the weight_factor_* factors scale the
    size of the local opposition.
    """

    name: str
    weight_environment: float = 1.0
    weight_employment: float = 1.0
    weight_previous: float = 1.0
    weight_compensation: float = 1.0
    weight_factor_density: float = 1.0
    weight_factor_wealth: float = 1.0
    weight_factor_preference: float = 1.0


@dataclass
class OppositionParty:
    """A local party created for one permit negotiation and discarded afterwards."""

    index: int
    sensitivity: float
    compensation: float = 0.0
    utility: float = 0.0

    @property
    def name(self) -> str:
        return f"Party{self.index}"


@dataclass(frozen=True)
class Segment:
    """Slice of the load-duration curve; segment 1 is the peak."""

    segment_id: int
    length_in_hours: float


@dataclass(frozen=True)
class SegmentLoad:
    """Base load of a market in one segment, as a multiple of the demand factor."""

    segment: Segment
    base_load: float


@dataclass(frozen=True)
class StrategicReserve:
    """Out-of-market capacity that sets the price when spare capacity is tight."""

    reserve_price: float
    reserve_volume: float


@dataclass(eq=False)
class ElectricitySpotMarket:
    """
    An electricity spot market.

    Attributes:
        name: Unique market name.
        zone: Zone whose grid node hosts the market.
        demand_growth_trend: Demand multiplier over time.
        load_duration_curve: Segment loads, peak segment first.
        value_of_lost_load: Price when forecast supply cannot meet demand.
        strategic_reserve: Optional reserve operator of the market.
    """

    name: str
    zone: str
    demand_growth_trend: TimeSeries = field(default_factory=lambda: TimeSeries(start=1.0))
    load_duration_curve: List[SegmentLoad] = field(default_factory=list)
    value_of_lost_load: float = 2000.0
    strategic_reserve: Optional[StrategicReserve] = None

    def __repr__(self) -> str:
        return f"ElectricitySpotMarket(name='{self.name}', zone='{self.zone}')"


@dataclass(eq=False)
class TechnologyTarget:
    """Policy target for the installed capacity of a technology in a market."""

    technology: Technology
    market: ElectricitySpotMarket
    trend: TimeSeries


@dataclass(eq=False)
class TechnologyNodeLimit:
    """Upper bound on the installed capacity of a technology in a grid node."""

    technology: Technology
    node: PowerGridNode
    upper_capacity_limit: TimeSeries

    def get_upper_capacity_limit(self, tick: int) -> float:
        return self.upper_capacity_limit.value(tick)


@dataclass(eq=False)
class FinancialParty:
    """A counterparty of the investors' obligations: the plant manufacturer or the bank."""

    name: str
    cash: float = 0.0


def index_by_name(items) -> Dict[str, object]:
    """Map name -> item, rejecting duplicate names."""
    indexed = {}
    for item in items:
        if item.name in indexed:
            raise ConfigurationError(f"duplicate name {item.name!r}")
        indexed[item.name] = item
    return indexed

from __future__ import annotations
from collections import namedtuple
from typing import Any, Dict, Iterable, List, Optional
import logging

from plant_investment.cooldowns import SITE, CooldownRegistry
from plant_investment.domain import FUEL, OFFSHORE_WIND, SOLAR, WIND, PowerGridNode, Site, Technology
from plant_investment.repository import PlantRepository

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_PLANT_CAPACITY = 500.0

# attribute of the site, node bound, node delta, sign, investor weight
UtilityDimension = namedtuple("UtilityDimension", ["attribute", "bound", "delta", "sign", "weight"])

POPULATION_DENSITY = UtilityDimension(
    "population_density", "max_population_density", "delta_population_density", -1, "weight_factor_density"
)
WEALTH = UtilityDimension("wealth", "max_wealth", "delta_wealth", -1, "weight_factor_wealth")
DISTANCE_GRID = UtilityDimension(
    "distance_grid", "max_distance_grid", "delta_distance_grid", -1, "weight_factor_distance"
)
QUALITY_WATER = UtilityDimension(
    "quality_water", "min_quality_water", "delta_quality_water", 1, "weight_factor_feedstock"
)
WIND_POWER = UtilityDimension("wind_power", "min_wind_power", "delta_wind_power", 1, "weight_factor_feedstock")
SUN_HOURS = UtilityDimension("sun_hours", "min_sun_hours", "delta_sun_hours", 1, "weight_factor_feedstock")
DEPTH_WATER = UtilityDimension(
    "depth_water", "max_water_depth", "delta_water_depth", -1, "weight_factor_depth_water"
)
DISTANCE_SHORE = UtilityDimension(
    "distance_shore", "max_distance_shore", "delta_distance_shore", -1, "weight_factor_distance_shore"
)

COMMON_DIMENSIONS = [POPULATION_DENSITY, WEALTH, DISTANCE_GRID]

UTILITY_DIMENSIONS: Dict[str, List[UtilityDimension]] = {
    FUEL: COMMON_DIMENSIONS + [QUALITY_WATER],
    WIND: COMMON_DIMENSIONS + [WIND_POWER],
    SOLAR: COMMON_DIMENSIONS + [SUN_HOURS],
    OFFSHORE_WIND: COMMON_DIMENSIONS + [WIND_POWER, DEPTH_WATER, DISTANCE_SHORE],
}


def calculate_site_utility(agent: Any, site: Site, node: PowerGridNode, category: str) -> float:
    """
    Investor utility of a site for a technology category.

    Equation:
      - U = sum over dimensions of (site value - node bound) / node delta * sign * agent weight

    Raises:
        ConfigurationError: If a dimension used by the category has a zero delta.
    """
    utility = 0.0
    for dimension in UTILITY_DIMENSIONS[category]:
        gap = node.gap(getattr(site, dimension.attribute), dimension.bound, dimension.delta)
        utility += gap * dimension.sign * getattr(agent, dimension.weight)
    return utility


def number_of_plants_at_location(
    repository: PlantRepository, site: Site, tick: int, reference_capacity: Optional[float] = None
) -> float:
    """
    Plants standing (or being built) at a site.

    With a reference capacity every plant counts as capacity / reference capacity, so a
    1000 MW plant takes the room of two 500 MW plants.
    """
    plants = repository.non_dismantled_plants(tick, site=site)
    if reference_capacity is None:
        return float(len(plants))
    return sum(plant.technology.capacity / reference_capacity for plant in plants)


class SiteRanker:
    """
    Filters and scores candidate sites for a technology.

    Eligibility per category:
      - wind: onshore site with wind available.
      - offshore_wind: offshore site.
      - solar: onshore site with sun available.
      - fuel: onshore site offering the technology's main fuel as feedstock, with CCS
        storage when the technology requires carbon capture.
    Every site needs room: possible plants minus plants at the site must be positive for
    wind, solar and offshore sites. Fuel sites count existing plants by capacity / reference
    plant capacity and stay eligible until that count exceeds the possible plants.
    """

    def __init__(
        self,
        repository: PlantRepository,
        cooldowns: CooldownRegistry,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.repository = repository
        self.cooldowns = cooldowns
        self.config = config or {}

    @property
    def reference_plant_capacity(self) -> float:
        return float(self.config.get("reference_plant_capacity", DEFAULT_REFERENCE_PLANT_CAPACITY))

    def headroom(self, site: Site, technology: Technology, tick: int) -> float:
        reference = self.reference_plant_capacity if technology.category == FUEL else None
        return site.possible_plants - number_of_plants_at_location(self.repository, site, tick, reference)

    def is_eligible(self, site: Site, technology: Technology, tick: int) -> bool:
        category = technology.category
        if category == OFFSHORE_WIND:
            suitable = site.offshore
        elif site.offshore:
            suitable = False
        elif category == WIND:
            suitable = site.wind_available
        elif category == SOLAR:
            suitable = site.sun_available
        else:
            fuel = technology.main_fuel
            suitable = fuel is not None and fuel.name in site.feedstocks
            if technology.carbon_capture_required and not site.ccs_available:
                suitable = False
        if not suitable:
            return False
        headroom = self.headroom(site, technology, tick)
        if category == FUEL:
            return headroom >= 0
        return headroom > 0

    def rank(
        self, agent: Any, technology: Technology, node: PowerGridNode, sites: Iterable[Site], tick: int
    ) -> List[Site]:
        """
        Rank the eligible sites for a technology.

        Sites are sorted by descending utility (ties by name) and truncated to the node's
        number of locations assessed. Each scored site keeps its utility in site.utility.
        An empty ranking puts the technology in cooldown.
        """
        scored = []
        for site in sites:
            self.cooldowns.release_expired(SITE, site.name, tick)
            if not self.cooldowns.site_available(site, tick):
                logger.debug(f"Site {site.name} skipped: recently failed permit negotiations")
                continue
            if not self.is_eligible(site, technology, tick):
                continue
            site.utility = calculate_site_utility(agent, site, node, technology.category)
            scored.append(site)

        ranked = sorted(scored, key=lambda site: (-site.utility, site.name))
        ranked = ranked[: node.number_of_locations_assessed]

        if not ranked:
            self.cooldowns.block_technology(technology, tick, node.time_not_using_tech)
            logger.warning(
                f"No suitable site for {technology.name} at tick {tick}; "
                f"technology unused for {node.time_not_using_tech} ticks"
            )
        else:
            logger.debug(
                "Ranked sites: " + ", ".join(f"{site.name} ({site.utility:.3f})" for site in ranked)
            )
        return ranked

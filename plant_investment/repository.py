from __future__ import annotations
from typing import Iterable, Iterator, List, Optional
import logging

from plant_investment.Agents.PowerPlant import PowerPlant

logger = logging.getLogger(__name__)


class PlantRepository:
    """
    Fleet of committed power plants and the capacity queries investors run against it.

    Every query takes the tick it is asked for (a future tick gives the expected fleet) and
    optional filters:
      - market: plants connected to a node in the market's zone.
      - technology / node / owner / site: identity match.
    """

    def __init__(self, plants: Optional[Iterable[PowerPlant]] = None) -> None:
        self.plants: List[PowerPlant] = list(plants or [])

    def add(self, plant: PowerPlant) -> None:
        self.plants.append(plant)

    def __len__(self) -> int:
        return len(self.plants)

    def __iter__(self) -> Iterator[PowerPlant]:
        return iter(self.plants)

    def find(
        self, *, market=None, technology=None, node=None, owner=None, site=None
    ) -> Iterator[PowerPlant]:
        for plant in self.plants:
            if market is not None and (plant.node is None or plant.node.zone != market.zone):
                continue
            if technology is not None and plant.technology is not technology:
                continue
            if node is not None and plant.node is not node:
                continue
            if owner is not None and plant.owner is not owner:
                continue
            if site is not None and plant.site is not site:
                continue
            yield plant

    def operational_plants(self, tick: int, **filters) -> List[PowerPlant]:
        return [plant for plant in self.find(**filters) if plant.is_operational(tick)]

    def pipeline_plants(self, tick: int, **filters) -> List[PowerPlant]:
        return [plant for plant in self.find(**filters) if plant.is_in_pipeline(tick)]

    def non_dismantled_plants(self, tick: int, **filters) -> List[PowerPlant]:
        return [plant for plant in self.find(**filters) if plant.is_non_dismantled(tick)]

    def operational_capacity(self, tick: int, **filters) -> float:
        return sum(p.actual_nominal_capacity for p in self.operational_plants(tick, **filters))

    def pipeline_capacity(self, tick: int, **filters) -> float:
        return sum(p.actual_nominal_capacity for p in self.pipeline_plants(tick, **filters))

from __future__ import annotations
from typing import Any, Dict, Optional, TYPE_CHECKING
import logging

from plant_investment.domain import PowerGridNode, Segment, Site, Substance, Technology

if TYPE_CHECKING:
    from plant_investment.Agents.Loan import Loan

logger = logging.getLogger(__name__)


class PowerPlant:
    """
    A power plant, either proposed or committed.

    A proposed plant is built for evaluation only (technology selection, merit-order
    shortfall capacity) and never enters the fleet. A committed plant is added to the
    model's plant repository and carries its down-payment and loan obligations.

    Timeline:
      - construction_start_tick: tick the investment decision was taken.
      - operational_tick: construction_start_tick + permit time + lead time.
      - dismantle_tick: operational_tick + lifetime.

    Attributes:
        plant_id: Unique identifier.
        technology: Technology of the plant.
        owner: Owning energy producer (None for policy shortfall plants).
        node: Grid node the plant is connected to.
        site: Site of the plant (None while proposed).
        actual_nominal_capacity: Installed capacity (MW).
        actual_leadtime / actual_permittime / actual_lifetime: Construction, permit and operating ticks.
        actual_invested_capital: Investment cost at construction start times capacity.
        fuel_mix: Fuel amount per MWh by substance, fixed when the plant is committed.
        committed: True once the plant is persisted and financed.
        loan / down_payment: Financing obligations attached on commitment.
    """

    plant_counter: int = 0

    def __init__(
        self,
        technology: Technology,
        owner: Any,
        node: Optional[PowerGridNode],
        site: Optional[Site] = None,
        construction_start_tick: int = 0,
        lead_time: Optional[int] = None,
        capacity: Optional[float] = None,
        plant_id: Optional[str] = None,
    ) -> None:
        self.plant_id: str = plant_id or PowerPlant.generate_plant_id(technology.name)
        self.technology: Technology = technology
        self.owner = owner
        self.node: Optional[PowerGridNode] = node
        self.site: Optional[Site] = site
        self.construction_start_tick: int = int(construction_start_tick)
        self.actual_nominal_capacity: float = (
            technology.capacity if capacity is None else float(capacity)
        )
        self.actual_leadtime: int = int(
            technology.expected_leadtime if lead_time is None else lead_time
        )
        self.actual_permittime: int = int(technology.expected_permittime)
        self.actual_lifetime: int = int(technology.expected_lifetime)
        self.actual_invested_capital: float = (
            technology.investment_cost.value(self.construction_start_tick)
            * self.actual_nominal_capacity
        )
        self.fuel_mix: Dict[Substance, float] = {}
        self.committed: bool = False
        self.loan: Optional["Loan"] = None
        self.down_payment: Optional["Loan"] = None

    @classmethod
    def reset_plant_counter(cls) -> None:
        cls.plant_counter = 0

    @classmethod
    def generate_plant_id(cls, technology_name: str) -> str:
        cls.plant_counter += 1
        return f"pp_{technology_name}_{cls.plant_counter:04d}"

    @property
    def operational_tick(self) -> int:
        return self.construction_start_tick + self.actual_permittime + self.actual_leadtime

    @property
    def dismantle_tick(self) -> int:
        return self.operational_tick + self.actual_lifetime

    def is_operational(self, tick: int) -> bool:
        """Operational (or expected to be, for a future tick) at tick."""
        return self.operational_tick <= tick < self.dismantle_tick

    def is_in_pipeline(self, tick: int) -> bool:
        """Decided upon but not yet operational at tick."""
        return self.construction_start_tick <= tick < self.operational_tick

    def is_non_dismantled(self, tick: int) -> bool:
        return self.construction_start_tick <= tick < self.dismantle_tick

    def get_available_capacity(
        self, segment: Optional[Segment] = None, number_of_segments: int = 1
    ) -> float:
        """
        Capacity available in a load-duration segment.

        The availability factor is the technology's peak availability in segment 1 and moves
        linearly towards its base availability in the last segment:

            factor = base - (n - k) / (n - 1) * (base - peak)

        Without a segment the full nominal capacity is available.
        """
        if segment is None:
            return self.actual_nominal_capacity
        peak = self.technology.peak_segment_dependent_availability
        base = self.technology.base_segment_dependent_availability
        if segment.segment_id == 1 or number_of_segments <= 1:
            factor = peak
        else:
            portion = (number_of_segments - segment.segment_id) / (number_of_segments - 1)
            factor = base - portion * (base - peak)
        return self.actual_nominal_capacity * factor

    def calculate_emission_intensity(self, fuel_mix: Optional[Dict[Substance, float]] = None) -> float:
        """CO2 emitted per MWh: sum of fuel amount x CO2 density, net of captured CO2."""
        mix = self.fuel_mix if fuel_mix is None else fuel_mix
        emission = sum(amount * substance.co2_density for substance, amount in mix.items())
        return emission * (1 - self.technology.co2_capture_efficiency)

    def create_or_update_loan(self, loan: "Loan") -> None:
        self.loan = loan

    def create_or_update_down_payment(self, down_payment: "Loan") -> None:
        self.down_payment = down_payment

    def __repr__(self) -> str:
        site_name = self.site.name if self.site is not None else None
        return (
            f"PowerPlant(id='{self.plant_id}', technology='{self.technology.name}', "
            f"capacity={self.actual_nominal_capacity:.1f}, site={site_name!r}, "
            f"start={self.construction_start_tick}, committed={self.committed})"
        )

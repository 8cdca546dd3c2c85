"""
Permit negotiation.

The investor works through its ranked sites one at a time. For every site the provincial
government is compensated until it no longer loses from the plant; onshore sites then
draw a number of local opposition parties that are compensated, least satisfied first,
until their average utility reaches the investor's risk acceptance or the investor would
be worse off than not building. A site is accepted when the investor's utility stays
positive; otherwise it goes into cooldown and the next site is tried. When no site is
left the technology goes into cooldown.

Both bargaining loops are bounded; reaching a bound rejects the site.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging
import math

import numpy as np

from plant_investment.cooldowns import CooldownRegistry
from plant_investment.domain import (
    LocalGovernment,
    OppositionParty,
    PowerGridNode,
    Site,
    Technology,
)
from plant_investment.errors import ConfigurationError, MissingReferenceDataError
from plant_investment.repository import PlantRepository
from plant_investment.utils import logistic

logger = logging.getLogger(__name__)

DEFAULT_MAX_GOVERNMENT_BARGAINING_ROUNDS = 1000
DEFAULT_MAX_LOCAL_BARGAINING_ROUNDS = 10000


class NegotiationState(Enum):
    SELECT_CANDIDATE = "select_candidate"
    GOVERNMENT_BARGAIN = "government_bargain"
    LOCAL_BARGAIN = "local_bargain"
    ACCEPT = "accept"
    REJECT = "reject"
    EXHAUSTED = "exhausted"


@dataclass
class SiteAttempt:
    """
    Bookkeeping of the negotiation over one site.

    producer_ledger is the investor's running compensation balance: every payment to the
    government or a local party is debited from it, so it is zero or negative.
    """

    site: Site
    government_compensation: float = 0.0
    local_compensation: float = 0.0
    producer_ledger: float = 0.0
    government_utility: float = 0.0
    government_steps: int = 0
    local_steps: int = 0
    parties: List[OppositionParty] = field(default_factory=list)
    average_utility: float = 0.0
    producer_utility: float = 0.0
    state: Optional[NegotiationState] = None
    reason: str = ""

    @property
    def total_compensation(self) -> float:
        return self.government_compensation + self.local_compensation


@dataclass
class NegotiationOutcome:
    technology: Technology
    state: NegotiationState
    attempts: List[SiteAttempt] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.state is NegotiationState.ACCEPT

    @property
    def chosen_attempt(self) -> Optional[SiteAttempt]:
        return self.attempts[-1] if self.accepted else None

    @property
    def site(self) -> Optional[Site]:
        attempt = self.chosen_attempt
        return attempt.site if attempt is not None else None


def plant_investment_cost(technology: Technology, tick: int) -> float:
    cost = technology.investment_cost.value(tick) * technology.capacity
    if cost <= 0:
        raise ConfigurationError(
            f"investment cost of technology {technology.name} at tick {tick} must be positive, got {cost}"
        )
    return cost


def calculate_government_utility(
    government: LocalGovernment,
    technology: Technology,
    node: PowerGridNode,
    compensation: float,
    plants_of_technology: float,
    tick: int,
) -> float:
    """
    Utility of a provincial government for a proposed plant.

    Equation:
      - U = -(env cost gap) * w_env + (employment gap) * w_emp - (prior plants gap) * w_prev
            + compensation / (investment cost * capacity * max compensation share) * w_comp

    Wind technologies normalize the prior-plant gap with the node's wind delta.

    Raises:
        ConfigurationError: If the compensation reference (investment cost or the node's
            maximum compensation share) is not positive.
    """
    plants_delta = "delta_plants_of_technology_wind" if technology.is_wind else "delta_plants_of_technology"
    share = node.max_compensation_government_percentage_of_investment
    if share <= 0:
        raise ConfigurationError(
            f"max_compensation_government_percentage_of_investment of node {node.name} must be positive, "
            f"got {share}"
        )
    reference_compensation = plant_investment_cost(technology, tick) * share
    return (
        -node.gap(technology.environmental_costs, "min_environmental_costs", "delta_environmental_costs")
        * government.weight_environment
        + node.gap(technology.employment, "min_employment", "delta_employment") * government.weight_employment
        - node.gap(plants_of_technology, "min_plants_of_technology", plants_delta) * government.weight_previous
        + compensation / reference_compensation * government.weight_compensation
    )


def opposition_scale(site: Site, technology: Technology, node: PowerGridNode, government: LocalGovernment) -> float:
    """Weighted gap score that scales the standard normal draw of the party count."""
    return (
        node.gap(site.population_density, "min_population_density", "delta_population_density")
        * government.weight_factor_density
        + node.gap(site.wealth, "min_wealth", "delta_wealth") * government.weight_factor_wealth
        + node.gap(technology.technology_preference, "max_technology_preference", "delta_technology_preference")
        * government.weight_factor_preference
    )


def calculate_local_party_utility(
    party: OppositionParty, technology: Technology, site: Site, node: PowerGridNode, investment_cost: float
) -> float:
    """
    Utility of a local opposition party.

    Equation:
      - U = max(-1, sensitivity * (-(density gap) * w_density - (wealth gap) * w_wealth
                                   + (preference gap) * w_pref))
            + logistic(compensation / (investment cost * effectiveness) * 20 - 10) * w_comp
    """
    site_score = (
        -node.gap(site.population_density, "min_population_density", "delta_population_density")
        * site.weight_factor_density
        - node.gap(site.wealth, "min_wealth", "delta_wealth") * site.weight_factor_wealth
        + node.gap(technology.technology_preference, "max_technology_preference", "delta_technology_preference")
        * site.weight_factor_tech_pref
    )
    if investment_cost <= 0:
        raise ConfigurationError(
            f"investment cost of technology {technology.name} must be positive, got {investment_cost}"
        )
    satisfaction = logistic(party.compensation / (investment_cost * site.effectiveness_compensation) * 20 - 10)
    return max(-1.0, party.sensitivity * site_score) + satisfaction * site.weight_factor_compensation


def permit_risk_for_party_count(number_of_parties: int) -> float:
    if number_of_parties <= 5:
        return 1.0
    if number_of_parties <= 10:
        return 1.05
    if number_of_parties <= 15:
        return 1.1
    return 1.3


def average_party_utility(parties: List[OppositionParty]) -> float:
    if not parties:
        return 0.0
    return sum(party.utility for party in parties) / len(parties)


class PermitNegotiator:
    """
    Runs the permit negotiation over a ranked list of sites.

    Parameters:
        rng: Random source for the party count and party sensitivity draws.
        governments: Local governments by province name.
        repository: Fleet used to count prior plants in a province.
        cooldowns: Shared cooldown registry.
        max_government_rounds: Bound on government compensation steps per site.
        max_local_rounds: Bound on local compensation steps per site.
    """

    def __init__(
        self,
        rng: np.random.Generator,
        governments: Dict[str, LocalGovernment],
        repository: PlantRepository,
        cooldowns: CooldownRegistry,
        max_government_rounds: int = DEFAULT_MAX_GOVERNMENT_BARGAINING_ROUNDS,
        max_local_rounds: int = DEFAULT_MAX_LOCAL_BARGAINING_ROUNDS,
    ) -> None:
        self.rng = rng
        self.governments = governments
        self.repository = repository
        self.cooldowns = cooldowns
        self.max_government_rounds = int(max_government_rounds)
        self.max_local_rounds = int(max_local_rounds)

    def government_for(self, site: Site) -> LocalGovernment:
        try:
            return self.governments[site.province]
        except KeyError:
            raise MissingReferenceDataError(
                f"no local government for province {site.province!r} of site {site.name}"
            ) from None

    def plants_of_technology(self, government: LocalGovernment, technology: Technology, tick: int) -> float:
        """Operational plants of the technology's feedstock family at sites in the province."""
        return float(
            sum(
                1
                for plant in self.repository.operational_plants(tick)
                if plant.site is not None
                and plant.site.province == government.name
                and plant.technology.feedstock_id == technology.feedstock_id
            )
        )

    def negotiate(
        self, agent: Any, technology: Technology, node: PowerGridNode, ranked_sites: Iterable[Site], tick: int
    ) -> NegotiationOutcome:
        """
        Negotiate permits for a technology over the ranked sites, best first.

        Raises:
            ValueError: If the technology carries no positive NPV.
            MissingReferenceDataError: If a site's province has no government.
        """
        if not technology.npv > 0:
            raise ValueError(f"{technology.name} needs a positive NPV to negotiate, got {technology.npv}")

        remaining = list(ranked_sites)
        outcome = NegotiationOutcome(technology=technology, state=NegotiationState.SELECT_CANDIDATE)
        attempt: Optional[SiteAttempt] = None
        state = NegotiationState.SELECT_CANDIDATE

        while state not in (NegotiationState.ACCEPT, NegotiationState.EXHAUSTED):
            if state is NegotiationState.SELECT_CANDIDATE:
                if not remaining:
                    self.cooldowns.block_technology(technology, tick, node.time_not_using_tech)
                    logger.warning(
                        f"{agent} found no permit for {technology.name}; "
                        f"technology unused for {node.time_not_using_tech} ticks"
                    )
                    state = NegotiationState.EXHAUSTED
                    continue
                attempt = SiteAttempt(site=remaining.pop(0))
                attempt.site.permit_tries += 1
                agent.compensation = 0.0
                outcome.attempts.append(attempt)
                logger.info(f"{agent} applies for a permit for {technology.name} at {attempt.site.name}")
                state = NegotiationState.GOVERNMENT_BARGAIN
            elif state is NegotiationState.GOVERNMENT_BARGAIN:
                state = self.government_bargain(agent, technology, node, attempt, tick)
            elif state is NegotiationState.LOCAL_BARGAIN:
                state = self.local_bargain(agent, technology, node, attempt, tick)
            elif state is NegotiationState.REJECT:
                attempt.state = NegotiationState.REJECT
                self.reject_site(attempt, node, tick)
                state = NegotiationState.SELECT_CANDIDATE

        if state is NegotiationState.ACCEPT:
            attempt.state = NegotiationState.ACCEPT
            self.accept_site(agent, attempt)
        outcome.state = state
        return outcome

    def government_bargain(
        self, agent: Any, technology: Technology, node: PowerGridNode, attempt: SiteAttempt, tick: int
    ) -> NegotiationState:
        site = attempt.site
        government = self.government_for(site)
        plants = self.plants_of_technology(government, technology, tick)
        utility = calculate_government_utility(government, technology, node, 0.0, plants, tick)
        logger.debug(f"{government.name} has utility {utility:.3f} for {technology.name} at {site.name}")

        while utility <= 0:
            if attempt.government_steps >= self.max_government_rounds:
                attempt.reason = f"government bargaining stopped after {attempt.government_steps} rounds"
                logger.warning(f"{site.name}: {attempt.reason}")
                attempt.government_utility = utility
                return NegotiationState.REJECT
            attempt.government_compensation += node.compensation_government
            attempt.producer_ledger -= node.compensation_government
            attempt.government_steps += 1
            utility = calculate_government_utility(
                government, technology, node, attempt.government_compensation, plants, tick
            )

        attempt.government_utility = utility
        attempt.producer_utility = (technology.npv + attempt.producer_ledger) / technology.npv
        agent.compensation = attempt.producer_ledger
        logger.debug(
            f"Paid {attempt.government_compensation:,.0f} to {government.name} "
            f"in {attempt.government_steps} steps"
        )

        if site.offshore:
            attempt.average_utility = 0.0
            return self.decide(attempt)
        return NegotiationState.LOCAL_BARGAIN

    def local_bargain(
        self, agent: Any, technology: Technology, node: PowerGridNode, attempt: SiteAttempt, tick: int
    ) -> NegotiationState:
        site = attempt.site
        government = self.government_for(site)
        scale = opposition_scale(site, technology, node, government)
        # the weighted gap scales a standard normal draw; the count is its floored magnitude
        number_of_parties = int(abs(math.floor(self.rng.standard_normal() * scale)))
        technology.permit_risk = permit_risk_for_party_count(number_of_parties)
        logger.info(f"{agent} encountered {number_of_parties} local parties at {site.name}")

        investment_cost = plant_investment_cost(technology, tick)
        for index in range(number_of_parties):
            party = OppositionParty(index=index, sensitivity=abs(0.25 * self.rng.standard_normal() + 1))
            party.utility = calculate_local_party_utility(party, technology, site, node, investment_cost)
            attempt.parties.append(party)

        average = average_party_utility(attempt.parties)
        court_loss = site.court_chance * (technology.npv - technology.npv_delay)

        while attempt.parties and average < agent.risk_acceptance and attempt.producer_utility >= 0:
            if attempt.local_steps >= self.max_local_rounds:
                attempt.reason = f"local bargaining stopped after {attempt.local_steps} rounds"
                logger.warning(f"{site.name}: {attempt.reason}")
                attempt.average_utility = average
                return NegotiationState.REJECT
            party = min(attempt.parties, key=lambda p: (p.utility, p.index))
            party.compensation += node.compensation_locals
            attempt.local_compensation += node.compensation_locals
            attempt.producer_ledger -= node.compensation_locals
            attempt.local_steps += 1
            party.utility = calculate_local_party_utility(party, technology, site, node, investment_cost)
            average = average_party_utility(attempt.parties)
            attempt.producer_utility = (technology.npv + attempt.producer_ledger - court_loss) / technology.npv
            logger.debug(
                f"{party.name} now has utility {party.utility:.3f} after {party.compensation:,.0f}; "
                f"average {average:.3f}"
            )

        attempt.average_utility = average
        agent.compensation = attempt.producer_ledger
        return self.decide(attempt)

    def decide(self, attempt: SiteAttempt) -> NegotiationState:
        if attempt.producer_utility > 0:
            return NegotiationState.ACCEPT
        attempt.reason = attempt.reason or f"producer utility {attempt.producer_utility:.3f} not positive"
        return NegotiationState.REJECT

    def accept_site(self, agent: Any, attempt: SiteAttempt) -> None:
        site = attempt.site
        site.local_party_compensation += attempt.local_compensation
        site.average_utility = attempt.average_utility
        agent.compensation = attempt.producer_ledger
        logger.info(
            f"{agent} obtained a permit at {site.name} after paying {attempt.total_compensation:,.0f}"
        )

    def reject_site(self, attempt: SiteAttempt, node: PowerGridNode, tick: int) -> None:
        site = attempt.site
        self.cooldowns.block_site(site, tick, node.time_not_using_location)
        site.count_permit_failures += 1
        logger.warning(f"Permit failed at {site.name} ({attempt.reason}); site unused for {node.time_not_using_location} ticks")

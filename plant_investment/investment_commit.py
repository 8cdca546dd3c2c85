from __future__ import annotations
from typing import Any
import logging

from plant_investment.Agents.Loan import DOWNPAYMENT
from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.domain import PowerGridNode
from plant_investment.permit_negotiation import NegotiationOutcome
from plant_investment.technology_selection import TechnologyEvaluation
from plant_investment.utils import determine_loan_annuity

logger = logging.getLogger(__name__)


class InvestmentCommitter:
    """
    Turns an accepted permit negotiation into a committed, financed power plant.

    The model supplies the random source, the plant manufacturer and bank, and the
    ledger calls (create_cash_flow, create_loan, add_plant).
    """

    def __init__(self, model: Any) -> None:
        self.model = model

    def decide_lead_time(self, evaluation: TechnologyEvaluation, average_utility: float) -> int:
        """
        Draw whether local opposition delays construction.

        Logic:
          - u ~ U[0, 1); construction is delayed when u < -(average local utility).
          - A non-negative average utility never delays construction.
        """
        technology = evaluation.technology
        chance_on_delay = self.model.rng.random()
        if chance_on_delay < -average_utility:
            logger.info(f"Construction of {technology.name} delayed by local opposition")
            return technology.expected_leadtime_delay
        return technology.expected_leadtime

    def commit(
        self,
        agent: Any,
        evaluation: TechnologyEvaluation,
        outcome: NegotiationOutcome,
        node: PowerGridNode,
        tick: int,
    ) -> PowerPlant:
        """
        Build, persist and finance the plant of an accepted negotiation.

        Logic:
          - Technology and site compensation and investment counters are updated.
          - The plant is created at the chosen site with the drawn lead time and the fuel mix
            of the evaluation, marked committed and added to the fleet.
          - (invested capital + compensation paid) is split into equity and debt by the
            agent's debt ratio.
          - Equity is paid in equal installments over the lead time: the first now, the rest
            as a loan from the manufacturer.
          - Debt becomes an annuity loan from the bank over the depreciation time.

        Raises:
            ValueError: If the negotiation was not accepted.
        """
        if not outcome.accepted:
            raise ValueError(f"cannot commit {evaluation.technology.name}: negotiation was {outcome.state.value}")

        technology = evaluation.technology
        attempt = outcome.chosen_attempt
        site = attempt.site
        compensation = attempt.total_compensation

        technology.compensation_paid += compensation
        technology.number_of_investments += 1
        site.total_compensation_paid += compensation

        lead_time = self.decide_lead_time(evaluation, attempt.average_utility)
        plant = PowerPlant(
            technology,
            owner=agent,
            node=node,
            site=site,
            construction_start_tick=tick,
            lead_time=lead_time,
        )
        plant.fuel_mix = dict(evaluation.plant.fuel_mix)
        plant.committed = True
        self.model.add_plant(plant)

        total_investment = plant.actual_invested_capital + compensation
        equity = total_investment * (1 - agent.debt_ratio_of_investments)
        debt = total_investment * agent.debt_ratio_of_investments
        self.create_spread_out_down_payments(agent, equity, plant, tick)

        amount = determine_loan_annuity(debt, technology.depreciation_time, agent.loan_interest_rate)
        loan = self.model.create_loan(
            agent, self.model.bank, amount, technology.depreciation_time, tick, plant
        )
        plant.create_or_update_loan(loan)

        logger.info(
            f"{agent} committed {plant.plant_id} ({technology.name}, {plant.actual_nominal_capacity:.0f} MW) "
            f"at {site.name}: capital {plant.actual_invested_capital:,.0f}, compensation {compensation:,.0f}, "
            f"loan annuity {amount:,.0f}"
        )
        return plant

    def create_spread_out_down_payments(self, agent: Any, total_down_payment: float, plant: PowerPlant, tick: int) -> None:
        manufacturer = self.model.manufacturer
        building_time = plant.actual_leadtime
        installment = total_down_payment / building_time
        self.model.create_cash_flow(agent, manufacturer, installment, DOWNPAYMENT, tick, plant)
        if building_time > 1:
            down_payment = self.model.create_loan(
                agent, manufacturer, installment, building_time - 1, tick, plant
            )
            plant.create_or_update_down_payment(down_payment)

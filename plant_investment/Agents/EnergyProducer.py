from __future__ import annotations
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
import logging

from mesa import Agent

from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.domain import ElectricitySpotMarket, Technology
from plant_investment.technology_selection import SelectionContext
from plant_investment.utils import forecast_geometric_trend, look_back_ticks

logger = logging.getLogger("EnergyProducer")

CO2 = "CO2"


@dataclass
class InvestmentDecision:
    """Record of one investment round of a producer."""

    tick: int
    producer_id: str
    technology: Optional[str] = None
    site: Optional[str] = None
    plant_id: Optional[str] = None
    npv: Optional[float] = None
    npv_per_mw: Optional[float] = None
    compensation: float = 0.0
    sites_assessed: int = 0
    reason: str = ""

    @property
    def invested(self) -> bool:
        return self.plant_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EnergyProducer(Agent):
    """
    Energy producer that invests in new power plants in its market.

    Each investment round the producer:
      - Forecasts fuel prices, the CO2 price and demand at the investment horizon.
      - Simulates the expected merit order of its market.
      - Selects the technology with the highest positive NPV per MW.
      - Ranks candidate sites for that technology.
      - Negotiates permits over the ranked sites.
      - Commits and finances the plant at the accepted site.

    A producer that finds no technology worth investing in is not willing to invest for
    the rest of the tick.

    Attributes:
        producer_id: Unique identifier.
        investor_market: Market the producer invests in.
        cash: Cash available.
        debt_ratio_of_investments: Share of an investment financed with debt.
        equity_interest_rate / loan_interest_rate: Cost of equity and debt.
        downpayment_fraction_of_cash: Share of cash available for a plant's equity.
        risk_acceptance: Average local utility the producer negotiates towards.
        investment_future_time_horizon: Ticks ahead the producer forecasts.
        number_of_years_backlooking: Look-back window of the forecasts.
        weight_factor_*: Site preference weights.
        willing_to_invest: False once the producer found nothing to invest in this tick.
        compensation: Running compensation ledger of the current permit negotiation (<= 0).
    """

    def __init__(
        self,
        unique_id: Any,
        model: Any,
        investor_market: ElectricitySpotMarket,
        cash: float = 0.0,
        debt_ratio_of_investments: float = 0.7,
        equity_interest_rate: float = 0.12,
        loan_interest_rate: float = 0.09,
        downpayment_fraction_of_cash: float = 0.5,
        risk_acceptance: float = 0.0,
        investment_future_time_horizon: int = 7,
        number_of_years_backlooking: int = 5,
        weight_factor_density: float = 1.0,
        weight_factor_wealth: float = 1.0,
        weight_factor_distance: float = 1.0,
        weight_factor_feedstock: float = 1.0,
        weight_factor_depth_water: float = 1.0,
        weight_factor_distance_shore: float = 1.0,
    ) -> None:
        super().__init__(unique_id, model)
        self.producer_id = unique_id
        self.investor_market = investor_market
        self.cash: float = float(cash)
        self.debt_ratio_of_investments: float = debt_ratio_of_investments
        self.equity_interest_rate: float = equity_interest_rate
        self.loan_interest_rate: float = loan_interest_rate
        self.downpayment_fraction_of_cash: float = downpayment_fraction_of_cash
        self.risk_acceptance: float = risk_acceptance
        self.investment_future_time_horizon: int = int(investment_future_time_horizon)
        self.number_of_years_backlooking: int = int(number_of_years_backlooking)
        self.weight_factor_density = weight_factor_density
        self.weight_factor_wealth = weight_factor_wealth
        self.weight_factor_distance = weight_factor_distance
        self.weight_factor_feedstock = weight_factor_feedstock
        self.weight_factor_depth_water = weight_factor_depth_water
        self.weight_factor_distance_shore = weight_factor_distance_shore
        self.willing_to_invest: bool = True
        self.compensation: float = 0.0
        self.current_tick: int = 0
        self.last_decision: Optional[InvestmentDecision] = None

        if not 0 <= debt_ratio_of_investments <= 1:
            raise ValueError(
                f"debt_ratio_of_investments must be between 0 and 1, got {debt_ratio_of_investments}"
            )
        if self.number_of_years_backlooking < 1:
            raise ValueError(
                f"number_of_years_backlooking must be at least 1, got {number_of_years_backlooking}"
            )

    def __repr__(self) -> str:
        return f"EnergyProducer(id='{self.producer_id}', cash={self.cash:,.0f})"

    def __str__(self) -> str:
        return str(self.producer_id)

    def predict_fuel_prices(self, future_tick: int, current_tick: int) -> Dict[str, float]:
        """
        Geometric-trend forecast of every commodity fuel price at future_tick.

        Observations are the clearing prices inside the look-back window (current tick
        included).

        Raises:
            ValueError: If a fuel has no price history in the window.
        """
        window = look_back_ticks(current_tick, self.number_of_years_backlooking)
        expected = {}
        for substance in self.model.commodity_substances():
            if substance == CO2:
                continue
            observations = self.model.find_clearing_prices(substance, window)
            if not observations:
                raise ValueError(
                    f"no price history for {substance} between ticks {window.start} and {window.stop - 1}"
                )
            expected[substance] = forecast_geometric_trend(observations, future_tick)
        return expected

    def predict_co2_price(self, future_tick: int, current_tick: int) -> float:
        """Geometric-trend CO2 price over positive history, never below the CO2 price floor."""
        floor = float(self.model.config.get("co2_price_floor", 0.0))
        window = look_back_ticks(current_tick, self.number_of_years_backlooking)
        observations = [
            (time, price) for time, price in self.model.find_clearing_prices(CO2, window) if price > 0
        ]
        if not observations:
            return floor
        return max(floor, forecast_geometric_trend(observations, future_tick))

    def predict_demand(self, market: ElectricitySpotMarket, future_tick: int, current_tick: int) -> float:
        window = look_back_ticks(current_tick, self.number_of_years_backlooking)
        observations = [(tick, market.demand_growth_trend.value(tick)) for tick in window]
        return forecast_geometric_trend(observations, future_tick)

    def calculate_technology_market_share(self, technology: Technology, tick: int) -> float:
        """Operational capacity of a technology owned by this producer at tick."""
        return self.model.repository.operational_capacity(tick, technology=technology, owner=self)

    def act(self, tick: int) -> InvestmentDecision:
        """
        Run one investment round.

        Returns:
            InvestmentDecision describing the plant committed or why nothing was committed.

        Raises:
            MissingReferenceDataError: If the market has no grid node, a site's province
                has no government, or a forecast fuel price is missing.
            ConfigurationError: If a node normalization delta used in a utility is zero.
        """
        model = self.model
        decision = InvestmentDecision(tick=tick, producer_id=self.producer_id)
        market = self.investor_market
        node = model.node_for_market(market)
        future_tick = tick + self.investment_future_time_horizon

        fuel_prices = self.predict_fuel_prices(future_tick, tick)
        co2_price = self.predict_co2_price(future_tick, tick)
        demand_factor = self.predict_demand(market, future_tick, tick)
        market_information = model.merit_order_engine.expected_market_information(
            market, demand_factor, fuel_prices, co2_price, future_tick, node=node, current_tick=tick
        )
        logger.debug(
            f"{self} expects peak load {market_information.max_expected_load:,.0f} MW "
            f"and prices {market_information.expected_prices} at tick {future_tick}"
        )

        context = SelectionContext(
            agent=self,
            market=market,
            node=node,
            tick=tick,
            future_tick=future_tick,
            market_information=market_information,
            fuel_prices=fuel_prices,
            co2_price=co2_price,
            repository=model.repository,
            cooldowns=model.cooldowns,
            technology_targets=model.merit_order_engine.targets_for_market(market),
            node_limits=model.node_limits,
            ccs_places_used=model.ccs_places_used(node, tick),
            config=model.config,
        )
        best, _ = model.technology_selector.select(context, model.technologies)
        if best is None:
            self.willing_to_invest = False
            decision.reason = "no technology with positive NPV"
            logger.info(f"{self} found no suitable technology to invest in at tick {tick}")
            return self.record(decision)

        technology = best.technology
        decision.technology = technology.name
        decision.npv = best.npv
        decision.npv_per_mw = best.npv_per_mw

        ranked_sites = model.site_ranker.rank(self, technology, node, model.sites, tick)
        decision.sites_assessed = len(ranked_sites)
        if not ranked_sites:
            decision.reason = "no suitable site"
            return self.record(decision)

        outcome = model.permit_negotiator.negotiate(self, technology, node, ranked_sites, tick)
        if not outcome.accepted:
            decision.reason = "permit negotiations failed at every ranked site"
            return self.record(decision)

        plant: PowerPlant = model.investment_committer.commit(self, best, outcome, node, tick)
        decision.site = plant.site.name
        decision.plant_id = plant.plant_id
        decision.compensation = outcome.chosen_attempt.total_compensation
        logger.info(f"{self} invested in {technology.name} at {plant.site.name} at tick {tick}")
        return self.record(decision)

    def record(self, decision: InvestmentDecision) -> InvestmentDecision:
        self.last_decision = decision
        self.model.record_decision(decision)
        return decision

    def prepare(self) -> None:
        """
        Stage- prepare:
         - Becomes willing to invest again at the start of a tick.
        """
        self.willing_to_invest = True
        self.current_tick = int(self.model.schedule.time)

    def invest(self) -> Optional[InvestmentDecision]:
        """
        Stage- invest:
         - Runs one investment round if still willing to invest.
        """
        if not self.willing_to_invest:
            return None
        return self.act(int(self.model.schedule.time))

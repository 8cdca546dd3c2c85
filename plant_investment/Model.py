from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import os

import numpy as np
import pandas as pd
from mesa import Model
from mesa.datacollection import DataCollector
from mesa.time import RandomActivation

from plant_investment.Agents.EnergyProducer import EnergyProducer, InvestmentDecision
from plant_investment.Agents.Loan import CashFlow, Loan
from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.cooldowns import CooldownRegistry
from plant_investment.domain import (
    ElectricitySpotMarket,
    FinancialParty,
    LocalGovernment,
    PowerGridNode,
    Site,
    Technology,
    TechnologyNodeLimit,
    TechnologyTarget,
    index_by_name,
)
from plant_investment.errors import ConfigurationError, MissingReferenceDataError
from plant_investment.investment_commit import InvestmentCommitter
from plant_investment.merit_order import MeritOrderEngine
from plant_investment.permit_negotiation import (
    DEFAULT_MAX_GOVERNMENT_BARGAINING_ROUNDS,
    DEFAULT_MAX_LOCAL_BARGAINING_ROUNDS,
    PermitNegotiator,
)
from plant_investment.repository import PlantRepository
from plant_investment.site_ranking import SiteRanker, number_of_plants_at_location
from plant_investment.technology_selection import TechnologySelector
from plant_investment.utils import year_for_tick

logger = logging.getLogger("Model")

DEFAULT_MAX_INVESTMENT_ROUNDS = 10


class ElectricityMarketModel(Model):
    """
    ElectricityMarketModel runs the investment decisions of energy producers in
    electricity spot markets.

    The model owns the shared state every producer reads and mutates: the plant fleet,
    the cooldown registry of technologies and sites, the loan and cash-flow ledger, and
    the decision components (merit-order engine, technology selector, site ranker,
    permit negotiator, investment committer).

    Per tick:
      - Every producer becomes willing to invest again.
      - Investment rounds run over the willing producers in random order, one producer's
        full decision at a time, until no producer is willing or the round limit is hit.
      - The scheduler advances and model and agent metrics are collected.

    All randomness of the decision components comes from self.rng (a numpy Generator);
    the producer order comes from Mesa's self.random. Both derive from seed.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        technologies: Sequence[Technology],
        markets: Sequence[ElectricitySpotMarket],
        nodes: Sequence[PowerGridNode],
        sites: Sequence[Site],
        governments: Sequence[LocalGovernment],
        producers: Sequence[Dict[str, Any]],
        price_history: Dict[str, Dict[int, float]],
        initial_plants: Sequence[Dict[str, Any]] = (),
        technology_targets: Sequence[TechnologyTarget] = (),
        node_limits: Sequence[TechnologyNodeLimit] = (),
        manufacturer: Optional[FinancialParty] = None,
        bank: Optional[FinancialParty] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """
        Initialise the model state and create the producers.

        Parameters:
            config: Flat key -> value configuration.
            technologies / markets / nodes / sites / governments: Scenario entities.
            producers: One dict per producer with its "name", its "market" name and
                EnergyProducer keyword arguments.
            price_history: Substance name -> {tick: clearing price}.
            initial_plants: Dicts with "technology", "owner", "site" names, and optional
                "construction_start_tick" and "capacity".
            technology_targets / node_limits: Policy records.
            manufacturer / bank: Counterparties of down payments and loans.
            seed: Seed of the model's random sources.
            rng: Random source override for the decision components.
        """
        super().__init__()
        if seed is not None:
            self.random.seed(seed)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        # plant ids restart with every model
        PowerPlant.reset_plant_counter()
        self.config = config
        self.start_year = int(config.get("start_year", 0))

        self.technologies: List[Technology] = list(technologies)
        self.technologies_by_name = index_by_name(self.technologies)
        self.markets: List[ElectricitySpotMarket] = list(markets)
        self.markets_by_name = index_by_name(self.markets)
        self.nodes: List[PowerGridNode] = list(nodes)
        self.sites: List[Site] = list(sites)
        self.sites_by_name = index_by_name(self.sites)
        self.governments: Dict[str, LocalGovernment] = index_by_name(governments)
        self.price_history = {name: dict(prices) for name, prices in price_history.items()}
        self.node_limits: List[TechnologyNodeLimit] = list(node_limits)
        self.manufacturer = manufacturer or FinancialParty("Manufacturer")
        self.bank = bank or FinancialParty("Bank")

        self.repository = PlantRepository()
        self.cooldowns = CooldownRegistry()
        self.loans: List[Loan] = []
        self.cash_flows: List[CashFlow] = []
        self.investment_log: List[Dict[str, Any]] = []

        self.merit_order_engine = MeritOrderEngine(self.repository, technology_targets)
        self.technology_selector = TechnologySelector()
        self.site_ranker = SiteRanker(self.repository, self.cooldowns, config)
        self.permit_negotiator = PermitNegotiator(
            self.rng,
            self.governments,
            self.repository,
            self.cooldowns,
            max_government_rounds=int(
                config.get("max_government_bargaining_rounds", DEFAULT_MAX_GOVERNMENT_BARGAINING_ROUNDS)
            ),
            max_local_rounds=int(
                config.get("max_local_bargaining_rounds", DEFAULT_MAX_LOCAL_BARGAINING_ROUNDS)
            ),
        )
        self.investment_committer = InvestmentCommitter(self)

        self.datacollector = DataCollector(
            model_reporters={
                "Tick": lambda m: int(m.schedule.time),
                "Year": lambda m: year_for_tick(m.start_year, int(m.schedule.time)),
                "Num_Plants": lambda m: len(m.repository.non_dismantled_plants(int(m.schedule.time))),
                "Installed_Capacity": lambda m: m.repository.operational_capacity(int(m.schedule.time)),
                "Pipeline_Capacity": lambda m: m.repository.pipeline_capacity(int(m.schedule.time)),
                "Num_Loans": lambda m: len(m.loans),
                "Total_Loan_Payments": lambda m: sum(loan.amount_per_payment for loan in m.loans),
                "Technologies_In_Cooldown": lambda m: sum(
                    1
                    for t in m.technologies
                    if not m.cooldowns.technology_available(t, int(m.schedule.time))
                ),
            },
            agent_reporters={
                "Tick": lambda a: int(a.model.schedule.time),
                "Type": lambda a: type(a).__name__,
                "Producer_ID": lambda a: getattr(a, "producer_id", None),
                "Cash": lambda a: getattr(a, "cash", None),
                "Willing_To_Invest": lambda a: getattr(a, "willing_to_invest", None),
                "Last_Technology": lambda a: (
                    a.last_decision.technology if getattr(a, "last_decision", None) else None
                ),
                "Last_Site": lambda a: a.last_decision.site if getattr(a, "last_decision", None) else None,
                "Last_Compensation": lambda a: (
                    a.last_decision.compensation if getattr(a, "last_decision", None) else 0.0
                ),
                "Owned_Capacity": lambda a: a.model.repository.operational_capacity(
                    int(a.model.schedule.time), owner=a
                ),
            },
        )

        self.schedule = RandomActivation(self)

        logger.info("Creating energy producers...")
        self.producers: List[EnergyProducer] = []
        for record in producers:
            params = dict(record)
            name = params.pop("name")
            market_name = params.pop("market")
            producer = EnergyProducer(
                unique_id=name,
                model=self,
                investor_market=self.lookup(self.markets_by_name, market_name, "market"),
                **params,
            )
            self.producers.append(producer)
            self.schedule.add(producer)
        self.producers_by_name = {producer.producer_id: producer for producer in self.producers}

        logger.info("Registering initial power plants...")
        for record in initial_plants:
            self.add_initial_plant(record)

        self.datacollector.collect(self)

    @staticmethod
    def lookup(index: Dict[str, Any], name: str, kind: str) -> Any:
        try:
            return index[name]
        except KeyError:
            raise MissingReferenceDataError(f"unknown {kind} {name!r}") from None

    def add_initial_plant(self, record: Dict[str, Any]) -> PowerPlant:
        technology = self.lookup(self.technologies_by_name, record["technology"], "technology")
        owner = self.lookup(self.producers_by_name, record["owner"], "producer")
        site = self.lookup(self.sites_by_name, record["site"], "site")
        plant = PowerPlant(
            technology,
            owner=owner,
            node=self.node_for_market(owner.investor_market),
            site=site,
            construction_start_tick=int(record.get("construction_start_tick", 0)),
            capacity=record.get("capacity"),
        )
        plant.committed = True
        self.add_plant(plant)
        return plant

    def node_for_market(self, market: ElectricitySpotMarket) -> PowerGridNode:
        for node in self.nodes:
            if node.zone == market.zone:
                return node
        raise MissingReferenceDataError(f"no grid node for zone {market.zone!r} of market {market.name}")

    def government_for_province(self, province: str) -> LocalGovernment:
        return self.lookup(self.governments, province, "local government")

    def commodity_substances(self) -> List[str]:
        return sorted(self.price_history)

    def find_clearing_prices(self, substance: str, ticks: Iterable[int]) -> List[Tuple[int, float]]:
        history = self.price_history.get(substance, {})
        return [(tick, history[tick]) for tick in ticks if tick in history]

    def ccs_places_used(self, node: PowerGridNode, tick: int) -> float:
        return sum(
            plant.technology.ccs_places
            for plant in self.repository.non_dismantled_plants(tick, node=node)
            if plant.technology.carbon_capture_required
        )

    def number_of_plants_at_location(self, site: Site, tick: int, weighted: bool = False) -> float:
        reference = self.site_ranker.reference_plant_capacity if weighted else None
        return number_of_plants_at_location(self.repository, site, tick, reference)

    def plants_of_feedstock_in_province(self, technology: Technology, province: str, tick: int) -> float:
        return self.permit_negotiator.plants_of_technology(
            self.government_for_province(province), technology, tick
        )

    def add_plant(self, plant: PowerPlant) -> None:
        self.repository.add(plant)

    def create_loan(
        self, borrower: Any, lender: Any, amount_per_payment: float, number_of_payments: int, tick: int, plant: PowerPlant
    ) -> Loan:
        loan = Loan(
            loan_id=f"loan_{len(self.loans) + 1:05d}",
            borrower=borrower,
            lender=lender,
            amount_per_payment=amount_per_payment,
            total_number_of_payments=int(number_of_payments),
            loan_start_time=tick,
            regarding_power_plant=plant,
        )
        self.loans.append(loan)
        return loan

    def create_cash_flow(
        self, payer: Any, payee: Any, money: float, category: str, tick: int, plant: Optional[PowerPlant] = None
    ) -> CashFlow:
        cash_flow = CashFlow(payer, payee, money, category, tick, plant)
        payer.cash -= money
        payee.cash += money
        self.cash_flows.append(cash_flow)
        return cash_flow

    def record_decision(self, decision: InvestmentDecision) -> None:
        self.investment_log.append(decision.to_dict())

    def investment_round(self) -> int:
        """
        Give every willing producer one investment decision, in random order.

        Returns:
            Number of plants committed in the round.
        """
        willing = [producer for producer in self.producers if producer.willing_to_invest]
        self.random.shuffle(willing)
        committed = 0
        for producer in willing:
            decision = producer.invest()
            if decision is not None and decision.invested:
                committed += 1
        return committed

    def step(self) -> None:
        """
        Advance the simulation by one tick.

        Sequence:
            1) Producers become willing to invest.
            2) Investment rounds until no producer is willing or max_investment_rounds is reached.
            3) Scheduler advances; model and agent metrics are collected.
        """
        tick = int(self.schedule.time)
        for producer in self.producers:
            producer.prepare()

        max_rounds = int(self.config.get("max_investment_rounds", DEFAULT_MAX_INVESTMENT_ROUNDS))
        if max_rounds < 1:
            raise ConfigurationError(f"max_investment_rounds must be at least 1, got {max_rounds}")
        rounds = 0
        while rounds < max_rounds and any(p.willing_to_invest for p in self.producers):
            committed = self.investment_round()
            rounds += 1
            logger.info(f"Tick {tick} round {rounds}: {committed} plants committed")

        self.schedule.step()
        self.datacollector.collect(self)

    def plants_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "Plant_ID": plant.plant_id,
                    "Technology": plant.technology.name,
                    "Owner": getattr(plant.owner, "producer_id", None),
                    "Site": plant.site.name if plant.site is not None else None,
                    "Capacity": plant.actual_nominal_capacity,
                    "Construction_Start": plant.construction_start_tick,
                    "Lead_Time": plant.actual_leadtime,
                    "Operational_Tick": plant.operational_tick,
                    "Invested_Capital": plant.actual_invested_capital,
                    "Loan_Payment": plant.loan.amount_per_payment if plant.loan is not None else None,
                }
                for plant in self.repository
            ],
            columns=[
                "Plant_ID",
                "Technology",
                "Owner",
                "Site",
                "Capacity",
                "Construction_Start",
                "Lead_Time",
                "Operational_Tick",
                "Invested_Capital",
                "Loan_Payment",
            ],
        )

    def export_logs(self, output_dir: Optional[str] = None) -> Dict[str, pd.DataFrame]:
        """
        Collected simulation data as DataFrames, optionally written to CSV files.

        Files:
          - model_log.csv: Model-level variables per tick.
          - agent_log.csv: Producer-level panel data.
          - investment_log.csv: One row per investment decision.
          - plants.csv: The plant fleet.
        """
        model_df = self.datacollector.get_model_vars_dataframe().reset_index(drop=True)
        agent_df = self.datacollector.get_agent_vars_dataframe().reset_index()
        investment_df = pd.DataFrame(self.investment_log)
        plants_df = self.plants_dataframe()
        logs = {
            "model_log": model_df,
            "agent_log": agent_df,
            "investment_log": investment_df,
            "plants": plants_df,
        }
        if output_dir is not None:
            os.makedirs(output_dir, exist_ok=True)
            for name, df in logs.items():
                df.to_csv(os.path.join(output_dir, f"{name}.csv"), index=False)
            logger.info(f"Logs exported to {output_dir}")
        return logs

"""
Shared fixtures for the investment model tests.

Fuels have an energy density of 3.6 so that a technology with efficiency 1 burns exactly
one unit per MWh: its marginal cost equals the fuel price.
"""
import pytest
from unittest.mock import Mock

from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.Model import ElectricityMarketModel
from plant_investment.cooldowns import CooldownRegistry
from plant_investment.domain import (
    FUEL,
    ElectricitySpotMarket,
    LocalGovernment,
    PowerGridNode,
    Segment,
    SegmentLoad,
    Site,
    Substance,
    Technology,
)
from plant_investment.repository import PlantRepository
from plant_investment.utils import TimeSeries


def build_fuel(name):
    return Substance(name, energy_density=3.6, co2_density=0.0)


def build_technology(name="CCGT", category=FUEL, capacity=100.0, fuels=None, investment_cost=1000.0, **kwargs):
    if fuels is None and category == FUEL:
        fuels = [build_fuel("natural_gas")]
    return Technology(
        name=name,
        category=category,
        capacity=capacity,
        fuels=fuels or [],
        investment_cost=TimeSeries(start=investment_cost),
        **kwargs,
    )


def build_site(name="SiteA", province="ProvinceA", **kwargs):
    defaults = {"feedstocks": ["natural_gas"], "possible_plants": 5.0}
    defaults.update(kwargs)
    return Site(name=name, province=province, **defaults)


@pytest.fixture
def make_technology():
    """Factory for technologies with a single fuel of price-equal marginal cost."""
    return build_technology


@pytest.fixture
def make_site():
    """Factory for onshore gas sites with room for five plants."""
    return build_site


@pytest.fixture
def make_fuel():
    return build_fuel


@pytest.fixture
def node():
    """Grid node with zero bounds and unit deltas, so every gap equals the raw value."""
    return PowerGridNode(name="NodeA", zone="ZoneA")


@pytest.fixture
def market():
    return ElectricitySpotMarket(
        name="MarketA",
        zone="ZoneA",
        load_duration_curve=[SegmentLoad(Segment(1, 1000.0), 100.0)],
        value_of_lost_load=2000.0,
    )


@pytest.fixture
def repository():
    return PlantRepository()


@pytest.fixture
def cooldowns():
    return CooldownRegistry()


@pytest.fixture
def producer():
    """Investor with unit site weights, 10% cost of capital and ample cash."""
    return Mock(
        cash=1e9,
        debt_ratio_of_investments=0.5,
        equity_interest_rate=0.1,
        loan_interest_rate=0.1,
        downpayment_fraction_of_cash=1.0,
        risk_acceptance=0.0,
        weight_factor_density=1.0,
        weight_factor_wealth=1.0,
        weight_factor_distance=1.0,
        weight_factor_feedstock=1.0,
        weight_factor_depth_water=1.0,
        weight_factor_distance_shore=1.0,
        compensation=0.0,
    )


def build_scenario(**overrides):
    """
    One producer, one gas site and a 1000 MW peaker setting the price at 50.

    "Five" (fuel_a at 40, 5 per MW) and "Eight" (fuel_b at 30, 12 per MW) earn one
    operating tick at zero cost of capital: NPV per MW 5 and 8. Only fuel_b is offered
    at the site and the government welcomes the jobs, so Eight is built without
    compensation. Each plant takes two reference slots of 0.5 MW, so the site is
    full after one build.
    """
    fuels = {name: build_fuel(name) for name in ("fuel_a", "fuel_b", "fuel_p")}
    common = dict(capacity=1.0, depreciation_time=1, expected_leadtime=1, employment=1.0)
    scenario = dict(
        config={"reference_plant_capacity": 0.5},
        technologies=[
            build_technology("Five", fuels=[fuels["fuel_a"]], investment_cost=5.0, **common),
            build_technology("Eight", fuels=[fuels["fuel_b"]], investment_cost=12.0, **common),
        ],
        markets=[
            ElectricitySpotMarket(
                name="MarketA",
                zone="ZoneA",
                load_duration_curve=[SegmentLoad(Segment(1, 1.0), 100.0)],
                value_of_lost_load=2000.0,
            )
        ],
        nodes=[PowerGridNode(name="NodeA", zone="ZoneA")],
        sites=[build_site("GasSite", feedstocks=["fuel_b"], possible_plants=1.0)],
        governments=[LocalGovernment(name="ProvinceA")],
        producers=[
            {
                "name": "ProducerA",
                "market": "MarketA",
                "cash": 1e9,
                "debt_ratio_of_investments": 0.5,
                "equity_interest_rate": 0.0,
                "loan_interest_rate": 0.0,
            }
        ],
        price_history={"fuel_a": {0: 40.0}, "fuel_b": {0: 30.0}, "fuel_p": {0: 50.0}},
        seed=1,
    )
    scenario.update(overrides)
    return scenario


@pytest.fixture
def market_model():
    """Model of build_scenario with the peaker already operational."""
    model = ElectricityMarketModel(**build_scenario())
    peaker = build_technology("Peaker", fuels=[build_fuel("fuel_p")], capacity=1000.0)
    model.add_plant(PowerPlant(peaker, owner=None, node=model.nodes[0], construction_start_tick=-10))
    return model

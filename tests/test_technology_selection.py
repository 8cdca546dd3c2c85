import pytest

from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.domain import TechnologyNodeLimit, TechnologyTarget
from plant_investment.merit_order import MarketInformation
from plant_investment.technology_selection import (
    SelectionContext,
    TechnologySelector,
    evaluate_project_value,
)
from plant_investment.utils import TimeSeries

FUEL_PRICES = {"natural_gas": 30.0, "cheap_fuel": 10.0, "dear_fuel": 60.0}


@pytest.fixture
def build_context(producer, market, node, repository, cooldowns):
    """Expected peak price 50 over 1000 hours; max expected load 1000 MW."""

    def build(**overrides):
        values = dict(
            agent=producer,
            market=market,
            node=node,
            tick=0,
            future_tick=5,
            market_information=MarketInformation(expected_prices={1: 50.0}, max_expected_load=1000.0),
            fuel_prices=FUEL_PRICES,
            co2_price=0.0,
            repository=repository,
            cooldowns=cooldowns,
        )
        values.update(overrides)
        return SelectionContext(**values)

    return build


@pytest.fixture
def selector():
    return TechnologySelector()


def test_eligible_technology_is_valued(build_context, selector, make_technology):
    technology = make_technology("CCGT", depreciation_time=2)
    evaluation = selector.evaluate(build_context(), technology)

    assert evaluation.eligible
    assert evaluation.expected_marginal_cost == pytest.approx(30.0)
    assert evaluation.running_hours == 1000.0
    assert evaluation.operating_profit == pytest.approx(20.0 * 1000.0 * 100.0)
    assert evaluation.wacc == pytest.approx(0.1)
    expected_npv = -100_000.0 + 2_000_000.0 / 1.1 + 2_000_000.0 / 1.1 ** 2
    assert evaluation.npv == pytest.approx(expected_npv)
    assert evaluation.npv_per_mw == pytest.approx(expected_npv / 100.0)


def test_delay_lowers_npv(build_context, selector, make_technology):
    technology = make_technology("CCGT", expected_leadtime=1, expected_leadtime_delay=3)
    evaluation = selector.evaluate(build_context(), technology)
    assert evaluation.npv_delay < evaluation.npv


def test_fixed_operating_cost_reduces_profit(build_context, selector, make_technology):
    technology = make_technology("CCGT", fixed_operating_cost=TimeSeries(start=5000.0))
    evaluation = selector.evaluate(build_context(), technology)
    assert evaluation.fixed_operating_cost == pytest.approx(500_000.0)
    assert evaluation.operating_profit == pytest.approx(1_500_000.0)


def test_permit_risk_raises_wacc(build_context, selector, make_technology):
    technology = make_technology("CCGT", permit_risk=1.3)
    evaluation = selector.evaluate(build_context(), technology)
    assert evaluation.wacc == pytest.approx(0.13)


class TestFilters:
    def test_ccs_headroom_blocks_technology(self, build_context, selector, make_technology, node, cooldowns):
        technology = make_technology("CcgtCCS", carbon_capture_required=True)
        node.maximum_ccs_in_node = 2.0
        node.time_not_using_tech = 4
        evaluation = selector.evaluate(build_context(ccs_places_used=2.0), technology)

        assert evaluation.rejected_by == "ccs_headroom"
        assert not cooldowns.technology_available(technology, 3)
        assert cooldowns.technology_available(technology, 4)

    def test_ccs_headroom_ignores_technologies_without_capture(self, build_context, selector, make_technology, node):
        node.maximum_ccs_in_node = 0.0
        evaluation = selector.evaluate(build_context(), make_technology("CCGT"))
        assert evaluation.eligible

    def test_cooldown_rejects_until_resume_tick(self, build_context, selector, make_technology, cooldowns):
        technology = make_technology("CCGT")
        cooldowns.block_technology(technology, 0, 3)

        assert selector.evaluate(build_context(tick=2), technology).rejected_by == "cooldown"
        assert selector.evaluate(build_context(tick=3), technology).eligible
        assert len(cooldowns) == 0

    def test_country_share(self, build_context, selector, make_technology):
        technology = make_technology("CCGT", maximum_installed_capacity_fraction_in_country=0.05)
        evaluation = selector.evaluate(build_context(), technology)
        assert evaluation.rejected_by == "country_share"

    def test_country_share_counts_policy_target(self, build_context, selector, make_technology, market):
        technology = make_technology("Wind", category="wind", maximum_installed_capacity_fraction_in_country=0.5)
        assert selector.evaluate(build_context(), technology).eligible

        target = TechnologyTarget(technology=technology, market=market, trend=TimeSeries(start=900.0))
        evaluation = selector.evaluate(build_context(technology_targets=[target]), technology)
        assert evaluation.rejected_by == "country_share"

    def test_node_limit(self, build_context, selector, make_technology, node):
        technology = make_technology("CCGT")
        limit = TechnologyNodeLimit(technology=technology, node=node, upper_capacity_limit=TimeSeries(start=50.0))
        evaluation = selector.evaluate(build_context(node_limits=[limit]), technology)
        assert evaluation.rejected_by == "node_limit"

    def test_agent_share(self, build_context, selector, make_technology, producer, repository, node):
        technology = make_technology("CCGT", maximum_installed_capacity_fraction_per_agent=0.5)
        repository.add(PowerPlant(technology, owner=producer, node=node, construction_start_tick=-10))
        evaluation = selector.evaluate(build_context(), technology)
        assert evaluation.rejected_by == "agent_share"

    def test_market_pipeline(self, build_context, selector, make_technology, repository, node):
        other = make_technology("Coal", capacity=300.0)
        repository.add(PowerPlant(other, owner=None, node=node, construction_start_tick=0))
        evaluation = selector.evaluate(build_context(), make_technology("CCGT"))
        assert evaluation.rejected_by == "market_pipeline"

    def test_technology_pipeline(self, build_context, selector, make_technology, repository, node):
        technology = make_technology("CCGT")
        repository.add(PowerPlant(technology, owner=None, node=node, construction_start_tick=0))

        assert selector.evaluate(build_context(), technology).eligible
        context = build_context(config={"technology_pipeline_floor": 0})
        assert selector.evaluate(context, technology).rejected_by == "technology_pipeline"

    def test_downpayment(self, build_context, selector, make_technology, producer):
        producer.cash = 1000.0
        evaluation = selector.evaluate(build_context(), make_technology("CCGT"))
        assert evaluation.rejected_by == "downpayment"
        assert "cash" in evaluation.reason

    def test_first_rejection_wins(self, build_context, selector, make_technology, producer, cooldowns):
        technology = make_technology("CCGT", maximum_installed_capacity_fraction_in_country=0.0)
        cooldowns.block_technology(technology, 0, 5)
        producer.cash = 0.0
        assert selector.evaluate(build_context(), technology).rejected_by == "cooldown"


def test_running_hours_below_minimum(build_context, selector, make_technology):
    technology = make_technology("CCGT", minimum_running_hours=2000.0)
    evaluation = selector.evaluate(build_context(), technology)
    assert evaluation.rejected_by == "running_hours"
    assert evaluation.npv is None


def test_marginal_cost_above_price_does_not_run(build_context, selector, make_technology, make_fuel):
    technology = make_technology("Peaker", fuels=[make_fuel("dear_fuel")])
    evaluation = selector.evaluate(build_context(), technology)
    assert evaluation.running_hours == 0.0
    assert evaluation.gross_profit == 0.0
    assert evaluation.npv < 0


def test_custom_filter_list(build_context, make_technology):
    selector = TechnologySelector(filters=[])
    technology = make_technology("CCGT", maximum_installed_capacity_fraction_in_country=0.0)
    assert selector.evaluate(build_context(), technology).eligible


class TestSelect:
    def test_highest_npv_per_mw_wins(self, build_context, selector, make_technology, make_fuel):
        gas = make_technology("Alpha", fuels=[make_fuel("natural_gas")])
        cheap = make_technology("Beta", fuels=[make_fuel("cheap_fuel")])
        best, evaluations = selector.select(build_context(), [gas, cheap])

        assert best.technology is cheap
        assert [e.technology.name for e in evaluations] == ["Alpha", "Beta"]
        assert cheap.npv == pytest.approx(best.npv)
        assert cheap.npv_delay == pytest.approx(best.npv_delay)
        assert gas.npv == 0.0

    def test_ties_go_to_first_name(self, build_context, selector, make_technology):
        first = make_technology("A")
        second = make_technology("B")
        best, _ = selector.select(build_context(), [second, first])
        assert best.technology is first

    def test_none_without_positive_npv(self, build_context, selector, make_technology, make_fuel):
        technology = make_technology("Peaker", fuels=[make_fuel("dear_fuel")])
        best, evaluations = selector.select(build_context(), [technology])
        assert best is None
        assert len(evaluations) == 1
        assert technology.npv == 0.0

    def test_none_when_every_technology_is_filtered(self, build_context, selector, make_technology, producer):
        producer.cash = 0.0
        best, evaluations = selector.select(build_context(), [make_technology("A"), make_technology("B")])
        assert best is None
        assert {e.rejected_by for e in evaluations} == {"downpayment"}

    def test_repeatable(self, build_context, selector, make_technology, make_fuel):
        technologies = [
            make_technology("Alpha", fuels=[make_fuel("natural_gas")]),
            make_technology("Beta", fuels=[make_fuel("cheap_fuel")]),
        ]
        first, _ = selector.select(build_context(), technologies)
        second, _ = selector.select(build_context(), technologies)
        assert first.technology is second.technology
        assert first.npv == pytest.approx(second.npv)


def test_project_value_with_zero_profit_is_discounted_capital(make_technology):
    technology = make_technology("CCGT", depreciation_time=5)
    value = evaluate_project_value(technology, 2, 1000.0, 0.0, 0.1)
    assert value == pytest.approx(-500.0 - 500.0 / 1.1)

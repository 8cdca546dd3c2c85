import pytest

from plant_investment.Agents.EnergyProducer import EnergyProducer, InvestmentDecision


@pytest.fixture
def producer_agent(market_model):
    return market_model.producers[0]


class TestForecasts:
    def test_fuel_prices_follow_geometric_trend(self, market_model, producer_agent):
        market_model.price_history["fuel_a"] = {0: 100.0, 1: 110.0, 2: 121.0}
        expected = producer_agent.predict_fuel_prices(future_tick=4, current_tick=2)
        assert expected["fuel_a"] == pytest.approx(146.41)
        assert expected["fuel_b"] == pytest.approx(30.0)

    def test_look_back_window_limits_history(self, market_model, producer_agent):
        producer_agent.number_of_years_backlooking = 2
        market_model.price_history["fuel_a"] = {0: 1000.0, 1: 50.0, 2: 50.0}
        assert producer_agent.predict_fuel_prices(5, 2)["fuel_a"] == pytest.approx(50.0)

    def test_missing_fuel_history_raises(self, market_model, producer_agent):
        market_model.price_history["fuel_c"] = {}
        with pytest.raises(ValueError, match="fuel_c"):
            producer_agent.predict_fuel_prices(7, 0)

    def test_co2_is_not_a_fuel(self, market_model, producer_agent):
        market_model.price_history["CO2"] = {0: 20.0}
        assert "CO2" not in producer_agent.predict_fuel_prices(7, 0)
        assert producer_agent.predict_co2_price(7, 0) == pytest.approx(20.0)

    def test_co2_price_floor(self, market_model, producer_agent):
        market_model.config["co2_price_floor"] = 5.0
        assert producer_agent.predict_co2_price(7, 0) == 5.0
        market_model.price_history["CO2"] = {0: 0.0}
        assert producer_agent.predict_co2_price(7, 0) == 5.0
        market_model.price_history["CO2"] = {0: 2.0}
        assert producer_agent.predict_co2_price(7, 0) == pytest.approx(5.0)

    def test_demand_trend(self, market_model, producer_agent):
        market = producer_agent.investor_market
        market.demand_growth_trend.growth_rate = 0.1
        assert producer_agent.predict_demand(market, 7, 4) == pytest.approx(1.1 ** 7)


class TestAct:
    def test_invests_in_best_technology(self, market_model, producer_agent):
        decision = producer_agent.act(0)

        assert decision.invested
        assert decision.technology == "Eight"
        assert decision.npv_per_mw == pytest.approx(8.0)
        assert decision.site == "GasSite"
        assert decision.sites_assessed == 1
        assert decision.compensation == 0.0
        assert producer_agent.last_decision is decision
        assert market_model.investment_log == [decision.to_dict()]

        plant = next(p for p in market_model.repository if p.plant_id == decision.plant_id)
        assert plant.owner is producer_agent
        assert plant.loan.amount_per_payment == pytest.approx(6.0)
        assert producer_agent.calculate_technology_market_share(plant.technology, 1) == 1.0

    def test_no_positive_npv_makes_producer_unwilling(self, market_model, producer_agent):
        market_model.price_history["fuel_a"] = {0: 60.0}
        market_model.price_history["fuel_b"] = {0: 60.0}
        decision = producer_agent.act(0)

        assert not decision.invested
        assert decision.reason == "no technology with positive NPV"
        assert not producer_agent.willing_to_invest

    def test_no_site_keeps_producer_willing(self, market_model, producer_agent):
        market_model.price_history["fuel_b"] = {0: 60.0}
        decision = producer_agent.act(0)

        assert decision.technology == "Five"
        assert decision.reason == "no suitable site"
        assert producer_agent.willing_to_invest
        assert not market_model.cooldowns.technology_available(market_model.technologies_by_name["Five"], 0)

    def test_failed_permits_are_reported(self, market_model, producer_agent):
        market_model.governments["ProvinceA"].weight_employment = 0.0
        market_model.governments["ProvinceA"].weight_compensation = 0.0
        market_model.permit_negotiator.max_government_rounds = 3
        decision = producer_agent.act(0)

        assert decision.reason == "permit negotiations failed at every ranked site"
        assert market_model.sites[0].count_permit_failures == 1


def test_invest_only_when_willing(market_model, producer_agent):
    producer_agent.willing_to_invest = False
    assert producer_agent.invest() is None
    producer_agent.prepare()
    assert producer_agent.willing_to_invest
    assert isinstance(producer_agent.invest(), InvestmentDecision)


def test_invalid_debt_ratio(market_model):
    with pytest.raises(ValueError, match="debt_ratio_of_investments"):
        EnergyProducer("ProducerB", market_model, market_model.markets[0], debt_ratio_of_investments=1.5)


def test_invalid_look_back(market_model):
    with pytest.raises(ValueError, match="number_of_years_backlooking"):
        EnergyProducer("ProducerC", market_model, market_model.markets[0], number_of_years_backlooking=0)


def test_str_is_producer_id(producer_agent):
    assert str(producer_agent) == "ProducerA"

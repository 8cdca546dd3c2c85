import pytest
from unittest.mock import Mock

from plant_investment.Agents.Loan import DOWNPAYMENT
from plant_investment.Agents.PowerPlant import PowerPlant
from plant_investment.Model import ElectricityMarketModel
from plant_investment.permit_negotiation import NegotiationOutcome, NegotiationState, SiteAttempt
from plant_investment.technology_selection import TechnologyEvaluation
from plant_investment.utils import determine_loan_annuity


def build_model(draw=0.3):
    return ElectricityMarketModel(
        config={},
        technologies=[],
        markets=[],
        nodes=[],
        sites=[],
        governments=[],
        producers=[],
        price_history={},
        rng=Mock(random=Mock(return_value=draw)),
    )


@pytest.fixture
def technology(make_technology, make_fuel):
    return make_technology(
        "CCGT",
        capacity=10.0,
        investment_cost=1000.0,
        expected_leadtime=2,
        expected_leadtime_delay=4,
        depreciation_time=10,
        fuels=[make_fuel("natural_gas")],
    )


@pytest.fixture
def evaluation(technology, producer, node, make_fuel):
    plant = PowerPlant(technology, owner=producer, node=node, plant_id="proposal_CCGT")
    plant.fuel_mix = {make_fuel("natural_gas"): 1.0}
    return TechnologyEvaluation(technology=technology, plant=plant, npv=1e6, npv_delay=9e5)


def accepted_outcome(technology, site, average_utility=-0.5):
    attempt = SiteAttempt(
        site=site,
        government_compensation=100.0,
        local_compensation=50.0,
        average_utility=average_utility,
        state=NegotiationState.ACCEPT,
    )
    return NegotiationOutcome(technology=technology, state=NegotiationState.ACCEPT, attempts=[attempt])


@pytest.fixture
def committed(technology, evaluation, producer, node, make_site):
    producer.debt_ratio_of_investments = 0.6
    model = build_model()
    site = make_site()
    plant = model.investment_committer.commit(producer, evaluation, accepted_outcome(technology, site), node, 3)
    return model, plant, site


def test_plant_is_built_at_site_with_delay(committed, technology, producer):
    model, plant, site = committed

    assert plant.committed
    assert plant.site is site
    assert plant.owner is producer
    assert plant.actual_leadtime == 4
    assert plant.construction_start_tick == 3
    assert plant.operational_tick == 7
    assert plant.plant_id != "proposal_CCGT"
    assert list(plant.fuel_mix.values()) == [1.0]
    assert list(model.repository) == [plant]


def test_bookkeeping(committed, technology):
    _, _, site = committed
    assert technology.compensation_paid == pytest.approx(150.0)
    assert technology.number_of_investments == 1
    assert site.total_compensation_paid == pytest.approx(150.0)


def test_equity_paid_in_installments(committed, producer):
    model, plant, _ = committed
    # (10 MW * 1000 + 150 compensation) * 0.4 equity over 4 ticks
    installment = 10_150.0 * 0.4 / 4

    assert len(model.cash_flows) == 1
    cash_flow = model.cash_flows[0]
    assert cash_flow.category == DOWNPAYMENT
    assert cash_flow.money == pytest.approx(installment)
    assert cash_flow.payee is model.manufacturer
    assert producer.cash == pytest.approx(1e9 - installment)
    assert model.manufacturer.cash == pytest.approx(installment)

    down_payment = plant.down_payment
    assert down_payment.lender is model.manufacturer
    assert down_payment.amount_per_payment == pytest.approx(installment)
    assert down_payment.total_number_of_payments == 3


def test_debt_financed_by_bank_annuity(committed, producer):
    model, plant, _ = committed
    loan = plant.loan

    assert loan.lender is model.bank
    assert loan.borrower is producer
    assert loan.total_number_of_payments == 10
    assert loan.amount_per_payment == pytest.approx(determine_loan_annuity(10_150.0 * 0.6, 10, 0.1))
    assert loan.regarding_power_plant is plant
    assert [l.loan_id for l in model.loans] == ["loan_00001", "loan_00002"]


def test_non_negative_local_utility_keeps_nominal_lead_time(technology, evaluation):
    committer = build_model(draw=0.0).investment_committer
    assert committer.decide_lead_time(evaluation, 0.0) == 2
    assert committer.decide_lead_time(evaluation, 0.5) == 2


def test_draw_above_discontent_keeps_nominal_lead_time(technology, evaluation):
    committer = build_model(draw=0.6).investment_committer
    assert committer.decide_lead_time(evaluation, -0.5) == 2


def test_single_tick_construction_has_no_manufacturer_loan(make_technology, producer, node, make_site):
    technology = make_technology("Wind", category="wind", capacity=10.0, expected_leadtime=1)
    plant = PowerPlant(technology, owner=producer, node=node)
    evaluation = TechnologyEvaluation(technology=technology, plant=plant, npv=1e6, npv_delay=1e6)
    model = build_model()

    committed = model.investment_committer.commit(
        producer, evaluation, accepted_outcome(technology, make_site(), 0.0), node, 0
    )
    assert committed.down_payment is None
    assert len(model.loans) == 1
    assert model.cash_flows[0].money == pytest.approx(10_150.0 * 0.5)


def test_rejected_negotiation_cannot_be_committed(technology, evaluation, producer, node):
    outcome = NegotiationOutcome(technology=technology, state=NegotiationState.EXHAUSTED)
    model = build_model()
    with pytest.raises(ValueError, match="exhausted"):
        model.investment_committer.commit(producer, evaluation, outcome, node, 0)
    assert len(model.repository) == 0

"""
Tests of the CSV scenario loader and the simulation runner on the bundled input/ scenario.
"""
from pathlib import Path

import pandas as pd
import pytest

from plant_investment.errors import ConfigurationError, MissingReferenceDataError
from runner import load_scenario, run_market_model_csv, trim_empty_columns

INPUT_DIR = Path(__file__).resolve().parent.parent / "input"


@pytest.fixture(scope="module")
def scenario():
    return load_scenario(INPUT_DIR)


class TestLoadScenario:
    def test_entity_counts(self, scenario):
        assert len(scenario["technologies"]) == 6
        assert len(scenario["markets"]) == 1
        assert len(scenario["nodes"]) == 1
        assert len(scenario["sites"]) == 9
        assert len(scenario["governments"]) == 7
        assert len(scenario["producers"]) == 3
        assert len(scenario["initial_plants"]) == 21
        assert len(scenario["technology_targets"]) == 2
        assert len(scenario["node_limits"]) == 1

    def test_technologies(self, scenario):
        technologies = {t.name: t for t in scenario["technologies"]}
        coal = technologies["CoalPSC"]
        assert [fuel.name for fuel in coal.fuels] == ["coal", "biomass"]
        assert isinstance(coal.depreciation_time, int)
        assert technologies["Wind"].fuels == []
        assert technologies["CcgtCCS"].carbon_capture_required
        assert technologies["CCGT"].investment_cost.value(1) == pytest.approx(650000 * 0.995)

    def test_markets_nodes_and_sites(self, scenario):
        market = scenario["markets"][0]
        assert [s.segment.segment_id for s in market.load_duration_curve] == [1, 2, 3, 4, 5]
        assert market.strategic_reserve.reserve_volume == 800
        node = scenario["nodes"][0]
        assert node.zone == market.zone
        assert isinstance(node.number_of_locations_assessed, int)
        sites = {s.name: s for s in scenario["sites"]}
        assert sites["Zeewolde"].feedstocks == []
        assert sites["NoordzeeWest"].offshore

    def test_price_history(self, scenario):
        assert set(scenario["price_history"]) == {"natural_gas", "coal", "biomass", "CO2"}
        assert scenario["price_history"]["natural_gas"][0] == pytest.approx(6.0)

    def test_missing_required_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="config.csv"):
            load_scenario(tmp_path)

    def test_unknown_target_technology(self, tmp_path):
        for source in INPUT_DIR.glob("*.csv"):
            (tmp_path / source.name).write_text(source.read_text())
        (tmp_path / "targets.csv").write_text("technology,market,target\nFusion,NL,100\n")
        with pytest.raises(MissingReferenceDataError, match="Fusion"):
            load_scenario(tmp_path)


def test_trim_empty_columns():
    df = pd.DataFrame({"a": [1, 2], "b": [None, None]})
    assert list(trim_empty_columns(df).columns) == ["a"]


def test_run_market_model_csv(tmp_path):
    model_log, agent_log, investment_log, plants, log_text = run_market_model_csv(
        steps=2, input_dir=INPUT_DIR, output_dir=tmp_path, seed=1
    )

    assert list(model_log["Tick"]) == [0, 1, 2]
    assert set(agent_log["Producer_ID"]) == {"Energy_Producer_A", "Energy_Producer_B", "Energy_Producer_C"}
    assert len(plants) >= 21
    assert len(investment_log) >= 3
    assert "--- Step 0 ---" in log_text
    assert (tmp_path / "simulation_run.log").exists()
    assert (tmp_path / "investment_log.csv").exists()


def test_same_seed_same_decisions(tmp_path):
    first = run_market_model_csv(steps=2, input_dir=INPUT_DIR, output_dir=tmp_path / "a", seed=7)
    second = run_market_model_csv(steps=2, input_dir=INPUT_DIR, output_dir=tmp_path / "b", seed=7)
    columns = ["tick", "producer_id", "technology", "site", "plant_id", "reason"]
    pd.testing.assert_frame_equal(first[2][columns], second[2][columns])
    assert list(first[3]["Plant_ID"]) == list(second[3]["Plant_ID"])

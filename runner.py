from __future__ import annotations
from pathlib import Path
import logging
import sys
import pandas as pd
from io import StringIO
from typing import Any, Dict, List, Optional

# Resolve project root
_REPO_ROOT = Path(__file__).resolve().parent
_INPUT_DIR = _REPO_ROOT / "input"
_OUTPUT_DIR = _REPO_ROOT / "output"

# Ensure repo root is on sys.path
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from plant_investment.Model import ElectricityMarketModel
from plant_investment.domain import (
    ElectricitySpotMarket,
    FinancialParty,
    LocalGovernment,
    PowerGridNode,
    Segment,
    SegmentLoad,
    Site,
    StrategicReserve,
    Substance,
    Technology,
    TechnologyNodeLimit,
    TechnologyTarget,
)
from plant_investment.errors import ConfigurationError, MissingReferenceDataError
from plant_investment.utils import TimeSeries

logger = logging.getLogger("PlantInvestmentLogger")

NODE_INT_PARAMETERS = {"time_not_using_tech", "time_not_using_location", "number_of_locations_assessed"}
TECHNOLOGY_INT_FIELDS = (
    "depreciation_time",
    "expected_leadtime",
    "expected_leadtime_delay",
    "expected_permittime",
    "expected_lifetime",
)


def _read_csv(input_dir: Path, filename: str, required: bool = True) -> Optional[pd.DataFrame]:
    path = Path(input_dir) / filename
    if not path.exists():
        if required:
            raise ConfigurationError(f"missing input file {path}")
        return None
    df = pd.read_csv(path)
    df.columns = df.columns.str.strip()
    return df


def _records(df: Optional[pd.DataFrame]) -> List[Dict[str, Any]]:
    """Rows as dicts, without empty cells."""
    if df is None:
        return []
    return [
        {key: value for key, value in row.items() if not (isinstance(value, float) and pd.isna(value))}
        for row in df.to_dict(orient="records")
    ]


def _split_list(cell: Any) -> List[str]:
    if cell is None or (isinstance(cell, float) and pd.isna(cell)):
        return []
    return [item.strip() for item in str(cell).split(";") if item.strip()]


def _time_series(row: Dict[str, Any], name: str) -> TimeSeries:
    return TimeSeries(start=float(row.pop(name, 0.0)), growth_rate=float(row.pop(f"{name}_growth", 0.0)))


def _lookup(index: Dict[str, Any], name: str, kind: str) -> Any:
    try:
        return index[name]
    except KeyError:
        raise MissingReferenceDataError(f"unknown {kind} {name!r}") from None


def load_scenario(input_dir: Path = _INPUT_DIR) -> Dict[str, Any]:
    """
    Load a scenario from the CSV files of input_dir.

    Files:
      - config.csv: key,value
      - substances.csv: name, energy_density, co2_density
      - fuel_prices.csv: substance, tick, price
      - technologies.csv: Technology fields; fuels ';'-separated; investment_cost and
        fixed_operating_cost with optional *_growth columns.
      - markets.csv: name, zone, demand, demand_growth, value_of_lost_load and optional
        reserve_price / reserve_volume.
      - segments.csv: market, segment_id, length_in_hours, base_load
      - nodes.csv: node, parameter, value (long format, one row per node parameter)
      - sites.csv: Site fields; feedstocks ';'-separated.
      - governments.csv: LocalGovernment fields.
      - producers.csv: name, market and EnergyProducer parameters.
      - plants.csv (optional): technology, owner, site, construction_start_tick, capacity
      - targets.csv (optional): technology, market, target, target_growth
      - node_limits.csv (optional): technology, node, limit, limit_growth

    Returns:
        Keyword arguments for ElectricityMarketModel.
    """
    input_dir = Path(input_dir)
    config_df = _read_csv(input_dir, "config.csv")
    config = dict(zip(config_df["key"], config_df["value"]))

    substances = {
        row["name"]: Substance(**row) for row in _records(_read_csv(input_dir, "substances.csv"))
    }

    price_history: Dict[str, Dict[int, float]] = {}
    for row in _records(_read_csv(input_dir, "fuel_prices.csv")):
        price_history.setdefault(row["substance"], {})[int(row["tick"])] = float(row["price"])

    technologies = []
    for row in _records(_read_csv(input_dir, "technologies.csv")):
        fuels = [_lookup(substances, name, "substance") for name in _split_list(row.pop("fuels", None))]
        investment_cost = _time_series(row, "investment_cost")
        fixed_operating_cost = _time_series(row, "fixed_operating_cost")
        for key in TECHNOLOGY_INT_FIELDS:
            if key in row:
                row[key] = int(row[key])
        technologies.append(
            Technology(
                fuels=fuels,
                investment_cost=investment_cost,
                fixed_operating_cost=fixed_operating_cost,
                **row,
            )
        )

    segments_by_market: Dict[str, List[SegmentLoad]] = {}
    for row in _records(_read_csv(input_dir, "segments.csv")):
        segment = Segment(int(row["segment_id"]), float(row["length_in_hours"]))
        segments_by_market.setdefault(row["market"], []).append(SegmentLoad(segment, float(row["base_load"])))

    markets = []
    for row in _records(_read_csv(input_dir, "markets.csv")):
        reserve = None
        if "reserve_price" in row and "reserve_volume" in row:
            reserve = StrategicReserve(float(row["reserve_price"]), float(row["reserve_volume"]))
        markets.append(
            ElectricitySpotMarket(
                name=row["name"],
                zone=row["zone"],
                demand_growth_trend=_time_series(row, "demand"),
                load_duration_curve=sorted(
                    segments_by_market.get(row["name"], []), key=lambda s: s.segment.segment_id
                ),
                value_of_lost_load=float(row.get("value_of_lost_load", 2000.0)),
                strategic_reserve=reserve,
            )
        )

    node_parameters: Dict[str, Dict[str, Any]] = {}
    for row in _records(_read_csv(input_dir, "nodes.csv")):
        parameter = row["parameter"]
        value = row["value"]
        if parameter == "zone":
            value = str(value)
        elif parameter in NODE_INT_PARAMETERS:
            value = int(float(value))
        else:
            value = float(value)
        node_parameters.setdefault(row["node"], {})[parameter] = value
    nodes = [PowerGridNode(name=name, **params) for name, params in node_parameters.items()]

    sites = []
    for row in _records(_read_csv(input_dir, "sites.csv")):
        row["feedstocks"] = _split_list(row.get("feedstocks"))
        sites.append(Site(**row))

    governments = [LocalGovernment(**row) for row in _records(_read_csv(input_dir, "governments.csv"))]
    producers = _records(_read_csv(input_dir, "producers.csv"))
    initial_plants = _records(_read_csv(input_dir, "plants.csv", required=False))

    technologies_by_name = {technology.name: technology for technology in technologies}
    markets_by_name = {market.name: market for market in markets}
    nodes_by_name = {node.name: node for node in nodes}

    technology_targets = [
        TechnologyTarget(
            technology=_lookup(technologies_by_name, row["technology"], "technology"),
            market=_lookup(markets_by_name, row["market"], "market"),
            trend=_time_series(row, "target"),
        )
        for row in _records(_read_csv(input_dir, "targets.csv", required=False))
    ]
    node_limits = [
        TechnologyNodeLimit(
            technology=_lookup(technologies_by_name, row["technology"], "technology"),
            node=_lookup(nodes_by_name, row["node"], "node"),
            upper_capacity_limit=_time_series(row, "limit"),
        )
        for row in _records(_read_csv(input_dir, "node_limits.csv", required=False))
    ]

    return {
        "config": config,
        "technologies": technologies,
        "markets": markets,
        "nodes": nodes,
        "sites": sites,
        "governments": governments,
        "producers": producers,
        "price_history": price_history,
        "initial_plants": initial_plants,
        "technology_targets": technology_targets,
        "node_limits": node_limits,
        "manufacturer": FinancialParty("Manufacturer"),
        "bank": FinancialParty("Bank"),
    }


def trim_empty_columns(df: pd.DataFrame) -> pd.DataFrame:
    return df.dropna(axis=1, how="all")


def run_market_model(
    *,
    scenario: Dict[str, Any],
    seed: int | None,
    steps: int,
    log_filename: str = "simulation_run.log",
    output_dir: Path = _OUTPUT_DIR,
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame, pd.DataFrame, str]:
    """
    Run the electricity market model and return model data, producer data, the
    investment log, the plant fleet and the in-memory log text.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    log_path = output_dir / log_filename

    # Set up dual logging: file + in-memory
    log_stream = StringIO()
    root_logger = logging.getLogger()
    previous_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    stream_handler = logging.StreamHandler(log_stream)
    file_handler = logging.FileHandler(log_path, mode="w")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    stream_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)
    root_logger.addHandler(file_handler)

    try:
        model = ElectricityMarketModel(**scenario, seed=seed)
        for step in range(steps):
            logger.info(f"--- Step {step} ---")
            model.step()
            logger.info(
                f"Installed capacity: {model.repository.operational_capacity(int(model.schedule.time)):,.0f} MW"
            )
        logs = model.export_logs(output_dir)
    finally:
        root_logger.removeHandler(stream_handler)
        root_logger.removeHandler(file_handler)
        file_handler.close()
        root_logger.setLevel(previous_level)

    return (
        trim_empty_columns(logs["model_log"]),
        trim_empty_columns(logs["agent_log"]),
        logs["investment_log"],
        logs["plants"],
        log_stream.getvalue(),
    )


def run_market_model_csv(
    *,
    steps: int,
    input_dir: Path = _INPUT_DIR,
    log_filename: str = "simulation_run.log",
    output_dir: Path = _OUTPUT_DIR,
    seed=None,
):
    scenario = load_scenario(input_dir)
    return run_market_model(
        scenario=scenario,
        steps=steps,
        log_filename=log_filename,
        output_dir=output_dir,
        seed=seed,
    )


def run_market_model_csv_batch(
    *, steps: int, runs: int, input_dir: Path = _INPUT_DIR, output_dir: Path = _OUTPUT_DIR, base_seed=None
) -> Dict[str, pd.DataFrame]:
    """Run the scenario several times with consecutive seeds and stack the logs with a Run column."""
    model_logs, agent_logs, investment_logs, plant_logs = [], [], [], []
    for i in range(runs):
        seed = (base_seed + i) if base_seed is not None else None
        model_log, agent_log, investment_log, plants, _ = run_market_model_csv(
            steps=steps,
            input_dir=input_dir,
            log_filename="simulation_batch_run.log",
            output_dir=Path(output_dir) / f"run_{i}",
            seed=seed,
        )
        for collected, df in (
            (model_logs, model_log),
            (agent_logs, agent_log),
            (investment_logs, investment_log),
            (plant_logs, plants),
        ):
            df = df.copy()
            df["Run"] = i
            collected.append(df)

    return {
        "model_log": pd.concat(model_logs, ignore_index=True),
        "agent_log": pd.concat(agent_logs, ignore_index=True),
        "investment_log": pd.concat(investment_logs, ignore_index=True),
        "plants": pd.concat(plant_logs, ignore_index=True),
    }

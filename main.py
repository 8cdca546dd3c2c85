from plant_investment.Model import ElectricityMarketModel
from runner import load_scenario
import logging

log_filename = "simulation_run.log"
Steps = 30
Seed = 42

logging.basicConfig(
    filename=log_filename,
    filemode="w",
    level=logging.DEBUG,
    format="%(levelname)s - %(message)s",
)

# Unpack input data from CSV files
scenario = load_scenario("input")


if __name__ == "__main__":
    """
    Main execution block for the electricity market investment simulation.
    Loads the scenario, initializes the model and runs it for a fixed number of ticks.
    Logs installed and pipeline capacity at each tick.
    """
    # Initialise model
    model = ElectricityMarketModel(**scenario, seed=Seed)

    for step in range(Steps):
        logging.info(f"\n--- Step {step} ---\n")
        print(f"--- Step {step} ---")
        model.step()
        tick = int(model.schedule.time)
        logging.info(
            f"Installed capacity: {model.repository.operational_capacity(tick):,.0f} MW, "
            f"pipeline: {model.repository.pipeline_capacity(tick):,.0f} MW"
        )

    # After simulation run, export collected data to output folder
    model.export_logs("output")
    logging.info("Simulation data exported to output/")

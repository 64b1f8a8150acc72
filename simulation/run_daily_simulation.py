import os
import sys
from datetime import datetime, timedelta
from typing import Iterable, Optional

import numpy as np
import pandas as pd

# --- Add project root to Python path ---
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from logic.hysteresis import DwellController
from logic.switching import DEFAULT_SETTINGS, ControllerSettings, Relay, compute
from simulation.profiles import ScenarioEvent, build_input

INPUT_COLUMNS = [
    "v_r", "v_y", "v_b",
    "i_r", "i_y", "i_b",
    "v_pv1", "i_pv1",
    "v_pv2", "i_pv2",
    "v_pv3", "i_pv3",
    "enable",
]
RELAY_COLUMNS = [f"s{r.value}" for r in Relay]


def run_daily_simulation(
    date,
    step_minutes: int = 1,
    use_dwell: bool = False,
    min_hold_steps: int = 3,
    settings: ControllerSettings = DEFAULT_SETTINGS,
    pv_peak_a: float = 1.0,
    seed: Optional[int] = 42,
    noise_sigma: float = 0.05,
    events: Optional[Iterable[ScenarioEvent]] = None,
    output_csv_path: Optional[str] = "data/daily_sim_result.csv",
    verbose: bool = True,
) -> pd.DataFrame:
    """
    24-hour simulation of the switching node.

    - Samples the synthetic grid / PV signals once per step.
    - Calls the controller once per sample (raw compute() or the dwell wrapper).
    - One row per step: timestamp, inputs, status, imbalance, S1..S18 (0/1).

    Returns the result table; also writes it to output_csv_path unless that is None.
    """
    if step_minutes < 1:
        raise ValueError("step_minutes must be >= 1")

    events = list(events or [])
    rng = np.random.default_rng(seed) if seed is not None else None
    dwell = DwellController(min_hold_steps=min_hold_steps, settings=settings) if use_dwell else None

    total_steps = (24 * 60) // step_minutes
    current_time = datetime(date.year, date.month, date.day, 0, 0, 0)

    if verbose:
        print(f"Running daily switching simulation for {date.date()}...")
        print(f"Step size              : {step_minutes} minute(s)")
        print(f"Dwell wrapper          : {'on, hold ' + str(min_hold_steps) + ' steps' if dwell else 'off'}")
        print(f"Scenario events        : {len(events)}")
        if output_csv_path:
            print(f"Output CSV             : {output_csv_path}\n")

    rows = []
    for step in range(total_steps):
        minute_of_day = step * step_minutes

        inputs = build_input(
            minute_of_day,
            rng=rng,
            pv_peak_a=pv_peak_a,
            noise_sigma=noise_sigma,
            events=events,
        )
        decision = dwell.decide(inputs) if dwell else compute(inputs, settings)

        row = {
            "timestamp": current_time.strftime("%Y-%m-%d %H:%M:%S"),
            "minute_of_day": minute_of_day,
        }
        for col in INPUT_COLUMNS:
            row[col] = round(float(getattr(inputs, col)), 4)
        row["status"] = decision.status
        row["imbalance"] = round(decision.imbalance, 4)
        row["closed_count"] = decision.closed_count
        row.update(zip(RELAY_COLUMNS, decision.as_bits()))
        rows.append(row)

        current_time += timedelta(minutes=step_minutes)

    df = pd.DataFrame(rows, columns=["timestamp", "minute_of_day", *INPUT_COLUMNS,
                                     "status", "imbalance", "closed_count", *RELAY_COLUMNS])

    if output_csv_path:
        out_dir = os.path.dirname(output_csv_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        df.to_csv(output_csv_path, index=False)

    if verbose:
        print("Simulation complete.")
    return df


if __name__ == "__main__":
    run_daily_simulation(datetime.now())

import os
import sys
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

# --- Add project root to Python path ---
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from simulation.metrics import alarm_events, status_time_summary, total_toggles
from simulation.profiles import ScenarioEvent
from simulation.run_daily_simulation import run_daily_simulation


def _hm(hour: int, minute: int = 0) -> int:
    return hour * 60 + minute


SCENARIOS: List[Dict] = [
    {
        "name": "baseline",
        "description": "Clear day, even daytime load, unbalanced evening",
        "events": [],
    },
    {
        "name": "phase_overload",
        "description": "Phase R pulls 3.8 A for 20 minutes at 13:00",
        "events": [
            {"start_minute": _hm(13), "end_minute": _hm(13, 20), "field": "i_r", "value": 3.8},
        ],
    },
    {
        "name": "grid_sag",
        "description": "Phase Y sags to 10.5 V for 10 minutes at 10:00",
        "events": [
            {"start_minute": _hm(10), "end_minute": _hm(10, 10), "field": "v_y", "value": 10.5},
        ],
    },
    {
        "name": "cloud_shock",
        "description": "PV output drops to 10% between 12:00 and 13:00",
        "events": [
            {"start_minute": _hm(12), "end_minute": _hm(13), "field": "i_pv1", "scale": 0.1},
            {"start_minute": _hm(12), "end_minute": _hm(13), "field": "i_pv2", "scale": 0.1},
            {"start_minute": _hm(12), "end_minute": _hm(13), "field": "i_pv3", "scale": 0.1},
        ],
    },
    {
        "name": "breaker_trip",
        "description": "Master enable dropped for 5 minutes at 15:00",
        "events": [
            {"start_minute": _hm(15), "end_minute": _hm(15, 5), "field": "enable", "value": 0.0},
        ],
    },
    {
        "name": "threshold_flicker",
        "description": "Phase R sits near the imbalance threshold from 09:00 to 11:00",
        "events": [
            {"start_minute": _hm(9), "end_minute": _hm(11), "field": "i_r", "value": 2.2},
        ],
    },
]


def scenario_events(scenario: Dict) -> List[ScenarioEvent]:
    return [ScenarioEvent(**event) for event in scenario.get("events", [])]


def run_scenarios(
    output_dir: Optional[str] = "data",
    step_minutes: int = 1,
    min_hold_steps: int = 3,
    seed: int = 42,
    scenarios: Optional[List[Dict]] = None,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Run every scenario twice (raw controller, dwell wrapper) and compare
    relay toggles, alarm windows and time per status.
    """
    base_date = datetime.now()
    rows = []

    for sc in scenarios if scenarios is not None else SCENARIOS:
        events = scenario_events(sc)
        for use_dwell in (False, True):
            variant = "dwell" if use_dwell else "raw"
            if verbose:
                print(f"\n=== Scenario: {sc['name']} ({variant}) ===")
                print(f"Description: {sc.get('description', '')}")

            csv_path = None
            if output_dir:
                csv_path = os.path.join(output_dir, f"daily_sim_{sc['name']}_{variant}.csv")

            df = run_daily_simulation(
                date=base_date,
                step_minutes=step_minutes,
                use_dwell=use_dwell,
                min_hold_steps=min_hold_steps,
                seed=seed,
                events=events,
                output_csv_path=csv_path,
                verbose=verbose,
            )

            status_time = status_time_summary(df, step_minutes=step_minutes).set_index("status")
            alarms = alarm_events(df, step_minutes=step_minutes)

            row = {
                "scenario": sc["name"],
                "variant": variant,
                "toggles": total_toggles(df),
                "alarm_windows": len(alarms),
                "max_imbalance": float(df["imbalance"].max()),
            }
            for status, minutes in status_time["minutes"].items():
                row[f"{status.lower()}_min"] = int(minutes)
            rows.append(row)

    return pd.DataFrame(rows)


def print_comparison(df: pd.DataFrame) -> None:
    pd.set_option("display.max_rows", None)
    pd.set_option("display.width", 140)

    print("\n=== Scenario Comparison: Relay Toggles and Status Time ===\n")
    print(df.to_string(index=False, float_format=lambda x: f"{x:0.2f}"))
    print("\nColumns:")
    print("  toggles        : total relay open/close transitions over the day")
    print("  alarm_windows  : contiguous OVERLOAD / OFFLINE windows")
    print("  max_imbalance  : largest max-min phase current spread [A]")
    print("  *_min          : minutes spent in each status\n")


if __name__ == "__main__":
    print_comparison(run_scenarios())

import os
import sys
from typing import Iterable, Optional, Union

import matplotlib.pyplot as plt
import pandas as pd

# --- Add project root to Python path ---
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from logic.switching import DEFAULT_SETTINGS, ControllerSettings, Relay
from simulation.metrics import STATUSES, load_table

FrameOrPath = Union[pd.DataFrame, str]


def minutes_to_hours(series):
    return series / 60.0


def _finish(show: bool, save_path: Optional[str]) -> None:
    plt.tight_layout()
    if save_path:
        out_dir = os.path.dirname(save_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        plt.savefig(save_path)
    if show:
        plt.show()
    else:
        plt.close()


def plot_phase_currents(
    data: FrameOrPath = "data/daily_sim_result.csv",
    settings: ControllerSettings = DEFAULT_SETTINGS,
    show: bool = True,
    save_path: Optional[str] = None,
):
    df = load_table(data)
    hours = minutes_to_hours(df["minute_of_day"])

    plt.figure(figsize=(12, 4))
    plt.plot(hours, df["i_r"].abs(), label="Phase R", color="tab:red")
    plt.plot(hours, df["i_y"].abs(), label="Phase Y", color="goldenrod")
    plt.plot(hours, df["i_b"].abs(), label="Phase B", color="tab:blue")
    plt.axhline(settings.i_phase_max, linestyle="--", color="black", label="Overload limit")
    plt.xlabel("Hour of Day")
    plt.ylabel("Current (A)")
    plt.title("Phase Currents")
    plt.legend()
    plt.grid(True)
    _finish(show, save_path)


def plot_imbalance(
    data: FrameOrPath = "data/daily_sim_result.csv",
    settings: ControllerSettings = DEFAULT_SETTINGS,
    show: bool = True,
    save_path: Optional[str] = None,
):
    df = load_table(data)
    hours = minutes_to_hours(df["minute_of_day"])

    plt.figure(figsize=(12, 4))
    plt.plot(hours, df["imbalance"], label="Imbalance (A)")
    plt.axhline(settings.imbalance_threshold, linestyle="--", color="black", label="Balancing threshold")
    plt.xlabel("Hour of Day")
    plt.ylabel("max - min phase current (A)")
    plt.title("Phase Imbalance")
    plt.legend()
    plt.grid(True)
    _finish(show, save_path)


def plot_status_timeline(
    data: FrameOrPath = "data/daily_sim_result.csv",
    show: bool = True,
    save_path: Optional[str] = None,
):
    df = load_table(data)
    hours = minutes_to_hours(df["minute_of_day"])
    codes = df["status"].map({s: i for i, s in enumerate(STATUSES)})

    plt.figure(figsize=(12, 3))
    plt.step(hours, codes, where="post")
    plt.yticks(range(len(STATUSES)), STATUSES)
    plt.xlabel("Hour of Day")
    plt.title("Controller Status Timeline")
    plt.grid(True)
    _finish(show, save_path)


def plot_relay_states(
    data: FrameOrPath = "data/daily_sim_result.csv",
    relays: Optional[Iterable[Relay]] = None,
    show: bool = True,
    save_path: Optional[str] = None,
):
    """Stacked step chart, one lane per relay (1 = closed)."""
    df = load_table(data)
    hours = minutes_to_hours(df["minute_of_day"])
    relays = list(relays) if relays is not None else list(Relay)

    plt.figure(figsize=(12, max(3, len(relays) * 0.4)))
    for lane, relay in enumerate(relays):
        plt.step(hours, df[f"s{relay.value}"] * 0.8 + lane, where="post")
    plt.yticks(
        [lane + 0.4 for lane in range(len(relays))],
        [f"{r.label} {r.name}" for r in relays],
    )
    plt.xlabel("Hour of Day")
    plt.title("Relay States")
    plt.grid(True, axis="x")
    _finish(show, save_path)


if __name__ == "__main__":
    if os.path.exists("data/daily_sim_result.csv"):
        print("Plotting from data/daily_sim_result.csv ...")
        plot_phase_currents()
        plot_imbalance()
        plot_status_timeline()
        plot_relay_states()
    else:
        print("data/daily_sim_result.csv not found – run the daily simulation first.")

import os
from typing import Iterable, Union

import pandas as pd

from logic.switching import Relay

FrameOrPath = Union[pd.DataFrame, str]

RELAY_COLUMNS = [f"s{r.value}" for r in Relay]
STATUSES = ("NORMAL", "BALANCING", "OVERLOAD", "OFFLINE")


def load_table(data: FrameOrPath) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    if not os.path.exists(data):
        raise FileNotFoundError(data)
    return pd.read_csv(data)


def _require(df: pd.DataFrame, columns: Iterable[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Simulation table is missing columns: {missing}")


def count_toggles(series: pd.Series) -> int:
    """Number of state changes between consecutive samples."""
    if len(series) < 2:
        return 0
    return int((series != series.shift()).iloc[1:].sum())


def analyse_relay_activity(data: FrameOrPath, step_minutes: int = 1) -> pd.DataFrame:
    """
    Compute, for each relay S1..S18:
      - minutes closed
      - % of the run closed
      - number of toggles (open<->closed)
    """
    df = load_table(data)
    _require(df, RELAY_COLUMNS)

    total_minutes = len(df) * step_minutes
    results = []

    for relay, col in zip(Relay, RELAY_COLUMNS):
        states = df[col].astype(int)
        closed_minutes = int(states.sum()) * step_minutes
        results.append({
            "relay": relay.label,
            "role": relay.name,
            "closed_minutes": closed_minutes,
            "closed_pct": 100.0 * closed_minutes / total_minutes if total_minutes > 0 else 0.0,
            "toggles": count_toggles(states),
        })

    return pd.DataFrame(results)


def total_toggles(data: FrameOrPath) -> int:
    df = load_table(data)
    _require(df, RELAY_COLUMNS)
    return sum(count_toggles(df[col].astype(int)) for col in RELAY_COLUMNS)


def status_time_summary(data: FrameOrPath, step_minutes: int = 1) -> pd.DataFrame:
    """Minutes and share of the run spent in each status."""
    df = load_table(data)
    _require(df, ["status"])

    total_minutes = len(df) * step_minutes
    counts = df["status"].value_counts()

    rows = []
    for status in STATUSES:
        minutes = int(counts.get(status, 0)) * step_minutes
        rows.append({
            "status": status,
            "minutes": minutes,
            "pct": 100.0 * minutes / total_minutes if total_minutes > 0 else 0.0,
        })
    return pd.DataFrame(rows)


def alarm_events(
    data: FrameOrPath,
    step_minutes: int = 1,
    statuses: Iterable[str] = ("OVERLOAD", "OFFLINE"),
) -> pd.DataFrame:
    """
    Contiguous windows spent in an alarm status.

    One row per window: status, start/end minute (end exclusive), duration
    and the peak imbalance seen inside the window.
    """
    df = load_table(data)
    _require(df, ["status", "minute_of_day", "imbalance"])

    columns = ["status", "start_minute", "end_minute", "duration_minutes", "peak_imbalance"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    statuses = set(statuses)
    run_id = (df["status"] != df["status"].shift()).cumsum()

    rows = []
    for _, run in df.groupby(run_id, sort=True):
        status = run["status"].iloc[0]
        if status not in statuses:
            continue
        start = int(run["minute_of_day"].iloc[0])
        end = int(run["minute_of_day"].iloc[-1]) + step_minutes
        rows.append({
            "status": status,
            "start_minute": start,
            "end_minute": end,
            "duration_minutes": end - start,
            "peak_imbalance": float(run["imbalance"].max()),
        })

    return pd.DataFrame(rows, columns=columns)

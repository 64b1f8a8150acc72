"""Tests for the day-simulation harness (simulation.*)."""

import os
from datetime import datetime

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from logic.switching import Relay, SystemInput
from simulation import plot_daily_graphs
from simulation.metrics import (
    RELAY_COLUMNS,
    alarm_events,
    analyse_relay_activity,
    count_toggles,
    status_time_summary,
    total_toggles,
)
from simulation.profiles import (
    ScenarioEvent,
    add_noise,
    apply_events,
    build_input,
    simulate_phase_currents,
    simulate_pv_current,
)
from simulation.run_daily_simulation import run_daily_simulation
from simulation.run_scenarios import SCENARIOS, run_scenarios, scenario_events

DATE = datetime(2024, 6, 21)


def quiet_day(**kwargs) -> pd.DataFrame:
    params = dict(
        date=DATE,
        step_minutes=10,
        seed=None,
        noise_sigma=0.0,
        output_csv_path=None,
        verbose=False,
    )
    params.update(kwargs)
    return run_daily_simulation(**params)


def relay_table(statuses, minutes=None, **relay_columns) -> pd.DataFrame:
    n = len(statuses)
    data = {
        "minute_of_day": minutes if minutes is not None else list(range(n)),
        "status": statuses,
        "imbalance": [0.1 * i for i in range(n)],
    }
    for col in RELAY_COLUMNS:
        data[col] = relay_columns.get(col, [0] * n)
    return pd.DataFrame(data)


# ---------- profiles ----------

def test_pv_current_curve():
    assert simulate_pv_current(0) == 0.0
    assert simulate_pv_current(5 * 60) == 0.0
    assert simulate_pv_current(12 * 60, peak_a=2.0) == pytest.approx(2.0)
    assert simulate_pv_current(19 * 60) == 0.0


def test_phase_currents_evening_is_unbalanced():
    i_r, i_y, i_b = simulate_phase_currents(20 * 60)
    assert max(i_r, i_y, i_b) - min(i_r, i_y, i_b) > 0.8
    i_r, i_y, i_b = simulate_phase_currents(12 * 60)
    assert max(i_r, i_y, i_b) - min(i_r, i_y, i_b) < 0.8


def test_add_noise_without_rng_is_identity():
    assert add_noise([1.0, 2.0], None) == [1.0, 2.0]
    noisy = add_noise([1.0, 2.0], np.random.default_rng(0), sigma=0.1)
    assert noisy != [1.0, 2.0]
    assert len(noisy) == 2


def test_build_input_day_and_night():
    night = build_input(2 * 60, noise_sigma=0.0)
    assert night.v_pv1 == 0.0 and night.i_pv1 == 0.0
    assert night.v_r == 12.0

    noon = build_input(12 * 60, noise_sigma=0.0)
    assert noon.v_pv1 == 13.0
    assert noon.pv(1).power == pytest.approx(13.0)


def test_scenario_event_value_and_scale():
    inputs = SystemInput(i_r=1.0, i_pv1=2.0)
    set_event = ScenarioEvent(100, 110, "iR", value=3.8)
    scale_event = ScenarioEvent(100, 110, "i_pv1", scale=0.5)
    assert set_event.field == "i_r"

    changed = apply_events(inputs, 105, [set_event, scale_event])
    assert changed.i_r == 3.8
    assert changed.i_pv1 == pytest.approx(1.0)
    assert apply_events(inputs, 110, [set_event, scale_event]) == inputs


@pytest.mark.parametrize(
    "kwargs",
    [
        {"start_minute": 0, "end_minute": 10, "field": "i_x", "value": 1.0},
        {"start_minute": 10, "end_minute": 10, "field": "i_r", "value": 1.0},
        {"start_minute": 0, "end_minute": 10, "field": "i_r"},
        {"start_minute": 0, "end_minute": 10, "field": "i_r", "value": 1.0, "scale": 2.0},
    ],
)
def test_scenario_event_validation(kwargs):
    with pytest.raises(ValueError):
        ScenarioEvent(**kwargs)


# ---------- daily simulation ----------

def test_daily_simulation_shape_and_csv(tmp_path):
    csv_path = os.path.join(str(tmp_path), "out", "day.csv")
    df = quiet_day(output_csv_path=csv_path)

    assert len(df) == 24 * 6
    assert list(df.columns[:2]) == ["timestamp", "minute_of_day"]
    for col in ["status", "imbalance", "closed_count", *RELAY_COLUMNS]:
        assert col in df.columns
    assert os.path.exists(csv_path)
    assert len(pd.read_csv(csv_path)) == len(df)


def test_daily_simulation_statuses_follow_load_shape():
    df = quiet_day().set_index("minute_of_day")
    assert df.loc[12 * 60, "status"] == "NORMAL"
    assert df.loc[20 * 60, "status"] == "BALANCING"
    assert df.loc[12 * 60, "s4"] == 1   # PV1 onto R at noon
    assert df.loc[2 * 60, "s4"] == 0    # no PV at night
    assert (df["closed_count"] <= 18).all()


def test_breaker_trip_event_takes_node_offline():
    events = [ScenarioEvent(600, 630, "enable", value=0.0)]
    df = quiet_day(events=events).set_index("minute_of_day")
    assert list(df.loc[[600, 610, 620], "status"]) == ["OFFLINE"] * 3
    assert df.loc[600, RELAY_COLUMNS].sum() == 0
    assert df.loc[630, "status"] == "NORMAL"


def test_dwell_reduces_toggles_on_flicker():
    events = [ScenarioEvent(9 * 60, 11 * 60, "i_r", value=2.2)]
    raw = run_daily_simulation(DATE, step_minutes=1, seed=7, noise_sigma=0.05,
                               events=events, output_csv_path=None, verbose=False)
    held = run_daily_simulation(DATE, step_minutes=1, seed=7, noise_sigma=0.05,
                                events=events, use_dwell=True, min_hold_steps=5,
                                output_csv_path=None, verbose=False)
    assert total_toggles(held) <= total_toggles(raw)


def test_simulation_rejects_bad_step():
    with pytest.raises(ValueError):
        quiet_day(step_minutes=0)


# ---------- metrics ----------

def test_count_toggles():
    assert count_toggles(pd.Series([0, 1, 1, 0, 1])) == 3
    assert count_toggles(pd.Series([1])) == 0


def test_relay_activity():
    df = relay_table(["NORMAL"] * 4, s1=[1, 1, 1, 1], s14=[0, 1, 0, 1])
    activity = analyse_relay_activity(df, step_minutes=5).set_index("relay")

    assert len(activity) == 18
    assert activity.loc["S1", "closed_minutes"] == 20
    assert activity.loc["S1", "closed_pct"] == pytest.approx(100.0)
    assert activity.loc["S1", "toggles"] == 0
    assert activity.loc["S14", "toggles"] == 3
    assert activity.loc["S14", "role"] == Relay.PV_TO_B.name


def test_status_time_summary():
    df = relay_table(["NORMAL", "NORMAL", "BALANCING", "OVERLOAD"])
    summary = status_time_summary(df, step_minutes=2).set_index("status")
    assert summary.loc["NORMAL", "minutes"] == 4
    assert summary.loc["OFFLINE", "minutes"] == 0
    assert summary["pct"].sum() == pytest.approx(100.0)


def test_alarm_events_groups_contiguous_windows():
    statuses = ["NORMAL", "OVERLOAD", "OVERLOAD", "NORMAL", "OFFLINE", "OVERLOAD"]
    df = relay_table(statuses, minutes=[0, 10, 20, 30, 40, 50])
    events = alarm_events(df, step_minutes=10)

    assert list(events["status"]) == ["OVERLOAD", "OFFLINE", "OVERLOAD"]
    first = events.iloc[0]
    assert first["start_minute"] == 10
    assert first["end_minute"] == 30
    assert first["duration_minutes"] == 20
    assert first["peak_imbalance"] == pytest.approx(0.2)


def test_alarm_events_empty_table():
    events = alarm_events(relay_table([]))
    assert events.empty
    assert "duration_minutes" in events.columns


def test_metrics_missing_inputs(tmp_path):
    with pytest.raises(FileNotFoundError):
        analyse_relay_activity(os.path.join(str(tmp_path), "missing.csv"))
    with pytest.raises(ValueError):
        analyse_relay_activity(pd.DataFrame({"status": ["NORMAL"]}))


# ---------- scenarios ----------

def test_every_scenario_definition_builds_events():
    names = [sc["name"] for sc in SCENARIOS]
    assert len(names) == len(set(names))
    for sc in SCENARIOS:
        for event in scenario_events(sc):
            assert isinstance(event, ScenarioEvent)


def test_run_scenarios_compares_raw_and_dwell():
    picked = [sc for sc in SCENARIOS if sc["name"] in ("baseline", "breaker_trip")]
    df = run_scenarios(output_dir=None, step_minutes=5, scenarios=picked, verbose=False)

    assert len(df) == 4
    assert set(df["variant"]) == {"raw", "dwell"}
    trip = df[(df["scenario"] == "breaker_trip") & (df["variant"] == "raw")].iloc[0]
    assert trip["offline_min"] == 5
    assert trip["alarm_windows"] >= 1


# ---------- plots ----------

def test_plots_save_to_file(tmp_path):
    df = quiet_day(step_minutes=30)
    for name, func in [
        ("currents.png", plot_daily_graphs.plot_phase_currents),
        ("imbalance.png", plot_daily_graphs.plot_imbalance),
        ("status.png", plot_daily_graphs.plot_status_timeline),
        ("relays.png", plot_daily_graphs.plot_relay_states),
    ]:
        path = os.path.join(str(tmp_path), name)
        func(df, show=False, save_path=path)
        assert os.path.exists(path)

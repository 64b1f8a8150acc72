import math
from dataclasses import dataclass, fields, replace
from typing import Iterable, List, Optional, Tuple

import numpy as np

from logic.switching import SystemInput, HOST_FIELD_NAMES

NOMINAL_GRID_V = 12.0
PV_ON_VOLTAGE = 13.0

# PV2 and PV3 are smaller strings than PV1
PV_SHARES = (1.0, 0.5, 0.25)


# ---------- Solar & Load Models ----------

def simulate_pv_current(minute_of_day: int, peak_a: float = 1.0) -> float:
    """
    Simple PV string current curve for a day.

    - Sunrise ~06:00 (360 min)
    - Sunset  ~18:00 (1080 min)
    - Peak at ~12:00 (720 min)
    """
    sunrise = 6 * 60
    sunset = 18 * 60

    if minute_of_day < sunrise or minute_of_day > sunset:
        return 0.0

    # Map [sunrise, sunset] -> [0, pi]
    x = (minute_of_day - sunrise) / (sunset - sunrise) * math.pi
    return max(peak_a * math.sin(x), 0.0)


def simulate_phase_currents(minute_of_day: int) -> Tuple[float, float, float]:
    """
    Base phase currents [A] for R, Y, B.
    Rough occupancy pattern:
    - Morning (6-9): moderate, fairly even
    - Daytime (9-18): even
    - Evening (18-23): R carries the kitchen, clearly unbalanced
    - Night (23-6): very low
    """
    hour = (minute_of_day // 60) % 24

    if 6 <= hour < 9:  # morning
        return 1.4, 1.2, 1.1
    if 9 <= hour < 18:  # daytime
        return 1.5, 1.5, 1.4
    if 18 <= hour < 23:  # evening peak
        return 2.5, 1.5, 1.3
    return 0.6, 0.5, 0.55  # night


def add_noise(
    values: Iterable[float],
    rng: Optional[np.random.Generator],
    sigma: float = 0.05,
) -> List[float]:
    """Gaussian measurement noise; no-op when rng is None or sigma is 0."""
    values = [float(v) for v in values]
    if rng is None or sigma <= 0:
        return values
    noise = rng.normal(0.0, sigma, size=len(values))
    return [v + float(n) for v, n in zip(values, noise)]


# ---------- Scenario events ----------

_INPUT_FIELDS = {f.name for f in fields(SystemInput)}


@dataclass(frozen=True)
class ScenarioEvent:
    """
    Override one input between start_minute (inclusive) and end_minute
    (exclusive). Either `value` replaces the signal or `scale` multiplies it.
    `field` accepts SystemInput names (i_r) or host names (iR).
    """

    start_minute: int
    end_minute: int
    field: str
    value: Optional[float] = None
    scale: Optional[float] = None

    def __post_init__(self) -> None:
        name = HOST_FIELD_NAMES.get(self.field, self.field)
        if name not in _INPUT_FIELDS:
            raise ValueError(f"Unknown input field {self.field!r}")
        object.__setattr__(self, "field", name)
        if self.end_minute <= self.start_minute:
            raise ValueError("end_minute must be after start_minute")
        if (self.value is None) == (self.scale is None):
            raise ValueError("Give exactly one of value / scale")

    def active(self, minute_of_day: int) -> bool:
        return self.start_minute <= minute_of_day < self.end_minute

    def apply(self, inputs: SystemInput) -> SystemInput:
        if self.value is not None:
            new = self.value
        else:
            new = getattr(inputs, self.field) * self.scale
        return replace(inputs, **{self.field: new})


def apply_events(
    inputs: SystemInput,
    minute_of_day: int,
    events: Optional[Iterable[ScenarioEvent]],
) -> SystemInput:
    for event in events or ():
        if event.active(minute_of_day):
            inputs = event.apply(inputs)
    return inputs


def build_input(
    minute_of_day: int,
    rng: Optional[np.random.Generator] = None,
    pv_peak_a: float = 1.0,
    noise_sigma: float = 0.05,
    events: Optional[Iterable[ScenarioEvent]] = None,
) -> SystemInput:
    """
    Sample the synthetic node at one minute of the day.

    Grid voltages sit at NOMINAL_GRID_V, PV strings report PV_ON_VOLTAGE
    while producing and 0 V at night.
    """
    i_r, i_y, i_b = add_noise(simulate_phase_currents(minute_of_day), rng, noise_sigma)
    v_r, v_y, v_b = add_noise([NOMINAL_GRID_V] * 3, rng, noise_sigma)

    pv_base = simulate_pv_current(minute_of_day, peak_a=pv_peak_a)
    pv_currents = [max(c, 0.0) for c in add_noise([pv_base * s for s in PV_SHARES], rng, noise_sigma / 5)]
    pv_voltages = [PV_ON_VOLTAGE if pv_base > 0 else 0.0 for _ in PV_SHARES]

    inputs = SystemInput(
        v_r=v_r, v_y=v_y, v_b=v_b,
        i_r=i_r, i_y=i_y, i_b=i_b,
        v_pv1=pv_voltages[0], i_pv1=pv_currents[0],
        v_pv2=pv_voltages[1], i_pv2=pv_currents[1],
        v_pv3=pv_voltages[2], i_pv3=pv_currents[2],
        v_load1=v_r, v_load2=v_y, v_load3=v_b,
        enable=1.0,
    )
    return apply_events(inputs, minute_of_day, events)

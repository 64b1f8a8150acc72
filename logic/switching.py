"""
Switching logic for a three-phase LV node with PV injection.

Key ideas:
- One call, one decision: compute() maps a measurement snapshot to the
  state of the 18 relays, a status label and the phase imbalance.
- Grid health gates everything: disabled or out-of-range grid -> all open.
- Loads stay on fixed phases until the imbalance crosses a threshold,
  then they are spread over the phases by current.
- Overcurrent protection runs last and always wins over PV routing.
"""

import logging
import math
from dataclasses import asdict, dataclass, field, fields
from enum import IntEnum
from typing import Any, Dict, List, Literal, Mapping, Tuple

_LOGGER = logging.getLogger(__name__)

Phase = Literal["R", "Y", "B"]
SystemStatus = Literal["NORMAL", "BALANCING", "OVERLOAD", "OFFLINE"]

PHASES: Tuple[Phase, ...] = ("R", "Y", "B")
NUM_RELAYS = 18


class Relay(IntEnum):
    """Physical relays S1..S18. The value is the 1-based domain number."""

    GRID_R = 1
    GRID_Y = 2
    GRID_B = 3
    PV_TO_R = 4
    PV_TO_Y = 5
    LOAD1_R = 6
    LOAD1_Y = 7
    LOAD1_B = 8
    LOAD2_R = 9
    LOAD2_Y = 10
    LOAD2_B = 11
    LOAD3_R = 12
    AUX_INTERLOCK = 13
    PV_TO_B = 14
    PV3_TO_R = 15
    PV3_TO_Y = 16
    LOAD3_BY = 17
    EMERGENCY_PATH = 18

    @property
    def index(self) -> int:
        """Position of this relay in SwitchDecision.relays."""
        return self.value - 1

    @property
    def label(self) -> str:
        return f"S{self.value}"


GRID_RELAYS: Dict[Phase, Relay] = {
    "R": Relay.GRID_R,
    "Y": Relay.GRID_Y,
    "B": Relay.GRID_B,
}

# Load 3 only distinguishes R from "B or Y".
LOAD_RELAYS: Dict[int, Dict[Phase, Relay]] = {
    1: {"R": Relay.LOAD1_R, "Y": Relay.LOAD1_Y, "B": Relay.LOAD1_B},
    2: {"R": Relay.LOAD2_R, "Y": Relay.LOAD2_Y, "B": Relay.LOAD2_B},
    3: {"R": Relay.LOAD3_R, "Y": Relay.LOAD3_BY, "B": Relay.LOAD3_BY},
}

# (PV source, target phase) -> relay. PV3 does not follow the PV1/PV2 pattern;
# the table is kept as wired until the field layout is confirmed.
PV_INJECTION_RELAYS: Dict[int, Dict[Phase, Relay]] = {
    1: {"R": Relay.PV_TO_R, "Y": Relay.PV_TO_Y, "B": Relay.PV_TO_B},
    2: {"R": Relay.PV_TO_R, "Y": Relay.PV_TO_Y, "B": Relay.PV_TO_B},
    3: {"R": Relay.PV3_TO_R, "Y": Relay.PV3_TO_Y, "B": Relay.PV_TO_B},
}

# Every PV relay that feeds a given phase (opened on overcurrent).
PHASE_PV_RELAYS: Dict[Phase, Tuple[Relay, ...]] = {
    "R": (Relay.PV_TO_R, Relay.PV3_TO_R),
    "Y": (Relay.PV_TO_Y, Relay.PV3_TO_Y),
    "B": (Relay.PV_TO_B,),
}

ALWAYS_ON_RELAYS: Tuple[Relay, ...] = (Relay.AUX_INTERLOCK, Relay.EMERGENCY_PATH)


@dataclass(frozen=True)
class ControllerSettings:
    """
    Thresholds used by the controller.

    The defaults are the bench values of the scaled-down rig (12 V nominal);
    calibrate them to the nominal voltage of a real installation.

    Attributes:
        v_grid_min / v_grid_max: grid phase voltage must lie strictly between these [V]
        v_pv_min: minimum PV voltage for injection [V]
        i_phase_max: phase current above which the phase is overloaded [A]
        imbalance_threshold: max-min phase current spread that triggers balancing [A]
        power_min: minimum PV power for injection [W]
        enable_threshold: enable values below this count as "off"
    """

    v_grid_min: float = 11.0
    v_grid_max: float = 13.5
    v_pv_min: float = 12.5
    i_phase_max: float = 3.5
    imbalance_threshold: float = 0.8
    power_min: float = 2.0
    enable_threshold: float = 0.5

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{f.name} must be a finite, non-negative number (got {value!r})")
        if self.v_grid_min >= self.v_grid_max:
            raise ValueError(
                f"v_grid_min ({self.v_grid_min}) must be below v_grid_max ({self.v_grid_max})"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ControllerSettings":
        """Build settings from a mapping, ignoring keys that are not thresholds."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in data.items() if k in known})


DEFAULT_SETTINGS = ControllerSettings()


@dataclass(frozen=True)
class PhaseReading:
    voltage: float
    current: float


@dataclass(frozen=True)
class PVReading:
    voltage: float
    current: float

    @property
    def power(self) -> float:
        return self.voltage * abs(self.current)


# camelCase names used by the dashboard host -> field names
HOST_FIELD_NAMES = {
    "vR": "v_r", "vY": "v_y", "vB": "v_b",
    "iR": "i_r", "iY": "i_y", "iB": "i_b",
    "vPV1": "v_pv1", "iPV1": "i_pv1",
    "vPV2": "v_pv2", "iPV2": "i_pv2",
    "vPV3": "v_pv3", "iPV3": "i_pv3",
    "vLoad1": "v_load1", "vLoad2": "v_load2", "vLoad3": "v_load3",
}


def _to_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        _LOGGER.warning("Non-numeric %s %r treated as NaN", name, value)
        return math.nan


@dataclass(frozen=True)
class SystemInput:
    """
    One measurement snapshot.

    Currents are signed; only their magnitude is used. The load voltages are
    carried for the host and do not take part in the decision.
    """

    v_r: float = 0.0
    v_y: float = 0.0
    v_b: float = 0.0
    i_r: float = 0.0
    i_y: float = 0.0
    i_b: float = 0.0
    v_pv1: float = 0.0
    i_pv1: float = 0.0
    v_pv2: float = 0.0
    i_pv2: float = 0.0
    v_pv3: float = 0.0
    i_pv3: float = 0.0
    v_load1: float = 0.0
    v_load2: float = 0.0
    v_load3: float = 0.0
    enable: float = 1.0

    def __post_init__(self) -> None:
        # host payloads may carry strings or None; unparseable values become NaN
        for f in fields(self):
            object.__setattr__(self, f.name, _to_float(f.name, getattr(self, f.name)))

    def phase(self, name: Phase) -> PhaseReading:
        key = name.lower()
        return PhaseReading(getattr(self, f"v_{key}"), getattr(self, f"i_{key}"))

    def pv(self, number: int) -> PVReading:
        if number not in (1, 2, 3):
            raise ValueError(f"PV source must be 1, 2 or 3 (got {number!r})")
        return PVReading(getattr(self, f"v_pv{number}"), getattr(self, f"i_pv{number}"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SystemInput":
        """
        Accepts either the field names (v_r, i_pv1, ...) or the host's
        camelCase keys (vR, iPV1, vLoad1, ...). Unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = HOST_FIELD_NAMES.get(key, key)
            if name in known:
                values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Measurements:
    """Derived quantities for one snapshot (steps 1-3 of the decision)."""

    enabled: bool
    grid_ok: bool
    phase_currents: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    pv_powers: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    pv_ready: Tuple[bool, bool, bool] = (False, False, False)
    phase_overload: Tuple[bool, bool, bool] = (False, False, False)
    imbalance: float = 0.0
    needs_balancing: bool = False
    # phase indices, least loaded first
    phase_order: Tuple[int, int, int] = (0, 1, 2)

    @property
    def online(self) -> bool:
        return self.enabled and self.grid_ok

    @property
    def overloaded_phases(self) -> List[Phase]:
        return [p for p, over in zip(PHASES, self.phase_overload) if over]


@dataclass(frozen=True)
class SwitchDecision:
    """
    Result of one controller run.

    Attributes:
        relays: 18 relay states, relays[0] is S1. True = closed.
        status: NORMAL | BALANCING | OVERLOAD | OFFLINE
        imbalance: max - min phase current magnitude [A]
    """

    relays: Tuple[bool, ...]
    status: SystemStatus
    imbalance: float = 0.0

    def __post_init__(self) -> None:
        if len(self.relays) != NUM_RELAYS:
            raise ValueError(f"expected {NUM_RELAYS} relay states, got {len(self.relays)}")

    @classmethod
    def offline(cls) -> "SwitchDecision":
        return cls(relays=(False,) * NUM_RELAYS, status="OFFLINE", imbalance=0.0)

    def is_closed(self, relay: Relay) -> bool:
        return self.relays[relay.index]

    def closed_relays(self) -> List[Relay]:
        return [r for r in Relay if self.relays[r.index]]

    @property
    def closed_count(self) -> int:
        return sum(self.relays)

    def as_bits(self) -> List[int]:
        return [1 if s else 0 for s in self.relays]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sw": self.as_bits(),
            "status": self.status,
            "imbalance": self.imbalance,
        }

    def __repr__(self) -> str:
        closed = ",".join(r.label for r in self.closed_relays()) or "-"
        return (
            f"SwitchDecision(status={self.status!r}, imbalance={self.imbalance:.4f}, "
            f"closed=[{closed}])"
        )


def _is_enabled(enable: float, threshold: float) -> bool:
    if math.isnan(enable):
        _LOGGER.warning("NaN enable flag treated as disabled")
        return False
    return enable >= threshold


def _grid_ok(inputs: SystemInput, settings: ControllerSettings) -> bool:
    for name in PHASES:
        reading = inputs.phase(name)
        if not (settings.v_grid_min < reading.voltage < settings.v_grid_max):
            if not math.isfinite(reading.voltage):
                _LOGGER.warning("Non-finite voltage on phase %s: %r", name, reading.voltage)
            return False
        if not math.isfinite(reading.current):
            _LOGGER.warning("Non-finite current on phase %s: %r", name, reading.current)
            return False
    return True


def _pv_ready(reading: PVReading, settings: ControllerSettings) -> bool:
    power = reading.power
    if not (math.isfinite(reading.voltage) and math.isfinite(power)):
        _LOGGER.warning(
            "Non-finite PV reading (%r V, %r A) treated as not ready",
            reading.voltage, reading.current,
        )
        return False
    return reading.voltage > settings.v_pv_min and power > settings.power_min


def analyse(inputs: SystemInput, settings: ControllerSettings = DEFAULT_SETTINGS) -> Measurements:
    """
    Run the gating and measurement part of the decision.

    Stops after the enable gate or the grid check when either fails; the
    remaining fields then keep their neutral defaults.
    """
    if not _is_enabled(inputs.enable, settings.enable_threshold):
        return Measurements(enabled=False, grid_ok=False)

    if not _grid_ok(inputs, settings):
        return Measurements(enabled=True, grid_ok=False)

    currents = tuple(abs(inputs.phase(p).current) for p in PHASES)
    pvs = [inputs.pv(n) for n in (1, 2, 3)]
    imbalance = max(currents) - min(currents)

    # sorted() is stable, so ties keep the R, Y, B order
    phase_order = tuple(sorted(range(3), key=lambda i: currents[i]))

    return Measurements(
        enabled=True,
        grid_ok=True,
        phase_currents=currents,  # type: ignore[arg-type]
        pv_powers=tuple(pv.power for pv in pvs),  # type: ignore[arg-type]
        pv_ready=tuple(_pv_ready(pv, settings) for pv in pvs),  # type: ignore[arg-type]
        phase_overload=tuple(i > settings.i_phase_max for i in currents),  # type: ignore[arg-type]
        imbalance=imbalance,
        needs_balancing=imbalance > settings.imbalance_threshold,
        phase_order=phase_order,  # type: ignore[arg-type]
    )


def _route_load(sw: List[bool], load: int, phase: Phase) -> None:
    """Close the relay feeding `load` from `phase` and open its siblings."""
    target = LOAD_RELAYS[load][phase]
    for relay in set(LOAD_RELAYS[load].values()):
        sw[relay.index] = relay is target


def _route_pv_normal(sw: List[bool], m: Measurements) -> None:
    # Each PV injects next to its own load, gated by that load's relay.
    if m.pv_ready[0] and sw[Relay.LOAD1_R.index] and not m.phase_overload[0]:
        sw[Relay.PV_TO_R.index] = True
    if m.pv_ready[1] and sw[Relay.LOAD2_Y.index] and not m.phase_overload[1]:
        sw[Relay.PV_TO_Y.index] = True
    if m.pv_ready[2] and sw[Relay.LOAD3_R.index] and not m.phase_overload[2]:
        sw[Relay.PV_TO_B.index] = True


def _route_pv_balancing(sw: List[bool], m: Measurements) -> None:
    # Strongest PV onto the lightest phase: rank i pairs with phase_order[i],
    # never with phase_order[2 - i]. A PV that is not ready keeps its slot,
    # so its phase gets no injection this round.
    pv_rank = sorted(range(3), key=lambda i: -m.pv_powers[i])
    for pv_idx, phase_idx in zip(pv_rank, m.phase_order):
        if not m.pv_ready[pv_idx] or m.phase_overload[phase_idx]:
            continue
        relay = PV_INJECTION_RELAYS[pv_idx + 1][PHASES[phase_idx]]
        sw[relay.index] = True


def compute(inputs: SystemInput, settings: ControllerSettings = DEFAULT_SETTINGS) -> SwitchDecision:
    """
    Decide the relay states for one snapshot.

    Never raises for measurement values: finite currents above the limit
    end up OVERLOAD, non-finite or unparseable grid readings end up OFFLINE.

    Args:
        inputs: measurement snapshot.
        settings: thresholds (defaults to DEFAULT_SETTINGS).

    Returns:
        SwitchDecision with 18 relay states, status and imbalance.
    """
    m = analyse(inputs, settings)

    # Step 1-2: enable gate and grid voltage window
    if not m.enabled:
        _LOGGER.debug("Controller disabled (enable=%r) -> OFFLINE", inputs.enable)
        return SwitchDecision.offline()
    if not m.grid_ok:
        _LOGGER.debug(
            "Grid out of range (vR=%r, vY=%r, vB=%r) -> OFFLINE",
            inputs.v_r, inputs.v_y, inputs.v_b,
        )
        return SwitchDecision.offline()

    sw = [False] * NUM_RELAYS

    # Step 4: grid intake
    for relay in GRID_RELAYS.values():
        sw[relay.index] = True

    # Step 5-6: load and PV routing
    if not m.needs_balancing:
        _route_load(sw, 1, "R")
        _route_load(sw, 2, "Y")
        _route_load(sw, 3, "R")
        _route_pv_normal(sw, m)
    else:
        least, second, most = (PHASES[i] for i in m.phase_order)
        _route_load(sw, 1, least)
        _route_load(sw, 2, second)
        _route_load(sw, 3, most)
        _route_pv_balancing(sw, m)

    # Step 7: aux interlock and emergency path
    for relay in ALWAYS_ON_RELAYS:
        sw[relay.index] = True

    # Step 8: overcurrent has the last word on PV injection
    for phase in m.overloaded_phases:
        for relay in PHASE_PV_RELAYS[phase]:
            sw[relay.index] = False

    # Step 9: status
    status: SystemStatus = "BALANCING" if m.needs_balancing else "NORMAL"
    if any(m.phase_overload):
        status = "OVERLOAD"

    _LOGGER.debug(
        "status=%s imbalance=%.4f currents=%s overloaded=%s",
        status, m.imbalance, m.phase_currents, m.overloaded_phases,
    )
    return SwitchDecision(relays=tuple(sw), status=status, imbalance=m.imbalance)


@dataclass(frozen=True)
class PVController:
    """
    Object form of compute() for hosts that hold a controller instance.

    Carries only its (immutable) settings, so one instance can be shared
    between callers.
    """

    settings: ControllerSettings = field(default_factory=ControllerSettings)

    def run(self, inputs: SystemInput) -> SwitchDecision:
        return compute(inputs, self.settings)

    def analyse(self, inputs: SystemInput) -> Measurements:
        return analyse(inputs, self.settings)


pv_controller = PVController()

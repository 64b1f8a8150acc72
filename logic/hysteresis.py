"""
Anti-chattering wrapper around the pure switch controller.

compute() has no memory, so a current hovering around the imbalance
threshold flips the load relays on every sample. DwellController keeps the
previous decision and only lets a relay group change once it has held its
state for `min_hold_steps` calls.

Protective openings are never delayed:
- an OFFLINE decision opens everything at once
- PV relays feeding an overloaded phase open at once
"""

import logging
from typing import Dict, List, Optional, Tuple

from logic.switching import (
    DEFAULT_SETTINGS,
    GRID_RELAYS,
    LOAD_RELAYS,
    NUM_RELAYS,
    PHASE_PV_RELAYS,
    ControllerSettings,
    Relay,
    SwitchDecision,
    SystemInput,
    analyse,
    compute,
)

_LOGGER = logging.getLogger(__name__)


def _unique(relays) -> Tuple[Relay, ...]:
    return tuple(sorted(set(relays)))


# Relays that must move together. A load group switches as a unit so that
# exactly one feeder relay stays closed per load.
RELAY_GROUPS: Dict[str, Tuple[Relay, ...]] = {
    "grid_r": (GRID_RELAYS["R"],),
    "grid_y": (GRID_RELAYS["Y"],),
    "grid_b": (GRID_RELAYS["B"],),
    "load1": _unique(LOAD_RELAYS[1].values()),
    "load2": _unique(LOAD_RELAYS[2].values()),
    "load3": _unique(LOAD_RELAYS[3].values()),
    "pv_to_r": (Relay.PV_TO_R,),
    "pv_to_y": (Relay.PV_TO_Y,),
    "pv_to_b": (Relay.PV_TO_B,),
    "pv3_to_r": (Relay.PV3_TO_R,),
    "pv3_to_y": (Relay.PV3_TO_Y,),
    "aux": (Relay.AUX_INTERLOCK,),
    "emergency": (Relay.EMERGENCY_PATH,),
}


class DwellController:
    """
    Stateful controller that wraps compute() and adds a minimum dwell time
    per relay group.

    Args:
        min_hold_steps: calls a group must keep its state before it may change.
            1 means no dwell (output equals compute()).
        settings: thresholds passed through to compute().
    """

    def __init__(
        self,
        min_hold_steps: int = 3,
        settings: ControllerSettings = DEFAULT_SETTINGS,
    ) -> None:
        if int(min_hold_steps) < 1:
            raise ValueError(f"min_hold_steps must be >= 1 (got {min_hold_steps!r})")
        self.min_hold_steps = int(min_hold_steps)
        self.settings = settings

        # internal state:
        # group -> {"state": tuple of relay states, "steps": int}
        self._state: Dict[str, Dict[str, object]] = {}
        self._step_index: int = 0
        self._last: Optional[SwitchDecision] = None

    @property
    def step_index(self) -> int:
        return self._step_index

    @property
    def last_decision(self) -> Optional[SwitchDecision]:
        return self._last

    def reset(self) -> None:
        self._state.clear()
        self._step_index = 0
        self._last = None

    def _update_state(self, group: str, new_state: Tuple[bool, ...]) -> None:
        entry = self._state.get(group)
        if entry is None or entry["state"] != new_state:
            self._state[group] = {"state": new_state, "steps": 1}
        else:
            entry["steps"] += 1  # type: ignore[operator]

    def decide(self, inputs: SystemInput) -> SwitchDecision:
        """
        Decide relay states for one sample, holding groups that changed too
        recently.

        Returns:
            SwitchDecision with held relays; status and imbalance are always
            the fresh values from compute().
        """
        self._step_index += 1

        suggested = compute(inputs, self.settings)

        # OFFLINE is protective: apply at once. History is dropped so the
        # first online decision afterwards restores the full routing.
        if suggested.status == "OFFLINE":
            self._state.clear()
            self._last = suggested
            return suggested

        measurements = analyse(inputs, self.settings)
        forced_open = {
            relay
            for phase in measurements.overloaded_phases
            for relay in PHASE_PV_RELAYS[phase]
        }

        final: List[bool] = [False] * NUM_RELAYS

        for group, relays in RELAY_GROUPS.items():
            suggested_state = tuple(suggested.relays[r.index] for r in relays)
            prev_entry = self._state.get(group)

            if prev_entry is None:
                final_state = suggested_state
            else:
                prev_state = prev_entry["state"]
                steps = prev_entry["steps"]
                if prev_state == suggested_state or steps >= self.min_hold_steps:  # type: ignore[operator]
                    final_state = suggested_state
                else:
                    final_state = prev_state  # type: ignore[assignment]

            # overcurrent opening bypasses the hold
            final_state = tuple(
                False if relay in forced_open else state
                for relay, state in zip(relays, final_state)
            )

            if final_state != suggested_state:
                _LOGGER.debug(
                    "step %d: holding %s at %s (suggested %s)",
                    self._step_index, group, final_state, suggested_state,
                )

            for relay, state in zip(relays, final_state):
                final[relay.index] = state
            self._update_state(group, final_state)

        decision = SwitchDecision(
            relays=tuple(final),
            status=suggested.status,
            imbalance=suggested.imbalance,
        )
        self._last = decision
        return decision

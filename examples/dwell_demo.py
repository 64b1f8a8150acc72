import os
import sys

CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from logic.hysteresis import DwellController
from logic.switching import Relay, SystemInput, compute


def simulate_phase_b_current(step: int) -> float:
    """
    Phase B current [A] hovering around the balancing threshold.

    With R and Y at 1.0 A the imbalance threshold (0.8 A) sits at 1.8 A on B,
    so every other step flips the raw controller between NORMAL and BALANCING.
    """
    return 1.85 if step % 2 else 1.75


def main():
    controller = DwellController(min_hold_steps=4)
    total_steps = 12

    print("\nThreshold flicker: raw controller vs dwell wrapper (hold = 4 steps)\n")
    print("Load 3 feeder: R = S12, B/Y = S17\n")

    for step in range(total_steps):
        inputs = SystemInput(
            v_r=12.0, v_y=12.0, v_b=12.0,
            i_r=1.0, i_y=1.0, i_b=simulate_phase_b_current(step),
            v_pv1=13.0, i_pv1=1.0,
            v_pv2=13.0, i_pv2=0.5,
        )
        raw = compute(inputs)
        held = controller.decide(inputs)

        def feeder(decision):
            return "B/Y" if decision.is_closed(Relay.LOAD3_BY) else "R"

        print(
            f"Step {step:02d} | iB: {inputs.i_b:.2f} A | "
            f"status: {raw.status:9s} | "
            f"load3 raw: {feeder(raw):3s} | load3 held: {feeder(held)}"
        )


if __name__ == "__main__":
    main()

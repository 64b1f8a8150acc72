"""
Quick demo of the switching logic.

Run with:
    python3 examples/switching_demo.py
from the project root.
"""

import os
import sys

# --- Add project root to Python path ---
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from logic.switching import Relay, SystemInput, compute

# Bench defaults of the dashboard's signal-injection panel
BASE = {
    "vR": 12.0, "vY": 12.0, "vB": 12.0,
    "iR": 1.5, "iY": 1.5, "iB": 1.5,
    "vPV1": 13.0, "iPV1": 1.0,
    "vPV2": 13.0, "iPV2": 0.5,
    "vPV3": 13.0, "iPV3": 0.0,
    "vLoad1": 12.0, "vLoad2": 12.0, "vLoad3": 12.0,
    "enable": 1,
}


def main():
    cases = [
        ("balanced, PV1/PV2 producing", {}),
        ("phase R overloaded", {"iR": 3.6}),
        ("phase B heavy -> balancing", {"iR": 1.0, "iY": 1.0, "iB": 2.0}),
        ("grid sag on Y", {"vY": 10.8}),
        ("master breaker off", {"enable": 0}),
    ]

    for title, overrides in cases:
        inputs = SystemInput.from_dict({**BASE, **overrides})
        decision = compute(inputs)

        print(f"\n--- {title} ---")
        print(f"Status    : {decision.status}")
        print(f"Imbalance : {decision.imbalance:.4f} A")
        print(f"Relays    : {decision.closed_count}/18 closed")
        for relay in Relay:
            state = "CLOSED" if decision.is_closed(relay) else "open"
            print(f"  {relay.label:>3s} {relay.name:15s} {state}")


if __name__ == "__main__":
    main()

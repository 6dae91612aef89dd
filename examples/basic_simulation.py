#!/usr/bin/env python3
"""Basic hive mesh simulation example.

Places the central server, a ring of hives and a few obstacles, lets every
hive send one reading, then runs the wavefront engine headless and prints
the protocol statistics.
"""

import logging
import math

from lorahive_sim.config import FRAME_MS, SimulationConfig
from lorahive_sim.core import Simulation


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # --- Radio settings: SF9 / 125 kHz, 5 m per pixel ---
    config = SimulationConfig(spreading_factor=9, bandwidth_khz=125, meters_per_pixel=5.0, max_retrans=3)
    sim = Simulation(config=config)

    # --- Hives on a ring around the server ---
    cx, cy = sim.server.x, sim.server.y
    for i in range(8):
        theta = 2 * math.pi * i / 8
        sim.add_hive(cx + 260 * math.cos(theta), cy + 260 * math.sin(theta))

    # --- Obstacles ---
    sim.add_circle_obstacle(cx + 120, cy, radius=35, material="concrete")
    sim.add_circle_obstacle(cx - 90, cy - 80, radius=50, material="forest")
    sim.add_polygon_obstacle(
        [(cx - 40, cy + 100), (cx + 60, cy + 100), (cx + 60, cy + 160), (cx - 40, cy + 160)],
        material="water",
    )

    # --- Every hive reports once ---
    for hive in sim.hives:
        sim.emit(hive.id)

    # --- Run 60 s of simulated time at ~60 Hz ---
    now = 0.0
    while now < 60_000:
        now += FRAME_MS
        sim.tick(now)

    print("=" * 50)
    print("LoRa Hive Simulation — Protocol Report")
    print("=" * 50)
    print(sim.stats.report())
    print("=" * 50)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Write a demo load feed with windows relative to now, covering every exception rule."""

from __future__ import annotations

import argparse
import json
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

# Ensure `broker_ops` package is importable when script is run directly.
CURRENT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CURRENT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from broker_ops.core.timeutil import to_iso, utc_now
from broker_ops.services.load_provider import normalize_loads

# (id, origin, dest, carrier, pickup start/end h, delivery start/end h, gps minutes)
SCENARIOS = [
    ("L-10421", "Portland, OR", "Boise, ID", "Cascadia Haul Co.", (-5, -3), (10, 14), 205),
    ("L-10433", "Tacoma, WA", "Sacramento, CA", "NorthStar Freight", (-14, -12), (5, 7), None),
    ("L-10458", "Eugene, OR", "San Jose, CA", "HighDesert Logistics", (-20, -18), (-2, -0.5), 95),
    ("L-10410", "Salem, OR", "Spokane, WA", "Iron Ridge Transport", (0.6, 2), (14, 18), 48),
    ("L-10418", "Vancouver, WA", "Reno, NV", "Evergreen Linehaul", (-2, 1), (18, 22), 92),
    ("L-10427", "Longview, WA", "Medford, OR", "Columbia Corridor", (2, 4), (3.5, 5), 38),
    ("L-10398", "Hillsboro, OR", "Seattle, WA", "Puget Sound Carriers", (3, 5), (9, 12), 16),
    ("L-10402", "Gresham, OR", "Bend, OR", "Summit Routes", (2.5, 4), (6, 8), 21),
    ("L-10405", "Olympia, WA", "Portland, OR", "Rainier Freight", (26, 28), (34, 36), 12),
    ("L-10407", "Spokane, WA", "Missoula, MT", "Mountain West Haulers", (40, 42), (48, 52), 10),
]

EXTRA_LANES = [
    ("Chicago, IL", "Los Angeles, CA"),
    ("Dallas, TX", "Atlanta, GA"),
    ("Houston, TX", "Denver, CO"),
    ("Memphis, TN", "Detroit, MI"),
    ("Columbus, OH", "Nashville, TN"),
    ("Kansas City, MO", "Oklahoma City, OK"),
]


def _domain(carrier: str) -> str:
    return "".join(ch for ch in carrier.lower() if ch.isalnum()) + ".example"


def _record(
    load_id: str,
    origin: str,
    dest: str,
    carrier: str,
    pickup: tuple,
    delivery: tuple,
    gps: Optional[int],
    now: datetime,
    index: int,
) -> Dict[str, Any]:
    def at(hours: float) -> str:
        return to_iso(now + timedelta(hours=hours))

    suffix = f"{index:02d}"
    domain = _domain(carrier)
    return {
        "id": load_id,
        "originCityState": origin,
        "destCityState": dest,
        "pickupWindowStartISO": at(pickup[0]),
        "pickupWindowEndISO": at(pickup[1]),
        "deliveryWindowStartISO": at(delivery[0]),
        "deliveryWindowEndISO": at(delivery[1]),
        "carrierName": carrier,
        "carrierPhone": f"+1503555{suffix}11",
        "driverPhone": f"+1503555{suffix}99",
        "dispatchEmail": f"dispatch@{domain}",
        "driverEmail": f"driver.{load_id.lower().replace('-', '')}@{domain}",
        "lastGpsMinutesAgo": gps,
    }


def build_demo_loads(now: datetime, extra: int = 0, seed: int = 7) -> List[Dict[str, Any]]:
    rows = [_record(*scenario, now=now, index=i) for i, scenario in enumerate(SCENARIOS)]

    rng = random.Random(seed)
    for i in range(extra):
        origin, dest = rng.choice(EXTRA_LANES)
        pickup_start = rng.uniform(-6, 40)
        delivery_start = pickup_start + rng.uniform(8, 30)
        gps = rng.choice([None, 5, 15, 30, 75, 140])
        rows.append(
            _record(
                f"L-2{i:04d}",
                origin,
                dest,
                f"Carrier {i + 1} Transport",
                (pickup_start, pickup_start + 2),
                (delivery_start, delivery_start + 2),
                gps,
                now=now,
                index=len(SCENARIOS) + i,
            )
        )
    return rows


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a demo load feed")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/loads.json"),
        help="Where to write the feed (matches LOADS_PATH)",
    )
    parser.add_argument(
        "--extra",
        type=int,
        default=0,
        help="Number of additional randomized loads",
    )
    parser.add_argument("--seed", type=int, default=7, help="Random seed for extra loads")
    args = parser.parse_args()

    rows = build_demo_loads(utc_now(), extra=max(0, args.extra), seed=args.seed)
    # Fail fast if a generated record would be rejected by the feed adapter.
    accepted = normalize_loads(rows)
    if len(accepted) != len(rows):
        raise SystemExit(f"Generated {len(rows)} loads but only {len(accepted)} normalized cleanly")

    output = args.output.expanduser().resolve()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps({"loads": rows}, indent=2), encoding="utf-8")
    print(f"Wrote {len(rows)} demo loads to {output}")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Run one dashboard tick from the command line and print the attention list and action queue."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Ensure `broker_ops` package is importable when script is run directly.
CURRENT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CURRENT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from broker_ops.core.config import get_settings
from broker_ops.core.logging import configure_logging
from broker_ops.services.dashboard import DashboardEngine
from broker_ops.services.kv_store import build_kv_store
from broker_ops.services.load_provider import JsonFileLoadProvider, LoadProviderError, build_load_provider


def main() -> None:
    parser = argparse.ArgumentParser(description="Evaluate the load feed once")
    parser.add_argument(
        "--loads",
        type=Path,
        default=None,
        help="Read loads from this JSON file instead of the configured feed",
    )
    parser.add_argument("--json", action="store_true", help="Print the full tick as JSON")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, json_output=False)
    provider = JsonFileLoadProvider(args.loads) if args.loads else build_load_provider(settings)
    engine = DashboardEngine(provider, build_kv_store(settings), settings=settings)

    try:
        tick = engine.run_tick()
    except LoadProviderError as exc:
        raise SystemExit(f"Load feed unavailable: {exc}")

    if args.json:
        print(json.dumps(tick.to_wire(), indent=2))
        return

    print(f"Tick at {tick.generated_at_iso}: {len(tick.loads)} loads | red={tick.counts.red} yellow={tick.counts.yellow}")
    print("\nNeeds attention:")
    for load in tick.needs_attention:
        print(f"  [{load.computed_status.value:>6}] {load.id}  {load.computed_risk_reason}")
    print("\nAction queue:")
    for action in tick.actions:
        print(f"  P{action.priority} {action.status.value:<7} {action.title}  {action.href or '-'}")
    for notification in tick.new_notifications:
        print(f"\n! {notification.message} ({notification.load_id})")


if __name__ == "__main__":
    main()

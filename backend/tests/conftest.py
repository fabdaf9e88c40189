"""Shared test setup: import path and isolated settings."""
from __future__ import annotations

import os
import sys
from pathlib import Path

os.environ["STATE_DB_PATH"] = ":memory:"
os.environ["LOADS_PATH"] = str(Path(__file__).resolve().parent / "missing_loads.json")
os.environ["LOADS_URL"] = ""
os.environ["TICK_INTERVAL_SECONDS"] = "0"
os.environ["APP_MODE"] = "demo"

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

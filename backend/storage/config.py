from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def state_path() -> Path:
    # Store under repo so viewer state survives restarts (and stays local).
    return Path(
        os.getenv("CHECKIN_STATE_PATH")
        or (_repo_root() / "data" / "state" / "viewer.duckdb")
    )


def fetch_timeout_s() -> float:
    raw = (os.getenv("CHECKIN_FETCH_TIMEOUT_S") or "").strip()
    try:
        return max(0.1, float(raw)) if raw else 10.0
    except ValueError:
        return 10.0

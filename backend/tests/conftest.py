import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `layers.*`, `checkins.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from errors import FetchFailure  # noqa: E402
from storage.kv import InMemoryKeyValueStore  # noqa: E402


def point_collection(
    points: list[tuple[Any, float, float, dict[str, Any]]],
    *,
    namespace: str | None = None,
) -> dict[str, Any]:
    """[(id, lon, lat, props), ...] -> GeoJSON FeatureCollection dict."""
    out: dict[str, Any] = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": fid,
                "properties": props,
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
            }
            for fid, lon, lat, props in points
        ],
    }
    if namespace is not None:
        out["metadata"] = {"id": namespace, "name": f"{namespace} layer"}
    return out


class FakeFetcher:
    """
    In-memory dataset source that counts fetches.

    Sources listed in `failing` raise FetchFailure. When `hold()` is active, fetches wait
    until `release()` so tests can observe the Loading state.
    """

    def __init__(self, payloads: dict[str, dict[str, Any]], failing: set[str] | None = None):
        self.payloads = payloads
        self.failing = failing or set()
        self.calls: list[str] = []
        self._gate: asyncio.Event | None = None

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()

    async def fetch(self, source: str) -> dict[str, Any]:
        self.calls.append(source)
        if self._gate is not None:
            await self._gate.wait()
        if source in self.failing or source not in self.payloads:
            raise FetchFailure(f"Failed to load {source}: 404")
        return self.payloads[source]


class BrokenKeyValueStore(InMemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        raise OSError("disk full")


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()

from __future__ import annotations

from layers.fetch import SourceFetcher
from settings.registry import get_config, resolve_source
from storage.singleton import get_store
from viewer.engine import ViewerEngine

_ENGINE: ViewerEngine | None = None


async def get_engine() -> ViewerEngine:
    """
    The session engine, built and started on first use.

    The viewer runs on a single event loop, so no lock is needed around construction.
    """
    global _ENGINE
    if _ENGINE is None:
        engine = ViewerEngine(
            get_config(),
            kv=get_store(),
            fetcher=SourceFetcher(),
            resolve_source=resolve_source,
        )
        _ENGINE = engine
        await engine.start()
    return _ENGINE


def reset_engine() -> None:
    global _ENGINE
    _ENGINE = None

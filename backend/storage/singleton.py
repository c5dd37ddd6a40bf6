from __future__ import annotations

import threading

import duckdb

from storage.config import state_path
from storage.kv import DuckDBKeyValueStore

_STORE: DuckDBKeyValueStore | None = None
_STORE_LOCK = threading.RLock()


def get_store() -> DuckDBKeyValueStore:
    global _STORE
    with _STORE_LOCK:
        path = state_path()
        if _STORE is not None:
            # If env changes the path during a dev session (or across tests),
            # reopen the store on the new path.
            if _STORE.path.resolve() == path.resolve():
                return _STORE
            _STORE.close()
            _STORE = None

        path.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(path))
        _STORE = DuckDBKeyValueStore(path=path, conn=conn)
        _STORE.ensure_schema()
        return _STORE


def reset_store() -> None:
    global _STORE
    with _STORE_LOCK:
        if _STORE is not None:
            _STORE.reset()
            _STORE = None
        else:
            # Delete even if not opened yet.
            state_path().unlink(missing_ok=True)

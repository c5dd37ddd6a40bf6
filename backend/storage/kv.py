from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import duckdb
from loguru import logger

from errors import PersistenceFailure
from storage.sql import (
    CREATE_KV_TABLE_SQL,
    SELECT_VALUE_SQL,
    UPSERT_VALUE_SQL,
)

# One blob per concern; each is read once at startup and rewritten wholesale.
LAYER_STATE_KEY = "layer-state"
CHECKIN_KEY = "shubyo-data"
VIEWPORT_KEY = "map-viewport"


class KeyValueStore(Protocol):
    """
    Synchronous string blob storage.

    `set` must either complete or raise before returning.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


@dataclass
class InMemoryKeyValueStore:
    data: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = str(value)


@dataclass
class DuckDBKeyValueStore:
    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_KV_TABLE_SQL)

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self.conn.execute(SELECT_VALUE_SQL, [key]).fetchone()
        if row is None:
            return None
        return row[0]

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self.conn.execute(
                UPSERT_VALUE_SQL, [key, str(value), int(time.time() * 1000)]
            )
            # Make the write durable before the triggering operation returns.
            self.conn.execute("CHECKPOINT;")

    def close(self) -> None:
        with self._lock:
            try:
                self.conn.close()
            except duckdb.Error:
                pass

    def reset(self) -> None:
        # Delete the database file; the store must not be used afterwards.
        self.close()
        self.path.unlink(missing_ok=True)


def read_json_object(store: KeyValueStore, key: str) -> dict[str, Any]:
    """
    Read a JSON object blob.

    Missing, corrupt or non-object blobs are treated as empty (and logged), never raised.
    """
    try:
        raw = store.get(key)
    except Exception as e:
        logger.warning(f"Could not read persisted '{key}': {e}")
        return {}
    if raw is None or raw == "":
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning(f"Persisted '{key}' is not valid JSON; starting empty")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Persisted '{key}' is not a JSON object; starting empty")
        return {}
    return data


def write_json_object(store: KeyValueStore, key: str, data: dict[str, Any]) -> None:
    """
    Replace the blob at `key` with `data`.

    Raises PersistenceFailure if the substrate rejects the write.
    """
    payload = json.dumps(data, ensure_ascii=False, sort_keys=True)
    try:
        store.set(key, payload)
    except Exception as e:
        logger.warning(f"Persisting '{key}' failed: {e}")
        raise PersistenceFailure(f"Could not save '{key}': {e}") from e

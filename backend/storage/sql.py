from __future__ import annotations

CREATE_KV_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT,
  updated_ms BIGINT
);
"""

SELECT_VALUE_SQL = """
SELECT value FROM kv WHERE key = ?
"""

UPSERT_VALUE_SQL = """
INSERT OR REPLACE INTO kv (key, value, updated_ms)
VALUES (?, ?, ?)
"""

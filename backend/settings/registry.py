from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml

from settings.types import ViewerConfig


def _repo_root() -> Path:
    # .../backend/settings/registry.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def config_path() -> Path:
    return Path(
        os.getenv("CHECKIN_CONFIG_PATH") or (_repo_root() / "config" / "viewer.yaml")
    )


def data_root() -> Path:
    return Path(os.getenv("CHECKIN_DATA_ROOT") or _repo_root())


def load_config(path: Path) -> ViewerConfig:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid viewer yaml root: {path}")
    cfg = ViewerConfig.model_validate(data)
    seen: set[str] = set()
    for layer in cfg.layers:
        if layer.id in seen:
            raise ValueError(f"Duplicate layer id '{layer.id}' in {path}")
        seen.add(layer.id)
    return cfg


@lru_cache(maxsize=1)
def get_config() -> ViewerConfig:
    path = config_path()
    if not path.exists():
        raise RuntimeError(f"Viewer config not found: {path}")
    return load_config(path)


def resolve_source(source: str) -> str:
    """
    Dataset sources are URLs or repo-relative paths; return a URL or an absolute path.
    """
    s = (source or "").strip()
    if s.startswith(("http://", "https://", "file://")):
        return s
    return str(data_root() / s.lstrip("/"))


def clear_config_cache() -> None:
    """
    Clear the cached viewer config.

    Useful during development: YAML changes are otherwise not picked up until
    the backend process restarts.
    """
    get_config.cache_clear()

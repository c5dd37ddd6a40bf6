from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from settings.types import MapCenter, MapConfig
from storage.kv import VIEWPORT_KEY, KeyValueStore, read_json_object, write_json_object


class Viewport(BaseModel):
    center: MapCenter
    zoom: float = Field(ge=0.0, le=24.0)
    bearing: float = 0.0
    pitch: float = Field(default=0.0, ge=0.0, le=85.0)


def default_viewport(map_cfg: MapConfig) -> Viewport:
    return Viewport(center=map_cfg.center, zoom=map_cfg.zoom)


def clamp_viewport(vp: Viewport, map_cfg: MapConfig) -> Viewport:
    zoom = max(map_cfg.minZoom, min(map_cfg.maxZoom, vp.zoom))
    lat = max(-90.0, min(90.0, vp.center.lat))
    lon = vp.center.lon
    if not -180.0 <= lon <= 180.0:
        lon = ((lon + 180.0) % 360.0) - 180.0
    return vp.model_copy(update={"zoom": zoom, "center": MapCenter(lon=lon, lat=lat)})


def load_viewport(kv: KeyValueStore, map_cfg: MapConfig) -> Viewport:
    """
    Last saved viewport, or the configured start view if none (or a corrupt one) was saved.
    """
    raw = read_json_object(kv, VIEWPORT_KEY)
    if not raw:
        return default_viewport(map_cfg)
    try:
        return clamp_viewport(Viewport.model_validate(raw), map_cfg)
    except ValidationError as e:
        logger.warning(f"Ignoring persisted viewport: {e.error_count()} validation errors")
        return default_viewport(map_cfg)


def save_viewport(kv: KeyValueStore, vp: Viewport, map_cfg: MapConfig) -> Viewport:
    vp = clamp_viewport(vp, map_cfg)
    write_json_object(kv, VIEWPORT_KEY, vp.model_dump())
    return vp

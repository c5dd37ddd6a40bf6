from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from layers.loaders import kind_for_geometry_type
from layers.types import GeometryKind

GeometryType = Literal["Point", "LineString", "Polygon"]


class LayerStyle(BaseModel):
    # MapLibre layer type: circle | line | fill
    type: Literal["circle", "line", "fill"] = "circle"
    paint: dict[str, Any] = Field(default_factory=dict)
    layout: dict[str, Any] = Field(default_factory=dict)


class LayerConfig(BaseModel):
    """
    One overlay dataset.

    `name` / `description` may be left empty; they are then taken from the dataset's
    own metadata when it is first read.
    """

    id: str
    source: str
    geometryType: GeometryType = "Point"
    visible: bool = False
    name: str | None = None
    description: str | None = None
    # Attribute whose values drive the per-layer filter checkboxes.
    filterAttribute: str | None = None
    style: LayerStyle = Field(default_factory=LayerStyle)

    @property
    def kind(self) -> GeometryKind:
        return kind_for_geometry_type(self.geometryType)

    def display_name(self) -> str:
        return self.name or f"Layer {self.id}"


class MapCenter(BaseModel):
    lon: float
    lat: float


class MapConfig(BaseModel):
    style: str = "https://tile.openstreetmap.jp/styles/osm-bright-ja/style.json"
    center: MapCenter = Field(default_factory=lambda: MapCenter(lon=139.6917, lat=35.6895))
    zoom: float = Field(default=10.0, ge=0.0, le=24.0)
    minZoom: float = Field(default=1.0, ge=0.0, le=24.0)
    maxZoom: float = Field(default=18.0, ge=0.0, le=24.0)


class StrokeStyle(BaseModel):
    color: str
    width: float = Field(ge=0.0)
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)


class CheckinStyle(BaseModel):
    default: StrokeStyle = Field(
        default_factory=lambda: StrokeStyle(color="#ffffff", width=2.0, opacity=1.0)
    )
    checkedIn: StrokeStyle = Field(
        default_factory=lambda: StrokeStyle(color="#ffd700", width=4.0, opacity=1.0)
    )


class ViewerConfig(BaseModel):
    title: str = "GeoJSON Map Viewer"
    map: MapConfig = Field(default_factory=MapConfig)
    layers: list[LayerConfig] = Field(default_factory=list)
    checkinStyle: CheckinStyle = Field(default_factory=CheckinStyle)
    declusterRadiusDeg: float = Field(default=0.0001, gt=0.0, le=0.01)

    def layer(self, layer_id: str) -> LayerConfig | None:
        lid = (layer_id or "").strip()
        for layer in self.layers:
            if layer.id == lid:
                return layer
        return None

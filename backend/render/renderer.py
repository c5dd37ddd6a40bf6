from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from layers.types import Dataset, LayerFeature, LineFeature, PointFeature, PolygonFeature
from settings.types import LayerConfig
from style.projector import StyleProjection


class MapRenderer(Protocol):
    """
    The map engine, seen from the viewer core.

    It receives declustered datasets and style expressions; drawing is its own business.
    """

    def add_layer(self, config: LayerConfig, dataset: Dataset) -> None: ...

    def set_visibility(self, layer_id: str, visible: bool) -> None: ...

    def apply_style(self, layer_id: str, projection: StyleProjection) -> None: ...

    def remove_layer(self, layer_id: str) -> None: ...


@dataclass
class RenderedLayer:
    config: LayerConfig
    dataset: Dataset
    visible: bool = False
    projection: StyleProjection | None = None

    def layer_spec(self) -> dict[str, Any]:
        """
        MapLibre `addLayer` spec with the current projection folded in.
        """
        style = self.config.style
        paint = dict(style.paint or {})
        layout = dict(style.layout or {})
        layout["visibility"] = "visible" if self.visible else "none"
        spec: dict[str, Any] = {
            "id": self.config.id,
            "type": style.type,
            "source": self.config.id,
            "layout": layout,
        }
        if self.projection is not None:
            paint.update(self.projection.paint)
            if self.projection.filter is not None:
                spec["filter"] = self.projection.filter
        spec["paint"] = paint
        return spec


@dataclass
class InMemoryRenderer:
    """
    Keeps what the frontend map should show; the HTTP layer serves it from here.
    """

    layers: dict[str, RenderedLayer] = field(default_factory=dict)

    def add_layer(self, config: LayerConfig, dataset: Dataset) -> None:
        self.layers[config.id] = RenderedLayer(config=config, dataset=dataset)

    def set_visibility(self, layer_id: str, visible: bool) -> None:
        layer = self.layers.get(layer_id)
        if layer is not None:
            layer.visible = bool(visible)

    def apply_style(self, layer_id: str, projection: StyleProjection) -> None:
        layer = self.layers.get(layer_id)
        if layer is not None:
            layer.projection = projection

    def remove_layer(self, layer_id: str) -> None:
        self.layers.pop(layer_id, None)


def to_geojson(dataset: Dataset) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [_feature_geojson(f) for f in dataset.features],
    }


def _feature_geojson(f: LayerFeature) -> dict[str, Any]:
    if isinstance(f, PointFeature):
        geom: dict[str, Any] = {"type": "Point", "coordinates": [f.lon, f.lat]}
    elif isinstance(f, LineFeature):
        geom = {"type": "LineString", "coordinates": [list(c) for c in f.coords]}
    elif isinstance(f, PolygonFeature):
        geom = {
            "type": "Polygon",
            "coordinates": [[list(c) for c in ring] for ring in f.rings],
        }
    else:
        raise TypeError(f"Unsupported feature type: {type(f).__name__}")
    out: dict[str, Any] = {
        "type": "Feature",
        "geometry": geom,
        "properties": dict(f.props or {}),
    }
    if f.id is not None:
        out["id"] = f.id
    return out

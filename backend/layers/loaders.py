from __future__ import annotations

import json
import math
from typing import Any

from errors import InvalidFormat
from layers.types import (
    Dataset,
    DatasetMetadata,
    GeometryKind,
    LayerFeature,
    LineFeature,
    PointFeature,
    PolygonFeature,
)

_KIND_BY_GEOMETRY_TYPE: dict[str, GeometryKind] = {
    "point": "points",
    "multipoint": "points",
    "linestring": "lines",
    "multilinestring": "lines",
    "polygon": "polygons",
    "multipolygon": "polygons",
}


def kind_for_geometry_type(geometry_type: str) -> GeometryKind:
    kind = _KIND_BY_GEOMETRY_TYPE.get((geometry_type or "").strip().lower())
    if kind is None:
        raise ValueError(f"Unknown geometry type: {geometry_type}")
    return kind


def parse_feature_collection(
    raw: str | bytes | dict[str, Any], *, dataset_id: str, kind: GeometryKind
) -> Dataset:
    """
    Turn a GeoJSON feature collection into a Dataset of `kind` features.

    Features of other geometry kinds, and features without usable coordinates, are skipped.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidFormat(f"Dataset '{dataset_id}' is not valid JSON: {e}") from e
    else:
        data = raw
    if not isinstance(data, dict):
        raise InvalidFormat(f"Dataset '{dataset_id}' is not a JSON object")

    features: list[LayerFeature] = []
    for feature in data.get("features") or []:
        features.extend(_parse_feature(feature, kind))

    return Dataset(
        id=dataset_id,
        kind=kind,
        features=features,
        metadata=parse_metadata(data.get("metadata")),
    )


def parse_metadata(raw: Any) -> DatasetMetadata:
    if not isinstance(raw, dict):
        return DatasetMetadata()

    def _s(key: str) -> str | None:
        v = raw.get(key)
        if v is None:
            return None
        return str(v)

    return DatasetMetadata(
        id=_s("id"),
        name=_s("name"),
        description=_s("description"),
        category=_s("category"),
        updated=_s("updated"),
    )


def _parse_feature(feature: Any, kind: GeometryKind) -> list[LayerFeature]:
    if not isinstance(feature, dict):
        return []
    geom = feature.get("geometry") or {}
    props = feature.get("properties") or {}
    if not isinstance(geom, dict) or not isinstance(props, dict):
        return []
    gtype = str(geom.get("type") or "")
    coords = geom.get("coordinates")
    if not coords:
        return []

    fid = feature.get("id")
    if fid is None:
        fid = props.get("id")

    if kind == "points":
        if gtype == "Point":
            pt = _to_position(coords)
            return [PointFeature(id=fid, lon=pt[0], lat=pt[1], props=props)] if pt else []
        if gtype == "MultiPoint":
            out: list[LayerFeature] = []
            for p in coords:
                pt = _to_position(p)
                if pt:
                    out.append(PointFeature(id=fid, lon=pt[0], lat=pt[1], props=props))
            return out
        return []

    if kind == "lines":
        if gtype == "LineString":
            line = _to_ring(coords)
            return [LineFeature(id=fid, coords=line, props=props)] if len(line) >= 2 else []
        if gtype == "MultiLineString":
            return [
                LineFeature(id=fid, coords=line, props=props)
                for line in (_to_ring(c) for c in coords)
                if len(line) >= 2
            ]
        return []

    if gtype == "Polygon":
        rings = [r for r in (_to_ring(c) for c in coords) if r]
        return [PolygonFeature(id=fid, rings=rings, props=props)] if rings else []
    if gtype == "MultiPolygon":
        out = []
        for poly in coords:
            rings = [r for r in (_to_ring(c) for c in poly or []) if r]
            if rings:
                out.append(PolygonFeature(id=fid, rings=rings, props=props))
        return out
    return []


def _to_position(p: Any) -> tuple[float, float] | None:
    if not isinstance(p, (list, tuple)) or len(p) < 2:
        return None
    try:
        lon, lat = float(p[0]), float(p[1])
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return None
    return lon, lat


def _to_ring(ring: Any) -> list[tuple[float, float]]:
    out: list[tuple[float, float]] = []
    for p in ring or []:
        pt = _to_position(p)
        if pt is not None:
            out.append(pt)
    return out

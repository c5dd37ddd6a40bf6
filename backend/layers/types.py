from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias, Union


GeometryKind = Literal["points", "lines", "polygons"]


@dataclass(frozen=True)
class PointFeature:
    # GeoJSON ids may be missing, numeric or strings; see checkins.store.normalize_feature_id.
    id: Any
    lon: float
    lat: float
    props: dict[str, Any]


@dataclass(frozen=True)
class LineFeature:
    id: Any
    coords: list[tuple[float, float]]  # [(lon, lat), ...]
    props: dict[str, Any]


@dataclass(frozen=True)
class PolygonFeature:
    id: Any
    rings: list[
        list[tuple[float, float]]
    ]  # [outer_ring, ...]; each ring is [(lon, lat), ...]
    props: dict[str, Any]


LayerFeature: TypeAlias = Union[PointFeature, LineFeature, PolygonFeature]


@dataclass(frozen=True)
class DatasetMetadata:
    """
    The optional `metadata` object of a source feature collection.

    `id` is the checkin namespace, distinct from the dataset's configuration id.
    """

    id: str | None = None
    name: str | None = None
    description: str | None = None
    category: str | None = None
    updated: str | None = None


@dataclass
class Dataset:
    """
    One loaded feature collection.

    Features are frozen, but the list itself is replaced entry-by-entry once at load
    time by the declusterer; nothing else writes to it afterwards.
    """

    id: str
    kind: GeometryKind
    features: list[LayerFeature]
    metadata: DatasetMetadata = field(default_factory=DatasetMetadata)

    @property
    def namespace(self) -> str | None:
        return self.metadata.id

    def attribute_values(self, key: str) -> set[str]:
        out: set[str] = set()
        for f in self.features:
            v = (f.props or {}).get(key)
            if v is None:
                continue
            out.add(str(v))
        return out


LoadStatus = Literal["unloaded", "loading", "loaded"]


@dataclass
class LayerState:
    """
    Per-dataset viewer state.

    `loaded` only ever goes False -> True within a session; `visible` toggles freely.
    """

    visible: bool = False
    loaded: bool = False
    loading: bool = False
    failed: bool = False
    active_filter_values: set[str] = field(default_factory=set)

    @property
    def status(self) -> LoadStatus:
        if self.loaded:
            return "loaded"
        if self.loading:
            return "loading"
        return "unloaded"

    def to_persisted(self) -> dict[str, Any]:
        return {"visible": bool(self.visible), "filters": sorted(self.active_filter_values)}

from __future__ import annotations

import math
from dataclasses import dataclass, replace

from loguru import logger

from layers.types import Dataset, PointFeature

# ~11 m in latitude.
DECLUSTER_RADIUS_DEG = 0.0001


@dataclass(frozen=True)
class DeclusterStats:
    groups: int  # coordinates shared by 2+ points
    moved: int


def decluster(dataset: Dataset, *, radius: float = DECLUSTER_RADIUS_DEG) -> Dataset:
    """
    Spread points that share an exact coordinate onto a small circle around it.

    Points are grouped by exact (lon, lat) equality. In a group of n, the first point
    keeps its position and point i (1..n-1) moves to angle 2*pi*i/n at `radius` degrees.
    The angle step divides by n, not n-1, so index 0's slot on the circle stays empty.

    Runs in place, once per load, before the dataset is handed to anything else.
    """
    decluster_with_stats(dataset, radius=radius)
    return dataset


def decluster_with_stats(
    dataset: Dataset, *, radius: float = DECLUSTER_RADIUS_DEG
) -> DeclusterStats:
    groups: dict[tuple[float, float], list[int]] = {}
    for i, f in enumerate(dataset.features):
        if not isinstance(f, PointFeature):
            continue
        if not _is_finite(f.lon, f.lat):
            continue
        groups.setdefault((f.lon, f.lat), []).append(i)

    n_groups = 0
    moved = 0
    for (lon, lat), members in groups.items():
        n = len(members)
        if n < 2:
            continue
        n_groups += 1
        for i in range(1, n):
            angle = 2.0 * math.pi * i / n
            idx = members[i]
            dataset.features[idx] = replace(
                dataset.features[idx],
                lon=lon + radius * math.cos(angle),
                lat=lat + radius * math.sin(angle),
            )
            moved += 1

    stats = DeclusterStats(groups=n_groups, moved=moved)
    if moved:
        logger.debug(
            f"Declustered dataset {dataset.id}: {stats.moved} points moved in {stats.groups} groups"
        )
    return stats


def _is_finite(lon: object, lat: object) -> bool:
    try:
        return math.isfinite(float(lon)) and math.isfinite(float(lat))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False

"""Region resolution from coordinates.

A resolver is any callable ``(lat, lon) -> str`` returning a region code, or
an empty string when the point falls in no known region.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

RegionResolver = Callable[[float, float], str]

# Feature properties searched, in order, for the region code.
CODE_PROPERTIES = ("code", "region", "name")

Ring = list[tuple[float, float]]  # (lon, lat) pairs


def null_resolver(lat: float, lon: float) -> str:
    """Resolver used when no boundaries are configured."""
    return ""


def _point_in_ring(lon: float, lat: float, ring: Ring) -> bool:
    """Even-odd ray casting test."""
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


@dataclass
class _Polygon:
    outer: Ring
    holes: list[Ring]

    def contains(self, lon: float, lat: float) -> bool:
        if not _point_in_ring(lon, lat, self.outer):
            return False
        return not any(_point_in_ring(lon, lat, hole) for hole in self.holes)


def _rings(coords: Any) -> list[Ring]:
    return [[(float(p[0]), float(p[1])) for p in ring] for ring in coords]


def _polygons(geometry: dict[str, Any]) -> list[_Polygon]:
    kind = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if kind == "Polygon":
        parts = [coords]
    elif kind == "MultiPolygon":
        parts = coords
    else:
        return []
    out: list[_Polygon] = []
    for part in parts:
        rings = _rings(part)
        if rings:
            out.append(_Polygon(outer=rings[0], holes=rings[1:]))
    return out


class BoundaryResolver:
    """Point-in-polygon lookup over region boundaries.

    Regions are tested in the order they were loaded; the first containing
    region wins.
    """

    def __init__(self, regions: list[tuple[str, list[_Polygon]]]) -> None:
        self._regions = regions

    @classmethod
    def from_geojson(cls, path: Path) -> BoundaryResolver:
        """Load a GeoJSON FeatureCollection of region boundaries.

        Each feature's code comes from its ``code`` property, falling back to
        ``region`` then ``name``.  Features without a code or a polygonal
        geometry are ignored.

        Raises:
            ValueError: If the file is not a FeatureCollection.
        """
        data = json.loads(Path(path).read_text())
        if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
            raise ValueError(f"{path} is not a GeoJSON FeatureCollection")

        regions: list[tuple[str, list[_Polygon]]] = []
        for feature in data.get("features") or []:
            props = feature.get("properties") or {}
            code = next(
                (str(props[k]).strip() for k in CODE_PROPERTIES if props.get(k)), ""
            )
            polygons = _polygons(feature.get("geometry") or {})
            if code and polygons:
                regions.append((code, polygons))
        return cls(regions)

    def __call__(self, lat: float, lon: float) -> str:
        for code, polygons in self._regions:
            if any(p.contains(lon, lat) for p in polygons):
                return code
        return ""


def resolver_from_config(config: dict[str, Any]) -> RegionResolver:
    """Build the resolver named by ``region_boundaries``, or the null one."""
    path = config.get("region_boundaries")
    if not path:
        return null_resolver
    return BoundaryResolver.from_geojson(Path(path))

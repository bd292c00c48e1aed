from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from shapely import wkt as shapely_wkt
from shapely.geometry import Point
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.validation import make_valid

from ..errors import MalformedFilterError


LatLng = Tuple[float, float]


@dataclass(frozen=True)
class Rect:
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_mapping(cls, bounds: Mapping[str, Any]) -> "Rect":
        north = float(bounds["north"])
        south = float(bounds["south"])
        east = float(bounds["east"])
        west = float(bounds["west"])
        if south > north:
            north, south = south, north
        return cls(north=north, south=south, east=east, west=west)

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def as_dict(self) -> dict:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


@dataclass(frozen=True)
class Polygon:
    """Closed ring of (lat, lng) vertices; the closing vertex is implicit."""

    vertices: Tuple[LatLng, ...]

    def bbox(self) -> Tuple[float, float, float, float]:
        lats = [v[0] for v in self.vertices]
        lngs = [v[1] for v in self.vertices]
        return min(lats), max(lats), min(lngs), max(lngs)

    def edges(self) -> Iterable[Tuple[LatLng, LatLng]]:
        n = len(self.vertices)
        for i in range(n):
            yield self.vertices[i], self.vertices[i - 1]

    def to_wkt(self) -> str:
        ring = [(lng, lat) for lat, lng in self.vertices]
        geom = ShapelyPolygon(ring)
        if not geom.is_valid:
            geom = make_valid(geom)
        return geom.wkt


@dataclass(frozen=True)
class SpatialColumns:
    latitude: str
    longitude: str
    # Stored point geometry (WKT); None when the store only has scalar columns.
    geometry: Optional[str] = None


OPTIMIZED_COLUMNS = SpatialColumns(latitude="s.latitude", longitude="s.longitude")
NORMALIZED_COLUMNS = SpatialColumns(
    latitude="ll.latitude", longitude="ll.longitude", geometry="ll.coordinates"
)


def _coerce_vertex(raw: Any) -> LatLng:
    if isinstance(raw, Mapping):
        lat = raw.get("lat", raw.get("latitude"))
        lng = raw.get("lng", raw.get("lon", raw.get("longitude")))
    elif isinstance(raw, (list, tuple)) and len(raw) >= 2:
        lat, lng = raw[0], raw[1]
    else:
        raise ValueError(f"bad vertex: {raw!r}")
    return float(lat), float(lng)


def _is_vertex(raw: Any) -> bool:
    if isinstance(raw, Mapping):
        return "lat" in raw or "latitude" in raw
    return (
        isinstance(raw, (list, tuple))
        and len(raw) == 2
        and all(isinstance(c, (int, float, str)) for c in raw)
    )


def _shoelace_area(vertices: Sequence[LatLng]) -> float:
    total = 0.0
    n = len(vertices)
    for i in range(n):
        y1, x1 = vertices[i]
        y2, x2 = vertices[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    return abs(total) / 2.0


def parse_polygon(raw: Any) -> Optional[Polygon]:
    """Parse one ring; degenerate rings (under 3 vertices, zero area) yield None."""

    if not isinstance(raw, (list, tuple)):
        return None
    try:
        vertices = [_coerce_vertex(v) for v in raw]
    except (TypeError, ValueError):
        return None
    if len(vertices) > 1 and vertices[0] == vertices[-1]:
        vertices = vertices[:-1]
    if len(set(vertices)) < 3 or _shoelace_area(vertices) == 0.0:
        return None
    return Polygon(vertices=tuple(vertices))


def parse_polygon_shapes(value: Any) -> List[Polygon]:
    if value is None or value == "":
        return []
    if not isinstance(value, (list, tuple)):
        raise MalformedFilterError("polygon_shapes", "expected a list of vertex rings")
    if value and all(_is_vertex(v) for v in value):
        # A single ring passed without the outer list.
        value = [value]
    shapes = []
    for ring in value:
        polygon = parse_polygon(ring)
        if polygon is not None:
            shapes.append(polygon)
    return shapes


def _on_edge(lat: float, lng: float, edge: Tuple[LatLng, LatLng]) -> bool:
    (yi, xi), (yj, xj) = edge
    if not (min(yi, yj) <= lat <= max(yi, yj) and min(xi, xj) <= lng <= max(xi, xj)):
        return False
    return (xj - xi) * (lat - yi) == (yj - yi) * (lng - xi)


def point_in_polygon(lat: float, lng: float, polygon: Polygon) -> bool:
    """Even-odd ray casting along +lng; points on an edge or vertex are inside."""

    if any(_on_edge(lat, lng, edge) for edge in polygon.edges()):
        return True
    inside = False
    for (yi, xi), (yj, xj) in polygon.edges():
        if yi == yj:
            continue
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
    return inside


def scalar_polygon_sql(polygon: Polygon, columns: SpatialColumns) -> Tuple[str, List[Any]]:
    """Ray casting as SQL arithmetic over scalar latitude/longitude columns.

    Each edge contributes 0 or 1; an odd sum means inside. The edge and
    crossing tests evaluate the same expressions as :func:`point_in_polygon`,
    so both agree on boundary points too.
    """

    lat, lng = columns.latitude, columns.longitude
    min_lat, max_lat, min_lng, max_lng = polygon.bbox()
    edge_terms: List[str] = []
    edge_params: List[Any] = []
    crossing_terms: List[str] = []
    crossing_params: List[Any] = []
    for (yi, xi), (yj, xj) in polygon.edges():
        edge_terms.append(
            f"({lat} BETWEEN ? AND ? AND {lng} BETWEEN ? AND ? AND ? * ({lat} - ?) = ? * ({lng} - ?))"
        )
        edge_params.extend([min(yi, yj), max(yi, yj), min(xi, xj), max(xi, xj), xj - xi, yi, yj - yi, xi])
        if yi == yj:
            continue
        crossing_terms.append(f"((? > {lat}) <> (? > {lat}) AND {lng} < ? * ({lat} - ?) / ? + ?)")
        crossing_params.extend([yi, yj, xj - xi, yi, yj - yi, xi])
    sql = (
        f"({lat} BETWEEN ? AND ? AND {lng} BETWEEN ? AND ? "
        f"AND ({' OR '.join(edge_terms)} OR ({' + '.join(crossing_terms)}) % 2 = 1))"
    )
    return sql, [min_lat, max_lat, min_lng, max_lng, *edge_params, *crossing_params]


def geometry_polygon_sql(polygon: Polygon, columns: SpatialColumns) -> Tuple[str, List[Any]]:
    if not columns.geometry:
        return scalar_polygon_sql(polygon, columns)
    return f"ST_Contains(ST_GeomFromText(?), {columns.geometry})", [polygon.to_wkt()]


def rect_sql(rect: Rect, columns: SpatialColumns) -> Tuple[str, List[Any]]:
    sql = (
        f"({columns.latitude} >= ? AND {columns.latitude} <= ? "
        f"AND {columns.longitude} >= ? AND {columns.longitude} <= ?)"
    )
    return sql, [rect.south, rect.north, rect.west, rect.east]


def build_spatial(
    *,
    columns: SpatialColumns,
    bounds: Optional[Rect] = None,
    polygons: Sequence[Polygon] = (),
    regions: Sequence[Tuple[str, List[Any]]] = (),
) -> Optional[Tuple[str, List[Any]]]:
    """One OR-group of every active spatial criterion.

    The viewport rectangle drops out once a polygon is drawn. Named regions
    (already compiled to categorical predicates) join the same group, so the
    result does not depend on the order criteria were added in.
    """

    parts: List[str] = []
    params: List[Any] = []

    if polygons:
        for polygon in polygons:
            if columns.geometry:
                sql, p = geometry_polygon_sql(polygon, columns)
            else:
                sql, p = scalar_polygon_sql(polygon, columns)
            parts.append(sql)
            params.extend(p)
    elif bounds is not None:
        sql, p = rect_sql(bounds, columns)
        parts.append(sql)
        params.extend(p)

    for sql, p in regions:
        parts.append(sql)
        params.extend(p)

    if not parts:
        return None
    if len(parts) == 1:
        return parts[0], params
    return "(" + " OR ".join(parts) + ")", params


@lru_cache(maxsize=256)
def _load_wkt(text: str):
    return shapely_wkt.loads(text)


def _st_contains(container: Optional[str], contained: Optional[str]) -> Optional[int]:
    # Boundary points count as contained, matching point_in_polygon.
    if container is None or contained is None:
        return None
    return 1 if _load_wkt(container).covers(_load_wkt(contained)) else 0


def _st_geom_from_text(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return _load_wkt(text).wkt


def _st_x(point: Optional[str]) -> Optional[float]:
    if point is None:
        return None
    return _load_wkt(point).x


def _st_y(point: Optional[str]) -> Optional[float]:
    if point is None:
        return None
    return _load_wkt(point).y


def point_wkt(lat: float, lng: float) -> str:
    return Point(lng, lat).wkt


def register_geometry_functions(conn: sqlite3.Connection) -> None:
    """Install shapely-backed geometry functions on a SQLite connection."""

    conn.create_function("ST_Contains", 2, _st_contains, deterministic=True)
    conn.create_function("ST_GeomFromText", 1, _st_geom_from_text, deterministic=True)
    conn.create_function("ST_X", 1, _st_x, deterministic=True)
    conn.create_function("ST_Y", 1, _st_y, deterministic=True)

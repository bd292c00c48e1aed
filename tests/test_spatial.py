import pytest

from listing_search.errors import MalformedFilterError
from listing_search.search.query import compile_filters
from listing_search.search.spatial import (
    NORMALIZED_COLUMNS,
    Rect,
    build_spatial,
    geometry_polygon_sql,
    parse_polygon,
    parse_polygon_shapes,
    point_in_polygon,
    point_wkt,
    scalar_polygon_sql,
)
from listing_search.storage.db import connect


# Concave "L" shape, (lat, lng).
L_SHAPE = [
    (42.30, -71.10),
    (42.40, -71.10),
    (42.40, -71.08),
    (42.32, -71.08),
    (42.32, -71.00),
    (42.30, -71.00),
]

EPS = 1e-6

SAMPLE_POINTS = [
    # interior
    (42.31, -71.05),
    (42.35, -71.09),
    (42.39, -71.09),
    # exterior, including the notch of the L
    (42.35, -71.05),
    (42.39, -71.01),
    (42.45, -71.09),
    (42.31, -70.99),
    # just inside / just outside each edge
    (42.30 + EPS, -71.05),
    (42.30 - EPS, -71.05),
    (42.36, -71.10 + EPS),
    (42.36, -71.10 - EPS),
    (42.36, -71.08 - EPS),
    (42.36, -71.08 + EPS),
    (42.32 - EPS, -71.04),
    (42.32 + EPS, -71.04),
    (42.40 - EPS, -71.09),
    (42.40 + EPS, -71.09),
    # near a reflex vertex
    (42.32 - EPS, -71.08 + EPS),
    (42.32 + EPS, -71.08 + EPS),
]

# Exactly on an edge or vertex of the L; all count as inside.
BOUNDARY_POINTS = [
    (42.30, -71.05),
    (42.36, -71.10),
    (42.40, -71.09),
    (42.36, -71.08),
    (42.32, -71.04),
    (42.32, -71.08),
    (42.30, -71.10),
    (42.40, -71.08),
    (42.31, -71.00),
]
SAMPLE_POINTS += BOUNDARY_POINTS
BOUNDARY_IDS = set(range(len(SAMPLE_POINTS) - len(BOUNDARY_POINTS), len(SAMPLE_POINTS)))


@pytest.fixture
def points_conn():
    conn = connect(":memory:")
    conn.execute("CREATE TABLE pts (id INTEGER PRIMARY KEY, latitude REAL, longitude REAL, coordinates TEXT)")
    for i, (lat, lng) in enumerate(SAMPLE_POINTS):
        conn.execute("INSERT INTO pts VALUES (?, ?, ?, ?)", (i, lat, lng, point_wkt(lat, lng)))
    yield conn
    conn.close()


def _ids(conn, sql, params):
    return {row[0] for row in conn.execute(f"SELECT id FROM pts ll WHERE {sql}", params)}


def test_scalar_and_geometry_containment_agree(points_conn):
    polygon = parse_polygon(L_SHAPE)
    expected = {i for i, (lat, lng) in enumerate(SAMPLE_POINTS) if point_in_polygon(lat, lng, polygon)}

    scalar_sql, scalar_params = scalar_polygon_sql(polygon, NORMALIZED_COLUMNS)
    geometry_sql, geometry_params = geometry_polygon_sql(polygon, NORMALIZED_COLUMNS)

    assert _ids(points_conn, scalar_sql, scalar_params) == expected
    assert _ids(points_conn, geometry_sql, geometry_params) == expected
    assert {0, 1, 2} <= expected
    assert not ({3, 4, 5, 6} & expected)
    assert BOUNDARY_IDS <= expected


def test_square_edges_and_corners_agree_across_stores():
    square = parse_polygon([(42.30, -71.10), (42.40, -71.10), (42.40, -71.00), (42.30, -71.00)])
    points = [(42.35, -71.10), (42.40, -71.05), (42.30, -71.00), (42.35, -71.00), (42.30, -71.05), (42.41, -71.05)]
    conn = connect(":memory:")
    conn.execute("CREATE TABLE pts (id INTEGER PRIMARY KEY, latitude REAL, longitude REAL, coordinates TEXT)")
    for i, (lat, lng) in enumerate(points):
        conn.execute("INSERT INTO pts VALUES (?, ?, ?, ?)", (i, lat, lng, point_wkt(lat, lng)))

    python = {i for i, (lat, lng) in enumerate(points) if point_in_polygon(lat, lng, square)}
    scalar = _ids(conn, *scalar_polygon_sql(square, NORMALIZED_COLUMNS))
    geometry = _ids(conn, *geometry_polygon_sql(square, NORMALIZED_COLUMNS))
    conn.close()
    assert python == scalar == geometry == {0, 1, 2, 3, 4}


def test_point_in_polygon_ignores_vertex_order():
    forward = parse_polygon(L_SHAPE)
    backward = parse_polygon(list(reversed(L_SHAPE)))
    for lat, lng in SAMPLE_POINTS:
        assert point_in_polygon(lat, lng, forward) == point_in_polygon(lat, lng, backward)


def test_degenerate_shapes_are_ignored():
    assert parse_polygon([(42.3, -71.1), (42.4, -71.1)]) is None
    assert parse_polygon([(42.3, -71.1), (42.3, -71.1), (42.4, -71.0)]) is None
    # collinear
    assert parse_polygon([(0, 0), (1, 1), (2, 2)]) is None
    assert parse_polygon_shapes([[[1, 2], [3, 4]]]) == []


def test_shape_formats():
    ring = [{"lat": 42.3, "lng": -71.1}, {"lat": 42.4, "lng": -71.1}, {"lat": 42.4, "lng": -71.0}]
    assert len(parse_polygon_shapes([ring])) == 1
    # a bare ring, closed explicitly
    closed = [[42.3, -71.1], [42.4, -71.1], [42.4, -71.0], [42.3, -71.1]]
    shapes = parse_polygon_shapes(closed)
    assert len(shapes) == 1
    assert len(shapes[0].vertices) == 3


def test_non_list_shapes_are_malformed():
    with pytest.raises(MalformedFilterError):
        parse_polygon_shapes({"type": "Polygon"})


def test_rectangle_is_four_inequalities():
    rect = Rect.from_mapping({"north": 42.3, "south": 42.4, "east": -71.0, "west": -71.1})
    assert rect.north == 42.4 and rect.south == 42.3
    sql, params = build_spatial(columns=NORMALIZED_COLUMNS, bounds=rect)
    assert sql.count("?") == 4
    assert params == [42.3, 42.4, -71.1, -71.0]


def test_polygon_replaces_viewport():
    rect = Rect(north=42.4, south=42.3, east=-71.0, west=-71.1)
    polygon = parse_polygon(L_SHAPE)
    sql, params = build_spatial(columns=NORMALIZED_COLUMNS, bounds=rect, polygons=[polygon])
    assert sql.startswith("ST_Contains(")
    assert params == [polygon.to_wkt()]


def test_city_and_polygon_combine_order_independently():
    shape = [list(v) for v in L_SHAPE]
    a = compile_filters({"city": ["Cambridge"], "polygon_shapes": [shape], "status": "Active"}, "optimized")
    b = compile_filters({"polygon_shapes": [shape], "status": "Active", "city": ["Cambridge"]}, "optimized")
    assert a.where() == b.where()
    spatial = a.predicates[-1].where_sql
    assert spatial.startswith("(") and " OR s.city = ?" in spatial

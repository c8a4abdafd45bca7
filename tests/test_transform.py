"""Tests for geometry deformation."""

import pytest
import numpy as np
import shapely
from shapely.geometry import (
    Point,
    LineString,
    Polygon,
    MultiPolygon,
    MultiLineString,
    GeometryCollection,
    mapping,
)

from distcarto.core import fit_and_build_grid, deform_geometry, deform_geometries, OutOfDomain


@pytest.fixture
def grid():
    return fit_and_build_grid([(0, 0), (10, 0), (0, 10)], [(0, 0), (20, 0), (0, 10)], order=1)


@pytest.fixture
def holed_polygon():
    shell = [(1, 1), (9, 1), (9, 9), (1, 9), (1, 1)]
    holes = [
        [(2, 2), (4, 2), (4, 4), (2, 4), (2, 2)],
        [(6, 6), (8, 6), (7, 8), (6, 6)],
    ]
    return Polygon(shell, holes)


class TestDeformGeometry:
    def test_point(self, grid):
        out = deform_geometry(grid, Point(5, 0))
        assert out.geom_type == "Point"
        assert (out.x, out.y) == pytest.approx((10.0, 0.0), abs=1e-8)

    def test_linestring(self, grid):
        out = deform_geometry(grid, LineString([(0, 0), (5, 0), (0, 5)]))
        assert np.allclose(shapely.get_coordinates(out), [(0, 0), (10, 0), (0, 5)], atol=1e-8)

    def test_polygon_topology(self, grid, holed_polygon):
        out = deform_geometry(grid, holed_polygon)

        assert out.geom_type == "Polygon"
        assert len(out.exterior.coords) == len(holed_polygon.exterior.coords)
        assert len(out.interiors) == 2
        for before, after in zip(holed_polygon.interiors, out.interiors):
            assert len(after.coords) == len(before.coords)
            expected = np.array(before.coords) * [2.0, 1.0]
            assert np.allclose(np.array(after.coords), expected, atol=1e-8)
        assert out.area == pytest.approx(2 * holed_polygon.area)

    def test_multi_and_collection(self, grid, holed_polygon):
        multi = MultiPolygon([holed_polygon, Polygon([(20, 20), (21, 20), (21, 21)])])
        lines = MultiLineString([[(0, 0), (1, 1)], [(2, 2), (3, 3), (4, 4)]])
        collection = GeometryCollection([Point(1, 1), lines, multi])

        out = deform_geometry(grid, collection)

        assert out.geom_type == "GeometryCollection"
        assert [g.geom_type for g in out.geoms] == ["Point", "MultiLineString", "MultiPolygon"]
        assert shapely.get_num_coordinates(out) == shapely.get_num_coordinates(collection)
        assert len(out.geoms[2].geoms) == 2

    def test_geojson_mapping(self, grid):
        out = deform_geometry(grid, {"type": "Point", "coordinates": [0, 5]})
        assert (out.x, out.y) == pytest.approx((0.0, 5.0), abs=1e-8)

    def test_geo_interface(self, grid):
        class Feature:
            __geo_interface__ = mapping(LineString([(0, 0), (5, 0)]))

        out = deform_geometry(grid, Feature())
        assert np.allclose(shapely.get_coordinates(out), [(0, 0), (10, 0)], atol=1e-8)

    def test_empty(self, grid):
        out = deform_geometry(grid, Polygon())
        assert out.is_empty

    def test_unsupported(self, grid):
        with pytest.raises(TypeError):
            deform_geometry(grid, [(0, 0), (1, 1)])

    def test_non_finite_coordinates(self, grid):
        with pytest.raises(OutOfDomain):
            deform_geometry(grid, LineString([(0, 0), (np.nan, 1)]))
        with pytest.raises(OutOfDomain):
            deform_geometry(grid, Point(np.inf, 0))

    def test_identity(self, holed_polygon):
        pts = [(0, 0), (10, 0), (0, 10), (10, 10), (5, 3)]
        grid = fit_and_build_grid(pts, pts, order=1)

        out = deform_geometry(grid, holed_polygon)

        assert np.allclose(
            shapely.get_coordinates(out), shapely.get_coordinates(holed_polygon), atol=1e-8,
        )

    def test_input_unchanged(self, grid, holed_polygon):
        before = shapely.get_coordinates(holed_polygon).copy()
        deform_geometry(grid, holed_polygon)
        assert np.array_equal(shapely.get_coordinates(holed_polygon), before)


class TestDeformGeometries:
    def test_order_preserved(self, grid):
        geoms = [Point(i * 0.25, i % 3) for i in range(40)]

        sequential = deform_geometries(grid, geoms, num_workers=1)
        threaded = deform_geometries(grid, geoms, num_workers=4)

        assert len(threaded) == 40
        for a, b, src in zip(sequential, threaded, geoms):
            assert a.equals(b)
            assert (a.x, a.y) == pytest.approx((2 * src.x, src.y), abs=1e-8)

    def test_progress(self, grid):
        out = deform_geometries(grid, [Point(1, 1)], progress=True)
        assert len(out) == 1

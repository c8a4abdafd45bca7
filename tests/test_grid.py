"""Tests for DeformationGrid construction and lookup."""

import pytest
import numpy as np

from distcarto.core import (
    GridConfig,
    DeformationGrid,
    fit_and_build_grid,
    fit_regression,
    build_grid,
    InsufficientPoints,
    OutOfDomain,
    DegenerateConfiguration,
    NumericalInstability,
)
from distcarto.core import grid as grid_module
from distcarto.core.grid import grid_extent, idw_residuals


@pytest.fixture
def jittered():
    """Jittered 5x5 lattice of source points and a non-linear image."""
    rng = np.random.default_rng(42)
    xs, ys = np.meshgrid(np.arange(5) * 10.0, np.arange(5) * 10.0)
    source = np.column_stack([xs.ravel(), ys.ravel()]) + rng.uniform(-2, 2, size=(25, 2))
    image = source + np.column_stack([
        3 * np.sin(source[:, 1] / 7),
        2 * np.cos(source[:, 0] / 9),
    ]) + rng.normal(scale=0.3, size=(25, 2))
    return source, image


@pytest.fixture
def clustered():
    """Uniform points plus a tight ring of 12 points around (50, 50)."""
    rng = np.random.default_rng(3)
    spread = rng.uniform(0, 100, size=(20, 2))
    angles = np.arange(12) * np.pi / 6
    ring = np.column_stack([50 + 0.5 * np.cos(angles), 50 + 0.5 * np.sin(angles)])
    source = np.vstack([spread, ring])
    image = source + rng.normal(scale=1.0, size=source.shape)
    return source, image


class TestGridExtent:
    def test_resolution(self):
        source = np.array([(0, 0), (10, 0), (0, 5)], dtype=float)
        x0, y0, cell, (rows, cols) = grid_extent(source, GridConfig(resolution=11, margin=0.0))

        assert cols == 11
        assert cell == pytest.approx(1.0)
        assert rows == 6
        assert (x0, y0) == pytest.approx((0.0, 0.0))

    def test_margin_fraction_and_absolute(self):
        source = np.array([(0, 0), (10, 0), (0, 10)], dtype=float)
        _, _, _, shape_frac = grid_extent(source, GridConfig(cell_size=1.0, margin=0.5))
        _, _, _, shape_abs = grid_extent(source, GridConfig(cell_size=1.0, margin=5.0))

        assert shape_frac == (21, 21)
        assert shape_abs == (21, 21)

    def test_bbox_extends_grid(self):
        source = np.array([(0, 0), (10, 0), (0, 10)], dtype=float)
        x0, y0, cell, (rows, cols) = grid_extent(
            source, GridConfig(cell_size=1.0, margin=0.0, bbox=(-10, -10, 20, 20)),
        )
        assert x0 <= -10 and y0 <= -10
        assert x0 + (cols - 1) * cell >= 20

    def test_precision(self):
        source = np.array([(0, 0), (10, 0), (0, 10), (10, 10)], dtype=float)
        coarse = grid_extent(source, GridConfig(precision=1.0, margin=0.0))
        fine = grid_extent(source, GridConfig(precision=4.0, margin=0.0))

        assert fine[2] == pytest.approx(coarse[2] / 4)
        assert fine[3][0] > coarse[3][0]

    def test_single_point(self):
        source = np.array([(5, 5)], dtype=float)
        x0, y0, cell, (rows, cols) = grid_extent(source, GridConfig())

        assert (x0, y0) == pytest.approx((4.0, 4.0))
        assert cell == pytest.approx(1.0)
        assert (rows, cols) == (3, 3)

    def test_single_point_with_cell_size(self):
        source = np.array([(5, 5)], dtype=float)
        x0, y0, cell, shape = grid_extent(source, GridConfig(cell_size=0.5))

        assert (x0, y0) == pytest.approx((4.5, 4.5))
        assert shape == (3, 3)


class TestIDW:
    def test_exact_at_sample(self):
        samples = np.array([(0, 0), (10, 0)], dtype=float)
        residuals = np.array([(1, 2), (3, 4)], dtype=float)

        out = idw_residuals(samples, samples, residuals, damping_length=5.0)

        assert np.allclose(out, residuals)

    def test_undamped_single_sample_is_constant(self):
        samples = np.array([(0, 0)], dtype=float)
        residuals = np.array([(1, -1)], dtype=float)
        points = np.array([(5, 5), (100, -30)], dtype=float)

        out = idw_residuals(points, samples, residuals)

        assert np.allclose(out, [(1, -1), (1, -1)])

    def test_damping_fades(self):
        samples = np.array([(0, 0)], dtype=float)
        residuals = np.array([(1, 0)], dtype=float)
        points = np.array([(1, 0), (10, 0), (1000, 0)], dtype=float)

        out = idw_residuals(points, samples, residuals, damping_length=10.0)

        assert out[0, 0] > out[1, 0] > out[2, 0] > 0
        assert out[1, 0] == pytest.approx(0.5)
        assert out[2, 0] < 1e-3


class TestDeformationGrid:
    def test_concrete_example(self):
        grid = fit_and_build_grid([(0, 0), (10, 0), (0, 10)], [(0, 0), (20, 0), (0, 10)], order=1)

        out = grid.interpolate([(5, 0), (0, 5)])

        assert np.allclose(out, [(10, 0), (0, 5)], atol=1e-8)

    @pytest.mark.parametrize("order", [1, 2])
    def test_identity(self, jittered, order):
        source, _ = jittered
        grid = fit_and_build_grid(source, source, order=order)
        rng = np.random.default_rng(1)
        pts = rng.uniform(-20, 60, size=(50, 2))

        assert np.allclose(grid.interpolate(pts), pts, atol=1e-8)
        assert grid.deformation_strength() == pytest.approx(1.0)

    @pytest.mark.parametrize("order", [1, 2])
    def test_exact_recovery(self, jittered, order):
        source, image = jittered
        grid = fit_and_build_grid(source, image, order=order)

        assert np.allclose(grid.interpolate(source), image, atol=1e-6)
        assert grid.rmse() < 1e-6

    def test_exact_recovery_undamped(self, jittered):
        source, image = jittered
        grid = DeformationGrid.build(source, image, GridConfig(damping=None, idw_power=3.0))

        assert np.allclose(grid.interpolate(source), image, atol=1e-6)

    def test_build_matches_fit_and_build(self, jittered):
        source, image = jittered
        a = DeformationGrid.build(source, image, GridConfig(order=2, resolution=30))
        b = fit_and_build_grid(source, image, order=2, resolution=30)

        assert a.shape == b.shape
        assert np.array_equal(a.displacement, b.displacement)

    def test_build_grid_overrides(self, jittered):
        source, image = jittered
        model = fit_regression(source, image, order=1)
        grid = build_grid(model, source, model.residuals, resolution=21, margin=0.0)

        assert max(grid.shape) == 21
        assert grid.config.margin == 0.0
        assert grid.config.order == 1

    def test_clamped_outside(self):
        grid = fit_and_build_grid([(0, 0), (10, 0), (0, 10)], [(0, 0), (20, 0), (0, 10)])
        xmin, ymin, xmax, ymax = grid.bbox

        out = grid.interpolate([(1000.0, 0.0)])
        edge = grid.displacement_at([(xmax, 0.0)])

        assert np.allclose(out, np.array([(1000.0, 0.0)]) + edge)

    def test_deterministic_and_immutable(self, jittered):
        source, image = jittered
        grid = fit_and_build_grid(source, image)
        before = grid.displacement.copy()
        pts = np.array([(12.3, 4.5), (33.0, 21.0)])

        first = grid.interpolate(pts)
        second = grid.interpolate(pts)

        assert np.array_equal(first, second)
        assert np.array_equal(grid.displacement, before)
        with pytest.raises(ValueError):
            grid.displacement[0, 0, 0] = 1.0

    def test_workers_do_not_change_result(self, jittered):
        source, image = jittered
        single = fit_and_build_grid(source, image, config=GridConfig(resolution=300, num_workers=1))
        threaded = fit_and_build_grid(source, image, config=GridConfig(resolution=300, num_workers=4))

        assert np.array_equal(single.displacement, threaded.displacement)

    def test_cells(self):
        grid = fit_and_build_grid(
            [(0, 0), (10, 0), (0, 10)], [(0, 0), (20, 0), (0, 10)],
            config=GridConfig(cell_size=2.0, margin=0.0),
        )
        rows, cols = grid.shape
        source_cells = grid.cells("source")
        deformed_cells = grid.cells("interpolated")

        assert len(source_cells) == (rows - 1) * (cols - 1)
        assert source_cells[0].area == pytest.approx(4.0)
        assert deformed_cells[0].area == pytest.approx(8.0)
        with pytest.raises(ValueError):
            grid.cells("warped")

    def test_non_finite_lookup(self, jittered):
        source, image = jittered
        grid = fit_and_build_grid(source, image)
        with pytest.raises(OutOfDomain):
            grid.interpolate([(np.nan, 0.0)])

    def test_single_source_point(self):
        model = fit_regression([(0, 0), (10, 0), (0, 10)], [(0, 0), (10, 0), (0, 10)])

        grid = build_grid(model, [(5, 5)], [(1, -1)], config=GridConfig(damping=None))

        assert np.allclose(grid.interpolate([(5, 5)]), [(6, 4)])
        assert np.allclose(grid.displacement, np.broadcast_to([1.0, -1.0], grid.displacement.shape))
        assert np.allclose(grid.interpolate([(100, -20)]), [(101, -21)])

    def test_clustered_points_refine(self, clustered):
        source, image = clustered
        _, _, default_cell, _ = grid_extent(source, GridConfig())

        grid = fit_and_build_grid(source, image)

        assert grid.cell_size < default_cell / 4
        assert grid.config.cell_size == pytest.approx(grid.cell_size)
        assert np.allclose(grid.interpolate(source), image, atol=1e-6)

    def test_clustered_points_node_limit(self, clustered, monkeypatch):
        source, image = clustered
        monkeypatch.setattr(grid_module, "MAX_NODES", 500)

        with pytest.raises(NumericalInstability):
            fit_and_build_grid(source, image)

    def test_coincident_sources(self, jittered):
        source, image = jittered
        source = np.vstack([source, source[:1]])

        consistent = fit_and_build_grid(source, np.vstack([image, image[:1]]))

        assert np.allclose(consistent.interpolate(source), np.vstack([image, image[:1]]), atol=1e-6)
        with pytest.raises(DegenerateConfiguration):
            fit_and_build_grid(source, np.vstack([image, image[:1] + 1.0]))

    def test_insufficient_points(self):
        with pytest.raises(InsufficientPoints):
            fit_and_build_grid([(0, 0), (1, 1)], [(0, 0), (2, 2)], order=1)

    def test_repr(self):
        grid = fit_and_build_grid([(0, 0), (10, 0), (0, 10)], [(0, 0), (20, 0), (0, 10)])
        assert "DeformationGrid(order=1" in repr(grid)

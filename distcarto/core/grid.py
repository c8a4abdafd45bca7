"""DeformationGrid: regression trend + locally interpolated residuals on a node grid.

Node layout: row i runs along y (ascending from the grid origin), column j
along x. Each node stores the displacement vector ``f(p) + r(p) - p`` where
``f`` is the regression and ``r`` the damped inverse-distance blend of the
sample residuals. A sparse minimum-norm correction then makes bilinear
lookup reproduce every image point at its source point.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Optional, Tuple, List

import numpy as np
import shapely
from scipy import sparse
from scipy.sparse.linalg import lsqr

from .config import GridConfig
from .errors import DegenerateConfiguration, DimensionMismatch, NumericalInstability
from .points import BBox, as_points, bounding_box, distances, union_bbox
from .regression import RegressionModel, fit_regression

logger = logging.getLogger(__name__)

MAX_NODES = 4_000_000
_CHUNK_PAIRS = 2_000_000  # node x sample distances evaluated at once


def grid_extent(source: np.ndarray, cfg: GridConfig) -> Tuple[float, float, float, Tuple[int, int]]:
    """Origin, cell size and (rows, cols) of the grid covering ``source``."""
    bbox = bounding_box(source)
    if cfg.bbox is not None:
        bbox = union_bbox(bbox, cfg.bbox)
    xmin, ymin, xmax, ymax = bbox
    side = max(xmax - xmin, ymax - ymin)
    if cfg.margin >= 1:
        margin = cfg.margin
    elif side > 0:
        margin = cfg.margin * side
    else:
        # Single (or coincident) source point: pad by one cell, else one unit
        margin = float(cfg.cell_size) if cfg.cell_size is not None else 1.0
    xmin, ymin, xmax, ymax = xmin - margin, ymin - margin, xmax + margin, ymax + margin
    width, height = xmax - xmin, ymax - ymin

    if cfg.cell_size is not None:
        cell = float(cfg.cell_size)
    elif cfg.resolution is not None:
        cell = max(width, height) / (cfg.resolution - 1)
    else:
        area = max(width * height, max(width, height) ** 2 * 1e-6)
        cell = math.sqrt(area / len(source)) / cfg.precision

    cols = max(int(math.ceil(width / cell - 1e-9)) + 1, 2)
    rows = max(int(math.ceil(height / cell - 1e-9)) + 1, 2)
    if rows * cols > MAX_NODES:
        raise ValueError(f"grid of {rows}x{cols} nodes exceeds {MAX_NODES} nodes")

    # Center the node lattice on the extent
    x0 = xmin - ((cols - 1) * cell - width) / 2
    y0 = ymin - ((rows - 1) * cell - height) / 2
    return x0, y0, cell, (rows, cols)


def idw_residuals(
    points: np.ndarray,
    samples: np.ndarray,
    residuals: np.ndarray,
    power: float = 2.0,
    damping_length: Optional[float] = None,
) -> np.ndarray:
    """Inverse-distance-weighted blend of sample residuals at ``points``.

    ``r(p) = sum(w_i r_i) / (sum(w_i) + w_0)`` with ``w_i = d_i^-power`` and
    ``w_0 = damping_length^-power`` (0 without damping), so residuals fade
    towards zero far from the samples. A point on a sample takes its residual.
    """
    d = distances(points, samples)
    w = np.where(d > 0, d, np.inf) ** -power
    w0 = 0.0 if damping_length is None else damping_length ** -power
    total = w.sum(axis=1, keepdims=True) + w0
    out = (w @ residuals) / np.where(total > 0, total, 1.0)

    on_sample = d == 0
    hit = on_sample.any(axis=1)
    if hit.any():
        out[hit] = residuals[on_sample[hit].argmax(axis=1)]
    return out


class DeformationGrid:
    """Immutable interpolation grid for deforming geometries.

    Built once from homologous source/image points; afterwards every method
    is a pure read, so one grid can serve any number of threads.
    """

    def __init__(
        self,
        regression: RegressionModel,
        origin: Tuple[float, float],
        cell_size: float,
        displacement: np.ndarray,
        config: Optional[GridConfig] = None,
    ):
        self.regression = regression
        self.origin = (float(origin[0]), float(origin[1]))
        self.cell_size = float(cell_size)
        self.displacement = np.array(displacement, dtype=np.float64)  # [rows, cols, 2]
        self.displacement.flags.writeable = False
        self.config = config or GridConfig(order=regression.order)

    @classmethod
    def build(
        cls,
        source,
        image,
        config: Optional[GridConfig] = None,
        regression: Optional[RegressionModel] = None,
    ) -> "DeformationGrid":
        """Fit the regression (unless given) and build the grid.

        Args:
            source: [N, 2] source points
            image: [N, 2] homologous image points
            config: GridConfig (defaults if None)
            regression: pre-fitted model for the same points

        Returns:
            DeformationGrid
        """
        cfg = config or GridConfig()
        if regression is None:
            regression = fit_regression(source, image, cfg.order, cfg.condition_threshold)
        return build_grid(regression, regression.source, regression.residuals, config=cfg)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.displacement.shape[:2]

    @property
    def bbox(self) -> BBox:
        rows, cols = self.shape
        x0, y0 = self.origin
        return x0, y0, x0 + (cols - 1) * self.cell_size, y0 + (rows - 1) * self.cell_size

    @property
    def nodes(self) -> np.ndarray:
        """Source positions of the nodes, [rows, cols, 2]."""
        return _node_coordinates(self.origin, self.cell_size, self.shape)

    def _locate(self, pts: np.ndarray):
        rows, cols = self.shape
        gx = np.clip((pts[:, 0] - self.origin[0]) / self.cell_size, 0, cols - 1)
        gy = np.clip((pts[:, 1] - self.origin[1]) / self.cell_size, 0, rows - 1)
        j0 = np.minimum(np.floor(gx).astype(np.intp), cols - 2)
        i0 = np.minimum(np.floor(gy).astype(np.intp), rows - 2)
        return i0, j0, gx - j0, gy - i0

    def displacement_at(self, points) -> np.ndarray:
        """Bilinearly interpolated displacement at [N, 2] points (clamped to the grid)."""
        pts = as_points(points)
        i0, j0, fx, fy = self._locate(pts)
        D = self.displacement
        w00 = ((1 - fx) * (1 - fy))[:, None]
        w01 = (fx * (1 - fy))[:, None]
        w10 = ((1 - fx) * fy)[:, None]
        w11 = (fx * fy)[:, None]
        return (D[i0, j0] * w00 + D[i0, j0 + 1] * w01
                + D[i0 + 1, j0] * w10 + D[i0 + 1, j0 + 1] * w11)

    def interpolate(self, points) -> np.ndarray:
        """Deformed positions of [N, 2] points."""
        pts = as_points(points)
        if len(pts) == 0:
            return pts.copy()
        return pts + self.displacement_at(pts)

    def rmse(self) -> float:
        """RMS distance between the deformed source points and the image points."""
        diff = self.interpolate(self.regression.source) - self.regression.image
        return float(np.sqrt((diff ** 2).sum(axis=1).mean()))

    def node_deformation_strength(self) -> np.ndarray:
        """Local deformation strength at each node, [rows, cols].

        Magnitude of the finite-difference Jacobian of the deformed node
        positions; 1.0 for an undeformed grid.
        """
        pos = self.nodes + self.displacement
        dx_dj, dy_dj = (np.gradient(pos[..., k], self.cell_size, axis=1) for k in (0, 1))
        dx_di, dy_di = (np.gradient(pos[..., k], self.cell_size, axis=0) for k in (0, 1))
        return np.sqrt((dx_dj ** 2 + dy_dj ** 2 + dx_di ** 2 + dy_di ** 2) / 2)

    def deformation_strength(self) -> float:
        """Mean deformation strength over the grid."""
        return float(np.sqrt((self.node_deformation_strength() ** 2).mean()))

    def cells(self, kind: str = "interpolated") -> List["shapely.Polygon"]:
        """Grid cells as polygons, either on the source or the deformed grid."""
        if kind not in ("source", "interpolated"):
            raise ValueError(f"Unknown grid kind: {kind}")
        pos = self.nodes
        if kind == "interpolated":
            pos = pos + self.displacement
        ring = np.stack([
            pos[:-1, :-1], pos[:-1, 1:], pos[1:, 1:], pos[1:, :-1], pos[:-1, :-1],
        ], axis=2).reshape(-1, 5, 2)
        return list(shapely.polygons(ring))

    def __repr__(self):
        rows, cols = self.shape
        return (f"DeformationGrid(order={self.regression.order}, nodes={rows}x{cols}, "
                f"cell_size={self.cell_size:.6g})")


def _node_coordinates(origin, cell_size, shape) -> np.ndarray:
    rows, cols = shape
    xs = origin[0] + np.arange(cols) * cell_size
    ys = origin[1] + np.arange(rows) * cell_size
    gx, gy = np.meshgrid(xs, ys)
    return np.stack([gx, gy], axis=-1)


def _bilinear_matrix(pts: np.ndarray, origin, cell_size, shape) -> sparse.csr_matrix:
    """Sparse [N, rows*cols] matrix of bilinear lookup weights."""
    rows, cols = shape
    gx = np.clip((pts[:, 0] - origin[0]) / cell_size, 0, cols - 1)
    gy = np.clip((pts[:, 1] - origin[1]) / cell_size, 0, rows - 1)
    j0 = np.minimum(np.floor(gx).astype(np.intp), cols - 2)
    i0 = np.minimum(np.floor(gy).astype(np.intp), rows - 2)
    fx, fy = gx - j0, gy - i0
    n = len(pts)
    row_idx = np.repeat(np.arange(n), 4)
    col_idx = np.stack([
        i0 * cols + j0, i0 * cols + j0 + 1, (i0 + 1) * cols + j0, (i0 + 1) * cols + j0 + 1,
    ], axis=1).ravel()
    weights = np.stack([
        (1 - fx) * (1 - fy), fx * (1 - fy), (1 - fx) * fy, fx * fy,
    ], axis=1).ravel()
    return sparse.csr_matrix((weights, (row_idx, col_idx)), shape=(n, rows * cols))


def _evaluate_nodes(regression, src, res, origin, cell, shape, cfg, damping_length) -> np.ndarray:
    """Trend plus IDW displacement at every node, [rows*cols, 2]."""
    nodes = _node_coordinates(origin, cell, shape).reshape(-1, 2)

    def evaluate(chunk: np.ndarray) -> np.ndarray:
        r = idw_residuals(chunk, src, res, cfg.idw_power, damping_length)
        return regression.predict(chunk) + r - chunk

    step = max(64, _CHUNK_PAIRS // max(len(src), 1))
    chunks = [nodes[k:k + step] for k in range(0, len(nodes), step)]
    if cfg.num_workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=cfg.num_workers) as executor:
            parts = list(executor.map(evaluate, chunks))
    else:
        parts = [evaluate(c) for c in chunks]
    return np.concatenate(parts, axis=0)


def _check_duplicates(src: np.ndarray, res: np.ndarray):
    """Coincident source points must carry the same residual."""
    _, first, inverse = np.unique(src, axis=0, return_index=True, return_inverse=True)
    if len(first) == len(src):
        return
    if not np.allclose(res, res[first[inverse.ravel()]], rtol=0.0, atol=1e-12):
        raise DegenerateConfiguration("coincident source points have different image points")


def build_grid(
    regression: RegressionModel,
    source,
    residuals,
    resolution: Optional[int] = None,
    margin: Optional[float] = None,
    config: Optional[GridConfig] = None,
) -> DeformationGrid:
    """Build a DeformationGrid from a fitted regression and its residuals.

    When bilinear lookup cannot reproduce every sample (too many samples in
    one cell), the cell size is halved until it can. The grid then records
    the refined ``cell_size`` in its config.

    Args:
        regression: fitted RegressionModel
        source: [N, 2] source points the residuals belong to
        residuals: [N, 2] image minus predicted positions
        resolution: nodes along the longer side (overrides config)
        margin: bbox expansion (overrides config)
        config: GridConfig for the remaining settings

    Returns:
        DeformationGrid

    Raises:
        DegenerateConfiguration: coincident source points with different residuals
        NumericalInstability: samples too close to separate within MAX_NODES nodes
    """
    overrides = {k: v for k, v in (("resolution", resolution), ("margin", margin)) if v is not None}
    cfg = replace(config or GridConfig(), order=regression.order, **overrides)

    src = as_points(source, "source")
    res = as_points(residuals, "residuals")
    if len(src) != len(res):
        raise DimensionMismatch("source and residuals must have the same length")
    _check_duplicates(src, res)

    xmin, ymin, xmax, ymax = bounding_box(src)
    diag = math.hypot(xmax - xmin, ymax - ymin)
    damping_length = None if cfg.damping is None or diag == 0 else cfg.damping * diag
    target = regression.predict(src) + res - src

    x0, y0, cell, shape = grid_extent(src, cfg)
    while True:
        displacement = _evaluate_nodes(regression, src, res, (x0, y0), cell, shape, cfg, damping_length)

        # Make bilinear lookup exact at the samples
        B = _bilinear_matrix(src, (x0, y0), cell, shape)
        tol = cfg.exact_tolerance * max(diag, cell)
        misfit = target - B @ displacement
        if np.abs(misfit).max() > tol:
            for k in (0, 1):
                correction = lsqr(B, misfit[:, k], atol=1e-14, btol=1e-14, conlim=1e16,
                                  iter_lim=max(10 * len(src), 1000))[0]
                displacement[:, k] += correction
        remaining = np.abs(target - B @ displacement).max()
        if remaining <= tol:
            break

        rows, cols = shape
        if (2 * rows - 1) * (2 * cols - 1) > MAX_NODES:
            raise NumericalInstability(
                f"grid cannot reproduce all image points within {MAX_NODES} nodes "
                f"(max error {remaining:.3g} at cell size {cell:.3g}); source points are too close"
            )
        logger.info("Grid misses image points by %.3g at cell size %.6g; refining", remaining, cell)
        cfg = replace(cfg, cell_size=cell / 2, resolution=None)
        x0, y0, cell, shape = grid_extent(src, cfg)

    logger.debug("Built %dx%d grid (cell size %.6g) from %d points", shape[0], shape[1], cell, len(src))
    return DeformationGrid(regression, (x0, y0), cell, displacement.reshape(shape[0], shape[1], 2), cfg)

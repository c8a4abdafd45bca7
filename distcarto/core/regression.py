"""Bidimensional regression: polynomial fit from source to image points."""

import logging
from typing import Dict, Any

import numpy as np

from .adjustment import scale_and_angle
from .errors import (
    DegenerateConfiguration,
    DimensionMismatch,
    InsufficientPoints,
    NumericalInstability,
)
from .points import as_points

logger = logging.getLogger(__name__)

MIN_POINTS = {1: 3, 2: 6}


def _design_matrix(xy: np.ndarray, order: int) -> np.ndarray:
    """Polynomial terms [1, x, y] (+ [x^2, xy, y^2] for order 2)."""
    x, y = xy[:, 0], xy[:, 1]
    cols = [np.ones_like(x), x, y]
    if order == 2:
        cols += [x * x, x * y, y * y]
    return np.column_stack(cols)


class RegressionModel:
    """Fitted polynomial map (x, y) -> (x', y').

    Coefficients live in a normalized source frame (centered on the source
    mean, scaled by the RMS radius); ``predict`` handles the normalization.
    """

    def __init__(
        self,
        order: int,
        coefficients: np.ndarray,
        center: np.ndarray,
        scale: float,
        source: np.ndarray,
        image: np.ndarray,
    ):
        self.order = order
        self.coefficients = np.array(coefficients, dtype=np.float64)  # [2, n_terms]
        self.center = np.array(center, dtype=np.float64)
        self.scale = float(scale)
        self.source = np.array(source, dtype=np.float64)
        self.image = np.array(image, dtype=np.float64)
        self.residuals = self.image - self.predict(self.source)
        for arr in (self.coefficients, self.center, self.source, self.image, self.residuals):
            arr.flags.writeable = False

    def predict(self, points) -> np.ndarray:
        """Model-predicted positions for [N, 2] points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        A = _design_matrix((pts - self.center) / self.scale, self.order)
        return A @ self.coefficients.T

    @property
    def rmse(self) -> float:
        """Root mean squared residual distance."""
        return float(np.sqrt((self.residuals ** 2).sum(axis=1).mean()))

    @property
    def r_squared(self) -> float:
        """Bidimensional coefficient of determination (Tobler)."""
        total = ((self.image - self.image.mean(axis=0)) ** 2).sum()
        if total == 0.0:
            return 1.0
        return float(1.0 - (self.residuals ** 2).sum() / total)

    def affine_matrix(self) -> np.ndarray:
        """[2, 3] affine matrix in source units (order 1 only)."""
        if self.order != 1:
            raise ValueError("affine_matrix is only defined for order 1")
        linear = self.coefficients[:, 1:3] / self.scale
        translation = self.coefficients[:, 0] - linear @ self.center
        return np.column_stack([linear, translation])

    def affine_parameters(self) -> Dict[str, float]:
        """Scale (mean and per axis), rotation angle (degrees) and translation of an order-1 fit."""
        m = self.affine_matrix()
        scale, angle = scale_and_angle(m[:, :2])
        return {
            "scale": scale,
            "scale_x": float(np.hypot(m[0, 0], m[0, 1])),
            "scale_y": float(np.hypot(m[1, 0], m[1, 1])),
            "angle": angle,
            "tx": float(m[0, 2]),
            "ty": float(m[1, 2]),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "coefficients": np.array(self.coefficients),
            "center": np.array(self.center),
            "scale": self.scale,
            "source": np.array(self.source),
            "image": np.array(self.image),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RegressionModel":
        return cls(
            order=int(d["order"]),
            coefficients=d["coefficients"],
            center=d["center"],
            scale=float(d["scale"]),
            source=d["source"],
            image=d["image"],
        )


def fit_regression(
    source,
    image,
    order: int = 1,
    condition_threshold: float = 1e12,
) -> RegressionModel:
    """Least-squares polynomial fit of image points on source points.

    Args:
        source: [N, 2] source points
        image: [N, 2] homologous image points
        order: 1 (affine, 6 coefficients) or 2 (quadratic, 12 coefficients)
        condition_threshold: maximum design-matrix condition number

    Returns:
        RegressionModel with coefficients and per-point residuals
    """
    if order not in MIN_POINTS:
        raise ValueError(f"Unsupported regression order: {order}")
    src = as_points(source, "source")
    img = as_points(image, "image")
    if len(src) != len(img):
        raise DimensionMismatch(
            f"source and image must have the same length ({len(src)} != {len(img)})"
        )
    if len(src) < MIN_POINTS[order]:
        raise InsufficientPoints(
            f"order {order} regression needs at least {MIN_POINTS[order]} points, got {len(src)}"
        )

    center = src.mean(axis=0)
    scale = float(np.sqrt(((src - center) ** 2).sum(axis=1).mean()))
    if scale == 0.0:
        raise DegenerateConfiguration("all source points coincide")

    A = _design_matrix((src - center) / scale, order)
    n_terms = A.shape[1]
    if np.linalg.matrix_rank(A) < n_terms:
        raise DegenerateConfiguration(
            f"source points are degenerate for an order {order} regression"
        )
    cond = np.linalg.cond(A)
    if not np.isfinite(cond) or cond > condition_threshold:
        raise NumericalInstability(f"regression is ill-conditioned (condition number {cond:.3g})")

    coeffs, _, _, _ = np.linalg.lstsq(A, img, rcond=None)
    model = RegressionModel(order, coeffs.T, center, scale, src, img)
    logger.debug("Fitted order %d regression on %d points (rmse=%.6g)", order, len(src), model.rmse)
    return model

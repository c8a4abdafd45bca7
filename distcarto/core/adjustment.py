"""Affine and Euclidean adjustment of image points onto source points."""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import DegenerateConfiguration, DimensionMismatch, InsufficientPoints
from .points import as_points


def scale_and_angle(matrix: np.ndarray) -> Tuple[float, float]:
    """Mean axis scale and rotation angle (degrees) of a 2x2 linear part."""
    a11, a12 = matrix[0, 0], matrix[0, 1]
    a21, a22 = matrix[1, 0], matrix[1, 1]
    sx = float(np.hypot(a11, a12))
    sy = float(np.hypot(a22, a21))
    if sx == 0.0 or sy == 0.0:
        return 0.5 * (sx + sy), 0.0
    angle = np.arctan2(a21 / sy - a12 / sx, a22 / sy + a11 / sx)
    return 0.5 * (sx + sy), float(np.degrees(angle))


@dataclass
class Adjustment:
    """Transform taking image points into the source frame."""
    matrix: np.ndarray  # [2, 3]
    scale: float
    angle: float  # degrees
    points: np.ndarray  # adjusted image points, [N, 2]

    def apply(self, points) -> np.ndarray:
        pts = as_points(points)
        return pts @ self.matrix[:, :2].T + self.matrix[:, 2]


def adjust(source, image, kind: str = "affine") -> Adjustment:
    """Fit image points onto source points with an affine or Euclidean transform.

    Args:
        source: [N, 2] reference positions
        image: [N, 2] positions to adjust
        kind: "affine" (6 parameters) or "euclidean" (rotation + uniform scale + translation)

    Returns:
        Adjustment with the fitted matrix and the adjusted image points
    """
    src = as_points(source, "source")
    img = as_points(image, "image")
    if len(src) != len(img):
        raise DimensionMismatch("source and image must have the same number of points")
    if kind not in ("affine", "euclidean"):
        raise ValueError(f"Unknown adjustment kind: {kind}")
    min_points = 3 if kind == "affine" else 2
    if len(src) < min_points:
        raise InsufficientPoints(f"{kind} adjustment needs at least {min_points} points, got {len(src)}")

    src_mean = src.mean(axis=0)
    img_mean = img.mean(axis=0)
    x, y = (src - src_mean).T
    u, v = (img - img_mean).T

    if kind == "euclidean":
        denom = (u * u + v * v).sum()
        if denom == 0.0:
            raise DegenerateConfiguration("image points are all coincident")
        a = (x * u + y * v).sum() / denom
        b = (x * v - y * u).sum() / denom
        linear = np.array([[a, b], [-b, a]])
    else:
        u2, v2, uv = (u * u).sum(), (v * v).sum(), (u * v).sum()
        denom = uv ** 2 - u2 * v2
        if abs(denom) <= 1e-12 * max(u2 * v2, 1e-300):
            raise DegenerateConfiguration("image points are collinear")
        xu, xv = (x * u).sum(), (x * v).sum()
        yu, yv = (y * u).sum(), (y * v).sum()
        linear = np.array([
            [(uv * xv - v2 * xu) / denom, (uv * xu - u2 * xv) / denom],
            [(uv * yv - v2 * yu) / denom, (uv * yu - u2 * yv) / denom],
        ])

    translation = src_mean - linear @ img_mean
    matrix = np.column_stack([linear, translation])
    scale, angle = scale_and_angle(linear)
    adjusted = img @ linear.T + translation
    return Adjustment(matrix=matrix, scale=scale, angle=angle, points=adjusted)

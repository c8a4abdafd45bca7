"""Point-set conversion and bounding-box helpers."""

from typing import Any, Tuple

import numpy as np

from .errors import DimensionMismatch, OutOfDomain

BBox = Tuple[float, float, float, float]


def as_points(points: Any, name: str = "points") -> np.ndarray:
    """Convert a point set to a float64 [N, 2] array.

    Accepts arrays, sequences of (x, y) pairs and sequences of shapely Points.
    """
    if len(points) and hasattr(points[0], "x") and hasattr(points[0], "y"):
        points = [(p.x, p.y) for p in points]
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        arr = arr.reshape(0, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise DimensionMismatch(f"{name} must have shape [N, 2], got {arr.shape}")
    if not np.isfinite(arr).all():
        raise OutOfDomain(f"{name} contains non-finite coordinates")
    return arr


def bounding_box(points: np.ndarray) -> BBox:
    """(xmin, ymin, xmax, ymax) of an [N, 2] array."""
    xmin, ymin = points.min(axis=0)
    xmax, ymax = points.max(axis=0)
    return float(xmin), float(ymin), float(xmax), float(ymax)


def union_bbox(a: BBox, b: BBox) -> BBox:
    return min(a[0], b[0]), min(a[1], b[1]), max(a[2], b[2]), max(a[3], b[3])


def distances(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Pairwise Euclidean distances between [N, 2] and [M, 2] arrays -> [N, M]."""
    diff = a[:, None, :] - b[None, :, :]
    return np.sqrt((diff ** 2).sum(axis=-1))

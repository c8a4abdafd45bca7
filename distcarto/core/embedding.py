"""Classical scaling (principal coordinates analysis) of duration matrices."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import eigh

from .config import EmbeddingConfig
from .errors import (
    DimensionMismatch,
    InsufficientPoints,
    NonPositiveDuration,
    NumericalInstability,
)
from .points import as_points, distances

logger = logging.getLogger(__name__)

# Negative eigenvalues this small (relative) are rounding noise, not clipping
_ROUNDOFF = 1e-12


@dataclass
class EmbeddingResult:
    """Relative 2D positions from a duration matrix.

    ``points`` are centered on the origin; rotation and reflection are
    arbitrary. ``clipped`` is set when the double-centered matrix has
    negative eigenvalues beyond rounding noise (the durations are not
    exactly embeddable in the plane); they are listed in
    ``clipped_eigenvalues``.
    """
    points: np.ndarray  # [N, 2]
    eigenvalues: np.ndarray  # two leading eigenvalues, before clipping
    clipped: bool = False
    clipped_eigenvalues: Tuple[float, ...] = ()


def validate_durations(durations, config: Optional[EmbeddingConfig] = None) -> np.ndarray:
    """Check (and optionally symmetrize) a duration matrix, returning a float64 copy."""
    cfg = config or EmbeddingConfig()
    try:
        D = np.array(durations, dtype=np.float64)
    except ValueError as e:
        raise DimensionMismatch(f"duration matrix must be a rectangular numeric array: {e}") from e
    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise DimensionMismatch(f"duration matrix must be square, got shape {D.shape}")
    if not np.isfinite(D).all():
        raise NonPositiveDuration("duration matrix contains non-finite values")
    if (D < 0).any():
        raise NonPositiveDuration("duration matrix contains negative values")

    scale = D.max() if D.size else 0.0
    tol = cfg.symmetry_tolerance * max(scale, 1.0)
    if np.abs(np.diag(D)).max(initial=0.0) > tol:
        raise NonPositiveDuration("duration matrix diagonal must be zero")

    if cfg.symmetrize == "mean":
        D = 0.5 * (D + D.T)
    elif cfg.symmetrize == "min":
        D = np.minimum(D, D.T)
    elif cfg.symmetrize == "max":
        D = np.maximum(D, D.T)
    elif np.abs(D - D.T).max(initial=0.0) > tol:
        raise DimensionMismatch("duration matrix is not symmetric")
    np.fill_diagonal(D, 0.0)
    return D


def embed_durations(durations, config: Optional[EmbeddingConfig] = None) -> EmbeddingResult:
    """Embed a duration matrix into the plane by classical scaling.

    Args:
        durations: [N, N] symmetric, non-negative, zero-diagonal matrix
        config: EmbeddingConfig (negative eigenvalue policy, tolerances)

    Returns:
        EmbeddingResult with N relative positions centered on the origin
    """
    cfg = config or EmbeddingConfig()
    D = validate_durations(durations, cfg)
    n = D.shape[0]
    if n < 2:
        raise InsufficientPoints(f"embedding needs at least 2 locations, got {n}")

    # Double centering of the squared durations
    J = np.eye(n) - np.full((n, n), 1.0 / n)
    B = -0.5 * J @ (D ** 2) @ J
    B = 0.5 * (B + B.T)

    values, vectors = eigh(B)
    order = np.argsort(values)[::-1]
    values, vectors = values[order], vectors[:, order]
    if n == 2:
        values = np.append(values, 0.0)
        vectors = np.column_stack([vectors, np.zeros(n)])
    leading = values[:2].copy()

    # Negative eigenvalues measure how far the matrix is from a Euclidean one
    reference = max(np.abs(values).max(), np.finfo(float).tiny)
    negative = values[values < -_ROUNDOFF * reference]
    clipped = [float(lam) for lam in negative]
    if clipped:
        worst = -negative.min() / reference
        if cfg.negative_eigenvalues == "raise" or (
            cfg.negative_eigenvalues == "clip" and worst > cfg.eigenvalue_tolerance
        ):
            raise NumericalInstability(
                f"eigenvalue {negative.min():.6g} is negative (relative magnitude {worst:.3g}); "
                "durations are not embeddable in the plane"
            )
        logger.warning("Clipped negative eigenvalue(s) %s to zero", clipped)

    points = vectors[:, :2] * np.sqrt(np.clip(leading, 0.0, None))
    points = points - points.mean(axis=0)
    logger.debug("Embedded %d locations (eigenvalues %s)", n, leading)
    return EmbeddingResult(
        points=points,
        eigenvalues=leading,
        clipped=bool(clipped),
        clipped_eigenvalues=tuple(clipped),
    )


def duration_matrix(points) -> np.ndarray:
    """Euclidean distance matrix of a point set (durations at unit speed)."""
    pts = as_points(points)
    return distances(pts, pts)

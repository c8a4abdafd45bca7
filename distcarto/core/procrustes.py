"""Orthogonal Procrustes alignment of relative positions onto reference points."""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import EmbeddingConfig
from .embedding import EmbeddingResult, embed_durations, validate_durations
from .errors import DegenerateConfiguration, DimensionMismatch, InsufficientPoints
from .points import as_points

logger = logging.getLogger(__name__)


@dataclass
class ProcrustesResult:
    """Similarity transform taking ``relative`` onto ``target``, and its result.

    ``aligned = scale * (relative - relative_centroid) @ rotation + centroid``
    """
    points: np.ndarray  # aligned points, [N, 2]
    rotation: np.ndarray  # [2, 2] orthogonal, row-vector convention
    angle: float  # degrees
    reflection: bool
    scale: float
    translation: np.ndarray  # centroid(target) - centroid(relative)
    centroid: np.ndarray  # centroid of target
    error: float  # sqrt of summed squared distances to target

    def apply(self, points) -> np.ndarray:
        """Apply the fitted transform to other points in the relative frame."""
        pts = as_points(points)
        relative_centroid = self.centroid - self.translation
        return self.scale * (pts - relative_centroid) @ self.rotation + self.centroid


def align_points(relative, target, allow_reflection: bool = True) -> ProcrustesResult:
    """Rotate, reflect, scale and translate ``relative`` to best fit ``target``.

    Args:
        relative: [N, 2] points in an arbitrary frame (e.g. an embedding)
        target: [N, 2] homologous reference points
        allow_reflection: permit an improper rotation when it fits better

    Returns:
        ProcrustesResult
    """
    X = as_points(relative, "relative")
    Y = as_points(target, "target")
    if len(X) != len(Y):
        raise DimensionMismatch(f"point sets differ in size ({len(X)} != {len(Y)})")
    if len(X) < 2:
        raise InsufficientPoints("alignment needs at least 2 points")

    mu_x, mu_y = X.mean(axis=0), Y.mean(axis=0)
    Xc, Yc = X - mu_x, Y - mu_y
    norm_x = (Xc ** 2).sum()
    if norm_x == 0.0:
        raise DegenerateConfiguration("relative points all coincide")

    U, S, Vt = np.linalg.svd(Xc.T @ Yc)
    R = U @ Vt
    if not allow_reflection and np.linalg.det(R) < 0:
        U[:, -1] *= -1
        S = S.copy()
        S[-1] *= -1
        R = U @ Vt

    scale = S.sum() / norm_x
    aligned = scale * Xc @ R + mu_y
    error = float(np.sqrt(((aligned - Y) ** 2).sum()))
    reflection = bool(np.linalg.det(R) < 0)
    angle = float(np.degrees(np.arctan2(R[0, 1], R[0, 0])))
    logger.debug("Procrustes fit: scale=%.6g angle=%.3f reflection=%s error=%.6g",
                 scale, angle, reflection, error)
    return ProcrustesResult(
        points=aligned,
        rotation=R,
        angle=angle,
        reflection=reflection,
        scale=float(scale),
        translation=mu_y - mu_x,
        centroid=mu_y,
        error=error,
    )


@dataclass
class PositioningResult:
    """Image points derived from a duration matrix and reference points."""
    points: np.ndarray
    embedding: EmbeddingResult
    alignment: ProcrustesResult

    @property
    def clipped(self) -> bool:
        return self.embedding.clipped


def positions_from_durations(
    durations,
    reference_points,
    config: Optional[EmbeddingConfig] = None,
) -> PositioningResult:
    """Embed a duration matrix and align the result onto the reference points."""
    ref = as_points(reference_points, "reference_points")
    D = validate_durations(durations, config)
    if len(D) != len(ref):
        raise DimensionMismatch(
            f"duration matrix size ({len(D)}) differs from the number of points ({len(ref)})"
        )
    embedding = embed_durations(D, config)
    alignment = align_points(embedding.points, ref)
    return PositioningResult(points=alignment.points, embedding=embedding, alignment=alignment)

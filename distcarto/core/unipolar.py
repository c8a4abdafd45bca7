"""Unipolar displacement: image points from one reference point and durations."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, List, Tuple

import numpy as np
from shapely.geometry import LineString, Point

from .config import UnipolarConfig
from .errors import (
    DegenerateConfiguration,
    DimensionMismatch,
    InsufficientPoints,
    NonPositiveDuration,
)
from .points import as_points

logger = logging.getLogger(__name__)


@dataclass
class UnipolarResult:
    """Displaced points and the speed used to move them."""
    points: np.ndarray  # [N, 2]
    reference_speed: float
    reference_point: np.ndarray
    reference_index: int


def _find_reference(durations: np.ndarray) -> int:
    zeros = np.flatnonzero(durations == 0)
    if len(zeros) == 0:
        raise NonPositiveDuration("no zero duration: cannot locate the reference point")
    if len(zeros) > 1:
        raise NonPositiveDuration(f"several zero durations at indices {zeros.tolist()}")
    return int(zeros[0])


def displace_unipolar(
    source,
    reference_index: Optional[int],
    durations: Sequence[float],
    config: Optional[UnipolarConfig] = None,
) -> UnipolarResult:
    """Move points along rays from a reference point according to their durations.

    Each point keeps its direction from the reference; its distance becomes
    ``d * (1 + (v_ref * t / d - 1) * factor)``, i.e. ``v_ref * t`` for
    ``factor = 1``. Points reached faster than the baseline speed move
    closer, slower ones move further away.

    Args:
        source: [N, 2] source points
        reference_index: index of the reference point; None to use the
            point whose duration is 0
        durations: N durations from the reference (the reference's own
            entry is ignored)
        config: UnipolarConfig (baseline speed, central tendency, factor)

    Returns:
        UnipolarResult
    """
    cfg = config or UnipolarConfig()
    src = as_points(source, "source")
    times = np.asarray(durations, dtype=np.float64).ravel()
    if len(times) != len(src):
        raise DimensionMismatch(
            f"got {len(times)} durations for {len(src)} points"
        )
    if len(src) < 2:
        raise InsufficientPoints("unipolar displacement needs the reference and at least one point")
    if not np.isfinite(times).all() or (times < 0).any():
        raise NonPositiveDuration("durations must be finite and non-negative")

    ref_idx = _find_reference(times) if reference_index is None else int(reference_index)
    if not -len(src) <= ref_idx < len(src):
        raise DimensionMismatch(f"reference index {ref_idx} out of range")
    ref_idx %= len(src)

    others = np.arange(len(src)) != ref_idx
    ref_point = src[ref_idx]
    vectors = src[others] - ref_point
    dist = np.hypot(vectors[:, 0], vectors[:, 1])
    t = times[others]
    if (dist == 0).any():
        bad = np.flatnonzero(others)[dist == 0].tolist()
        raise DegenerateConfiguration(f"points {bad} coincide with the reference point")
    if (t == 0).any():
        bad = np.flatnonzero(others)[t == 0].tolist()
        raise NonPositiveDuration(f"points {bad} have a zero duration but are not the reference")

    speeds = dist / t
    if cfg.speed is not None:
        ref_speed = float(cfg.speed)
    elif cfg.calibration_index is not None:
        cal = int(cfg.calibration_index)
        if not -len(src) <= cal < len(src):
            raise DimensionMismatch(f"calibration index {cal} out of range")
        cal %= len(src)
        if cal == ref_idx:
            raise DegenerateConfiguration("calibration point cannot be the reference point")
        ref_speed = float(np.linalg.norm(src[cal] - ref_point) / times[cal])
    elif cfg.method == "mean":
        ref_speed = float(speeds.mean())
    else:
        ref_speed = float(np.median(speeds))

    displacement = ref_speed / speeds
    new_dist = dist * (1.0 + (displacement - 1.0) * cfg.factor)

    points = src.copy()
    points[others] = ref_point + vectors * (new_dist / dist)[:, None]
    logger.debug("Unipolar displacement of %d points around index %d (speed %.6g)",
                 len(src) - 1, ref_idx, ref_speed)
    return UnipolarResult(
        points=points,
        reference_speed=ref_speed,
        reference_point=ref_point.copy(),
        reference_index=ref_idx,
    )


def concentric_circles(
    result: UnipolarResult,
    steps: Sequence[float],
    quad_segs: int = 16,
) -> List[Tuple[LineString, float]]:
    """Isochrone circles around the reference point, one per duration step.

    The radius for a step ``t`` is ``reference_speed * t``.
    """
    center = Point(*result.reference_point)
    circles = []
    for step in steps:
        if step <= 0:
            raise NonPositiveDuration(f"circle step must be positive, got {step}")
        ring = center.buffer(result.reference_speed * step, quad_segs=quad_segs).exterior
        circles.append((LineString(ring.coords), float(step)))
    return circles

"""Functional entry points: build a grid once, then deform, embed, align, displace."""

from dataclasses import replace
from typing import Optional

from .config import GridConfig
from .grid import DeformationGrid, build_grid
from .regression import fit_regression
from .transform import deform_geometry, deform_geometries
from .embedding import embed_durations
from .procrustes import align_points, positions_from_durations
from .unipolar import displace_unipolar


def fit_and_build_grid(
    source,
    image,
    order: Optional[int] = None,
    resolution: Optional[int] = None,
    margin: Optional[float] = None,
    config: Optional[GridConfig] = None,
) -> DeformationGrid:
    """Fit a bidimensional regression and build the deformation grid.

    Args:
        source: [N, 2] source points
        image: [N, 2] homologous image points
        order: regression order, 1 or 2 (overrides config)
        resolution: nodes along the longer side (overrides config)
        margin: bbox expansion (overrides config)
        config: GridConfig for the remaining settings

    Returns:
        DeformationGrid, immutable and safe to share between threads
    """
    cfg = config or GridConfig()
    if order is not None:
        cfg = replace(cfg, order=order)
    regression = fit_regression(source, image, cfg.order, cfg.condition_threshold)
    return build_grid(
        regression, regression.source, regression.residuals,
        resolution=resolution, margin=margin, config=cfg,
    )


__all__ = [
    "fit_and_build_grid",
    "deform_geometry",
    "deform_geometries",
    "embed_durations",
    "align_points",
    "positions_from_durations",
    "displace_unipolar",
]

"""distcarto core: regression, deformation grids, duration embedding and displacement."""

from .config import (
    GridConfig,
    EmbeddingConfig,
    UnipolarConfig,
    CartogramConfig,
    load_config,
)
from .errors import (
    CartogramError,
    InsufficientPoints,
    DimensionMismatch,
    DegenerateConfiguration,
    NonPositiveDuration,
    NumericalInstability,
    OutOfDomain,
)
from .regression import RegressionModel, fit_regression
from .adjustment import Adjustment, adjust
from .grid import DeformationGrid, build_grid
from .transform import deform_geometry, deform_geometries
from .embedding import EmbeddingResult, embed_durations, duration_matrix
from .procrustes import (
    ProcrustesResult,
    PositioningResult,
    align_points,
    positions_from_durations,
)
from .unipolar import UnipolarResult, displace_unipolar, concentric_circles
from .api import fit_and_build_grid

__all__ = [
    "GridConfig",
    "EmbeddingConfig",
    "UnipolarConfig",
    "CartogramConfig",
    "load_config",
    "CartogramError",
    "InsufficientPoints",
    "DimensionMismatch",
    "DegenerateConfiguration",
    "NonPositiveDuration",
    "NumericalInstability",
    "OutOfDomain",
    "RegressionModel",
    "fit_regression",
    "Adjustment",
    "adjust",
    "DeformationGrid",
    "build_grid",
    "deform_geometry",
    "deform_geometries",
    "EmbeddingResult",
    "embed_durations",
    "duration_matrix",
    "ProcrustesResult",
    "PositioningResult",
    "align_points",
    "positions_from_durations",
    "UnipolarResult",
    "displace_unipolar",
    "concentric_circles",
    "fit_and_build_grid",
]

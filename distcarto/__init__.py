"""distcarto: distance cartograms from homologous points or travel durations.

Main components:
- core: Regression, deformation grid, duration embedding, unipolar displacement
- generators: YAML-driven deformation of GeoJSON layers
- codecs: Deformation grid encoding/decoding
"""

from .core import (
    GridConfig,
    EmbeddingConfig,
    UnipolarConfig,
    CartogramConfig,
    load_config,
    CartogramError,
    InsufficientPoints,
    DimensionMismatch,
    DegenerateConfiguration,
    NonPositiveDuration,
    NumericalInstability,
    OutOfDomain,
    RegressionModel,
    fit_regression,
    adjust,
    DeformationGrid,
    fit_and_build_grid,
    deform_geometry,
    deform_geometries,
    embed_durations,
    align_points,
    positions_from_durations,
    displace_unipolar,
    concentric_circles,
)
from .generators import LayerGenerator
from .codecs import GridCodec

__version__ = "0.1.0"
__all__ = [
    # Core
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
    "adjust",
    "DeformationGrid",
    "fit_and_build_grid",
    "deform_geometry",
    "deform_geometries",
    "embed_durations",
    "align_points",
    "positions_from_durations",
    "displace_unipolar",
    "concentric_circles",
    # Generators
    "LayerGenerator",
    # Codecs
    "GridCodec",
]

"""Cartogram configuration."""

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Tuple, Optional, Dict, Any, Union

import yaml


def _known(cls, d: Dict[str, Any]) -> Dict[str, Any]:
    valid_keys = {f.name for f in fields(cls)}
    return {k: v for k, v in d.items() if k in valid_keys}


@dataclass
class GridConfig:
    """Configuration for bidimensional regression and grid construction.

    Node spacing is taken from ``cell_size`` if set, else from ``resolution``
    (nodes along the longer side), else from ``precision``:
    ``cell = sqrt(width * height / n_points) / precision``.
    """
    order: int = 1  # 1 = affine, 2 = quadratic
    resolution: Optional[int] = None
    precision: float = 2.0
    cell_size: Optional[float] = None
    margin: float = 0.1  # < 1: fraction of the larger side, >= 1: absolute
    idw_power: float = 2.0
    damping: Optional[float] = 1.0  # multiple of the bbox diagonal, None = pure IDW
    condition_threshold: float = 1e12
    exact_tolerance: float = 1e-9
    num_workers: int = 1
    bbox: Optional[Tuple[float, float, float, float]] = None

    def __post_init__(self):
        if self.order not in (1, 2):
            raise ValueError(f"Unsupported regression order: {self.order}")
        if self.resolution is not None and self.resolution < 2:
            raise ValueError("resolution must be at least 2 nodes per axis")
        if self.cell_size is not None and self.cell_size <= 0:
            raise ValueError("cell_size must be positive")
        if self.precision <= 0:
            raise ValueError("precision must be positive")
        if self.margin < 0:
            raise ValueError("margin must be non-negative")
        if self.bbox is not None:
            self.bbox = tuple(float(v) for v in self.bbox)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GridConfig":
        return cls(**_known(cls, d))


@dataclass
class EmbeddingConfig:
    """Policy for classical scaling of a duration matrix.

    ``negative_eigenvalues``:
        "clip"   - clip negatives up to ``eigenvalue_tolerance`` (relative to the
                   largest eigenvalue) and flag the result; beyond it, raise
        "raise"  - any negative eigenvalue raises
        "ignore" - clip whatever the magnitude, still flagged
    """
    eigenvalue_tolerance: float = 0.1
    negative_eigenvalues: str = "clip"
    symmetry_tolerance: float = 1e-9
    symmetrize: Optional[str] = None  # None | "mean" | "min" | "max"

    def __post_init__(self):
        if self.negative_eigenvalues not in ("clip", "raise", "ignore"):
            raise ValueError(f"Unknown negative eigenvalue policy: {self.negative_eigenvalues}")
        if self.symmetrize not in (None, "mean", "min", "max"):
            raise ValueError(f"Unknown symmetrization: {self.symmetrize}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EmbeddingConfig":
        return cls(**_known(cls, d))


@dataclass
class UnipolarConfig:
    """Baseline speed and exaggeration for unipolar displacement.

    The baseline speed is ``speed`` if given, else distance / duration of the
    point at ``calibration_index``, else the ``method`` central tendency of all
    per-point speeds.
    """
    method: str = "median"  # "mean" | "median"
    factor: float = 1.0
    speed: Optional[float] = None
    calibration_index: Optional[int] = None

    def __post_init__(self):
        if self.method not in ("mean", "median"):
            raise ValueError(f"Unknown central tendency: {self.method}")
        if self.speed is not None and not self.speed > 0:
            raise ValueError("speed must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "UnipolarConfig":
        return cls(**_known(cls, d))


@dataclass
class CartogramConfig:
    """All cartogram settings, as read from one YAML file."""
    grid: GridConfig = field(default_factory=GridConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    unipolar: UnipolarConfig = field(default_factory=UnipolarConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CartogramConfig":
        return cls(
            grid=GridConfig.from_dict(d.get("grid") or {}),
            embedding=EmbeddingConfig.from_dict(d.get("embedding") or {}),
            unipolar=UnipolarConfig.from_dict(d.get("unipolar") or {}),
        )


def load_config(path: Union[str, Path]) -> CartogramConfig:
    """Read a YAML file with optional ``grid``, ``embedding`` and ``unipolar`` sections."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return CartogramConfig.from_dict(raw)

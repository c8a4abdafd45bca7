"""Deformation grid encoding/decoding for storage."""

import numpy as np
from pathlib import Path
from typing import Dict, Any, Union
import json

from ..core.config import GridConfig
from ..core.grid import DeformationGrid
from ..core.regression import RegressionModel


class GridCodec:
    """Encode/decode deformation grids to/from .npz files.

    Format: single .npz archive with:
        - version: format version
        - origin: [2] lower-left node position
        - cell_size: node spacing
        - displacement: [rows, cols, 2] node displacement vectors
        - order, coefficients, center, scale: regression model
        - source, image: homologous points the grid was built from
        - config: GridConfig as a JSON string
    """

    VERSION = 1

    @classmethod
    def encode(cls, grid: DeformationGrid) -> Dict[str, Any]:
        """Encode a grid to a dict of arrays for saving.

        Args:
            grid: DeformationGrid

        Returns:
            dict ready for np.savez
        """
        reg = grid.regression.to_dict()
        return {
            "version": np.array(cls.VERSION),
            "origin": np.array(grid.origin, dtype=np.float64),
            "cell_size": np.array(grid.cell_size),
            "displacement": np.array(grid.displacement, dtype=np.float64),
            "order": np.array(reg["order"]),
            "coefficients": reg["coefficients"],
            "center": reg["center"],
            "scale": np.array(reg["scale"]),
            "source": reg["source"],
            "image": reg["image"],
            "config": np.array(json.dumps(cls._serialize_config(grid.config))),
        }

    @classmethod
    def decode(cls, data: Dict[str, Any]) -> DeformationGrid:
        """Decode a grid from a loaded archive or an encoded dict.

        Args:
            data: mapping of arrays as produced by encode

        Returns:
            DeformationGrid
        """
        version = int(data["version"]) if "version" in data else 0
        if version > cls.VERSION:
            raise ValueError(f"Unsupported grid format version: {version}")

        regression = RegressionModel.from_dict({
            "order": int(data["order"]),
            "coefficients": data["coefficients"],
            "center": data["center"],
            "scale": float(data["scale"]),
            "source": data["source"],
            "image": data["image"],
        })
        config = GridConfig.from_dict(json.loads(str(data["config"])))
        return DeformationGrid(
            regression,
            origin=tuple(np.asarray(data["origin"], dtype=np.float64)),
            cell_size=float(data["cell_size"]),
            displacement=data["displacement"],
            config=config,
        )

    @classmethod
    def save(cls, path: Union[str, Path], grid: DeformationGrid) -> None:
        """Save a grid to a compressed .npz file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            np.savez_compressed(f, **cls.encode(grid))

    @classmethod
    def load(cls, path: Union[str, Path]) -> DeformationGrid:
        """Load a grid from a .npz file."""
        with np.load(path, allow_pickle=False) as data:
            return cls.decode({k: data[k] for k in data.files})

    @staticmethod
    def _serialize_config(config: GridConfig) -> Dict[str, Any]:
        """Serialize config to JSON-safe types."""
        serialized = {}
        for k, v in config.to_dict().items():
            if isinstance(v, tuple):
                serialized[k] = list(v)
            elif hasattr(v, "item"):
                serialized[k] = v.item()
            else:
                serialized[k] = v
        return serialized

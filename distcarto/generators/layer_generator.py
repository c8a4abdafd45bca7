"""Layer Generator: deform GeoJSON layers through one grid from a YAML job."""

import json
import logging
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple, Union

import numpy as np
import yaml
from shapely.geometry import Point, mapping, shape
from tqdm import tqdm

from ..core import (
    CartogramConfig,
    DeformationGrid,
    deform_geometries,
    displace_unipolar,
    fit_and_build_grid,
    positions_from_durations,
)
from ..codecs import GridCodec

logger = logging.getLogger(__name__)


@dataclass
class LayerSpec:
    """A single layer to deform."""
    name: str
    input: Path
    output: Path


def read_features(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Features of a GeoJSON FeatureCollection (or a single Feature)."""
    with open(path) as f:
        data = json.load(f)
    if data.get("type") == "Feature":
        return [data]
    if data.get("type") != "FeatureCollection":
        raise ValueError(f"{path}: expected a GeoJSON FeatureCollection, got {data.get('type')}")
    return data.get("features", [])


def write_features(path: Union[str, Path], features: List[Dict[str, Any]]) -> None:
    """Write features as a GeoJSON FeatureCollection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump({"type": "FeatureCollection", "features": features}, f)


def read_points(path: Union[str, Path]) -> Tuple[np.ndarray, List[Dict[str, Any]]]:
    """Point coordinates [N, 2] and feature properties of a point layer."""
    features = read_features(path)
    coords = []
    for k, feat in enumerate(features):
        geom = shape(feat["geometry"]) if feat.get("geometry") else None
        if geom is None or geom.geom_type != "Point":
            raise ValueError(f"{path}: feature {k} is not a Point")
        coords.append((geom.x, geom.y))
    props = [feat.get("properties") or {} for feat in features]
    return np.array(coords, dtype=np.float64).reshape(-1, 2), props


def write_points(
    path: Union[str, Path],
    points: np.ndarray,
    properties: Optional[List[Dict[str, Any]]] = None,
) -> None:
    """Write [N, 2] points as a GeoJSON point layer."""
    properties = properties or [{} for _ in range(len(points))]
    features = [
        {"type": "Feature", "geometry": mapping(Point(x, y)), "properties": props}
        for (x, y), props in zip(points.tolist(), properties)
    ]
    write_features(path, features)


def read_matrix(path: Union[str, Path]) -> np.ndarray:
    """Numeric table from a .json (nested lists) or delimited text file."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        with open(path) as f:
            return np.array(json.load(f), dtype=np.float64)
    delimiter = "," if path.suffix.lower() == ".csv" else None
    return np.loadtxt(path, delimiter=delimiter, dtype=np.float64, ndmin=2)


def image_points(
    source: np.ndarray,
    points_cfg: Dict[str, Any],
    config: CartogramConfig,
    root: Path,
) -> np.ndarray:
    """Image points of a job: given directly, from a duration matrix, or unipolar."""
    if points_cfg.get("image"):
        image, _ = read_points(root / points_cfg["image"])
        return image
    if points_cfg.get("durations"):
        durations = read_matrix(root / points_cfg["durations"])
        result = positions_from_durations(durations, source, config.embedding)
        if result.clipped:
            logger.warning("Duration matrix is not exactly embeddable in the plane")
        return result.points
    if points_cfg.get("times"):
        times = read_matrix(root / points_cfg["times"]).ravel()
        return displace_unipolar(source, points_cfg.get("reference"), times, config.unipolar).points
    raise ValueError("points section needs one of: image, durations, times")


def _deform_layer(spec: LayerSpec, grid: DeformationGrid, num_workers: int) -> Dict[str, Any]:
    """Deform one layer (feature order and properties are preserved)."""
    try:
        features = read_features(spec.input)
        geometries = [shape(f["geometry"]) for f in features if f.get("geometry")]
        deformed = iter(deform_geometries(grid, geometries, num_workers=num_workers))
        out = []
        for feat in features:
            geom = mapping(next(deformed)) if feat.get("geometry") else None
            out.append({
                "type": "Feature",
                "geometry": geom,
                "properties": feat.get("properties"),
                **({"id": feat["id"]} if "id" in feat else {}),
            })
        write_features(spec.output, out)
        return {"layer": spec.name, "status": "success", "features": len(out)}

    except Exception as e:
        return {
            "layer": spec.name,
            "status": "error",
            "error": str(e),
            "traceback": traceback.format_exc(),
        }


class LayerGenerator:
    """Deform a set of GeoJSON layers from a YAML job description.

    Job format::

        points:
          source: source.geojson      # point layer
          image: image.geojson        # or durations: matrix.csv
                                      # or times: times.csv (+ reference: index)
        grid: {order: 2, resolution: 100}
        embedding: {negative_eigenvalues: clip}
        unipolar: {method: median}
        layers:
          - roads.geojson
          - {input: regions.geojson, output: regions_deformed.geojson}
        output_dir: out
        image_output: image.geojson   # optional, written in output_dir
        grid_output: grid.npz         # optional
        grid_layer: grid.geojson      # optional, deformed grid cells

    Relative paths resolve against the job file's directory.
    """

    def __init__(self, config_path: Union[str, Path], output_dir: Optional[Union[str, Path]] = None):
        """Initialize generator.

        Args:
            config_path: path to the YAML job
            output_dir: overrides the job's output_dir
        """
        self.config_path = Path(config_path)
        self.root = self.config_path.parent

        with open(self.config_path) as f:
            self.job = yaml.safe_load(f) or {}

        self.config = CartogramConfig.from_dict(self.job)
        out = output_dir or self.job.get("output_dir", "output")
        self.output_dir = self.root / out
        self.layers = self._load_layers()
        self.grid: Optional[DeformationGrid] = None

    def _load_layers(self) -> List[LayerSpec]:
        """Load layer entries from the job."""
        layers = []
        for entry in self.job.get("layers", []):
            if isinstance(entry, str):
                entry = {"input": entry}
            src = self.root / entry["input"]
            dst = self.output_dir / entry.get("output", src.name)
            layers.append(LayerSpec(name=entry.get("name", src.stem), input=src, output=dst))
        return layers

    def build_grid(self) -> DeformationGrid:
        """Read the homologous points and build the deformation grid."""
        points_cfg = self.job.get("points") or {}
        if not points_cfg.get("source"):
            raise ValueError("job has no points.source layer")
        source, props = read_points(self.root / points_cfg["source"])
        image = image_points(source, points_cfg, self.config, self.root)

        if self.job.get("image_output"):
            write_points(self.output_dir / self.job["image_output"], image, props)

        grid = fit_and_build_grid(source, image, config=self.config.grid)
        logger.info("Built %r (rmse %.3g)", grid, grid.rmse())

        if self.job.get("grid_output"):
            GridCodec.save(self.output_dir / self.job["grid_output"], grid)
        if self.job.get("grid_layer"):
            cells = [
                {"type": "Feature", "geometry": mapping(cell), "properties": {"cell": k}}
                for k, cell in enumerate(grid.cells("interpolated"))
            ]
            write_features(self.output_dir / self.job["grid_layer"], cells)
        self.grid = grid
        return grid

    def generate(
        self,
        num_workers: Optional[int] = None,
        skip_existing: bool = False,
        progress: bool = True,
    ) -> Dict[str, Any]:
        """Deform every layer of the job.

        Args:
            num_workers: worker threads per layer (defaults to grid.num_workers)
            skip_existing: skip layers whose output exists
            progress: show progress bar

        Returns:
            dict with generation statistics
        """
        workers = num_workers if num_workers is not None else self.config.grid.num_workers

        layers_to_process = [
            spec for spec in self.layers
            if not (skip_existing and spec.output.exists())
        ]
        results = {
            "total": len(self.layers),
            "processed": 0,
            "skipped": len(self.layers) - len(layers_to_process),
            "features": 0,
            "errors": [],
        }
        if not layers_to_process:
            return results

        grid = self.grid or self.build_grid()

        iterator = tqdm(layers_to_process, desc="Deforming") if progress else layers_to_process
        for spec in iterator:
            result = _deform_layer(spec, grid, workers)
            if result["status"] == "success":
                results["processed"] += 1
                results["features"] += result["features"]
            else:
                logger.error("Layer %s failed: %s", spec.name, result["error"])
                results["errors"].append(result)

        return results

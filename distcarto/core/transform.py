"""Geometry deformation through a DeformationGrid."""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List

import numpy as np
import shapely
from shapely.geometry import shape
from tqdm import tqdm

from .errors import OutOfDomain
from .grid import DeformationGrid


def as_geometry(geometry: Any) -> shapely.Geometry:
    """Shapely geometry from a geometry, a GeoJSON-like mapping or a ``__geo_interface__`` object."""
    if isinstance(geometry, shapely.Geometry):
        return geometry
    if isinstance(geometry, dict) or hasattr(geometry, "__geo_interface__"):
        return shape(geometry)
    raise TypeError(f"Cannot interpret {type(geometry).__name__} as a geometry")


def deform_geometry(grid: DeformationGrid, geometry: Any) -> shapely.Geometry:
    """Deform every vertex of ``geometry`` through ``grid``.

    Geometry type, part count, ring order and vertex count are preserved;
    only coordinate values change. Vertices outside the grid use the
    displacement at the nearest grid boundary.
    """
    geom = as_geometry(geometry)
    if geom.is_empty:
        return geom
    if not np.isfinite(shapely.get_coordinates(geom)).all():
        raise OutOfDomain("geometry contains non-finite coordinates")
    return shapely.transform(geom, grid.interpolate)


def deform_geometries(
    grid: DeformationGrid,
    geometries: Iterable[Any],
    num_workers: int = 1,
    progress: bool = False,
) -> List[shapely.Geometry]:
    """Deform a batch of geometries, keeping the input order.

    Args:
        grid: built DeformationGrid (shared read-only between workers)
        geometries: iterable of geometries
        num_workers: number of worker threads
        progress: show progress bar

    Returns:
        list of deformed geometries, index-aligned with the input
    """
    geometries = list(geometries)

    def _deform(geom):
        return deform_geometry(grid, geom)

    if num_workers <= 1:
        iterator = tqdm(geometries, desc="Deforming") if progress else geometries
        return [_deform(g) for g in iterator]

    with ThreadPoolExecutor(max_workers=num_workers) as executor:
        results = executor.map(_deform, geometries)
        if progress:
            results = tqdm(results, total=len(geometries), desc="Deforming")
        return list(results)

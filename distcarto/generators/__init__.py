"""distcarto Generators: YAML-driven deformation of GeoJSON layers."""

from .layer_generator import LayerGenerator, read_points, write_points

__all__ = ["LayerGenerator", "read_points", "write_points"]

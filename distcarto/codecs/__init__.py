"""distcarto Codecs: deformation grid persistence."""

from .grid import GridCodec

__all__ = ["GridCodec"]

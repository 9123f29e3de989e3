"""Tiled index spaces and permutations (read-only collaborators of shapes)."""

from .permutation import Permutation
from .tiled_range import TiledRange, TiledRange1, TileIndex

__all__ = [
    "Permutation",
    "TiledRange",
    "TiledRange1",
    "TileIndex",
]

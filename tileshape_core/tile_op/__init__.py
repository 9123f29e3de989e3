"""Dense tile operations used when scheduling nonzero tiles."""

from .binary import BinaryTileOp, Ownership, TileAdd, TileMult, TileSubt

__all__ = [
    "Ownership",
    "BinaryTileOp",
    "TileAdd",
    "TileSubt",
    "TileMult",
]

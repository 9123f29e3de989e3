"""tileshape_core: block-sparse shape metadata for tiled tensors.

This package decides, per tile of a tiled tensor, whether the tile is
negligible, and propagates sound upper bounds on tile magnitude through
tensor algebra without touching tile data.

Features:
- SparseShape / DenseShape with scale, add, subt, mult, gemm, permute,
  block, mask and transform
- Distributed shape construction through a global sum-reduction
- Fusion of vectors of block tensors into one higher-rank tensor, and the
  inverse split, with shape bounds recomputed in both directions

Version: 0.1.0
License: MIT
"""

__version__ = "0.1.0"

# Import config and errors
from .config import ShapeConfig, ERROR_MODES
from .errors import ShapeError, ReductionError, check

# Import index spaces
from .range.permutation import Permutation
from .range.tiled_range import TiledRange, TiledRange1

# Import shapes
from .shape.sparse_shape import SparseShape
from .shape.dense_shape import DenseShape
from .shape.gemm_helper import GemmHelper
from .shape.distributed import reduce_tile_norms

# Import tile data
from .tile_op.binary import Ownership, TileAdd, TileSubt, TileMult
from .array.block_tensor import BlockTensor

# Import conversions
from .conversions.vector_of_arrays import (
    fuse_vector_of_arrays,
    subarray_from_fused_array,
)

__all__ = [
    "__version__",
    # Config
    "ShapeConfig",
    "ERROR_MODES",
    # Errors
    "ShapeError",
    "ReductionError",
    "check",
    # Index spaces
    "Permutation",
    "TiledRange",
    "TiledRange1",
    # Shapes
    "SparseShape",
    "DenseShape",
    "GemmHelper",
    "reduce_tile_norms",
    # Tile data
    "Ownership",
    "TileAdd",
    "TileSubt",
    "TileMult",
    "BlockTensor",
    # Conversions
    "fuse_vector_of_arrays",
    "subarray_from_fused_array",
]

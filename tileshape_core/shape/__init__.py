"""Tile shapes: per-tile sparsity metadata and bound propagation.

Key components:
- SparseShape: norm-tensor backed shape with sound bound algebra
- DenseShape: shape of a dense tensor (no zero tiles)
- GemmHelper: contraction pattern used by SparseShape.gemm
- reduce_tile_norms: global sum-reduction for distributed construction
"""

from .dense_shape import DenseShape
from .distributed import is_distributed, reduce_tile_norms
from .gemm_helper import GemmHelper
from .norm_tensor import (
    NormTensor,
    apply_threshold,
    check_norms,
    count_zero,
    permute_norms,
    scale_by_volume,
    unscale_by_volume,
)
from .sparse_shape import SparseShape

__all__ = [
    # Shapes
    "SparseShape",
    "DenseShape",
    "GemmHelper",
    # Distributed construction
    "reduce_tile_norms",
    "is_distributed",
    # Norm tensor helpers
    "NormTensor",
    "apply_threshold",
    "check_norms",
    "count_zero",
    "permute_norms",
    "scale_by_volume",
    "unscale_by_volume",
]

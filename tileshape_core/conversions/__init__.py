"""Conversions between vectors of block tensors and fused block tensors."""

from .vector_of_arrays import (
    fuse_vector_of_arrays,
    fuse_vector_of_shapes,
    fuse_vector_of_tranges,
    split_vector_of_arrays,
    subarray_from_fused_array,
    subshape_from_fused_array,
)

__all__ = [
    "fuse_vector_of_tranges",
    "fuse_vector_of_shapes",
    "fuse_vector_of_arrays",
    "subshape_from_fused_array",
    "subarray_from_fused_array",
    "split_vector_of_arrays",
]

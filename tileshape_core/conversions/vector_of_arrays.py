"""Fusion of a vector of block tensors into one tensor, and the inverse split.

N block tensors that share one TiledRange are stacked into a single tensor
with an extra leading dimension of extent N. The leading dimension is tiled
by ``block_size``: [0, B, 2B, ..., N], the last tile possibly shorter.

Shape bounds are recomputed in both directions:
- fuse: the fused tile norm is the root-sum-of-squares of the constituent
  Frobenius norms, divided by the fused tile volume
- split: only the fused tile's bound is known, so the split tile's stored
  value is the fused value times the leading tile extent (sound, not tight)
"""

import logging
from typing import List, Sequence, Union

import torch
from torch import Tensor

from ..array.block_tensor import BlockTensor
from ..array.runtime import submit
from ..errors import check
from ..range.tiled_range import TiledRange, TiledRange1
from ..shape.dense_shape import DenseShape
from ..shape.sparse_shape import SparseShape

logger = logging.getLogger(__name__)

Shape = Union[SparseShape, DenseShape]


def _check_arrays(arrays: Sequence[BlockTensor]) -> None:
    check(len(arrays) > 0, "cannot fuse an empty vector of arrays")
    config = arrays[0].config
    trange = arrays[0].trange
    dense = arrays[0].is_dense()
    for i, array in enumerate(arrays[1:], start=1):
        check(
            array.trange == trange,
            f"array {i} has tiled range {array.trange}, expected {trange}",
            config,
        )
        check(
            array.is_dense() == dense,
            f"array {i} does not share the dense/sparse policy of array 0",
            config,
        )


def fuse_vector_of_tranges(arrays: Sequence[BlockTensor], block_size: int = 1) -> TiledRange:
    """Tiled range of the fused tensor.

    Args:
        arrays: Block tensors sharing one TiledRange
        block_size: Tile size of the new leading dimension

    Returns:
        TiledRange with leading dimension tiled as [0, B, 2B, ..., N]

    Raises:
        ShapeError: If arrays is empty, the ranges differ, or block_size < 1
    """
    _check_arrays(arrays)
    config = arrays[0].config
    check(block_size >= 1, f"block_size must be >= 1, got {block_size}", config)
    leading = TiledRange1.uniform(len(arrays), block_size, config)
    return TiledRange((leading,) + arrays[0].trange.dims, config)


def fuse_vector_of_shapes(arrays: Sequence[BlockTensor], fused_trange: TiledRange) -> Shape:
    """Shape of the fused tensor.

    Dense arrays fuse to a DenseShape. For sparse arrays, each fused tile
    covering k constituents of inner tile o gets

        sqrt(sum_v (stored_v[o] * volume(o))^2) / (volume(o) * k)

    which is exact for the Frobenius norm of the concatenated tile.
    """
    _check_arrays(arrays)
    config = arrays[0].config
    if arrays[0].is_dense():
        return DenseShape(config)

    inner_trange = arrays[0].trange
    check(
        fused_trange.dims[1:] == inner_trange.dims,
        f"fused range {fused_trange} doesn't extend {inner_trange}",
        config,
    )
    leading = fused_trange.dim(0)
    check(
        leading.lobound == 0 and leading.upbound == len(arrays),
        f"leading dimension {leading} doesn't cover {len(arrays)} arrays",
        config,
    )

    volumes = inner_trange.volumes(config.dtype)
    # Unscaled constituent norms, [N, *tiles_shape]
    unscaled = torch.stack([a.shape.data() * volumes for a in arrays])

    fused_norms = torch.empty(fused_trange.tiles_shape, dtype=config.dtype)
    for t in range(leading.tile_count):
        lo, hi = leading.tile(t, config)
        norm2 = unscaled[lo:hi].pow(2).sum(dim=0)
        fused_norms[t] = norm2.sqrt() / (volumes * (hi - lo))

    return SparseShape.from_scaled(fused_norms, fused_trange, config)


def subshape_from_fused_array(
    fused_array: BlockTensor,
    i: int,
    split_trange: TiledRange,
) -> Shape:
    """Shape of the ``i``-th sub-tensor of a fused tensor.

    ``i`` is an element index of the leading dimension, not a tile index.
    The split tile bound is the containing fused tile's stored value
    multiplied by that tile's leading extent: a fused tile holding a single
    nonzero constituent among zeros spreads its norm over the whole extent.

    Raises:
        ShapeError: If ``i`` is out of range or split_trange doesn't match
            the fused trailing dimensions
    """
    config = fused_array.config
    leading = fused_array.trange.dim(0)
    check(
        leading.lobound <= i < leading.upbound,
        f"sub-array index {i} out of range [{leading.lobound}, {leading.upbound})",
        config,
    )
    check(
        [d.sizes() for d in split_trange.dims]
        == [d.sizes() for d in fused_array.trange.dims[1:]],
        f"split range {split_trange} doesn't match fused range {fused_array.trange}",
        config,
    )
    if fused_array.is_dense():
        return DenseShape(config)

    tile_of_i = leading.element_to_tile(i, config)
    extent_of_tile_of_i = leading.tile_size(tile_of_i)
    split_norms = fused_array.shape.data()[tile_of_i] * extent_of_tile_of_i
    return SparseShape.from_scaled(split_norms, split_trange, config)


def fuse_vector_of_arrays(arrays: Sequence[BlockTensor], block_size: int = 1) -> BlockTensor:
    """Fuse block tensors sharing one TiledRange into one with a leading vector dimension.

    Each fused tile is the concatenation, in vector order, of the
    corresponding constituent tiles. The copy is scheduled per fused tile
    and waits only on the constituent tiles it reads.

    Args:
        arrays: Block tensors sharing one TiledRange and policy
        block_size: Tile size of the new leading dimension

    Returns:
        Fused BlockTensor

    Example:
        >>> fused = fuse_vector_of_arrays([a, b, c, d], block_size=2)
        >>> fused.trange.dim(0).boundaries
        (0, 2, 4)
    """
    fused_trange = fuse_vector_of_tranges(arrays, block_size)
    fused_shape = fuse_vector_of_shapes(arrays, fused_trange)
    fused_array = BlockTensor(fused_trange, fused_shape, arrays[0].config)

    ntiles_per_array = arrays[0].trange.tile_count
    leading = fused_trange.dim(0)

    def make_tile(*tiles: Tensor) -> Tensor:
        return torch.stack(tiles)

    ordinals = fused_array.nonzero_ordinals()
    for fused_ordinal in ordinals:
        tile_idx_mode0, array_ordinal = divmod(fused_ordinal, ntiles_per_array)
        lo, hi = leading.tile(tile_idx_mode0, fused_array.config)
        input_tiles = [arrays[v].find_or_zero(array_ordinal) for v in range(lo, hi)]
        fused_array.set(fused_ordinal, submit(make_tile, *input_tiles))

    logger.debug(
        "fused %d arrays: scheduled %d of %d tiles",
        len(arrays), len(ordinals), fused_trange.tile_count,
    )
    return fused_array


def subarray_from_fused_array(
    fused_array: BlockTensor,
    i: int,
    split_trange: TiledRange,
) -> BlockTensor:
    """Extract the ``i``-th sub-tensor of a tensor built by fuse_vector_of_arrays.

    Args:
        fused_array: Fused BlockTensor
        i: Element index of the leading dimension
        split_trange: TiledRange of the extracted tensor

    Returns:
        BlockTensor whose nonzero tiles are copies of the matching slices
        of the fused tiles
    """
    split_shape = subshape_from_fused_array(fused_array, i, split_trange)

    leading = fused_array.trange.dim(0)
    config = fused_array.config
    tile_idx_of_i = leading.element_to_tile(i, config)
    i_offset_in_tile = i - leading.tile(tile_idx_of_i, config)[0]

    split_array = BlockTensor(split_trange, split_shape, config)
    split_ntiles = split_trange.tile_count

    def make_tile(fused_tile: Tensor) -> Tensor:
        return fused_tile[i_offset_in_tile].clone()

    ordinals = split_array.nonzero_ordinals()
    for ordinal in ordinals:
        fused_ordinal = tile_idx_of_i * split_ntiles + ordinal
        split_array.set(ordinal, submit(make_tile, fused_array.find_or_zero(fused_ordinal)))

    logger.debug(
        "split sub-array %d: scheduled %d of %d tiles", i, len(ordinals), split_ntiles
    )
    return split_array


def split_vector_of_arrays(
    fused_array: BlockTensor, split_trange: TiledRange
) -> List[BlockTensor]:
    """Extract every sub-tensor of a fused tensor, in vector order."""
    leading = fused_array.trange.dim(0)
    return [
        subarray_from_fused_array(fused_array, i, split_trange)
        for i in range(leading.lobound, leading.upbound)
    ]

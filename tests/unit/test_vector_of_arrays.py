"""Tests for fusing a vector of block tensors and splitting it back.

Scenario used throughout: 4 tensors over a 2x2 grid of 3x3 tiles, fused
with block_size=2 so the leading dimension is tiled [0, 2, 4].
"""

import math

import pytest
import torch

from tileshape_core.array import BlockTensor
from tileshape_core.conversions import (
    fuse_vector_of_arrays,
    fuse_vector_of_shapes,
    fuse_vector_of_tranges,
    split_vector_of_arrays,
    subarray_from_fused_array,
    subshape_from_fused_array,
)
from tileshape_core.errors import ShapeError
from tileshape_core.range import TiledRange
from tileshape_core.shape import DenseShape, SparseShape


TRANGE = TiledRange([[0, 3, 6], [0, 3, 6]])

# Zero tiles of each of the four arrays
ZERO_TILES = [
    [(0, 1)],
    [(0, 1), (1, 0)],
    [],
    [(1, 1)],
]


def _make_dense(seed: int, zero_tiles) -> torch.Tensor:
    g = torch.Generator().manual_seed(seed)
    t = torch.randn(TRANGE.elements_shape, generator=g) + 2.0
    for idx in zero_tiles:
        (r0, r1), (c0, c1) = TRANGE.tile_range(idx)
        t[r0:r1, c0:c1] = 0.0
    return t


@pytest.fixture
def dense_tensors():
    return [_make_dense(v, zeros) for v, zeros in enumerate(ZERO_TILES)]


@pytest.fixture
def arrays(dense_tensors):
    return [BlockTensor.from_dense(t, TRANGE) for t in dense_tensors]


class TestFuseTrange:
    def test_leading_dimension(self, arrays):
        fused_trange = fuse_vector_of_tranges(arrays, block_size=2)
        assert fused_trange.dim(0).boundaries == (0, 2, 4)
        assert fused_trange.dims[1:] == TRANGE.dims
        assert fused_trange.tiles_shape == (2, 2, 2)

    def test_short_last_tile(self, arrays):
        assert fuse_vector_of_tranges(arrays, block_size=3).dim(0).boundaries == (0, 3, 4)

    def test_block_size_validated(self, arrays):
        with pytest.raises(ShapeError, match="block_size"):
            fuse_vector_of_tranges(arrays, block_size=0)

    def test_empty_vector_rejected(self):
        with pytest.raises(ShapeError, match="empty vector"):
            fuse_vector_of_tranges([], block_size=1)

    def test_mismatched_ranges_rejected(self, arrays):
        other = BlockTensor.from_dense(torch.ones(6, 6), TiledRange([[0, 2, 6], [0, 3, 6]]))
        with pytest.raises(ShapeError, match="tiled range"):
            fuse_vector_of_tranges(arrays + [other])

    def test_mixed_policies_rejected(self, arrays):
        dense = BlockTensor.from_dense(torch.ones(6, 6), TRANGE, sparse=False)
        with pytest.raises(ShapeError, match="dense/sparse policy"):
            fuse_vector_of_tranges(arrays + [dense])


class TestFuseShape:
    def test_fused_norms_are_exact(self, arrays, dense_tensors):
        """Fused tile value is the Frobenius norm of the stacked tile over its volume."""
        fused_trange = fuse_vector_of_tranges(arrays, block_size=2)
        shape = fuse_vector_of_shapes(arrays, fused_trange)
        stacked = torch.stack(dense_tensors)

        for t in range(2):
            lo, hi = fused_trange.dim(0).tile(t)
            for idx in TRANGE.indices():
                (r0, r1), (c0, c1) = TRANGE.tile_range(idx)
                tile = stacked[lo:hi, r0:r1, c0:c1]
                expected = tile.norm().item() / tile.numel()
                assert shape[(t,) + idx] == pytest.approx(expected, rel=1e-5)

    def test_fused_zero_only_when_all_zero(self, arrays):
        fused_trange = fuse_vector_of_tranges(arrays, block_size=2)
        shape = fuse_vector_of_shapes(arrays, fused_trange)
        # Tile (0, 1) is zero in arrays 0 and 1, which form fused tile 0
        assert shape.is_zero((0, 0, 1))
        assert not shape.is_zero((0, 1, 0))
        assert not shape.is_zero((1, 1, 1))
        assert shape.zero_tile_count == 1

    def test_dense_fuses_to_dense(self, dense_tensors):
        arrays = [BlockTensor.from_dense(t, TRANGE, sparse=False) for t in dense_tensors]
        fused_trange = fuse_vector_of_tranges(arrays, block_size=2)
        assert isinstance(fuse_vector_of_shapes(arrays, fused_trange), DenseShape)


class TestFuseArrays:
    def test_fused_data(self, arrays, dense_tensors):
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        assert fused.trange.dim(0).boundaries == (0, 2, 4)
        assert torch.equal(fused.to_dense(), torch.stack(dense_tensors))

    def test_fused_zero_tile_not_scheduled(self, arrays):
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        assert fused.is_zero((0, 0, 1))
        assert len(fused.nonzero_ordinals()) == fused.trange.tile_count - 1

    def test_dense_policy(self, dense_tensors):
        arrays = [BlockTensor.from_dense(t, TRANGE, sparse=False) for t in dense_tensors]
        fused = fuse_vector_of_arrays(arrays, block_size=3)
        assert fused.is_dense()
        assert torch.equal(fused.to_dense(), torch.stack(dense_tensors))


class TestSplit:
    def test_split_shape_values(self, arrays):
        """Split value is the fused tile value times the leading tile extent."""
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        for i in range(4):
            shape = subshape_from_fused_array(fused, i, TRANGE)
            t = i // 2
            for idx in TRANGE.indices():
                expected = fused.shape[(t,) + idx] * 2
                assert shape[idx] == pytest.approx(expected, rel=1e-6)

    def test_split_shape_is_superset(self, arrays):
        """Every tile nonzero in the original is nonzero after the split."""
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        for i, array in enumerate(arrays):
            shape = subshape_from_fused_array(fused, i, TRANGE)
            for idx in TRANGE.indices():
                if not array.is_zero(idx):
                    assert not shape.is_zero(idx)
                    assert shape[idx] >= array.shape[idx] * (1 - 1e-6)

    def test_split_data(self, arrays, dense_tensors):
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        for i, t in enumerate(dense_tensors):
            sub = subarray_from_fused_array(fused, i, TRANGE)
            assert sub.trange == TRANGE
            assert torch.equal(sub.to_dense(), t)

    def test_split_tiles_are_copies(self, arrays):
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        before = fused.to_dense()
        sub = subarray_from_fused_array(fused, 2, TRANGE)
        sub.find((0, 0)).wait().fill_(0.0)
        assert torch.equal(fused.to_dense(), before)

    def test_round_trip_block_size_one(self, arrays, dense_tensors):
        """With block_size=1 the split shapes equal the original shapes."""
        fused = fuse_vector_of_arrays(arrays, block_size=1)
        split = split_vector_of_arrays(fused, TRANGE)
        assert len(split) == 4
        for array, sub, t in zip(arrays, split, dense_tensors):
            assert torch.allclose(sub.shape.data(), array.shape.data(), rtol=1e-6)
            assert sub.nonzero_ordinals() == array.nonzero_ordinals()
            assert torch.equal(sub.to_dense(), t)

    def test_index_out_of_range(self, arrays):
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        with pytest.raises(ShapeError, match="out of range"):
            subshape_from_fused_array(fused, 4, TRANGE)

    def test_mismatched_split_range(self, arrays):
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        with pytest.raises(ShapeError, match="doesn't match fused range"):
            subshape_from_fused_array(fused, 0, TiledRange([[0, 2, 6], [0, 3, 6]]))

    def test_dense_split(self, dense_tensors):
        arrays = [BlockTensor.from_dense(t, TRANGE, sparse=False) for t in dense_tensors]
        fused = fuse_vector_of_arrays(arrays, block_size=2)
        sub = subarray_from_fused_array(fused, 3, TRANGE)
        assert isinstance(sub.shape, DenseShape)
        assert torch.equal(sub.to_dense(), dense_tensors[3])

    def test_single_sparse_array(self):
        t = _make_dense(9, [(1, 0)])
        array = BlockTensor.from_dense(t, TRANGE)
        fused = fuse_vector_of_arrays([array], block_size=4)
        assert fused.trange.dim(0).boundaries == (0, 1)
        assert isinstance(fused.shape, SparseShape)
        assert math.isclose(fused.shape.sparsity(), 0.25)
        assert torch.equal(subarray_from_fused_array(fused, 0, TRANGE).to_dense(), t)

"""Tests for BlockTensor: shape-gated tile scheduling.

Tests cover:
- from_dense / to_dense round trip for dense and sparse policies
- Zero tiles are never stored and never scheduled
- add / subt / mult against dense reference results, with factor and perm
- Tile assignment preconditions
- Operand ownership and error policy
"""

import os

import pytest
import torch

from tileshape_core.array import BlockTensor, completed
from tileshape_core.config import ShapeConfig
from tileshape_core.errors import ShapeError
from tileshape_core.range import Permutation, TiledRange
from tileshape_core.shape import DenseShape, SparseShape
from tileshape_core.tile_op import Ownership


def _make_trange() -> TiledRange:
    return TiledRange([[0, 2, 5, 6], [0, 3, 4, 8]])


def _make_dense(seed: int, zero_tiles) -> torch.Tensor:
    """Random 6x8 tensor with the listed tiles set to zero."""
    trange = _make_trange()
    g = torch.Generator().manual_seed(seed)
    t = torch.randn(trange.elements_shape, generator=g) + 3.0
    for idx in zero_tiles:
        (r0, r1), (c0, c1) = trange.tile_range(idx)
        t[r0:r1, c0:c1] = 0.0
    return t


class TestBlockTensorConstruction:
    def test_dense_round_trip(self):
        trange = _make_trange()
        t = _make_dense(0, [])
        x = BlockTensor.from_dense(t, trange, sparse=False)
        assert x.is_dense()
        assert isinstance(x.shape, DenseShape)
        assert len(x.nonzero_ordinals()) == trange.tile_count
        assert torch.equal(x.to_dense(), t)

    def test_sparse_round_trip(self):
        trange = _make_trange()
        t = _make_dense(0, [(0, 1), (2, 0), (2, 2)])
        x = BlockTensor.from_dense(t, trange)

        assert isinstance(x.shape, SparseShape)
        assert x.shape.zero_tile_count == 3
        assert x.is_zero((0, 1))
        assert not x.is_zero((0, 0))
        assert torch.equal(x.to_dense(), t)

    def test_zero_tiles_are_not_stored(self):
        trange = _make_trange()
        x = BlockTensor.from_dense(_make_dense(0, [(1, 1)]), trange)
        with pytest.raises(ShapeError, match="is zero"):
            x.find((1, 1))
        zero = x.find_or_zero((1, 1)).wait()
        assert tuple(zero.shape) == trange.tile_extents((1, 1))
        assert torch.count_nonzero(zero) == 0

    def test_shape_norms_match_tiles(self):
        trange = _make_trange()
        t = _make_dense(1, [])
        x = BlockTensor.from_dense(t, trange)
        for idx in trange.indices():
            (r0, r1), (c0, c1) = trange.tile_range(idx)
            expected = t[r0:r1, c0:c1].norm().item() / trange.volume(idx)
            assert x.shape[idx] == pytest.approx(expected, rel=1e-6)

    def test_wrong_extent_rejected(self):
        with pytest.raises(ShapeError, match="doesn't match"):
            BlockTensor.from_dense(torch.zeros(6, 7), _make_trange())

    def test_shape_must_describe_trange(self):
        other = TiledRange([[0, 6], [0, 8]])
        shape = SparseShape(torch.ones(1, 1), other)
        with pytest.raises(ShapeError, match="doesn't describe"):
            BlockTensor(_make_trange(), shape)

    def test_empty_shape_rejected(self):
        with pytest.raises(ShapeError):
            BlockTensor(_make_trange(), SparseShape())


class TestBlockTensorSet:
    def test_set_and_find(self):
        trange = _make_trange()
        x = BlockTensor(trange)
        tile = torch.ones(trange.tile_extents(3))
        x.set(3, tile)
        assert torch.equal(x.find(3).wait(), tile)
        assert torch.equal(x.find(trange.idx(3)).wait(), tile)

    def test_set_future(self):
        trange = _make_trange()
        x = BlockTensor(trange)
        x.set((0, 0), completed(torch.zeros(2, 3)))
        assert x.find(0).wait().shape == (2, 3)

    def test_set_twice_rejected(self):
        trange = _make_trange()
        x = BlockTensor(trange)
        x.set(0, torch.zeros(2, 3))
        with pytest.raises(ShapeError, match="already set"):
            x.set(0, torch.zeros(2, 3))

    def test_set_wrong_extents_rejected(self):
        x = BlockTensor(_make_trange())
        with pytest.raises(ShapeError, match="expected"):
            x.set(0, torch.zeros(3, 2))

    def test_set_zero_tile_rejected(self):
        trange = _make_trange()
        x = BlockTensor.from_dense(_make_dense(0, [(0, 0)]), trange)
        with pytest.raises(ShapeError, match="cannot set zero tile"):
            x.set(0, torch.zeros(2, 3))

    def test_find_unset_rejected(self):
        with pytest.raises(ShapeError, match="has not been set"):
            BlockTensor(_make_trange()).find(0)


class TestBlockTensorArithmetic:
    """Results match dense reference arithmetic."""

    @pytest.mark.parametrize(
        "method, reference",
        [
            ("add", lambda a, b: a + b),
            ("subt", lambda a, b: a - b),
            ("mult", lambda a, b: a * b),
        ],
    )
    @pytest.mark.parametrize("sparse", [True, False])
    def test_binary(self, method, reference, sparse):
        trange = _make_trange()
        a = _make_dense(0, [(0, 1), (2, 2)])
        b = _make_dense(1, [(0, 1), (1, 0)])
        x = BlockTensor.from_dense(a, trange, sparse=sparse)
        y = BlockTensor.from_dense(b, trange, sparse=sparse)

        result = getattr(x, method)(y, factor=-2.0)
        assert torch.allclose(result.to_dense(), -2.0 * reference(a, b), atol=1e-5)

    @pytest.mark.parametrize("method", ["add", "subt", "mult"])
    def test_binary_perm(self, method):
        trange = _make_trange()
        a = _make_dense(0, [(1, 1)])
        b = _make_dense(1, [(2, 0)])
        x = BlockTensor.from_dense(a, trange)
        y = BlockTensor.from_dense(b, trange)
        perm = Permutation([1, 0])

        result = getattr(x, method)(y, factor=0.5, perm=perm)
        reference = getattr(torch, {"add": "add", "subt": "sub", "mult": "mul"}[method])(a, b)
        assert result.trange == trange.permute(perm)
        assert torch.allclose(result.to_dense(), 0.5 * reference.t(), atol=1e-5)

    def test_zero_in_both_operands_stays_zero(self):
        trange = _make_trange()
        x = BlockTensor.from_dense(_make_dense(0, [(0, 1)]), trange)
        y = BlockTensor.from_dense(_make_dense(1, [(0, 1)]), trange)
        result = x.add(y)
        assert result.is_zero((0, 1))
        assert trange.ordinal((0, 1)) not in result.nonzero_ordinals()

    def test_mult_schedules_intersection_only(self):
        trange = _make_trange()
        x = BlockTensor.from_dense(_make_dense(0, [(0, 0), (1, 1)]), trange)
        y = BlockTensor.from_dense(_make_dense(1, [(2, 2)]), trange)
        result = x.mult(y)
        for idx in [(0, 0), (1, 1), (2, 2)]:
            assert result.is_zero(idx)
        assert len(result.nonzero_ordinals()) == trange.tile_count - 3

    def test_sources_unchanged(self):
        trange = _make_trange()
        a = _make_dense(0, [])
        x = BlockTensor.from_dense(a, trange)
        x.add(x, factor=3.0, perm=[1, 0]).to_dense()
        assert torch.equal(x.to_dense(), a)

    def test_mixed_policies_rejected(self):
        trange = _make_trange()
        t = _make_dense(0, [])
        x = BlockTensor.from_dense(t, trange, sparse=True)
        y = BlockTensor.from_dense(t, trange, sparse=False)
        with pytest.raises(ShapeError, match="dense and sparse"):
            x.add(y)

    def test_result_inherits_config(self):
        trange = _make_trange()
        config = ShapeConfig(zero_threshold=1e-3)
        t = _make_dense(0, [])
        x = BlockTensor.from_dense(t, trange, config=config)
        assert x.add(x).config == config
        assert x.add(x).shape.threshold == 1e-3


class TestBlockTensorOwnership:
    """Consumed operands hand their tile buffers to the result."""

    def test_add_consumes_left(self):
        trange = _make_trange()
        a, b = _make_dense(0, []), _make_dense(1, [])
        x = BlockTensor.from_dense(a, trange, sparse=False)
        y = BlockTensor.from_dense(b, trange, sparse=False)
        x_tile = x.find((1, 2)).wait()

        result = x.add(y, left=Ownership.CONSUME)
        assert result.find((1, 2)).wait().data_ptr() == x_tile.data_ptr()
        assert torch.allclose(result.to_dense(), a + b, atol=1e-5)
        assert torch.equal(y.to_dense(), b)

    def test_subt_consumes_right(self):
        trange = _make_trange()
        a, b = _make_dense(0, [(0, 1)]), _make_dense(1, [])
        x = BlockTensor.from_dense(a, trange)
        y = BlockTensor.from_dense(b, trange)
        y_tile = y.find((0, 1)).wait()

        result = x.subt(y, factor=2.0, right=Ownership.CONSUME)
        assert result.find((0, 1)).wait().data_ptr() == y_tile.data_ptr()
        assert torch.allclose(result.to_dense(), 2.0 * (a - b), atol=1e-5)
        assert torch.equal(x.to_dense(), a)

    def test_permuted_op_borrows(self):
        trange = _make_trange()
        a, b = _make_dense(0, []), _make_dense(1, [])
        x = BlockTensor.from_dense(a, trange)
        y = BlockTensor.from_dense(b, trange)

        result = x.mult(y, perm=[1, 0], left=Ownership.CONSUME, right=Ownership.CONSUME)
        assert torch.allclose(result.to_dense(), (a * b).t(), atol=1e-5)
        assert torch.equal(x.to_dense(), a)
        assert torch.equal(y.to_dense(), b)


class TestBlockTensorErrorMode:
    def test_abort_mode_covers_tile_lookup(self, monkeypatch):
        """Out-of-range tile lookups follow the tensor's error policy."""
        calls = []
        monkeypatch.setattr(os, "abort", lambda: calls.append(True))

        config = ShapeConfig(error_mode="abort")
        x = BlockTensor.from_dense(_make_dense(0, []), _make_trange(), config=config)
        with pytest.raises(ShapeError, match="out of range"):
            x.find((3, 0))
        assert calls == [True]

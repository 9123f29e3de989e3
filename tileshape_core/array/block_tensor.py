"""Block tensor: tiled tensor data gated by a shape.

BlockTensor pairs a TiledRange with a shape and a future per nonzero tile.
Arithmetic first combines the operand shapes (cheap, no tile data) and then
schedules tile work only for tiles the result shape marks nonzero.
"""

import logging
from typing import Dict, List, Optional, Sequence, Type, Union

import torch
from torch import Tensor
from torch.futures import Future

from ..config import ShapeConfig
from ..errors import check
from ..range.permutation import Permutation
from ..range.tiled_range import TiledRange, TileIndex
from ..shape.dense_shape import DenseShape
from ..shape.sparse_shape import SparseShape
from ..tile_op.binary import BinaryTileOp, Ownership, TileAdd, TileMult, TileSubt
from .runtime import completed, submit

logger = logging.getLogger(__name__)

Shape = Union[SparseShape, DenseShape]


class BlockTensor:
    """Tiled tensor whose tiles are futures of dense torch tensors.

    Args:
        trange: Tiled index space
        shape: SparseShape or DenseShape (default DenseShape)
        config: Config for precondition failures (default: the shape's)

    Example:
        >>> trange = TiledRange([[0, 2, 4], [0, 2, 4]])
        >>> x = BlockTensor.from_dense(torch.randn(4, 4), trange)
        >>> y = x.add(x, factor=0.5)
        >>> torch.allclose(y.to_dense(), x.to_dense())
        True
    """

    def __init__(
        self,
        trange: TiledRange,
        shape: Optional[Shape] = None,
        config: Optional[ShapeConfig] = None,
    ) -> None:
        if config is None:
            config = shape.config if shape is not None else ShapeConfig()
        self._config = config
        self._trange = trange
        self._shape = shape if shape is not None else DenseShape(config)
        check(
            not self._shape.empty() and self._shape.validate(trange),
            f"shape {self._shape} doesn't describe {trange}",
            config,
        )
        self._tiles: Dict[int, Future] = {}

    @property
    def trange(self) -> TiledRange:
        return self._trange

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def config(self) -> ShapeConfig:
        return self._config

    def is_dense(self) -> bool:
        return self._shape.is_dense()

    def is_zero(self, tile: TileIndex) -> bool:
        return self._shape.is_zero(self._trange.ordinal(tile, self._config))

    def nonzero_ordinals(self) -> List[int]:
        """Ordinals of all tiles the shape marks nonzero."""
        return [o for o in range(self._trange.tile_count) if not self._shape.is_zero(o)]

    def set(self, tile: TileIndex, value: Union[Tensor, Future]) -> None:
        """Assign the data (or a future of it) of a nonzero tile.

        Raises:
            ShapeError: If the tile is zero, already set, or the tensor has
                the wrong extents
        """
        ordinal = self._trange.ordinal(tile, self._config)
        check(not self.is_zero(ordinal), f"cannot set zero tile {ordinal}", self._config)
        check(ordinal not in self._tiles, f"tile {ordinal} is already set", self._config)
        if isinstance(value, Tensor):
            extents = self._trange.tile_extents(ordinal, self._config)
            check(
                tuple(value.shape) == extents,
                f"tile {ordinal} has shape {tuple(value.shape)}, expected {extents}",
                self._config,
            )
            value = completed(value)
        self._tiles[ordinal] = value

    def find(self, tile: TileIndex) -> Future:
        """Future of a nonzero tile's data."""
        ordinal = self._trange.ordinal(tile, self._config)
        check(not self.is_zero(ordinal), f"tile {ordinal} is zero", self._config)
        check(ordinal in self._tiles, f"tile {ordinal} has not been set", self._config)
        return self._tiles[ordinal]

    def find_or_zero(self, tile: TileIndex) -> Future:
        """Future of a tile's data; zero tiles yield a zero buffer."""
        ordinal = self._trange.ordinal(tile, self._config)
        if self.is_zero(ordinal):
            return completed(self._zero_tile(ordinal))
        return self.find(ordinal)

    def _zero_tile(self, ordinal: int) -> Tensor:
        extents = self._trange.tile_extents(ordinal, self._config)
        return torch.zeros(extents, dtype=self._config.dtype)

    def to_dense(self) -> Tensor:
        """Gather every tile into one dense tensor, waiting on pending tiles."""
        result = torch.zeros(self._trange.elements_shape, dtype=self._config.dtype)
        lobounds = [d.lobound for d in self._trange.dims]
        for ordinal in self.nonzero_ordinals():
            slices = tuple(
                slice(lo - base, hi - base)
                for (lo, hi), base in zip(
                    self._trange.tile_range(ordinal, self._config), lobounds
                )
            )
            result[slices] = self.find(ordinal).wait()
        return result

    @classmethod
    def from_dense(
        cls,
        tensor: Tensor,
        trange: TiledRange,
        sparse: bool = True,
        config: Optional[ShapeConfig] = None,
    ) -> "BlockTensor":
        """Split a dense tensor into tiles.

        For a sparse tensor the shape is built from each tile's Frobenius
        norm and tiles below the threshold are dropped.

        Raises:
            ShapeError: If the tensor extents do not match trange
        """
        config = config if config is not None else ShapeConfig()
        check(
            tuple(tensor.shape) == trange.elements_shape,
            f"tensor shape {tuple(tensor.shape)} doesn't match {trange.elements_shape}",
            config,
        )
        tensor = tensor.detach().to(dtype=config.dtype)
        lobounds = [d.lobound for d in trange.dims]

        tiles = []
        for ordinal in range(trange.tile_count):
            slices = tuple(
                slice(lo - base, hi - base)
                for (lo, hi), base in zip(trange.tile_range(ordinal, config), lobounds)
            )
            tiles.append(tensor[slices].clone())

        if sparse:
            norms = torch.tensor([t.norm().item() for t in tiles], dtype=config.dtype)
            shape: Shape = SparseShape(norms.view(trange.tiles_shape), trange, config)
        else:
            shape = DenseShape(config)

        result = cls(trange, shape, config)
        for ordinal, tile in enumerate(tiles):
            if not result.is_zero(ordinal):
                result.set(ordinal, tile)
        return result

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _binary(
        self,
        other: "BlockTensor",
        shape_op: str,
        tile_op_type: Type[BinaryTileOp],
        factor: Optional[float],
        perm: Optional[Union[Permutation, Sequence[int]]],
        left: Ownership,
        right: Ownership,
    ) -> "BlockTensor":
        check(
            other.trange == self._trange,
            f"operand tiled range {other.trange} doesn't match {self._trange}",
            self._config,
        )
        check(
            other.is_dense() == self.is_dense(),
            "cannot combine dense and sparse block tensors",
            self._config,
        )
        if perm is not None and not isinstance(perm, Permutation):
            perm = Permutation(perm, self._config)
        if perm is not None and perm.is_identity:
            perm = None

        result_shape = getattr(self._shape, shape_op)(other.shape, factor, perm)
        if perm is not None:
            result_trange = self._trange.permute(perm, self._config)
        else:
            result_trange = self._trange
        result = BlockTensor(result_trange, result_shape, self._config)

        op = tile_op_type(factor=factor, perm=perm, left=left, right=right, config=self._config)
        scheduled = 0
        for ordinal, idx in enumerate(self._trange.indices()):
            result_idx = perm.apply(idx) if perm is not None else idx
            if result.is_zero(result_idx):
                continue
            first = None if self.is_zero(ordinal) else self.find(ordinal)
            second = None if other.is_zero(ordinal) else other.find(ordinal)
            if first is None and second is None:
                zero = result._zero_tile(result_trange.ordinal(result_idx, self._config))
                result.set(result_idx, zero)
            else:
                result.set(result_idx, submit(op, first, second))
            scheduled += 1

        logger.debug(
            "%s: scheduled %d of %d tiles", shape_op, scheduled, self._trange.tile_count
        )
        return result

    # A CONSUME operand hands its tile buffers to the result; reading the
    # operand afterwards gives unspecified values. Permuted ops always borrow.

    def add(
        self,
        other: "BlockTensor",
        factor: Optional[float] = None,
        perm=None,
        left: Ownership = Ownership.BORROW,
        right: Ownership = Ownership.BORROW,
    ) -> "BlockTensor":
        """``factor * (self + other)``, optionally permuted.

        Example:
            >>> y = x.add(w, left=Ownership.CONSUME)  # x must not be read again
        """
        return self._binary(other, "add", TileAdd, factor, perm, left, right)

    def subt(
        self,
        other: "BlockTensor",
        factor: Optional[float] = None,
        perm=None,
        left: Ownership = Ownership.BORROW,
        right: Ownership = Ownership.BORROW,
    ) -> "BlockTensor":
        """``factor * (self - other)``, optionally permuted."""
        return self._binary(other, "subt", TileSubt, factor, perm, left, right)

    def mult(
        self,
        other: "BlockTensor",
        factor: Optional[float] = None,
        perm=None,
        left: Ownership = Ownership.BORROW,
        right: Ownership = Ownership.BORROW,
    ) -> "BlockTensor":
        """Elementwise ``factor * (self o other)``, optionally permuted."""
        return self._binary(other, "mult", TileMult, factor, perm, left, right)

    def __repr__(self) -> str:
        return f"BlockTensor(trange={self._trange}, shape={self._shape})"

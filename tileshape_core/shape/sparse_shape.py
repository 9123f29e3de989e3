"""Block-sparse shape: per-tile magnitude bounds for a tiled tensor.

SparseShape owns a norm tensor of scaled tile norms plus the tiled index
space it describes. It answers "is this tile negligible?" for the scheduler
and propagates sound upper bounds on tile magnitude through tensor algebra
without touching tile data:

- scale:  ||c A||       = |c| ||A||
- add:    ||A +/- B||   <= ||A|| + ||B||             (triangle inequality)
- mult:   ||A o B||     <= ||A|| ||B||               (elementwise product)
- gemm:   ||sum_k AB||  <= sum_k ||A_k|| ||B_k||     (submultiplicativity)

Every operation returns a new shape; values below the zero threshold are
hard-zeroed and the tile is reported as zero.
"""

import math
import numbers
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence, Tuple, Union

import torch
from torch import Tensor

from ..config import ShapeConfig
from ..errors import check
from ..range.permutation import Permutation
from ..range.tiled_range import TiledRange, TileIndex
from .distributed import reduce_tile_norms
from .gemm_helper import GemmHelper
from .norm_tensor import (
    NormTensor,
    apply_threshold,
    check_norms,
    permute_norms,
    scale_by_volume,
    unscale_by_volume,
)

if TYPE_CHECKING:
    from .dense_shape import DenseShape

# Sparse list entry: (tile ordinal or coordinate, raw Frobenius norm)
SparseNorm = Tuple[TileIndex, float]
PermutationLike = Union[Permutation, Sequence[int]]


class SparseShape:
    """Per-tile sparsity metadata backed by a norm tensor.

    The stored value of tile t is ``||tile_t||_F / volume(t)``. Tiles whose
    stored value is below ``config.zero_threshold`` are stored as exactly 0
    and reported by ``is_zero``.

    Args:
        tile_norms: Raw (unscaled) Frobenius norm of every tile, shaped like
            ``trange.tiles_shape``. Omit both arguments for an empty shape.
        trange: Tiled index space described by the shape
        config: Threshold and error policy (default ShapeConfig())

    Raises:
        ShapeError: If tile_norms does not match trange, or holds negative
            or non-finite values

    Example:
        >>> trange = TiledRange([[0, 2, 4], [0, 3, 6]])
        >>> shape = SparseShape(torch.tensor([[8.0, 0.0], [1e-9, 3.0]]), trange)
        >>> shape.is_zero((0, 1)), shape.sparsity()
        (True, 0.5)
    """

    def __init__(
        self,
        tile_norms: Optional[Tensor] = None,
        trange: Optional[TiledRange] = None,
        config: Optional[ShapeConfig] = None,
    ) -> None:
        self._config = config if config is not None else ShapeConfig()
        self._trange: Optional[TiledRange] = None
        self._tile_norms: Optional[Tensor] = None
        self._zero_tile_count = 0

        if tile_norms is None and trange is None:
            return

        check(
            tile_norms is not None and trange is not None,
            "SparseShape needs both tile_norms and trange",
            self._config,
        )
        raw = self._coerce_norms(tile_norms, trange, self._config)
        scaled = scale_by_volume(raw, trange.volumes(self._config.dtype))
        self._set(scaled, trange)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_norms(tile_norms: Tensor, trange: TiledRange, config: ShapeConfig) -> Tensor:
        """Validate a norm tensor against an index space and cast to config dtype."""
        check(
            isinstance(tile_norms, Tensor),
            f"tile_norms must be a torch.Tensor, got {type(tile_norms).__name__}",
            config,
        )
        check(
            tuple(tile_norms.shape) == trange.tiles_shape,
            f"tile_norms shape {tuple(tile_norms.shape)} doesn't match "
            f"tiles shape {trange.tiles_shape}",
            config,
        )
        norms = tile_norms.detach().to(device="cpu", dtype=config.dtype).contiguous()
        check_norms(norms, config)
        return norms

    @staticmethod
    def _dense_from_pairs(
        pairs: Iterable[SparseNorm], trange: TiledRange, config: ShapeConfig
    ) -> Tensor:
        norms = torch.zeros(trange.tiles_shape, dtype=config.dtype)
        flat = norms.view(-1)
        for idx, value in pairs:
            flat[trange.ordinal(idx, config)] += float(value)
        return norms

    def _set(self, scaled: Tensor, trange: TiledRange) -> None:
        # scaled must be a tensor this shape owns exclusively
        scaled = scaled.contiguous()
        self._trange = trange
        self._zero_tile_count = apply_threshold(scaled, self._config.zero_threshold)
        self._tile_norms = scaled

    @classmethod
    def _from_owned(cls, scaled: Tensor, trange: TiledRange, config: ShapeConfig) -> "SparseShape":
        shape = cls(config=config)
        shape._set(scaled, trange)
        return shape

    @classmethod
    def from_sparse(
        cls,
        tile_norms: Iterable[SparseNorm],
        trange: TiledRange,
        config: Optional[ShapeConfig] = None,
    ) -> "SparseShape":
        """Build a shape from (tile index, raw norm) pairs.

        Omitted tiles are zero and repeated indices are summed. The result
        is identical to the dense constructor applied to the implied tensor.

        Example:
            >>> shape = SparseShape.from_sparse([((1, 0), 4.0)], trange)
        """
        config = config if config is not None else ShapeConfig()
        return cls(cls._dense_from_pairs(tile_norms, trange, config), trange, config)

    @classmethod
    def from_scaled(
        cls,
        scaled_norms: Tensor,
        trange: TiledRange,
        config: Optional[ShapeConfig] = None,
    ) -> "SparseShape":
        """Build a shape from norms that are already divided by tile volume."""
        config = config if config is not None else ShapeConfig()
        norms = cls._coerce_norms(scaled_norms, trange, config).clone()
        return cls._from_owned(norms, trange, config)

    @classmethod
    def from_distributed(
        cls,
        tile_norms: Union[Tensor, Iterable[SparseNorm]],
        trange: TiledRange,
        config: Optional[ShapeConfig] = None,
        group: Optional[object] = None,
    ) -> "SparseShape":
        """Build a replicated shape from per-rank partial norms.

        Every rank of ``group`` must call this collectively. Each rank
        supplies raw norms for the tiles it owns and zero for the rest,
        either as a dense tensor or as (tile index, norm) pairs. The
        partial tensors are summed across ranks before scaling, so the
        result is the same on every rank whatever the ownership split, as
        long as each tile is supplied by exactly one rank.

        Raises:
            ShapeError: If the local contribution is malformed
            ReductionError: If the collective reduction fails
        """
        config = config if config is not None else ShapeConfig()
        if isinstance(tile_norms, Tensor):
            local = cls._coerce_norms(tile_norms, trange, config)
        else:
            local = cls._dense_from_pairs(tile_norms, trange, config)
            check_norms(local, config)
        return cls(reduce_tile_norms(local, group), trange, config)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require_nonempty(self) -> None:
        check(not self.empty(), "operation on an empty SparseShape", self._config)

    def empty(self) -> bool:
        """True for a default-constructed shape."""
        return self._tile_norms is None

    def is_dense(self) -> bool:
        return False

    def validate(self, trange: TiledRange) -> bool:
        """True when this shape has one norm per tile of ``trange``."""
        if self.empty():
            return False
        return tuple(self._tile_norms.shape) == trange.tiles_shape

    @property
    def config(self) -> ShapeConfig:
        return self._config

    @property
    def threshold(self) -> float:
        return self._config.zero_threshold

    @property
    def trange(self) -> TiledRange:
        self._require_nonempty()
        return self._trange

    @property
    def zero_tile_count(self) -> int:
        self._require_nonempty()
        return self._zero_tile_count

    def __getitem__(self, tile: TileIndex) -> float:
        """Scaled norm of a tile addressed by ordinal or coordinate."""
        self._require_nonempty()
        return self._tile_norms.view(-1)[self._trange.ordinal(tile, self._config)].item()

    def is_zero(self, tile: TileIndex) -> bool:
        """True when the tile's bound is below the zero threshold."""
        return self[tile] < self.threshold

    def sparsity(self) -> float:
        """Fraction of tiles that are zero."""
        self._require_nonempty()
        return self._zero_tile_count / self._trange.tile_count

    def data(self) -> NormTensor:
        """Copy of the scaled norm tensor."""
        self._require_nonempty()
        return self._tile_norms.clone()

    def tile_norms(self) -> NormTensor:
        """Unscaled (Frobenius) tile norms."""
        self._require_nonempty()
        return unscale_by_volume(self._tile_norms, self._trange.volumes(self._config.dtype))

    def nonzero_ordinals(self) -> Tensor:
        """Ordinals of the tiles that are not zero, in increasing order."""
        self._require_nonempty()
        return torch.nonzero(self._tile_norms.view(-1) >= self.threshold).view(-1)

    # ------------------------------------------------------------------
    # Algebra helpers
    # ------------------------------------------------------------------

    def _factor(self, factor: Optional[float]) -> float:
        if factor is None:
            return 1.0
        check(
            isinstance(factor, numbers.Real) and math.isfinite(factor),
            f"scale factor must be a finite real number, got {factor!r}",
            self._config,
        )
        return abs(float(factor))

    def _perm(
        self, perm: Optional[PermutationLike], rank: Optional[int] = None
    ) -> Optional[Permutation]:
        """Normalize a permutation of the output; identity becomes None."""
        if perm is None:
            return None
        if rank is None:
            rank = self._trange.rank
        if not isinstance(perm, Permutation):
            perm = Permutation(perm, self._config)
        check(
            perm.rank == rank,
            f"permutation rank {perm.rank} does not match result rank {rank}",
            self._config,
        )
        return None if perm.is_identity else perm

    def _check_operand(self, other: "SparseShape") -> None:
        self._require_nonempty()
        check(
            isinstance(other, SparseShape),
            f"operand must be a SparseShape, got {type(other).__name__}",
            self._config,
        )
        check(not other.empty(), "operand SparseShape is empty", self._config)
        check(
            other._trange == self._trange,
            f"operand tiled range {other._trange} doesn't match {self._trange}",
            self._config,
        )

    def _result(
        self,
        norms: Tensor,
        trange: TiledRange,
        perm: Optional[Permutation] = None,
    ) -> "SparseShape":
        """Wrap freshly computed scaled norms, permuting the output if requested."""
        if perm is not None:
            norms = permute_norms(norms, perm)
            trange = trange.permute(perm, self._config)
        return SparseShape._from_owned(norms, trange, self._config)

    def _volumes(self) -> Tensor:
        return self._trange.volumes(self._config.dtype)

    def _constant_bound(self, value: float) -> Tensor:
        """Scaled norm of a tile whose every element equals ``value``."""
        check(
            isinstance(value, numbers.Real) and math.isfinite(value),
            f"constant must be a finite real number, got {value!r}",
            self._config,
        )
        volumes = self._volumes()
        return torch.sqrt(float(value) ** 2 * volumes) / volumes

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------

    def permute(self, perm: PermutationLike) -> "SparseShape":
        """Shape whose tile at ``perm * idx`` is this shape's tile at ``idx``."""
        self._require_nonempty()
        check(perm is not None, "permute requires a permutation", self._config)
        perm = self._perm(perm)
        if perm is None:
            return self._result(self._tile_norms.clone(), self._trange)
        return self._result(self._tile_norms, self._trange, perm)

    def scale(self, factor: float, perm: Optional[PermutationLike] = None) -> "SparseShape":
        """Bound of ``factor * A``: each tile scaled by |factor|."""
        self._require_nonempty()
        norms = self._tile_norms * self._factor(factor)
        return self._result(norms, self._trange, self._perm(perm))

    def add(
        self,
        other: Union["SparseShape", float],
        factor: Optional[float] = None,
        perm: Optional[PermutationLike] = None,
    ) -> "SparseShape":
        """Bound of ``factor * (A + B)`` or, for a number, ``factor * (A + c)``.

        The bound is ``|factor| * (a[t] + b[t])``. A constant added to every
        element of a tile contributes ``sqrt(c^2 * volume) / volume``.
        """
        self._require_nonempty()
        if isinstance(other, numbers.Real):
            norms = self._tile_norms + self._constant_bound(other)
        else:
            self._check_operand(other)
            norms = self._tile_norms + other._tile_norms
        f = self._factor(factor)
        if f != 1.0:
            norms = norms * f
        return self._result(norms, self._trange, self._perm(perm))

    def subt(
        self,
        other: Union["SparseShape", float],
        factor: Optional[float] = None,
        perm: Optional[PermutationLike] = None,
    ) -> "SparseShape":
        """Bound of ``factor * (A - B)``; magnitudes add as for ``add``."""
        return self.add(other, factor, perm)

    def mult(
        self,
        other: "SparseShape",
        factor: Optional[float] = None,
        perm: Optional[PermutationLike] = None,
    ) -> "SparseShape":
        """Bound of the elementwise product ``factor * (A o B)``.

        Both operands store per-element averages, so the product of the
        stored values is multiplied back by the tile volume.
        """
        self._check_operand(other)
        norms = self._tile_norms * other._tile_norms * self._volumes()
        f = self._factor(factor)
        if f != 1.0:
            norms = norms * f
        return self._result(norms, self._trange, self._perm(perm))

    def gemm(
        self,
        other: "SparseShape",
        factor: float,
        gemm_helper: GemmHelper,
        perm: Optional[PermutationLike] = None,
    ) -> "SparseShape":
        """Bound of the contraction ``factor * A . B``.

        The operands are unscaled to Frobenius norms, contracted as dense
        matrices, and the result is rescaled by the output tile volumes.
        The bound is sound but not tight.

        Raises:
            ShapeError: If the operands do not fit ``gemm_helper``
        """
        self._require_nonempty()
        check(
            isinstance(other, SparseShape) and not other.empty(),
            "gemm operand must be a non-empty SparseShape",
            self._config,
        )
        result_trange = gemm_helper.result_trange(self._trange, other._trange, self._config)

        left = unscale_by_volume(self._tile_norms, self._volumes())
        right = unscale_by_volume(other._tile_norms, other._trange.volumes(self._config.dtype))
        norms = gemm_helper.contract(left, right, self._factor(factor))
        norms = scale_by_volume(norms, result_trange.volumes(self._config.dtype))

        return self._result(norms, result_trange, self._perm(perm, result_trange.rank))

    def block(
        self,
        lower: Sequence[int],
        upper: Sequence[int],
        factor: Optional[float] = None,
        perm: Optional[PermutationLike] = None,
    ) -> "SparseShape":
        """Sub-shape of tiles ``lower <= idx < upper``, rebased to the origin.

        Raises:
            ShapeError: If the bounds have the wrong rank, lower is not
                strictly less than upper in every dimension, or upper
                exceeds the tile count
        """
        self._require_nonempty()
        lower = tuple(int(x) for x in lower)
        upper = tuple(int(x) for x in upper)
        rank = self._trange.rank
        check(
            len(lower) == rank and len(upper) == rank,
            f"block bounds must have rank {rank}, got {lower} and {upper}",
            self._config,
        )
        check(
            all(0 <= lo < hi <= n for lo, hi, n in zip(lower, upper, self._trange.tiles_shape)),
            f"invalid block [{lower}, {upper}) for tiles shape {self._trange.tiles_shape}",
            self._config,
        )

        slices = tuple(slice(lo, hi) for lo, hi in zip(lower, upper))
        norms = self._tile_norms[slices].clone()
        f = self._factor(factor)
        if f != 1.0:
            norms.mul_(f)
        return self._result(norms, self._trange.block(lower, upper, self._config), self._perm(perm))

    def mask(self, other: Union["SparseShape", "DenseShape"]) -> "SparseShape":
        """Zero every tile that is zero in ``other``; keep the rest unchanged."""
        self._require_nonempty()
        if other.is_dense():
            return self._result(self._tile_norms.clone(), self._trange)
        self._check_operand(other)
        other_zero = other._tile_norms < other.threshold
        norms = self._tile_norms.masked_fill(other_zero, 0.0)
        return self._result(norms, self._trange)

    def transform(self, op: Callable, elementwise: bool = False) -> "SparseShape":
        """Apply a custom sparsification policy to the scaled norms.

        By default ``op`` receives a copy of the scaled norm tensor and must
        return a non-negative tensor of the same shape. With
        ``elementwise=True`` it is a scalar function applied to every stored
        value. The result is re-thresholded.

        Example:
            >>> shape.transform(lambda t: t * 2)
            >>> shape.transform(math.sqrt, elementwise=True)
        """
        self._require_nonempty()
        if elementwise:
            result = self.data().apply_(op)
        else:
            result = op(self.data())
        norms = self._coerce_norms(result, self._trange, self._config).clone()
        return self._result(norms, self._trange)

    def __repr__(self) -> str:
        if self.empty():
            return "SparseShape(empty)"
        return (
            f"SparseShape(tiles_shape={self._trange.tiles_shape}, "
            f"sparsity={self.sparsity():.3f}, threshold={self.threshold:g})"
        )

"""Contraction pattern for tensor-tensor products of norm tensors.

GemmHelper describes a non-transposed contraction

    result[m..., n...] = sum_k left[m..., k...] * right[k..., n...]

where the ``k`` contracted dimensions are the trailing dimensions of the
left operand and the leading dimensions of the right operand. The operands
are flattened to matrices and multiplied with a single matmul.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import torch
from torch import Tensor

from ..config import ShapeConfig
from ..errors import check
from ..range.tiled_range import TiledRange


@dataclass(frozen=True)
class GemmHelper:
    """Ranks of a contraction.

    Args:
        result_rank: Rank of the result
        left_rank: Rank of the left operand
        right_rank: Rank of the right operand

    Properties:
        num_contract_ranks: (left_rank + right_rank - result_rank) / 2
        left_outer: Slice of left dims kept in the result
        left_inner: Slice of left dims that are contracted
        right_inner: Slice of right dims that are contracted
        right_outer: Slice of right dims kept in the result

    Example:
        >>> helper = GemmHelper(result_rank=2, left_rank=3, right_rank=3)
        >>> helper.num_contract_ranks
        2
    """

    result_rank: int
    left_rank: int
    right_rank: int

    def __post_init__(self) -> None:
        if self.result_rank < 0 or self.left_rank < 1 or self.right_rank < 1:
            raise ValueError(
                f"invalid ranks: result={self.result_rank}, "
                f"left={self.left_rank}, right={self.right_rank}"
            )
        total = self.left_rank + self.right_rank - self.result_rank
        if total < 0 or total % 2 != 0:
            raise ValueError(
                f"left rank ({self.left_rank}) + right rank ({self.right_rank}) - "
                f"result rank ({self.result_rank}) must be even and non-negative"
            )
        k = total // 2
        if k > self.left_rank or k > self.right_rank:
            raise ValueError(
                f"contracted rank ({k}) cannot exceed operand ranks "
                f"({self.left_rank}, {self.right_rank})"
            )

    @property
    def num_contract_ranks(self) -> int:
        return (self.left_rank + self.right_rank - self.result_rank) // 2

    @property
    def left_outer(self) -> slice:
        return slice(0, self.left_rank - self.num_contract_ranks)

    @property
    def left_inner(self) -> slice:
        return slice(self.left_rank - self.num_contract_ranks, self.left_rank)

    @property
    def right_inner(self) -> slice:
        return slice(0, self.num_contract_ranks)

    @property
    def right_outer(self) -> slice:
        return slice(self.num_contract_ranks, self.right_rank)

    def result_trange(
        self,
        left: TiledRange,
        right: TiledRange,
        config: Optional[ShapeConfig] = None,
    ) -> TiledRange:
        """Build the tile index space of the contraction result.

        Raises:
            ShapeError: If operand ranks do not match or the contracted
                dimensions are tiled differently
        """
        check(
            left.rank == self.left_rank,
            f"left operand has rank {left.rank}, expected {self.left_rank}",
            config,
        )
        check(
            right.rank == self.right_rank,
            f"right operand has rank {right.rank}, expected {self.right_rank}",
            config,
        )
        left_inner = left.dims[self.left_inner]
        right_inner = right.dims[self.right_inner]
        check(
            left_inner == right_inner,
            f"contracted dimensions are tiled differently: {left_inner} vs {right_inner}",
            config,
        )
        check(
            self.result_rank > 0,
            "a contraction over every dimension has no result tile index space",
            config,
        )
        return TiledRange(left.dims[self.left_outer] + right.dims[self.right_outer], config)

    def matrix_sizes(
        self, left_shape: Tuple[int, ...], right_shape: Tuple[int, ...]
    ) -> Tuple[int, int, int]:
        """Return (M, N, K) of the flattened matrix product."""
        m = math.prod(left_shape[self.left_outer])
        k = math.prod(left_shape[self.left_inner])
        n = math.prod(right_shape[self.right_outer])
        return m, n, k

    def contract(self, left: Tensor, right: Tensor, factor: float = 1.0) -> Tensor:
        """Contract two dense tensors according to this pattern.

        Args:
            left: Tensor of rank left_rank
            right: Tensor of rank right_rank whose leading dims match the
                trailing contracted dims of ``left``
            factor: Scalar applied to the product

        Returns:
            Tensor shaped left.shape[left_outer] + right.shape[right_outer]
        """
        m, n, k = self.matrix_sizes(tuple(left.shape), tuple(right.shape))
        result = torch.matmul(left.reshape(m, k), right.reshape(k, n))
        if factor != 1.0:
            result = result * factor
        result_shape = tuple(left.shape[self.left_outer]) + tuple(right.shape[self.right_outer])
        return result.reshape(result_shape)

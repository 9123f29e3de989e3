"""Binary tile operations with explicit operand ownership.

Each operation evaluates ``factor * op(left, right)`` on dense tile buffers
and optionally permutes the result. An operand may be ``None`` to denote a
zero tile, which lets the caller skip materializing tiles the shape already
knows are zero.

Ownership decides whether an operand buffer may be overwritten:
- BORROW: the caller keeps the buffer; the op allocates its result
- CONSUME: the op may write its result into the buffer

Permuted evaluation never consumes an operand since the permuted result
needs its own storage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import torch
from torch import Tensor

from ..config import ShapeConfig
from ..errors import check
from ..range.permutation import Permutation


class Ownership(Enum):
    """Whether a tile operation may overwrite an operand buffer."""

    BORROW = "borrow"
    CONSUME = "consume"


@dataclass(frozen=True)
class BinaryTileOp:
    """Base class for ``factor * op(left, right)`` with optional permutation.

    Args:
        factor: Scalar applied to the result (None for 1)
        perm: Permutation applied to the result tile
        left: Ownership of the left operand
        right: Ownership of the right operand
        config: Error policy for operand checks
    """

    factor: Optional[float] = None
    perm: Optional[Permutation] = None
    left: Ownership = Ownership.BORROW
    right: Ownership = Ownership.BORROW
    config: Optional[ShapeConfig] = None

    def __call__(self, first: Optional[Tensor], second: Optional[Tensor]) -> Tensor:
        check(
            first is not None or second is not None,
            f"{type(self).__name__} needs at least one nonzero operand",
            self.config,
        )
        if first is not None and second is not None:
            check(
                first.shape == second.shape,
                f"tile shapes differ: {tuple(first.shape)} vs {tuple(second.shape)}",
                self.config,
            )

        permuting = self.perm is not None and not self.perm.is_identity
        consume_left = not permuting and self.left is Ownership.CONSUME
        consume_right = not permuting and self.right is Ownership.CONSUME

        if first is None:
            result = self._right_only(second, consume_right)
        elif second is None:
            result = self._left_only(first, consume_left)
        else:
            result = self._both(first, second, consume_left, consume_right)

        if self.factor is not None and self.factor != 1.0:
            result.mul_(self.factor)
        if permuting:
            result = self.perm.permute_tensor(result)
        return result

    # Each hook returns a tensor the op may modify in place

    def _both(self, first: Tensor, second: Tensor, consume_left: bool, consume_right: bool) -> Tensor:
        raise NotImplementedError

    def _left_only(self, first: Tensor, consume: bool) -> Tensor:
        raise NotImplementedError

    def _right_only(self, second: Tensor, consume: bool) -> Tensor:
        raise NotImplementedError


class TileAdd(BinaryTileOp):
    """``factor * (left + right)``."""

    def _both(self, first, second, consume_left, consume_right):
        if consume_left:
            return first.add_(second)
        if consume_right:
            return second.add_(first)
        return first + second

    def _left_only(self, first, consume):
        return first if consume else first.clone()

    def _right_only(self, second, consume):
        return second if consume else second.clone()


class TileSubt(BinaryTileOp):
    """``factor * (left - right)``."""

    def _both(self, first, second, consume_left, consume_right):
        if consume_left:
            return first.sub_(second)
        if consume_right:
            return second.neg_().add_(first)
        return first - second

    def _left_only(self, first, consume):
        return first if consume else first.clone()

    def _right_only(self, second, consume):
        return second.neg_() if consume else second.neg()


class TileMult(BinaryTileOp):
    """``factor * (left o right)``; a zero operand gives a zero tile."""

    def _both(self, first, second, consume_left, consume_right):
        if consume_left:
            return first.mul_(second)
        if consume_right:
            return second.mul_(first)
        return first * second

    def _left_only(self, first, consume):
        return first.zero_() if consume else torch.zeros_like(first)

    def _right_only(self, second, consume):
        return second.zero_() if consume else torch.zeros_like(second)

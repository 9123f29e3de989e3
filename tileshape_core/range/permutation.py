"""Index permutations for tile index spaces and norm tensors.

A permutation ``p`` of rank ``n`` moves coordinate ``i`` of an index to
position ``p[i]``:

    (p * idx)[p[i]] = idx[i]

so a tensor permuted by ``p`` holds at ``p * idx`` the value the original
held at ``idx``.
"""

from typing import Iterator, Optional, Sequence, Tuple

import torch
from torch import Tensor

from ..config import ShapeConfig
from ..errors import check


class Permutation:
    """Permutation of tensor dimensions.

    Args:
        data: Target position of each dimension; must contain each of
            0..n-1 exactly once
        config: Config used for precondition failures

    Example:
        >>> p = Permutation([1, 2, 0])
        >>> p.apply((4, 5, 6))
        (6, 4, 5)
        >>> p.inv().apply(p.apply((4, 5, 6)))
        (4, 5, 6)
    """

    def __init__(self, data: Sequence[int], config: Optional[ShapeConfig] = None) -> None:
        data = tuple(int(x) for x in data)
        check(
            sorted(data) == list(range(len(data))),
            f"permutation {data} must contain each of 0..{len(data) - 1} exactly once",
            config,
        )
        self._data = data
        self._config = config

    @classmethod
    def identity(cls, rank: int, config: Optional[ShapeConfig] = None) -> "Permutation":
        return cls(range(rank), config)

    @property
    def data(self) -> Tuple[int, ...]:
        return self._data

    @property
    def rank(self) -> int:
        return len(self._data)

    @property
    def is_identity(self) -> bool:
        return all(i == p for i, p in enumerate(self._data))

    def inv(self) -> "Permutation":
        """Return the inverse permutation."""
        result = [0] * self.rank
        for i, p in enumerate(self._data):
            result[p] = i
        return Permutation(result, self._config)

    def apply(self, idx: Sequence[int]) -> Tuple[int, ...]:
        """Permute a coordinate index (or any per-dimension sequence)."""
        check(
            len(idx) == self.rank,
            f"index rank {len(idx)} does not match permutation rank {self.rank}",
            self._config,
        )
        result = [0] * self.rank
        for i, p in enumerate(self._data):
            result[p] = idx[i]
        return tuple(result)

    def __mul__(self, idx: Sequence[int]) -> Tuple[int, ...]:
        return self.apply(idx)

    def permute_tensor(self, tensor: Tensor) -> Tensor:
        """Move dimension i of ``tensor`` to dimension p[i].

        Returns a contiguous tensor; the input is never modified.
        """
        check(
            tensor.dim() == self.rank,
            f"tensor rank {tensor.dim()} does not match permutation rank {self.rank}",
            self._config,
        )
        if self.is_identity:
            return tensor.clone(memory_format=torch.contiguous_format)
        # torch.permute takes, for each output dim, the source dim
        return tensor.permute(self.inv().data).contiguous()

    def __getitem__(self, i: int) -> int:
        return self._data[i]

    def __iter__(self) -> Iterator[int]:
        return iter(self._data)

    def __len__(self) -> int:
        return self.rank

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Permutation):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(self._data)

    def __repr__(self) -> str:
        return f"Permutation({list(self._data)})"

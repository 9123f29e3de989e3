"""Tiled index spaces.

A TiledRange1 partitions one dimension's element range into contiguous
tiles. A TiledRange is the cartesian product of one TiledRange1 per
dimension; its tiles are numbered by row-major ordinal.

Both are immutable once built and are only read by the shape engine.
Lookups take an optional ``config`` so callers holding a ShapeConfig get
its error policy; otherwise the config the range was built with is used.
"""

import bisect
import itertools
import math
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import torch
from torch import Tensor

from ..config import ShapeConfig
from ..errors import check
from .permutation import Permutation

# A tile may be addressed by ordinal or by coordinate index
TileIndex = Union[int, Sequence[int]]


class TiledRange1:
    """Tiling of a single dimension.

    Args:
        boundaries: Strictly increasing element boundaries [b0, b1, ..., bn];
            tile i covers elements [b_i, b_{i+1})
        config: Default error policy for lookups on this tiling

    Example:
        >>> tr1 = TiledRange1([0, 3, 5, 9])
        >>> tr1.tile(1)
        (3, 5)
        >>> tr1.element_to_tile(6)
        2
    """

    def __init__(self, boundaries: Sequence[int], config: Optional[ShapeConfig] = None) -> None:
        boundaries = tuple(int(b) for b in boundaries)
        check(
            len(boundaries) >= 2,
            f"a tiling needs at least two boundaries, got {list(boundaries)}",
            config,
        )
        check(
            all(lo < hi for lo, hi in zip(boundaries[:-1], boundaries[1:])),
            f"tile boundaries must be strictly increasing, got {list(boundaries)}",
            config,
        )
        self._boundaries = boundaries
        self._config = config

    @classmethod
    def uniform(
        cls, extent: int, tile_size: int, config: Optional[ShapeConfig] = None
    ) -> "TiledRange1":
        """Tile [0, extent) with tiles of ``tile_size`` (last tile may be shorter)."""
        check(tile_size >= 1, f"tile_size must be >= 1, got {tile_size}", config)
        check(extent >= 1, f"extent must be >= 1, got {extent}", config)
        boundaries = list(range(0, extent, tile_size))
        boundaries.append(extent)
        return cls(boundaries, config)

    def _cfg(self, config: Optional[ShapeConfig]) -> Optional[ShapeConfig]:
        return config if config is not None else self._config

    @property
    def boundaries(self) -> Tuple[int, ...]:
        return self._boundaries

    @property
    def tile_count(self) -> int:
        return len(self._boundaries) - 1

    @property
    def lobound(self) -> int:
        return self._boundaries[0]

    @property
    def upbound(self) -> int:
        return self._boundaries[-1]

    @property
    def extent(self) -> int:
        """Number of elements covered by this tiling."""
        return self.upbound - self.lobound

    def tile(self, i: int, config: Optional[ShapeConfig] = None) -> Tuple[int, int]:
        """Element range [lo, hi) of tile ``i``."""
        check(
            0 <= i < self.tile_count,
            f"tile index {i} out of range [0, {self.tile_count})",
            self._cfg(config),
        )
        return self._boundaries[i], self._boundaries[i + 1]

    def tile_size(self, i: int, config: Optional[ShapeConfig] = None) -> int:
        lo, hi = self.tile(i, config)
        return hi - lo

    def sizes(self) -> List[int]:
        """Element extent of every tile."""
        return [hi - lo for lo, hi in zip(self._boundaries[:-1], self._boundaries[1:])]

    def element_to_tile(self, element: int, config: Optional[ShapeConfig] = None) -> int:
        """Index of the tile that contains ``element``."""
        check(
            self.lobound <= element < self.upbound,
            f"element {element} out of range [{self.lobound}, {self.upbound})",
            self._cfg(config),
        )
        return bisect.bisect_right(self._boundaries, element) - 1

    def block(
        self, lower: int, upper: int, config: Optional[ShapeConfig] = None
    ) -> "TiledRange1":
        """Tiling of tiles [lower, upper), rebased so it starts at element 0."""
        config = self._cfg(config)
        check(
            0 <= lower < upper <= self.tile_count,
            f"invalid tile block [{lower}, {upper}) for {self.tile_count} tiles",
            config,
        )
        offset = self._boundaries[lower]
        return TiledRange1([b - offset for b in self._boundaries[lower : upper + 1]], config)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TiledRange1):
            return NotImplemented
        return self._boundaries == other._boundaries

    def __hash__(self) -> int:
        return hash(self._boundaries)

    def __repr__(self) -> str:
        return f"TiledRange1({list(self._boundaries)})"


class TiledRange:
    """Multi-dimensional tiled index space.

    Args:
        dims: One TiledRange1 (or boundary sequence) per dimension
        config: Default error policy for lookups on this index space.
            Equality ignores it.

    Example:
        >>> tr = TiledRange([[0, 3, 6], [0, 2, 5, 9]])
        >>> tr.tiles_shape
        (2, 3)
        >>> tr.volume(tr.ordinal((1, 2)))
        12
    """

    def __init__(
        self,
        dims: Sequence[Union[TiledRange1, Sequence[int]]],
        config: Optional[ShapeConfig] = None,
    ) -> None:
        self._config = config
        self._dims = tuple(
            d if isinstance(d, TiledRange1) else TiledRange1(d, config) for d in dims
        )
        check(len(self._dims) >= 1, "a TiledRange needs at least one dimension", config)
        self._tiles_shape = tuple(d.tile_count for d in self._dims)

        # Row-major strides over tile coordinates
        strides = [1] * len(self._tiles_shape)
        for i in range(len(self._tiles_shape) - 2, -1, -1):
            strides[i] = strides[i + 1] * self._tiles_shape[i + 1]
        self._strides = tuple(strides)

    def _cfg(self, config: Optional[ShapeConfig]) -> Optional[ShapeConfig]:
        return config if config is not None else self._config

    @property
    def dims(self) -> Tuple[TiledRange1, ...]:
        return self._dims

    def dim(self, i: int) -> TiledRange1:
        return self._dims[i]

    @property
    def rank(self) -> int:
        return len(self._dims)

    @property
    def tiles_shape(self) -> Tuple[int, ...]:
        """Number of tiles along each dimension."""
        return self._tiles_shape

    @property
    def elements_shape(self) -> Tuple[int, ...]:
        """Number of elements along each dimension."""
        return tuple(d.extent for d in self._dims)

    @property
    def tile_count(self) -> int:
        return math.prod(self._tiles_shape)

    def ordinal(self, idx: TileIndex, config: Optional[ShapeConfig] = None) -> int:
        """Row-major ordinal of a tile coordinate (ordinals pass through)."""
        config = self._cfg(config)
        if isinstance(idx, int):
            check(
                0 <= idx < self.tile_count,
                f"tile ordinal {idx} out of range [0, {self.tile_count})",
                config,
            )
            return idx
        idx = tuple(idx)
        check(
            len(idx) == self.rank,
            f"tile index {idx} has rank {len(idx)}, expected {self.rank}",
            config,
        )
        check(
            all(0 <= x < n for x, n in zip(idx, self._tiles_shape)),
            f"tile index {idx} out of range {self._tiles_shape}",
            config,
        )
        return sum(x * s for x, s in zip(idx, self._strides))

    def idx(self, ordinal: int, config: Optional[ShapeConfig] = None) -> Tuple[int, ...]:
        """Tile coordinate of a row-major ordinal."""
        ordinal = self.ordinal(ordinal, config)
        result = []
        for s in self._strides:
            q, ordinal = divmod(ordinal, s)
            result.append(q)
        return tuple(result)

    def tile_range(
        self, tile: TileIndex, config: Optional[ShapeConfig] = None
    ) -> Tuple[Tuple[int, int], ...]:
        """Element range [lo, hi) of a tile along every dimension."""
        idx = self.idx(self.ordinal(tile, config))
        return tuple(d.tile(i) for d, i in zip(self._dims, idx))

    def tile_extents(self, tile: TileIndex, config: Optional[ShapeConfig] = None) -> Tuple[int, ...]:
        """Element extents of a tile, i.e. the shape of its data buffer."""
        return tuple(hi - lo for lo, hi in self.tile_range(tile, config))

    def volume(self, tile: TileIndex, config: Optional[ShapeConfig] = None) -> int:
        """Number of elements in a tile."""
        return math.prod(self.tile_extents(tile, config))

    def volumes(self, dtype: torch.dtype = torch.float32) -> Tensor:
        """Tensor of tile volumes shaped like ``tiles_shape``."""
        result = torch.ones((), dtype=dtype)
        for d in self._dims:
            sizes = torch.tensor(d.sizes(), dtype=dtype)
            result = result.unsqueeze(-1) * sizes
        return result

    def element_to_tile(
        self, element: Sequence[int], config: Optional[ShapeConfig] = None
    ) -> Tuple[int, ...]:
        """Tile coordinate containing an element coordinate."""
        config = self._cfg(config)
        check(
            len(element) == self.rank,
            f"element index has rank {len(element)}, expected {self.rank}",
            config,
        )
        return tuple(d.element_to_tile(e, config) for d, e in zip(self._dims, element))

    def indices(self) -> Iterator[Tuple[int, ...]]:
        """Iterate tile coordinates in ordinal order."""
        return itertools.product(*(range(n) for n in self._tiles_shape))

    def permute(self, perm: Permutation, config: Optional[ShapeConfig] = None) -> "TiledRange":
        """Index space whose dimension perm[i] is this space's dimension i."""
        config = self._cfg(config)
        check(
            perm.rank == self.rank,
            f"permutation rank {perm.rank} does not match range rank {self.rank}",
            config,
        )
        return TiledRange(perm.apply(self._dims), config)

    def block(
        self,
        lower: Sequence[int],
        upper: Sequence[int],
        config: Optional[ShapeConfig] = None,
    ) -> "TiledRange":
        """Sub-space of tiles lower <= idx < upper, rebased to the origin."""
        config = self._cfg(config)
        check(
            len(lower) == self.rank and len(upper) == self.rank,
            f"block bounds must have rank {self.rank}, got {tuple(lower)} and {tuple(upper)}",
            config,
        )
        return TiledRange(
            [d.block(lo, hi, config) for d, lo, hi in zip(self._dims, lower, upper)],
            config,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TiledRange):
            return NotImplemented
        return self._dims == other._dims

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        return f"TiledRange({[list(d.boundaries) for d in self._dims]})"

"""Dense shape: every tile is implicitly nonzero.

DenseShape carries no norm tensor. It exposes the same query and algebra
interface as SparseShape so callers can treat both policies uniformly; every
algebra operation returns another DenseShape.
"""

from typing import Any, Callable, Optional

from ..config import ShapeConfig
from ..errors import check
from ..range.tiled_range import TiledRange, TileIndex


class DenseShape:
    """Shape of a dense tiled tensor.

    Example:
        >>> shape = DenseShape()
        >>> shape.is_dense(), shape.sparsity(), shape.is_zero(3)
        (True, 0.0, False)
    """

    def __init__(self, config: Optional[ShapeConfig] = None) -> None:
        self._config = config if config is not None else ShapeConfig()

    @property
    def config(self) -> ShapeConfig:
        return self._config

    def empty(self) -> bool:
        return False

    def is_dense(self) -> bool:
        return True

    def validate(self, trange: TiledRange) -> bool:
        return True

    def is_zero(self, tile: TileIndex) -> bool:
        return False

    def sparsity(self) -> float:
        return 0.0

    def data(self) -> Any:
        check(False, "a DenseShape has no norm tensor", self._config)

    def _same(self, *args: Any, **kwargs: Any) -> "DenseShape":
        return DenseShape(self._config)

    # Dense in, dense out
    permute = _same
    scale = _same
    add = _same
    subt = _same
    mult = _same
    gemm = _same
    block = _same
    mask = _same

    def transform(self, op: Callable, elementwise: bool = False) -> "DenseShape":
        return DenseShape(self._config)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, DenseShape)

    def __hash__(self) -> int:
        return hash(DenseShape)

    def __repr__(self) -> str:
        return "DenseShape()"

"""Block tensors and the future-based tile task runtime."""

from .block_tensor import BlockTensor
from .runtime import completed, submit

__all__ = [
    "BlockTensor",
    "completed",
    "submit",
]

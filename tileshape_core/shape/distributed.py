"""Global sum-reduction of partial tile norms across a process group.

Each process contributes a norm tensor holding correct values only for the
tiles it owns (zero elsewhere). After the reduction every process holds the
full tensor, so the resulting shape is identical on all ranks and all later
shape algebra runs locally without communication.
"""

import logging
from typing import Optional

import torch
import torch.distributed as dist
from torch import Tensor

from ..errors import ReductionError

logger = logging.getLogger(__name__)


def is_distributed() -> bool:
    """True when a default process group is available and initialized."""
    return dist.is_available() and dist.is_initialized()


def reduce_tile_norms(tile_norms: Tensor, group: Optional[object] = None) -> Tensor:
    """Sum partial tile norms across all ranks of ``group``.

    This is a blocking collective: every rank of the group must call it with
    a tensor of the same shape and dtype. Outside a distributed run the
    process is its own group and a copy of the input is returned.

    Args:
        tile_norms: Process-local partial norm tensor
        group: Process group (default: the world group)

    Returns:
        New tensor holding the element-wise sum over all ranks

    Raises:
        ReductionError: If the collective fails; the shapes of the group
            would be inconsistent, so callers must not recover
    """
    result = tile_norms.detach().clone().contiguous()

    if not is_distributed():
        return result

    world_size = dist.get_world_size(group)
    logger.debug(
        "all-reducing %d tile norms across %d ranks", result.numel(), world_size
    )

    try:
        with torch.no_grad():
            dist.all_reduce(result, op=dist.ReduceOp.SUM, group=group)
    except RuntimeError as exc:
        logger.critical("tile norm reduction failed: %s", exc)
        raise ReductionError(f"tile norm reduction failed: {exc}") from exc

    return result

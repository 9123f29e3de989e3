"""Norm tensor helpers.

A norm tensor is a dense torch tensor shaped like a TiledRange's
``tiles_shape`` holding one non-negative value per tile. Shapes store the
*scaled* norm of each tile:

    stored[t] = ||tile_t||_F / volume(t)

i.e. an average per-element magnitude. Algebra on scaled values composes
across tiles of different volume; ``unscale_by_volume`` recovers the
Frobenius norm bound.
"""

from typing import Optional

import torch
from torch import Tensor

from ..config import ShapeConfig
from ..errors import check
from ..range.permutation import Permutation

# Alias used in signatures; norm tensors are plain torch tensors
NormTensor = Tensor


def check_norms(norms: Tensor, config: Optional[ShapeConfig] = None) -> None:
    """Reject negative or non-finite norms.

    Raises:
        ShapeError: If any entry is negative, NaN or infinite
    """
    if norms.numel() == 0:
        return
    check(
        bool(torch.isfinite(norms).all()),
        "tile norms must be finite",
        config,
    )
    check(
        bool((norms >= 0).all()),
        f"tile norms must be non-negative, got minimum {norms.min().item()}",
        config,
    )


def apply_threshold(norms: Tensor, threshold: float) -> int:
    """Hard-zero entries below ``threshold`` in place.

    Args:
        norms: Scaled norm tensor (modified in place)
        threshold: Zero threshold

    Returns:
        Number of entries that are zero after thresholding
    """
    zero_mask = norms < threshold
    norms.masked_fill_(zero_mask, 0.0)
    return int(zero_mask.sum().item())


def count_zero(norms: Tensor, threshold: float) -> int:
    """Number of entries below ``threshold``."""
    return int((norms < threshold).sum().item())


def scale_by_volume(raw: Tensor, volumes: Tensor) -> Tensor:
    """Convert Frobenius norms to per-element average magnitudes."""
    return raw / volumes


def unscale_by_volume(scaled: Tensor, volumes: Tensor) -> Tensor:
    """Convert per-element average magnitudes back to Frobenius norm bounds."""
    return scaled * volumes


def permute_norms(norms: Tensor, perm: Optional[Permutation]) -> Tensor:
    """Permute a norm tensor so ``result[perm * idx] == norms[idx]``.

    A ``None`` permutation returns the input unchanged.
    """
    if perm is None:
        return norms
    return perm.permute_tensor(norms)

"""
Shape engine configuration dataclass.

The zero threshold and the error-handling policy are process-wide, read-only
settings. They are threaded explicitly through every shape constructor and
algebra call instead of living in mutable global state.
"""

import math
import warnings
from dataclasses import dataclass
from typing import Any, Dict

import torch


# Valid error handling policies
ERROR_MODES = ("raise", "abort")

# Default zero threshold: single precision machine epsilon
DEFAULT_ZERO_THRESHOLD = float(torch.finfo(torch.float32).eps)


@dataclass(frozen=True)
class ShapeConfig:
    """
    Configuration for tile shapes.

    Args:
        zero_threshold: Scaled tile norms below this value are hard-zeroed
            and the tile is reported as zero
        error_mode: "raise" to throw ShapeError on precondition violations,
            "abort" to log and abort the process
        dtype: Floating point dtype of the norm tensors

    Example:
        >>> config = ShapeConfig(zero_threshold=1e-6)
        >>> config.zero_threshold
        1e-06
    """

    zero_threshold: float = DEFAULT_ZERO_THRESHOLD
    error_mode: str = "raise"
    dtype: torch.dtype = torch.float32

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_cfg(cls, cfg: Any) -> "ShapeConfig":
        """
        Create ShapeConfig from a dict-like or attribute config object.

        Unknown keys are ignored.

        Example:
            >>> config = ShapeConfig.from_cfg({"zero_threshold": 1e-4, "seed": 3})
        """
        if isinstance(cfg, dict):
            valid_fields = {k: v for k, v in cfg.items() if k in cls.__dataclass_fields__}
            return cls(**valid_fields)

        kwargs = {}
        for field_name in cls.__dataclass_fields__:
            if hasattr(cfg, field_name):
                kwargs[field_name] = getattr(cfg, field_name)

        return cls(**kwargs)

    def validate(self) -> None:
        """
        Validate configuration constraints.

        Raises:
            ValueError: If configuration is invalid
        """
        if not isinstance(self.zero_threshold, (int, float)) or isinstance(
            self.zero_threshold, bool
        ):
            raise ValueError(
                f"zero_threshold must be a real number, got {self.zero_threshold!r}"
            )
        if not math.isfinite(self.zero_threshold) or self.zero_threshold < 0.0:
            raise ValueError(
                f"zero_threshold must be finite and non-negative, got {self.zero_threshold}"
            )
        if self.zero_threshold == 0.0:
            warnings.warn(
                "zero_threshold is 0: no tile will ever be reported as zero."
            )

        if self.error_mode not in ERROR_MODES:
            raise ValueError(
                f"error_mode must be one of {ERROR_MODES}, got '{self.error_mode}'"
            )

        if not isinstance(self.dtype, torch.dtype) or not self.dtype.is_floating_point:
            raise ValueError(f"dtype must be a floating point torch.dtype, got {self.dtype}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }

    def __repr__(self) -> str:
        return (
            f"ShapeConfig(zero_threshold={self.zero_threshold:g}, "
            f"error_mode='{self.error_mode}', dtype={self.dtype})"
        )

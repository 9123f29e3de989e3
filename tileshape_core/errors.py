"""Error types and precondition checking for the shape engine.

Precondition violations either raise ShapeError or abort the process, as
selected by ShapeConfig.error_mode. Reduction failures during distributed
construction are always fatal and raise ReductionError.
"""

import logging
import os
from typing import Optional

from .config import ShapeConfig

logger = logging.getLogger(__name__)


class ShapeError(ValueError):
    """Raised when a shape operation is called with invalid arguments."""


class ReductionError(RuntimeError):
    """Raised when the collective reduction of tile norms fails.

    A partial reduction leaves every participant with an inconsistent shape,
    so this error is not recoverable.
    """


def check(condition: bool, message: str, config: Optional[ShapeConfig] = None) -> None:
    """Enforce a precondition.

    Args:
        condition: Value that must be truthy
        message: Description of the violated precondition
        config: Config selecting the failure policy (default: raise)

    Raises:
        ShapeError: If condition is false and error_mode is "raise"
    """
    if condition:
        return

    if config is not None and config.error_mode == "abort":
        logger.critical("tileshape_core: assertion failure: %s", message)
        os.abort()

    raise ShapeError(message)

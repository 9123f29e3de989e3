"""Minimal future-based task submission for tile work.

Tile tasks are expressed as continuations on ``torch.futures.Future``: a
task runs once every future among its arguments has completed. Tasks with
no mutual dependency may complete in any order.
"""

from typing import Any, Callable

import torch
from torch.futures import Future


def completed(value: Any) -> Future:
    """Future already holding ``value``."""
    fut: Future = Future()
    fut.set_result(value)
    return fut


def submit(fn: Callable[..., Any], *args: Any) -> Future:
    """Schedule ``fn(*args)`` after all future arguments complete.

    Future arguments are replaced by their values when ``fn`` runs; other
    arguments are passed through unchanged. An exception raised by ``fn``
    or stored in a dependency is set on the returned future with its
    original type.

    Example:
        >>> a, b = completed(torch.ones(2)), completed(torch.ones(2))
        >>> submit(torch.add, a, b).wait()
        tensor([2., 2.])
    """
    result: Future = Future()
    deps = [a for a in args if isinstance(a, Future)]

    def run(_: Any = None) -> None:
        try:
            values = [a.value() if isinstance(a, Future) else a for a in args]
            result.set_result(fn(*values))
        except Exception as exc:
            result.set_exception(exc)

    if deps:
        torch.futures.collect_all(deps).then(run)
    else:
        run()
    return result

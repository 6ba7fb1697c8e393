"""Identity-memoization for read-side projections."""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

T = TypeVar("T")


def memoize_last(fn: Callable[..., T]) -> Callable[..., T]:
    """
    Cache the most recent result, keyed by argument identity.

    Snapshots are immutable, so "same object" means "same input". Only the
    last call is remembered; a different argument list recomputes.
    """
    last_args: list[Any] = []
    last_result: list[Any] = []

    @functools.wraps(fn)
    def wrapper(*args: Any) -> T:
        if last_result and len(args) == len(last_args) and all(a is b for a, b in zip(args, last_args)):
            return last_result[0]
        result = fn(*args)
        last_args[:] = args
        last_result[:] = [result]
        return result

    def cache_clear() -> None:
        last_args.clear()
        last_result.clear()

    wrapper.cache_clear = cache_clear  # type: ignore[attr-defined]
    return wrapper

"""Subset identifiers and the "current subset" context.

Subsets are a closed enumeration so that per-subset caches have a bounded key
domain. Code that does not pass a subset explicitly resolves it at call time
through :func:`current_subset`, which honours an enclosing
:func:`use_subset` block.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from typing import TYPE_CHECKING

from polyterm.core.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator

__all__ = ["Subset", "current_subset", "resolve_subset", "use_subset"]


class Subset(str, Enum):
    """Contiguous row blocks of a model's data, in time order."""

    FIT = "fit"
    CROSS = "cross"
    TEST = "test"
    ALL = "all"

    @classmethod
    def coerce(cls, value: Subset | str) -> Subset:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            allowed = ", ".join(s.value for s in cls)
            raise ValidationError(f"unknown subset {value!r}; expected one of: {allowed}") from exc


_CURRENT: ContextVar[Subset | None] = ContextVar("polyterm_current_subset", default=None)


def current_subset() -> Subset | None:
    """Subset set by the innermost :func:`use_subset` block, if any."""
    return _CURRENT.get()


@contextmanager
def use_subset(subset: Subset | str) -> Iterator[Subset]:
    """Make ``subset`` the default for calls that omit one."""
    token = _CURRENT.set(Subset.coerce(subset))
    try:
        yield _CURRENT.get()
    finally:
        _CURRENT.reset(token)


def resolve_subset(subset: Subset | str | None, default: Subset) -> Subset:
    """Explicit subset, else the context subset, else ``default``."""
    if subset is not None:
        return Subset.coerce(subset)
    ctx = _CURRENT.get()
    return default if ctx is None else ctx

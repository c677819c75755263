"""polyterm: polynomial/lag regression terms and a dense matrix kernel.

Candidate regression terms such as ``x^2 * y[t-1]`` are represented with a
canonical digest for deduplication, materialized lazily per data subset, and
scored by refitting the owning model with the term appended.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "DimensionMismatch",
    "DivideByZero",
    "KernelConfig",
    "LstsqResult",
    "Matrix",
    "Model",
    "PolytermError",
    "SingularMatrix",
    "StatsFailure",
    "Subset",
    "Term",
    "TermPart",
    "TermStats",
    "ValidationError",
    "lstsq",
    "use_subset",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Matrix": ("polyterm.core.matrix", "Matrix"),
    "KernelConfig": ("polyterm.core.config", "KernelConfig"),
    "LstsqResult": ("polyterm.core.regression", "LstsqResult"),
    "lstsq": ("polyterm.core.regression", "lstsq"),
    "PolytermError": ("polyterm.core.errors", "PolytermError"),
    "ValidationError": ("polyterm.core.errors", "ValidationError"),
    "DivideByZero": ("polyterm.core.errors", "DivideByZero"),
    "SingularMatrix": ("polyterm.core.errors", "SingularMatrix"),
    "DimensionMismatch": ("polyterm.core.errors", "DimensionMismatch"),
    "Model": ("polyterm.model.model", "Model"),
    "Term": ("polyterm.model.term", "Term"),
    "TermPart": ("polyterm.model.term", "TermPart"),
    "TermStats": ("polyterm.model.term", "TermStats"),
    "StatsFailure": ("polyterm.model.term", "StatsFailure"),
    "Subset": ("polyterm.model.subset", "Subset"),
    "use_subset": ("polyterm.model.subset", "use_subset"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public classes and functions on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'polyterm' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))

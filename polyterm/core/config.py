"""Numerical configuration shared by the matrix kernel and the solver.

Defaults can be overridden per call by passing a :class:`KernelConfig`, or
process-wide through the environment:

- ``POLYTERM_PIVOT_RTOL``: relative pivot tolerance used by Gauss-Jordan
  inversion (pivots with ``|p| <= rtol * max|row|`` of the row and column
  equilibrated matrix count as zero).
- ``POLYTERM_DEVICE``: ``"cpu"`` (default) or ``"gpu"``/``"cuda"``.
- ``POLYTERM_USE_GPU``: truthy (``1``, ``true``, ``yes``, ``on``) selects the
  GPU when ``POLYTERM_DEVICE`` is unset.

The environment is read on every :func:`get_config` call, so the config is
the only place the device choice is made.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from .errors import ValidationError

__all__ = ["DEFAULT_PIVOT_RTOL", "KernelConfig", "get_config"]

DEFAULT_PIVOT_RTOL = 1e-10

_DEVICES = {"cpu", "gpu", "cuda"}
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class KernelConfig:
    """Tolerances and device preference for dense kernel operations."""

    pivot_rtol: float = DEFAULT_PIVOT_RTOL
    device: str = "cpu"

    def __post_init__(self) -> None:
        if not (float(self.pivot_rtol) >= 0.0):
            raise ValidationError(
                f"pivot_rtol must be a non-negative number; got {self.pivot_rtol!r}",
            )
        dev = str(self.device).strip().lower()
        if dev not in _DEVICES:
            raise ValidationError(
                f"device must be one of {sorted(_DEVICES)}; got {self.device!r}",
            )
        object.__setattr__(self, "pivot_rtol", float(self.pivot_rtol))
        object.__setattr__(self, "device", "gpu" if dev == "cuda" else dev)

    @property
    def prefer_gpu(self) -> bool:
        return self.device == "gpu"

    def with_options(self, **changes) -> KernelConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> KernelConfig:
        """Build a config from ``POLYTERM_*`` environment variables."""
        raw_tol = os.environ.get("POLYTERM_PIVOT_RTOL", "").strip()
        try:
            tol = float(raw_tol) if raw_tol else DEFAULT_PIVOT_RTOL
        except ValueError as exc:
            raise ValidationError(
                f"POLYTERM_PIVOT_RTOL must be a float; got {raw_tol!r}",
            ) from exc
        dev = os.environ.get("POLYTERM_DEVICE", "").strip().lower()
        if not dev:
            flag = os.environ.get("POLYTERM_USE_GPU", "").strip().lower()
            dev = "gpu" if flag in _TRUTHY else "cpu"
        return cls(pivot_rtol=tol, device=dev)


def get_config() -> KernelConfig:
    """Process-wide default config, read from the current environment."""
    return KernelConfig.from_env()

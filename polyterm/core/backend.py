"""Optional GPU dispatch for the dense matrix product.

The kernel stores every matrix as a NumPy buffer. When CuPy is importable and
the caller's :class:`~polyterm.core.config.KernelConfig` asks for the GPU,
:func:`dot` runs the product on the device and copies the result back, so
callers always see NumPy arrays. The device choice itself lives in the config.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import numpy as np

try:  # pragma: no cover - optional dependency
    import cupy as _cp  # type: ignore
    _CUPY_OK = True
except ImportError:  # pragma: no cover - optional dependency
    _cp = None  # type: ignore
    _CUPY_OK = False

__all__ = ["dot", "free_gpu_cache", "gpu_available"]

_LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def gpu_available() -> bool:
    """Return True if CuPy is importable and a CUDA device is visible."""
    if not _CUPY_OK:
        return False
    try:  # pragma: no cover - environment-specific
        return int(_cp.cuda.runtime.getDeviceCount()) > 0  # type: ignore[attr-defined]
    except (AttributeError, RuntimeError) as exc:  # pragma: no cover - environment-specific
        _LOGGER.debug("GPU detection failed; assuming CPU. Error: %s", exc)
        return False


def _to_cpu(x: Any) -> np.ndarray:
    if _CUPY_OK and isinstance(x, _cp.ndarray):  # type: ignore[attr-defined]
        return _cp.asnumpy(x).astype(np.float64, copy=False)  # type: ignore[attr-defined]
    return np.asarray(x, dtype=np.float64)


def _cpu_dot(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    return np.asarray(A, dtype=np.float64) @ np.asarray(B, dtype=np.float64)


def dot(A: np.ndarray, B: np.ndarray, prefer_gpu: bool = False) -> np.ndarray:
    """Dense product ``A @ B``; on the GPU only when requested and present."""
    if not (prefer_gpu and gpu_available()):
        return _cpu_dot(A, B)
    try:  # pragma: no cover - environment-specific
        Ad = _cp.asarray(A, dtype=np.float64)  # type: ignore[attr-defined]
        Bd = _cp.asarray(B, dtype=np.float64)  # type: ignore[attr-defined]
        return _to_cpu(Ad @ Bd)
    except (AttributeError, TypeError, ValueError, RuntimeError) as exc:  # pragma: no cover
        _LOGGER.debug("GPU product failed; retrying on CPU. Error: %s", exc)
        return _cpu_dot(A, B)
    finally:
        free_gpu_cache()


def free_gpu_cache() -> None:
    """Release cached GPU memory if CuPy is active."""
    if not _CUPY_OK:
        return
    try:  # pragma: no cover - environment-specific
        _cp.get_default_memory_pool().free_all_blocks()  # type: ignore[attr-defined]
        _cp.get_default_pinned_memory_pool().free_all_blocks()  # type: ignore[attr-defined]
    except (AttributeError, RuntimeError) as exc:  # pragma: no cover - environment-specific
        _LOGGER.debug("GPU cache cleanup failed: %s", exc)

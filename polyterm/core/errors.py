"""Exception taxonomy for polyterm.

Every error raised by the kernel, the solver and the term machinery derives
from :class:`PolytermError`. Each class also inherits the closest builtin so
callers that only know about ``ValueError`` or ``ZeroDivisionError`` keep
working.
"""

from __future__ import annotations

import numpy as np

__all__ = [
    "DimensionMismatch",
    "DivideByZero",
    "PolytermError",
    "SingularMatrix",
    "ValidationError",
]


class PolytermError(Exception):
    """Base class for all polyterm errors."""


class ValidationError(PolytermError, ValueError):
    """Malformed input such as a term part with the wrong arity."""


class DivideByZero(PolytermError, ZeroDivisionError):
    """Negative exponent applied to a column whose range spans or touches zero."""


class SingularMatrix(PolytermError, np.linalg.LinAlgError):
    """No usable pivot was found during Gauss-Jordan inversion."""


class DimensionMismatch(PolytermError, ValueError):
    """Operand shapes are incompatible for the requested operation."""

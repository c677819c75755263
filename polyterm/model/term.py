"""Polynomial/lag regression terms.

A :class:`Term` is a product of input columns, each raised to an exponent and
optionally lagged, e.g. ``x^2 * y[t-1]``. Terms are identified by a canonical,
order-independent digest of their parts, materialize their data column lazily
(once per subset), and can report the statistics they would have if appended
to their owning model.
"""

from __future__ import annotations

import hashlib
import logging
import math
import operator
import threading
import weakref
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, NamedTuple, Union

import numpy as np

from polyterm.core.errors import DivideByZero, PolytermError, ValidationError
from polyterm.core.matrix import Matrix
from polyterm.core.regression import lstsq

from .subset import Subset, resolve_subset

if TYPE_CHECKING:
    from .model import ModelLike

__all__ = [
    "MaterializationStatus",
    "StatsFailure",
    "StatsResult",
    "Term",
    "TermPart",
    "TermStats",
]

_LOGGER = logging.getLogger(__name__)

_PART_ERROR = "Part does not match: [col, exp (,lag)]"

# Failures that make a candidate term unusable without being programming errors.
_SOFT_ERRORS = (PolytermError, ArithmeticError, IndexError, ValueError, np.linalg.LinAlgError)


class TermPart(NamedTuple):
    """One ``(column, exponent, lag)`` factor of a term."""

    column: int
    exponent: float
    lag: int = 0


class MaterializationStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class TermStats:
    """Fit statistics of the coefficient belonging to an appended term."""

    coeff: float
    t: float
    pt: float
    mse: float

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class StatsFailure:
    """Tagged result of a statistics request that could not be computed.

    Carries the term's parts and the subset so callers can report or skip the
    candidate without re-deriving context.
    """

    parts: tuple[TermPart, ...]
    subset: Subset
    error: BaseException

    ok: ClassVar[bool] = False

    @property
    def reason(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


StatsResult = Union[TermStats, StatsFailure]


def _as_index(value: Any, name: str) -> int:
    try:
        idx = operator.index(value)
    except TypeError:
        if isinstance(value, (float, np.floating)) and float(value).is_integer():
            idx = int(value)
        else:
            raise ValidationError(f"{name} must be an integer; got {value!r}") from None
    if idx < 0:
        raise ValidationError(f"{name} must be non-negative; got {idx}")
    return idx


def _normalize_part(part: Any) -> TermPart:
    if isinstance(part, (str, bytes)) or not isinstance(part, (Sequence, np.ndarray)):
        raise ValidationError(_PART_ERROR)
    if len(part) not in (2, 3):
        raise ValidationError(_PART_ERROR)
    column = _as_index(part[0], "column")
    try:
        exponent = float(part[1])
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"exponent must be a real number; got {part[1]!r}") from exc
    if not math.isfinite(exponent):
        raise ValidationError(f"exponent must be finite; got {exponent}")
    lag = _as_index(part[2], "lag") if len(part) == 3 else 0
    return TermPart(column, exponent, lag)


def _normalize_parts(parts: Any) -> tuple[TermPart, ...]:
    if isinstance(parts, Term):
        return parts.parts
    if isinstance(parts, (str, bytes)) or not isinstance(parts, (Sequence, np.ndarray)):
        raise ValidationError("parts must be a sequence of [col, exp (,lag)] parts")
    normalized = tuple(_normalize_part(p) for p in parts)
    if not normalized:
        raise ValidationError("a term needs at least one part")
    return normalized


def _num(x: float) -> str:
    # Integral values render without a fractional part so 2 and 2.0 agree.
    return str(int(x)) if float(x).is_integer() else repr(float(x))


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()  # noqa: S324


def _digest(parts: Sequence[TermPart]) -> str:
    part_digests = sorted(_md5(f"{_num(p.column)},{_num(p.exponent)},{_num(p.lag)}") for p in parts)
    return _md5(",".join(part_digests))


class Term:
    """Product of lagged, exponentiated input columns.

    Parameters
    ----------
    model : ModelLike
        Owner providing ``data``, ``X``, ``y``, ``highest_lag`` and
        ``DEFAULT_SUBSET``. Only a weak reference is kept.
    parts : sequence of ``[col, exp]`` or ``[col, exp, lag]``
        ``col`` indexes a column of ``model.data(subset)``; a missing ``lag``
        defaults to 0.

    Notes
    -----
    Construction validates the parts and computes nothing else. Use
    :meth:`create` (or :meth:`materialize`) to build the default column and
    record whether the term is usable.
    """

    def __init__(self, model: ModelLike, parts: Any):
        self._parts = _normalize_parts(parts)
        self._digest = _digest(self._parts)
        self._model_ref = weakref.ref(model)
        self._cache: dict[Subset, Matrix] = {}
        self._lock = threading.RLock()
        self._status = MaterializationStatus.PENDING
        self._error: BaseException | None = None

    @classmethod
    def create(cls, model: ModelLike, parts: Any, subset: Subset | str | None = None) -> Term:
        """Construct a term and try to materialize its column.

        Never raises for data-dependent failures; inspect :attr:`status` and
        :attr:`error` instead. Malformed parts still raise ``ValidationError``.
        """
        term = cls(model, parts)
        term.materialize(subset)
        return term

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    @staticmethod
    def hash(term: Term | Any) -> str:
        """Canonical digest of a term or of a raw parts list."""
        if isinstance(term, Term):
            return term.digest
        return _digest(_normalize_parts(term))

    @property
    def digest(self) -> str:
        return self._digest

    def equals(self, other: Term | Any) -> bool:
        """True when ``other`` (a term or parts list) has the same digest.

        A malformed parts list is never equal to a term.
        """
        try:
            return Term.hash(other) == self._digest
        except ValidationError:
            return False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        return self._digest == other._digest

    def __hash__(self) -> int:
        return hash(self._digest)

    def value_of(self) -> list[list[float]]:
        """Plain ``[[col, exp, lag], ...]`` copy of the parts."""
        return [list(p) for p in self._parts]

    # ------------------------------------------------------------------
    # Derived attributes
    # ------------------------------------------------------------------
    @property
    def parts(self) -> tuple[TermPart, ...]:
        return self._parts

    @property
    def lag(self) -> int:
        return max(p.lag for p in self._parts)

    @property
    def is_intercept(self) -> bool:
        return len(self._parts) == 1 and self._parts[0].column == 0 and self._parts[0].exponent == 0

    @property
    def model(self) -> ModelLike:
        model = self._model_ref()
        if model is None:
            raise ReferenceError("the model owning this term no longer exists")
        return model

    @property
    def status(self) -> MaterializationStatus:
        return self._status

    @property
    def error(self) -> BaseException | None:
        """Error recorded by the last failed :meth:`materialize`, if any."""
        return self._error

    @property
    def usable(self) -> bool:
        return self._status is MaterializationStatus.READY

    def _subset(self, subset: Subset | str | None) -> Subset:
        return resolve_subset(subset, Subset.coerce(self.model.DEFAULT_SUBSET))

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------
    def materialize(self, subset: Subset | str | None = None) -> bool:
        """Build the column for ``subset`` and record the outcome."""
        with self._lock:
            try:
                self.col(subset)
            except _SOFT_ERRORS as exc:
                _LOGGER.debug("Materializing %r failed: %s", self, exc)
                self._status = MaterializationStatus.FAILED
                self._error = exc
                return False
            self._status = MaterializationStatus.READY
            self._error = None
            return True

    def col(self, subset: Subset | str | None = None) -> Matrix:
        """Data column (``n x 1``) of this term for ``subset``.

        The first ``lag`` rows are NaN; use :meth:`X`/:meth:`y` for rows aligned
        with the model.

        Raises
        ------
        DivideByZero
            If a negative exponent meets a column whose range touches zero.
        """
        subset = self._subset(subset)
        with self._lock:
            cached = self._cache.get(subset)
            if cached is not None:
                return cached

            data = self.model.data(subset)
            prod = Matrix.filled(data.rows, 1, 1.0)
            for part in self._parts:
                column = data.col(part.column)
                if part.exponent < 0 and column.rows and column.max() * column.min() <= 0:
                    raise DivideByZero(f"Divide by zero error for column {part.column}")
                prod = prod.dot_multiply(column.dot_pow(part.exponent).shift(part.lag))

            self._cache[subset] = prod
            return prod

    def _aligned_lag(self) -> int:
        return max(int(self.model.highest_lag()), self.lag)

    def X(self, subset: Subset | str | None = None) -> Matrix:  # noqa: N802
        """Model design matrix with this term appended, lag-aligned."""
        subset = self._subset(subset)
        return self.model.X(subset).hstack(self.col(subset)).lo(self._aligned_lag())

    def y(self, subset: Subset | str | None = None) -> Matrix:
        """Model response aligned with :meth:`X`."""
        subset = self._subset(subset)
        return self.model.y(subset).lo(self._aligned_lag())

    def clear_cache(self) -> Term:
        """Drop cached columns; the term is PENDING until materialized again."""
        with self._lock:
            self._cache.clear()
            self._status = MaterializationStatus.PENDING
            self._error = None
        return self

    def is_cached(self, subset: Subset | str | None = None) -> bool:
        subset = self._subset(subset)
        with self._lock:
            return subset in self._cache

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def get_stats(self, subset: Subset | str | None = None) -> StatsResult:
        """Refit the owning model with this term appended.

        Returns the coefficient, t statistic and p value of the appended column
        together with the fit's MSE, or a :class:`StatsFailure` if the column
        cannot be built or the fit is singular.
        """
        subset = self._subset(subset)
        try:
            fit = lstsq(self.X(subset), self.y(subset), config=getattr(self.model, "config", None))
        except _SOFT_ERRORS as exc:
            _LOGGER.debug("Statistics for %r on subset %s failed: %s", self, subset.value, exc)
            return StatsFailure(self._parts, subset, exc)
        last = fit.weights.rows - 1
        return TermStats(
            coeff=fit.weights.get(last, 0),
            t=fit.t.get(last, 0),
            pt=fit.pt.get(last, 0),
            mse=fit.mse,
        )

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------
    def pretty(self, names: Sequence[str] | None = None) -> str:
        """``b^2[0] * c^1[1]`` style rendering; letters unless ``names`` given."""

        def _name(col: int) -> str:
            if names is not None and col < len(names):
                return str(names[col])
            return chr(col + 97)

        return " * ".join(f"{_name(p.column)}^{_num(p.exponent)}[{p.lag}]" for p in self._parts)

    def __repr__(self) -> str:
        return f"Term < {self.pretty()} >"

"""In-memory regression model that owns terms.

The :class:`Model` keeps a numeric table split into contiguous subsets, a
response column and the ordered set of currently selected terms. It provides
the lookups a :class:`~polyterm.model.term.Term` needs (``data``, ``X``,
``y``, ``highest_lag``) and a fault-tolerant batch scorer for candidate terms.
Choosing which candidates to keep is left to the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, Union

import numpy as np
import pandas as pd

from polyterm.core.config import KernelConfig, get_config
from polyterm.core.errors import ValidationError
from polyterm.core.matrix import Matrix
from polyterm.core.regression import LstsqResult, lstsq

from .subset import Subset, resolve_subset
from .term import MaterializationStatus, Term

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = ["Model", "ModelLike"]

_LOGGER = logging.getLogger(__name__)

TableLike = Union[pd.DataFrame, np.ndarray]

SCORE_COLUMNS = ["term", "digest", "ok", "coeff", "t", "pt", "mse", "error"]


class ModelLike(Protocol):
    """What a term needs from its owner."""

    DEFAULT_SUBSET: ClassVar[Subset]

    def data(self, subset: Subset) -> Matrix: ...

    def X(self, subset: Subset) -> Matrix: ...  # noqa: N802

    def y(self, subset: Subset) -> Matrix: ...

    def highest_lag(self) -> int: ...


def _as_table(data: TableLike) -> tuple[list[str] | None, np.ndarray]:
    if isinstance(data, pd.DataFrame):
        names = [str(c) for c in data.columns]
        values = data.to_numpy(dtype=np.float64)
    else:
        names = None
        values = np.asarray(data, dtype=np.float64)
    if values.ndim != 2:
        raise ValidationError(f"data must be 2-D; got ndim={values.ndim}")
    return names, values


def _check_fraction(value: float, name: str) -> float:
    frac = float(value)
    if not (0.0 <= frac < 1.0):
        raise ValidationError(f"{name} must be in [0, 1); got {value!r}")
    return frac


class Model:
    """Table, subset partition, response and selected terms.

    Parameters
    ----------
    data : DataFrame or 2-D array
        Raw input table; rows are observations in time order.
    response : int or str, default 0
        Column (index or DataFrame name) holding the response variable.
    cross_fraction, test_fraction : float
        Share of trailing rows reserved for the ``CROSS`` and ``TEST``
        subsets. ``FIT`` takes the leading remainder.
    config : KernelConfig, optional
        Numerical settings for fits. Without one, :func:`get_config` is
        consulted on every fit, so environment changes take effect.
    """

    DEFAULT_SUBSET: ClassVar[Subset] = Subset.FIT

    def __init__(
        self,
        data: TableLike,
        response: int | str = 0,
        *,
        cross_fraction: float = 0.0,
        test_fraction: float = 0.0,
        config: KernelConfig | None = None,
    ):
        self._config = config
        self._cross_fraction = _check_fraction(cross_fraction, "cross_fraction")
        self._test_fraction = _check_fraction(test_fraction, "test_fraction")
        if self._cross_fraction + self._test_fraction >= 1.0:
            raise ValidationError("cross_fraction + test_fraction must be < 1")
        self._terms: list[Term] = []
        self._names: list[str] | None = None
        self._subsets: dict[Subset, Matrix] = {}
        self._load(data)
        self._response = self._column_index(response)

    def _column_index(self, column: int | str) -> int:
        if isinstance(column, str):
            if self._names is None or column not in self._names:
                raise ValidationError(f"unknown column {column!r}")
            return self._names.index(column)
        idx = int(column)
        if not 0 <= idx < self.n_columns:
            raise ValidationError(f"column index {idx} out of range for {self.n_columns} columns")
        return idx

    def _load(self, data: TableLike) -> None:
        names, values = _as_table(data)
        n = values.shape[0]
        n_test = int(round(n * self._test_fraction))
        n_cross = int(round(n * self._cross_fraction))
        n_fit = n - n_cross - n_test
        if n_fit <= 0:
            raise ValidationError(f"no rows left for the fit subset (n={n})")
        bounds = {
            Subset.FIT: (0, n_fit),
            Subset.CROSS: (n_fit, n_fit + n_cross),
            Subset.TEST: (n_fit + n_cross, n),
            Subset.ALL: (0, n),
        }
        self._names = names
        self._subsets = {s: Matrix.from_array(values[a:b]) for s, (a, b) in bounds.items()}
        _LOGGER.debug(
            "Loaded %d rows x %d columns (fit=%d, cross=%d, test=%d)",
            n, values.shape[1], n_fit, n_cross, n_test,
        )

    # ------------------------------------------------------------------
    # Collaborator contract used by Term
    # ------------------------------------------------------------------
    @property
    def config(self) -> KernelConfig:
        return self._config if self._config is not None else get_config()

    def _subset(self, subset: Subset | str | None) -> Subset:
        return resolve_subset(subset, self.DEFAULT_SUBSET)

    def data(self, subset: Subset | str | None = None) -> Matrix:
        return self._subsets[self._subset(subset)]

    def X(self, subset: Subset | str | None = None) -> Matrix:  # noqa: N802
        """Columns of the selected terms (lagged rows still NaN)."""
        subset = self._subset(subset)
        design = Matrix(self.data(subset).rows, 0)
        for term in self._terms:
            design = design.hstack(term.col(subset))
        return design

    def y(self, subset: Subset | str | None = None) -> Matrix:
        return self.data(subset).col(self._response)

    def highest_lag(self) -> int:
        return max((t.lag for t in self._terms), default=0)

    # ------------------------------------------------------------------
    # Term management
    # ------------------------------------------------------------------
    @property
    def terms(self) -> tuple[Term, ...]:
        return tuple(self._terms)

    @property
    def column_names(self) -> list[str] | None:
        return None if self._names is None else list(self._names)

    @property
    def n_columns(self) -> int:
        return self._subsets[Subset.ALL].cols

    @property
    def response(self) -> int:
        return self._response

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, term: Term | Any) -> bool:
        return any(t.equals(term) for t in self._terms)

    def term(self, parts: Any) -> Term:
        """Build a term owned by this model (see :meth:`Term.create`)."""
        return Term.create(self, parts)

    def _own(self, term: Term | Any) -> Term:
        if not isinstance(term, Term):
            return self.term(term)
        if term.model is not self:
            raise ValidationError(f"{term!r} belongs to a different model")
        return term

    def add_term(self, term: Term | Any) -> Term:
        """Select ``term``; an equal term already selected is returned as is."""
        term = self._own(term)
        if term.status is MaterializationStatus.FAILED:
            raise ValidationError(f"cannot select unusable {term!r}: {term.error}") from term.error
        for existing in self._terms:
            if existing == term:
                return existing
        self._terms.append(term)
        return term

    def remove_term(self, term: Term | Any) -> Term:
        for i, existing in enumerate(self._terms):
            if existing.equals(term):
                return self._terms.pop(i)
        raise ValidationError(f"{term!r} is not part of the model")

    def set_data(self, data: TableLike) -> None:
        """Replace the table and invalidate every selected term's cache."""
        _, values = _as_table(data)
        if values.shape[1] != self.n_columns:
            raise ValidationError(
                f"new data has {values.shape[1]} columns; expected {self.n_columns}",
            )
        self._load(data)
        for term in self._terms:
            term.clear_cache()

    # ------------------------------------------------------------------
    # Fitting and scoring
    # ------------------------------------------------------------------
    def fit(self, subset: Subset | str | None = None) -> LstsqResult:
        """Least-squares fit of the selected terms, rows aligned by lag."""
        subset = self._subset(subset)
        lag = self.highest_lag()
        return lstsq(self.X(subset).lo(lag), self.y(subset).lo(lag), config=self.config)

    def score_terms(self, candidates: Iterable[Term | Any], subset: Subset | str | None = None) -> pd.DataFrame:
        """Evaluate candidates one by one; failures become rows with ``ok=False``."""
        subset = self._subset(subset)
        rows = []
        for candidate in candidates:
            term = self._own(candidate)
            stats = term.get_stats(subset)
            row = {"term": term.pretty(self._names), "digest": term.digest, "ok": stats.ok}
            if stats.ok:
                row.update(coeff=stats.coeff, t=stats.t, pt=stats.pt, mse=stats.mse, error=None)
            else:
                row.update(coeff=np.nan, t=np.nan, pt=np.nan, mse=np.nan, error=stats.reason)
            rows.append(row)
        return pd.DataFrame(rows, columns=SCORE_COLUMNS)

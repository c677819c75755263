"""Dense real-valued matrix kernel.

A :class:`Matrix` is an immutable ``rows x cols`` value backed by a flat,
row-major, read-only ``float64`` buffer. Every operation returns a new matrix;
the only in-place work happens on the private copies used by
:meth:`Matrix.inverse`.

Inversion is plain Gauss-Jordan elimination run simultaneously on the matrix
and an identity twin. Pivots are tested against a scale-relative tolerance so
that a zero pivot is detected reliably and reported as
:class:`~polyterm.core.errors.SingularMatrix` instead of leaking NaN/Inf into
later arithmetic.
"""

from __future__ import annotations

import operator
from typing import TYPE_CHECKING, Any

import numpy as np

from . import backend as _bk
from .config import KernelConfig, get_config
from .errors import DimensionMismatch, SingularMatrix, ValidationError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

__all__ = ["Matrix"]


def _size(value: Any, name: str) -> int:
    try:
        size = operator.index(value)
    except TypeError as exc:
        raise ValidationError(f"{name} must be an integer; got {value!r}") from exc
    if size < 0:
        raise ValidationError(f"{name} must be non-negative; got {size}")
    return size


def _swap_rows(a: NDArray[np.float64], i: int, j: int) -> None:
    a[[i, j]] = a[[j, i]]


class Matrix:
    """Immutable dense matrix of IEEE-754 doubles."""

    __slots__ = ("_cols", "_data", "_rows")

    def __init__(self, rows: int, cols: int, data: ArrayLike | None = None):
        rows = _size(rows, "rows")
        cols = _size(cols, "cols")
        if data is None:
            buf = np.zeros(rows * cols, dtype=np.float64)
        else:
            buf = np.array(data, dtype=np.float64).reshape(-1)
            if buf.size != rows * cols:
                raise DimensionMismatch(
                    f"data has {buf.size} values but shape {rows}x{cols} needs {rows * cols}",
                )
        buf.flags.writeable = False
        self._rows = rows
        self._cols = cols
        self._data = buf

    @classmethod
    def _wrap(cls, grid: NDArray[np.float64]) -> Matrix:
        """Adopt a 2-D array produced internally (no defensive copy)."""
        out = cls.__new__(cls)
        out._rows, out._cols = (int(s) for s in grid.shape)
        buf = np.ascontiguousarray(grid, dtype=np.float64).reshape(-1)
        buf.flags.writeable = False
        out._data = buf
        return out

    def _grid(self) -> NDArray[np.float64]:
        return self._data.reshape(self._rows, self._cols)

    def _same_shape(self, other: Matrix, op: str) -> None:
        if not isinstance(other, Matrix):
            raise TypeError(f"{op} expects a Matrix; got {type(other).__name__}")
        if self.shape != other.shape:
            raise DimensionMismatch(
                f"{op} requires identical shapes; got {self.shape} and {other.shape}",
            )

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_array(cls, array: ArrayLike) -> Matrix:
        """Copy a 1-D (as a column) or 2-D array-like into a new matrix."""
        arr = np.array(array, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2:
            raise DimensionMismatch(f"expected a 1-D or 2-D array; got ndim={arr.ndim}")
        return cls._wrap(arr)

    @classmethod
    def zeros(cls, n: int, m: int) -> Matrix:
        return cls(n, m)

    @classmethod
    def ones(cls, n: int, m: int | None = None) -> Matrix:
        """Matrix with 1s on the main diagonal (identity when square)."""
        n = _size(n, "rows")
        m = n if m is None else _size(m, "cols")
        return cls._wrap(np.eye(n, m, dtype=np.float64))

    @classmethod
    def eye(cls, n: int) -> Matrix:
        return cls.ones(n)

    @classmethod
    def filled(cls, n: int, m: int, value: float) -> Matrix:
        return cls._wrap(np.full((_size(n, "rows"), _size(m, "cols")), float(value)))

    @classmethod
    def random(cls, n: int, m: int, *, seed: int | np.random.Generator | None = None) -> Matrix:
        """Uniform [0, 1) entries."""
        rng = np.random.default_rng(seed)
        return cls._wrap(rng.random((_size(n, "rows"), _size(m, "cols"))))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def shape(self) -> tuple[int, int]:
        return (self._rows, self._cols)

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def data(self) -> NDArray[np.float64]:
        """Read-only flat row-major buffer."""
        return self._data

    def to_numpy(self) -> NDArray[np.float64]:
        """Writable 2-D copy of the values."""
        return self._grid().copy()

    def get(self, i: int, j: int) -> float:
        if not (0 <= i < self._rows and 0 <= j < self._cols):
            raise IndexError(f"index ({i}, {j}) out of range for shape {self.shape}")
        return float(self._data[i * self._cols + j])

    def max(self) -> float:
        if self._data.size == 0:
            raise ValidationError("max() of an empty matrix")
        return float(np.max(self._data))

    def min(self) -> float:
        if self._data.size == 0:
            raise ValidationError("min() of an empty matrix")
        return float(np.min(self._data))

    def clone(self) -> Matrix:
        return Matrix(self._rows, self._cols, self._data)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def multiply(self, other: Matrix, *, config: KernelConfig | None = None) -> Matrix:
        """Matrix product ``self @ other``.

        Runs on the GPU when ``config.device`` (or, without a config, the
        environment) asks for it and CuPy can see a device.
        """
        if not isinstance(other, Matrix):
            raise TypeError(f"multiply expects a Matrix; got {type(other).__name__}")
        if self._cols != other._rows:
            raise DimensionMismatch(
                f"cannot multiply {self._rows}x{self._cols} by {other._rows}x{other._cols}",
            )
        prefer_gpu = (config or get_config()).prefer_gpu
        return Matrix._wrap(_bk.dot(self._grid(), other._grid(), prefer_gpu=prefer_gpu))

    def __matmul__(self, other: Matrix) -> Matrix:
        return self.multiply(other)

    def add(self, other: Matrix | float) -> Matrix:
        if isinstance(other, Matrix):
            self._same_shape(other, "add")
            return Matrix._wrap(self._grid() + other._grid())
        return Matrix._wrap(self._grid() + float(other))

    def subtract(self, other: Matrix | float) -> Matrix:
        if isinstance(other, Matrix):
            self._same_shape(other, "subtract")
            return Matrix._wrap(self._grid() - other._grid())
        return Matrix._wrap(self._grid() - float(other))

    def scale(self, factor: float) -> Matrix:
        return Matrix._wrap(self._grid() * float(factor))

    def dot_multiply(self, other: Matrix) -> Matrix:
        """Elementwise (Hadamard) product."""
        self._same_shape(other, "dot_multiply")
        return Matrix._wrap(self._grid() * other._grid())

    def dot_pow(self, exponent: float) -> Matrix:
        """Elementwise power."""
        return Matrix._wrap(np.power(self._grid(), float(exponent)))

    def transpose(self) -> Matrix:
        return Matrix._wrap(self._grid().T)

    @property
    def T(self) -> Matrix:  # noqa: N802
        return self.transpose()

    def inverse(self, *, tol: float | None = None, config: KernelConfig | None = None) -> Matrix:
        """Invert a square matrix by Gauss-Jordan elimination.

        Rows and then columns are first scaled by their largest magnitude, so
        ``A_s = D_r A D_c`` and ``A^-1 = D_c A_s^-1 D_r``. On ``A_s`` a pivot
        counts as zero when ``|p| <= rtol * max|row|`` (``rtol`` from
        ``config``). When an absolute ``tol`` is given the matrix is used
        unscaled and a pivot counts as zero when ``|p| <= tol``. A zero pivot
        is replaced by the first usable row below it; if there is none the
        matrix is singular.

        Raises
        ------
        DimensionMismatch
            If the matrix is not square.
        SingularMatrix
            If some column has no usable pivot.
        """
        n, m = self.shape
        if n != m:
            raise DimensionMismatch(f"inverse requires a square matrix; got {n}x{m}")
        if n == 0:
            return Matrix(0, 0)
        work = self._grid().copy()
        if not np.all(np.isfinite(work)):
            raise ValidationError("inverse: matrix contains NaN/Inf entries")
        twin = np.eye(n, dtype=np.float64)
        if tol is None:
            row_scale = np.max(np.abs(work), axis=1)
            if np.any(row_scale == 0.0):
                raise SingularMatrix(f"matrix is singular: row {int(np.argmin(row_scale))} is zero")
            work /= row_scale[:, None]
            col_scale = np.max(np.abs(work), axis=0)
            if np.any(col_scale == 0.0):
                raise SingularMatrix(f"matrix is singular: column {int(np.argmin(col_scale))} is zero")
            work /= col_scale[None, :]
            rtol = (config or get_config()).pivot_rtol
            thresh = rtol * np.max(np.abs(work), axis=1)
        else:
            row_scale = col_scale = None
            thresh = np.full(n, float(tol))

        for i in range(n):
            if abs(work[i, i]) <= thresh[i]:
                usable = np.flatnonzero(np.abs(work[i + 1 :, i]) > thresh[i + 1 :])
                if usable.size == 0:
                    raise SingularMatrix(f"matrix is singular: no usable pivot in column {i}")
                k = i + 1 + int(usable[0])
                _swap_rows(work, i, k)
                _swap_rows(twin, i, k)
                thresh[[i, k]] = thresh[[k, i]]
            pivot = work[i, i]
            work[i] /= pivot
            twin[i] /= pivot
            factors = work[:, i].copy()
            factors[i] = 0.0
            work -= np.outer(factors, work[i])
            twin -= np.outer(factors, twin[i])
        if row_scale is not None:
            twin /= col_scale[:, None]
            twin /= row_scale[None, :]
        return Matrix._wrap(twin)

    def inv(self, **kwargs: Any) -> Matrix:
        return self.inverse(**kwargs)

    # ------------------------------------------------------------------
    # Reshaping
    # ------------------------------------------------------------------
    def shift(self, lag: int) -> Matrix:
        """Shift rows down by ``lag``; the first ``lag`` rows become NaN.

        The NaN rows are not usable data and have to be dropped with
        :meth:`lo` before the matrix enters a fit.
        """
        lag = _size(lag, "lag")
        grid = self._grid()
        out = np.full(grid.shape, np.nan, dtype=np.float64)
        if lag < self._rows:
            out[lag:] = grid[: self._rows - lag]
        return Matrix._wrap(out)

    def hstack(self, other: Matrix) -> Matrix:
        if not isinstance(other, Matrix):
            raise TypeError(f"hstack expects a Matrix; got {type(other).__name__}")
        if self._rows != other._rows:
            raise DimensionMismatch(
                f"hstack requires equal row counts; got {self._rows} and {other._rows}",
            )
        return Matrix._wrap(np.hstack([self._grid(), other._grid()]))

    def lo(self, k: int) -> Matrix:
        """Rows ``k`` to the end."""
        k = _size(k, "k")
        return Matrix._wrap(self._grid()[k:])

    def col(self, j: int) -> Matrix:
        """Column ``j`` as an ``n x 1`` matrix."""
        j = operator.index(j)
        if not 0 <= j < self._cols:
            raise IndexError(f"column {j} out of range for {self._cols} columns")
        return Matrix._wrap(self._grid()[:, j : j + 1])

    # ------------------------------------------------------------------
    # Comparison and display
    # ------------------------------------------------------------------
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(
            np.array_equal(self._data, other._data, equal_nan=True),
        )

    __hash__ = None  # type: ignore[assignment]

    def allclose(self, other: Matrix, *, rtol: float = 1e-9, atol: float = 1e-9) -> bool:
        if not isinstance(other, Matrix) or self.shape != other.shape:
            return False
        return bool(np.allclose(self._data, other._data, rtol=rtol, atol=atol, equal_nan=True))

    def __repr__(self) -> str:
        return f"Matrix({self._rows}x{self._cols})"

    def __str__(self) -> str:
        cells = [[f"{v:g}" for v in row] for row in self._grid()]
        if not cells or not cells[0]:
            return ""
        widths = [max(len(row[j]) for row in cells) for j in range(self._cols)]
        return "\n".join(
            " ".join(cell.rjust(w) for cell, w in zip(row, widths)) for row in cells
        ) + "\n"

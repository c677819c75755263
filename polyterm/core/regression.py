"""Ordinary least squares on top of the Matrix kernel.

The normal equations are solved with the kernel's Gauss-Jordan inverse after
scaling every regressor to unit Euclidean norm, so that the pivot tolerance is
meaningful for polynomial terms of very different magnitudes. A singular or
rank-deficient design surfaces as :class:`SingularMatrix`.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy import stats

from .config import KernelConfig
from .errors import DimensionMismatch, SingularMatrix, ValidationError
from .matrix import Matrix

__all__ = ["LstsqResult", "lstsq"]


@dataclass(frozen=True)
class LstsqResult:
    """Fitted weights and per-coefficient inference for ``y ~ X``.

    ``weights``, ``t`` and ``pt`` are ``k x 1`` matrices aligned with the
    columns of ``X``. ``mse`` is ``SSE / n``; ``sigma2`` is the unbiased
    residual variance ``SSE / (n - k)`` used for the t statistics.
    """

    weights: Matrix
    t: Matrix
    pt: Matrix
    mse: float
    sigma2: float
    df: int
    n_obs: int


def lstsq(X: Matrix, y: Matrix, *, config: KernelConfig | None = None) -> LstsqResult:
    """Fit ``y = X w + e`` by least squares.

    Raises
    ------
    DimensionMismatch
        If ``y`` is not ``n x 1`` with the same ``n`` as ``X``, or if there are
        not more usable rows than regressors.
    SingularMatrix
        If ``X`` is rank deficient (including an all-zero column).
    """
    n, k = X.shape
    if y.shape != (n, 1):
        raise DimensionMismatch(f"y must be {n}x1 to match X; got {y.shape[0]}x{y.shape[1]}")
    if k == 0:
        raise DimensionMismatch("X has no regressors")
    if n <= k:
        raise DimensionMismatch(
            f"need more usable rows than regressors; got n={n}, k={k}",
        )

    Xd = X.to_numpy()
    if not (np.all(np.isfinite(Xd)) and np.all(np.isfinite(y.data))):
        raise ValidationError("X and y must be finite; trim lagged rows with lo() first")

    norms = np.sqrt(np.sum(Xd * Xd, axis=0))
    zero_cols = np.flatnonzero(norms == 0.0)
    if zero_cols.size:
        raise SingularMatrix(f"design column {int(zero_cols[0])} is identically zero")
    D = Matrix.from_array(np.diag(1.0 / norms))

    Xs = X.multiply(D, config=config)
    XsT = Xs.T
    G_inv = XsT.multiply(Xs, config=config).inverse(config=config)
    w_scaled = G_inv.multiply(XsT.multiply(y, config=config), config=config)
    weights = D.multiply(w_scaled, config=config)

    resid = y.subtract(X.multiply(weights, config=config))
    sse = float(resid.T.multiply(resid, config=config).get(0, 0))
    df = n - k
    sigma2 = sse / df
    var_w = sigma2 * np.diag(G_inv.to_numpy()) / (norms * norms)

    w = weights.data
    if not (np.all(np.isfinite(w)) and np.all(np.isfinite(var_w))):
        raise SingularMatrix("least-squares solve produced non-finite values")

    se = np.sqrt(np.maximum(var_w, 0.0))
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(se > 0.0, w / se, np.copysign(np.inf, w))
    t = np.where((se == 0.0) & (w == 0.0), 0.0, t)
    pt = 2.0 * stats.t.sf(np.abs(t), df)

    return LstsqResult(
        weights=weights,
        t=Matrix.from_array(t),
        pt=Matrix.from_array(pt),
        mse=sse / n,
        sigma2=sigma2,
        df=df,
        n_obs=n,
    )

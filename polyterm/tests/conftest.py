from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest


def pytest_configure() -> None:
    """Ensure the project root is on sys.path.

    The package lives in `<root>/polyterm`, so running pytest from inside the
    package directory would otherwise fail to import `polyterm` when it has
    not been installed.
    """

    repo_root = Path(__file__).resolve().parents[2]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def table():
    # y, x1, x2 with column 1 = [1..5] and column 2 = [10..50]
    return pd.DataFrame({
        "y": [3.0, 5.0, 4.0, 8.0, 9.0],
        "x1": [1.0, 2.0, 3.0, 4.0, 5.0],
        "x2": [10.0, 20.0, 30.0, 40.0, 50.0],
    })


@pytest.fixture
def series_table(rng):
    n = 120
    x = rng.uniform(1.0, 3.0, n)
    z = rng.standard_normal(n)
    y = np.empty(n)
    y[0] = 0.0
    y[1:] = 1.5 + 0.8 * x[1:] ** 2 - 0.5 * z[:-1] + 0.1 * rng.standard_normal(n - 1)
    return pd.DataFrame({"y": y, "x": x, "z": z})

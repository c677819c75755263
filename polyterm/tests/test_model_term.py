from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from polyterm.core.errors import DivideByZero, SingularMatrix, ValidationError
from polyterm.core.matrix import Matrix
from polyterm.model.model import Model
from polyterm.model.subset import Subset, use_subset
from polyterm.model.term import MaterializationStatus, StatsFailure, Term, TermPart, TermStats

# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def model(table):
    return Model(table, response="y")


@pytest.fixture
def series_model(series_table):
    m = Model(series_table, response="y", cross_fraction=0.25, test_fraction=0.25)
    m.add_term([[0, 0]])
    return m

# ---------------------------------------------------------------------
# Construction and validation
# ---------------------------------------------------------------------

def test_parts_are_normalized(model):
    t = Term(model, [[1, 2], [2, 1, 1]])
    assert t.parts == (TermPart(1, 2.0, 0), TermPart(2, 1.0, 1))
    assert t.value_of() == [[1, 2.0, 0], [2, 1.0, 1]]
    assert t.lag == 1
    assert t.status is MaterializationStatus.PENDING
    assert not t.is_cached()

@pytest.mark.parametrize("parts", [[[1]], [[1, 2, 0, 4]], [1, 2], ["ab"]])
def test_bad_part_arity(model, parts):
    with pytest.raises(ValidationError, match="Part does not match"):
        Term(model, parts)

def test_bad_part_values(model):
    with pytest.raises(ValidationError, match="at least one part"):
        Term(model, [])
    with pytest.raises(ValidationError, match="non-negative"):
        Term(model, [[-1, 2]])
    with pytest.raises(ValidationError, match="integer"):
        Term(model, [[1.5, 2]])
    with pytest.raises(ValidationError, match="lag"):
        Term(model, [[1, 2, 0.5]])
    with pytest.raises(ValidationError, match="exponent"):
        Term(model, [[1, "two"]])

def test_value_of_is_a_copy(model):
    t = Term(model, [[1, 2, 3]])
    parts = t.value_of()
    parts[0][1] = 99
    parts.append([2, 1, 0])
    assert t.value_of() == [[1, 2.0, 3]]

def test_intercept_flag(model):
    assert Term(model, [[0, 0]]).is_intercept
    assert not Term(model, [[0, 1]]).is_intercept
    assert not Term(model, [[1, 0]]).is_intercept
    assert not Term(model, [[0, 0], [1, 1]]).is_intercept

# ---------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------

def test_hash_is_permutation_invariant(model):
    a, b, c = [1, 2, 0], [2, 1, 1], [0, 3, 2]
    assert Term.hash([a, b]) == Term.hash([b, a])
    assert Term.hash([a, b, c]) == Term.hash([c, a, b])
    assert Term(model, [a, b]) == Term(model, [b, a])

def test_hash_is_value_sensitive():
    base = Term.hash([[1, 2, 0]])
    assert Term.hash([[1, 2, 1]]) != base
    assert Term.hash([[1, 3, 0]]) != base
    assert Term.hash([[2, 2, 0]]) != base
    assert Term.hash([[1, 2, 0], [1, 2, 0]]) != base

def test_hash_ignores_representation():
    assert Term.hash([[1, 2]]) == Term.hash([[1, 2.0, 0]])
    assert Term.hash([[1, 2]]) == Term.hash((TermPart(1, 2.0),))
    assert len(Term.hash([[1, 0.5]])) == 32

def test_equals_is_an_equivalence(model):
    t1 = Term(model, [[1, 2], [2, 1, 1]])
    t2 = Term(model, [[2, 1, 1], [1, 2]])
    t3 = Term(model, [[1, 2.0, 0], [2, 1.0, 1]])
    other = Term(model, [[1, 2]])
    assert t1.equals(t1)
    assert t1.equals(t2) and t2.equals(t1)
    assert t2.equals(t3) and t1.equals(t3)
    assert not t1.equals(other)
    assert t1.equals([[2, 1, 1], [1, 2, 0]])
    assert (t1 == t2) == (Term.hash(t1) == Term.hash(t2))
    assert len({t1, t2, t3, other}) == 2

def test_equals_rejects_malformed_parts(model):
    t = Term(model, [[1, 2]])
    assert not t.equals([[1]])
    assert not t.equals([])
    assert not t.equals("x1^2")
    assert not t.equals(None)
    assert not t.equals([[1, "two"]])
    assert t.equals([[1, 2]])

def test_pretty(model):
    t = Term(model, [[1, 2], [2, 1, 1]])
    assert repr(t) == "Term < b^2[0] * c^1[1] >"
    assert t.pretty(model.column_names) == "x1^2[0] * x2^1[1]"
    assert Term(model, [[1, 0.5]]).pretty() == "b^0.5[0]"

# ---------------------------------------------------------------------
# Column materialization
# ---------------------------------------------------------------------

def test_col_squares_and_lags(model):
    t = Term(model, [[1, 2, 0], [2, 1, 1]])
    col = t.col()
    assert col.shape == (5, 1)
    assert np.isnan(col.get(0, 0))
    assert np.array_equal(col.data[1:], [40.0, 180.0, 480.0, 1000.0])

    X = t.X()
    assert X.shape == (4, 1)
    assert X == Matrix.from_array([40.0, 180.0, 480.0, 1000.0])
    assert t.y() == Matrix.from_array([5.0, 4.0, 8.0, 9.0])

def test_intercept_column_is_ones(model):
    t = Term(model, [[0, 0]])
    assert t.col() == Matrix.filled(5, 1, 1.0)
    assert t.col(Subset.ALL).shape == (5, 1)

def test_intercept_ignores_zero_data():
    m = Model(np.zeros((4, 2)), response=1)
    assert Term(m, [[0, 0]]).col() == Matrix.filled(4, 1, 1.0)

def test_col_is_cached_until_cleared(model):
    t = Term(model, [[1, 2]])
    first = t.col()
    assert t.is_cached()
    assert t.col() is first
    assert t.clear_cache() is t
    assert not t.is_cached()
    second = t.col()
    assert second is not first
    assert second == first

def test_cache_is_per_subset(series_table):
    m = Model(series_table, response="y", cross_fraction=0.25, test_fraction=0.25)
    t = Term(m, [[1, 1]])
    assert t.col(Subset.FIT).rows == 60
    assert t.is_cached(Subset.FIT)
    assert not t.is_cached(Subset.CROSS)
    with use_subset("cross"):
        assert t.col().rows == 30
    assert t.is_cached(Subset.CROSS)
    with pytest.raises(ValidationError, match="unknown subset"):
        t.col("holdout")

def test_negative_exponent_on_zero_spanning_column():
    m = Model(pd.DataFrame({"y": [1.0, 2.0, 3.0], "x": [-1.0, 0.0, 1.0]}))
    t = Term(m, [[1, -2]])
    with pytest.raises(DivideByZero, match="column 1"):
        t.col()
    assert not t.is_cached()

def test_negative_exponent_on_touching_zero_column(model):
    m = Model(pd.DataFrame({"y": [1.0, 2.0, 3.0], "x": [0.0, 1.0, 2.0]}))
    with pytest.raises(DivideByZero):
        Term(m, [[1, -1]]).col()
    assert np.allclose(Term(model, [[1, -1]]).col().data, [1.0, 0.5, 1 / 3, 0.25, 0.2])

def test_create_records_failure():
    m = Model(pd.DataFrame({"y": [1.0, 2.0, 3.0], "x": [-1.0, 0.0, 1.0]}))
    bad = Term.create(m, [[1, -2]])
    assert bad.status is MaterializationStatus.FAILED
    assert isinstance(bad.error, DivideByZero)
    assert not bad.usable

    good = Term.create(m, [[1, 2]])
    assert good.status is MaterializationStatus.READY
    assert good.error is None
    assert good.usable
    assert good.is_cached(Subset.FIT)

def test_create_records_bad_column(model):
    t = Term.create(model, [[7, 1]])
    assert t.status is MaterializationStatus.FAILED
    assert isinstance(t.error, IndexError)

def test_concurrent_first_access_computes_once(series_table):
    m = Model(series_table, response="y")
    t = Term(m, [[1, 3], [2, 1, 2]])
    with ThreadPoolExecutor(max_workers=8) as pool:
        cols = list(pool.map(lambda _: t.col(), range(32)))
    assert all(c is cols[0] for c in cols)

def test_term_does_not_keep_model_alive(table):
    m = Model(table)
    t = m.term([[1, 1]])
    del m
    with pytest.raises(ReferenceError):
        t.col()

# ---------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------

def test_get_stats_recovers_lagged_effect(series_model):
    series_model.add_term([[1, 2]])
    stats = series_model.term([[2, 1, 1]]).get_stats()
    assert isinstance(stats, TermStats)
    assert stats.ok
    assert np.isclose(stats.coeff, -0.5, atol=0.1)
    assert stats.t < -5
    assert stats.pt < 1e-6
    assert 0.0 < stats.mse < 0.05

def test_get_stats_aligns_to_model_lag(series_model):
    series_model.add_term([[2, 1, 3]])
    t = series_model.term([[1, 2, 1]])
    assert t.X().shape == (57, 3)
    assert t.y().shape == (57, 1)
    assert t.get_stats().ok

def test_get_stats_collinear_returns_failure(model):
    model.add_term([[0, 0]])
    model.add_term([[1, 1]])
    candidates = [model.term([[1, 1]]), model.term([[1, 2]])]

    results = [c.get_stats() for c in candidates]

    failure = results[0]
    assert isinstance(failure, StatsFailure)
    assert not failure.ok
    assert isinstance(failure.error, SingularMatrix)
    assert failure.subset is Subset.FIT
    assert failure.parts == candidates[0].parts
    assert "SingularMatrix" in failure.reason
    assert results[1].ok
    assert np.isfinite(results[1].coeff)

def test_get_stats_divide_by_zero_returns_failure(series_model):
    stats = series_model.term([[2, -1]]).get_stats()
    assert not stats.ok
    assert isinstance(stats.error, DivideByZero)

def test_get_stats_too_few_rows(model):
    model.add_term([[0, 0]])
    stats = model.term([[1, 1, 4]]).get_stats()
    assert not stats.ok

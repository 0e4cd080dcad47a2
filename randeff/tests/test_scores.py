import pandas as pd
import pytest

from randeff.core.partition import HashPartitioner, StorageLevel
from randeff.data.scores import CoordinateDataScores


@pytest.fixture
def a():
    return CoordinateDataScores.from_mapping({"u1": 1.0, "u2": 2.0}, HashPartitioner(2))


@pytest.fixture
def b():
    return CoordinateDataScores.from_mapping({"u2": 0.5, "u3": 4.0}, HashPartitioner(2))


def test_addition_treats_missing_as_zero(a, b):
    assert (a + b).to_dict() == {"u1": 1.0, "u2": 2.5, "u3": 4.0}


def test_subtraction(a, b):
    assert (a - b).to_dict() == {"u1": 1.0, "u2": 1.5, "u3": -4.0}


def test_to_series_sorted(a, b):
    series = (b + a).to_series()
    assert isinstance(series, pd.Series)
    assert list(series.index) == ["u1", "u2", "u3"]
    assert series.name == "score"
    assert (a + b).count() == 3


def test_to_series_mixed_ids():
    series = CoordinateDataScores.from_mapping({1: 1.0, "x": 2.0}).to_series()
    assert set(series.index) == {1, "x"}


def test_lifecycle(a):
    assert a.set_name("fixed effect scores").persist(StorageLevel.MEMORY_ONLY) is a
    assert a.materialize().scores_rdd.is_cached
    assert a.unpersist() is a
    assert a.scores_rdd.name == "fixed effect scores"

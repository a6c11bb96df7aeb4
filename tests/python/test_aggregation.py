from pyvoxstat.aggregation import *
from pyvoxstat.util import PyVoxStatError

import math
import numpy as np
import pytest
import scipy.stats


def test_as_aggregation_method():
    assert as_aggregation_method("mean") is AggregationMethod.MEAN
    assert as_aggregation_method(" Standard_Deviation ") is (
        AggregationMethod.STANDARD_DEVIATION
    )
    assert as_aggregation_method("COUNT") is AggregationMethod.COUNT
    assert as_aggregation_method(AggregationMethod.SUM) is AggregationMethod.SUM

    with pytest.raises(PyVoxStatError):
        as_aggregation_method("median")

    with pytest.raises(PyVoxStatError):
        as_aggregation_method(42)


@pytest.mark.parametrize(
    "method,expected",
    [
        (AggregationMethod.MEAN, 3.0),
        (AggregationMethod.SUM, 15.0),
        (AggregationMethod.STANDARD_DEVIATION, math.sqrt(2.0)),
        (AggregationMethod.SKEWNESS, 0.0),
        (AggregationMethod.COUNT, 5.0),
    ],
)
def test_reduce_samples(method, expected):
    assert np.isclose(reduce_samples([1.0, 2.0, 3.0, 4.0, 5.0], method), expected)


def test_skewness():
    samples = np.array([1.0, 2.0, 10.0, 3.0])
    result = reduce_samples(samples, AggregationMethod.SKEWNESS)

    assert result > 0.0
    assert np.isclose(result, scipy.stats.skew(samples, bias=False))


@pytest.mark.parametrize("method", list(AggregationMethod))
def test_empty_pool(method):
    assert np.isnan(reduce_samples([], method))


@pytest.mark.parametrize(
    "samples", [[1.0], [1.0, 2.0], [4.0, 4.0, 4.0, 4.0]], ids=["one", "two", "flat"]
)
def test_undefined_skewness(samples):
    assert np.isnan(reduce_samples(samples, "skewness"))


def test_single_sample():
    assert reduce_samples([7.0], "mean") == 7.0
    assert reduce_samples([7.0], "standard_deviation") == 0.0
    assert reduce_samples([7.0], "count") == 1.0

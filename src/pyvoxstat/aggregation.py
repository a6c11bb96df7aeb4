from pyvoxstat.util import PyVoxStatError

import enum
import numpy as np
import scipy.stats


class AggregationMethod(enum.Enum):
    """The reducer applied to the pooled raw samples of a voxel neighborhood

    * :code:`MEAN`: arithmetic mean
    * :code:`STANDARD_DEVIATION`: population standard deviation (divisor N)
    * :code:`SKEWNESS`: adjusted Fisher-Pearson sample skewness
    * :code:`SUM`: total of all samples
    * :code:`COUNT`: number of samples
    """

    MEAN = "mean"
    STANDARD_DEVIATION = "standard_deviation"
    SKEWNESS = "skewness"
    SUM = "sum"
    COUNT = "count"


def as_aggregation_method(method):
    """Accept an AggregationMethod or its (case insensitive) name/value"""
    if isinstance(method, AggregationMethod):
        return method

    if isinstance(method, str):
        key = method.strip().lower()
        for candidate in AggregationMethod:
            if key in (candidate.value, candidate.name.lower()):
                return candidate

    raise PyVoxStatError(
        f"Unknown aggregation method {method!r}, expected one of "
        f"{', '.join(m.value for m in AggregationMethod)}"
    )


def _mean(samples):
    return float(np.mean(samples))


def _sum(samples):
    return float(np.sum(samples))


def _standard_deviation(samples):
    return float(np.std(samples))


def _skewness(samples):
    # The bias corrected estimator needs at least three samples and
    # is undefined for a sample without any spread.
    if samples.size < 3 or np.ptp(samples) == 0.0:
        return np.nan
    return float(scipy.stats.skew(samples, bias=False))


def _count(samples):
    return float(samples.size)


_REDUCERS = {
    AggregationMethod.MEAN: _mean,
    AggregationMethod.SUM: _sum,
    AggregationMethod.STANDARD_DEVIATION: _standard_deviation,
    AggregationMethod.SKEWNESS: _skewness,
    AggregationMethod.COUNT: _count,
}


def reduce_samples(samples, method: AggregationMethod) -> float:
    """Reduce a pooled list of raw samples to a single scalar

    :param samples:
        The pooled samples of a voxel neighborhood
    :type samples: list or np.ndarray
    :param method:
        The reducer to apply
    :type method: AggregationMethod
    :return:
        The reduced value, NaN if the pool is empty or the reducer
        has no defined result for it.
    :rtype: float
    """
    samples = np.asarray(samples, dtype=np.float64)
    if samples.size == 0:
        return np.nan

    return _REDUCERS[as_aggregation_method(method)](samples)

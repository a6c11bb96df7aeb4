from pyvoxstat.comparison import *
from pyvoxstat.util import PyVoxStatError

from .helpers import grid_from_values, grid_values

import numpy as np
import pytest


def test_correlation_coefficients(line_grid):
    squared = line_grid.copy()
    squared.execute_custom_function(lambda v: v**2)

    result = correlation_coefficients(line_grid, squared)

    assert result.count == 5
    assert 0.9 < result.pearson < 1.0
    assert np.isclose(result.spearman, 1.0)
    assert 0.0 <= result.pearson_p_value < 0.05


def test_correlation_coefficients_identical(line_grid):
    result = correlation_coefficients(line_grid, line_grid.copy())
    assert np.isclose(result.pearson, 1.0)
    assert np.isclose(result.spearman, 1.0)


def test_correlation_coefficients_mismatch(line_grid):
    other = grid_from_values({(i, 0, 0): float(i) for i in range(4)})

    with pytest.raises(PyVoxStatError):
        correlation_coefficients(line_grid, other)

    small = grid_from_values({(0, 0, 0): 1.0, (1, 0, 0): 2.0})
    with pytest.raises(PyVoxStatError):
        correlation_coefficients(small, small.copy())


def test_match_structure(line_grid):
    source = grid_from_values(
        {(0, 0, 0): 10.0, (1, 0, 0): 20.0, (2, 0, 0): 30.0, (7, 0, 0): 70.0}
    )

    matched = match_structure(line_grid, source)

    assert grid_values(matched) == {(0, 0, 0): 10.0, (1, 0, 0): 20.0, (2, 0, 0): 30.0}
    assert len(matched) == 5
    assert (7, 0, 0) not in matched
    assert matched.count == 3
    assert matched.mean == 20.0

    # The template is left alone
    assert grid_values(line_grid) == {(i, 0, 0): i + 1.0 for i in range(5)}

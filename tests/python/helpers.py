from pyvoxstat.grid import VoxelGrid

import numpy as np


def grid_from_values(values, cell_size=1.0):
    """A grid with one single-sample voxel per item of a {key: value} dict"""
    grid = VoxelGrid(cell_size)
    for (x, y, z), value in values.items():
        grid.add_point(
            (x + 0.5) * cell_size, (y + 0.5) * cell_size, (z + 0.5) * cell_size, value
        )
    grid.aggregate("mean", 0)
    return grid


def grid_values(grid):
    """The values of a grid as a {key: value} dict"""
    return dict(grid.items())


def assert_statistics(grid, count, mean, std_dev, min_value, max_value):
    assert grid.count == count
    assert np.isclose(grid.mean, mean)
    assert np.isclose(grid.std_dev, std_dev)
    assert np.isclose(grid.min, min_value)
    assert np.isclose(grid.max, max_value)


__all__ = ["assert_statistics", "grid_from_values", "grid_values"]

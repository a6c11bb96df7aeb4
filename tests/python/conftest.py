from pyvoxstat.logger import set_pyvoxstat_logfile
from pyvoxstat.util import set_num_threads

from .helpers import grid_from_values

import os
import pytest
import tempfile


log_dir = tempfile.TemporaryDirectory()


@pytest.fixture
def line_grid():
    """Five voxels along the x axis holding the values 1 to 5"""
    return grid_from_values({(i, 0, 0): float(i + 1) for i in range(5)})


@pytest.fixture
def parallel(monkeypatch):
    """Force whole-grid passes onto a multi-threaded worker pool"""
    monkeypatch.setattr("pyvoxstat.grid.PARALLEL_THRESHOLD", 0)
    set_num_threads(4)


@pytest.fixture(autouse=True)
def log_into_temporary_directory():
    set_pyvoxstat_logfile(os.path.join(log_dir.name, "pyvoxstat.log"))


@pytest.fixture(autouse=True)
def thread_count_fixture():
    """This fixture ensures that all tests start with the default thread count"""
    set_num_threads(None)

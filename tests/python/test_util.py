from pyvoxstat.util import *
from pyvoxstat.util import __version__, as_point_triple, as_radius

import numpy as np
import pytest


def test_version():
    assert isinstance(__version__, str)


def test_set_num_threads():
    set_num_threads(42)
    assert get_num_threads() == 42

    with pytest.raises(PyVoxStatError):
        set_num_threads(0)

    # The invalid call did not change anything
    assert get_num_threads() == 42

    set_num_threads(None)
    assert get_num_threads() >= 1


def test_num_threads_environment(monkeypatch):
    monkeypatch.setenv("PYVOXSTAT_NUM_THREADS", "3")
    assert get_num_threads() == 3

    # An explicit setting takes precedence
    set_num_threads(2)
    assert get_num_threads() == 2
    set_num_threads(None)

    monkeypatch.setenv("PYVOXSTAT_NUM_THREADS", "many")
    with pytest.raises(PyVoxStatError):
        get_num_threads()

    monkeypatch.setenv("PYVOXSTAT_NUM_THREADS", "-1")
    with pytest.raises(PyVoxStatError):
        get_num_threads()


def test_as_point_triple():
    assert as_point_triple([1, 2, 3]) == (1.0, 2.0, 3.0)
    assert as_point_triple(np.zeros(3)) == (0.0, 0.0, 0.0)

    with pytest.raises(PyVoxStatError):
        as_point_triple([1.0, 2.0])

    with pytest.raises(PyVoxStatError):
        as_point_triple([1.0, np.inf, 2.0])


def test_as_radius():
    assert as_radius(0) == 0
    assert as_radius(np.int64(3)) == 3

    for invalid in (-1, 1.0, True, "1", None):
        with pytest.raises(PyVoxStatError):
            as_radius(invalid)


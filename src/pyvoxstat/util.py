import logging
import numpy as np
import os
import psutil

from importlib import metadata


# Read the version from package metadata
__version__ = metadata.version(__package__)

# The environment variable that overrides the default worker pool size
NUM_THREADS_ENV = "PYVOXSTAT_NUM_THREADS"


class PyVoxStatError(Exception):
    def __init__(self, msg, loggername="pyvoxstat"):
        # Initialize the base class
        super().__init__(msg)

        # Also write the message to the error stream
        logger = logging.getLogger(loggername)
        logger.error(self)


def _default_num_threads():
    env_threads = os.environ.get(NUM_THREADS_ENV)
    if env_threads:
        try:
            num_threads = int(env_threads)
        except ValueError:
            raise PyVoxStatError(
                f"Invalid value for {NUM_THREADS_ENV}: '{env_threads}'"
            )
        if num_threads < 1:
            raise PyVoxStatError(
                f"{NUM_THREADS_ENV} must be a positive integer, got {num_threads}"
            )
        return num_threads

    return psutil.cpu_count(logical=False) or 1


# The global storage for the thread count, None means "use the default"
_num_threads = None


def set_num_threads(num_threads: int):
    """Set the number of threads to use in pyvoxstat

    This controls the size of the worker pool that whole-grid passes
    (aggregation, elementwise transforms, spatial correlation) fan out to.

    :param num_threads: The number of threads to use
    :type num_threads: int
    """
    global _num_threads

    if num_threads is None:
        _num_threads = None
        return

    if int(num_threads) < 1:
        raise PyVoxStatError(
            f"The number of threads must be at least 1, got {num_threads}"
        )
    _num_threads = int(num_threads)


def get_num_threads():
    """Get the number of threads currently used by pyvoxstat

    :return: The number of threads
    :rtype: int
    """
    if _num_threads is None:
        return _default_num_threads()
    return _num_threads


def as_point_triple(value, name="value"):
    """Ensure that the given value is a finite triple of floats

    :param value:
        Anything that numpy can interpret as a sequence of three numbers
    :param name:
        The name used in the error message
    :type name: str
    """
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape != (3,):
        raise PyVoxStatError(f"{name} needs to have exactly three components")
    if not np.all(np.isfinite(arr)):
        raise PyVoxStatError(f"{name} needs to be finite, got {tuple(arr)}")
    return tuple(float(v) for v in arr)


def as_radius(radius):
    """Validate a voxel radius: a non-negative integer"""
    if isinstance(radius, (bool, np.bool_)) or not isinstance(
        radius, (int, np.integer)
    ):
        raise PyVoxStatError(f"The voxel radius needs to be an integer, got {radius!r}")
    if radius < 0:
        raise PyVoxStatError(f"The voxel radius must not be negative, got {radius}")
    return int(radius)


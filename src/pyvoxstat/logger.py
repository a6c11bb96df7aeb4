import contextlib
import logging
import sys
import time


LOGGER_NAME = "pyvoxstat"


def _close_handlers(logger):
    # Repeated setup must neither duplicate output nor leak open files
    for handler in logger.handlers[:]:
        try:
            handler.close()
        except Exception:
            pass
        logger.removeHandler(handler)


def create_default_logger(filename=None, level=logging.INFO):
    """Set up the pyvoxstat logger with stream and file handlers

    :param filename:
        The logfile to write to, defaults to 'pyvoxstat.log'. The file is
        only created once the first message is emitted.
    :type filename: str
    :param level:
        The level of the logger itself
    :type level: int
    """
    logger = logging.getLogger(LOGGER_NAME)
    _close_handlers(logger)

    if filename is None:
        filename = "pyvoxstat.log"

    formatter = logging.Formatter(
        "[%(asctime)s][%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # DEBUG and INFO go to stdout
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(lambda r: r.levelno <= logging.INFO)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    # WARNING and ERROR go to stderr
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)

    # Everything goes to the logfile
    file_handler = logging.FileHandler(filename, mode="a", delay=True)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.setLevel(level)

    return logger


# Storage to keep the logger instance alive + initial creation
_logger = create_default_logger()


def set_pyvoxstat_logfile(filename):
    """Set the logfile used by pyvoxstat

    All log messages produced by pyvoxstat are logged into this file
    in addition to be logged to stdout/stderr. By default, that file
    is called 'pyvoxstat.log'.

    :param filename:
        The name of the logfile to use
    :type filename: str
    """
    global _logger
    _logger = create_default_logger(filename, level=_logger.level)


def set_pyvoxstat_loglevel(level):
    """Set the level of the pyvoxstat logger, e.g. logging.DEBUG

    Dropped samples and degenerate cells are only reported at DEBUG level.
    """
    _logger.setLevel(level)


@contextlib.contextmanager
def logger_context(msg, level=logging.INFO):
    """Log the start and the duration of the task described by msg"""
    logger = logging.getLogger(LOGGER_NAME)
    logger.log(level, f"Starting: {msg}")

    start = time.perf_counter()
    yield
    duration = time.perf_counter() - start

    logger.log(level, f"Finished in {duration:.4f}s: {msg}")

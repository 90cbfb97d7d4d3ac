"""
_context.py
===========
Context managers for phylovec.

Provides context managers for temporarily changing state:
- Logging control (suppress/change levels)
- Warning control (suppress specific warnings)
- Backend selection (force specific backend)

All context managers restore state on exit, even if exceptions occur.
"""

import logging
import warnings
from contextlib import contextmanager
from typing import Optional, Type


# Module-level state for backend override
_backend_override = None

_PACKAGE_LOGGERS = ("phylovec._tree", "phylovec._forest", "phylovec._logging")


# ============================================================================ #
# Logging Context Managers
# ============================================================================ #


@contextmanager
def suppress_logger(logger_name: str, level: int = logging.CRITICAL):
    """
    Temporarily change a logger's level.

    Parameters
    ----------
    logger_name : str
        Name of the logger to suppress (e.g., 'phylovec._forest').
    level : int, default logging.CRITICAL
        Temporary logging level.

    Examples
    --------
    >>> with suppress_logger('phylovec._tree'):
    ...     trees = [Tree(nwk) for nwk in newicks]

    >>> with suppress_logger('phylovec._forest', logging.WARNING):
    ...     matrix = forest.encode()
    """
    logger = logging.getLogger(logger_name)
    original_level = logger.level

    try:
        logger.setLevel(level)
        yield
    finally:
        logger.setLevel(original_level)


@contextmanager
def quiet(level: int = logging.CRITICAL):
    """
    Temporarily suppress all package loggers together: tree construction,
    batch dispatch and the batch statistics / progress reports.

    Examples
    --------
    >>> with quiet():
    ...     matrix = Forest(newicks).encode()

    >>> with quiet(logging.WARNING):
    ...     matrix = forest.encode()
    """
    loggers = [logging.getLogger(name) for name in _PACKAGE_LOGGERS]
    original_levels = [lg.level for lg in loggers]

    try:
        for lg in loggers:
            lg.setLevel(level)
        yield
    finally:
        for lg, original in zip(loggers, original_levels):
            lg.setLevel(original)


# ============================================================================ #
# Warning Context Managers
# ============================================================================ #


@contextmanager
def suppress_warnings(category: Optional[Type[Warning]] = None):
    """
    Temporarily suppress warnings, all of them or one *category*.

    Examples
    --------
    >>> from numba.core.errors import NumbaPerformanceWarning
    >>> with suppress_warnings(NumbaPerformanceWarning):
    ...     matrix = forest.encode(backend='cpu-parallel')
    """
    with warnings.catch_warnings():
        if category is None:
            warnings.simplefilter("ignore")
        else:
            warnings.filterwarnings("ignore", category=category)
        yield


# ============================================================================ #
# Backend Context Managers
# ============================================================================ #


@contextmanager
def use_backend(backend: str):
    """
    Temporarily force a specific backend for batch encoding.

    Parameters
    ----------
    backend : str
        'python', 'cpu-parallel' or 'best'.

    Raises
    ------
    ValueError
        If requested backend is not available.

    Examples
    --------
    >>> with use_backend('python'):
    ...     reference = forest.encode()

    Notes
    -----
    **Not thread-safe**: uses module-level state.  Pass ``backend=`` to
    ``Forest.encode`` directly when several threads encode at once.
    """
    global _backend_override

    from ._backend import resolve_backend

    resolve_backend(backend)

    original_override = _backend_override

    try:
        _backend_override = backend
        yield
    finally:
        _backend_override = original_override


def get_backend_override() -> Optional[str]:
    """
    Get the current backend override, if any.

    Examples
    --------
    >>> get_backend_override()
    None

    >>> with use_backend('python'):
    ...     print(get_backend_override())
    python
    """
    return _backend_override


# ============================================================================ #
# Combined Context Managers
# ============================================================================ #


@contextmanager
def silent_benchmark(backend: str = "best"):
    """
    Suppress logging and warnings while forcing a specific backend.

    Examples
    --------
    >>> for backend in ['python', 'cpu-parallel']:
    ...     with silent_benchmark(backend):
    ...         start = time.time()
    ...         forest.encode()
    ...         print(f"{backend}: {time.time() - start:.3f}s")
    """
    with quiet():
        with use_backend(backend):
            with suppress_warnings():
                yield

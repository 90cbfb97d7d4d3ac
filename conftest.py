"""
conftest.py
===========
Session-level pytest configuration for the test suite.

Custom marks
------------
large_scale
    Applied to tests that encode batches large enough to take several
    seconds on a single CPU core.  Opt out with ``-m 'not large_scale'``.

    Registration here suppresses PytestUnknownMarkWarning and makes the mark
    visible in ``pytest --markers``.

Warning filters
---------------
NumbaPerformanceWarning messages are filtered out during tests. Small test
batches under-use the parallel kernel, which is expected and not informative
for correctness testing.
"""

import warnings

from numba.core.errors import NumbaPerformanceWarning


def pytest_configure(config):
    """
    Configure pytest before test collection begins.

    This runs before any test modules are imported, which is important for
    catching warnings from numba kernel compilation.
    """
    config.addinivalue_line(
        "markers",
        "large_scale: encodes large batches (slow, deselect with -m 'not large_scale')",
    )
    warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)


def pytest_unconfigure(config):
    """
    Clean up after all tests complete.

    Restore default warning behavior.
    """
    warnings.resetwarnings()

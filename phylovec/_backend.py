"""
_backend.py
===========
Backend detection and selection for batch encoding.

This module detects available execution backends (pure Python, CPU-parallel
via numba) and provides functions to query and select the best backend.

Functions in this module have NO side effects - they only query system state.
Logging is done by the calling code, not here.
"""

from typing import List, Optional, Tuple


BACKENDS = ("python", "cpu-parallel")


# ============================================================================ #
# Backend Detection (No Side Effects)
# ============================================================================ #


def check_numba_available() -> bool:
    """
    Check if numba is importable for CPU parallelization.

    Returns
    -------
    bool
        True if numba can be imported, False otherwise.
    """
    try:
        import numba  # noqa: F401

        return True
    except ImportError:
        return False


def get_available_backends() -> List[str]:
    """
    Get list of available execution backends.

    Returns
    -------
    list[str]
        Available backends in preference order (last is best).
        Always includes 'python'; includes 'cpu-parallel' when the numba
        kernel module can be imported.

    Examples
    --------
    >>> get_available_backends()
    ['python', 'cpu-parallel']
    """
    backends = ["python"]
    ok, _ = import_cpu_kernels()
    if ok:
        backends.append("cpu-parallel")
    return backends


def get_best_backend() -> str:
    """
    Get the most optimized available backend: 'cpu-parallel' > 'python'.
    """
    return get_available_backends()[-1]


def resolve_backend(backend: str) -> str:
    """
    Resolve a backend specification to an actual backend.

    Parameters
    ----------
    backend : str
        'best', or one of 'python', 'cpu-parallel'.

    Returns
    -------
    str
        Resolved backend name.

    Raises
    ------
    ValueError
        If the backend is unknown or not available.

    Examples
    --------
    >>> resolve_backend('best')
    'cpu-parallel'

    >>> resolve_backend('python')
    'python'
    """
    if backend == "best":
        return get_best_backend()

    if backend not in BACKENDS:
        raise ValueError(
            f"Unknown backend '{backend}'. "
            f"Valid backends: best, {', '.join(BACKENDS)}"
        )

    available = get_available_backends()
    if backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )

    return backend


# ============================================================================ #
# Kernel Import Helpers
# ============================================================================ #


def import_cpu_kernels() -> Tuple[bool, Optional[object]]:
    """
    Try to import the CPU kernel from the _cpu_kernels module.

    Returns
    -------
    tuple
        (success, encode_kernel)
        - success: Whether import succeeded
        - encode_kernel: _cblv_encode_njit function or None
    """
    try:
        from phylovec._cpu_kernels import _cblv_encode_njit

        return (True, _cblv_encode_njit)
    except ImportError:
        return (False, None)


# ============================================================================ #
# Module-Level State Query (Read-Only)
# ============================================================================ #


def get_backend_info() -> dict:
    """
    Get comprehensive backend information.

    Returns
    -------
    dict
        Dictionary with keys:
        - 'numba_available': bool
        - 'backends': list[str]
        - 'best_backend': str
        - 'cpu_kernels_available': bool
    """
    cpu_kernels_ok, _ = import_cpu_kernels()
    return {
        "numba_available": check_numba_available(),
        "backends": get_available_backends(),
        "best_backend": get_best_backend(),
        "cpu_kernels_available": cpu_kernels_ok,
    }

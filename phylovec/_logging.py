"""
_logging.py
===========
Logging functions for phylovec.

All functions in this module have NO side effects except logging. They take
computed data as parameters and format/emit log messages.

This keeps computation separate from presentation, and lets tests silence
or capture diagnostics through the standard logging machinery.
"""

import logging
import os
import platform
from typing import Any, List

import numpy as np


logger = logging.getLogger(__name__)


# ============================================================================ #
# System and Backend Logging (called at module import time)
# ============================================================================ #


def log_optimization_status(numba_available: bool) -> None:
    """
    Log system capabilities and numba availability at INFO level.

    Called once at module import time.

    Parameters
    ----------
    numba_available : bool
        Whether numba was successfully imported.
    """
    cpu_count = os.cpu_count() or 1
    logger.info(
        "System: %s (%s), %d CPU cores, Python %s",
        platform.machine(),
        platform.system(),
        cpu_count,
        platform.python_version(),
    )

    if not numba_available:
        logger.info("Numba not importable; batch encoding will run as pure Python")
        return

    import numba

    logger.info("Numba %s loaded successfully", numba.__version__)
    logger.info("Numba threading: %d threads configured", numba.get_num_threads())


def log_backend_availability(backends_available: List[str]) -> None:
    """
    Log which execution backends are available for batch encoding.

    Parameters
    ----------
    backends_available : List[str]
        Available backends in preference order.
    """
    logger.info("Available backends: %s", ", ".join(backends_available))

    if "cpu-parallel" in backends_available:
        logger.info("  cpu-parallel: LLVM-compiled parallel code (numba.njit + prange)")
    if "python" in backends_available:
        logger.info("  python: unoptimized reference implementation")

    logger.info("Default backend='best' will use: %s", backends_available[-1])


# ============================================================================ #
# Batch Logging (called during construction and encoding)
# ============================================================================ #


def log_collection_statistics(n_trees: int, per_tree_n_leaves: np.ndarray, memory_bytes: int) -> None:
    """
    Log tree count, tip-count range and packed memory footprint.

    Parameters
    ----------
    n_trees : int
        Number of trees in the collection.
    per_tree_n_leaves : np.ndarray
        Tip count of each tree.
    memory_bytes : int
        Total size of the packed arrays in bytes.
    """
    logger.info(
        "Collection built: %d trees, %d-%d tips per tree (mean %.1f)",
        n_trees,
        int(per_tree_n_leaves.min()),
        int(per_tree_n_leaves.max()),
        float(per_tree_n_leaves.mean()),
    )
    logger.info("Packed array footprint: %.1f MB", memory_bytes / (1024**2))


def log_encoding_plan(n_trees: int, kind: str, max_taxa: int, width: int, backend: str) -> None:
    """
    Log the shape of the matrix about to be produced.

    A warning is emitted when the output is larger than 4 GB.
    """
    logger.info(
        "encode(kind=%r, max_taxa=%d, backend=%r): %d x %d matrix",
        kind,
        max_taxa,
        backend,
        width,
        n_trees,
    )
    out_gb = width * n_trees * 8 / (1024**3)
    if out_gb > 4.0:
        logger.warning(
            "Output matrix needs %.2f GB; consider encoding the trees in smaller batches.",
            out_gb,
        )


def log_progress(n_done: int, n_total: int) -> None:
    """
    Ready-made progress callback for ``Forest.encode``.

    Logs at INFO level whenever another tenth of the batch is complete,
    and at the end.
    """
    if n_total <= 0:
        return
    step = max(1, n_total // 10)
    if n_done == n_total or n_done % step == 0:
        logger.info("Encoded %d/%d trees (%.0f%%)", n_done, n_total, 100.0 * n_done / n_total)


# ============================================================================ #
# Helper Functions for Computing Data (not logging)
# ============================================================================ #


def compute_memory_footprint(collection: Any) -> int:
    """
    Compute total memory footprint of a Forest's packed arrays.

    Parameters
    ----------
    collection : Any
        The Forest object.

    Returns
    -------
    int
        Total memory in bytes.
    """
    arrays = [
        collection.node_offsets,
        collection.per_tree_n_leaves,
        collection.all_ladder_left,
        collection.all_ladder_right,
        collection.all_root_distance,
        collection.all_distance,
        collection.all_states,
    ]
    return int(sum(arr.nbytes for arr in arrays))

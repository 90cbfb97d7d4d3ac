"""
_cpu_kernels.py
===============
CPU-parallel CBLV batch kernel using Numba.

This module contains ONLY numba-compiled code and does not import other
project modules, to keep import-time complications out of the kernel.

Exported Functions
------------------
_cblv_encode_njit : njit(parallel=True) function
    Encode a contiguous range of trees from CSR-packed arrays into rows of a
    pre-allocated output matrix.

Notes
-----
- One ``prange`` iteration per tree; each iteration writes only its own
  output row, so no synchronization is needed.
- The loop body is the same explicit-stack inorder traversal as
  ``Tree._inorder_core``, fused with feature emission.
- cache=True persists the compiled binary to disk for faster subsequent runs.
"""

import numpy as np
from numba import njit, prange


@njit(parallel=True, cache=True)
def _cblv_encode_njit(
        t_start,
        t_stop,
        node_offsets,
        per_tree_n_leaves,
        all_ladder_left,
        all_ladder_right,
        all_root_distance,
        all_distance,
        all_states,
        with_states,
        max_taxa,
        out):
    """
    Encode trees ``t_start … t_stop-1`` into ``out[t_start:t_stop]``.

    Parameters
    ----------
    t_start, t_stop   : int
        Half-open range of tree indices.
    node_offsets      : int64[n_trees+1]
        CSR offsets into the per-node arrays.
    per_tree_n_leaves : int32[n_trees]
    all_ladder_left   : int32[:]   Local ID of the deeper child; -1 for tips.
    all_ladder_right  : int32[:]   Local ID of the shallower child; -1 for tips.
    all_root_distance : float64[:]
    all_distance      : float64[:]
    all_states        : int32[:]   Tip states; -1 where absent.
    with_states       : bool       Emit the third (states) block.
    max_taxa          : int        Block width; caller guarantees
                                   n_leaves <= max_taxa for every tree.
    out               : float64[n_trees, n_blocks * max_taxa]
        Zero-initialized output; row ti receives tree ti.
    """
    for k in prange(t_stop - t_start):
        ti = t_start + k
        base = node_offsets[ti]
        n_nodes = node_offsets[ti + 1] - base
        n_leaves = int(per_tree_n_leaves[ti])

        stack = np.empty(n_nodes, dtype=np.int64)
        top = -1
        n_int = 0
        n_tip = 0
        node = n_leaves  # root

        while top >= 0 or node != -1:
            if node != -1:
                top += 1
                stack[top] = node
                node = int(all_ladder_left[base + node])
            else:
                node = int(stack[top])
                top -= 1
                if node < n_leaves:
                    out[ti, max_taxa + n_tip] = all_distance[base + node]
                    if with_states:
                        out[ti, 2 * max_taxa + n_tip] = all_states[base + node]
                    n_tip += 1
                else:
                    out[ti, n_int] = all_root_distance[base + node]
                    n_int += 1
                node = int(all_ladder_right[base + node])

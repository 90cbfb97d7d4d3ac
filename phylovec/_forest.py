"""
_forest.py
==========
A collection of phylogenetic trees in a CSR-like flat-packed layout, encoded
in bulk into a CBLV matrix with one column per tree.

Public API
----------
  Forest(trees, states=None)
      Constructor.  Accepts a list of Tree objects and/or NEWICK strings,
      then packs the per-tree arrays the encoder needs into contiguous
      numpy buffers.

  .encode(kind='plain', max_taxa=None, n_states=None, backend='best',
          progress=None, cancel=None, chunk_size=1024)
      -> np.ndarray[float64, (k * max_taxa, n_trees)]

  .encode_tree(index, kind='plain', max_taxa=None, n_states=None)
      -> np.ndarray[float64, (k * max_taxa,)]

Logging
-------
``phylovec._forest``  INFO: kernel compilation notice.
                     WARNING: backend fallbacks.
``phylovec._logging`` INFO: system and backend status at import, collection
                     statistics, the shape of each encoded matrix, progress
                     via ``log_progress``.
                     WARNING: very large output matrices.

``quiet()`` silences both, together with ``phylovec._tree``.

Memory layout
-------------
All per-tree arrays the encoder reads are concatenated into flat 1-D numpy
buffers.  ``node_offsets`` (one entry per tree plus a sentinel) gives O(1)
slicing into any tree's data; node IDs inside a slice are the tree's local
IDs, so tree ti's root is at ``node_offsets[ti] + per_tree_n_leaves[ti]``.

  Per-node data  (indexed by local node ID 0..n_nodes-1):
    all_ladder_left, all_ladder_right    int32
    all_root_distance, all_distance      float64
    all_states                           int32 (-1 = no state)

  Offsets and per-tree scalars:
    node_offsets                         int64 (n_trees+1,)
    per_tree_n_leaves, per_tree_n_nodes  int32 (n_trees,)

Concurrency
-----------
Trees are independent.  The cpu-parallel backend runs one numba ``prange``
task per tree, each writing its own pre-allocated row of the output, so no
locking is required.  Work is dispatched in chunks of ``chunk_size`` trees;
progress is reported and cancellation checked between chunks.  A cancelled
batch discards everything computed so far.
"""

import logging
from typing import Callable, Optional, Sequence

import numpy as np

from phylovec._tree import Tree
from phylovec._encoding import check_capacity, encoding_width, format_encoding, resolve_kind
from phylovec._errors import (
    BatchEncodingError,
    CapacityExceeded,
    EncodingCancelled,
    EncodingError,
)
from phylovec._logging import (
    log_optimization_status,
    log_backend_availability,
    log_collection_statistics,
    log_encoding_plan,
    compute_memory_footprint,
)
from phylovec._backend import (
    BACKENDS,
    check_numba_available,
    get_available_backends,
    get_best_backend,
    resolve_backend,
    import_cpu_kernels,
)
from phylovec._context import suppress_logger, get_backend_override


_NUMBA_AVAILABLE = check_numba_available()
_cpu_import_ok, _cblv_encode_njit = import_cpu_kernels()
_BACKENDS_AVAILABLE = get_available_backends()

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# Track first call to the kernel for compilation logging
_kernel_first_call = {"cpu-parallel": True}


# Log system info and backend availability on module import
log_optimization_status(_NUMBA_AVAILABLE)
log_backend_availability(_BACKENDS_AVAILABLE)


class Forest:
    """
    An immutable, ordered collection of trees in CSR flat-packed layout.

    Parameters
    ----------
    trees : sequence of (Tree | str)
        Trees to encode, in column order.  Strings are parsed as NEWICK.
    states : sequence of (mapping | sequence | None), optional
        Per-tree tip states, parallel to *trees*.  Only NEWICK entries may
        carry states here; a Tree object already holds its own.

    Raises
    ------
    BatchEncodingError   if a NEWICK entry cannot be parsed; ``tree_index``
                         names the entry and the parse error is chained.

    Attributes (read-only after construction)
    -----------------------------------------
    n_trees           : int
    max_leaves        : int     Largest tip count in the collection.
    node_offsets      : int64 (n_trees+1,)
    per_tree_n_leaves : int32 (n_trees,)
    per_tree_n_nodes  : int32 (n_trees,)
    all_ladder_left, all_ladder_right, all_states   : int32
    all_root_distance, all_distance                 : float64

    Examples
    --------
    >>> forest = Forest(['((A:1,B:1):1,C:2);', '(A:1,(B:1,C:1):1);'])
    >>> forest.encode().shape
    (6, 2)
    >>> forest.encode(max_taxa=5).shape
    (10, 2)
    """

    # ================================================================== #
    # Construction                                                         #
    # ================================================================== #

    def __init__(self, trees: Sequence, states: Optional[Sequence] = None) -> None:
        if isinstance(trees, (str, Tree)):
            raise TypeError("trees must be a sequence of Tree objects or NEWICK strings.")
        items = list(trees)
        if not items:
            raise ValueError("A Forest needs at least one tree.")
        if states is not None:
            states = list(states)
            if len(states) != len(items):
                raise ValueError(
                    f"Got {len(states)} state maps for {len(items)} trees."
                )

        self._trees = []
        # Never lower a level already raised by quiet().
        tree_level = max(
            logging.WARNING, logging.getLogger("phylovec._tree").getEffectiveLevel()
        )
        with suppress_logger("phylovec._tree", tree_level):
            for idx, item in enumerate(items):
                tree_states = None if states is None else states[idx]
                if isinstance(item, Tree):
                    if tree_states is not None:
                        raise ValueError(
                            f"Tree {idx} is already a Tree; states can only be "
                            f"attached to NEWICK entries."
                        )
                    self._trees.append(item)
                elif isinstance(item, str):
                    try:
                        self._trees.append(Tree(item, states=tree_states))
                    except (EncodingError, KeyError, ValueError) as exc:
                        raise BatchEncodingError(idx, exc) from exc
                else:
                    raise TypeError(
                        f"Tree {idx} must be a Tree or a NEWICK string, "
                        f"got {type(item).__name__}."
                    )

        self.n_trees: int = len(self._trees)
        self._pack_csr()
        self.max_leaves: int = int(self.per_tree_n_leaves.max())

        log_collection_statistics(
            self.n_trees, self.per_tree_n_leaves, compute_memory_footprint(self)
        )

    def __len__(self) -> int:
        return self.n_trees

    def __getitem__(self, index: int) -> Tree:
        return self._trees[index]

    def __iter__(self):
        return iter(self._trees)

    def __repr__(self) -> str:
        return f"Forest(n_trees={self.n_trees}, max_leaves={self.max_leaves})"

    # ================================================================== #
    # Public methods                                                       #
    # ================================================================== #

    def encode(
        self,
        kind: str = "plain",
        max_taxa: Optional[int] = None,
        n_states: Optional[int] = None,
        backend: str = "best",
        progress: Optional[ProgressCallback] = None,
        cancel=None,
        chunk_size: int = 1024,
    ) -> np.ndarray:
        """
        Encode every tree and stack the vectors as columns of a matrix.

        Parameters
        ----------
        kind : 'plain' | 'binary-state' | 'multi-state'
        max_taxa : int, optional
            Block capacity.  Defaults to ``max_leaves`` so all columns share
            one length.  Must be >= every tree's tip count.
        n_states : int, optional
            Size of the multi-state label space (checked when given).
        backend : 'best' | 'python' | 'cpu-parallel'
            Overridden by an active ``use_backend`` context.  An unavailable
            backend falls back to the best available one with a warning.
        progress : callable(n_done, n_total), optional
            Called after each tree (python) or chunk (cpu-parallel).
        cancel : object with ``is_set()``, optional
            E.g. a ``threading.Event``.  Checked before each tree / chunk
            is dispatched.
        chunk_size : int
            Trees per cpu-parallel kernel launch.

        Returns
        -------
        np.ndarray[float64, shape=(k * max_taxa, n_trees)]
            Column ti is the formatted CBLV of tree ti.  The array is the
            transpose of a row-major buffer, so each column is contiguous.

        Raises
        ------
        BatchEncodingError   if any tree exceeds *max_taxa* or lacks valid
                             states; ``tree_index`` names the first failing
                             tree.  Nothing is encoded in that case.
        EncodingCancelled    if *cancel* is set before the batch completes.
        ValueError           for an unknown kind or backend, or
                             max_taxa / chunk_size < 1.
        TypeError            if *max_taxa* is not an integer.
        """
        kind = resolve_kind(kind)
        if max_taxa is None:
            max_taxa = self.max_leaves
        max_taxa = check_capacity(max_taxa)
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}.")

        resolved_backend = self._resolve_backend(backend)

        # ── 1. Validate every tree before writing anything ──────────────
        self._validate(kind, max_taxa, n_states)

        # ── 2. Pre-allocate and dispatch ────────────────────────────────
        width = encoding_width(kind, max_taxa)
        log_encoding_plan(self.n_trees, kind, max_taxa, width, resolved_backend)
        out = np.zeros((self.n_trees, width), dtype=np.float64)

        if resolved_backend == "cpu-parallel":
            self._encode_parallel(out, kind, max_taxa, progress, cancel, chunk_size)
        else:
            self._encode_python(out, kind, max_taxa, n_states, progress, cancel)

        return out.T

    def encode_tree(
        self,
        index: int,
        kind: str = "plain",
        max_taxa: Optional[int] = None,
        n_states: Optional[int] = None,
    ) -> np.ndarray:
        """
        Encode a single member tree with the collection-wide capacity.

        Equal to column *index* of ``encode(kind, max_taxa, n_states)``.
        """
        if max_taxa is None:
            max_taxa = self.max_leaves
        try:
            return self._trees[index].cblv(max_taxa, kind, n_states)
        except EncodingError as exc:
            raise BatchEncodingError(index, exc) from exc

    # ================================================================== #
    # Private methods                                                      #
    # ================================================================== #

    def _pack_csr(self) -> None:
        """
        **Private.**  Concatenate the per-tree arrays into flat buffers and
        build the CSR offset vector.
        """
        trees = self._trees
        NT = self.n_trees

        node_sizes = np.array([t.n_nodes for t in trees], dtype=np.int64)
        self.node_offsets = np.zeros(NT + 1, dtype=np.int64)
        self.node_offsets[1:] = np.cumsum(node_sizes)

        self.per_tree_n_nodes = np.array([t.n_nodes for t in trees], dtype=np.int32)
        self.per_tree_n_leaves = np.array([t.n_leaves for t in trees], dtype=np.int32)

        # ---- Flat per-node arrays -------------------------------------- #
        self.all_ladder_left = np.concatenate([t.ladder_left for t in trees])
        self.all_ladder_right = np.concatenate([t.ladder_right for t in trees])
        self.all_root_distance = np.concatenate([t.root_distance for t in trees])
        self.all_distance = np.concatenate([t.distance for t in trees])
        self.all_states = np.concatenate([t.states for t in trees])

        for arr in (
            self.node_offsets,
            self.per_tree_n_nodes,
            self.per_tree_n_leaves,
            self.all_ladder_left,
            self.all_ladder_right,
            self.all_root_distance,
            self.all_distance,
            self.all_states,
        ):
            arr.setflags(write=False)

    def _resolve_backend(self, backend: str) -> str:
        """**Private.**  Apply the context override and resolve *backend*."""
        backend_override = get_backend_override()
        if backend_override is not None:
            backend = backend_override

        if backend != "best" and backend not in BACKENDS:
            raise ValueError(
                f"Unknown backend '{backend}'. "
                f"Valid backends: best, {', '.join(BACKENDS)}"
            )
        try:
            return resolve_backend(backend)
        except ValueError as e:
            logger.warning(str(e))
            return get_best_backend()

    def _validate(self, kind: str, max_taxa: int, n_states: Optional[int]) -> None:
        """
        **Private.**  Reject the batch if any tree cannot be encoded.

        Capacity is checked vectorized over ``per_tree_n_leaves``; states
        per tree.  The first failing tree is reported.  The tips block is
        the longest sequence, so n_leaves > max_taxa is the capacity test.
        """
        over = self.per_tree_n_leaves > max_taxa

        if kind == "plain":
            if over.any():
                ti = int(np.flatnonzero(over)[0])
                exc = CapacityExceeded(int(self.per_tree_n_leaves[ti]), max_taxa)
                raise BatchEncodingError(ti, exc) from exc
            return

        for ti, tree in enumerate(self._trees):
            try:
                tree.check_states(kind, n_states)
                if over[ti]:
                    raise CapacityExceeded(tree.n_leaves, max_taxa)
            except EncodingError as exc:
                raise BatchEncodingError(ti, exc) from exc

    def _encode_python(self, out, kind, max_taxa, n_states, progress, cancel) -> None:
        """**Private.**  Reference path: one tree at a time through Tree.encode."""
        for ti, tree in enumerate(self._trees):
            if cancel is not None and cancel.is_set():
                raise EncodingCancelled(
                    f"Cancelled after {ti} of {self.n_trees} trees."
                )
            try:
                out[ti] = format_encoding(tree.encode(kind, n_states), max_taxa)
            except EncodingError as exc:
                raise BatchEncodingError(ti, exc) from exc
            if progress is not None:
                progress(ti + 1, self.n_trees)

    def _encode_parallel(self, out, kind, max_taxa, progress, cancel, chunk_size) -> None:
        """**Private.**  numba prange kernel, dispatched in chunks of trees."""
        if _kernel_first_call["cpu-parallel"]:
            logger.info("  Compiling cpu-parallel kernel (cached for future calls)")
            _kernel_first_call["cpu-parallel"] = False

        with_states = kind != "plain"
        for t_start in range(0, self.n_trees, chunk_size):
            if cancel is not None and cancel.is_set():
                raise EncodingCancelled(
                    f"Cancelled after {t_start} of {self.n_trees} trees."
                )
            t_stop = min(t_start + chunk_size, self.n_trees)
            _cblv_encode_njit(
                t_start,
                t_stop,
                self.node_offsets,
                self.per_tree_n_leaves,
                self.all_ladder_left,
                self.all_ladder_right,
                self.all_root_distance,
                self.all_distance,
                self.all_states,
                with_states,
                max_taxa,
                out,
            )
            if progress is not None:
                progress(t_stop, self.n_trees)

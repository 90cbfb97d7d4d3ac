"""
_tree.py
========
A single rooted, strictly bifurcating, edge-weighted phylogenetic tree stored
as a set of parallel numpy arrays, with the ladderized inorder traversal and
the per-tree CBLV feature encoder.

Public API
----------
  Tree(newick_string, states=None)
      Constructor.  Parses the NEWICK string and builds all arrays.

  Tree.from_edges(edges, edge_lengths, names=None, states=None)
      Build from an indexed (parent, child) edge table.

  .is_tip(node)
  .ladder_children(node)
  .inorder()
  .tip_distances()
  .check_states(kind, n_states=None)
  .encode(kind='plain', n_states=None)
  .cblv(max_taxa=None, kind='plain', n_states=None)

Node-ID conventions
-------------------
  Tips     : 0 … n_leaves-1        (left-to-right in NEWICK, or as given)
  Internal : n_leaves … n_nodes-1  (preorder, first child first)
  Root     : n_leaves              (invariant used throughout the class)

Preorder numbering guarantees that an internal node's ID is smaller than the
IDs of its internal children, so root-distances can be filled by a forward
sweep over internal IDs and subtree reach by a backward sweep.  No recursion
is used anywhere; trees of many thousands of tips are fine.

Ladderization
-------------
``reach[v]`` is the largest root-distance of any tip below *v* (for a tip,
its own root-distance).  For each internal node the child with the larger
reach becomes ``ladder_left`` and the other ``ladder_right``.  When both
children are tips, or the two reaches are exactly equal, the natural child
order (NEWICK / edge-table order) is kept.  The ladder arrays are computed
once at construction; ``inorder()`` only reads them.
"""

import logging
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from phylovec._encoding import (
    STATE_KINDS,
    Encoding,
    PlainEncoding,
    StateEncoding,
    check_state_codes,
    format_encoding,
    resolve_kind,
)
from phylovec._errors import (
    MissingState,
    NodeIndexError,
    StructuralViolation,
    InvalidState,
)
from phylovec._utils import format_newick


logger = logging.getLogger(__name__)

StateSpec = Optional[Union[Mapping[str, int], Sequence[Optional[int]]]]

_DELIMITERS = ":,();"
_WHITESPACE = " \t\r\n"


class Tree:
    """
    A rooted, strictly bifurcating tree with branch lengths.

    Attributes (all read-only after construction)
    ----------------------------------------------
    n_nodes   : int        Total number of nodes (2 * n_leaves - 1).
    n_leaves  : int        Number of tips.
    root      : int        Node ID of the root (always n_leaves).
    names     : list[str]  Tip name for each node; '' for internal nodes.

    Arrays — tree structure
    -----------------------
    parent        : int32  [n_nodes]      Parent ID; -1 for root.
    distance      : float64[n_nodes]      Branch length to parent; 0.0 for root.
    children      : int32  [n_nodes, 2]   Children in natural order; -1 for tips.
    states        : int32  [n_nodes]      Tip state code; -1 if absent.

    Arrays — derived
    ----------------
    root_distance : float64[n_nodes]      Cumulative branch length from root.
    reach         : float64[n_nodes]      Max tip root-distance in subtree.
    ladder_left   : int32  [n_nodes]      Deeper child; -1 for tips.
    ladder_right  : int32  [n_nodes]      Shallower child; -1 for tips.
    """

    # ================================================================== #
    # Construction                                                         #
    # ================================================================== #

    def __init__(self, newick_string: str, states: StateSpec = None) -> None:
        """
        Parse *newick_string* and build all tree arrays.

        Parameters
        ----------
        newick_string : str
            A NEWICK tree with a branch length on every non-root edge
            (trailing ';' optional).  Support values are ignored.
        states : mapping or sequence, optional
            Discrete tip states, either ``{tip_name: code}`` or a sequence
            of length n_leaves indexed by tip ID.  ``None`` entries (or
            names absent from the mapping) mark a tip without a state.

        Raises
        ------
        StructuralViolation   if the string is not a binary rooted tree.
        """
        children, distance, names, root, n_leaves = Tree._parse_newick(newick_string)
        self._build(children, distance, names, root, n_leaves, states)

    @classmethod
    def from_edges(
        cls,
        edges,
        edge_lengths,
        names: Optional[Sequence[str]] = None,
        states: StateSpec = None,
    ) -> "Tree":
        """
        Build a tree from a (parent, child) edge table.

        Parameters
        ----------
        edges : int array-like, shape (2T-2, 2)
            One row per edge.  Tips must be the nodes 0 … T-1; internal
            nodes may use any IDs in T … 2T-2.  The order in which a parent's
            two edges appear is its natural child order.
        edge_lengths : float array-like, shape (2T-2,)
            Branch length of each edge.
        names : sequence of str, optional
            Tip names (length T).
        states : mapping or sequence, optional
            As for the constructor.

        Raises
        ------
        StructuralViolation   for non-binary nodes, multiple parents or
                              roots, non-dense tip IDs, unreachable nodes or
                              missing branch lengths.
        NodeIndexError        for a node index outside [0, 2T-1).
        """
        children, distance, root, n_leaves = Tree._check_edges(edges, edge_lengths)
        n_nodes = 2 * n_leaves - 1
        if names is None:
            tip_names = [""] * n_leaves
        else:
            tip_names = [str(name) for name in names]
            if len(tip_names) != n_leaves:
                raise ValueError(
                    f"Expected {n_leaves} tip names, got {len(tip_names)}."
                )
        tree = cls.__new__(cls)
        tree._build(
            children,
            distance,
            tip_names + [""] * (n_nodes - n_leaves),
            root,
            n_leaves,
            states,
        )
        return tree

    def __repr__(self) -> str:
        return f"Tree(n_leaves={self.n_leaves}, n_nodes={self.n_nodes})"

    # ================================================================== #
    # Public methods                                                       #
    # ================================================================== #

    def is_tip(self, node) -> bool:
        """
        Return True if *node* is a tip.

        Raises
        ------
        NodeIndexError   if *node* is outside [0, n_nodes).
        """
        return self._check_index(node) < self.n_leaves

    def ladder_children(self, node) -> Tuple[int, int]:
        """
        Return the ladder-ordered ``(left, right)`` children of *node*.

        Raises
        ------
        NodeIndexError        if *node* is outside [0, n_nodes).
        StructuralViolation   if *node* is a tip.
        """
        node = self._check_index(node)
        if node < self.n_leaves:
            raise StructuralViolation(f"Node {node} is a tip and has no children.")
        return int(self.ladder_left[node]), int(self.ladder_right[node])

    def inorder(self) -> np.ndarray:
        """
        Return the canonical visitation order: the inorder traversal driven
        by the ladder ordering.

        Returns
        -------
        int32 ndarray of length n_nodes, a permutation of all node IDs.
        """
        return Tree._inorder_core(
            self.root, self.ladder_left, self.ladder_right, self.n_nodes
        )

    def tip_distances(self) -> np.ndarray:
        """Terminal branch length of every tip, indexed by tip ID."""
        return self.distance[: self.n_leaves].copy()

    def tip_id(self, name: str) -> int:
        """
        Return the tip ID of the taxon called *name*.

        Raises
        ------
        KeyError     if no tip has that name.
        ValueError   if tip names are not unique.
        """
        if self._name_index is None:
            self._build_name_index()
        if name not in self._name_index:
            raise KeyError(f"No tip with name '{name}' found in tree.")
        return self._name_index[name]

    @property
    def has_states(self) -> bool:
        """True if every tip carries a state code."""
        return bool(np.all(self.states[: self.n_leaves] >= 0))

    def check_states(self, kind: str, n_states: Optional[int] = None) -> None:
        """
        Check that the tip states support an encoding of *kind*.

        A no-op for 'plain'.

        Raises
        ------
        MissingState   if a tip has no state.
        InvalidState   if a code is outside the label space of *kind*.
        """
        if resolve_kind(kind) not in STATE_KINDS:
            return
        tip_states = self.states[: self.n_leaves]
        missing = np.flatnonzero(tip_states < 0)
        if missing.shape[0] > 0:
            node = int(missing[0])
            raise MissingState(node, self.names[node])
        check_state_codes(tip_states, kind, n_states)

    def encode(self, kind: str = "plain", n_states: Optional[int] = None) -> Encoding:
        """
        Compute the CBLV feature sequences of this tree.

        Walks ``inorder()`` once; internal nodes contribute their
        root-distance to ``nodes``, tips their terminal branch length to
        ``tips`` (and, for state kinds, their state code to ``states``).

        Parameters
        ----------
        kind     : 'plain' | 'binary-state' | 'multi-state'
        n_states : int, optional   Size of the multi-state label space.

        Returns
        -------
        PlainEncoding or StateEncoding

        Raises
        ------
        ValueError     for an unknown *kind*.
        MissingState   if a state kind is requested and a tip lacks a state.
        InvalidState   if a state code does not fit *kind*.
        """
        self.check_states(kind, n_states)

        order = self.inorder()
        tip_mask = order < self.n_leaves
        tip_order = order[tip_mask]
        node_order = order[~tip_mask]

        nodes = self.root_distance[node_order]
        tips = self.distance[tip_order]
        if kind == "plain":
            return PlainEncoding.build(nodes, tips)
        return StateEncoding.build(nodes, tips, self.states[tip_order], kind)

    def cblv(
        self,
        max_taxa: Optional[int] = None,
        kind: str = "plain",
        n_states: Optional[int] = None,
    ) -> np.ndarray:
        """
        Return the formatted, zero-padded CBLV vector of this tree.

        *max_taxa* defaults to this tree's tip count.

        Raises
        ------
        CapacityExceeded   if n_leaves > max_taxa.
        """
        if max_taxa is None:
            max_taxa = self.n_leaves
        return format_encoding(self.encode(kind, n_states), max_taxa)

    # ================================================================== #
    # Private instance methods                                             #
    # ================================================================== #

    def _build(self, children_in, distance_in, names_in, root_in, n_leaves, states) -> None:
        """
        **Private.**  Relabel internal nodes into preorder and populate all
        instance arrays.

        Input arrays use arbitrary internal IDs (>= n_leaves) with tips
        already numbered 0 … n_leaves-1.
        """
        n_nodes = 2 * n_leaves - 1

        # ---- Preorder relabel of internal nodes --------------------- #
        new_id = np.arange(n_nodes, dtype=np.int32)
        next_id = n_leaves
        stack = [int(root_in)]
        while stack:
            node = stack.pop()
            new_id[node] = next_id
            next_id += 1
            first, second = int(children_in[node, 0]), int(children_in[node, 1])
            if second >= n_leaves:
                stack.append(second)
            if first >= n_leaves:
                stack.append(first)

        internal_in = np.arange(n_leaves, n_nodes)
        internal = new_id[internal_in]

        children = np.full((n_nodes, 2), -1, dtype=np.int32)
        children[internal] = new_id[children_in[internal_in]]

        distance = np.empty(n_nodes, dtype=np.float64)
        distance[new_id] = distance_in

        names = [""] * n_nodes
        for old in range(n_leaves):
            names[old] = names_in[old]

        root = n_leaves
        distance[root] = 0.0
        bad = ~np.isfinite(distance)
        bad[root] = False
        if bad.any():
            node = int(np.flatnonzero(bad)[0])
            label = f" ('{names[node]}')" if names[node] else ""
            raise StructuralViolation(
                f"Node {node}{label} has no finite branch length; every "
                f"non-root edge needs one."
            )

        parent = np.full(n_nodes, -1, dtype=np.int32)
        parent[children[internal, 0]] = internal
        parent[children[internal, 1]] = internal

        # ---- Root-distances: forward sweep over preorder IDs -------- #
        root_distance = np.zeros(n_nodes, dtype=np.float64)
        for node in range(n_leaves, n_nodes):
            base = root_distance[node]
            for c in children[node]:
                root_distance[c] = base + distance[c]

        # ---- Reach: backward sweep ---------------------------------- #
        reach = root_distance.copy()
        for node in range(n_nodes - 1, n_leaves - 1, -1):
            reach[node] = max(reach[children[node, 0]], reach[children[node, 1]])

        # ---- Ladder ordering ---------------------------------------- #
        first = children[n_leaves:, 0]
        second = children[n_leaves:, 1]
        cherry = (first < n_leaves) & (second < n_leaves)
        swap = (reach[second] > reach[first]) & ~cherry

        ladder_left = np.full(n_nodes, -1, dtype=np.int32)
        ladder_right = np.full(n_nodes, -1, dtype=np.int32)
        ladder_left[n_leaves:] = np.where(swap, second, first)
        ladder_right[n_leaves:] = np.where(swap, first, second)

        self.n_nodes: int = n_nodes
        self.n_leaves: int = n_leaves
        self.root: int = root
        self.names = names
        self.parent = parent
        self.distance = distance
        self.children = children
        self.root_distance = root_distance
        self.reach = reach
        self.ladder_left = ladder_left
        self.ladder_right = ladder_right

        # Name index: built lazily on first name-based query.
        self._name_index: dict = None  # type: ignore[assignment]
        self.states = self._resolve_states(states)

        for arr in (
            self.parent,
            self.distance,
            self.children,
            self.states,
            self.root_distance,
            self.reach,
            self.ladder_left,
            self.ladder_right,
        ):
            arr.setflags(write=False)

        logger.debug("Built tree: %d tips, %d nodes", n_leaves, n_nodes)

    def _resolve_states(self, states: StateSpec) -> np.ndarray:
        """
        **Private.**  Convert a state mapping or sequence into an int32
        array over all nodes, -1 where absent.
        """
        out = np.full(self.n_nodes, -1, dtype=np.int32)
        if states is None:
            return out

        if isinstance(states, Mapping):
            for name, code in states.items():
                if code is not None:
                    out[self.tip_id(name)] = Tree._state_code(code, name)
            return out

        codes = list(states)
        if len(codes) != self.n_leaves:
            raise ValueError(
                f"Expected {self.n_leaves} tip states, got {len(codes)}."
            )
        for tip, code in enumerate(codes):
            if code is not None:
                out[tip] = Tree._state_code(code, tip)
        return out

    def _check_index(self, node) -> int:
        """**Private.**  Validate a node index and return it as a plain int."""
        if not isinstance(node, (int, np.integer)) or isinstance(node, bool):
            raise TypeError(f"Node index must be an integer, got {type(node).__name__}.")
        node = int(node)
        if node < 0 or node >= self.n_nodes:
            raise NodeIndexError(
                f"Node index {node} is outside [0, {self.n_nodes})."
            )
        return node

    def _build_name_index(self) -> None:
        """
        **Private.**  Build and cache ``self._name_index``: a dict mapping
        each non-empty tip name to its node ID.

        Raises
        ------
        ValueError   if duplicate tip names are found.
        """
        idx = {}
        for node_id in range(self.n_leaves):
            name = self.names[node_id]
            if name != "":
                if name in idx:
                    raise ValueError(
                        f"Duplicate tip name '{name}' at IDs "
                        f"{idx[name]} and {node_id}."
                    )
                idx[name] = node_id
        self._name_index = idx

    # ================================================================== #
    # Private static methods                                               #
    # ================================================================== #

    @staticmethod
    def _state_code(code, tip) -> int:
        value = int(code)
        if value < 0:
            raise InvalidState(f"State of tip {tip!r} is negative ({value}).")
        return value

    @staticmethod
    def _inorder_core(root: int, ladder_left, ladder_right, n_nodes: int) -> np.ndarray:
        """
        **Private static.**  Explicit-stack inorder traversal.

        While the cursor is set, push it and descend to its ladder-left
        child.  Otherwise pop, emit, and move to the popped node's
        ladder-right child.  Tips have -1 children, which unsets the cursor.

        The stack never holds more than height + 1 entries, so n_nodes is a
        safe preallocation.  ``phylovec._cpu_kernels`` runs the same loop
        per tree inside a numba ``prange``.
        """
        order = np.empty(n_nodes, dtype=np.int32)
        stack = np.empty(n_nodes, dtype=np.int32)
        top = -1
        pos = 0
        node = root
        while top >= 0 or node != -1:
            if node != -1:
                top += 1
                stack[top] = node
                node = int(ladder_left[node])
            else:
                node = int(stack[top])
                top -= 1
                order[pos] = node
                pos += 1
                node = int(ladder_right[node])
        return order

    @staticmethod
    def _parse_newick(newick_string: str):
        """
        **Private static.**  Parse a binary NEWICK string.

        Two passes
        ----------
        Pass 1  Count commas and parentheses → exact array sizes, and an
                early rejection of multifurcations and unary nodes.
        Pass 2  Iterative character scan with an explicit stack of open
                groups; no recursion.

        Returns
        -------
        (children, distance, names, root, n_leaves) with tips numbered
        left to right and internal nodes numbered in closing (post-) order.
        """
        s = format_newick(newick_string)[:-1]
        n_chars = len(s)

        # ---- Pass 1 ------------------------------------------------- #
        # A rooted binary tree with L tips has L-1 commas and L-1 pairs of
        # parentheses.
        n_commas = s.count(",")
        n_open = s.count("(")
        if n_open != s.count(")"):
            raise StructuralViolation("Unbalanced parentheses in NEWICK string.")
        if n_commas == 0:
            raise StructuralViolation("A tree needs at least two tips.")
        if n_open != n_commas:
            raise StructuralViolation(
                f"Tree is not strictly bifurcating: {n_open} internal nodes "
                f"for {n_commas + 1} tips (expected {n_commas})."
            )

        n_leaves = n_commas + 1
        n_nodes = 2 * n_leaves - 1
        children = np.full((n_nodes, 2), -1, dtype=np.int32)
        distance = np.full(n_nodes, np.nan, dtype=np.float64)
        names = [""] * n_nodes

        # ---- Pass 2 ------------------------------------------------- #
        groups = []  # child lists of currently open '('
        leaf_id = 0
        internal_id = n_leaves
        root = -1
        after_node = False  # a completed node must be followed by ',' or ')'

        i = 0
        while i < n_chars:
            c = s[i]

            if c in _WHITESPACE:
                i += 1
                continue

            if c == ",":
                if not groups or not after_node:
                    raise StructuralViolation(f"Unexpected ',' at position {i}.")
                after_node = False
                i += 1
                continue

            if c == "(":
                if after_node:
                    raise StructuralViolation(f"Missing ',' before position {i}.")
                groups.append([])
                i += 1
                continue

            if c == ")":
                if not groups or not after_node:
                    raise StructuralViolation(f"Unexpected ')' at position {i}.")
                kids = groups.pop()
                if len(kids) != 2:
                    raise StructuralViolation(
                        f"Node closed at position {i} has {len(kids)} "
                        f"children; only binary trees can be encoded."
                    )
                node_id = internal_id
                internal_id += 1
                children[node_id, 0] = kids[0]
                children[node_id, 1] = kids[1]

                # Support value / internal label, ignored.
                i += 1
                while i < n_chars and s[i] not in _DELIMITERS:
                    i += 1
                i, distance[node_id] = Tree._read_length(s, i)
            elif c == ";":
                raise StructuralViolation(f"Unexpected ';' at position {i}.")
            else:
                if after_node:
                    raise StructuralViolation(f"Missing ',' before position {i}.")
                if leaf_id >= n_leaves:
                    raise StructuralViolation(f"Too many tips at position {i}.")
                j = i
                while j < n_chars and s[j] not in _DELIMITERS:
                    j += 1
                node_id = leaf_id
                leaf_id += 1
                names[node_id] = s[i:j].strip()
                i, distance[node_id] = Tree._read_length(s, j)

            if groups:
                groups[-1].append(node_id)
            elif root == -1:
                root = node_id
            else:
                raise StructuralViolation(f"More than one root before position {i}.")
            after_node = True

        if groups or root < n_leaves:
            raise StructuralViolation("NEWICK string does not describe a single rooted tree.")

        return children, distance, names, root, n_leaves

    @staticmethod
    def _read_length(s: str, i: int):
        """
        **Private static.**  Read an optional ``:length`` starting at *i*.

        Returns ``(next_position, length)``; length is NaN when absent.
        """
        n_chars = len(s)
        while i < n_chars and s[i] in _WHITESPACE:
            i += 1
        if i >= n_chars or s[i] != ":":
            return i, np.nan
        j = i + 1
        while j < n_chars and s[j] not in _DELIMITERS:
            j += 1
        token = s[i + 1 : j].strip()
        try:
            value = float(token)
        except ValueError:
            raise StructuralViolation(
                f"Invalid branch length '{token}' at position {i + 1}."
            ) from None
        return j, value

    @staticmethod
    def _check_edges(edges, edge_lengths):
        """
        **Private static.**  Validate an edge table and return
        ``(children, distance, root, n_leaves)``.
        """
        edges = np.asarray(edges)
        if edges.ndim != 2 or edges.shape[1] != 2:
            raise StructuralViolation("edges must be an (n_edges, 2) table.")
        if edges.shape[0] > 0 and not np.issubdtype(edges.dtype, np.integer):
            raise StructuralViolation("edges must contain integer node indices.")
        edges = edges.astype(np.int64)
        lengths = np.asarray(edge_lengths, dtype=np.float64)
        if lengths.shape != (edges.shape[0],):
            raise StructuralViolation(
                f"Expected {edges.shape[0]} edge lengths, got shape {lengths.shape}."
            )

        n_edges = edges.shape[0]
        n_nodes = n_edges + 1
        if n_nodes < 3 or n_nodes % 2 == 0:
            raise StructuralViolation(
                f"{n_edges} edges cannot form a rooted binary tree "
                f"(T tips need 2T-2 edges, T >= 2)."
            )
        n_leaves = (n_nodes + 1) // 2

        out_of_range = (edges < 0) | (edges >= n_nodes)
        if out_of_range.any():
            row = int(np.flatnonzero(out_of_range.any(axis=1))[0])
            raise NodeIndexError(
                f"Edge {row} references a node outside [0, {n_nodes})."
            )

        parents = edges[:, 0]
        kids = edges[:, 1]
        n_parents = np.bincount(kids, minlength=n_nodes)
        if (n_parents > 1).any():
            node = int(np.argmax(n_parents))
            raise StructuralViolation(f"Node {node} has {n_parents[node]} parents.")

        n_children = np.bincount(parents, minlength=n_nodes)
        not_binary = (n_children != 0) & (n_children != 2)
        if not_binary.any():
            node = int(np.flatnonzero(not_binary)[0])
            raise StructuralViolation(
                f"Node {node} has {n_children[node]} children; only binary "
                f"trees can be encoded."
            )

        tips = n_children == 0
        if not tips[:n_leaves].all() or tips[n_leaves:].any():
            raise StructuralViolation(
                f"Tip IDs must be the dense range 0 … {n_leaves - 1}."
            )

        root = int(np.flatnonzero(n_parents == 0)[0])

        children = np.full((n_nodes, 2), -1, dtype=np.int32)
        filled = np.zeros(n_nodes, dtype=np.int32)
        for p, c in edges:
            children[p, filled[p]] = c
            filled[p] += 1

        distance = np.full(n_nodes, np.nan, dtype=np.float64)
        distance[kids] = lengths

        seen = np.zeros(n_nodes, dtype=bool)
        stack = [root]
        n_seen = 0
        while stack:
            node = stack.pop()
            if seen[node]:
                raise StructuralViolation(f"Cycle through node {node}.")
            seen[node] = True
            n_seen += 1
            if node >= n_leaves:
                stack.append(int(children[node, 0]))
                stack.append(int(children[node, 1]))
        if n_seen != n_nodes:
            node = int(np.flatnonzero(~seen)[0])
            raise StructuralViolation(
                f"Node {node} is not reachable from the root {root} "
                f"(cycle or disconnected component)."
            )

        return children, distance, root, n_leaves

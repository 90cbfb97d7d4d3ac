"""
_encoding.py
============
CBLV encodings (the per-tree feature sequences) and the formatter that packs
them into a fixed-length, zero-padded vector.

Encoding kinds
--------------
  'plain'         nodes + tips                       (2 blocks)
  'binary-state'  nodes + tips + states in {0, 1}    (3 blocks)
  'multi-state'   nodes + tips + states in 0..K-1    (3 blocks)

Vector layout
-------------
For an encoding with k blocks and capacity ``max_taxa``:

    vec[i * max_taxa + j] = sequence_i[j]   if j < len(sequence_i)
                            0.0             otherwise

A tree with T tips contributes T-1 internal-node root-distances, T terminal
branch lengths and (state kinds only) T state codes, so every block fits
whenever T <= max_taxa.
"""

from typing import NamedTuple, Optional, Tuple, Union

import numpy as np

from phylovec._errors import CapacityExceeded, InvalidState


ENCODING_KINDS = ("plain", "binary-state", "multi-state")

STATE_KINDS = ("binary-state", "multi-state")


def resolve_kind(kind: str) -> str:
    """
    Validate an encoding kind name.

    Raises
    ------
    ValueError   if *kind* is not one of ``ENCODING_KINDS``.
    """
    if kind not in ENCODING_KINDS:
        raise ValueError(
            f"Unknown encoding kind '{kind}'. "
            f"Valid kinds: {', '.join(ENCODING_KINDS)}"
        )
    return kind


def n_blocks_for(kind: str) -> int:
    """Number of sequences (vector blocks) produced by *kind*."""
    return 3 if resolve_kind(kind) in STATE_KINDS else 2


def check_capacity(max_taxa) -> int:
    """
    Validate a block capacity and return it as a plain int.

    Raises
    ------
    TypeError    if *max_taxa* is not an integer (bools are rejected).
    ValueError   if *max_taxa* < 1.
    """
    if not isinstance(max_taxa, (int, np.integer)) or isinstance(max_taxa, bool):
        raise TypeError(f"max_taxa must be an integer, got {type(max_taxa).__name__}.")
    max_taxa = int(max_taxa)
    if max_taxa < 1:
        raise ValueError(f"max_taxa must be >= 1, got {max_taxa}.")
    return max_taxa


def encoding_width(kind: str, max_taxa: int) -> int:
    """Length of a formatted vector of *kind* at capacity *max_taxa*."""
    return n_blocks_for(kind) * int(max_taxa)


def check_state_codes(states: np.ndarray, kind: str, n_states: Optional[int] = None) -> None:
    """
    Check tip state codes against the label space of *kind*.

    Missing states (-1) must have been rejected by the caller; this only
    checks the range of present codes.

    Raises
    ------
    InvalidState   if a code is outside the label space.
    ValueError     if *n_states* is given but is not >= 2.
    """
    if n_states is not None and n_states < 2:
        raise ValueError(f"n_states must be >= 2, got {n_states}.")
    if states.shape[0] == 0:
        return

    lo = int(states.min())
    hi = int(states.max())
    if kind == "binary-state":
        if lo < 0 or hi > 1:
            raise InvalidState(
                f"binary-state encoding needs states in {{0, 1}}; "
                f"found codes in [{lo}, {hi}]."
            )
    elif kind == "multi-state":
        if lo < 0:
            raise InvalidState(f"State codes must be non-negative; found {lo}.")
        if n_states is not None and hi >= n_states:
            raise InvalidState(
                f"multi-state encoding with n_states={n_states} needs states "
                f"in [0, {n_states - 1}]; found {hi}."
            )


def _frozen(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


class PlainEncoding(NamedTuple):
    """
    Encoding of a tree without discrete states.

    nodes : float64[T-1]   Root-distances of internal nodes, visitation order.
    tips  : float64[T]     Terminal branch lengths, visitation order.
    """

    nodes: np.ndarray
    tips: np.ndarray

    @property
    def kind(self) -> str:
        return "plain"

    @property
    def sequences(self) -> Tuple[np.ndarray, ...]:
        return (self.nodes, self.tips)

    @property
    def n_blocks(self) -> int:
        return 2

    @classmethod
    def build(cls, nodes, tips) -> "PlainEncoding":
        return cls(_frozen(nodes), _frozen(tips))


class StateEncoding(NamedTuple):
    """
    Encoding of a tree with one discrete state per tip.

    nodes  : float64[T-1]   Root-distances of internal nodes, visitation order.
    tips   : float64[T]     Terminal branch lengths, visitation order.
    states : float64[T]     Tip state codes, same order as ``tips``.
    kind   : str            'binary-state' or 'multi-state'.
    """

    nodes: np.ndarray
    tips: np.ndarray
    states: np.ndarray
    kind: str

    @property
    def sequences(self) -> Tuple[np.ndarray, ...]:
        return (self.nodes, self.tips, self.states)

    @property
    def n_blocks(self) -> int:
        return 3

    @classmethod
    def build(cls, nodes, tips, states, kind: str) -> "StateEncoding":
        if kind not in STATE_KINDS:
            raise ValueError(f"'{kind}' is not a state-augmented encoding kind.")
        return cls(_frozen(nodes), _frozen(tips), _frozen(states), kind)


Encoding = Union[PlainEncoding, StateEncoding]


def format_encoding(encoding: Encoding, max_taxa: int) -> np.ndarray:
    """
    Pack *encoding* into a zero-padded vector of length
    ``encoding.n_blocks * max_taxa``.

    Parameters
    ----------
    encoding : PlainEncoding | StateEncoding
    max_taxa : int   Capacity of each block; must be >= 1.

    Returns
    -------
    float64 ndarray, shape (n_blocks * max_taxa,)

    Raises
    ------
    CapacityExceeded   if any sequence is longer than *max_taxa*.  Checked
                       for every block before anything is written.
    ValueError         if *max_taxa* < 1.
    TypeError          if *max_taxa* is not an integer.
    """
    max_taxa = check_capacity(max_taxa)

    sequences = encoding.sequences
    for seq in sequences:
        if seq.shape[0] > max_taxa:
            raise CapacityExceeded(int(seq.shape[0]), max_taxa)

    vec = np.zeros(len(sequences) * max_taxa, dtype=np.float64)
    for i, seq in enumerate(sequences):
        start = i * max_taxa
        vec[start : start + seq.shape[0]] = seq
    return vec

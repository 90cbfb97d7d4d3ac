"""
_errors.py
==========
Exception hierarchy for phylovec.

Every error derives from ``EncodingError`` (itself a ``ValueError``), so
callers that only care about "the input cannot be encoded" can catch a
single class.  Errors are raised synchronously where they are detected; an
encoding that fails never produces a partially written vector.
"""


class EncodingError(ValueError):
    """Base class for all phylovec errors."""


class StructuralViolation(EncodingError):
    """The tree is not a well-formed rooted, strictly binary tree."""


class NodeIndexError(StructuralViolation, IndexError):
    """A node index outside ``[0, n_nodes)`` was passed to a tree query."""


class CapacityExceeded(EncodingError):
    """
    A feature sequence is longer than the configured ``max_taxa``.

    Attributes
    ----------
    length   : int   Length of the offending sequence.
    max_taxa : int   Configured capacity.
    """

    def __init__(self, length: int, max_taxa: int) -> None:
        self.length = length
        self.max_taxa = max_taxa
        super().__init__(
            f"Sequence of length {length} does not fit max_taxa={max_taxa}."
        )


class MissingState(EncodingError):
    """A state-augmented encoding was requested but a tip has no state."""

    def __init__(self, node: int, name: str = "") -> None:
        self.node = node
        self.name = name
        label = f" ('{name}')" if name else ""
        super().__init__(f"Tip {node}{label} has no discrete state.")


class InvalidState(EncodingError):
    """A tip state code is outside the label space of the encoding kind."""


class BatchEncodingError(EncodingError):
    """
    One tree of a batch could not be parsed or encoded.

    The original exception is chained as ``__cause__``.

    Attributes
    ----------
    tree_index : int   Position of the failing tree in the input collection.
    """

    def __init__(self, tree_index: int, cause: Exception) -> None:
        self.tree_index = tree_index
        super().__init__(f"Tree {tree_index}: {cause}")


class EncodingCancelled(EncodingError):
    """Batch encoding was cancelled before all trees were dispatched."""

"""
phylovec
========

Compact Bijective Ladderized Vector (CBLV) encoding of rooted, binary,
edge-weighted phylogenetic trees into fixed-length numeric vectors for
downstream statistical learners.

Each tree is ladderized (the deeper subtree always goes left), traversed
inorder without recursion, and reduced to two sequences: the root-distances
of its internal nodes and the terminal branch lengths of its tips.  State
variants add one discrete code per tip.  The sequences are zero-padded to a
fixed capacity ``max_taxa``, so trees with up to ``max_taxa`` tips map
injectively into vectors of one common length.

Main Classes
------------
Tree : Single tree with NEWICK / edge-table input, ladder ordering,
       inorder traversal and per-tree encoding
Forest : Ordered collection of trees, encoded in bulk into a matrix
PlainEncoding, StateEncoding : Per-tree feature sequences

Functions
---------
format_encoding : Zero-pad an encoding into a fixed-length vector
encoding_width : Vector length for an encoding kind and capacity
save_encoding, load_encoding : Persist encoded matrices
log_progress : Ready-made progress callback for Forest.encode

Context Managers
----------------
quiet, suppress_logger, suppress_warnings, use_backend, silent_benchmark

Examples
--------
>>> from phylovec import Tree
>>> tree = Tree('((A:0.2,B:0.3):0.5,C:0.4);')
>>> tree.cblv(max_taxa=3)
array([0.5, 0. , 0. , 0.2, 0.3, 0.4])

>>> from phylovec import Forest
>>> forest = Forest(['((A:1,B:1):1,C:2);', '(A:1,(B:1,C:1):1);'])
>>> forest.encode(max_taxa=4).shape
(8, 2)

States:

>>> tree = Tree('((A:1,B:1):1,C:2);', states={'A': 0, 'B': 1, 'C': 1})
>>> tree.cblv(kind='binary-state').shape
(9,)
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Main classes
from ._tree import Tree
from ._forest import Forest
from ._encoding import (
    ENCODING_KINDS,
    PlainEncoding,
    StateEncoding,
    encoding_width,
    format_encoding,
)

# Errors
from ._errors import (
    EncodingError,
    StructuralViolation,
    NodeIndexError,
    CapacityExceeded,
    MissingState,
    InvalidState,
    BatchEncodingError,
    EncodingCancelled,
)

# Context managers
from ._context import (
    suppress_logger,
    quiet,
    suppress_warnings,
    use_backend,
    silent_benchmark,
)

# Utilities
from ._utils import format_newick, save_encoding, load_encoding
from ._logging import log_progress

# Backend information
from ._backend import (
    get_available_backends,
    get_backend_info,
    check_numba_available,
)

# Public API
__all__ = [
    # Main classes
    "Tree",
    "Forest",
    "PlainEncoding",
    "StateEncoding",
    "ENCODING_KINDS",
    "encoding_width",
    "format_encoding",
    # Errors
    "EncodingError",
    "StructuralViolation",
    "NodeIndexError",
    "CapacityExceeded",
    "MissingState",
    "InvalidState",
    "BatchEncodingError",
    "EncodingCancelled",
    # Context managers
    "suppress_logger",
    "quiet",
    "suppress_warnings",
    "use_backend",
    "silent_benchmark",
    # Utilities
    "format_newick",
    "save_encoding",
    "load_encoding",
    "log_progress",
    # Backend information
    "get_available_backends",
    "get_backend_info",
    "check_numba_available",
    # Version info
    "__version__",
]

"""
_utils.py
=========
Standalone helpers: NEWICK normalization and persistence of encoded
matrices.

Matrices are written headerless, one row per feature and one column per
tree, which is the layout returned by ``Forest.encode``.
"""

import os
from typing import Union

import numpy as np


PathLike = Union[str, "os.PathLike[str]"]

_DELIMITED = {".csv": ",", ".tsv": "\t"}


def format_newick(newick: str) -> str:
    """
    Format a NEWICK string for consistent representation.

    Ensures the NEWICK string:
    - Ends with a semicolon
    - Has no leading/trailing whitespace

    Examples
    --------
    >>> format_newick('((A:1,B:1):1,C:2)')
    '((A:1,B:1):1,C:2);'

    >>> format_newick('  (A:1,B:1);  ')
    '(A:1,B:1);'
    """
    newick = newick.strip()
    if not newick.endswith(";"):
        newick += ";"
    return newick


def _suffix(path: PathLike) -> str:
    suffix = os.path.splitext(os.fspath(path))[1].lower()
    if suffix != ".npy" and suffix not in _DELIMITED:
        raise ValueError(
            f"Unsupported file type '{suffix}'; use .npy, .csv or .tsv."
        )
    return suffix


def save_encoding(matrix: np.ndarray, path: PathLike) -> None:
    """
    Write an encoded matrix to *path*.

    The format follows the suffix: ``.npy`` (binary, exact) or ``.csv`` /
    ``.tsv`` (text, full float precision).

    Raises
    ------
    ValueError   for an unsupported suffix or a matrix that is not 2-D.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got {matrix.ndim} dimension(s).")
    suffix = _suffix(path)
    if suffix == ".npy":
        np.save(path, matrix)
    else:
        np.savetxt(path, matrix, delimiter=_DELIMITED[suffix], fmt="%.17g")


def load_encoding(path: PathLike) -> np.ndarray:
    """Read a matrix written by ``save_encoding``; always returns 2-D."""
    suffix = _suffix(path)
    if suffix == ".npy":
        matrix = np.load(path)
    else:
        matrix = np.loadtxt(path, delimiter=_DELIMITED[suffix], dtype=np.float64, ndmin=2)
    return np.asarray(matrix, dtype=np.float64)

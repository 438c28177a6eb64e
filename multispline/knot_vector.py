from enum import Enum
from typing import Iterable

import numpy as np


class KnotVectorType(Enum):
    """
    Strategy used to place the knots of one dimension from sample values.

    Attributes
    ----------
    EXPLICIT
        The knot vector is given as is (construction from coefficients, loading).
    FREE
        End knots repeated `p + 1` times, interior knots at the sample values with
        `p - 1` of them dropped next to the ends (not-a-knot end conditions).
    REGULAR
        End knots repeated `p + 1` times, interior knots at the moving averages of
        `p` consecutive sample values.
    EQUIDISTANT
        End knots repeated `p + 1` times, interior knots evenly spaced.
    """

    EXPLICIT = "explicit"
    FREE = "free"
    REGULAR = "regular"
    EQUIDISTANT = "equidistant"


def knot_multiplicity(knot: np.ndarray[np.floating], value: float) -> int:
    """
    Count how many times `value` appears in `knot`.

    Knots are compared exactly, which is what knot insertion produces.
    """
    return int(np.count_nonzero(np.asarray(knot) == value))


def check_knot_vector(p: int, knot: Iterable[float]) -> np.ndarray[np.floating]:
    """
    Validate a knot vector for a basis of degree `p` and return it as a float array.

    Parameters
    ----------
    p : int
        Degree of the basis, at least 1.
    knot : Iterable[float]
        Candidate knot vector.

    Returns
    -------
    knot : np.ndarray[np.floating]
        The knot vector as a contiguous float64 array.

    Raises
    ------
    ValueError
        If the degree is smaller than 1, if the knot vector has fewer than `p + 2`
        entries, contains non finite values, decreases somewhere, or if a knot has
        a multiplicity greater than `p + 1`.
    """
    if int(p) != p or p < 1:
        raise ValueError(f"The degree must be an integer >= 1, got {p}.")
    knot = np.ascontiguousarray(knot, dtype="float")
    if knot.ndim != 1 or knot.size < p + 2:
        raise ValueError(
            f"A knot vector of degree {p} needs at least {p + 2} knots, got {knot.size}."
        )
    if not np.all(np.isfinite(knot)):
        raise ValueError("The knot vector contains non finite values.")
    if np.any(np.diff(knot) < 0):
        raise ValueError("The knot vector must be non-decreasing.")
    _, counts = np.unique(knot, return_counts=True)
    if counts.max() > p + 1:
        raise ValueError(
            f"Knot multiplicity {counts.max()} exceeds degree + 1 = {p + 1}."
        )
    if knot[p] == knot[knot.size - p - 1]:
        raise ValueError("The support interval of the knot vector is empty.")
    return knot


def build_knot_vector(
    x: Iterable[float], p: int, kind: KnotVectorType = KnotVectorType.FREE
) -> np.ndarray[np.floating]:
    """
    Place the knots of a degree `p` basis interpolating samples located at `x`.

    The resulting basis has exactly as many functions as there are distinct
    values in `x`, so that the interpolation system built on a complete grid is
    square.

    Parameters
    ----------
    x : Iterable[float]
        Sample abscissas of one dimension. Duplicates are ignored.
    p : int
        Degree of the basis.
    kind : KnotVectorType, optional
        Knot placement strategy. By default, `KnotVectorType.FREE`.

    Returns
    -------
    knot : np.ndarray[np.floating]
        Knot vector of size `n + p + 1` where `n` is the number of distinct values.

    Raises
    ------
    ValueError
        If there are less than `p + 1` distinct values, or if `kind` is
        `KnotVectorType.EXPLICIT`.

    Examples
    --------
    >>> build_knot_vector([0., 1., 2., 3., 4.], 3)
    array([0., 0., 0., 0., 2., 4., 4., 4., 4.])
    """
    x = np.unique(np.asarray(x, dtype="float"))
    n = x.size
    if n < p + 1:
        raise ValueError(
            f"At least {p + 1} distinct values are needed for a degree {p} basis, got {n}."
        )
    if kind == KnotVectorType.FREE:
        start = p // 2
        interior = x[1 + start : n - 1 - (p - 1 - start)]
    elif kind == KnotVectorType.REGULAR:
        if n == p + 1:
            interior = np.empty(0, dtype="float")
        else:
            interior = np.convolve(x[1:-1], np.ones(p), "valid") / p
    elif kind == KnotVectorType.EQUIDISTANT:
        interior = np.linspace(x[0], x[-1], n - p + 1)[1:-1]
    else:
        raise ValueError(f"Cannot build a {kind.value} knot vector from sample values.")
    knot = np.concatenate((np.full(p + 1, x[0]), interior, np.full(p + 1, x[-1])))
    return knot

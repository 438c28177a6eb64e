from typing import Iterable, Union

import numpy as np
import numba as nb
import scipy.sparse as sps
import matplotlib.pyplot as plt

from multispline.errors import DomainError, KnotMultiplicityError
from multispline.knot_vector import (
    KnotVectorType,
    build_knot_vector,
    check_knot_vector,
    knot_multiplicity,
)


class BSplineBasis:
    """
    BSpline basis in 1D.

    A class representing a one-dimensional B-spline basis with functionality for evaluation,
    derivation and knot manipulation. Every knot operation returns the sparse linear
    operator `D` such that `new_coefficients = D @ old_coefficients` represents exactly the
    same function as before the operation.

    Attributes
    ----------
    p : int
        Degree of the polynomials composing the basis.
    knot : np.ndarray[np.floating]
        Knot vector defining the B-spline basis. Contains non-decreasing sequence
        of real numbers.
    m : int
        Last index of the knot vector (size - 1).
    n : int
        Last index of the basis functions. When evaluated, returns an array of size
        `n + 1`.
    span : tuple[float, float]
        Interval of definition of the basis `(knot[p], knot[m - p])`.

    Notes
    -----
    The knot vector does not need to be open (clamped): the support interval is always
    `[knot[p], knot[m - p]]`, closed on both sides. Evaluation relies on the
    triangular table algorithm of Piegl and Tiller, compiled with numba.

    See Also
    --------
    `multispline.tensor_basis.TensorBSplineBasis` : Tensor product of several `BSplineBasis`
    """

    p: int
    knot: np.ndarray[np.floating]
    m: int
    n: int
    span: tuple[float, float]

    def __init__(self, p: int, knot: Iterable[float]):
        """
        Initialize a B-spline basis with specified degree and knot vector.

        Parameters
        ----------
        p : int
            Degree of the B-spline polynomials, at least 1.
        knot : Iterable[float]
            Knot vector defining the B-spline basis. Must be a non-decreasing sequence
            of real numbers in which no knot appears more than `p + 1` times.

        Raises
        ------
        ValueError
            If the knot vector is not valid for the degree `p`.

        Examples
        --------
        Create a quadratic B-spline basis with open knot vector:
        >>> basis = BSplineBasis(2, [0., 0., 0., 1., 1., 1.])
        """
        self.p = int(p)
        self._set_knot(check_knot_vector(self.p, knot))

    def _set_knot(self, knot: np.ndarray[np.floating]):
        self.knot = knot
        self.m = self.knot.size - 1
        self.n = self.m - self.p - 1
        self.span = (float(self.knot[self.p]), float(self.knot[self.m - self.p]))

    @classmethod
    def from_values(
        cls,
        x: Iterable[float],
        p: int,
        kind: KnotVectorType = KnotVectorType.FREE,
    ) -> "BSplineBasis":
        """
        Create a basis whose functions interpolate samples located at `x`.

        Parameters
        ----------
        x : Iterable[float]
            Sample abscissas of this dimension. Duplicates are ignored.
        p : int
            Degree of the basis.
        kind : KnotVectorType, optional
            Knot placement strategy. By default, `KnotVectorType.FREE`.

        Returns
        -------
        BSplineBasis
            Basis with as many functions as distinct values in `x`.

        Examples
        --------
        >>> basis = BSplineBasis.from_values([0., 1., 2., 3.], 1)
        >>> basis.knot
        array([0., 0., 1., 2., 3., 3.])
        """
        return cls(p, build_knot_vector(x, p, kind))

    def getNbFunc(self) -> int:
        """
        Returns the number of basis functions, `n + 1`.
        """
        return self.n + 1

    def inside_support(self, XI: Union[float, np.ndarray[np.floating]]) -> np.ndarray[np.bool_]:
        """
        Tell whether points lie inside the closed support interval `span`.
        """
        XI = np.asarray(XI, dtype="float")
        return np.logical_and(XI >= self.span[0], XI <= self.span[1])

    def _check_support(self, XI: np.ndarray[np.floating]):
        outside = np.logical_not(self.inside_support(XI))
        if np.any(outside):
            raise DomainError(
                f"xi={XI[outside][0]} is outside the definition interval "
                f"[{self.span[0]}, {self.span[1]}] of the spline !"
            )

    def N(self, XI: Iterable[float], k: int = 0) -> sps.coo_matrix:
        """
        Compute the k-th derivative of the B-spline basis functions at specified points.

        Parameters
        ----------
        XI : Iterable[float]
            Points at which to evaluate the basis functions.
        k : int, optional
            Order of the derivative to compute. Derivatives of order greater than `p`
            are identically zero. By default, 0.

        Returns
        -------
        DN : sps.coo_matrix
            Sparse matrix containing the k-th derivative values. Each row corresponds to an
            evaluation point, each column to a basis function. Shape is (`XI.size`, `n + 1`).

        Raises
        ------
        DomainError
            If a point lies outside of `span`.

        Examples
        --------
        >>> basis = BSplineBasis(2, [0., 0., 0., 1., 1., 1.])
        >>> basis.N([0., 0.5, 1.]).toarray()  # Evaluate basis functions
        array([[1.  , 0.  , 0.  ],
               [0.25, 0.5 , 0.25],
               [0.  , 0.  , 1.  ]])
        >>> basis.N([0., 0.5, 1.], k=1).toarray()  # Evaluate first derivatives
        array([[-2.,  2.,  0.],
               [-1.,  0.,  1.],
               [ 0., -2.,  2.]])
        """
        if k < 0:
            raise ValueError("Impossible to determine the k-th derivative of a B-spline if k<0 !")
        XI = np.ascontiguousarray(XI, dtype="float").ravel()
        self._check_support(XI)
        vals, row, col = _DN(self.p, self.n, self.knot, XI, int(k))
        DN = sps.coo_matrix((vals, (row, col)), shape=(XI.size, self.n + 1))
        return DN

    def evaluate(
        self, xi: float, k: int = 0
    ) -> tuple[np.ndarray[np.integer], np.ndarray[np.floating]]:
        """
        Evaluate the k-th derivative of the `p + 1` basis functions supported at `xi`.

        Parameters
        ----------
        xi : float
            Point at which to evaluate the basis.
        k : int, optional
            Order of the derivative. By default, 0.

        Returns
        -------
        indices : np.ndarray[np.integer]
            Indices of the basis functions whose support contains `xi`, in increasing order.
        values : np.ndarray[np.floating]
            Corresponding values of the k-th derivative.

        Raises
        ------
        DomainError
            If `xi` lies outside of `span`.
        """
        DN = self.N(np.array([xi], dtype="float"), k)
        return DN.col, DN.data

    def knot_multiplicity(self, value: float) -> int:
        """
        Number of occurrences of `value` in the knot vector.
        """
        return knot_multiplicity(self.knot, value)

    def knotInsertion(self, knots_to_add: Iterable[float]) -> sps.csr_matrix:
        """
        Insert knots into the B-spline basis and return the transformation matrix.

        Parameters
        ----------
        knots_to_add : Iterable[float]
            Knots to insert into the knot vector. They must lie within `span`.

        Returns
        -------
        D : sps.csr_matrix
            Transformation matrix such that new coefficients = `D` @ old coefficients.

        Raises
        ------
        DomainError
            If a knot lies outside of `span`.
        KnotMultiplicityError
            If a knot would end up with a multiplicity greater than `p + 1`.
            The basis is left unchanged.

        Notes
        -----
        Knots are inserted one at a time with Boehm's algorithm and the elementary
        insertion matrices are chained.

        Examples
        --------
        >>> basis = BSplineBasis(2, np.array([0, 0, 0, 1, 1, 1], dtype='float'))
        >>> basis.knotInsertion(np.array([0.33, 0.67], dtype='float')).toarray()
        array([[1.    , 0.    , 0.    ],
               [0.67  , 0.33  , 0.    ],
               [0.2211, 0.5578, 0.2211],
               [0.    , 0.33  , 0.67  ],
               [0.    , 0.    , 1.    ]])

        The knot vector is modified (as well as n and m) :
        >>> basis.knot
        array([0.  , 0.  , 0.  , 0.33, 0.67, 1.  , 1.  , 1.  ])
        """
        knots_to_add = np.sort(np.asarray(knots_to_add, dtype="float").ravel())
        self._check_support(knots_to_add)
        new_knot = np.sort(np.concatenate((self.knot, knots_to_add)))
        u, counts = np.unique(knots_to_add, return_counts=True)
        for value, count in zip(u, counts):
            if self.knot_multiplicity(value) + count > self.p + 1:
                raise KnotMultiplicityError(
                    f"Inserting {value} {count} time(s) would exceed the multiplicity "
                    f"{self.p + 1} allowed for degree {self.p}."
                )
        D = sps.identity(self.n + 1, dtype="float", format="csr")
        knot = self.knot
        for value in knots_to_add:
            D = _insertion_matrix(self.p, knot, value) @ D
            knot = np.insert(knot, np.searchsorted(knot, value, side="right"), value)
        assert np.array_equal(knot, new_knot)
        self._set_knot(knot)
        return D.tocsr()

    def insert_knot(self, value: float, multiplicity: int = 1) -> sps.csr_matrix:
        """
        Insert the knot `value` `multiplicity` times and return the transformation matrix.

        See `knotInsertion` for details and raised errors.
        """
        return self.knotInsertion(np.full(multiplicity, value, dtype="float"))

    def refine(self) -> sps.csr_matrix:
        """
        Insert one knot at the midpoint of every non empty knot interval of the span.

        Returns
        -------
        D : sps.csr_matrix
            Transformation matrix such that new coefficients = `D` @ old coefficients.

        Examples
        --------
        >>> basis = BSplineBasis(1, [0., 0., 1., 2., 2.])
        >>> D = basis.refine()
        >>> basis.knot
        array([0. , 0. , 0.5, 1. , 1.5, 2. , 2. ])
        """
        knot_uniq = np.unique(
            self.knot[np.logical_and(self.knot >= self.span[0], self.knot <= self.span[1])]
        )
        midpoints = 0.5 * (knot_uniq[:-1] + knot_uniq[1:])
        return self.knotInsertion(midpoints)

    def reduce_support(self, lower: float, upper: float) -> sps.csr_matrix:
        """
        Remove the basis functions that vanish everywhere on `[lower, upper]`.

        Parameters
        ----------
        lower : float
            Lower bound of the new region of interest.
        upper : float
            Upper bound of the new region of interest.

        Returns
        -------
        S : sps.csr_matrix
            Selection matrix of shape (new `n + 1`, old `n + 1`) such that
            new coefficients = `S` @ old coefficients.

        Raises
        ------
        DomainError
            If `lower >= upper` or if the bounds are not inside `span`.

        Notes
        -----
        The kept functions are exactly those supported somewhere on `[lower, upper]`,
        so the represented function is unchanged on that interval. The new support
        contains `[lower, upper]` and is equal to it when both bounds are knots of
        multiplicity `p + 1`.
        """
        if not (self.span[0] <= lower < upper <= self.span[1]):
            raise DomainError(
                f"Cannot reduce the support [{self.span[0]}, {self.span[1]}] "
                f"to [{lower}, {upper}]."
            )
        first = _find_span(self.p, self.n, self.knot, float(lower)) - self.p
        last = int(np.searchsorted(self.knot, upper, side="left")) - 1
        last = min(max(last, self.p), self.n)
        nb_func = last - first + 1
        S = sps.coo_matrix(
            (np.ones(nb_func), (np.arange(nb_func), np.arange(first, last + 1))),
            shape=(nb_func, self.n + 1),
        )
        self._set_knot(self.knot[first : last + self.p + 2].copy())
        return S.tocsr()

    def greville_abscissa(self) -> np.ndarray[np.floating]:
        """
        Compute the Greville abscissa (knot averages) of this 1D B-spline basis.

        The Greville abscissa represent the coordinates associated with each
        basis function. For the i-th basis function, its abscissa is
        (knot[i+1] + knot[i+2] + ... + knot[i+p]) / p.

        Returns
        -------
        greville : np.ndarray[np.floating]
            Array containing the Greville abscissa of size `n + 1`.

        Examples
        --------
        >>> basis = BSplineBasis(2, [0, 0, 0, 0.5, 1, 1, 1])
        >>> basis.greville_abscissa()
        array([0.  , 0.25, 0.75, 1.  ])
        """
        greville = (
            np.convolve(self.knot[1:-1], np.ones(self.p, dtype=int), "valid") / self.p
        )
        return greville

    def to_dict(self) -> dict:
        """
        Returns a dictionary representation of the BSplineBasis object.
        """
        return {"p": self.p, "knot": self.knot.tolist()}

    @classmethod
    def from_dict(cls, data: dict) -> "BSplineBasis":
        """
        Creates a BSplineBasis object from a dictionary representation.
        """
        return cls(data["p"], data["knot"])

    def plotN(self, k: int = 0, show: bool = True):
        """
        Plot the B-spline basis functions or their derivatives over the span.

        Parameters
        ----------
        k : int, optional
            Order of derivative to plot. By default, 0 (plots the basis functions themselves).
        show : bool, optional
            Whether to display the plot immediately. Can be useful to add more stuff to the plot.
            By default, True.

        Examples
        --------
        >>> basis = BSplineBasis(2, [0., 0., 0., 1., 1., 1.])
        >>> basis.plotN()  # Plot basis functions
        >>> basis.plotN(k=1)  # Plot first derivatives
        """
        XI = np.linspace(self.span[0], self.span[1], 500)
        DN = self.N(XI, k).tocsc()
        for idx in range(self.n + 1):
            column = DN[:, idx]
            if column.nnz == 0:
                continue
            values = column.toarray().ravel()
            support = np.logical_and(XI >= self.knot[idx], XI <= self.knot[idx + self.p + 1])
            label = "$N_{" + str(idx) + "}" + ("'" * k) + "(x)$"
            plt.plot(XI[support], values[support], label=label)
        plt.xlabel("$x$")
        for xi in np.unique(self.knot):
            plt.axvline(xi, color="gray", linestyle=":", linewidth=0.8)
        if self.n + 1 <= 10:
            plt.legend(loc="best")
        if show:
            plt.show()


def _insertion_matrix(p: int, knot: np.ndarray[np.floating], u: float) -> sps.csr_matrix:
    """
    Boehm's single knot insertion matrix.

    Parameters
    ----------
    p : int
        Degree of the basis.
    knot : np.ndarray[np.floating]
        Knot vector before insertion.
    u : float
        Knot to insert, inside the span of `knot`.

    Returns
    -------
    D : sps.csr_matrix
        Matrix of shape (`nb_func + 1`, `nb_func`) mapping old coefficients to new ones.
    """
    nb_func = knot.size - p - 1
    elem = int(np.searchsorted(knot, u, side="right")) - 1
    vals = []
    row = []
    col = []
    for i in range(nb_func + 1):
        if i <= elem - p:
            alpha = 1.0
        elif i > elem:
            alpha = 0.0
        else:
            alpha = (u - knot[i]) / (knot[i + p] - knot[i])
        if alpha != 0 and i < nb_func:
            vals.append(alpha)
            row.append(i)
            col.append(i)
        if alpha != 1 and i >= 1:
            vals.append(1 - alpha)
            row.append(i)
            col.append(i - 1)
    D = sps.coo_matrix((vals, (row, col)), shape=(nb_func + 1, nb_func))
    return D.tocsr()


# %% fast functions for evaluation


@nb.njit(cache=True)
def _find_span(p, n, knot, xi):
    """
    Find `i` so that `xi` belongs to [ `knot`[`i`], `knot`[`i` + 1] [ with `p` <= `i` <= `n`.

    The upper end of the span belongs to the last non empty interval.
    `xi` is assumed to be inside [ `knot`[`p`], `knot`[`n` + 1] ].
    """
    if xi >= knot[n + 1]:
        i = n
        while knot[i] == knot[i + 1]:
            i -= 1
        return i
    low = p
    high = n + 1
    while high - low > 1:
        mid = (low + high) // 2
        if xi < knot[mid]:
            high = mid
        else:
            low = mid
    return low


@nb.njit(cache=True)
def _ders_basis_funs(elem, xi, p, knot, k):
    """
    Derivatives up to order `k` of the `p + 1` basis functions non zero on `elem`.

    Returns
    -------
    ders : numpy.array of float
        Array of shape (`k` + 1, `p` + 1) where `ders[d, j]` is the `d`-th derivative
        of the basis function `elem - p + j` at `xi`.
    """
    ders = np.zeros((k + 1, p + 1))
    ndu = np.empty((p + 1, p + 1))
    left = np.empty(p + 1)
    right = np.empty(p + 1)
    ndu[0, 0] = 1.0
    for j in range(1, p + 1):
        left[j] = xi - knot[elem + 1 - j]
        right[j] = knot[elem + j] - xi
        saved = 0.0
        for r in range(j):
            # lower triangle holds the knot differences
            ndu[j, r] = right[r + 1] + left[j - r]
            temp = ndu[r, j - 1] / ndu[j, r]
            ndu[r, j] = saved + right[r + 1] * temp
            saved = left[j - r] * temp
        ndu[j, j] = saved
    for j in range(p + 1):
        ders[0, j] = ndu[j, p]
    kmax = min(k, p)
    a = np.empty((2, p + 1))
    for r in range(p + 1):
        s1 = 0
        s2 = 1
        a[0, 0] = 1.0
        for kk in range(1, kmax + 1):
            d = 0.0
            rk = r - kk
            pk = p - kk
            if r >= kk:
                a[s2, 0] = a[s1, 0] / ndu[pk + 1, rk]
                d = a[s2, 0] * ndu[rk, pk]
            j1 = 1 if rk >= -1 else -rk
            j2 = kk - 1 if r - 1 <= pk else p - r
            for j in range(j1, j2 + 1):
                a[s2, j] = (a[s1, j] - a[s1, j - 1]) / ndu[pk + 1, rk + j]
                d += a[s2, j] * ndu[rk + j, pk]
            if r <= pk:
                a[s2, kk] = -a[s1, kk - 1] / ndu[pk + 1, r]
                d += a[s2, kk] * ndu[r, pk]
            ders[kk, r] = d
            s1, s2 = s2, s1
    fac = p
    for kk in range(1, kmax + 1):
        for j in range(p + 1):
            ders[kk, j] *= fac
        fac *= p - kk
    return ders


@nb.njit(cache=True)
def _DN(p, n, knot, XI, k):
    """
    Compute the `k`-th derivative of the BSpline basis functions for a set
    of values in the parametric space.

    Returns
    -------
    (vals, row, col) : (numpy.array of float, numpy.array of int, numpy.array of int)
        Values and indices of the `k`-th derivative matrix of the BSpline
        basis functions in the columns for each value of `XI` in the rows.
    """
    loop2 = p + 1
    nb_val = XI.size * loop2
    vals = np.empty(nb_val, dtype=np.float64)
    row = np.empty(nb_val, dtype=np.int64)
    col = np.empty(nb_val, dtype=np.int64)
    for i_xi in range(XI.size):
        xi = XI[i_xi]
        elem = _find_span(p, n, knot, xi)
        ders = _ders_basis_funs(elem, xi, p, knot, k)
        for ind2 in range(loop2):
            sparse_ind = i_xi * loop2 + ind2
            vals[sparse_ind] = ders[k, ind2]
            row[sparse_ind] = i_xi
            col[sparse_ind] = elem - p + ind2
    return (vals, row, col)

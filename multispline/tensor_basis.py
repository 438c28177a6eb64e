from typing import Iterable, Union

import numpy as np
import scipy.sparse as sps

from multispline.b_spline_basis import BSplineBasis
from multispline.errors import DomainError
from multispline.knot_vector import KnotVectorType
from multispline.tensor_index import expand_transform, tensor_sparse_vector, wide_product


class TensorBSplineBasis:
    """
    Tensor product of one-dimensional B-spline bases.

    The multivariate basis functions are products of one `BSplineBasis` function per
    dimension. They are flattened in C order: the last dimension varies fastest (see
    `multispline.tensor_index`). Evaluation, control point equations, knot averages and
    serialization all share this order.

    Attributes
    ----------
    NPa : int
        Number of variables (dimension of the input space).
    bases : np.ndarray[BSplineBasis]
        Array containing `BSplineBasis` instances for each dimension.
    """

    NPa: int
    bases: np.ndarray[BSplineBasis]

    def __init__(self, degrees: Iterable[int], knots: Iterable[Iterable[float]]):
        """
        Initialize a `TensorBSplineBasis` with specified degrees and knot vectors.

        Parameters
        ----------
        degrees : Iterable[int]
            Polynomial degree of each dimension.
        knots : Iterable[Iterable[float]]
            Knot vector of each dimension. The number of knot vectors must match the
            number of degrees.

        Examples
        --------
        >>> degrees = [2, 2]
        >>> knots = [np.array([0, 0, 0, 0.5, 1, 1, 1], dtype='float'),
        ...          np.array([0, 0, 0, 0.5, 1, 1, 1], dtype='float')]
        >>> basis = TensorBSplineBasis(degrees, knots)
        """
        degrees = list(degrees)
        knots = list(knots)
        if len(degrees) != len(knots):
            raise ValueError(
                f"Got {len(degrees)} degrees for {len(knots)} knot vectors."
            )
        self.NPa = len(degrees)
        self.bases = np.empty(self.NPa, dtype="object")
        for idx in range(self.NPa):
            self.bases[idx] = BSplineBasis(degrees[idx], knots[idx])

    @classmethod
    def from_bases(cls, bases: Iterable[BSplineBasis]) -> "TensorBSplineBasis":
        """
        Create a `TensorBSplineBasis` from existing `BSplineBasis` objects.
        """
        bases = list(bases)
        self = cls([], [])
        self.NPa = len(bases)
        self.bases = np.empty(self.NPa, dtype="object")
        self.bases[:] = bases
        return self

    @classmethod
    def from_values(
        cls,
        table_x: Iterable[Iterable[float]],
        degrees: Iterable[int],
        kind: KnotVectorType = KnotVectorType.FREE,
    ) -> "TensorBSplineBasis":
        """
        Create a basis fitted to the distinct sample values of each dimension.

        Parameters
        ----------
        table_x : Iterable[Iterable[float]]
            Distinct sample values of each dimension.
        degrees : Iterable[int]
            Polynomial degree of each dimension.
        kind : KnotVectorType, optional
            Knot placement strategy. By default, `KnotVectorType.FREE`.

        Returns
        -------
        TensorBSplineBasis
            Basis with one function per grid node.
        """
        bases = [
            BSplineBasis.from_values(x, p, kind) for x, p in zip(table_x, degrees)
        ]
        return cls.from_bases(bases)

    def copy(self) -> "TensorBSplineBasis":
        """
        Deep copy of the basis.
        """
        return TensorBSplineBasis(self.getDegrees(), self.getKnots())

    def getDegrees(self) -> np.ndarray[np.integer]:
        """
        Returns the polynomial degree of each dimension.
        """
        degrees = np.array([basis.p for basis in self.bases], dtype="int")
        return degrees

    def getKnots(self) -> list[np.ndarray[np.floating]]:
        """
        Returns a copy of the knot vector of each dimension.
        """
        knots = [basis.knot.copy() for basis in self.bases]
        return knots

    def getShape(self) -> tuple[int, ...]:
        """
        Returns the number of basis functions in each dimension.
        """
        return tuple(basis.n + 1 for basis in self.bases)

    def getNbFunc(self) -> int:
        """
        Returns the total number of basis functions, product of `getShape()`.
        """
        return int(np.prod(self.getShape(), dtype="int"))

    def getSpans(self) -> list[tuple[float, float]]:
        """
        Returns the support interval of each dimension.
        """
        spans = [basis.span for basis in self.bases]
        return spans

    def get_support_lower_bound(self) -> np.ndarray[np.floating]:
        return np.array([basis.span[0] for basis in self.bases], dtype="float")

    def get_support_upper_bound(self) -> np.ndarray[np.floating]:
        return np.array([basis.span[1] for basis in self.bases], dtype="float")

    def inside_support(self, x: Iterable[float]) -> bool:
        """
        Tell whether the point `x` lies in the Cartesian product of the supports.
        """
        x = np.asarray(x, dtype="float").ravel()
        if x.size != self.NPa:
            return False
        return bool(
            np.all(x >= self.get_support_lower_bound())
            and np.all(x <= self.get_support_upper_bound())
        )

    def max_nonzeros_per_sample(self) -> int:
        """
        Upper bound on the number of basis functions non zero at one point.
        """
        return int(np.prod(self.getDegrees() + 1))

    def _check_point(self, x: Iterable[float]) -> np.ndarray[np.floating]:
        x = np.asarray(x, dtype="float").ravel()
        if x.size != self.NPa:
            raise DomainError(f"Expected a point with {self.NPa} coordinates, got {x.size}.")
        if not self.inside_support(x):
            raise DomainError(f"Point {x} is outside the support of the basis.")
        return x

    def _eval_mixed(self, x: np.ndarray[np.floating], k: Iterable[int]) -> sps.csr_matrix:
        vectors = [basis.evaluate(xi, ki) for basis, xi, ki in zip(self.bases, x, k)]
        indices, values = tensor_sparse_vector(vectors, self.getShape())
        vector = sps.csr_matrix(
            (values, (np.zeros_like(indices), indices)), shape=(1, self.getNbFunc())
        )
        return vector

    def eval(self, x: Iterable[float]) -> sps.csr_matrix:
        """
        Evaluate every basis function at the point `x`.

        Parameters
        ----------
        x : Iterable[float]
            Point of size `NPa`.

        Returns
        -------
        N : sps.csr_matrix
            Sparse row vector of shape (1, `getNbFunc()`) with at most
            `max_nonzeros_per_sample()` non zero entries.

        Raises
        ------
        DomainError
            If `x` lies outside the support.
        """
        x = self._check_point(x)
        return self._eval_mixed(x, [0] * self.NPa)

    def eval_jacobian(self, x: Iterable[float]) -> sps.csr_matrix:
        """
        First partial derivatives of every basis function at the point `x`.

        Returns
        -------
        J : sps.csr_matrix
            Matrix of shape (`getNbFunc()`, `NPa`) whose column `i` holds the derivatives
            with respect to the `i`-th variable.
        """
        x = self._check_point(x)
        columns = []
        for axis in range(self.NPa):
            k = [0] * self.NPa
            k[axis] = 1
            columns.append(self._eval_mixed(x, k).T)
        J = sps.hstack(columns, format="csr")
        return J

    def eval_hessian(self, x: Iterable[float]) -> sps.csr_matrix:
        """
        Second partial derivatives of every basis function at the point `x`.

        Returns
        -------
        H : sps.csr_matrix
            Matrix of shape (`NPa` * `getNbFunc()`, `NPa`). The block of rows
            `i * getNbFunc()` to `(i + 1) * getNbFunc()` and column `j` holds the
            derivatives with respect to variables `i` and `j`. Contracting it with
            `kron(identity(NPa), coefficients)` yields the Hessian of the spline.
        """
        x = self._check_point(x)
        blocks = np.empty((self.NPa, self.NPa), dtype="object")
        for i in range(self.NPa):
            for j in range(i, self.NPa):
                k = [0] * self.NPa
                k[i] += 1
                k[j] += 1
                column = self._eval_mixed(x, k).T
                blocks[i, j] = column
                blocks[j, i] = column
        H = sps.bmat(blocks, format="csr")
        return H

    def DN(
        self,
        XI: Union[np.ndarray[np.floating], tuple[np.ndarray[np.floating], ...]],
        k: Union[int, Iterable[int]] = 0,
    ) -> Union[sps.csr_matrix, np.ndarray[sps.csr_matrix]]:
        """
        Compute the `k`-th derivative of the basis at many points at once.

        Parameters
        ----------
        XI : Union[np.ndarray[np.floating], tuple[np.ndarray[np.floating], ...]]
            Points where to evaluate the basis functions.
            Two input formats are accepted:
            1. `numpy.ndarray`: Array of coordinates with shape (`NPa`, n_points).
            Each column represents one evaluation point.
            2. `tuple`: Contains `NPa` arrays of coordinates. The points are all the
            combinations of these coordinates, the last dimension varying fastest.

        k : Union[int, Iterable[int]], optional
            Derivative orders to compute. Two formats are accepted:
            1. `int`: Same derivative order along all axes.
            - `k=0`: Evaluate basis functions (default)
            - `k=1`: Compute first derivatives (gradient)
            - `k=2`: Compute second derivatives (hessian)
            2. `list[int]`: Different derivative orders for each axis.
            Example: `[1, 0]` computes first derivative w.r.t `x_0`, no derivative w.r.t `x_1`.
            By default, 0.

        Returns
        -------
        DN : Union[sps.csr_matrix, np.ndarray[sps.csr_matrix]]
            - If `k` is a `list` or is 0: a single sparse matrix of shape
            (n_points, `getNbFunc()`).
            - If `k` is an `int` > 0: an array of sparse matrices with shape [`NPa`]*`k`.

        Raises
        ------
        DomainError
            If a point lies outside the support.
        """
        if isinstance(XI, np.ndarray):
            fct = wide_product
            XI = XI.reshape((self.NPa, -1))
        else:
            fct = sps.kron

        if isinstance(k, (int, np.integer)) and k == 0:
            k = [0] * self.NPa

        if isinstance(k, (int, np.integer)):
            dkbasis_dxik = np.empty((self.NPa, k + 1), dtype="object")
            for idx in range(self.NPa):
                basis = self.bases[idx]
                for k_querry in range(k + 1):
                    dkbasis_dxik[idx, k_querry] = basis.N(XI[idx], k=k_querry)
            DN = np.empty([self.NPa] * k, dtype="object")
            dic = {}
            for axes in np.ndindex(*DN.shape):
                u, c = np.unique(axes, return_counts=True)
                k_arr = np.zeros(self.NPa, dtype="int")
                k_arr[u] = c
                key = tuple(k_arr)
                if key not in dic:
                    for idx in range(self.NPa):
                        k_querry = k_arr[idx]
                        if idx == 0:
                            dic[key] = dkbasis_dxik[idx, k_querry]
                        else:
                            dic[key] = fct(dic[key], dkbasis_dxik[idx, k_querry])
                    dic[key] = sps.csr_matrix(dic[key])
                DN[axes] = dic[key]
            return DN
        for idx in range(self.NPa):
            DN_elem = self.bases[idx].N(XI[idx], k=k[idx])
            if idx == 0:
                DN = DN_elem
            else:
                DN = fct(DN, DN_elem)
        return sps.csr_matrix(DN)

    def knot_multiplicity(self, value: float, axis: int) -> int:
        return self.bases[axis].knot_multiplicity(value)

    def insert_knots(self, value: float, axis: int, multiplicity: int = 1) -> sps.csr_matrix:
        """
        Insert the knot `value` `multiplicity` times in the knot vector of dimension `axis`.

        Returns
        -------
        T : sps.csr_matrix
            Transform of shape (new `getNbFunc()`, old `getNbFunc()`) such that
            new coefficients = `T` @ old coefficients.

        Raises
        ------
        KnotMultiplicityError
            If the multiplicity of `value` would exceed `p + 1`. Nothing is modified.
        DomainError
            If `value` is outside the support of dimension `axis`. Nothing is modified.
        """
        shape = self.getShape()
        T = self.bases[axis].insert_knot(value, multiplicity)
        return expand_transform(T, axis, shape)

    def refine_knots(self) -> sps.csr_matrix:
        """
        Insert the midpoint of every non empty knot interval, in every dimension.

        Returns
        -------
        T : sps.csr_matrix
            Transform such that new coefficients = `T` @ old coefficients.
        """
        T = sps.identity(self.getNbFunc(), dtype="float", format="csr")
        for axis in range(self.NPa):
            shape = self.getShape()
            T = expand_transform(self.bases[axis].refine(), axis, shape) @ T
        return T.tocsr()

    def reduce_support(
        self, lower: Iterable[float], upper: Iterable[float]
    ) -> sps.csr_matrix:
        """
        Remove the basis functions that vanish everywhere on the box `[lower, upper]`.

        Returns
        -------
        S : sps.csr_matrix
            Selection matrix such that new coefficients = `S` @ old coefficients.

        Raises
        ------
        DomainError
            If the box is empty or not contained in the support. Nothing is modified.
        """
        lower = np.asarray(lower, dtype="float").ravel()
        upper = np.asarray(upper, dtype="float").ravel()
        if lower.size != self.NPa or upper.size != self.NPa:
            raise DomainError(f"Expected bounds with {self.NPa} coordinates.")
        for (sl, su), lb, ub in zip(self.getSpans(), lower, upper):
            if not (sl <= lb < ub <= su):
                raise DomainError(
                    f"Cannot reduce the support [{sl}, {su}] "
                    f"to [{lb}, {ub}]."
                )
        S = sps.identity(self.getNbFunc(), dtype="float", format="csr")
        for axis in range(self.NPa):
            shape = self.getShape()
            S_elem = self.bases[axis].reduce_support(lower[axis], upper[axis])
            S = expand_transform(S_elem, axis, shape) @ S
        return S.tocsr()

    def greville_abscissa(self) -> list[np.ndarray[np.floating]]:
        """
        Greville abscissa of each dimension.
        """
        return [basis.greville_abscissa() for basis in self.bases]

    def knot_averages(self) -> np.ndarray[np.floating]:
        """
        Location of every basis function in the input space.

        Returns
        -------
        averages : np.ndarray[np.floating]
            Array of shape (`NPa`, `getNbFunc()`). Row `i` holds the Greville abscissa
            of dimension `i` spread over the flat index.
        """
        grids = np.meshgrid(*self.greville_abscissa(), indexing="ij")
        averages = np.array([grid.ravel() for grid in grids]).reshape((self.NPa, -1))
        return averages

    def to_dict(self) -> dict:
        return {"bases": [basis.to_dict() for basis in self.bases]}

    @classmethod
    def from_dict(cls, data: dict) -> "TensorBSplineBasis":
        return cls.from_bases([BSplineBasis.from_dict(d) for d in data["bases"]])

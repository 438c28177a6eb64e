import json
import os
import pickle
from enum import Enum
from typing import Iterable, Union

import numpy as np
import scipy.sparse as sps
import meshio as io

from multispline.control_points import ControlPointSolver
from multispline.data_table import DataTable
from multispline.errors import (
    DomainError,
    IncompleteGridError,
    SerializationFormatError,
    SplineStateError,
)
from multispline.knot_vector import KnotVectorType
from multispline.serialization import load_spline, save_spline
from multispline.tensor_basis import TensorBSplineBasis


class BSplineType(Enum):
    """
    Degree of the basis used to interpolate samples.
    """

    LINEAR = 1
    QUADRATIC = 2
    CUBIC = 3

    @classmethod
    def parse(cls, value: Union["BSplineType", int, str]) -> "BSplineType":
        """
        Convert an enum member, a degree or a name to a `BSplineType`.
        Anything not recognized means `CUBIC`.

        Examples
        --------
        >>> BSplineType.parse(1)
        <BSplineType.LINEAR: 1>
        >>> BSplineType.parse("quadratic")
        <BSplineType.QUADRATIC: 2>
        >>> BSplineType.parse(7)
        <BSplineType.CUBIC: 3>
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.__members__.get(value.upper(), cls.CUBIC)
        try:
            return cls(value)
        except ValueError:
            return cls.CUBIC


class ModelState(Enum):
    UNINITIALIZED = 0
    BASIS_LOADED = 1
    CONTROL_POINTS_COMPUTED = 2
    READY = 3


class SplineModel:
    """
    Scalar function of several variables represented by a tensor product B-spline.

    The model holds a `TensorBSplineBasis`, one coefficient per basis function and the
    knot averages locating each basis function in the input space. It can be built by
    interpolating a complete grid of samples (`from_samples`), from explicit
    coefficients and knot vectors (the constructor) or from a file (`load`).

    Attributes
    ----------
    num_variables : int
        Number of input variables.
    basis : TensorBSplineBasis
        Tensor product basis.
    coefficients : np.ndarray[np.floating]
        Array of shape (1, `basis.getNbFunc()`).
    knot_averages : np.ndarray[np.floating]
        Array of shape (`num_variables`, `basis.getNbFunc()`).
    state : ModelState
        Construction stage. Everything but `load` and `save` requires `READY`.

    Notes
    -----
    Evaluation methods have no side effects. Knot operations and `load` mutate the
    model and must not run concurrently with anything else on the same instance.

    Examples
    --------
    >>> table = DataTable()
    >>> for x0 in np.linspace(0, 1, 5):
    ...     for x1 in np.linspace(0, 1, 5):
    ...         table.add_sample([x0, x1], x0 * x1)
    >>> model = SplineModel.from_samples(table, BSplineType.CUBIC)
    >>> round(model.eval([0.5, 0.5]), 12)
    0.25
    """

    num_variables: int
    basis: Union[TensorBSplineBasis, None]
    coefficients: Union[np.ndarray[np.floating], None]
    knot_averages: Union[np.ndarray[np.floating], None]
    state: ModelState

    def __init__(
        self,
        coefficients: Union[Iterable[float], None] = None,
        knots: Union[Iterable[Iterable[float]], None] = None,
        degrees: Union[Iterable[int], None] = None,
    ):
        """
        Build a model from explicit coefficients, knot vectors and degrees.

        Called without arguments, creates an uninitialized model to be filled by `load`.

        Parameters
        ----------
        coefficients : Union[Iterable[float], None], optional
            One coefficient per basis function, in flattened order (last variable
            varying fastest). A (1, n) array is accepted too.
        knots : Union[Iterable[Iterable[float]], None], optional
            Knot vector of each variable.
        degrees : Union[Iterable[int], None], optional
            Degree of each variable.

        Raises
        ------
        ValueError
            If only some of the arguments are given, or if they are inconsistent.
        """
        self.num_variables = 0
        self.basis = None
        self.coefficients = None
        self.knot_averages = None
        self.state = ModelState.UNINITIALIZED
        given = [arg is not None for arg in (coefficients, knots, degrees)]
        if not any(given):
            return
        if not all(given):
            raise ValueError("coefficients, knots and degrees must be given together.")
        basis = TensorBSplineBasis(degrees, knots)
        self._commit(basis, coefficients, basis.knot_averages())

    @classmethod
    def from_samples(
        cls,
        samples: DataTable,
        bspline_type: Union[BSplineType, int, str] = BSplineType.CUBIC,
        knot_vector_type: KnotVectorType = KnotVectorType.FREE,
        verbose: bool = False,
    ) -> "SplineModel":
        """
        Interpolate a complete grid of samples.

        Parameters
        ----------
        samples : DataTable
            Samples covering every combination of the per-variable values.
        bspline_type : Union[BSplineType, int, str], optional
            Degree of the basis. Unrecognized values mean cubic.
            By default, `BSplineType.CUBIC`.
        knot_vector_type : KnotVectorType, optional
            Knot placement strategy. By default, `KnotVectorType.FREE`.
        verbose : bool, optional
            Report the linear solver progress. By default, False.

        Returns
        -------
        SplineModel
            Model whose value at every sample input is the sample output.

        Raises
        ------
        IncompleteGridError
            If a combination of per-variable values has no sample.
        SingularSystemError
            If the interpolation equations cannot be solved.
        """
        if not samples.is_grid_complete():
            raise IncompleteGridError(
                "Cannot create B-spline from irregular (incomplete) grid."
            )
        degree = BSplineType.parse(bspline_type).value
        self = cls()
        basis = TensorBSplineBasis.from_values(
            samples.get_table_x(), [degree] * samples.get_num_variables(), knot_vector_type
        )
        self.basis = basis
        self.num_variables = basis.NPa
        self.state = ModelState.BASIS_LOADED
        solver = ControlPointSolver(basis, verbose=verbose)
        coefficients, knot_averages = solver.solve(samples)
        self.state = ModelState.CONTROL_POINTS_COMPUTED
        self._commit(basis, coefficients, knot_averages)
        return self

    @classmethod
    def from_file(cls, filepath: str) -> "SplineModel":
        """
        Create a model from a file written by `save`.
        """
        self = cls()
        self.load(filepath)
        return self

    def _commit(self, basis, coefficients, knot_averages):
        coefficients = np.asarray(coefficients, dtype="float").reshape((1, -1))
        knot_averages = np.asarray(knot_averages, dtype="float")
        nb_func = basis.getNbFunc()
        if coefficients.shape[1] != nb_func:
            raise ValueError(
                f"Expected {nb_func} coefficients for this basis, got {coefficients.shape[1]}."
            )
        if knot_averages.shape != (basis.NPa, nb_func):
            raise ValueError(
                f"Knot averages of shape {knot_averages.shape} do not match "
                f"({basis.NPa}, {nb_func})."
            )
        self.basis = basis
        self.num_variables = basis.NPa
        self.coefficients = coefficients
        self.knot_averages = knot_averages
        self.state = ModelState.READY

    def _require_ready(self):
        if self.state != ModelState.READY:
            raise SplineStateError(f"The B-spline is not ready (state {self.state.name}).")

    def copy(self) -> "SplineModel":
        """
        Deep copy of the model.
        """
        self._require_ready()
        other = SplineModel()
        other._commit(self.basis.copy(), self.coefficients.copy(), self.knot_averages.copy())
        return other

    # evaluation

    def eval(self, x: Iterable[float]) -> float:
        """
        Value of the spline at the point `x`.

        Raises
        ------
        DomainError
            If `x` lies outside the domain.
        """
        self._require_ready()
        N = self.basis.eval(x)
        return float((N @ self.coefficients.T)[0, 0])

    def __call__(self, X: np.ndarray[np.floating]) -> np.ndarray[np.floating]:
        """
        Values of the spline at many points.

        Parameters
        ----------
        X : np.ndarray[np.floating]
            Array of shape (`num_variables`, n_points).

        Returns
        -------
        values : np.ndarray[np.floating]
            Array of shape (n_points,).
        """
        self._require_ready()
        X = np.asarray(X, dtype="float").reshape((self.num_variables, -1))
        N = self.basis.DN(np.ascontiguousarray(X))
        return N @ self.coefficients.ravel()

    def eval_jacobian(self, x: Iterable[float]) -> np.ndarray[np.floating]:
        """
        Gradient of the spline at the point `x`, as a (1, `num_variables`) array.
        """
        self._require_ready()
        J = self.basis.eval_jacobian(x)
        return (J.T @ self.coefficients.T).T

    def eval_hessian(self, x: Iterable[float]) -> np.ndarray[np.floating]:
        """
        Hessian of the spline at the point `x`, as a (`num_variables`, `num_variables`) array.
        """
        self._require_ready()
        DB = self.basis.eval_hessian(x)
        caug = sps.kron(
            sps.identity(self.num_variables, format="csr"),
            sps.csr_matrix(self.coefficients),
        )
        H = (caug @ DB).toarray()
        return H

    # domain queries

    def point_in_domain(self, x: Iterable[float]) -> bool:
        self._require_ready()
        return self.basis.inside_support(x)

    def get_domain_lower_bound(self) -> np.ndarray[np.floating]:
        self._require_ready()
        return self.basis.get_support_lower_bound()

    def get_domain_upper_bound(self) -> np.ndarray[np.floating]:
        self._require_ready()
        return self.basis.get_support_upper_bound()

    def get_knot_vectors(self) -> list[np.ndarray[np.floating]]:
        self._require_ready()
        return self.basis.getKnots()

    def get_degrees(self) -> np.ndarray[np.integer]:
        self._require_ready()
        return self.basis.getDegrees()

    def get_num_basis_functions(self) -> int:
        self._require_ready()
        return self.basis.getNbFunc()

    def get_num_control_points(self) -> int:
        self._require_ready()
        return self.coefficients.shape[1]

    # control points

    def get_control_points(self) -> np.ndarray[np.floating]:
        """
        Knot averages stacked over the coefficients, shape (`num_variables` + 1, n).
        """
        self._require_ready()
        return np.vstack((self.knot_averages, self.coefficients))

    def set_control_points(self, control_points: np.ndarray[np.floating]):
        """
        Replace knot averages and coefficients at once.

        Raises
        ------
        ValueError
            If `control_points` is not of shape (`num_variables` + 1, `get_num_basis_functions()`).
        """
        self._require_ready()
        control_points = np.asarray(control_points, dtype="float")
        expected = (self.num_variables + 1, self.basis.getNbFunc())
        if control_points.shape != expected:
            raise ValueError(
                f"Control points of shape {control_points.shape} do not match {expected}."
            )
        self._commit(
            self.basis,
            control_points[self.num_variables :].copy(),
            control_points[: self.num_variables].copy(),
        )

    # knot operations

    def _apply_transform(self, T: sps.spmatrix):
        self.coefficients = np.asarray((T @ self.coefficients.T).T)
        self.knot_averages = np.asarray((T @ self.knot_averages.T).T)

    def insert_knots(self, value: float, axis: int, multiplicity: int = 1) -> bool:
        """
        Insert the knot `value` `multiplicity` times in the knot vector of variable `axis`.

        The represented function is unchanged.

        Returns
        -------
        inserted : bool
            `False`, with the model untouched, if the multiplicity of `value` would
            exceed `p + 1` or if `value` is outside the domain of variable `axis`.
        """
        self._require_ready()
        if not 0 <= axis < self.num_variables or multiplicity < 1:
            return False
        p = self.basis.getDegrees()[axis]
        if self.basis.knot_multiplicity(value, axis) + multiplicity > p + 1:
            return False
        lb, ub = self.basis.getSpans()[axis]
        if not lb <= value <= ub:
            return False
        T = self.basis.insert_knots(value, axis, multiplicity)
        self._apply_transform(T)
        return True

    def refine_knot_vectors(self) -> bool:
        """
        Insert the midpoint of every non empty knot interval in every variable.

        The represented function is unchanged.
        """
        self._require_ready()
        T = self.basis.refine_knots()
        self._apply_transform(T)
        return True

    def regularize_knot_vectors(
        self, lower: Iterable[float], upper: Iterable[float]
    ) -> bool:
        """
        Raise the multiplicity of `lower` and `upper` to `p + 1` in every variable.
        """
        self._require_ready()
        lower = np.asarray(lower, dtype="float").ravel()
        upper = np.asarray(upper, dtype="float").ravel()
        if lower.size != self.num_variables or upper.size != self.num_variables:
            return False
        for axis, p in enumerate(self.basis.getDegrees()):
            for value in (lower[axis], upper[axis]):
                nb_knots = p + 1 - self.basis.knot_multiplicity(value, axis)
                if nb_knots > 0 and not self.insert_knots(value, axis, nb_knots):
                    return False
        return True

    def remove_unsupported_basis_functions(
        self, lower: Iterable[float], upper: Iterable[float]
    ) -> bool:
        """
        Remove the basis functions that vanish everywhere on the box `[lower, upper]`.
        """
        self._require_ready()
        try:
            S = self.basis.reduce_support(lower, upper)
        except DomainError:
            return False
        self._apply_transform(S)
        return True

    def reduce_domain(
        self,
        lower: Iterable[float],
        upper: Iterable[float],
        regularize: bool = True,
        refine: bool = False,
    ) -> bool:
        """
        Restrict the domain to its intersection with the box `[lower, upper]`.

        Parameters
        ----------
        lower : Iterable[float]
            Lower bound of each variable.
        upper : Iterable[float]
            Upper bound of each variable.
        regularize : bool, optional
            Make the new bounds knots of multiplicity `p + 1` before removing basis
            functions, so that the new domain is exactly the intersection.
            By default, True.
        refine : bool, optional
            Insert the midpoint of every knot interval once the domain is reduced.
            By default, False.

        Returns
        -------
        reduced : bool
            `True`. Values inside the new domain are unchanged.

        Raises
        ------
        DomainError
            If a lower bound is not strictly below its upper bound, if the box does not
            overlap the current domain, or if one of the steps fails. The model is left
            unchanged.
        """
        self._require_ready()
        lower = np.asarray(lower, dtype="float").ravel()
        upper = np.asarray(upper, dtype="float").ravel()
        if lower.size != self.num_variables or upper.size != self.num_variables:
            raise DomainError(f"Expected bounds with {self.num_variables} coordinates.")
        sl = self.get_domain_lower_bound()
        su = self.get_domain_upper_bound()
        if np.any(upper <= lower) or np.any(lower >= su) or np.any(upper <= sl):
            raise DomainError("Cannot reduce B-spline domain to empty set!")
        new_lower = np.maximum(lower, sl)
        new_upper = np.minimum(upper, su)
        if np.array_equal(new_lower, sl) and np.array_equal(new_upper, su):
            return True
        work = self.copy()
        if regularize and not work.regularize_knot_vectors(new_lower, new_upper):
            raise DomainError("Failed to regularize knot vectors!")
        if not work.remove_unsupported_basis_functions(new_lower, new_upper):
            raise DomainError("Failed to remove unsupported basis functions!")
        if refine and not work.refine_knot_vectors():
            raise DomainError("Failed to refine knot vectors!")
        self._commit(work.basis, work.coefficients, work.knot_averages)
        return True

    # persistence

    def to_dict(self) -> dict:
        """
        Returns a dictionary representation of the model.
        """
        self._require_ready()
        return {
            "basis": self.basis.to_dict(),
            "coefficients": self.coefficients.ravel().tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SplineModel":
        """
        Creates a model from a dictionary representation.
        """
        self = cls()
        basis = TensorBSplineBasis.from_dict(data["basis"])
        self._commit(basis, data["coefficients"], basis.knot_averages())
        return self

    def save(self, filepath: str):
        """
        Save the model to a file.

        Supported extensions: json, pkl. Any other extension uses the text format
        of `multispline.serialization`.
        """
        self._require_ready()
        ext = os.path.splitext(filepath)[1].lower()
        if ext == ".json":
            with open(filepath, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
        elif ext == ".pkl":
            with open(filepath, "wb") as f:
                pickle.dump(self.to_dict(), f)
        else:
            save_spline(
                filepath, self.coefficients, self.basis.getKnots(), self.basis.getDegrees()
            )

    def load(self, filepath: str):
        """
        Replace the model by the one stored in `filepath`.

        Raises
        ------
        SerializationFormatError
            If the file is malformed. The model is left unchanged.
        """
        ext = os.path.splitext(filepath)[1].lower()
        if ext in (".json", ".pkl"):
            try:
                if ext == ".json":
                    with open(filepath, "r") as f:
                        data = json.load(f)
                else:
                    with open(filepath, "rb") as f:
                        data = pickle.load(f)
                other = SplineModel.from_dict(data)
            except (KeyError, TypeError, ValueError, pickle.UnpicklingError) as e:
                raise SerializationFormatError(f"Malformed B-spline file {filepath}: {e}") from e
        else:
            coefficients, knots, degrees = load_spline(filepath)
            if coefficients.shape[0] != 1:
                raise SerializationFormatError(
                    f"Expected a single row of coefficients, got {coefficients.shape[0]}."
                )
            try:
                other = SplineModel(coefficients, knots, degrees)
            except ValueError as e:
                raise SerializationFormatError(f"Malformed B-spline file {filepath}: {e}") from e
        self._commit(other.basis, other.coefficients, other.knot_averages)

    def save_control_points(self, filepath: str, verbose: bool = True):
        """
        Write the control points as a VTK point cloud readable by Paraview.

        The first three variables give the point coordinates. With fewer than three
        variables, the coefficient is used as the next coordinate. The coefficient is
        also attached as point data.

        Parameters
        ----------
        filepath : str
            Destination file; its extension selects the meshio writer (`.vtu`, `.vtk`, ...).
        verbose : bool, optional
            Print the written file name. By default, True.
        """
        self._require_ready()
        nb_func = self.coefficients.shape[1]
        points = np.zeros((nb_func, 3), dtype="float")
        nb_coords = min(self.num_variables, 3)
        points[:, :nb_coords] = self.knot_averages[:nb_coords].T
        if self.num_variables < 3:
            points[:, self.num_variables] = self.coefficients[0]
        cells = [("vertex", np.arange(nb_func).reshape((-1, 1)))]
        mesh = io.Mesh(points, cells, point_data={"coefficient": self.coefficients[0]})
        mesh.write(filepath)
        if verbose:
            print("VTK: " + filepath + " written")

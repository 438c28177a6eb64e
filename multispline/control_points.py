from typing import Iterable, Union

import numpy as np
import scipy.sparse as sps
import scipy.linalg
from scipy.sparse.linalg import splu
from tqdm import tqdm

from multispline.data_table import DataTable
from multispline.errors import SingularSystemError
from multispline.tensor_basis import TensorBSplineBasis

# Systems with fewer equations are solved as dense straight away
MAX_DENSE_EQUATIONS = 2**10
ASSEMBLY_CHUNK_SIZE = 4096


class LinearSolver:
    """
    One attempt at solving `A @ X = B`.

    Subclasses raise `numpy.linalg.LinAlgError` when the factorization fails, which
    lets `solve_with_fallback` move on to the next attempt.
    """

    name = "linear"

    def solve(self, A: Union[sps.spmatrix, np.ndarray], B: np.ndarray) -> np.ndarray:
        raise NotImplementedError


def _check_solution(A, X, B, rtol=1e-8, atol=1e-10):
    if not np.all(np.isfinite(X)):
        raise np.linalg.LinAlgError("The solution contains non finite values.")
    residual = A @ X - B
    scale = atol + rtol * max(np.abs(B).max(initial=0.0), 1.0)
    if np.abs(residual).max(initial=0.0) > scale:
        raise np.linalg.LinAlgError("The solution does not satisfy the system.")


class SparseLUSolver(LinearSolver):
    """
    Sparse LU factorization (SuperLU). Square systems only.
    """

    name = "sparse"

    def solve(self, A: Union[sps.spmatrix, np.ndarray], B: np.ndarray) -> np.ndarray:
        A = sps.csc_matrix(A)
        if A.shape[0] != A.shape[1]:
            raise np.linalg.LinAlgError(
                f"Sparse LU needs a square system, got shape {A.shape}."
            )
        try:
            lu = splu(A)
        except RuntimeError as e:
            raise np.linalg.LinAlgError(str(e)) from e
        X = lu.solve(np.asarray(B, dtype="float"))
        _check_solution(A, X, B)
        return X


class DenseQRSolver(LinearSolver):
    """
    Dense QR factorization with column pivoting.

    Over determined systems are solved in the least squares sense.

    Parameters
    ----------
    rcond : Union[float, None], optional
        Relative threshold on the diagonal of `R` under which the system is
        considered rank deficient. If `None`, `max(A.shape) * eps`.
        By default, None.
    """

    name = "dense"

    def __init__(self, rcond: Union[float, None] = None):
        self.rcond = rcond

    def solve(self, A: Union[sps.spmatrix, np.ndarray], B: np.ndarray) -> np.ndarray:
        A = A.toarray() if sps.issparse(A) else np.asarray(A, dtype="float")
        B = np.asarray(B, dtype="float")
        nb_eq, nb_unknowns = A.shape
        if nb_eq < nb_unknowns:
            raise np.linalg.LinAlgError(
                f"Under determined system: {nb_eq} equations for {nb_unknowns} unknowns."
            )
        Q, R, P = scipy.linalg.qr(A, mode="economic", pivoting=True)
        diag = np.abs(np.diag(R))
        rcond = self.rcond if self.rcond is not None else max(A.shape) * np.finfo("float").eps
        if diag.size == 0 or diag[-1] <= rcond * diag[0]:
            raise np.linalg.LinAlgError("The system is rank deficient.")
        Z = scipy.linalg.solve_triangular(R, Q.T @ B)
        X = np.empty_like(Z)
        X[P] = Z
        if nb_eq == nb_unknowns:
            _check_solution(A, X, B)
        return X


def solve_with_fallback(
    A: Union[sps.spmatrix, np.ndarray],
    B: np.ndarray,
    solvers: Iterable[LinearSolver],
    verbose: bool = False,
) -> np.ndarray:
    """
    Try each solver in turn and return the first solution found.

    Raises
    ------
    SingularSystemError
        If every solver failed. The error of the last attempt is chained.
    """
    error = None
    for solver in solvers:
        if verbose:
            print(f"Computing B-spline control points using {solver.name} solver.")
        try:
            return solver.solve(A, B)
        except np.linalg.LinAlgError as e:
            error = e
            if verbose:
                print(f"The {solver.name} solver failed: {e}")
    raise SingularSystemError(
        "Failed to solve for B-spline coefficients."
    ) from error


class ControlPointSolver:
    """
    Builds and solves the interpolation equations of a tensor product basis.

    The equations `A @ c = b` gather one row per sample, `A` holding the basis
    functions evaluated at the sample inputs. `b` is the sample outputs when solving
    for the coefficients and the sample inputs when solving for the knot averages.

    Parameters
    ----------
    basis : TensorBSplineBasis
        Basis already fitted to the distinct sample values of each variable.
    max_dense_equations : int, optional
        Systems with fewer equations skip the sparse attempt.
        By default, `MAX_DENSE_EQUATIONS`.
    verbose : bool, optional
        Print the solver being used and show a progress bar while assembling.
        By default, False.
    """

    def __init__(
        self,
        basis: TensorBSplineBasis,
        max_dense_equations: int = MAX_DENSE_EQUATIONS,
        verbose: bool = False,
    ):
        self.basis = basis
        self.max_dense_equations = max_dense_equations
        self.verbose = verbose

    def basis_function_matrix(self, samples: DataTable) -> sps.csr_matrix:
        """
        Design matrix of shape (n_samples, `basis.getNbFunc()`).
        """
        X = samples.get_samples_x()
        nb_samples = X.shape[0]
        chunks = range(0, nb_samples, ASSEMBLY_CHUNK_SIZE)
        blocks = []
        for start in tqdm(
            chunks, desc="Assembling basis matrix", disable=not self.verbose
        ):
            stop = min(start + ASSEMBLY_CHUNK_SIZE, nb_samples)
            blocks.append(self.basis.DN(np.ascontiguousarray(X[start:stop].T)))
        A = sps.vstack(blocks, format="csr")
        return A

    def right_hand_sides(self, samples: DataTable) -> tuple[np.ndarray, np.ndarray]:
        """
        Right hand sides `Bx` (n_samples, n_variables) and `By` (n_samples, 1).
        """
        Bx = samples.get_samples_x()
        By = samples.get_samples_y().reshape((-1, 1))
        return Bx, By

    def solvers(self, nb_equations: int) -> list[LinearSolver]:
        if nb_equations < self.max_dense_equations:
            return [DenseQRSolver()]
        return [SparseLUSolver(), DenseQRSolver()]

    def solve(self, samples: DataTable) -> tuple[np.ndarray, np.ndarray]:
        """
        Compute the coefficients and the knot averages interpolating `samples`.

        Returns
        -------
        coefficients : np.ndarray[np.floating]
            Array of shape (1, `basis.getNbFunc()`).
        knot_averages : np.ndarray[np.floating]
            Array of shape (n_variables, `basis.getNbFunc()`).

        Raises
        ------
        SingularSystemError
            If both the sparse and the dense factorizations failed.
        """
        A = self.basis_function_matrix(samples)
        Bx, By = self.right_hand_sides(samples)
        nb_var = Bx.shape[1]
        C = solve_with_fallback(
            A, np.hstack((Bx, By)), self.solvers(A.shape[0]), verbose=self.verbose
        )
        knot_averages = C[:, :nb_var].T
        coefficients = C[:, nb_var:].T
        return coefficients, knot_averages

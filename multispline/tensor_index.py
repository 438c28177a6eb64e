"""
Flattening of tensor product indices.

A tensor product basis with `n_0 × n_1 × ... × n_{d-1}` functions stores its
coefficients in a single row. The multi-index `(i_0, ..., i_{d-1})` is mapped
to the flat index `((i_0 * n_1 + i_1) * n_2 + ...) * n_{d-1} + i_{d-1}`, i.e.
the last dimension varies fastest (C order). Every function of this module
follows that convention, which is the one of `scipy.sparse.kron(A, B)`.
"""
from typing import Iterable

import numpy as np
import scipy.sparse as sps


def flatten_index(multi_index: Iterable[int], shape: Iterable[int]) -> int:
    """
    Flat index of `multi_index` in a tensor of shape `shape`.

    Examples
    --------
    >>> flatten_index((1, 2), (3, 4))
    6
    """
    multi_index = tuple(multi_index)
    shape = tuple(shape)
    if len(multi_index) != len(shape):
        raise ValueError("multi_index and shape must have the same length")
    flat = 0
    for i, n in zip(multi_index, shape):
        if not 0 <= i < n:
            raise IndexError(f"index {i} is out of bounds for size {n}")
        flat = flat * n + i
    return flat


def unflatten_index(flat: int, shape: Iterable[int]) -> tuple[int, ...]:
    """
    Inverse of `flatten_index`.

    Examples
    --------
    >>> unflatten_index(6, (3, 4))
    (1, 2)
    """
    shape = tuple(shape)
    if not 0 <= flat < int(np.prod(shape)):
        raise IndexError(f"flat index {flat} is out of bounds for shape {shape}")
    multi_index = []
    for n in reversed(shape):
        flat, i = divmod(flat, n)
        multi_index.append(i)
    return tuple(reversed(multi_index))


def tensor_sparse_vector(
    vectors: Iterable[tuple[np.ndarray[np.integer], np.ndarray[np.floating]]],
    shape: Iterable[int],
) -> tuple[np.ndarray[np.integer], np.ndarray[np.floating]]:
    """
    Tensor product of per-dimension sparse vectors.

    Parameters
    ----------
    vectors : Iterable[tuple[np.ndarray[np.integer], np.ndarray[np.floating]]]
        For each dimension, the `(indices, values)` of its non zero entries.
    shape : Iterable[int]
        Size of each dimension.

    Returns
    -------
    indices : np.ndarray[np.integer]
        Flat indices of the non zero entries, increasing if the per-dimension
        indices are increasing.
    values : np.ndarray[np.floating]
        Products of the per-dimension values.
    """
    indices = np.zeros(1, dtype="int")
    values = np.ones(1, dtype="float")
    for (idx, val), n in zip(vectors, shape):
        idx = np.asarray(idx, dtype="int")
        val = np.asarray(val, dtype="float")
        indices = (indices[:, None] * n + idx[None, :]).ravel()
        values = (values[:, None] * val[None, :]).ravel()
    return indices, values


def expand_transform(
    T: sps.spmatrix, axis: int, shape: Iterable[int]
) -> sps.csr_matrix:
    """
    Extend a transform acting on one dimension to the whole tensor product.

    The result is `I_{n_0} ⊗ ... ⊗ T ⊗ ... ⊗ I_{n_{d-1}}` with `T` at position
    `axis`, built directly from the flattened indices.

    Parameters
    ----------
    T : sps.spmatrix
        Transform of shape (new `n_axis`, old `n_axis`).
    axis : int
        Dimension on which `T` acts.
    shape : Iterable[int]
        Current (old) number of functions in each dimension.

    Returns
    -------
    T_full : sps.csr_matrix
        Transform of shape (new total, old total) such that
        new flat coefficients = `T_full` @ old flat coefficients.
    """
    shape = tuple(int(n) for n in shape)
    T = sps.coo_matrix(T)
    if T.shape[1] != shape[axis]:
        raise ValueError(
            f"Transform with {T.shape[1]} columns cannot act on a dimension of size {shape[axis]}"
        )
    outer = int(np.prod(shape[:axis], dtype="int"))
    inner = int(np.prod(shape[axis + 1 :], dtype="int"))
    new_n, old_n = T.shape
    o = np.arange(outer)[:, None, None]
    i = np.arange(inner)[None, None, :]
    r = T.row[None, :, None]
    c = T.col[None, :, None]
    rows = (o * new_n + r) * inner + i
    cols = (o * old_n + c) * inner + i
    vals = np.broadcast_to(T.data[None, :, None], rows.shape)
    T_full = sps.coo_matrix(
        (vals.ravel(), (rows.ravel(), cols.ravel())),
        shape=(outer * new_n * inner, outer * old_n * inner),
    )
    return T_full.tocsr()


def wide_product(A: sps.spmatrix, B: sps.spmatrix) -> sps.csr_matrix:
    """
    Row-wise tensor product of two sparse matrices.

    Row `i` of the result is `kron(A[i, :], B[i, :])`: every non zero entry
    `(a, A[i, a])` of the row of `A` is paired with every non zero entry
    `(b, B[i, b])` of the row of `B` at the flat index `a * B.shape[1] + b`,
    with value `A[i, a] * B[i, b]`. This is `tensor_sparse_vector` applied to
    all rows at once, and is how the basis matrices of several points are
    combined dimension by dimension.

    Parameters
    ----------
    A : sps.spmatrix
        Matrix of shape (n_rows, n_A), usually the basis of the leading dimensions.
    B : sps.spmatrix
        Matrix of shape (n_rows, n_B), usually the basis of the next dimension.

    Returns
    -------
    C : sps.csr_matrix
        Matrix of shape (n_rows, n_A * n_B) with `nnz(A[i]) * nnz(B[i])` entries
        on row `i`.

    Raises
    ------
    ValueError
        If `A` and `B` do not have the same number of rows.

    Examples
    --------
    >>> A = sps.csr_matrix([[1., 2.], [0., 3.]])
    >>> B = sps.csr_matrix([[1., 0., 1.], [2., 0., 0.]])
    >>> wide_product(A, B).toarray()
    array([[1., 0., 1., 2., 0., 2.],
           [0., 0., 0., 6., 0., 0.]])
    """
    if A.shape[0] != B.shape[0]:
        raise ValueError("A and B must have the same number of rows")
    A = sps.csr_matrix(A)
    B = sps.csr_matrix(B)
    height = A.shape[0]
    b_width = B.shape[1]

    a_counts = np.diff(A.indptr)
    b_counts = np.diff(B.indptr)
    a_rows = np.repeat(np.arange(height), a_counts)
    # each entry of A is repeated once per entry of B on its row
    group_sizes = b_counts[a_rows]
    a_pos = np.repeat(np.arange(A.nnz), group_sizes)
    group_starts = np.cumsum(group_sizes) - group_sizes
    offsets = np.arange(a_pos.size) - np.repeat(group_starts, group_sizes)
    b_pos = B.indptr[a_rows[a_pos]] + offsets

    indices = A.indices[a_pos].astype("int64") * b_width + B.indices[b_pos]
    data = A.data[a_pos] * B.data[b_pos]
    indptr = np.concatenate(([0], np.cumsum(a_counts * b_counts)))
    C = sps.csr_matrix((data, indices, indptr), shape=(height, A.shape[1] * b_width))
    return C

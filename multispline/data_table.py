from typing import Iterable, Iterator, Union

import numpy as np


class DataSample:
    """
    One sample `y = f(x)`.

    Samples are ordered lexicographically on `x`, the first variable being the most
    significant one. Iterating a `DataTable` in that order visits a complete grid with
    the last variable varying fastest, like the flattened basis functions.
    """

    __slots__ = ("x", "y")

    def __init__(self, x: Union[float, Iterable[float]], y: float):
        self.x = tuple(float(xi) for xi in np.atleast_1d(np.asarray(x, dtype="float")))
        self.y = float(y)

    def __lt__(self, other: "DataSample") -> bool:
        return self.x < other.x

    def __repr__(self) -> str:
        return f"DataSample(x={self.x}, y={self.y})"


class DataTable:
    """
    Sorted collection of samples used to fit a spline.

    Parameters
    ----------
    allow_duplicates : bool, optional
        If `False`, adding a sample whose `x` is already stored raises a `ValueError`.
        By default, False.

    Examples
    --------
    >>> table = DataTable()
    >>> for x0 in (0., 1.):
    ...     for x1 in (0., 1., 2.):
    ...         table.add_sample([x0, x1], x0 + x1)
    >>> table.is_grid_complete()
    True
    >>> table.get_table_x()
    [array([0., 1.]), array([0., 1., 2.])]
    """

    def __init__(self, allow_duplicates: bool = False):
        self.allow_duplicates = allow_duplicates
        self._samples: list[DataSample] = []
        self._keys: set[tuple[float, ...]] = set()
        self._sorted = True
        self._num_variables = 0

    def add_sample(self, x: Union[float, Iterable[float]], y: float):
        """
        Store the sample `y = f(x)`.

        Raises
        ------
        ValueError
            If `x` does not have the same number of variables as the samples already
            stored, if a value is not finite, or if `x` is a duplicate while duplicates
            are not allowed.
        """
        sample = DataSample(x, y)
        if not np.all(np.isfinite(sample.x)) or not np.isfinite(sample.y):
            raise ValueError(f"Sample {sample} contains non finite values.")
        if self._num_variables == 0:
            self._num_variables = len(sample.x)
        elif len(sample.x) != self._num_variables:
            raise ValueError(
                f"Expected {self._num_variables} variables, got {len(sample.x)}."
            )
        if sample.x in self._keys and not self.allow_duplicates:
            raise ValueError(f"Duplicate sample at x={sample.x}.")
        self._keys.add(sample.x)
        self._samples.append(sample)
        self._sorted = False

    def _sort(self):
        if not self._sorted:
            self._samples.sort()
            self._sorted = True

    def get_num_variables(self) -> int:
        return self._num_variables

    def get_num_samples(self) -> int:
        return len(self._samples)

    def get_table_x(self) -> list[np.ndarray[np.floating]]:
        """
        Distinct sorted values taken by each variable.
        """
        if not self._samples:
            return []
        X = self.get_samples_x()
        return [np.unique(X[:, i]) for i in range(self._num_variables)]

    def is_grid_complete(self) -> bool:
        """
        Tell whether every combination of the per-variable values has a sample.
        """
        if not self._samples:
            return False
        grid_size = int(np.prod([x.size for x in self.get_table_x()]))
        return len(self._keys) == grid_size

    def get_samples_x(self) -> np.ndarray[np.floating]:
        """
        Sample inputs in iteration order, array of shape (n_samples, n_variables).
        """
        self._sort()
        return np.array([sample.x for sample in self._samples], dtype="float").reshape(
            (-1, self._num_variables)
        )

    def get_samples_y(self) -> np.ndarray[np.floating]:
        """
        Sample outputs in iteration order.
        """
        self._sort()
        return np.array([sample.y for sample in self._samples], dtype="float")

    def __iter__(self) -> Iterator[DataSample]:
        self._sort()
        return iter(list(self._samples))

    def __len__(self) -> int:
        return len(self._samples)

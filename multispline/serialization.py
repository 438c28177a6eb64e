"""
Text persistence of tensor product B-splines.

File layout, one spline per file::

    # Saved BSpline
    # Number of bases: 2
    2
    3 24
    0 0 0 0 1 2 ...
    3 24
    0 0 0 0 1 2 ...
    # Coefficient matrix:
    1 400
    0.5 0.25 ...

Lines starting with `#` and blank lines are ignored, whatever their encoding.
Numbers are written and read with a `.` decimal point whatever the process
locale: Python's float formatting and parsing never depend on `locale`, so
nothing global is switched.
"""
import re
from typing import Iterable

import numpy as np

from multispline.errors import InvalidFormatError, OutOfRangeError, SerializationFormatError

SAVE_DOUBLE_PRECISION = 17

INT_MIN = -(2**31)
INT_MAX = 2**31 - 1

_INT_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?P<mantissa>\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf|infinity|nan)",
    re.IGNORECASE,
)


class FixedPointFormat:
    """
    Locale independent conversion between numbers and text tokens.

    Parameters
    ----------
    precision : int, optional
        Number of significant digits written for real numbers.
        By default, `SAVE_DOUBLE_PRECISION`.
    """

    def __init__(self, precision: int = SAVE_DOUBLE_PRECISION):
        self.precision = precision

    def format_float(self, value: float) -> str:
        return f"{float(value):.{self.precision}g}"

    def format_floats(self, values: Iterable[float]) -> str:
        return " ".join(self.format_float(value) for value in values)

    @staticmethod
    def parse_int(token: str) -> int:
        """
        Convert `token` to a signed 32 bits integer.

        Raises
        ------
        InvalidFormatError
            If `token` is not an integer literal.
        OutOfRangeError
            If the integer does not fit in 32 bits.
        """
        token = token.strip()
        if _INT_RE.fullmatch(token) is None:
            raise InvalidFormatError(f"Invalid integer {token!r}.")
        value = int(token)
        if not INT_MIN <= value <= INT_MAX:
            raise OutOfRangeError(f"Integer {token!r} is out of range.")
        return value

    @staticmethod
    def parse_float(token: str) -> float:
        """
        Convert `token` to a double precision float.

        Raises
        ------
        InvalidFormatError
            If `token` is not a decimal real literal.
        OutOfRangeError
            If the value overflows, or underflows to zero from a non zero literal.
        """
        token = token.strip()
        match = _FLOAT_RE.fullmatch(token)
        if match is None:
            raise InvalidFormatError(f"Invalid real number {token!r}.")
        value = float(token)
        mantissa = match.group("mantissa")
        if mantissa is not None:
            if np.isinf(value):
                raise OutOfRangeError(f"Real number {token!r} overflows.")
            if value == 0.0 and re.search(r"[1-9]", mantissa):
                raise OutOfRangeError(f"Real number {token!r} underflows.")
        return value


parse_int = FixedPointFormat.parse_int
parse_float = FixedPointFormat.parse_float


def save_spline(
    filepath: str,
    coefficients: np.ndarray,
    knots: Iterable[np.ndarray],
    degrees: Iterable[int],
    precision: int = SAVE_DOUBLE_PRECISION,
):
    """
    Write a spline in the text format described in the module docstring.

    Parameters
    ----------
    filepath : str
        Destination file, overwritten if it exists.
    coefficients : np.ndarray
        Coefficient matrix, usually of shape (1, number of basis functions).
    knots : Iterable[np.ndarray]
        Knot vector of each variable.
    degrees : Iterable[int]
        Degree of each variable.
    precision : int, optional
        Significant digits of the real numbers. By default, `SAVE_DOUBLE_PRECISION`.
    """
    fmt = FixedPointFormat(precision)
    knots = list(knots)
    degrees = list(degrees)
    coefficients = np.atleast_2d(np.asarray(coefficients, dtype="float"))
    lines = ["# Saved BSpline", f"# Number of bases: {len(knots)}", str(len(knots))]
    for p, knot in zip(degrees, knots):
        lines.append(f"{int(p)} {len(knot)}")
        lines.append(fmt.format_floats(knot))
    lines.append("# Coefficient matrix:")
    lines.append(f"{coefficients.shape[0]} {coefficients.shape[1]}")
    for row in coefficients:
        lines.append(fmt.format_floats(row))
    with open(filepath, "w", encoding="utf-8", newline="\n") as file:
        file.write("\n".join(lines) + "\n")


def _split(line: str, expected: int, what: str) -> list[str]:
    tokens = line.split()
    if len(tokens) != expected:
        raise SerializationFormatError(
            f"Expected {expected} value(s) for {what}, got {len(tokens)}."
        )
    return tokens


def load_spline(filepath: str) -> tuple[np.ndarray, list[np.ndarray], list[int]]:
    """
    Read a spline written by `save_spline`.

    Returns
    -------
    coefficients : np.ndarray
        Coefficient matrix.
    knots : list[np.ndarray]
        Knot vector of each variable.
    degrees : list[int]
        Degree of each variable.

    Raises
    ------
    SerializationFormatError
        If the file layout is not respected or a data line is not ASCII.
    InvalidFormatError, OutOfRangeError
        If a token is not a valid number of the expected type.
    """
    with open(filepath, "rb") as file:
        raw_lines = file.read().splitlines()
    lines = []
    for number, raw in enumerate(raw_lines, start=1):
        raw = raw.strip()
        # comments may hold any text, only data lines are decoded
        if not raw or raw.startswith(b"#"):
            continue
        try:
            lines.append(raw.decode("ascii"))
        except UnicodeDecodeError as e:
            raise SerializationFormatError(
                f"Line {number} of {filepath} contains non ASCII data."
            ) from e
    lines_iter = iter(lines)

    def next_line(what):
        try:
            return next(lines_iter)
        except StopIteration:
            raise SerializationFormatError(f"Unexpected end of file while reading {what}.") from None

    nb_var = parse_int(_split(next_line("the number of variables"), 1, "the number of variables")[0])
    if nb_var < 1:
        raise SerializationFormatError(f"Invalid number of variables {nb_var}.")
    degrees = []
    knots = []
    for idx in range(nb_var):
        what = f"the degree of variable {idx}"
        p_token, size_token = _split(next_line(what), 2, what)
        p, size = parse_int(p_token), parse_int(size_token)
        if p < 1 or size < 1:
            raise SerializationFormatError(
                f"Invalid degree {p} or knot vector length {size} for variable {idx}."
            )
        what = f"the knot vector of variable {idx}"
        tokens = _split(next_line(what), size, what)
        degrees.append(p)
        knots.append(np.array([parse_float(token) for token in tokens], dtype="float"))
    what = "the coefficient matrix shape"
    rows_token, cols_token = _split(next_line(what), 2, what)
    nb_rows, nb_cols = parse_int(rows_token), parse_int(cols_token)
    if nb_rows < 1 or nb_cols < 1:
        raise SerializationFormatError(
            f"Invalid coefficient matrix shape ({nb_rows}, {nb_cols})."
        )
    coefficients = np.empty((nb_rows, nb_cols), dtype="float")
    for i in range(nb_rows):
        what = f"row {i} of the coefficient matrix"
        tokens = _split(next_line(what), nb_cols, what)
        coefficients[i] = [parse_float(token) for token in tokens]
    if next(lines_iter, None) is not None:
        raise SerializationFormatError("Unexpected data after the coefficient matrix.")
    return coefficients, knots, degrees

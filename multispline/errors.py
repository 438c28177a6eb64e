"""
Exception hierarchy of the package.

Every error derives from `SplineError` and from the builtin exception that
best describes it, so that callers used to catching `ValueError` keep working.
"""


class SplineError(Exception):
    """Base class of every error raised by `multispline`."""


class IncompleteGridError(SplineError, ValueError):
    """The sample set does not cover every combination of per-dimension values."""


class DomainError(SplineError, ValueError):
    """A point or a set of bounds is incompatible with the current support."""


class SingularSystemError(SplineError, ArithmeticError):
    """Every factorization of the control point equations failed."""


class KnotMultiplicityError(SplineError, ValueError):
    """A knot would end up with a multiplicity greater than `p + 1`."""


class SplineStateError(SplineError, RuntimeError):
    """The model is not ready for the requested operation."""


class SerializationFormatError(SplineError, ValueError):
    """A persisted spline file does not follow the expected layout."""


class NumericParseError(SerializationFormatError):
    """A token could not be converted to the expected numeric type."""


class InvalidFormatError(NumericParseError):
    """The token is not a number at all."""


class OutOfRangeError(NumericParseError):
    """The token is a number that the target type cannot represent."""

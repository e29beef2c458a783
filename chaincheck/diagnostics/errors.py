"""
Error and warning types for chain diagnostics.

Input problems (ragged chains, too few iterations, non-finite values) are
errors and surface immediately. Degenerate data and threshold violations
are not errors: they are carried as data in the diagnostic reports and
only turned into Python warnings on request.
"""


class DiagnosticInputError(ValueError):
    """Base class for inputs a diagnostic cannot be computed on."""


class InputShapeError(DiagnosticInputError):
    """Chain matrix is ragged, empty, or too small for the statistic."""


class NonFiniteValueError(DiagnosticInputError):
    """Chain matrix contains NaN or infinite values."""


class NonNumericValueError(DiagnosticInputError):
    """Chain values cannot be converted to floats."""


class DegenerateDataWarning(UserWarning):
    """Expectand values are exactly constant within a chain."""


class ThresholdWarning(UserWarning):
    """A diagnostic crossed its configured threshold."""

"""
Chain matrices, expectand collections and diagnostic values.

A chain matrix is a (n_chains, n_iterations) float array holding one
scalar expectand. An expectand collection maps unique names to chain
matrices; it is the only way sampler output enters the diagnostics, so
supporting a new sampler only needs an adapter producing this mapping.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence

import numpy as np

from .errors import InputShapeError, NonFiniteValueError, NonNumericValueError


ExpectandCollection = Mapping[str, np.ndarray]


@dataclass(frozen=True)
class DiagnosticValue:
    """
    A diagnostic statistic and its threshold check.

    ``value is None`` marks a statistic that is undefined for the input
    (for example a frozen expectand). Undefined values never warn; use
    ``defined`` to tell them apart from a passing check.
    """

    value: Optional[float]
    warning: bool = False
    note: Optional[str] = None

    @property
    def defined(self) -> bool:
        return self.value is not None

    @classmethod
    def undefined(cls, note: str) -> "DiagnosticValue":
        return cls(value=None, warning=False, note=note)

    def as_float(self) -> float:
        """Value as a float, NaN when undefined."""
        return float('nan') if self.value is None else float(self.value)


def _label(name: Optional[str]) -> str:
    return f"Expectand '{name}'" if name is not None else "Chain matrix"


def _is_sequence(value) -> bool:
    return isinstance(value, (list, tuple)) or (isinstance(value, np.ndarray) and value.ndim == 1)


def as_chain_matrix(
    values,
    name: Optional[str] = None,
    min_chains: int = 1,
    min_iterations: int = 1,
) -> np.ndarray:
    """
    Convert array-like input to a validated (n_chains, n_iterations) matrix.

    Args:
        values: 2D array-like of chains, or a 1D sequence for a single chain
        name: Expectand name used in error messages
        min_chains: Minimum number of chains the caller needs
        min_iterations: Minimum iterations per chain the caller needs

    Returns:
        Float array of shape (n_chains, n_iterations)

    Raises:
        InputShapeError: Ragged, empty, higher-dimensional or too small input
        NonNumericValueError: Values that cannot be converted to floats
    """
    if isinstance(values, (list, tuple)) and values and all(_is_sequence(v) for v in values):
        lengths = sorted({len(v) for v in values})
        if len(lengths) > 1:
            raise InputShapeError(
                f"{_label(name)}: chains have unequal iteration counts {lengths}"
            )

    try:
        chains = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise NonNumericValueError(
            f"{_label(name)}: values cannot be read as a float matrix ({e})"
        ) from e

    if chains.ndim == 1:
        chains = chains[np.newaxis, :]

    if chains.ndim != 2:
        raise InputShapeError(
            f"{_label(name)}: expected (chains, iterations), got shape {chains.shape}"
        )

    n_chains, n_iterations = chains.shape
    if n_chains == 0 or n_iterations == 0:
        raise InputShapeError(f"{_label(name)}: empty chains, shape {chains.shape}")
    if n_chains < min_chains:
        raise InputShapeError(
            f"{_label(name)}: need at least {min_chains} chains, got {n_chains}"
        )
    if n_iterations < min_iterations:
        raise InputShapeError(
            f"{_label(name)}: need at least {min_iterations} iterations per chain, "
            f"got {n_iterations}"
        )

    return chains


def require_finite(chains: np.ndarray, name: Optional[str] = None) -> np.ndarray:
    """Raise NonFiniteValueError if any entry is NaN or infinite."""
    n_bad = int(np.sum(~np.isfinite(chains)))
    if n_bad > 0:
        raise NonFiniteValueError(
            f"{_label(name)}: {n_bad} of {chains.size} values are not finite"
        )
    return chains


def validate_expectands(expectands: ExpectandCollection) -> Dict[str, np.ndarray]:
    """Validate every entry of a collection, keeping insertion order."""
    return {name: as_chain_matrix(values, name) for name, values in expectands.items()}


def filter_expectands(
    expectands: ExpectandCollection,
    names: Iterable[str],
) -> Dict[str, np.ndarray]:
    """
    Select a subset of expectands by name, in the order requested.

    Raises:
        KeyError: If any requested name is not in the collection
    """
    names = list(names)
    missing = [n for n in names if n not in expectands]
    if missing:
        raise KeyError(f"Unknown expectand names: {', '.join(missing)}")
    return {n: expectands[n] for n in names}


def flatten_expectands(arrays: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
    """
    Split multi-dimensional draws into scalar expectands.

    An array of shape (n_chains, n_iterations, d1, d2, ...) becomes one
    chain matrix per element, named ``name[i,j,...]`` with 1-based indices.
    Arrays of shape (n_chains, n_iterations) keep their name.
    """
    expectands = {}

    for name, values in arrays.items():
        values = np.asarray(values, dtype=float)
        if values.ndim < 2:
            raise InputShapeError(
                f"{_label(name)}: expected at least (chains, iterations), "
                f"got shape {values.shape}"
            )

        if values.ndim == 2:
            expectands[name] = as_chain_matrix(values, name)
            continue

        for idx in np.ndindex(*values.shape[2:]):
            label = f"{name}[{','.join(str(i + 1) for i in idx)}]"
            expectands[label] = as_chain_matrix(values[(slice(None), slice(None)) + idx], label)

    return expectands


def eval_expectand_pushforward(
    expectands: ExpectandCollection,
    function: Callable[..., np.ndarray],
    arg_names: Sequence[str],
    vectorized: bool = True,
) -> np.ndarray:
    """
    Evaluate a function of existing expectands at every sampled state.

    Args:
        expectands: Collection holding the arguments
        function: Function of len(arg_names) chain matrices
        arg_names: Names of the expectands passed positionally to function
        vectorized: If False, function is applied to one state at a time

    Returns:
        Chain matrix of the pushforward expectand
    """
    args = [as_chain_matrix(expectands[n], n) for n in arg_names]
    if not args:
        raise ValueError("Need at least one argument expectand")

    shape = args[0].shape
    for n, a in zip(arg_names, args):
        if a.shape != shape:
            raise InputShapeError(
                f"{_label(n)}: shape {a.shape} does not match {shape}"
            )

    if vectorized:
        result = np.asarray(function(*args), dtype=float)
    else:
        result = np.vectorize(function, otypes=[float])(*args)

    if result.shape != shape:
        raise InputShapeError(
            f"Pushforward returned shape {result.shape}, expected {shape}"
        )

    return result

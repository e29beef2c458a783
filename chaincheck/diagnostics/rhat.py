"""
Split potential scale reduction (split R-hat).

Each chain is split in half so that a single chain drifting over its
iterations shows up as disagreement between its halves. R-hat compares the
variance of the half-chain means with the average within-half variance; it
is 1 in expectation at equilibrium and decays towards 1 from above.

References:
    Gelman & Rubin (1992) "Inference from Iterative Simulation Using Multiple Sequences"
    Gelman et al. (2013) "Bayesian Data Analysis", 3rd edition
"""

from typing import Optional

import numpy as np

from .accumulator import accumulate_chains
from .chains import DiagnosticValue, as_chain_matrix, require_finite
from .config import DEFAULT_THRESHOLDS
from .errors import InputShapeError


def split_chains(chains: np.ndarray) -> np.ndarray:
    """
    Split every chain into its first and last halves.

    With an odd number of iterations the middle iteration of every chain
    is dropped.

    Args:
        chains: Array of shape (n_chains, n_iterations)

    Returns:
        Array of shape (2 * n_chains, n_iterations // 2); rows are the
        first halves of all chains followed by the second halves
    """
    n_iterations = chains.shape[1]
    half = n_iterations // 2
    return np.concatenate([chains[:, :half], chains[:, n_iterations - half:]], axis=0)


class SplitRhatEstimator:
    """
    Split R-hat convergence diagnostic.

    R-hat > threshold indicates the chains have not mixed (1.1 is common;
    some use 1.01 for stricter convergence).
    """

    def __init__(self, threshold: float = DEFAULT_THRESHOLDS.rhat_threshold):
        """
        Args:
            threshold: Warn when split R-hat > threshold
        """
        self.threshold = threshold

    def estimate(self, chains: np.ndarray, name: Optional[str] = None) -> DiagnosticValue:
        """
        Compute split R-hat.

        Args:
            chains: Array of shape (n_chains, n_iterations) with at least 4
                iterations so every half chain has 2
            name: Expectand name for error messages

        Returns:
            DiagnosticValue holding R-hat; undefined when every half chain
            is constant at the same value, infinite when the half chains
            are constant at different values
        """
        chains = require_finite(as_chain_matrix(chains, name), name)
        if chains.shape[1] // 2 < 2:
            raise InputShapeError(
                f"Split R-hat needs at least 2 iterations per half chain, "
                f"got {chains.shape[1]} iterations"
            )

        halves = split_chains(chains)
        n = halves.shape[1]
        accumulators = accumulate_chains(halves)

        # Within-chain variance
        W = np.mean([acc.variance for acc in accumulators])

        # Between-chain variance divided by n
        B_over_n = np.var([acc.mean for acc in accumulators], ddof=1)

        if all(acc.frozen for acc in accumulators):
            if len({acc.mean for acc in accumulators}) == 1:
                return DiagnosticValue.undefined("frozen chains, split R-hat deferred")
            return DiagnosticValue(
                float('inf'), True, "half chains are constant at different values"
            )

        # Pooled variance estimate
        var_plus = ((n - 1) / n) * W + B_over_n
        r_hat = float(np.sqrt(var_plus / W))

        # NaN from overflowing variances warns
        if not r_hat <= self.threshold:
            return DiagnosticValue(r_hat, True, f"split R-hat = {r_hat:.3f} > {self.threshold}")
        return DiagnosticValue(r_hat, False)

    def compute(self, chains: np.ndarray) -> float:
        """Split R-hat as a float, NaN when undefined."""
        return self.estimate(chains).as_float()

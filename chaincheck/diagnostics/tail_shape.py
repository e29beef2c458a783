"""
Generalized Pareto tail shape (xihat) diagnostic.

A central limit theorem for Markov chain Monte Carlo estimators needs the
expectand to have a finite variance, and in practice a little more. The
shape xi of a generalized Pareto fit to each tail estimates how many
moments exist: xi >= 1/k suggests the k-th moment is infinite, so a tail
shape of 0.25 or more is taken as evidence against a well-behaved CLT.

The shape is fitted with the profile-likelihood weighting of Zhang &
Stephens, which only needs order statistics of the tail excesses.

References:
    [1] Zhang & Stephens (2009). "A New and Efficient Estimation Method
        for the Generalized Pareto Distribution"
    [2] Vehtari et al. (2024). "Pareto Smoothed Importance Sampling"
"""

from typing import List, Tuple

import numpy as np
from scipy.special import softmax

from .accumulator import accumulate_chains
from .chains import DiagnosticValue, as_chain_matrix, require_finite
from .config import DEFAULT_TAIL_CONFIG, DEFAULT_THRESHOLDS, TailShapeConfig
from .errors import InputShapeError


# Returned for tails with no spread; sits below any sensible threshold
BOUNDED_TAIL = -2.0


def fit_pareto_shape(excesses: np.ndarray) -> float:
    """
    Estimate the generalized Pareto shape of non-negative excesses.

    Args:
        excesses: Tail values minus the tail cutoff

    Returns:
        Shape estimate xi, or BOUNDED_TAIL when the excesses have no
        usable spread
    """
    x = np.sort(np.asarray(excesses, dtype=float).ravel())
    n = x.size

    if n == 0:
        raise InputShapeError("Cannot fit a tail shape to zero excesses")
    if x[0] < 0:
        raise ValueError(f"Excesses must be non-negative, smallest is {x[0]}")
    if x[0] == x[-1]:
        return BOUNDED_TAIL

    # First quartile sets the scale of the candidate grid
    q = x[int(np.floor(0.25 * n + 0.5)) - 1]
    if q <= 0:
        return BOUNDED_TAIL

    m = 20 + int(np.floor(np.sqrt(n)))
    j = np.arange(1, m + 1)
    theta = 1.0 / x[-1] + (1.0 - np.sqrt(m / (j - 0.5))) / (3.0 * q)

    # Profile log likelihood of each candidate
    k = np.mean(np.log1p(-theta[:, np.newaxis] * x[np.newaxis, :]), axis=1)
    with np.errstate(divide='ignore', invalid='ignore'):
        log_lik = n * (np.log(-theta / k) - k - 1.0)

    # theta == 0 gives 0/0; at most one candidate can hit it
    keep = np.isfinite(log_lik)
    weights = softmax(log_lik[keep])
    theta_hat = np.sum(theta[keep] * weights)

    return float(np.mean(np.log1p(-theta_hat * x)))


def upper_tail_excesses(values: np.ndarray, config: TailShapeConfig = DEFAULT_TAIL_CONFIG) -> np.ndarray:
    """Largest M values minus the order statistic just below them."""
    x = np.sort(np.asarray(values, dtype=float).ravel())
    n = x.size
    if n < 2:
        raise InputShapeError(f"Need at least 2 values to select a tail, got {n}")

    m = config.tail_size(n)
    cutoff = x[n - m - 1]
    return x[n - m:] - cutoff


class TailShapeEstimator:
    """
    Tail shape diagnostic for each chain of an expectand.

    The lower tail is fitted by negating the values and reusing the upper
    tail procedure. The reported xihat of a chain is the larger of its two
    tail shapes, and the xihat of an expectand the largest over chains.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLDS.xihat_threshold,
        config: TailShapeConfig = DEFAULT_TAIL_CONFIG,
    ):
        """
        Args:
            threshold: Warn when xihat >= threshold
            config: Tail size heuristic
        """
        self.threshold = threshold
        self.config = config

    def chain_tail_shapes(self, values: np.ndarray) -> Tuple[float, float]:
        """
        Lower and upper tail shapes of one chain.

        Returns:
            (xi_lower, xi_upper)
        """
        values = np.asarray(values, dtype=float).ravel()
        if values.size < 2:
            raise InputShapeError(f"Need at least 2 iterations, got {values.size}")
        require_finite(values)

        xi_lower = fit_pareto_shape(upper_tail_excesses(-values, self.config))
        xi_upper = fit_pareto_shape(upper_tail_excesses(values, self.config))
        return xi_lower, xi_upper

    def chain_xihat(self, values: np.ndarray) -> float:
        return max(self.chain_tail_shapes(values))

    def chain_xihats(self, chains: np.ndarray) -> List[float]:
        chains = as_chain_matrix(chains, min_iterations=2)
        return [self.chain_xihat(chain) for chain in chains]

    def estimate(self, chains: np.ndarray, name: str = None) -> DiagnosticValue:
        """
        Expectand xihat with threshold check.

        Undefined when any chain is frozen, since a constant chain has no
        tail to fit.
        """
        chains = require_finite(as_chain_matrix(chains, name, min_iterations=2), name)

        frozen = [c + 1 for c, acc in enumerate(accumulate_chains(chains)) if acc.frozen]
        if frozen:
            return DiagnosticValue.undefined(f"frozen chains {frozen}, tail shape deferred")

        xihats = self.chain_xihats(chains)
        worst = int(np.argmax(xihats))
        xihat = xihats[worst]

        if not xihat < self.threshold:
            return DiagnosticValue(
                xihat, True,
                f"chain {worst + 1} tail xihat = {xihat:.3f} >= {self.threshold}"
            )
        return DiagnosticValue(xihat, False)

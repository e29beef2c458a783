"""
Markov chain Monte Carlo estimators with standard errors.

Once the diagnostics raise no warnings, the Markov chain Monte Carlo
central limit theorem gives the estimator of an expectation an
approximately normal error with standard deviation sqrt(Var[f] / ESS).
Chains are estimated separately and pooled with weights proportional to
their effective sample sizes.
"""

import warnings
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..diagnostics.accumulator import accumulate_chains
from ..diagnostics.autocorrelation import AutocorrelationEstimator
from ..diagnostics.chains import as_chain_matrix, require_finite
from ..diagnostics.config import AutocorrelationConfig, DEFAULT_AUTOCORRELATION_CONFIG
from ..diagnostics.errors import DegenerateDataWarning


def mcmc_standard_error(variance: float, ess: float) -> float:
    """
    Standard error of a Markov chain Monte Carlo estimator.

    Args:
        variance: Variance of the expectand
        ess: Effective sample size

    Returns:
        sqrt(variance / ess), exactly 0 for zero variance
    """
    if ess <= 0:
        raise ValueError(f"Effective sample size must be positive, got {ess}")
    if variance < 0:
        raise ValueError(f"Variance must be non-negative, got {variance}")
    if variance == 0:
        return 0.0
    return float(np.sqrt(variance / ess))


@dataclass
class ExpectationEstimate:
    """Estimated expectation with its Monte Carlo standard error."""

    mean: float
    standard_error: float
    ess: float

    def interval(self, width: float = 2.0) -> Tuple[float, float]:
        """mean +/- width standard errors."""
        return (self.mean - width * self.standard_error,
                self.mean + width * self.standard_error)


def chain_estimates(
    chains: np.ndarray,
    config: AutocorrelationConfig = DEFAULT_AUTOCORRELATION_CONFIG,
) -> List[ExpectationEstimate]:
    """
    Estimate of the expectation from every chain separately.

    A frozen chain contributes its constant value with zero error and an
    effective sample size equal to its length.
    """
    chains = require_finite(as_chain_matrix(chains, min_iterations=2))
    accumulators = accumulate_chains(chains)
    ess_values = AutocorrelationEstimator(config=config).chain_ess(chains)

    estimates = []
    for acc, ess in zip(accumulators, ess_values):
        if ess is None:
            estimates.append(ExpectationEstimate(acc.mean, 0.0, float(acc.count)))
        else:
            estimates.append(ExpectationEstimate(acc.mean, mcmc_standard_error(acc.variance, ess), ess))
    return estimates


def estimate_expectation(
    chains: np.ndarray,
    name: Optional[str] = None,
    config: AutocorrelationConfig = DEFAULT_AUTOCORRELATION_CONFIG,
) -> ExpectationEstimate:
    """
    Ensemble estimate of an expectation over all chains.

    mean = sum_c ESS_c * mean_c / sum_c ESS_c
    se = sqrt(sum_c (ESS_c * se_c)^2) / sum_c ESS_c

    Args:
        chains: Expectand values, shape (n_chains, n_iterations)
        name: Expectand name for messages
        config: Autocorrelation time floor

    Returns:
        ExpectationEstimate with the pooled ESS
    """
    chains = require_finite(as_chain_matrix(chains, name, min_iterations=2), name)
    estimates = chain_estimates(chains, config)

    if any(acc.frozen for acc in accumulate_chains(chains)):
        label = f"Expectand '{name}'" if name else "Expectand"
        warnings.warn(
            f"{label} has frozen chains; their standard errors are reported as zero",
            category=DegenerateDataWarning
        )

    weights = np.array([e.ess for e in estimates])
    means = np.array([e.mean for e in estimates])
    errors = np.array([e.standard_error for e in estimates])

    total_ess = float(np.sum(weights))
    mean = float(np.sum(weights * means) / total_ess)
    standard_error = float(np.sqrt(np.sum((weights * errors) ** 2)) / total_ess)

    return ExpectationEstimate(mean, standard_error, total_ess)


def estimate_probability(
    chains: np.ndarray,
    indicator: Callable[[np.ndarray], np.ndarray],
    name: Optional[str] = None,
) -> ExpectationEstimate:
    """
    Probability of an event defined implicitly by an indicator function.

    Args:
        chains: Expectand values, shape (n_chains, n_iterations)
        indicator: Vectorized function returning True inside the event
    """
    chains = as_chain_matrix(chains, name, min_iterations=2)
    return estimate_expectation(np.asarray(indicator(chains), dtype=float), name)

"""
Markov chain Monte Carlo estimation with standard errors.

Turns expectands that passed the diagnostics into expectation,
probability and histogram estimates with error bars.
"""

from .expectation import (
    ExpectationEstimate,
    chain_estimates,
    estimate_expectation,
    estimate_probability,
    mcmc_standard_error,
)
from .pushforward import (
    HistogramBin,
    HistogramEstimate,
    PushforwardEstimator,
    estimate_pushforward,
)

__all__ = [
    'ExpectationEstimate',
    'chain_estimates',
    'estimate_expectation',
    'estimate_probability',
    'mcmc_standard_error',
    'HistogramBin',
    'HistogramEstimate',
    'PushforwardEstimator',
    'estimate_pushforward',
]

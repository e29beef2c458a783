"""
Histogram estimates of an expectand's pushforward distribution.

Each bin probability is the expectation of the bin's indicator function,
so it gets a Markov chain Monte Carlo standard error from the indicator's
own variance and effective sample size. The probabilities are pooled means
over all draws, which keeps their sum at exactly the fraction of draws
inside the binned range.
"""

import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..diagnostics.accumulator import Accumulator, accumulate_chains
from ..diagnostics.autocorrelation import AutocorrelationEstimator, warn_short_chains
from ..diagnostics.chains import as_chain_matrix, require_finite
from ..diagnostics.config import AutocorrelationConfig, DEFAULT_AUTOCORRELATION_CONFIG
from .expectation import mcmc_standard_error


@dataclass(frozen=True)
class HistogramBin:
    lower: float
    upper: float
    probability: float
    standard_error: float


@dataclass
class HistogramEstimate:
    """Ordered histogram bins and counts of draws outside them."""

    bins: List[HistogramBin] = field(default_factory=list)
    n_below: int = 0
    n_above: int = 0

    @property
    def edges(self) -> np.ndarray:
        return np.array([b.lower for b in self.bins] + [self.bins[-1].upper])

    @property
    def probabilities(self) -> np.ndarray:
        return np.array([b.probability for b in self.bins])

    @property
    def standard_errors(self) -> np.ndarray:
        return np.array([b.standard_error for b in self.bins])

    @property
    def total_probability(self) -> float:
        return float(np.sum(self.probabilities))


class PushforwardEstimator:
    """
    Equal-width histogram with Monte Carlo standard errors.

    Bins are closed on the left, and the last bin is also closed on the
    right so the maximum draw is counted.
    """

    def __init__(self, config: AutocorrelationConfig = DEFAULT_AUTOCORRELATION_CONFIG):
        self.autocorrelation = AutocorrelationEstimator(config=config)

    def bin_edges(
        self,
        chains: np.ndarray,
        bins: int,
        value_range: Optional[Tuple[float, float]] = None,
    ) -> np.ndarray:
        """Equal-width edges over value_range or the observed range."""
        if bins < 1:
            raise ValueError(f"Need at least one bin, got {bins}")

        if value_range is None:
            lower, upper = float(np.min(chains)), float(np.max(chains))
        else:
            lower, upper = (float(v) for v in value_range)
            if lower > upper:
                raise ValueError(f"Invalid histogram range ({lower}, {upper})")

        if lower == upper:
            lower, upper = lower - 0.5, upper + 0.5

        return np.linspace(lower, upper, bins + 1)

    def _bin_estimate(self, indicator: np.ndarray) -> Tuple[float, float]:
        pooled = Accumulator.merge(accumulate_chains(indicator))
        if pooled.frozen:
            return pooled.mean, 0.0

        ess = self.autocorrelation.ess(indicator, warn_short=False)
        if ess is None:
            # Indicator constant within every chain; one draw per chain
            ess = float(indicator.shape[0])

        return pooled.mean, mcmc_standard_error(pooled.variance, ess)

    def estimate(
        self,
        chains: np.ndarray,
        bins: int,
        value_range: Optional[Tuple[float, float]] = None,
        name: Optional[str] = None,
    ) -> HistogramEstimate:
        """
        Estimate bin probabilities of one expectand.

        Args:
            chains: Expectand values, shape (n_chains, n_iterations)
            bins: Number of equal-width bins
            value_range: (lower, upper) of the binning; observed min/max
                when omitted
            name: Expectand name for messages

        Returns:
            HistogramEstimate; probabilities sum to 1 when every draw falls
            inside the range
        """
        chains = require_finite(as_chain_matrix(chains, name, min_iterations=2), name)
        edges = self.bin_edges(chains, bins, value_range)
        warn_short_chains(chains)

        index = np.searchsorted(edges, chains, side='right') - 1
        index[chains == edges[-1]] = bins - 1

        n_below = int(np.sum(chains < edges[0]))
        n_above = int(np.sum(chains > edges[-1]))
        if n_below or n_above:
            warnings.warn(
                f"{n_below} draws fell below and {n_above} above the histogram range "
                f"[{edges[0]:.3g}, {edges[-1]:.3g}]",
                category=UserWarning
            )

        estimate = HistogramEstimate(n_below=n_below, n_above=n_above)
        for b in range(bins):
            indicator = (index == b).astype(float)
            probability, standard_error = self._bin_estimate(indicator)
            estimate.bins.append(HistogramBin(edges[b], edges[b + 1], probability, standard_error))

        return estimate


def estimate_pushforward(
    chains: np.ndarray,
    bins: int,
    value_range: Optional[Tuple[float, float]] = None,
) -> HistogramEstimate:
    """Histogram estimate with default autocorrelation settings."""
    return PushforwardEstimator().estimate(chains, bins, value_range)

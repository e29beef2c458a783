"""
Autocorrelation, integrated autocorrelation time and effective sample size.

Autocorrelations are estimated jointly over all chains: each chain's
autocovariance is computed by FFT, averaged across chains, and normalized
by the pooled variance estimate that split R-hat also uses, so that chains
which disagree inflate the estimated correlation.

The integrated autocorrelation time is truncated with Geyer's initial
monotone sequence: consecutive even/odd lag pairs are summed until the
first non-positive pair, and each pair is clamped to its predecessor.

References:
    [1] Geyer (1992). "Practical Markov Chain Monte Carlo"
    [2] Vehtari et al. (2021). "Rank-normalization, folding, and
        localization: An improved R-hat for assessing convergence of MCMC"
"""

import warnings
from typing import List, Optional, Tuple

import numpy as np

from .accumulator import accumulate_chains
from .chains import DiagnosticValue, as_chain_matrix, require_finite
from .config import (
    AutocorrelationConfig,
    DEFAULT_AUTOCORRELATION_CONFIG,
    DEFAULT_THRESHOLDS,
)


# Below this many iterations the lag sums are dominated by noise
SHORT_CHAIN_LENGTH = 20


def warn_short_chains(chains: np.ndarray):
    """Warn when chains are too short for reliable lag sums."""
    if chains.shape[1] < SHORT_CHAIN_LENGTH:
        warnings.warn(
            f"Only {chains.shape[1]} iterations per chain, autocorrelation "
            "estimates may be unreliable",
            category=UserWarning
        )


def chain_autocovariances(chains: np.ndarray) -> np.ndarray:
    """
    Biased autocovariance of every chain at every lag.

    Args:
        chains: Array of shape (n_chains, n_iterations)

    Returns:
        Array of shape (n_chains, n_iterations), lag along axis 1
    """
    n_iterations = chains.shape[1]
    centered = chains - np.mean(chains, axis=1, keepdims=True)

    # Zero padding to at least 2N avoids circular wrap-around
    n_fft = 2 ** int(np.ceil(np.log2(2 * n_iterations)))
    spectrum = np.fft.rfft(centered, n=n_fft, axis=1)
    acov = np.fft.irfft(spectrum * np.conj(spectrum), n=n_fft, axis=1)

    return acov[:, :n_iterations] / n_iterations


def integrated_autocorrelation_time(rhos: np.ndarray, min_tau: float = 1.0) -> float:
    """
    Integrated autocorrelation time from autocorrelations at lags 0, 1, ...

    tau = -1 + 2 * sum_p Gamma_p with Gamma_p = rho_2p + rho_2p+1, summed
    up to the first non-positive Gamma_p and made monotone. The result is
    floored at min_tau so the effective sample size never exceeds the
    number of draws.
    """
    n_pairs = len(rhos) // 2
    tau = -1.0
    previous = np.inf

    for p in range(n_pairs):
        pair_sum = rhos[2 * p] + rhos[2 * p + 1]
        if pair_sum <= 0:
            break
        pair_sum = min(pair_sum, previous)
        tau += 2.0 * pair_sum
        previous = pair_sum

    return max(float(tau), min_tau)


class AutocorrelationEstimator:
    """
    Effective sample size of an expectand from its autocorrelations.

    ESS = C * N / tau for C chains of N iterations. A frozen expectand
    (zero variance within every chain) has no defined autocorrelation;
    the estimator then reports an undefined value and leaves the verdict
    to the frozen chain check.
    """

    def __init__(
        self,
        min_ess: float = DEFAULT_THRESHOLDS.min_ess,
        config: AutocorrelationConfig = DEFAULT_AUTOCORRELATION_CONFIG,
    ):
        """
        Args:
            min_ess: Warn when the effective sample size is below min_ess
            config: Floor for the autocorrelation time
        """
        self.min_ess = min_ess
        self.config = config

    def _validate(
        self,
        chains: np.ndarray,
        name: Optional[str] = None,
        warn_short: bool = True,
    ) -> np.ndarray:
        chains = require_finite(as_chain_matrix(chains, name, min_iterations=2), name)
        if warn_short:
            warn_short_chains(chains)
        return chains

    def autocorrelations(self, chains: np.ndarray) -> Optional[np.ndarray]:
        """
        Combined autocorrelation at each lag, or None for frozen chains.

        rho_k = 1 - (W - mean_c acov_c(k)) / var_plus
        """
        chains = require_finite(as_chain_matrix(chains, min_iterations=2))
        return self._autocorrelations(chains)

    def _autocorrelations(self, chains: np.ndarray) -> Optional[np.ndarray]:
        n_chains, n_iterations = chains.shape

        accumulators = accumulate_chains(chains)
        if all(acc.frozen for acc in accumulators):
            return None

        # Within-chain variance
        within = np.mean([acc.variance for acc in accumulators])

        # Pooled variance estimate, between-chain term only with several chains
        var_plus = within * (n_iterations - 1) / n_iterations
        if n_chains > 1:
            var_plus += np.var([acc.mean for acc in accumulators], ddof=1)

        acov = chain_autocovariances(chains)
        rhos = 1.0 - (within - np.mean(acov, axis=0)) / var_plus
        rhos[0] = 1.0

        return rhos

    def _tau_hat(self, chains: np.ndarray) -> Optional[float]:
        rhos = self._autocorrelations(chains)
        if rhos is None:
            return None
        return integrated_autocorrelation_time(rhos, self.config.min_tau)

    def tau_hat(self, chains: np.ndarray) -> Optional[float]:
        """Integrated autocorrelation time over all chains, None if frozen."""
        return self._tau_hat(self._validate(chains))

    def ess(self, chains: np.ndarray, warn_short: bool = True) -> Optional[float]:
        """
        Effective sample size over all chains, None if frozen.

        Args:
            chains: Array of shape (n_chains, n_iterations)
            warn_short: Warn about short chains; callers that already warned
                for the same chains pass False
        """
        chains = self._validate(chains, warn_short=warn_short)
        tau = self._tau_hat(chains)
        if tau is None:
            return None
        return chains.size / tau

    def chain_ess(self, chains: np.ndarray) -> List[Optional[float]]:
        """Effective sample size of each chain on its own."""
        return self._chain_ess(self._validate(chains))

    def _chain_ess(self, chains: np.ndarray) -> List[Optional[float]]:
        ess_values = []
        for chain in chains:
            tau = self._tau_hat(chain[np.newaxis, :])
            ess_values.append(None if tau is None else chain.size / tau)
        return ess_values

    def estimate(self, chains: np.ndarray, name: Optional[str] = None) -> DiagnosticValue:
        """Ensemble effective sample size with threshold check."""
        return self._estimate(self._validate(chains, name))

    def _estimate(self, chains: np.ndarray) -> DiagnosticValue:
        tau = self._tau_hat(chains)
        if tau is None:
            return DiagnosticValue.undefined("frozen chains, autocorrelation deferred")

        ess = chains.size / tau
        # NaN from overflowing variances warns
        if not ess >= self.min_ess:
            return DiagnosticValue(ess, True, f"ESS = {ess:.1f} < {self.min_ess}")
        return DiagnosticValue(ess, False)

    def min_chain_ess(self, chains: np.ndarray, name: Optional[str] = None) -> DiagnosticValue:
        """
        Smallest per-chain effective sample size with threshold check.

        Undefined when any chain is frozen.
        """
        return self._min_chain_ess(self._validate(chains, name))

    def _min_chain_ess(self, chains: np.ndarray) -> DiagnosticValue:
        ess_values = self._chain_ess(chains)

        frozen = [c + 1 for c, ess in enumerate(ess_values) if ess is None]
        if frozen:
            return DiagnosticValue.undefined(f"frozen chains {frozen}, autocorrelation deferred")

        worst = int(np.argmin(ess_values))
        ess = ess_values[worst]
        if not ess >= self.min_ess:
            return DiagnosticValue(ess, True, f"chain {worst + 1} ESS = {ess:.1f} < {self.min_ess}")
        return DiagnosticValue(ess, False)

    def diagnose(
        self,
        chains: np.ndarray,
        name: Optional[str] = None,
    ) -> Tuple[DiagnosticValue, DiagnosticValue]:
        """
        Ensemble and smallest per-chain effective sample sizes in one pass.

        Returns:
            (ensemble ESS, min chain ESS)
        """
        chains = self._validate(chains, name)
        return self._estimate(chains), self._min_chain_ess(chains)

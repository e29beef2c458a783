"""
Hamiltonian Monte Carlo transition diagnostics.

These checks read what the sampler reports about its own transitions
rather than expectand values:

- Divergences: numerically unstable trajectories, any is suspicious
- Tree depth saturation: trajectories cut short by the maximum depth
- E-FMI: energy fraction of missing information, low values mean the
  momentum resampling explores the energy levels poorly
- Acceptance proxy: average accept_stat away from the adaptation target
  points to a failed step size adaptation

No check is fatal. Each reports its own counts and warning and the
aggregator only collects them.

References:
    Betancourt (2017) "A Conceptual Introduction to Hamiltonian Monte Carlo"
    Betancourt (2016) "Diagnosing Suboptimal Cotangent Disintegrations in
    Hamiltonian Monte Carlo"
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol

import numpy as np

from .chains import as_chain_matrix, require_finite
from .config import DEFAULT_THRESHOLDS, DiagnosticThresholds
from .errors import InputShapeError, ThresholdWarning

logger = logging.getLogger(__name__)


class AdaptationInfoProvider(Protocol):
    """Per-chain adaptation results from a sampler."""

    stepsizes: np.ndarray  # Shape (n_chains,)
    inv_metrics: np.ndarray  # Shape (n_chains, n_dimensions)


@dataclass
class AdaptationInfo:
    """Plain container satisfying AdaptationInfoProvider."""

    stepsizes: np.ndarray
    inv_metrics: np.ndarray

    def __post_init__(self):
        self.stepsizes = np.asarray(self.stepsizes, dtype=float).ravel()
        self.inv_metrics = np.asarray(self.inv_metrics, dtype=float)
        if self.inv_metrics.ndim == 1:
            self.inv_metrics = self.inv_metrics[:, np.newaxis]
        if self.inv_metrics.ndim != 2 or self.inv_metrics.shape[0] != self.stepsizes.size:
            raise InputShapeError(
                f"Expected one inverse metric per chain: {self.stepsizes.size} step sizes, "
                f"inverse metrics of shape {self.inv_metrics.shape}"
            )

    @classmethod
    def from_diagnostics(cls, diagnostics: Mapping[str, np.ndarray]) -> "AdaptationInfo":
        """Read ``stepsize`` and ``inv_metric`` entries from a diagnostics mapping."""
        stepsizes = np.asarray(diagnostics['stepsize'], dtype=float)
        if stepsizes.ndim == 2:
            # Step size reported per transition, constant after warmup
            stepsizes = stepsizes[:, 0]
        return cls(stepsizes, diagnostics['inv_metric'])


@dataclass
class AdaptationSummary:
    """Step sizes and inverse metric ranges of every chain."""

    stepsizes: List[float]
    inv_metric_min: List[float]
    inv_metric_max: List[float]
    inv_metric_mean: List[float]

    @property
    def stepsize_ratio(self) -> float:
        """Largest over smallest step size across chains."""
        return max(self.stepsizes) / min(self.stepsizes)

    def lines(self) -> List[str]:
        lines = []
        for c, (eps, lo, hi, mean) in enumerate(zip(
            self.stepsizes, self.inv_metric_min, self.inv_metric_max, self.inv_metric_mean
        )):
            lines.append(
                f"Chain {c + 1}: step size {eps:.3g}, inverse metric "
                f"min {lo:.3g} / mean {mean:.3g} / max {hi:.3g}"
            )
        return lines


@dataclass
class CheckResult:
    """Outcome of one transition diagnostic."""

    name: str
    warning: bool
    count: int = 0  # Offending transitions or chains
    total: int = 0  # Transitions or chains examined
    chain_values: List[float] = field(default_factory=list)
    chain_warnings: List[bool] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    @property
    def fraction(self) -> float:
        return self.count / self.total if self.total > 0 else 0.0


@dataclass
class HmcReport:
    """Every transition check plus the overall verdict."""

    checks: Dict[str, CheckResult] = field(default_factory=dict)
    adaptation: Optional[AdaptationSummary] = None
    skipped: List[str] = field(default_factory=list)

    @property
    def any_warning(self) -> bool:
        return any(check.warning for check in self.checks.values())

    @property
    def warnings(self) -> List[str]:
        """Names of the checks that warned."""
        return [name for name, check in self.checks.items() if check.warning]

    def lines(self) -> List[str]:
        lines = []
        for check in self.checks.values():
            lines.extend(check.messages)
        if not self.any_warning:
            lines.append("All Hamiltonian Monte Carlo diagnostics are consistent with reliable sampling.")
        if self.skipped:
            lines.append(f"Skipped (not supplied): {', '.join(self.skipped)}")
        return lines

    def emit(self):
        """Issue every warning as a ThresholdWarning."""
        for check in self.checks.values():
            if check.warning:
                for message in check.messages:
                    warnings.warn(message, category=ThresholdWarning)


def compute_efmi(energy: np.ndarray) -> float:
    """
    Energy fraction of missing information of one chain.

    E-FMI = sum_n (E_n - E_{n-1})^2 / sum_n (E_n - mean(E))^2

    which is the mean squared transition difference over the population
    variance (divisor N) of the energy.

    Returns NaN for a constant energy trace.
    """
    energy = np.asarray(energy, dtype=float).ravel()
    numerator = np.sum(np.diff(energy) ** 2)
    denominator = np.sum((energy - np.mean(energy)) ** 2)
    if denominator == 0:
        return float('nan')
    return float(numerator / denominator)


class HmcDiagnosticAggregator:
    """
    Run the transition checks against a set of thresholds.

    Each check is independent: pushing one input past its threshold
    produces that check's warning and no other.
    """

    def __init__(self, thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    def check_divergences(self, divergent: np.ndarray) -> CheckResult:
        """Warn on any divergent transition."""
        divergent = as_chain_matrix(divergent, 'divergent') != 0
        n_chains, n_iterations = divergent.shape

        result = CheckResult(name='divergences', warning=False, total=divergent.size)
        for c in range(n_chains):
            n_div = int(np.sum(divergent[c]))
            result.chain_values.append(n_div / n_iterations)
            result.chain_warnings.append(n_div > 0)
            if n_div > 0:
                result.messages.append(
                    f"Chain {c + 1}: {n_div} of {n_iterations} transitions "
                    f"({100 * n_div / n_iterations:.1f}%) diverged."
                )

        result.count = int(np.sum(divergent))
        result.warning = result.count > 0
        if result.warning:
            result.messages.append(
                f"{result.count} of {result.total} transitions ({100 * result.fraction:.1f}%) "
                "diverged. Divergences indicate regions the integrator could not resolve "
                "and may bias estimates."
            )
        return result

    def check_treedepth(self, treedepth: np.ndarray) -> CheckResult:
        """Warn on any transition that saturated the maximum tree depth."""
        treedepth = as_chain_matrix(treedepth, 'treedepth')
        max_depth = self.thresholds.max_treedepth
        saturated = treedepth >= max_depth
        n_chains, n_iterations = treedepth.shape

        result = CheckResult(name='treedepth', warning=False, total=treedepth.size)
        for c in range(n_chains):
            n_sat = int(np.sum(saturated[c]))
            result.chain_values.append(n_sat / n_iterations)
            result.chain_warnings.append(n_sat > 0)
            if n_sat > 0:
                result.messages.append(
                    f"Chain {c + 1}: {n_sat} of {n_iterations} transitions "
                    f"({100 * n_sat / n_iterations:.1f}%) saturated the maximum "
                    f"tree depth of {max_depth}."
                )

        result.count = int(np.sum(saturated))
        result.warning = result.count > 0
        if result.warning:
            result.messages.append(
                "Saturated trajectories were truncated before they could finish "
                "exploring; consider increasing the maximum tree depth."
            )
        return result

    def check_efmi(
        self,
        energy: Optional[np.ndarray] = None,
        efmi: Optional[np.ndarray] = None,
    ) -> CheckResult:
        """
        Warn on chains whose E-FMI is below the threshold.

        Args:
            energy: Hamiltonian energy of every transition, (n_chains, n_iterations)
            efmi: Precomputed E-FMI per chain, used when energy is not given
        """
        if energy is not None:
            energy = require_finite(as_chain_matrix(energy, 'energy', min_iterations=2), 'energy')
            values = [compute_efmi(chain) for chain in energy]
        elif efmi is not None:
            values = [float(v) for v in np.asarray(efmi, dtype=float).ravel()]
        else:
            raise ValueError("Need either energy or efmi")

        threshold = self.thresholds.efmi_threshold
        result = CheckResult(name='efmi', warning=False, total=len(values), chain_values=values)
        for c, value in enumerate(values):
            low = not value >= threshold  # NaN (constant energy) counts as low
            result.chain_warnings.append(low)
            if low:
                result.messages.append(f"Chain {c + 1}: E-FMI = {value:.3f} is below {threshold}.")

        result.count = sum(result.chain_warnings)
        result.warning = result.count > 0
        if result.warning:
            result.messages.append(
                "E-FMI below the threshold suggests the momentum resampling cannot "
                "explore the energy levels of the target efficiently."
            )
        return result

    def check_accept_stat(self, accept_stat: np.ndarray) -> CheckResult:
        """
        Warn on chains whose average acceptance proxy is off target.

        Args:
            accept_stat: Per-transition values (n_chains, n_iterations) or
                per-chain averages (n_chains,)
        """
        accept_stat = np.asarray(accept_stat, dtype=float)
        if accept_stat.ndim == 1:
            averages = [float(v) for v in accept_stat]
        else:
            averages = [float(v) for v in np.mean(as_chain_matrix(accept_stat, 'accept_stat'), axis=1)]

        target = self.thresholds.adapt_target
        tolerance = self.thresholds.accept_stat_tolerance
        result = CheckResult(name='accept_stat', warning=False, total=len(averages), chain_values=averages)
        for c, average in enumerate(averages):
            off_target = not abs(average - target) <= tolerance
            result.chain_warnings.append(off_target)
            if off_target:
                direction = 'below' if average < target else 'above'
                result.messages.append(
                    f"Chain {c + 1}: average accept_stat = {average:.3f} is {direction} "
                    f"the adaptation target {target} by more than {tolerance}."
                )

        result.count = sum(result.chain_warnings)
        result.warning = result.count > 0
        if result.warning:
            result.messages.append(
                "An acceptance proxy far from the adaptation target indicates the step "
                "size adaptation did not settle."
            )
        return result

    @staticmethod
    def summarize_adaptation(adaptation: AdaptationInfoProvider) -> AdaptationSummary:
        """Informational per-chain step size and inverse metric summary."""
        inv_metrics = np.atleast_2d(np.asarray(adaptation.inv_metrics, dtype=float))
        return AdaptationSummary(
            stepsizes=[float(v) for v in np.asarray(adaptation.stepsizes, dtype=float).ravel()],
            inv_metric_min=[float(v) for v in inv_metrics.min(axis=1)],
            inv_metric_max=[float(v) for v in inv_metrics.max(axis=1)],
            inv_metric_mean=[float(v) for v in inv_metrics.mean(axis=1)],
        )

    def check_all(
        self,
        diagnostics: Mapping[str, np.ndarray],
        adaptation: Optional[AdaptationInfoProvider] = None,
    ) -> HmcReport:
        """
        Run every check the supplied diagnostics allow.

        Args:
            diagnostics: Mapping with any of ``divergent``, ``treedepth``,
                ``energy`` or ``efmi``, ``accept_stat``, ``stepsize``,
                ``inv_metric``
            adaptation: Adaptation info; read from diagnostics when omitted
                and both ``stepsize`` and ``inv_metric`` are present

        Returns:
            HmcReport with one CheckResult per check that ran
        """
        report = HmcReport()

        if 'divergent' in diagnostics:
            report.checks['divergences'] = self.check_divergences(diagnostics['divergent'])
        else:
            report.skipped.append('divergent')

        if 'treedepth' in diagnostics:
            report.checks['treedepth'] = self.check_treedepth(diagnostics['treedepth'])
        else:
            report.skipped.append('treedepth')

        if 'energy' in diagnostics:
            report.checks['efmi'] = self.check_efmi(energy=diagnostics['energy'])
        elif 'efmi' in diagnostics:
            report.checks['efmi'] = self.check_efmi(efmi=diagnostics['efmi'])
        else:
            report.skipped.append('efmi')

        if 'accept_stat' in diagnostics:
            report.checks['accept_stat'] = self.check_accept_stat(diagnostics['accept_stat'])
        else:
            report.skipped.append('accept_stat')

        if adaptation is None and 'stepsize' in diagnostics and 'inv_metric' in diagnostics:
            adaptation = AdaptationInfo.from_diagnostics(diagnostics)
        if adaptation is not None:
            report.adaptation = self.summarize_adaptation(adaptation)

        n_chains = {len(check.chain_values) for check in report.checks.values()}
        if report.adaptation is not None:
            n_chains.add(len(report.adaptation.stepsizes))
        if len(n_chains) > 1:
            raise InputShapeError(f"Diagnostics disagree on the number of chains: {sorted(n_chains)}")

        for name, check in report.checks.items():
            logger.debug("HMC check %s: warning=%s count=%d/%d", name, check.warning, check.count, check.total)

        return report


def check_all_hmc_diagnostics(
    diagnostics: Mapping[str, np.ndarray],
    thresholds: Optional[DiagnosticThresholds] = None,
    adaptation: Optional[AdaptationInfoProvider] = None,
) -> HmcReport:
    """Run all transition checks with the given (or default) thresholds."""
    aggregator = HmcDiagnosticAggregator(thresholds or DEFAULT_THRESHOLDS)
    return aggregator.check_all(diagnostics, adaptation)

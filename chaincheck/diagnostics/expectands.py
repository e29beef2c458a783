"""
Expectand diagnostics over a whole collection.

Every expectand is checked in turn: frozen chains first, then tail shape,
split R-hat and effective sample size. A frozen expectand only gets the
frozen warning, since the other statistics are undefined on constant
values. Failures on one expectand (ragged or non-finite chains) are
recorded on that entry and never stop the rest of the collection.
"""

import logging
import warnings
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from .accumulator import accumulate_chains
from .autocorrelation import AutocorrelationEstimator
from .chains import DiagnosticValue, ExpectandCollection, as_chain_matrix, require_finite
from .config import (
    AutocorrelationConfig,
    DEFAULT_AUTOCORRELATION_CONFIG,
    DEFAULT_TAIL_CONFIG,
    DEFAULT_THRESHOLDS,
    DiagnosticThresholds,
    TailShapeConfig,
)
from .errors import DegenerateDataWarning, DiagnosticInputError, ThresholdWarning
from .rhat import SplitRhatEstimator
from .tail_shape import TailShapeEstimator

logger = logging.getLogger(__name__)


WARNING_KINDS = ('frozen', 'xihat', 'rhat', 'ess')

# Split R-hat needs two iterations in every half chain
MIN_ITERATIONS = 4

_DEFERRED = DiagnosticValue.undefined("deferred to frozen chain check")
_FAILED = DiagnosticValue.undefined("not computed, input rejected")


@dataclass
class ExpectandResult:
    """Diagnostics of a single expectand."""

    name: str
    frozen: bool = False
    frozen_chains: List[int] = field(default_factory=list)  # 1-based
    xihat: DiagnosticValue = _DEFERRED
    rhat: DiagnosticValue = _DEFERRED
    ess: DiagnosticValue = _DEFERRED  # Smallest per-chain ESS
    ensemble_ess: DiagnosticValue = _DEFERRED
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def warnings(self) -> List[str]:
        """Kinds of warning raised for this expectand."""
        kinds = []
        if self.frozen:
            kinds.append('frozen')
        if self.xihat.warning:
            kinds.append('xihat')
        if self.rhat.warning:
            kinds.append('rhat')
        if self.ess.warning:
            kinds.append('ess')
        return kinds

    def lines(self) -> List[str]:
        """One line per check."""
        if self.failed:
            return [f"{self.name}: diagnostics failed ({self.error})"]
        if self.frozen:
            return [
                f"{self.name}: chains {self.frozen_chains} are frozen; values never change, "
                "remaining checks skipped"
            ]

        def describe(label, value, fmt):
            if not value.defined:
                return f"{self.name}: {label} undefined ({value.note})"
            status = f"WARNING, {value.note}" if value.warning else "ok"
            return f"{self.name}: {label} = {value.value:{fmt}} ({status})"

        return [
            describe("xihat", self.xihat, '.3f'),
            describe("split R-hat", self.rhat, '.3f'),
            describe("min chain ESS", self.ess, '.1f'),
        ]


@dataclass
class ExpectandReport:
    """Results for a collection of expectands."""

    results: Dict[str, ExpectandResult] = field(default_factory=dict)
    summary: bool = False
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS

    @property
    def any_warning(self) -> bool:
        return any(result.warnings for result in self.results.values())

    @property
    def ok(self) -> bool:
        """No warnings and no entry that failed to be checked."""
        return not self.any_warning and not self.failed

    @property
    def failed(self) -> Dict[str, str]:
        """Expectands that could not be checked, with the reason."""
        return {name: r.error for name, r in self.results.items() if r.failed}

    def warning_counts(self) -> Dict[str, int]:
        counts = Counter()
        for result in self.results.values():
            counts.update(result.warnings)
        return {kind: counts[kind] for kind in WARNING_KINDS}

    def names_with(self, kind: str) -> List[str]:
        return [name for name, r in self.results.items() if kind in r.warnings]

    def lines(self) -> List[str]:
        if self.summary:
            return self._summary_lines()

        lines = []
        for result in self.results.values():
            lines.extend(result.lines())
        return lines

    def _summary_lines(self, max_names: int = 5) -> List[str]:
        total = len(self.results)
        t = self.thresholds
        descriptions = {
            'frozen': "have frozen chains",
            'xihat': f"have tail xihat >= {t.xihat_threshold}",
            'rhat': f"have split R-hat > {t.rhat_threshold}",
            'ess': f"have a chain with ESS < {t.min_ess}",
        }

        lines = []
        for kind, count in self.warning_counts().items():
            if count == 0:
                continue
            names = self.names_with(kind)
            shown = ', '.join(names[:max_names]) + (', ...' if len(names) > max_names else '')
            lines.append(f"{count} of {total} expectands {descriptions[kind]} ({shown}).")

        failed = self.failed
        if failed:
            lines.append(f"{len(failed)} of {total} expectands could not be checked "
                         f"({', '.join(list(failed)[:max_names])}).")

        if not lines:
            lines.append("All expectands checked appear to be behaving well enough "
                         "for reliable Markov chain Monte Carlo estimation.")
        return lines

    def emit(self):
        """Issue frozen chains as DegenerateDataWarning and the rest as ThresholdWarning."""
        for result in self.results.values():
            if result.frozen:
                warnings.warn(
                    f"{result.name}: frozen chains {result.frozen_chains}",
                    category=DegenerateDataWarning
                )
                continue
            for value in (result.xihat, result.rhat, result.ess):
                if value.warning:
                    warnings.warn(f"{result.name}: {value.note}", category=ThresholdWarning)


class ExpectandDiagnosticAggregator:
    """
    Compose the expectand diagnostics and threshold them.

    The estimators are built once from the thresholds and tuning configs
    and reused for every expectand.
    """

    def __init__(
        self,
        thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
        tail_config: TailShapeConfig = DEFAULT_TAIL_CONFIG,
        autocorrelation_config: AutocorrelationConfig = DEFAULT_AUTOCORRELATION_CONFIG,
    ):
        self.thresholds = thresholds
        self.tail_shape = TailShapeEstimator(thresholds.xihat_threshold, tail_config)
        self.split_rhat = SplitRhatEstimator(thresholds.rhat_threshold)
        self.autocorrelation = AutocorrelationEstimator(thresholds.min_ess, autocorrelation_config)

    def check_expectand(self, name: str, values) -> ExpectandResult:
        """
        Run all checks on one expectand.

        Raises:
            DiagnosticInputError: Malformed or non-finite chains
        """
        chains = as_chain_matrix(values, name, min_iterations=MIN_ITERATIONS)
        require_finite(chains, name)

        frozen_chains = [c + 1 for c, acc in enumerate(accumulate_chains(chains)) if acc.frozen]
        if frozen_chains:
            return ExpectandResult(name, frozen=True, frozen_chains=frozen_chains)

        ensemble_ess, ess = self.autocorrelation.diagnose(chains, name)
        return ExpectandResult(
            name,
            xihat=self.tail_shape.estimate(chains, name),
            rhat=self.split_rhat.estimate(chains, name),
            ess=ess,
            ensemble_ess=ensemble_ess,
        )

    def check_all(
        self,
        expectands: ExpectandCollection,
        summary: Optional[bool] = None,
    ) -> ExpectandReport:
        """
        Check every expectand in a collection.

        Args:
            expectands: Mapping of name to (n_chains, n_iterations) values
            summary: Summarize by warning kind; None picks summary mode when
                the collection has more than thresholds.summary_threshold entries

        Returns:
            ExpectandReport in collection order
        """
        if summary is None:
            summary = len(expectands) > self.thresholds.summary_threshold

        report = ExpectandReport(summary=summary, thresholds=self.thresholds)
        for name, values in expectands.items():
            try:
                result = self.check_expectand(name, values)
            except DiagnosticInputError as e:
                logger.warning("Expectand %s could not be checked: %s", name, e)
                result = ExpectandResult(
                    name, xihat=_FAILED, rhat=_FAILED, ess=_FAILED,
                    ensemble_ess=_FAILED, error=str(e)
                )
            else:
                logger.debug("Expectand %s: warnings %s", name, result.warnings or 'none')
            report.results[name] = result

        return report


def check_all_expectand_diagnostics(
    expectands: ExpectandCollection,
    summary: Optional[bool] = None,
    thresholds: Optional[DiagnosticThresholds] = None,
) -> ExpectandReport:
    """Check a collection of expectands with the given (or default) thresholds."""
    aggregator = ExpectandDiagnosticAggregator(thresholds or DEFAULT_THRESHOLDS)
    return aggregator.check_all(expectands, summary)


def _map_expectands(
    expectands: ExpectandCollection,
    statistic: Callable[[str, np.ndarray], DiagnosticValue],
) -> Dict[str, float]:
    values = {}
    for name, chains in expectands.items():
        try:
            values[name] = statistic(name, chains).as_float()
        except DiagnosticInputError as e:
            logger.warning("Expectand %s could not be checked: %s", name, e)
            values[name] = float('nan')
    return values


def compute_split_rhats(
    expectands: ExpectandCollection,
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> Dict[str, float]:
    """Split R-hat of every expectand; NaN where undefined or rejected."""
    estimator = SplitRhatEstimator(thresholds.rhat_threshold)
    return _map_expectands(expectands, lambda name, chains: estimator.estimate(chains, name))


def compute_min_eesss(
    expectands: ExpectandCollection,
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> Dict[str, float]:
    """Smallest per-chain effective sample size of every expectand."""
    estimator = AutocorrelationEstimator(thresholds.min_ess)
    return _map_expectands(expectands, lambda name, chains: estimator.min_chain_ess(chains, name))


def compute_xihats(
    expectands: ExpectandCollection,
    thresholds: DiagnosticThresholds = DEFAULT_THRESHOLDS,
) -> Dict[str, float]:
    """Largest tail xihat over chains and tails of every expectand."""
    estimator = TailShapeEstimator(thresholds.xihat_threshold)
    return _map_expectands(expectands, lambda name, chains: estimator.estimate(chains, name))

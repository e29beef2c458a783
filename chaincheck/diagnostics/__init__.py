"""
Convergence and mixing diagnostics for ensembles of Markov chains.

This module decides whether central limit theorem based Markov chain
Monte Carlo estimators can be trusted, from expectand values and from
the sampler's own transition diagnostics.
"""

from .accumulator import Accumulator, accumulate_chains, welford_summary
from .autocorrelation import (
    AutocorrelationEstimator,
    integrated_autocorrelation_time,
    warn_short_chains,
)
from .chains import (
    DiagnosticValue,
    as_chain_matrix,
    eval_expectand_pushforward,
    filter_expectands,
    flatten_expectands,
    validate_expectands,
)
from .config import (
    AutocorrelationConfig,
    DEFAULT_THRESHOLDS,
    DiagnosticThresholds,
    TailShapeConfig,
)
from .errors import (
    DegenerateDataWarning,
    DiagnosticInputError,
    InputShapeError,
    NonFiniteValueError,
    NonNumericValueError,
    ThresholdWarning,
)
from .expectands import (
    ExpectandDiagnosticAggregator,
    ExpectandReport,
    ExpectandResult,
    check_all_expectand_diagnostics,
    compute_min_eesss,
    compute_split_rhats,
    compute_xihats,
)
from .hmc import (
    AdaptationInfo,
    AdaptationInfoProvider,
    HmcDiagnosticAggregator,
    HmcReport,
    check_all_hmc_diagnostics,
)
from .rhat import SplitRhatEstimator, split_chains
from .tail_shape import BOUNDED_TAIL, TailShapeEstimator, fit_pareto_shape

__all__ = [
    # Estimators
    'Accumulator',
    'TailShapeEstimator',
    'AutocorrelationEstimator',
    'SplitRhatEstimator',
    'HmcDiagnosticAggregator',
    'ExpectandDiagnosticAggregator',
    # Entry points
    'check_all_hmc_diagnostics',
    'check_all_expectand_diagnostics',
    'compute_split_rhats',
    'compute_min_eesss',
    'compute_xihats',
    # Results
    'DiagnosticValue',
    'ExpectandResult',
    'ExpectandReport',
    'HmcReport',
    'AdaptationInfo',
    'AdaptationInfoProvider',
    # Configuration
    'DiagnosticThresholds',
    'TailShapeConfig',
    'AutocorrelationConfig',
    'DEFAULT_THRESHOLDS',
    # Errors
    'DiagnosticInputError',
    'InputShapeError',
    'NonFiniteValueError',
    'NonNumericValueError',
    'DegenerateDataWarning',
    'ThresholdWarning',
    # Helpers
    'accumulate_chains',
    'welford_summary',
    'integrated_autocorrelation_time',
    'warn_short_chains',
    'split_chains',
    'fit_pareto_shape',
    'BOUNDED_TAIL',
    'as_chain_matrix',
    'validate_expectands',
    'filter_expectands',
    'flatten_expectands',
    'eval_expectand_pushforward',
]

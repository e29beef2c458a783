"""
Threshold and tuning constants for the diagnostics.

Every check takes its thresholds from a DiagnosticThresholds instance
instead of hard-coding them, so the same core can be used with samplers
configured for different adaptation targets or tree depths.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DiagnosticThresholds:
    """Warning thresholds shared by the HMC and expectand checks."""

    xihat_threshold: float = 0.25  # Warn when tail shape >= threshold
    min_ess: float = 100.0  # Warn when effective sample size < min_ess
    rhat_threshold: float = 1.1  # Warn when split R-hat > threshold
    efmi_threshold: float = 0.2  # Warn when E-FMI < threshold
    adapt_target: float = 0.801  # Step size adaptation target
    accept_stat_tolerance: float = 0.1  # Allowed |average accept_stat - target|
    max_treedepth: int = 10
    summary_threshold: int = 20  # Expectand count above which reports are summarized

    def __post_init__(self):
        if self.min_ess <= 0:
            raise ValueError(f"min_ess must be positive, got {self.min_ess}")
        if self.rhat_threshold <= 1.0:
            raise ValueError(f"rhat_threshold must exceed 1, got {self.rhat_threshold}")
        if self.efmi_threshold <= 0:
            raise ValueError(f"efmi_threshold must be positive, got {self.efmi_threshold}")
        if not 0.0 < self.adapt_target < 1.0:
            raise ValueError(f"adapt_target must lie in (0, 1), got {self.adapt_target}")
        if not 0.0 <= self.accept_stat_tolerance <= 1.0:
            raise ValueError(
                f"accept_stat_tolerance must lie in [0, 1], got {self.accept_stat_tolerance}"
            )
        if self.max_treedepth < 1:
            raise ValueError(f"max_treedepth must be at least 1, got {self.max_treedepth}")
        if self.summary_threshold < 0:
            raise ValueError(
                f"summary_threshold must be non-negative, got {self.summary_threshold}"
            )


@dataclass(frozen=True)
class TailShapeConfig:
    """
    Tail selection for the generalized Pareto fit.

    The tail holds M = max(min_tail_size, floor(min(tail_fraction * N,
    sqrt_factor * sqrt(N)))) of the N values, capped at N - 1 so that a
    cutoff order statistic always remains below the tail.
    """

    tail_fraction: float = 0.2
    sqrt_factor: float = 3.0
    min_tail_size: int = 5

    def __post_init__(self):
        if not 0.0 < self.tail_fraction <= 1.0:
            raise ValueError(f"tail_fraction must lie in (0, 1], got {self.tail_fraction}")
        if self.sqrt_factor <= 0:
            raise ValueError(f"sqrt_factor must be positive, got {self.sqrt_factor}")
        if self.min_tail_size < 1:
            raise ValueError(f"min_tail_size must be at least 1, got {self.min_tail_size}")

    def tail_size(self, n_values: int) -> int:
        heuristic = int(min(self.tail_fraction * n_values, self.sqrt_factor * n_values ** 0.5))
        return min(max(self.min_tail_size, heuristic), n_values - 1)


@dataclass(frozen=True)
class AutocorrelationConfig:
    """Floor for the integrated autocorrelation time."""

    min_tau: float = 1.0

    def __post_init__(self):
        if self.min_tau <= 0:
            raise ValueError(f"min_tau must be positive, got {self.min_tau}")


DEFAULT_THRESHOLDS = DiagnosticThresholds()
DEFAULT_TAIL_CONFIG = TailShapeConfig()
DEFAULT_AUTOCORRELATION_CONFIG = AutocorrelationConfig()

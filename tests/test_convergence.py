"""
Test the core convergence estimators.

This test file validates that:
1. The accumulator computes exact moments and detects frozen chains
2. Tail shape estimates recover known generalized Pareto shapes
3. Autocorrelation times match the AR(1) theory
4. Split R-hat separates mixed from unmixed chains and matches hand computations
"""

import math
import os
import sys

import numpy as np
import pytest
from scipy import stats

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chaincheck.diagnostics import (
    BOUNDED_TAIL,
    Accumulator,
    AutocorrelationEstimator,
    InputShapeError,
    NonFiniteValueError,
    SplitRhatEstimator,
    TailShapeConfig,
    TailShapeEstimator,
    accumulate_chains,
    fit_pareto_shape,
    integrated_autocorrelation_time,
    split_chains,
    welford_summary,
)


def generate_ar1_chains(n_chains=4, n_samples=1000, rho=0.5, seed=42):
    """Generate stationary AR(1) chains with unit marginal variance."""
    np.random.seed(seed)
    chains = np.zeros((n_chains, n_samples))

    for c in range(n_chains):
        chains[c, 0] = np.random.randn()
        for i in range(1, n_samples):
            chains[c, i] = rho * chains[c, i - 1] + np.sqrt(1 - rho ** 2) * np.random.randn()

    return chains


def generate_non_converged_chains(n_chains=4, n_samples=1000, seed=42):
    """Generate chains that haven't converged (different distributions)."""
    np.random.seed(seed)
    chains = []

    for i in range(n_chains):
        mean = i * 2.0
        std = 1.0 + i * 0.5
        chains.append(np.random.randn(n_samples) * std + mean)

    return np.stack(chains)


# Accumulator

def test_accumulator_matches_numpy():
    np.random.seed(0)
    values = np.random.randn(500) * 3.0 + 10.0

    acc = Accumulator()
    for v in values:
        acc.update(v)

    assert acc.count == 500
    assert acc.mean == pytest.approx(np.mean(values), rel=1e-12)
    assert acc.variance == pytest.approx(np.var(values, ddof=1), rel=1e-10)
    assert not acc.frozen

    bulk = Accumulator().extend(values)
    assert bulk.mean == pytest.approx(acc.mean, rel=1e-12)
    assert bulk.variance == pytest.approx(acc.variance, rel=1e-10)


def test_accumulator_constant_values_are_frozen():
    acc = Accumulator()
    for _ in range(10):
        acc.update(0.1)
    assert acc.variance == 0.0
    assert acc.frozen

    bulk = Accumulator().extend(np.full(1000, 0.1))
    assert bulk.variance == 0.0
    assert bulk.frozen


def test_accumulator_single_value():
    acc = Accumulator().update(3.0)
    assert acc.mean == 3.0
    assert math.isnan(acc.variance)
    assert not acc.frozen


def test_accumulator_parallel_combination():
    np.random.seed(1)
    chains = np.random.randn(4, 250) + np.arange(4)[:, np.newaxis]

    per_chain = accumulate_chains(chains)
    total = Accumulator.merge(per_chain)

    assert total.count == chains.size
    assert total.mean == pytest.approx(np.mean(chains), rel=1e-12)
    assert total.variance == pytest.approx(np.var(chains, ddof=1), rel=1e-10)

    # Merging frozen chains at the same value stays frozen
    frozen = Accumulator.merge(accumulate_chains(np.full((3, 20), 2.5)))
    assert frozen.frozen
    assert frozen.mean == 2.5


def test_welford_large_offset():
    """Deviations must not cancel for values far from zero."""
    values = 1e9 + np.array([4.0, 7.0, 13.0, 16.0])
    mean, variance = welford_summary(values)
    assert mean == pytest.approx(1e9 + 10.0)
    assert variance == pytest.approx(30.0, rel=1e-9)


# Tail shape

def test_pareto_shape_recovery():
    """Known shape xi = 0.5 is recovered from the upper tail."""
    print("Testing generalized Pareto shape recovery...")
    np.random.seed(3)
    draws = stats.genpareto.rvs(0.5, size=100000)

    estimator = TailShapeEstimator()
    xi_lower, xi_upper = estimator.chain_tail_shapes(draws)

    print(f"  xi_upper={xi_upper:.3f} (expect ≈0.5), xi_lower={xi_lower:.3f}")
    assert abs(xi_upper - 0.5) < 0.2, f"Upper tail shape should be ≈0.5, got {xi_upper}"
    assert xi_lower < 0.25, "Lower tail of a Pareto draw is bounded"
    assert estimator.chain_xihat(draws) == max(xi_lower, xi_upper)


def test_pareto_shape_direct_fit():
    np.random.seed(4)
    excesses = stats.genpareto.rvs(0.3, size=5000)
    xi = fit_pareto_shape(excesses)
    assert abs(xi - 0.3) < 0.1, f"Expected ≈0.3, got {xi}"


def test_bounded_sample_never_warns():
    np.random.seed(5)
    chains = np.random.uniform(size=(4, 2000))

    result = TailShapeEstimator().estimate(chains)

    assert result.defined
    assert result.value < 0.25
    assert not result.warning


def test_heavy_tail_warns():
    np.random.seed(6)
    chains = np.random.standard_cauchy(size=(4, 4000))

    result = TailShapeEstimator().estimate(chains)

    assert result.warning, f"Cauchy tails should warn, xihat={result.value}"
    assert result.value > 0.5


def test_degenerate_tail_sentinel():
    assert fit_pareto_shape([2.0, 2.0, 2.0]) == BOUNDED_TAIL
    assert fit_pareto_shape([0.0, 0.0, 0.0, 1.0]) == BOUNDED_TAIL
    assert TailShapeEstimator().chain_tail_shapes([0.0, 1.0]) == (BOUNDED_TAIL, BOUNDED_TAIL)

    # Tail values tied with the cutoff leave no spread
    values = np.concatenate([np.random.randn(100), np.full(20, 50.0)])
    config = TailShapeConfig(tail_fraction=0.1, sqrt_factor=10.0)
    _, xi_upper = TailShapeEstimator(config=config).chain_tail_shapes(values)
    assert xi_upper == BOUNDED_TAIL


def test_tail_shape_frozen_is_undefined():
    result = TailShapeEstimator().estimate(np.full((2, 50), 3.0))
    assert not result.defined
    assert not result.warning
    assert result.value is None


def test_tail_shape_input_errors():
    with pytest.raises(InputShapeError):
        TailShapeEstimator().chain_tail_shapes([1.0])
    with pytest.raises(NonFiniteValueError):
        TailShapeEstimator().estimate([[1.0, np.nan, 2.0]])


def test_tail_size_heuristic():
    config = TailShapeConfig()
    assert config.tail_size(100) == 20
    assert config.tail_size(10000) == 300
    assert config.tail_size(10) == 5
    assert config.tail_size(3) == 2


# Autocorrelation

def test_ess_independent_samples():
    print("\nTesting Effective Sample Size...")
    np.random.seed(7)
    chains = np.random.randn(4, 2000)

    estimator = AutocorrelationEstimator(min_ess=100)
    ess = estimator.ess(chains)

    print(f"  Independent samples: ESS={ess:.1f} (expect ≈8000)")
    assert 0.7 * chains.size < ess <= chains.size
    assert not estimator.estimate(chains).warning


def test_ess_ar1_matches_theory():
    """Lag-1 correlation 0.9 inflates tau by (1 + rho) / (1 - rho) = 19."""
    rho = 0.9
    chains = generate_ar1_chains(n_chains=4, n_samples=10000, rho=rho, seed=8)

    estimator = AutocorrelationEstimator()
    tau = estimator.tau_hat(chains)
    expected = (1 + rho) / (1 - rho)

    print(f"  AR(1) rho={rho}: tau={tau:.2f} (expect ≈{expected:.1f})")
    assert 0.75 * expected < tau < 1.25 * expected

    rhos = estimator.autocorrelations(chains)
    assert rhos[0] == 1.0
    assert abs(rhos[1] - rho) < 0.05, f"Lag 1 autocorrelation should be ≈{rho}, got {rhos[1]}"


def test_ess_per_chain():
    chains = generate_ar1_chains(n_chains=3, n_samples=2000, rho=0.5, seed=9)
    estimator = AutocorrelationEstimator()

    ess_values = estimator.chain_ess(chains)
    assert len(ess_values) == 3
    for ess in ess_values:
        # (1 - 0.5) / (1 + 0.5) of the chain length
        assert 2000 / 3 * 0.5 < ess < 2000 / 3 * 1.5

    result = estimator.min_chain_ess(chains)
    assert result.value == pytest.approx(min(ess_values))


def test_ess_frozen_is_undefined():
    estimator = AutocorrelationEstimator()
    chains = np.ones((2, 100))

    assert estimator.tau_hat(chains) is None
    assert estimator.ess(chains) is None
    result = estimator.estimate(chains)
    assert not result.defined and not result.warning

    # One frozen chain leaves the per-chain minimum undefined
    mixed = np.vstack([np.random.randn(100), np.ones(100)])
    assert not estimator.min_chain_ess(mixed).defined
    assert estimator.estimate(mixed).defined


def test_low_ess_warns():
    chains = generate_ar1_chains(n_chains=2, n_samples=1000, rho=0.99, seed=10)
    result = AutocorrelationEstimator(min_ess=100).min_chain_ess(chains)
    assert result.warning


def test_integrated_autocorrelation_truncation():
    # Stops at the first non-positive pair
    rhos = np.array([1.0, 0.5, 0.2, 0.4, 0.3, 0.3, -0.5, -0.1])
    assert integrated_autocorrelation_time(rhos) == pytest.approx(-1 + 2 * (1.5 + 0.6 + 0.6))

    # Pairs are clamped to stay monotone
    rhos = np.array([1.0, 0.2, 0.1, 0.2, 0.5, 0.5, -1.0, 0.0])
    assert integrated_autocorrelation_time(rhos) == pytest.approx(-1 + 2 * (1.2 + 0.3 + 0.3))

    # Never non-positive: sums every pair and still terminates
    assert integrated_autocorrelation_time(np.ones(10)) == pytest.approx(19.0)

    # Antithetic chains are floored
    rhos = np.array([1.0, -0.5, 0.1, 0.0])
    assert integrated_autocorrelation_time(rhos) == 1.0
    assert integrated_autocorrelation_time(rhos, min_tau=0.5) == 0.5


# Split R-hat

def test_split_rhat_hand_computed():
    """
    Half chains [1,2], [3,4], [4,3], [2,1]: W = 0.5, var of means = 4/3,
    var_plus = 0.25 + 4/3, so R-hat = sqrt(19/6).
    """
    chains = np.array([[1.0, 2.0, 3.0, 4.0], [4.0, 3.0, 2.0, 1.0]])
    result = SplitRhatEstimator().estimate(chains)

    assert result.defined
    assert abs(result.value - math.sqrt(19.0 / 6.0)) < 1e-6
    assert result.warning


def test_split_rhat_converged():
    print("\nTesting split R-hat...")
    np.random.seed(11)
    chains = np.random.randn(16, 1000)

    r_hat = SplitRhatEstimator(threshold=1.1).compute(chains)

    print(f"  Independent chains: R̂={r_hat:.4f}")
    assert abs(r_hat - 1.0) < 0.01


def test_split_rhat_non_converged():
    chains = generate_non_converged_chains()
    result = SplitRhatEstimator(threshold=1.1).estimate(chains)

    print(f"  Non-converged chains: R̂={result.value:.3f}")
    assert result.warning
    assert result.value > 1.1


def test_split_rhat_detects_drift_in_single_chain():
    np.random.seed(12)
    chain = np.linspace(0.0, 10.0, 1000) + np.random.randn(1000)
    assert SplitRhatEstimator().estimate(chain[np.newaxis, :]).warning


def test_split_rhat_frozen():
    estimator = SplitRhatEstimator()

    result = estimator.estimate(np.ones((2, 4)))
    assert not result.defined
    assert math.isnan(estimator.compute(np.ones((2, 4))))

    # Constant halves at different values can never mix
    result = estimator.estimate(np.array([[1.0, 1.0, 1.0, 1.0], [2.0, 2.0, 2.0, 2.0]]))
    assert result.value == float('inf')
    assert result.warning


def test_split_chains_drops_middle_iteration():
    halves = split_chains(np.array([[0.0, 1.0, 2.0, 3.0, 4.0], [5.0, 6.0, 7.0, 8.0, 9.0]]))
    np.testing.assert_array_equal(
        halves, [[0.0, 1.0], [5.0, 6.0], [3.0, 4.0], [8.0, 9.0]]
    )


def test_split_rhat_short_chains():
    with pytest.raises(InputShapeError):
        SplitRhatEstimator().estimate(np.random.randn(4, 3))


def run_all_tests():
    """Run all convergence estimator tests."""
    for name, test in list(globals().items()):
        if name.startswith('test_') and callable(test):
            test()
    print("\nALL CONVERGENCE ESTIMATOR TESTS PASSED ✓")
    return True


if __name__ == "__main__":
    success = run_all_tests()
    if not success:
        sys.exit(1)

"""
Test the Hamiltonian Monte Carlo transition checks.

Starting from diagnostics that pass every check, pushing any single input
past its threshold must produce exactly that check's warning.
"""

import os
import sys

import numpy as np
import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chaincheck.diagnostics import (
    AdaptationInfo,
    DiagnosticThresholds,
    HmcDiagnosticAggregator,
    InputShapeError,
    ThresholdWarning,
    check_all_hmc_diagnostics,
)
from chaincheck.diagnostics.hmc import compute_efmi


def generate_clean_diagnostics(n_chains=4, n_samples=1000, seed=42):
    """Transition diagnostics of a well-behaved run."""
    np.random.seed(seed)
    return {
        'divergent': np.zeros((n_chains, n_samples), dtype=int),
        'treedepth': np.full((n_chains, n_samples), 5),
        'energy': np.random.randn(n_chains, n_samples) + 10.0,
        'accept_stat': np.full((n_chains, n_samples), 0.801),
        'stepsize': np.full(n_chains, 0.4),
        'inv_metric': np.ones((n_chains, 3)),
    }


def test_clean_diagnostics_no_warnings():
    report = check_all_hmc_diagnostics(generate_clean_diagnostics())

    assert not report.any_warning
    assert report.warnings == []
    assert set(report.checks) == {'divergences', 'treedepth', 'efmi', 'accept_stat'}
    assert report.skipped == []
    assert report.adaptation is not None
    assert "consistent with reliable sampling" in report.lines()[-1]


def test_single_divergence():
    diagnostics = generate_clean_diagnostics()
    diagnostics['divergent'][1, 10] = 1

    report = check_all_hmc_diagnostics(diagnostics)

    assert report.warnings == ['divergences']
    check = report.checks['divergences']
    assert check.count == 1
    assert check.total == 4000
    assert check.fraction == pytest.approx(1 / 4000)
    assert check.chain_warnings == [False, True, False, False]
    assert any("Chain 2: 1 of 1000" in m for m in check.messages)


def test_single_treedepth_saturation():
    diagnostics = generate_clean_diagnostics()
    diagnostics['treedepth'][2, 5] = 10

    report = check_all_hmc_diagnostics(diagnostics)

    assert report.warnings == ['treedepth']
    assert report.checks['treedepth'].count == 1
    assert report.checks['treedepth'].chain_values[2] == pytest.approx(1 / 1000)

    # A deeper configured maximum is not saturated
    report = check_all_hmc_diagnostics(diagnostics, DiagnosticThresholds(max_treedepth=12))
    assert not report.any_warning


def test_single_low_efmi():
    diagnostics = generate_clean_diagnostics()
    # A random walk energy trace barely moves between transitions relative to its spread
    diagnostics['energy'][0] = np.cumsum(np.random.randn(1000))

    report = check_all_hmc_diagnostics(diagnostics)

    assert report.warnings == ['efmi']
    assert report.checks['efmi'].chain_warnings == [True, False, False, False]
    assert report.checks['efmi'].chain_values[0] < 0.2


def test_single_off_target_accept_stat():
    diagnostics = generate_clean_diagnostics()
    diagnostics['accept_stat'][3] = 0.5

    report = check_all_hmc_diagnostics(diagnostics)

    assert report.warnings == ['accept_stat']
    assert report.checks['accept_stat'].count == 1
    assert "below the adaptation target" in report.checks['accept_stat'].messages[0]


def test_accept_stat_band_is_two_sided():
    aggregator = HmcDiagnosticAggregator()
    result = aggregator.check_accept_stat(np.array([0.801, 0.99, 0.75]))

    assert result.chain_warnings == [False, True, False]
    assert "above" in result.messages[0]


def test_efmi_from_supplied_values():
    report = check_all_hmc_diagnostics({'efmi': [0.1, 0.5]})

    assert report.warnings == ['efmi']
    assert report.checks['efmi'].chain_warnings == [True, False]
    assert set(report.skipped) == {'divergent', 'treedepth', 'accept_stat'}


def test_compute_efmi():
    np.random.seed(13)
    # White noise energies give E-FMI ≈ 2
    assert abs(compute_efmi(np.random.randn(10000)) - 2.0) < 0.1
    assert np.isnan(compute_efmi(np.ones(10)))

    # Constant energy counts as low
    result = HmcDiagnosticAggregator().check_efmi(energy=np.ones((1, 10)))
    assert result.warning


def test_adaptation_summary():
    adaptation = AdaptationInfo(stepsizes=[0.1, 0.2], inv_metrics=[[1.0, 2.0, 3.0], [0.5, 1.0, 1.5]])
    summary = HmcDiagnosticAggregator.summarize_adaptation(adaptation)

    assert summary.stepsizes == [0.1, 0.2]
    assert summary.inv_metric_min == [1.0, 0.5]
    assert summary.inv_metric_max == [3.0, 1.5]
    assert summary.stepsize_ratio == pytest.approx(2.0)
    assert len(summary.lines()) == 2

    with pytest.raises(InputShapeError):
        AdaptationInfo(stepsizes=[0.1, 0.2], inv_metrics=[[1.0, 2.0]])


def test_adaptation_is_informational():
    diagnostics = generate_clean_diagnostics()
    diagnostics['stepsize'] = np.array([0.01, 1.0, 0.4, 0.4])

    report = check_all_hmc_diagnostics(diagnostics)

    assert not report.any_warning
    assert report.adaptation.stepsize_ratio == pytest.approx(100.0)


def test_chain_count_mismatch():
    diagnostics = generate_clean_diagnostics()
    diagnostics['treedepth'] = np.full((3, 1000), 5)

    with pytest.raises(InputShapeError):
        check_all_hmc_diagnostics(diagnostics)


def test_emit_threshold_warnings():
    diagnostics = generate_clean_diagnostics()
    diagnostics['divergent'][0, 0] = 1

    report = check_all_hmc_diagnostics(diagnostics)

    with pytest.warns(ThresholdWarning):
        report.emit()


def test_invalid_thresholds():
    with pytest.raises(ValueError):
        DiagnosticThresholds(efmi_threshold=0.0)
    with pytest.raises(ValueError):
        DiagnosticThresholds(adapt_target=1.5)
    with pytest.raises(ValueError):
        DiagnosticThresholds(rhat_threshold=0.9)


def test_efmi_uses_population_variance():
    np.random.seed(21)
    energy = np.random.randn(50)

    expected = np.sum(np.diff(energy) ** 2) / len(energy) / np.var(energy)
    assert abs(compute_efmi(energy) - expected) < 1e-12


def run_all_tests():
    """Run all HMC transition check tests."""
    for name, test in list(globals().items()):
        if name.startswith('test_') and callable(test):
            test()
    print("\nALL HMC DIAGNOSTIC TESTS PASSED ✓")
    return True


if __name__ == "__main__":
    success = run_all_tests()
    if not success:
        sys.exit(1)

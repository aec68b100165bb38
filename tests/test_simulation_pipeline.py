import pytest
import pandas as pd
import numpy as np
import sys
import os
import logging
from numpy.random import default_rng

# Add parent directory to path to import ppi_study
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ppi_study.simulation.simulator import SimulationStudy, ReplicateResult, spawn_rngs
from ppi_study.simulation.missingness_patterns import MCARPattern, MARPattern
from ppi_study.simulation.interval_methods import (
    ClassicalInterval, PPIInterval, MultipleImputationInterval
)
from ppi_study.simulation.evaluator import evaluate_interval, summarize_results, coverage_test
from ppi_study.simulation.data_generators import (
    generate_data, make_covariance, records_to_frame, split_sample
)
from ppi_study.simulation.errors import FitError, DimensionMismatchError

# --- Fixtures for common setup ---

@pytest.fixture(scope="module")
def coverage_study_results():
    """1000 replicates with 10 labeled and 90 unlabeled records, 3 covariates."""
    study = SimulationStudy(n=100, n_labeled=10, p=3, beta=[1.0, 1.0, 1.0], rho=0.5,
                            noise_sd=1.0, num_runs=1000, seed=2024)
    methods = [
        ClassicalInterval(use_t_distribution=True),
        PPIInterval(use_t_distribution=True),
        PPIInterval(use_t_distribution=False),
        PPIInterval(use_t_distribution=True, covariates=['X1', 'X2']),
    ]
    return study.run_all(methods)

@pytest.fixture
def sample():
    data, _, _, _ = generate_data(n=60, p=3, rng=default_rng(7))
    return MCARPattern(n_labeled=15).apply(data, rng=default_rng(8))

# ----------------------------------------------------------------------
# Data generation
# ----------------------------------------------------------------------
def test_generate_data_shapes_and_truth():
    data, covariates, beta, true_mean = generate_data(n=50, p=3, intercept=2.0,
                                                      covariate_mean=[1.0, 0.0, -1.0],
                                                      beta=[0.5, 1.0, 2.0], rng=default_rng(1))
    assert list(data.columns) == ['X1', 'X2', 'X3', 'y']
    assert covariates == ['X1', 'X2', 'X3']
    assert len(data) == 50
    assert np.isclose(true_mean, 2.0 + 0.5 - 2.0)

def test_generate_data_covariance():
    cov = make_covariance(3, rho=0.5)
    data, _, _, _ = generate_data(n=20000, p=3, cov=cov, rng=default_rng(2))
    empirical = np.cov(data[['X1', 'X2', 'X3']].to_numpy(), rowvar=False)
    assert np.allclose(empirical, cov, atol=0.05)

def test_generate_data_is_reproducible():
    first, _, _, _ = generate_data(n=30, p=2, rng=default_rng(11))
    second, _, _, _ = generate_data(n=30, p=2, rng=default_rng(11))
    pd.testing.assert_frame_equal(first, second)

def test_make_covariance_rejects_non_positive_definite():
    with pytest.raises(ValueError):
        make_covariance(3, rho=-0.9)

def test_generate_data_beta_length():
    with pytest.raises(DimensionMismatchError):
        generate_data(n=10, p=3, beta=[1.0, 2.0], rng=default_rng(0))

def test_records_to_frame_and_split():
    data = records_to_frame([([1.0, 2.0], 3.0), ([2.0, 1.0], None), ([0.0, 0.0], np.nan)])
    assert list(data.columns) == ['X1', 'X2', 'y']
    labeled, unlabeled = split_sample(data)
    assert len(labeled) == 1
    assert list(unlabeled.index) == [1, 2]

# ----------------------------------------------------------------------
# Missingness patterns
# ----------------------------------------------------------------------
def test_mcar_pattern_exact_labeled_count():
    data, _, _, _ = generate_data(n=100, p=3, rng=default_rng(3))
    dat_miss = MCARPattern(n_labeled=10).apply(data, rng=default_rng(4))
    assert dat_miss['y'].notna().sum() == 10
    # Covariates untouched, input not mutated
    pd.testing.assert_frame_equal(dat_miss[['X1', 'X2', 'X3']], data[['X1', 'X2', 'X3']])
    assert data['y'].notna().all()

def test_mcar_pattern_fraction():
    data, _, _, _ = generate_data(n=200, p=3, rng=default_rng(3))
    dat_miss = MCARPattern(labeled_fraction=0.25).apply(data, rng=default_rng(4))
    assert dat_miss['y'].notna().sum() == 50

def test_mar_pattern_depends_on_driver():
    data, _, _, _ = generate_data(n=5000, p=3, rng=default_rng(5))
    dat_miss = MARPattern(labeled_fraction=0.2, strength=1.5).apply(data, rng=default_rng(6))
    labeled = dat_miss['y'].notna()
    assert abs(labeled.mean() - 0.2) < 0.02
    assert data.loc[labeled, 'X1'].mean() > data.loc[~labeled, 'X1'].mean()

def test_mar_pattern_probabilities_average_to_target():
    pattern = MARPattern(labeled_fraction=0.1, strength=1.0)
    data, _, _, _ = generate_data(n=100, p=3, rng=default_rng(12))
    probs = pattern.labeling_probabilities(data)
    assert np.isclose(probs.mean(), 0.1)
    assert np.corrcoef(probs, data['X1'])[0, 1] > 0

    # Realized labeled share matches the target across repeated samples
    rng = default_rng(13)
    fractions = []
    for _ in range(200):
        data, _, _, _ = generate_data(n=100, p=3, rng=rng)
        fractions.append(pattern.apply(data, rng=rng)['y'].notna().mean())
    assert abs(np.mean(fractions) - 0.1) < 0.01

def test_mar_pattern_constant_driver():
    data, _, _, _ = generate_data(n=50, p=3, rng=default_rng(14))
    data['X1'] = 1.0
    probs = MARPattern(labeled_fraction=0.3).labeling_probabilities(data)
    assert np.allclose(probs, 0.3)

def test_mar_pattern_keeps_two_labeled():
    data, _, _, _ = generate_data(n=10, p=3, rng=default_rng(5))
    dat_miss = MARPattern(labeled_fraction=0.01).apply(data, rng=default_rng(6))
    assert dat_miss['y'].notna().sum() >= 2

# ----------------------------------------------------------------------
# Interval methods
# ----------------------------------------------------------------------
def test_classical_interval(sample):
    observed = sample['y'].dropna()
    result = ClassicalInterval(use_t_distribution=False).estimate(sample)
    assert np.isclose(result.point_estimate, observed.mean())
    assert np.isclose(result.ci_upper - result.point_estimate,
                      1.959964 * observed.std(ddof=1) / np.sqrt(len(observed)), rtol=1e-5)
    t_result = ClassicalInterval(use_t_distribution=True).estimate(sample)
    assert (t_result.ci_upper - t_result.ci_lower) > (result.ci_upper - result.ci_lower)

def test_method_names():
    assert ClassicalInterval().name == 'classical_t'
    assert PPIInterval().name == 'ppi_normal'
    assert PPIInterval(use_t_distribution=True).name == 'ppi_t'
    assert PPIInterval(covariates=['X1', 'X2']).name == 'ppi_normal_on_X1_X2'
    assert MultipleImputationInterval(n_imputations=5).name == 'mi_5'

def test_multiple_imputation_completes_outcomes(sample):
    method = MultipleImputationInterval(n_imputations=4)
    imputed_list = method.impute(sample, rng=default_rng(9))
    assert len(imputed_list) == 4
    for dat_imputed in imputed_list:
        assert dat_imputed['y'].notna().all()
        # Observed outcomes are kept
        observed = sample['y'].notna()
        assert np.allclose(dat_imputed.loc[observed, 'y'], sample.loc[observed, 'y'])
    # Posterior sampling makes imputations differ
    assert not np.allclose(imputed_list[0]['y'], imputed_list[1]['y'])

def test_multiple_imputation_interval(sample):
    method = MultipleImputationInterval(n_imputations=5)
    point, lower, upper = method.estimate(sample, rng=default_rng(10))
    assert lower < point < upper
    again = method.estimate(sample, rng=default_rng(10))
    assert tuple(again) == (point, lower, upper)

@pytest.mark.parametrize("method", [
    ClassicalInterval(use_t_distribution=True),
    ClassicalInterval(use_t_distribution=False),
    PPIInterval(),
    PPIInterval(use_t_distribution=True),
    MultipleImputationInterval(n_imputations=3),
])
def test_interval_methods_reject_invalid_alpha(sample, method):
    for alpha in [0, 1, 1.5]:
        with pytest.raises(ValueError):
            method.estimate(sample, alpha=alpha, rng=default_rng(10))

def test_multiple_imputation_requires_two_imputations():
    with pytest.raises(ValueError):
        MultipleImputationInterval(n_imputations=1)

# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------
def test_evaluate_interval():
    metrics = evaluate_interval((1.0, 0.5, 1.5), true_mean=1.2)
    assert metrics == {'covered': True, 'width': 1.0}
    assert evaluate_interval((1.0, 0.5, 1.5), true_mean=2.0)['covered'] is False

def test_summarize_results_is_a_pure_reduction():
    records = [
        ReplicateResult(0, 'mcar', 'a', 1.0, 0.0, 2.0, 2.0, True, 1.5, 10, 90, None),
        ReplicateResult(1, 'mcar', 'a', 2.0, 1.8, 2.2, 0.4, False, 1.5, 10, 90, None),
        ReplicateResult(0, 'mcar', 'b', np.nan, np.nan, np.nan, np.nan, np.nan, 1.5, 10, 90, 'FitError: x'),
        ReplicateResult(1, 'mcar', 'b', 1.5, 1.0, 2.0, 1.0, True, 1.5, 10, 90, None),
    ]
    summary = summarize_results(records).set_index('method')
    assert summary.loc['a', 'coverage'] == 0.5
    assert np.isclose(summary.loc['a', 'width_mean'], 1.2)
    assert np.isclose(summary.loc['a', 'bias'], 0.0)
    assert np.isclose(summary.loc['a', 'rmse'], 0.5)
    assert summary.loc['a', 'n_failed'] == 0
    assert summary.loc['b', 'coverage'] == 1.0
    assert summary.loc['b', 'n_runs'] == 1
    assert summary.loc['b', 'n_failed'] == 1

def test_coverage_test():
    result = coverage_test([True] * 95 + [False] * 5, nominal=0.95)
    assert result['coverage'] == 0.95
    assert result['p_value'] > 0.5
    assert result['coverage_ci_lower'] < 0.95 < result['coverage_ci_upper']
    assert coverage_test([True] * 50 + [False] * 50, nominal=0.95)['p_value'] < 1e-6

# ----------------------------------------------------------------------
# Simulation study
# ----------------------------------------------------------------------
def test_spawn_rngs_are_independent():
    children = spawn_rngs(default_rng(1), 3)
    draws = [child.random() for child in children]
    assert len(set(draws)) == 3

def test_study_validation():
    with pytest.raises(ValueError):
        SimulationStudy(n=10, n_labeled=20)
    with pytest.raises(ValueError):
        SimulationStudy(on_error='ignore')
    with pytest.raises(ValueError):
        SimulationStudy(alpha=1.5)

def test_run_replicate_uses_same_data_for_all_methods():
    study = SimulationStudy(n=50, n_labeled=10, p=3, num_runs=1, seed=1)
    records = study.run_replicate(MCARPattern(n_labeled=10), [ClassicalInterval(), PPIInterval()],
                                  rng=default_rng(5), run_idx=3)
    assert [r.method for r in records] == ['classical_t', 'ppi_normal']
    assert all(r.run_idx == 3 and r.n_labeled == 10 and r.n_unlabeled == 40 for r in records)
    assert records[0].true_mean == records[1].true_mean
    assert all(r.error is None for r in records)

def test_run_all_is_reproducible():
    methods = [ClassicalInterval(), PPIInterval()]
    first, _ = SimulationStudy(n=50, n_labeled=10, p=3, num_runs=5, seed=42).run_all(methods)
    second, _ = SimulationStudy(n=50, n_labeled=10, p=3, num_runs=5, seed=42).run_all(methods)
    pd.testing.assert_frame_equal(first, second)
    assert len(first) == 10

def test_run_all_parallel_matches_sequential():
    methods = [ClassicalInterval(), PPIInterval()]
    sequential, _ = SimulationStudy(n=50, n_labeled=10, p=3, num_runs=4, seed=42).run_all(methods, processes=1)
    parallel, _ = SimulationStudy(n=50, n_labeled=10, p=3, num_runs=4, seed=42).run_all(methods, processes=2)
    pd.testing.assert_frame_equal(sequential, parallel)

def test_failed_fit_is_skipped(caplog):
    study = SimulationStudy(n=30, n_labeled=3, p=3, num_runs=2, on_error='skip', seed=1)
    with caplog.at_level(logging.WARNING):
        results_all, summary = study.run_all([ClassicalInterval(), PPIInterval()])
    ppi_rows = results_all[results_all['method'] == 'ppi_normal']
    assert ppi_rows['error'].str.startswith('FitError').all()
    assert ppi_rows['estimate'].isna().all()
    summary = summary.set_index('method')
    assert summary.loc['ppi_normal', 'n_failed'] == 2
    assert summary.loc['classical_t', 'n_failed'] == 0
    assert "failed" in caplog.text

def test_failed_fit_is_raised():
    study = SimulationStudy(n=30, n_labeled=3, p=3, num_runs=2, on_error='raise', seed=1)
    with pytest.raises(FitError):
        study.run_all([PPIInterval()])

# ----------------------------------------------------------------------
# Coverage scenarios
# ----------------------------------------------------------------------
def test_ppi_coverage_near_nominal_small_labeled_sample(coverage_study_results):
    _, summary = coverage_study_results
    summary = summary.set_index('method')
    assert summary.loc['ppi_t', 'n_runs'] == 1000
    assert 0.88 <= summary.loc['ppi_t', 'coverage'] <= 0.99
    assert 0.90 <= summary.loc['classical_t', 'coverage'] <= 0.99

def test_ppi_normal_under_covers_small_labeled_sample(coverage_study_results):
    # In-sample residuals understate the rectifier variance at 10 labeled records
    _, summary = coverage_study_results
    summary = summary.set_index('method')
    assert summary.loc['ppi_normal', 'n_runs'] == 1000
    assert summary.loc['ppi_normal', 'coverage'] < 0.95
    assert summary.loc['ppi_normal', 'coverage'] <= summary.loc['ppi_t', 'coverage']
    assert summary.loc['ppi_normal', 'coverage'] >= 0.80

def test_ppi_narrower_than_classical_when_well_specified(coverage_study_results):
    _, summary = coverage_study_results
    summary = summary.set_index('method')
    assert summary.loc['ppi_t', 'width_mean'] <= summary.loc['classical_t', 'width_mean']

def test_t_interval_wider_than_normal_every_replicate(coverage_study_results):
    results_all, _ = coverage_study_results
    widths = results_all.pivot(index='run_idx', columns='method', values='width')
    assert (widths['ppi_t'] >= widths['ppi_normal']).all()

def test_misspecified_model_keeps_coverage_but_widens(coverage_study_results):
    _, summary = coverage_study_results
    summary = summary.set_index('method')
    misspecified = 'ppi_t_on_X1_X2'
    assert 0.85 <= summary.loc[misspecified, 'coverage'] <= 0.99
    assert summary.loc[misspecified, 'width_mean'] > summary.loc['ppi_t', 'width_mean']

def test_ppi_normal_coverage_large_labeled_sample():
    study = SimulationStudy(n=500, n_labeled=100, p=3, num_runs=500, seed=7)
    _, summary = study.run_all([PPIInterval(use_t_distribution=False)])
    coverage = summary.set_index('method').loc['ppi_normal', 'coverage']
    assert 0.91 <= coverage <= 0.98

"""Evaluation of interval estimates.

This module scores single intervals against the known population mean and
folds replicate records into per-method summary statistics.
"""

import logging

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)

GROUPBY_KEYS = ['missingness', 'method']


def evaluate_interval(result, true_mean):
    """
    Score one interval against the true mean.

    Parameters:
    -----------
    result : tuple-like
        (point_estimate, ci_lower, ci_upper)
    true_mean : float
        Population mean of the outcome

    Returns:
    --------
    dict : covered, width
    """
    lower, upper = result[1], result[2]
    return {
        'covered': bool(lower <= true_mean <= upper),
        'width': float(upper - lower),
    }


def coverage_test(covered, nominal=0.95):
    """
    Exact two-sided binomial test of empirical coverage against nominal.

    Returns a dict with coverage, n_runs, p_value and the Clopper-Pearson 95%
    interval for the coverage probability.
    """
    covered = np.asarray(covered, dtype=bool)
    n = len(covered)
    if n == 0:
        logger.warning("No replicates to test, returning empty result.")
        return {}
    k = int(covered.sum())
    test = stats.binomtest(k, n, nominal)
    ci = test.proportion_ci(confidence_level=0.95)
    return {
        'coverage': k / n,
        'n_runs': n,
        'p_value': float(test.pvalue),
        'coverage_ci_lower': float(ci.low),
        'coverage_ci_upper': float(ci.high),
    }


def summarize_results(records, groupby_keys=None):
    """
    Fold replicate records into summary statistics per (missingness, method).

    Parameters:
    -----------
    records : DataFrame or iterable of ReplicateResult
        One row per replicate and method. Failed replicates carry a non-empty
        'error' and NaN numbers.
    groupby_keys : list of str, optional
        Grouping columns, defaults to ['missingness', 'method']

    Returns:
    --------
    DataFrame : coverage, coverage_se, width_mean, width_std, bias, rmse,
                n_runs, n_failed per group
    """
    if groupby_keys is None:
        groupby_keys = GROUPBY_KEYS
    results_all = records if isinstance(records, pd.DataFrame) else pd.DataFrame([r._asdict() for r in records])
    if results_all.empty:
        logger.warning("No replicate records to summarize.")
        return pd.DataFrame()

    results_all = results_all.copy()
    results_all['failed'] = results_all['error'].fillna('').astype(str) != ''
    ok = results_all[~results_all['failed']].copy()
    ok['covered'] = ok['covered'].astype(float)
    ok['sq_error'] = (ok['estimate'] - ok['true_mean']) ** 2
    ok['bias'] = ok['estimate'] - ok['true_mean']

    summary = ok.groupby(groupby_keys, sort=False).agg(
        coverage=('covered', 'mean'),
        width_mean=('width', 'mean'),
        width_std=('width', 'std'),
        bias=('bias', 'mean'),
        mse=('sq_error', 'mean'),
        n_runs=('covered', 'size'),
    ).reset_index()
    summary['coverage_se'] = np.sqrt(summary['coverage'] * (1 - summary['coverage']) / summary['n_runs'])
    summary['rmse'] = np.sqrt(summary['mse'])
    summary = summary.drop(columns=['mse'])

    failed = results_all.groupby(groupby_keys, sort=False)['failed'].sum().reset_index(name='n_failed')
    summary = pd.merge(failed, summary, on=groupby_keys, how='left')
    summary['n_runs'] = summary['n_runs'].fillna(0).astype(int)
    summary['n_failed'] = summary['n_failed'].astype(int)

    columns = groupby_keys + ['coverage', 'coverage_se', 'width_mean', 'width_std', 'bias', 'rmse',
                              'n_runs', 'n_failed']
    return summary[columns]

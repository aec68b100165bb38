"""Prediction-powered inference (PPI) for a population mean.

An OLS model fit on the labeled records predicts the outcome for every
record. The mean prediction on the unlabeled records is corrected by the
average prediction error on the labeled records (the rectifier), and the
variance of that correction is added back into the interval:

    theta_hat = mean(f(X_u)) - mean(f(X_l) - Y_l)
    var_hat   = Var(f(X_u)) / n_u + Var(f(X_l) - Y_l) / n_l

The interval is asymptotically valid whether or not the regression is well
specified; a poor model only widens it.

The normal quantile is the default. With few labeled records it
under-covers, since the rectifier variance is estimated from in-sample
residuals: around 0.87 at 10 labeled records and 3 covariates. The
Student-t quantile with n_labeled - p - 1 degrees of freedom brings that
case back near nominal.
"""

import logging
from collections import namedtuple

import numpy as np
import pandas as pd
from scipy import stats

from ppi_study.simulation.data_generators import records_to_frame, split_sample
from ppi_study.simulation.errors import DegreesOfFreedomError
from ppi_study.simulation.ols import fit_ols

logger = logging.getLogger(__name__)

PPIResult = namedtuple(
    'PPIResult',
    ['point_estimate', 'ci_lower', 'ci_upper', 'std_error', 'critical_value',
     'n_labeled', 'n_unlabeled', 'df'],
)


def critical_value(alpha, df=None):
    """Two-sided critical value: normal quantile, or Student-t when df is given."""
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1). Got {alpha}.")
    if df is None:
        return float(stats.norm.ppf(1 - alpha / 2))
    if df <= 0:
        raise DegreesOfFreedomError(f"t-based interval needs positive degrees of freedom, got {df}.")
    return float(stats.t.ppf(1 - alpha / 2, df))


def estimate(sample, alpha=0.05, use_t_distribution=False, covariates=None, outcome='y'):
    """
    Prediction-powered point estimate and confidence interval for the mean outcome.

    Parameters:
    -----------
    sample : DataFrame or sequence of (covariates, outcome) records
        Covariates must be fully observed; missing outcomes are NaN (or None
        in record form).
    alpha : float, default=0.05
        Miscoverage level, the interval has nominal coverage 1 - alpha
    use_t_distribution : bool, default=False
        Use a Student-t quantile with n_labeled - p - 1 degrees of freedom
        instead of the normal quantile
    covariates : list of str, optional
        Covariate columns to regress on. Defaults to every column except the
        outcome. Passing a subset fits a deliberately misspecified model.
    outcome : str, default='y'
        Outcome column name

    Returns:
    --------
    PPIResult : named tuple that unpacks as (point_estimate, ci_lower, ci_upper, ...)

    Raises:
    -------
    FitError
        Labeled design matrix is rank-deficient.
    DegreesOfFreedomError
        use_t_distribution with n_labeled - p - 1 <= 0.
    DimensionMismatchError
        Records with covariate vectors of different lengths.
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1). Got {alpha}.")

    data = sample if isinstance(sample, pd.DataFrame) else records_to_frame(sample, outcome=outcome)
    if outcome not in data.columns:
        raise ValueError(f"Outcome column '{outcome}' not found in sample.")
    if covariates is None:
        covariates = [col for col in data.columns if col != outcome]
    unknown = [col for col in covariates if col not in data.columns]
    if unknown:
        raise ValueError(f"Covariate columns not found in sample: {unknown}")
    if data[covariates].isna().any().any():
        raise ValueError("Covariates must be fully observed.")

    labeled, unlabeled = split_sample(data, outcome=outcome)
    n_labeled, n_unlabeled = len(labeled), len(unlabeled)
    if n_labeled == 0:
        raise ValueError("Sample contains no labeled records.")

    X_labeled = labeled[covariates].to_numpy(dtype=np.float64)
    y_labeled = labeled[outcome].to_numpy(dtype=np.float64)

    model = fit_ols(X_labeled, y_labeled)
    if n_labeled < 2:
        raise ValueError("At least two labeled records are needed to estimate the variance.")

    df = model.df_resid
    crit = critical_value(alpha, df if use_t_distribution else None)

    if n_unlabeled == 0:
        logger.warning("No unlabeled records; the rectifier vanishes and PPI reduces to the labeled mean.")
        point = y_labeled.mean()
        variance = y_labeled.var(ddof=1) / n_labeled
    else:
        pred_labeled = model.predict(X_labeled)
        pred_unlabeled = model.predict(unlabeled[covariates].to_numpy(dtype=np.float64))
        rectifier = pred_labeled - y_labeled

        point = pred_unlabeled.mean() - rectifier.mean()
        if n_unlabeled > 1:
            variance_unlabeled = pred_unlabeled.var(ddof=1) / n_unlabeled
        else:
            logger.warning("Only one unlabeled record; its prediction variance term is taken as zero.")
            variance_unlabeled = 0.0
        variance = variance_unlabeled + rectifier.var(ddof=1) / n_labeled

    std_error = float(np.sqrt(variance))
    point = float(point)
    return PPIResult(
        point_estimate=point,
        ci_lower=point - crit * std_error,
        ci_upper=point + crit * std_error,
        std_error=std_error,
        critical_value=crit,
        n_labeled=n_labeled,
        n_unlabeled=n_unlabeled,
        df=df,
    )

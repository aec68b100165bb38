"""Data generation for simulation studies."""

import numpy as np
import pandas as pd
from numpy.random import default_rng

from ppi_study.simulation.errors import DimensionMismatchError


def make_covariance(p, rho=0.5):
    """
    Exchangeable covariance matrix with unit variances and correlation rho.

    Raises ValueError if the matrix is not positive definite
    (rho must lie in (-1/(p-1), 1)).
    """
    if p < 1:
        raise ValueError(f"p must be at least 1. Got {p}.")
    cov = np.full((p, p), float(rho))
    np.fill_diagonal(cov, 1.0)
    try:
        np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        raise ValueError(f"rho={rho} does not give a positive definite covariance for p={p}.")
    return cov


def generate_data(n=100, p=3, beta=None, intercept=1.0, cov=None, rho=0.5, noise_sd=1.0,
                  covariate_mean=None, rng=None):
    """
    Generate covariates from a multivariate normal and a linear outcome.

    Covariates are drawn as Z @ L.T + mu where L is the Cholesky factor of the
    target covariance, and the outcome is intercept + X @ beta + noise.

    Parameters:
    - n: Sample size
    - p: Number of covariates
    - beta: Outcome coefficients (length p), defaults to all ones
    - intercept: Outcome intercept
    - cov: Covariate covariance matrix, defaults to make_covariance(p, rho)
    - rho: Exchangeable correlation used when cov is not given
    - noise_sd: Standard deviation of the outcome noise
    - covariate_mean: Covariate mean vector, defaults to zeros
    - rng: numpy Generator

    Returns:
    - data: DataFrame with columns X1..Xp and y
    - covariates: List of covariate names
    - beta: Coefficient array (length p)
    - true_mean: Population mean of y
    """
    if rng is None:
        rng = default_rng(123)

    beta = np.ones(p) if beta is None else np.asarray(beta, dtype=np.float64)
    if len(beta) != p:
        raise DimensionMismatchError(f"beta has length {len(beta)} but p={p}.")
    cov = make_covariance(p, rho) if cov is None else np.asarray(cov, dtype=np.float64)
    if cov.shape != (p, p):
        raise DimensionMismatchError(f"cov has shape {cov.shape} but p={p}.")
    mu = np.zeros(p) if covariate_mean is None else np.asarray(covariate_mean, dtype=np.float64)

    chol = np.linalg.cholesky(cov)
    X = rng.standard_normal((n, p)) @ chol.T + mu
    y = intercept + X @ beta + noise_sd * rng.standard_normal(n)

    covariates = [f'X{i+1}' for i in range(p)]
    data = pd.DataFrame(X, columns=covariates)
    data['y'] = y
    true_mean = float(intercept + mu @ beta)
    return data, covariates, beta, true_mean


def records_to_frame(records, covariate_names=None, outcome='y'):
    """
    Build a sample DataFrame from (covariates, outcome) records.

    A missing outcome is given as None or NaN. Every covariate vector must
    have the same length.
    """
    records = list(records)
    if not records:
        raise ValueError("Sample contains no records.")

    rows = []
    outcomes = []
    width = None
    for i, (x, y) in enumerate(records):
        x = np.atleast_1d(np.asarray(x, dtype=np.float64))
        if width is None:
            width = len(x)
        elif len(x) != width:
            raise DimensionMismatchError(
                f"Record {i} has {len(x)} covariates, expected {width}."
            )
        rows.append(x)
        outcomes.append(np.nan if y is None else float(y))

    if covariate_names is None:
        covariate_names = [f'X{i+1}' for i in range(width)]
    elif len(covariate_names) != width:
        raise DimensionMismatchError(
            f"{len(covariate_names)} covariate names given for {width} covariates."
        )

    data = pd.DataFrame(np.vstack(rows), columns=list(covariate_names))
    data[outcome] = outcomes
    return data


def split_sample(data, outcome='y'):
    """Split a sample into labeled (outcome observed) and unlabeled rows, keeping row order."""
    mask = data[outcome].notna()
    return data.loc[mask], data.loc[~mask]

"""Ordinary least squares fitter used by the prediction-powered estimator."""

import numpy as np
from sklearn.linear_model import LinearRegression

from ppi_study.simulation.errors import FitError, DimensionMismatchError


class OLSFit:
    """Coefficients of an outcome ~ 1 + covariates fit.

    Attributes:
    -----------
    coef : ndarray
        Coefficient vector of length p + 1, intercept first
    n_obs : int
        Number of rows the model was fit on
    n_features : int
        Number of covariates p (intercept excluded)
    df_resid : int
        Residual degrees of freedom, n_obs - p - 1
    """

    def __init__(self, coef, n_obs):
        self.coef = np.asarray(coef, dtype=np.float64)
        self.coef.setflags(write=False)
        self.n_obs = int(n_obs)
        self.n_features = len(self.coef) - 1
        self.df_resid = self.n_obs - self.n_features - 1

    def predict(self, X):
        """Predict outcomes for the rows of X from the stored coefficients."""
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(-1, 1) if self.n_features == 1 else X.reshape(1, -1)
        if X.shape[1] != self.n_features:
            raise DimensionMismatchError(
                f"Model was fit on {self.n_features} covariates, got {X.shape[1]}."
            )
        return self.coef[0] + X @ self.coef[1:]

    def __repr__(self):
        return f"OLSFit(n_obs={self.n_obs}, n_features={self.n_features}, df_resid={self.df_resid})"


def fit_ols(X, y):
    """
    Fit outcome ~ 1 + covariates by least squares.

    Parameters:
    -----------
    X : array-like, shape (n, p)
        Covariates of the labeled records
    y : array-like, shape (n,)
        Observed outcomes

    Returns:
    --------
    OLSFit : Fitted coefficients

    Raises:
    -------
    FitError
        If the design matrix with an intercept column is rank-deficient
        (p + 1 > n, or collinear columns).
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    n, p = X.shape
    if len(y) != n:
        raise DimensionMismatchError(f"X has {n} rows but y has {len(y)} values.")

    design_matrix = np.column_stack([np.ones(n), X])
    rank = np.linalg.matrix_rank(design_matrix)
    if rank < p + 1:
        raise FitError(
            f"Design matrix is rank-deficient (rank {rank} < {p + 1}) "
            f"with {n} labeled records and {p} covariates."
        )

    if p == 0:
        # Intercept-only model
        return OLSFit([y.mean()], n_obs=n)

    model = LinearRegression().fit(X, y)
    return OLSFit(np.concatenate([[model.intercept_], model.coef_]), n_obs=n)

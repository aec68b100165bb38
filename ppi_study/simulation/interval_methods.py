"""Confidence-interval methods compared in the simulation studies."""

import logging
import warnings
from abc import ABC, abstractmethod
from collections import namedtuple

import numpy as np
from numpy.random import default_rng
from scipy import stats
from sklearn.exceptions import ConvergenceWarning
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer

from ppi_study.simulation import ppi
from ppi_study.simulation.errors import EstimationError

logger = logging.getLogger(__name__)

IntervalResult = namedtuple('IntervalResult', ['point_estimate', 'ci_lower', 'ci_upper'])


class IntervalMethod(ABC):
    """Abstract base class for interval methods.

    All interval methods must implement:
    - estimate(data, alpha=0.05, rng=None): Return an IntervalResult for the mean of 'y'
    - name: Property for descriptive name
    """

    outcome = 'y'

    @abstractmethod
    def estimate(self, data, alpha=0.05, rng=None):
        pass

    @property
    @abstractmethod
    def name(self):
        pass

    def _covariates(self, data):
        return [col for col in data.columns if col != self.outcome]


class ClassicalInterval(IntervalMethod):
    """Complete-case mean of the observed outcomes, unlabeled records discarded."""

    def __init__(self, use_t_distribution=True):
        self.use_t_distribution = use_t_distribution

    def estimate(self, data, alpha=0.05, rng=None):
        y = data[self.outcome].dropna().to_numpy(dtype=np.float64)
        n = len(y)
        if n < 2:
            raise EstimationError(f"Complete-case interval needs at least two observed outcomes, got {n}.")
        point = float(y.mean())
        std_error = float(np.sqrt(y.var(ddof=1) / n))
        crit = ppi.critical_value(alpha, n - 1 if self.use_t_distribution else None)
        return IntervalResult(point, point - crit * std_error, point + crit * std_error)

    @property
    def name(self):
        return 'classical_t' if self.use_t_distribution else 'classical_normal'


class PPIInterval(IntervalMethod):
    """Prediction-powered interval; `covariates` restricts the regression to a subset."""

    def __init__(self, use_t_distribution=False, covariates=None):
        self.use_t_distribution = use_t_distribution
        self.covariates = list(covariates) if covariates is not None else None

    def estimate(self, data, alpha=0.05, rng=None):
        result = ppi.estimate(data, alpha=alpha, use_t_distribution=self.use_t_distribution,
                              covariates=self.covariates, outcome=self.outcome)
        return IntervalResult(result.point_estimate, result.ci_lower, result.ci_upper)

    @property
    def name(self):
        base = 'ppi_t' if self.use_t_distribution else 'ppi_normal'
        if self.covariates is not None:
            return f"{base}_on_{'_'.join(self.covariates)}"
        return base


class MultipleImputationInterval(IntervalMethod):
    """Chained-regression multiple imputation of the outcome, pooled with Rubin's rules.

    Each imputation runs IterativeImputer with sample_posterior=True on the
    covariates and outcome, so imputed outcomes carry between-imputation
    variability. For m completed datasets with means Q_i and within variances
    U_i = s_i^2 / n:

        Q_bar = mean(Q_i)
        W     = mean(U_i)
        B     = var(Q_i)
        T     = W + (1 + 1/m) B
        nu    = (m - 1) (1 + W / ((1 + 1/m) B))^2
    """

    def __init__(self, n_imputations=5, max_iter=10):
        if n_imputations < 2:
            raise ValueError(f"n_imputations must be at least 2. Got {n_imputations}.")
        self.n_imputations = n_imputations
        self.max_iter = max_iter

    def impute(self, data, rng=None):
        """Return a list of completed DataFrames."""
        if rng is None:
            rng = default_rng(123)
        columns = self._covariates(data) + [self.outcome]
        imputation_rngs = rng.spawn(self.n_imputations)
        dat_imputed_list = []
        for imputation_rng in imputation_rngs:
            imp = IterativeImputer(max_iter=self.max_iter, random_state=imputation_rng.integers(0, 2**32),
                                   sample_posterior=True)
            dat_imputed = data.copy()
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', category=ConvergenceWarning)
                dat_imputed[columns] = imp.fit_transform(data[columns])
            dat_imputed_list.append(dat_imputed)
        return dat_imputed_list

    def estimate(self, data, alpha=0.05, rng=None):
        if data[self.outcome].notna().sum() < 2:
            raise EstimationError("Multiple imputation needs at least two observed outcomes.")
        imputed_list = self.impute(data, rng=rng)
        m = len(imputed_list)
        n = len(data)

        q = np.array([d[self.outcome].mean() for d in imputed_list])
        u = np.array([d[self.outcome].var(ddof=1) / n for d in imputed_list])
        q_bar = float(q.mean())
        w = float(u.mean())
        b = float(q.var(ddof=1))
        total_variance = w + (1 + 1 / m) * b

        if b > 0:
            nu = (m - 1) * (1 + w / ((1 + 1 / m) * b)) ** 2
            crit = ppi.critical_value(alpha, nu)
        else:
            logger.warning("Zero between-imputation variance; using the normal quantile.")
            crit = ppi.critical_value(alpha)

        half_width = crit * float(np.sqrt(total_variance))
        return IntervalResult(q_bar, q_bar - half_width, q_bar + half_width)

    @property
    def name(self):
        return f'mi_{self.n_imputations}'

"""Outcome missingness patterns for simulation studies."""

import numpy as np
from abc import ABC, abstractmethod
from numpy.random import default_rng
from scipy.optimize import brentq
from scipy.special import expit, logit


class MissingnessPattern(ABC):
    """Abstract base class for outcome missingness patterns.

    All missingness patterns must implement:
    - apply(data, rng=None): Return a copy of data with some outcomes set to NaN
    - name: Property for descriptive name
    """

    outcome = 'y'

    @abstractmethod
    def apply(self, data, rng=None):
        """Apply missingness to the outcome column.

        Parameters:
        - data: Complete DataFrame
        - rng: numpy Generator

        Returns:
        - dat_miss: DataFrame with missing outcomes
        """
        pass

    @property
    @abstractmethod
    def name(self):
        """Return descriptive name of the pattern."""
        pass

    def _mask(self, data, labeled):
        dat_miss = data.copy()
        dat_miss[self.outcome] = dat_miss[self.outcome].where(labeled, np.nan)
        return dat_miss


class MCARPattern(MissingnessPattern):
    """Keep a uniformly random subset of outcomes.

    With n_labeled set, exactly that many records stay labeled; otherwise
    round(labeled_fraction * n).
    """

    def __init__(self, n_labeled=None, labeled_fraction=0.1):
        if n_labeled is None and not 0 < labeled_fraction <= 1:
            raise ValueError(f"labeled_fraction must be in (0, 1]. Got {labeled_fraction}.")
        self.n_labeled = n_labeled
        self.labeled_fraction = labeled_fraction

    def apply(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        n = len(data)
        n_labeled = self.n_labeled if self.n_labeled is not None else int(round(self.labeled_fraction * n))
        if not 0 < n_labeled <= n:
            raise ValueError(f"n_labeled must be between 1 and {n}. Got {n_labeled}.")
        labeled = np.zeros(n, dtype=bool)
        labeled[rng.choice(n, n_labeled, replace=False)] = True
        return self._mask(data, labeled)

    @property
    def name(self):
        return 'mcar'


class MARPattern(MissingnessPattern):
    """Labeling probability logistic in one covariate.

    The intercept is solved per sample so that the labeling probabilities
    average exactly labeled_fraction. At least two records always stay
    labeled.
    """

    def __init__(self, labeled_fraction=0.1, strength=1.0, driver='X1'):
        if not 0 < labeled_fraction < 1:
            raise ValueError(f"labeled_fraction must be in (0, 1). Got {labeled_fraction}.")
        self.labeled_fraction = labeled_fraction
        self.strength = strength
        self.driver = driver

    def labeling_probabilities(self, data):
        """Per-record labeling probabilities with mean labeled_fraction."""
        x = data[self.driver].to_numpy(dtype=np.float64)
        sd = x.std()
        z = (x - x.mean()) / sd if sd > 0 else np.zeros_like(x)
        shift = self.strength * z
        center = logit(self.labeled_fraction)
        if not np.any(shift):
            return expit(np.full_like(shift, center))
        # Mean probability is increasing in the intercept; these bounds bracket the root
        spread = np.abs(shift).max() + 1.0
        intercept = brentq(lambda a: expit(a + shift).mean() - self.labeled_fraction,
                           center - spread, center + spread)
        return expit(intercept + shift)

    def apply(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        probs = self.labeling_probabilities(data)
        labeled = rng.uniform(size=len(data)) < probs
        if labeled.sum() < 2:
            labeled[np.argsort(-probs)[:2]] = True
        return self._mask(data, labeled)

    @property
    def name(self):
        return 'mar'

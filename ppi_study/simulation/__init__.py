"""Simulation studies of confidence intervals for a mean with missing outcomes.

This package compares prediction-powered inference (PPI) against classical
complete-case inference and multiple imputation when only some outcomes are
observed but covariates are observed for every record.

Basic Usage
-----------
>>> from ppi_study.simulation import estimate
>>> point, lower, upper, *_ = estimate(sample, alpha=0.05)
>>>
>>> from ppi_study.simulation import SimulationStudy, ClassicalInterval, PPIInterval
>>> study = SimulationStudy(n=100, n_labeled=10, p=3, num_runs=200, seed=123)
>>> results_all, summary = study.run_all([ClassicalInterval(), PPIInterval()])
>>> print(summary)

Modules
-------
errors : Estimation exceptions
ols : Least-squares fitter
ppi : Prediction-powered mean estimator
data_generators : Multivariate normal covariates and linear outcomes
missingness_patterns : Outcome missingness classes
interval_methods : Interval method classes
evaluator : Coverage and width metrics
simulator : Study orchestration
"""

from .errors import EstimationError, FitError, DegreesOfFreedomError, DimensionMismatchError
from .ols import OLSFit, fit_ols
from .ppi import PPIResult, estimate, critical_value
from .data_generators import generate_data, make_covariance, records_to_frame, split_sample
from .missingness_patterns import MissingnessPattern, MCARPattern, MARPattern
from .interval_methods import (
    IntervalMethod,
    IntervalResult,
    ClassicalInterval,
    PPIInterval,
    MultipleImputationInterval
)
from .evaluator import evaluate_interval, coverage_test, summarize_results
from .simulator import SimulationStudy, ReplicateResult, spawn_rngs

__version__ = '1.0.0'

__all__ = [
    # Errors
    'EstimationError',
    'FitError',
    'DegreesOfFreedomError',
    'DimensionMismatchError',

    # Estimator
    'OLSFit',
    'fit_ols',
    'PPIResult',
    'estimate',
    'critical_value',

    # Data generation
    'generate_data',
    'make_covariance',
    'records_to_frame',
    'split_sample',

    # Missingness patterns
    'MissingnessPattern',
    'MCARPattern',
    'MARPattern',

    # Interval methods
    'IntervalMethod',
    'IntervalResult',
    'ClassicalInterval',
    'PPIInterval',
    'MultipleImputationInterval',

    # Evaluation and simulation
    'evaluate_interval',
    'coverage_test',
    'summarize_results',
    'SimulationStudy',
    'ReplicateResult',
    'spawn_rngs',
]

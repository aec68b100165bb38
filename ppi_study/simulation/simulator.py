"""Simulation study orchestration."""

import logging
from collections import namedtuple
from multiprocessing import Pool

import numpy as np
import pandas as pd
from numpy.random import default_rng
from tqdm import tqdm

from ppi_study.simulation.data_generators import generate_data, make_covariance
from ppi_study.simulation.errors import EstimationError
from ppi_study.simulation.evaluator import evaluate_interval, summarize_results
from ppi_study.simulation.missingness_patterns import MCARPattern

logger = logging.getLogger(__name__)

ReplicateResult = namedtuple(
    'ReplicateResult',
    ['run_idx', 'missingness', 'method', 'estimate', 'ci_lower', 'ci_upper', 'width', 'covered',
     'true_mean', 'n_labeled', 'n_unlabeled', 'error'],
)

ON_ERROR_POLICIES = ('skip', 'raise')


def spawn_rngs(parent_rng, n):
    """Spawn n independent child generators from parent_rng."""
    return parent_rng.spawn(n)


def _run_replicate(args):
    """Run one replicate. Module-level so multiprocessing can pickle it."""
    study, patterns, methods, run_idx, run_rng = args
    records = []
    for pattern, pattern_rng in zip(patterns, spawn_rngs(run_rng, len(patterns))):
        records.extend(study.run_replicate(pattern, methods, pattern_rng, run_idx=run_idx))
    return records


class SimulationStudy:
    """
    Repeated-sampling comparison of interval methods for the mean outcome.

    Every replicate draws a fresh complete sample, hides outcomes with a
    missingness pattern and runs all methods on the same incomplete sample.
    Randomness flows from one parent Generator through spawned children, so
    results do not depend on how replicates are distributed over processes.

    on_error decides what a failed estimate (e.g. a rank-deficient fit) does:
    'skip' records it with NaN numbers and the error message, 'raise'
    propagates the exception.
    """

    def __init__(self, n=100, n_labeled=10, p=3, beta=None, intercept=1.0, rho=0.5, noise_sd=1.0,
                 alpha=0.05, num_runs=1000, on_error='skip', rng=None, seed=None):
        if rng is not None:
            self.rng = rng
        else:
            self.rng = default_rng(seed)
        self.n = n
        self.n_labeled = n_labeled
        self.p = p
        self.beta = np.ones(p) if beta is None else np.asarray(beta, dtype=np.float64)
        self.intercept = intercept
        self.rho = rho
        self.noise_sd = noise_sd
        self.alpha = alpha
        self.num_runs = num_runs
        self.on_error = on_error
        self.seed = seed

        if not 0 < self.n_labeled <= self.n:
            raise ValueError(f"n_labeled must be between 1 and n={self.n}. Got {self.n_labeled}.")
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1). Got {self.alpha}.")
        if self.on_error not in ON_ERROR_POLICIES:
            raise ValueError(f"on_error must be one of {ON_ERROR_POLICIES}. Got {self.on_error!r}.")
        if len(self.beta) != self.p:
            raise ValueError(f"beta has length {len(self.beta)} but p={self.p}.")
        self.cov = make_covariance(self.p, self.rho)

    def default_patterns(self):
        return [MCARPattern(n_labeled=self.n_labeled)]

    def run_replicate(self, missingness_pattern, methods, rng, run_idx=0):
        """
        Runs one replicate: generates a complete sample, hides outcomes and
        scores every method's interval against the true mean.

        Returns a list of ReplicateResult, one per method.
        """
        data_rng, miss_rng, method_rng = spawn_rngs(rng, 3)

        # 1. Generate the complete sample
        data, _, _, true_mean = generate_data(
            self.n, self.p, beta=self.beta, intercept=self.intercept, cov=self.cov,
            noise_sd=self.noise_sd, rng=data_rng
        )

        # 2. Hide outcomes
        dat_miss = missingness_pattern.apply(data, rng=miss_rng)
        n_labeled = int(dat_miss['y'].notna().sum())
        n_unlabeled = len(dat_miss) - n_labeled

        # 3. Estimate with every method on the same incomplete sample
        records = []
        for method, rng_m in zip(methods, spawn_rngs(method_rng, len(methods))):
            try:
                result = method.estimate(dat_miss, alpha=self.alpha, rng=rng_m)
            except EstimationError as e:
                if self.on_error == 'raise':
                    raise
                logger.warning(f"Run {run_idx} {missingness_pattern.name} {method.name} failed: {e}")
                records.append(ReplicateResult(
                    run_idx, missingness_pattern.name, method.name, np.nan, np.nan, np.nan, np.nan,
                    np.nan, true_mean, n_labeled, n_unlabeled, f"{type(e).__name__}: {e}"
                ))
                continue
            metrics = evaluate_interval(result, true_mean)
            records.append(ReplicateResult(
                run_idx, missingness_pattern.name, method.name, float(result[0]), float(result[1]),
                float(result[2]), metrics['width'], metrics['covered'], true_mean, n_labeled,
                n_unlabeled, None
            ))
        return records

    def run_all(self, methods, missingness_patterns=None, processes=1):
        """
        Run num_runs replicates of every pattern and method.

        Returns:
        --------
        results_all : DataFrame
            One row per replicate, pattern and method
        results_summary : DataFrame
            Coverage and width statistics per pattern and method
        """
        if missingness_patterns is None:
            missingness_patterns = self.default_patterns()

        run_rngs = spawn_rngs(self.rng, self.num_runs)
        args_list = [
            (self, missingness_patterns, methods, run_idx, run_rngs[run_idx])
            for run_idx in range(self.num_runs)
        ]

        if processes > 1:
            logger.info(f"Parallelizing {self.num_runs} runs across {processes} processes")
            with Pool(processes=processes) as pool:
                all_records = list(tqdm(pool.imap(_run_replicate, args_list), total=self.num_runs,
                                        desc="Replicates", leave=False))
        else:
            all_records = [_run_replicate(args) for args in tqdm(args_list, desc="Replicates", leave=False)]

        results_all = pd.DataFrame([r._asdict() for records in all_records for r in records],
                                   columns=ReplicateResult._fields)
        n_failed = int(results_all['error'].notna().sum())
        if n_failed:
            logger.warning(f"{n_failed} of {len(results_all)} estimates failed and were skipped")
        return results_all, summarize_results(results_all)

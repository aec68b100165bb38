import os
import json
import logging
import pandas as pd
from itertools import product
from pathlib import Path
from ppi_study.simulation.missingness_patterns import MCARPattern, MARPattern
from ppi_study.simulation.interval_methods import (
    ClassicalInterval, PPIInterval, MultipleImputationInterval
)
from ppi_study.simulation.simulator import SimulationStudy, spawn_rngs
from ppi_study.simulation.evaluator import summarize_results
from numpy.random import default_rng

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('simulation.log.txt'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger()

REQUIRED_KEYS = ['n', 'n_labeled', 'p', 'num_runs', 'rho', 'noise_sd', 'seed']
LIST_PARAMS = ['n', 'n_labeled', 'p', 'rho', 'noise_sd']
DEFAULT_METHODS = ['classical_t', 'classical_normal', 'ppi_normal', 'ppi_t', 'ppi_misspecified', 'mi']
DEFAULT_PATTERNS = ['mcar']

def load_config(config_path):
    """
    Load simulation configuration from a JSON file.

    Parameters:
    -----------
    config_path : str or Path
        Path to the JSON configuration file

    Returns:
    --------
    dict : Configuration dictionary with simulation parameters

    Example JSON structure:
    {
        "n": [100],
        "n_labeled": [10, 50],
        "p": [3],
        "num_runs": 1000,
        "rho": [0.5],
        "noise_sd": [1.0],
        "seed": 123,
        "alpha": 0.05,
        "on_error": "skip",
        "methods": ["classical_t", "ppi_normal", "ppi_t", "mi"],
        "patterns": ["mcar"]
    }
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = json.load(f)

    # Validate required keys
    missing_keys = [key for key in REQUIRED_KEYS if key not in config]
    if missing_keys:
        raise ValueError(f"Missing required configuration keys: {missing_keys}")

    # Ensure list types for grid parameters
    for param in LIST_PARAMS:
        if not isinstance(config[param], list):
            config[param] = [config[param]]

    config.setdefault('alpha', 0.05)
    config.setdefault('on_error', 'skip')
    config.setdefault('methods', DEFAULT_METHODS)
    config.setdefault('patterns', DEFAULT_PATTERNS)

    logger.info(f"Loaded configuration from {config_path}")
    return config

def build_methods(names, p):
    """Instantiate interval methods by name. 'ppi_misspecified' omits the last covariate."""
    builders = {
        'classical_t': lambda: ClassicalInterval(use_t_distribution=True),
        'classical_normal': lambda: ClassicalInterval(use_t_distribution=False),
        'ppi_normal': lambda: PPIInterval(use_t_distribution=False),
        'ppi_t': lambda: PPIInterval(use_t_distribution=True),
        'ppi_misspecified': lambda: PPIInterval(covariates=[f'X{i+1}' for i in range(p - 1)]),
        'mi': lambda: MultipleImputationInterval(n_imputations=5),
    }
    unknown = [name for name in names if name not in builders]
    if unknown:
        raise ValueError(f"Unknown methods: {unknown}. Choose from {list(builders)}")
    if 'ppi_misspecified' in names and p < 2:
        raise ValueError("ppi_misspecified needs p >= 2 so that a covariate can be omitted.")
    return [builders[name]() for name in names]

def build_patterns(names, n_labeled, n):
    builders = {
        'mcar': lambda: MCARPattern(n_labeled=n_labeled),
        'mar': lambda: MARPattern(labeled_fraction=n_labeled / n),
    }
    unknown = [name for name in names if name not in builders]
    if unknown:
        raise ValueError(f"Unknown missingness patterns: {unknown}. Choose from {list(builders)}")
    return [builders[name]() for name in names]

def get_num_processes(num_runs):
    """Number of worker processes for the replicates of one parameter combination."""
    # Use SLURM_CPUS_PER_TASK if on HPC, otherwise NUM_PROCESSES or up to 4 cores
    num_cores_available = int(os.environ.get('SLURM_CPUS_PER_TASK', os.environ.get('NUM_PROCESSES', min(os.cpu_count() or 4, 4))))

    # Allow override via environment variable
    max_parallel_runs = int(os.environ.get('MAX_PARALLEL_RUNS', 0))  # 0 = auto
    if max_parallel_runs > 0:
        logger.info(f"Using MAX_PARALLEL_RUNS={max_parallel_runs} (user-specified)")
        return max(1, min(max_parallel_runs, num_cores_available, num_runs))
    return max(1, min(num_cores_available, num_runs))

def run_single_combination(args):
    param_set, parent_rng, num_runs, alpha, on_error, method_names, pattern_names, processes = args
    n, n_labeled, p, rho, noise_sd = param_set

    param_suffix = f'n_{n}_nl_{n_labeled}_p_{p}_rho_{rho}_sd_{noise_sd}'

    methods = build_methods(method_names, p)
    patterns = build_patterns(pattern_names, n_labeled, n)

    study = SimulationStudy(
        n=n, n_labeled=n_labeled, p=p, rho=rho, noise_sd=noise_sd,
        alpha=alpha, num_runs=num_runs, on_error=on_error, rng=parent_rng
    )

    logger.info(f"Running {num_runs} runs for param_set: {param_suffix} across {processes} processes")
    results_all, _ = study.run_all(methods, patterns, processes=processes)

    results_all['param_set'] = param_suffix
    for key, value in zip(['n', 'n_labeled_target', 'p', 'rho', 'noise_sd'], param_set):
        results_all[key] = value
    return param_set, results_all

def run_simulation(
    config_file=None,
    n=[100],
    n_labeled=[10],
    p=[3],
    num_runs=1000,
    rho=[0.5],
    noise_sd=[1.0],
    seed=123,
    alpha=0.05,
    on_error='skip',
    methods=None,
    patterns=None,
    processes=None,
    output_dir='results/report/'
):
    """
    Run simulation with full factorial design over the parameter grid.

    Parameters can be provided either via a JSON config file or directly as function arguments.
    If config_file is provided, it takes precedence over direct arguments.

    Parameters:
    -----------
    config_file : str or Path, optional
        Path to JSON configuration file. If provided, other grid parameters are ignored.
    n : list, default=[100]
        Sample sizes (labeled plus unlabeled)
    n_labeled : list, default=[10]
        Numbers of records with observed outcomes
    p : list, default=[3]
        Numbers of covariates
    num_runs : int, default=1000
        Replicates per parameter combination
    rho : list, default=[0.5]
        Exchangeable covariate correlations
    noise_sd : list, default=[1.0]
        Outcome noise standard deviations
    seed : int, default=123
        Seed of the parent random generator
    alpha : float, default=0.05
        Miscoverage level
    on_error : {'skip', 'raise'}, default='skip'
        Policy for failed estimates (e.g. rank-deficient fits)
    methods : list of str, optional
        Interval method names, see build_methods
    patterns : list of str, optional
        Missingness pattern names, see build_patterns
    processes : int, optional
        Worker processes per combination, defaults to get_num_processes()
    output_dir : str, default='results/report/'
        Base directory for the CSV reports

    Returns:
    --------
    results_all : DataFrame
        One row per replicate, pattern and method
    results_summary : DataFrame
        Coverage, width, bias and RMSE per combination, pattern and method

    Example:
    --------
    # Using JSON config file
    results_all, results_summary = run_simulation(config_file='config.json')

    # Using direct parameters
    results_all, results_summary = run_simulation(n=[100], n_labeled=[10, 50], num_runs=500)
    """
    # Load configuration from JSON file if provided
    if config_file is not None:
        config = load_config(config_file)
        n = config['n']
        n_labeled = config['n_labeled']
        p = config['p']
        num_runs = config['num_runs']
        rho = config['rho']
        noise_sd = config['noise_sd']
        seed = config['seed']
        alpha = config['alpha']
        on_error = config['on_error']
        methods = config['methods']
        patterns = config['patterns']
    methods = DEFAULT_METHODS if methods is None else methods
    patterns = DEFAULT_PATTERNS if patterns is None else patterns

    # Validate n_labeled for all combinations
    for n_val, nl_val in product(n, n_labeled):
        if not 0 < nl_val <= n_val:
            raise ValueError(f"n_labeled={nl_val} must be between 1 and n={n_val}.")
        if 'mar' in patterns and nl_val >= n_val:
            raise ValueError(f"The mar pattern needs unlabeled records; n_labeled={nl_val} must be below n={n_val}.")

    logger.info(f"Starting full factorial simulation with seed={seed}")

    # Generate all parameter combinations
    param_combinations = list(product(n, n_labeled, p, rho, noise_sd))

    if processes is None:
        processes = get_num_processes(num_runs)

    # Prepare arguments for each combination
    parent_rng = default_rng(seed)
    combination_rngs = spawn_rngs(parent_rng, len(param_combinations))
    args_list = [
        (param_set, combination_rngs[i], num_runs, alpha, on_error, methods, patterns, processes)
        for i, param_set in enumerate(param_combinations)
    ]

    # Combinations run one after another; the replicates within each are parallelized
    logger.info(f"Running {len(args_list)} parameter combinations")
    run_results = [run_single_combination(args) for args in args_list]

    results_all = pd.concat([results_df for _, results_df in run_results], ignore_index=True)

    # Define the base param for report dir
    param_base = (f'n_{min(n)}_{max(n)}_nl_{min(n_labeled)}_{max(n_labeled)}_p_{min(p)}_{max(p)}_'
                  f'runs_{num_runs}_rho_{min(rho)}_{max(rho)}_sd_{min(noise_sd)}_{max(noise_sd)}')
    report_dir = os.path.join(output_dir, param_base)
    os.makedirs(report_dir, exist_ok=True)

    results_all.to_csv(os.path.join(report_dir, 'results_all_runs.csv'), index=False)
    logger.info(f"Saved all runs results to {os.path.join(report_dir, 'results_all_runs.csv')}")

    # Aggregate metrics per combination, pattern and method
    groupby_keys = ['n', 'n_labeled_target', 'p', 'rho', 'noise_sd', 'missingness', 'method']
    results_summary = summarize_results(results_all, groupby_keys=groupby_keys)

    results_summary.to_csv(os.path.join(report_dir, 'results_summary.csv'), index=False)
    logger.info(f"Saved summary results to {os.path.join(report_dir, 'results_summary.csv')}")

    logger.info(f"Full factorial simulation complete. Results saved in {report_dir}")
    return results_all, results_summary

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Run the PPI / classical / multiple imputation interval simulation')
    parser.add_argument('--config', '-c', type=str, default=None,
                       help='JSON configuration file')
    parser.add_argument('--num-runs', type=int, default=1000,
                       help='Replicates per parameter combination (ignored with --config)')
    args = parser.parse_args()

    results_all, results_summary = run_simulation(config_file=args.config, num_runs=args.num_runs)
    print(results_summary.to_string(index=False))

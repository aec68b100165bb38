import os
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
import logging
from pathlib import Path

from ppi_study.simulation.evaluator import coverage_test

logger = logging.getLogger(__name__)

# --- Helper Functions ---

def discover_report_dirs(base_dir='results/report/', use_latest_only=False):
    """
    Dynamically find all report directories.

    Parameters:
    -----------
    base_dir : str
        Base directory to search for report directories
    use_latest_only : bool, default=False
        If True, return only the most recently modified directory.
        If False, return all directories containing a summary.

    Returns:
    --------
    list : List of report directory paths
    """
    base_path = Path(base_dir)
    if not base_path.exists():
        logger.error(f"Base directory does not exist: {base_dir}")
        return []

    # Report directories contain a non-empty results_summary.csv
    report_dirs = []
    for d in base_path.iterdir():
        if not d.is_dir():
            continue
        summary_file = d / 'results_summary.csv'
        if summary_file.exists() and summary_file.stat().st_size > 0:
            report_dirs.append(d)

    if not report_dirs:
        logger.error(f"No valid report directories found in {base_dir} (all are empty or missing results_summary.csv)")
        return []

    if use_latest_only:
        latest_dir = max(report_dirs, key=lambda d: d.stat().st_mtime)
        logger.info(f"Using only the most recent directory: {latest_dir.name}")
        return [str(latest_dir)]
    logger.info(f"Found {len(report_dirs)} report directories: {[d.name for d in report_dirs]}")
    return [str(d) for d in sorted(report_dirs)]

def load_results(report_dir):
    """Load results_all_runs.csv and results_summary.csv from a report directory."""
    results_all_path = os.path.join(report_dir, 'results_all_runs.csv')
    results_summary_path = os.path.join(report_dir, 'results_summary.csv')
    if not os.path.exists(results_all_path):
        logger.warning(f"Missing results_all_runs.csv in {report_dir}")
        return None, None
    results_all = pd.read_csv(results_all_path)
    results_summary = pd.read_csv(results_summary_path) if os.path.exists(results_summary_path) else None

    if not all(col in results_all.columns for col in ['covered', 'width', 'method']):
        logger.warning(f"Results file in {report_dir} is missing replicate columns.")

    return results_all, results_summary

# --- Statistical Tests ---

def perform_statistical_tests(results_all, nominal=0.95, groupby_keys=None):
    """Exact binomial test of each method's empirical coverage against the nominal level."""
    if groupby_keys is None:
        groupby_keys = [k for k in ['n', 'n_labeled_target', 'p', 'rho', 'noise_sd', 'missingness', 'method']
                        if k in results_all.columns]
    ok = results_all[results_all['covered'].notna()]
    rows = []
    for key, group in ok.groupby(groupby_keys, sort=False):
        key = key if isinstance(key, tuple) else (key,)
        result = coverage_test(group['covered'].astype(bool), nominal=nominal)
        rows.append({**dict(zip(groupby_keys, key)), **result})
        logger.info(f"Coverage test {dict(zip(groupby_keys, key))}: coverage={result['coverage']:.3f}, p={result['p_value']:.3f}")
    return pd.DataFrame(rows)

# --- Main Comparison Function ---

def compare_methods(report_dirs, tables_dir='results/tables/', figures_dir='results/figures/', nominal=0.95):
    """Combine report directories, test coverage and draw coverage/width figures."""
    all_results = []
    all_summaries = []
    for report_dir in report_dirs:
        results_all, results_summary = load_results(report_dir)
        if results_all is None or results_summary is None:
            logger.warning(f"Skipping {report_dir} due to missing or invalid data")
            continue
        all_results.append(results_all)
        all_summaries.append(results_summary)

    if not all_summaries:
        logger.error("No valid results found.")
        return None

    combined_all = pd.concat(all_results, ignore_index=True)
    combined_summary = pd.concat(all_summaries, ignore_index=True)
    logger.info(f"Combined summary shape: {combined_summary.shape}")

    tests = perform_statistical_tests(combined_all, nominal=nominal)

    os.makedirs(tables_dir, exist_ok=True)
    combined_summary.to_csv(os.path.join(tables_dir, 'combined_results_summary.csv'), index=False)
    tests.to_csv(os.path.join(tables_dir, 'coverage_tests.csv'), index=False)

    os.makedirs(figures_dir, exist_ok=True)

    # --- VISUALIZATION 1: Coverage by method with Monte-Carlo error bars ---
    logger.info("Generating coverage plot...")
    plt.figure(figsize=(10, 6))
    x_labels = combined_summary['method'] + ' / ' + combined_summary['missingness']
    if 'n_labeled_target' in combined_summary.columns:
        x_labels = x_labels + ' (n_l=' + combined_summary['n_labeled_target'].astype(str) + ')'
    plt.errorbar(
        x=range(len(combined_summary)),
        y=combined_summary['coverage'],
        yerr=1.96 * combined_summary['coverage_se'],
        fmt='o',
        c='black',
        capsize=4
    )
    plt.axhline(y=nominal, color='r', linestyle='--', linewidth=1, label=f'Nominal ({nominal:.2f})')
    plt.xticks(range(len(combined_summary)), x_labels, rotation=45, ha='right')
    plt.ylabel('Empirical Coverage')
    plt.title('Empirical Coverage of Confidence Intervals for the Mean')
    plt.legend(loc='lower right')
    plt.grid(True, linestyle='--', alpha=0.5)
    plt.tight_layout()
    plt.savefig(os.path.join(figures_dir, 'coverage_by_method.png'), dpi=300)
    plt.close()

    # --- VISUALIZATION 2: Interval width distribution ---
    logger.info("Generating interval width plot...")
    ok = combined_all[combined_all['width'].notna()]
    plt.figure(figsize=(12, 7))
    sns.boxplot(data=ok, x='method', y='width', hue='missingness', palette='Set2')
    plt.title('Confidence Interval Width by Method')
    plt.ylabel('Interval Width (Lower is Better)')
    plt.xlabel('Method')
    plt.xticks(rotation=45, ha='right')
    plt.tight_layout()
    plt.savefig(os.path.join(figures_dir, 'width_by_method.png'), dpi=300)
    plt.close()

    # --- VISUALIZATION 3: Coverage vs. width trade-off ---
    logger.info("Generating coverage vs. width plot...")
    plt.figure(figsize=(10, 8))
    sns.scatterplot(
        data=combined_summary,
        x='width_mean',
        y='coverage',
        hue='method',
        style='missingness',
        s=150,
        alpha=0.8
    )
    plt.axhline(y=nominal, color='r', linestyle='--', linewidth=1)
    plt.title('Coverage vs. Mean Interval Width')
    plt.xlabel('Mean Interval Width')
    plt.ylabel('Empirical Coverage')
    plt.legend(title='Method/Missingness', bbox_to_anchor=(1.05, 1), loc='upper left')
    plt.grid(True, linestyle='--', alpha=0.5)
    plt.tight_layout()
    plt.savefig(os.path.join(figures_dir, 'coverage_vs_width.png'), dpi=300)
    plt.close()

    logger.info(f"Analysis complete. Tables in {tables_dir}, figures in {figures_dir}")
    return combined_summary, tests

if __name__ == "__main__":
    import sys
    import argparse

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    parser = argparse.ArgumentParser(description='Compare interval methods across simulation results')
    parser.add_argument('--latest', '-l', action='store_true',
                       help='Analyze only the most recent report directory')
    parser.add_argument('--dir', '-d', type=str, default=None, nargs='+',
                       help='Analyze specific report directory(ies) (relative to results/report/ or absolute path).')
    parser.add_argument('--base-dir', type=str, default='results/report/',
                       help='Base directory to search for report directories (default: results/report/)')

    args = parser.parse_args()

    BASE_DIR = args.base_dir

    if args.dir:
        report_dirs = []
        for dir_arg in args.dir:
            if os.path.isabs(dir_arg):
                report_dir = dir_arg
            elif os.path.exists(os.path.join(BASE_DIR, dir_arg)):
                report_dir = os.path.join(BASE_DIR, dir_arg)
            elif os.path.exists(dir_arg):
                report_dir = dir_arg
            else:
                logger.error(f"Directory not found: {dir_arg}")
                sys.exit(1)

            if not os.path.exists(os.path.join(report_dir, 'results_summary.csv')):
                logger.error(f"Directory {report_dir} does not contain results_summary.csv")
                sys.exit(1)

            report_dirs.append(report_dir)
    else:
        report_dirs = discover_report_dirs(BASE_DIR, use_latest_only=args.latest)

    if report_dirs:
        logger.info(f"Found {len(report_dirs)} report directory(ies) to analyze")
        compare_methods(report_dirs)
    else:
        logger.error("Analysis aborted: No report directories found")

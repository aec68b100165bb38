"""
Demo script for the prediction-powered inference simulation study.

This script estimates the mean outcome of one incomplete sample with every
method and then runs a small coverage study, to showcase the workflow and
output format.
"""

import sys

from ppi_study.simulation import (
    SimulationStudy, MCARPattern, MARPattern, ClassicalInterval, PPIInterval,
    MultipleImputationInterval, generate_data, estimate
)
from numpy.random import default_rng

def demo_single_sample():
    """
    Estimate the mean of one sample with 10 labeled and 90 unlabeled records.
    """
    print("=" * 70)
    print("DEMO: One Sample, Three Methods")
    print("=" * 70)
    print()

    rng = default_rng(42)
    data, covariates, beta, true_mean = generate_data(n=100, p=3, rng=rng)
    dat_miss = MCARPattern(n_labeled=10).apply(data, rng=rng)

    print(f"True mean: {true_mean:.4f}")
    print()

    point, lower, upper, *_ = estimate(dat_miss, alpha=0.05)
    print(f"  {'ppi (direct call)':30s}: {point:.4f}  [{lower:.4f}, {upper:.4f}]")

    methods = [
        ClassicalInterval(),
        PPIInterval(),
        PPIInterval(use_t_distribution=True),
        MultipleImputationInterval(n_imputations=5),
    ]
    for method in methods:
        result = method.estimate(dat_miss, alpha=0.05, rng=default_rng(42))
        print(f"  {method.name:30s}: {result.point_estimate:.4f}  [{result.ci_lower:.4f}, {result.ci_upper:.4f}]")
    print()

def demo_coverage_study():
    """
    Compare coverage and width across repeated samples.
    """
    print("=" * 70)
    print("DEMO: Coverage Study (200 replicates)")
    print("=" * 70)
    print()

    study = SimulationStudy(n=100, n_labeled=10, p=3, num_runs=200, seed=42)
    methods = [
        ClassicalInterval(),
        PPIInterval(),
        PPIInterval(use_t_distribution=True),
        PPIInterval(covariates=['X1', 'X2']),
    ]
    patterns = [MCARPattern(n_labeled=10), MARPattern(labeled_fraction=0.1)]

    results_all, summary = study.run_all(methods, patterns)
    print(summary.to_string(index=False, float_format=lambda v: f"{v:.4f}"))
    print()
    return summary

def main():
    print()
    print("This demo showcases the simulation framework with small examples.")
    print("For full-scale simulations, use 'run_simulation.py'.")
    print()

    try:
        demo_single_sample()
        demo_coverage_study()
        print("Demo complete!")
    except Exception as e:
        print(f"\nError during demo: {e}")
        print("\nMake sure all dependencies are installed:")
        print("  pip install -e .")
        import traceback
        traceback.print_exc()
        sys.exit(1)

if __name__ == "__main__":
    main()

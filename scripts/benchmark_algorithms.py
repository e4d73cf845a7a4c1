"""
Benchmarking Script for the Portfolio Optimization Engine.

Runs every registered algorithm on synthetic catalogues of increasing size
and records execution time, energy estimate, objective value, constraint
violation and solution quality.

Purpose:
--------
- Compare the five solvers on identical problems
- Check how each algorithm scales with the number of items
- Export results to CSV for external analysis
- Optionally plot execution time and objective against problem size

Usage:
------
    # Run benchmark with default sizes
    python scripts/benchmark_algorithms.py

    # Custom sizes, repetitions and algorithms
    python scripts/benchmark_algorithms.py --sizes 10 50 200 --repetitions 5 \
        --algorithms genetic simulated_annealing

    # Plot the results
    python scripts/benchmark_algorithms.py --plot
"""

import sys
import argparse
from pathlib import Path
from typing import List, Optional
from datetime import datetime
import logging

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import numpy as np
import pandas as pd
from tqdm import tqdm
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from portfolio_engine.config import (
    AnnealingConfig,
    FormulationConfig,
    GeneticConfig,
    ParticleSwarmConfig,
    QuantumInspiredConfig,
    Settings,
)
from portfolio_engine.problems.formulator import (
    ConstraintsInput,
    OptimizationRequest,
    ProblemFormulator,
    generate_products,
)
from portfolio_engine.router.algorithm_selector import Algorithm, create_solver
from portfolio_engine.solvers.solver_base import SolverException

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_SIZES = [10, 50, 200]
DEFAULT_REPETITIONS = 3
DEFAULT_TIME_LIMIT = 30.0
DEFAULT_SEED = 7
OUTPUT_DIR = project_root / "benchmark_results"
CSV_OUTPUT = OUTPUT_DIR / "algorithm_benchmark.csv"
PLOT_OUTPUT = OUTPUT_DIR / "algorithm_benchmark.png"

# Scaled-down tuning so a full sweep finishes in minutes
BENCHMARK_SETTINGS = Settings(
    genetic=GeneticConfig(population_size=40, generations=150, elite_size=4, min_generations=20),
    annealing=AnnealingConfig(max_iterations=3000),
    particle_swarm=ParticleSwarmConfig(swarm_size=30, iterations=200),
    quantum_inspired=QuantumInspiredConfig(population_size=30, generations=100),
)


def run_benchmark(
    sizes: List[int],
    algorithms: List[str],
    repetitions: int = DEFAULT_REPETITIONS,
    time_limit: float = DEFAULT_TIME_LIMIT,
    seed: int = DEFAULT_SEED,
) -> pd.DataFrame:
    """
    Run each algorithm on each problem size.

    Every repetition draws a fresh catalogue from a seeded generator, and all
    algorithms solve that same catalogue.

    Returns:
        pd.DataFrame with one row per (size, repetition, algorithm)
    """
    logger.info("=" * 80)
    logger.info("PORTFOLIO ENGINE - ALGORITHM BENCHMARK")
    logger.info("=" * 80)
    logger.info(f"Sizes: {sizes}")
    logger.info(f"Algorithms: {algorithms}")
    logger.info(f"Repetitions per size: {repetitions}")

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    formulator = ProblemFormulator(FormulationConfig(time_limit_seconds=time_limit))
    master = np.random.default_rng(seed)
    results = []

    with tqdm(total=len(sizes) * repetitions * len(algorithms), desc="Benchmarking") as pbar:
        for size in sizes:
            for rep in range(1, repetitions + 1):
                products = generate_products(master, count=size)
                budget = sum(p.unit_cost * p.max_quantity for p in products) * 0.3
                max_risk = sum(p.risk_score * p.max_quantity for p in products) * 0.4
                request = OptimizationRequest(
                    products=products,
                    constraints=ConstraintsInput(total_budget=budget, max_risk_level=max_risk),
                )
                problem = formulator.formulate(request, problem_id=f"bench_{size}_{rep}")

                for name in algorithms:
                    rng = np.random.default_rng(master.integers(0, 2**32))
                    try:
                        with create_solver(name, BENCHMARK_SETTINGS, rng=rng) as solver:
                            solution = solver.solve(problem)
                    except SolverException as e:
                        logger.error(f"{name} failed on size {size}: {e}")
                        pbar.update(1)
                        continue

                    results.append({
                        "problem_size": size,
                        "repetition": rep,
                        "algorithm": name,
                        "status": solution.status.value,
                        "execution_time_ms": solution.execution_time_ms,
                        "energy_mj": solution.metadata.get("energy_mj", 0.0),
                        "objective_value": solution.objective_value,
                        "constraint_violation": solution.constraint_violation,
                        "solution_quality": solution.performance.solution_quality,
                        "iterations": solution.iterations,
                        "timestamp": datetime.now(),
                    })
                    pbar.update(1)

    df_results = pd.DataFrame(results)
    df_results.to_csv(CSV_OUTPUT, index=False)
    logger.info(f"Results saved to CSV: {CSV_OUTPUT}")
    return df_results


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    """Mean metrics per (size, algorithm) plus the feasible share."""
    if df.empty:
        return df
    df = df.assign(feasible=df["constraint_violation"] == 0)
    return (
        df.groupby(["problem_size", "algorithm"])
        .agg(
            time_ms=("execution_time_ms", "mean"),
            objective=("objective_value", "mean"),
            violation=("constraint_violation", "mean"),
            feasible_share=("feasible", "mean"),
            iterations=("iterations", "mean"),
        )
        .reset_index()
    )


def plot_performance(summary: pd.DataFrame, output: Optional[Path] = None) -> Path:
    """Execution time and objective against problem size, one line per algorithm."""
    output = output or PLOT_OUTPUT
    fig, (ax_time, ax_obj) = plt.subplots(1, 2, figsize=(12, 5))

    for name, group in summary.groupby("algorithm"):
        ax_time.plot(group["problem_size"], group["time_ms"], marker="o", label=name)
        ax_obj.plot(group["problem_size"], group["objective"], marker="o", label=name)

    ax_time.set_xlabel("Items")
    ax_time.set_ylabel("Execution time (ms)")
    ax_time.set_yscale("log")
    ax_obj.set_xlabel("Items")
    ax_obj.set_ylabel("Objective value")
    ax_obj.legend()

    fig.tight_layout()
    fig.savefig(output, dpi=120)
    plt.close(fig)
    logger.info(f"Plot saved to: {output}")
    return output


def main():
    """Parse arguments, run the benchmark and print the summary table."""
    parser = argparse.ArgumentParser(
        description='Benchmark portfolio optimization algorithms',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--sizes', type=int, nargs='+', default=DEFAULT_SIZES, help='Catalogue sizes')
    parser.add_argument('--repetitions', type=int, default=DEFAULT_REPETITIONS, help='Repetitions per size')
    parser.add_argument(
        '--algorithms',
        nargs='+',
        default=[a.value for a in Algorithm],
        choices=[a.value for a in Algorithm],
        help='Algorithms to run'
    )
    parser.add_argument('--time-limit', type=float, default=DEFAULT_TIME_LIMIT, help='Per-solve deadline (s)')
    parser.add_argument('--seed', type=int, default=DEFAULT_SEED, help='Master seed')
    parser.add_argument('--plot', action='store_true', help='Generate performance plots')
    args = parser.parse_args()

    df = run_benchmark(
        sizes=args.sizes,
        algorithms=args.algorithms,
        repetitions=args.repetitions,
        time_limit=args.time_limit,
        seed=args.seed,
    )
    summary = summarize(df)
    print(summary.to_string(index=False))

    if args.plot and not summary.empty:
        plot_performance(summary)

    logger.info("Benchmark workflow complete!")


if __name__ == '__main__':
    main()

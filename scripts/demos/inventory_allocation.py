#!/usr/bin/env python3
"""
Inventory Allocation Demo for the Portfolio Optimization Engine.

Walks one synthetic catalogue through the engine: formulation, algorithm
selection, solving, analysis and caching. Prints the chosen allocation and
the recommended buy/sell actions.

Scenario
========
A reseller holds stock of a few dozen products and has a fixed purchase
budget. Each product has a unit cost, an expected return per unit and a risk
score from an upstream scoring service. The engine decides how many units of
each product to hold.

Usage:
------
    # Run from project root
    python scripts/demos/inventory_allocation.py

    # Bigger catalogue, explicit algorithm, JSON output
    python scripts/demos/inventory_allocation.py --items 60 --algorithm hybrid --json out.json

    # Compare every algorithm on the same catalogue
    python scripts/demos/inventory_allocation.py --compare
"""

import sys
import json
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import numpy as np

from portfolio_engine.api.orchestrator import PortfolioOrchestrator
from portfolio_engine.config import settings
from portfolio_engine.problems.formulator import ConstraintsInput, OptimizationRequest, generate_products
from portfolio_engine.router.algorithm_selector import Algorithm

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_request(items: int, seed: int, budget_share: float, algorithm: Optional[str]) -> OptimizationRequest:
    """Synthetic request whose budget covers ``budget_share`` of the full catalogue."""
    products = generate_products(np.random.default_rng(seed), count=items)
    full_cost = sum(p.unit_cost * p.max_quantity for p in products)
    full_risk = sum(p.risk_score * p.max_quantity for p in products)
    return OptimizationRequest(
        products=products,
        constraints=ConstraintsInput(
            total_budget=round(full_cost * budget_share, 2),
            max_risk_level=round(full_risk * 0.5, 2),
            min_diversification=0.3,
        ),
        algorithm=algorithm,
        time_limit_seconds=60.0,
    )


def run_demo(items: int = 30, seed: int = 42, algorithm: Optional[str] = None) -> Dict[str, Any]:
    """
    Run one request end to end.

    Returns:
        The solution as a camelCase dictionary
    """
    logger.info("=" * 80)
    logger.info("INVENTORY ALLOCATION DEMO")
    logger.info("=" * 80)

    logger.info(f"[Step 1/3] Generating catalogue of {items} products (seed={seed})...")
    request = build_request(items, seed, budget_share=0.25, algorithm=algorithm)
    logger.info(f"  Budget: {request.constraints.total_budget:,.2f}")
    logger.info(f"  Max risk: {request.constraints.max_risk_level:,.2f}")

    logger.info("[Step 2/3] Optimizing...")
    orchestrator = PortfolioOrchestrator()
    solution = orchestrator.optimize_portfolio(request, seed=seed)

    logger.info(f"  Algorithm: {solution.algorithm_name}")
    logger.info(f"  Status: {solution.status.value}")
    logger.info(f"  Objective: {solution.objective_value:,.2f}")
    logger.info(f"  Violation: {solution.constraint_violation:,.2f}")
    logger.info(f"  Time: {solution.execution_time_ms:.0f} ms")

    logger.info("[Step 3/3] Recommended actions:")
    for action in solution.analysis.recommended_actions:
        logger.info(f"  {action.priority.value:>6}  {action.type.value:<4} {action.quantity:>5g} x {action.target} "
                    f"(profit {action.expected_impact.profit_change:+,.2f})")
    logger.info(f"  Diversification: {solution.analysis.diversification_score:.1%}")

    return solution.model_dump(mode="json", by_alias=True)


def compare_algorithms(items: int = 30, seed: int = 42) -> List[Dict[str, Any]]:
    """Solve the same catalogue with every algorithm."""
    orchestrator = PortfolioOrchestrator()
    rows = []
    for algorithm in Algorithm:
        request = build_request(items, seed, budget_share=0.25, algorithm=algorithm.value)
        solution = orchestrator.optimize_portfolio(request, seed=seed)
        rows.append({
            "algorithm": algorithm.value,
            "status": solution.status.value,
            "objective": solution.objective_value,
            "violation": solution.constraint_violation,
            "time_ms": solution.execution_time_ms,
        })
        logger.info(f"{algorithm.value:<20} {solution.status.value:<12} "
                    f"objective={solution.objective_value:>12,.2f} time={solution.execution_time_ms:>8.0f}ms")
    return rows


def main():
    parser = argparse.ArgumentParser(description='Inventory allocation demo')
    parser.add_argument('--items', type=int, default=30, help='Number of products')
    parser.add_argument('--seed', type=int, default=42, help='Random seed')
    parser.add_argument('--algorithm', choices=[a.value for a in Algorithm], help='Force an algorithm')
    parser.add_argument('--compare', action='store_true', help='Run every algorithm on the same catalogue')
    parser.add_argument('--json', type=Path, help='Write the result to this JSON file')
    args = parser.parse_args()

    if args.compare:
        result = compare_algorithms(args.items, args.seed)
    else:
        result = run_demo(args.items, args.seed, args.algorithm)

    if args.json:
        args.json.write_text(json.dumps(result, indent=2, default=str))
        logger.info(f"Result written to {args.json}")


if __name__ == '__main__':
    main()

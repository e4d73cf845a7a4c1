"""
Optimization Orchestrator for the Portfolio Optimization Engine.

This module coordinates one allocation request from submission to result,
wiring together the formulator, the algorithm selector, the solvers, the
hierarchical decomposer, the solution analyzer and the result cache.

Workflow Stages:
---------------
A. **Cache lookup**: a repeated request (same payload and seed) is answered
   from the cache without solving again
B. **Formulate**: validate the request and build the Problem
C. **Route + solve**: problems above the large-scale threshold go to the
   hierarchical decomposer, everything else to the solver chosen by the
   AlgorithmSelector (or named by the request)
D. **Analyze**: diversification, recommended actions, risk metrics
E. **Cache write**: best-effort, failures are logged and ignored

Errors raised by any stage are logged and re-raised unchanged; the run is
recorded as ``failed`` in the status registry.

Example Usage:
-------------
```python
from portfolio_engine.api.orchestrator import PortfolioOrchestrator

orchestrator = PortfolioOrchestrator()

solution = orchestrator.optimize_portfolio(
    {
        "products": [
            {"id": "A", "currentQuantity": 0, "maxQuantity": 5, "unitCost": 100,
             "expectedReturn": 20, "riskScore": 0.2},
            {"id": "B", "currentQuantity": 1, "maxQuantity": 5, "unitCost": 120,
             "expectedReturn": 30, "riskScore": 0.3},
        ],
        "constraints": {"totalBudget": 300, "maxRiskLevel": 10},
        "objectives": {"primary": "maximize_profit", "riskTolerance": 0.6},
    },
    seed=42,
)

print(solution.algorithm_name, solution.status.value, solution.objective_value)
print(orchestrator.get_optimization_status(solution.problem_id))
```
"""

from collections import OrderedDict
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union
import logging
import time

import numpy as np
from pydantic import ValidationError

from portfolio_engine.analyzer.solution_analyzer import SolutionAnalyzer
from portfolio_engine.cache.solution_cache import CacheStore, SolutionCache, request_fingerprint
from portfolio_engine.config import Settings, settings as default_settings
from portfolio_engine.decomposition.hierarchical_decomposer import HierarchicalDecomposer
from portfolio_engine.problems.formulator import (
    ConstraintsInput,
    ObjectivesInput,
    OptimizationRequest,
    ProblemFormulator,
    ProblemValidationError,
    ProductInput,
)
from portfolio_engine.problems.models import ObjectiveKind, Problem, Solution
from portfolio_engine.router.algorithm_selector import Algorithm, AlgorithmSelector


# Configure module logger
logger = logging.getLogger(__name__)


ALGORITHM_PERFORMANCE = [
    {"name": "Genetic Algorithm", "algorithm": "genetic", "accuracy": 0.82, "speed": 0.75, "scalability": 0.70},
    {"name": "Simulated Annealing", "algorithm": "simulated_annealing", "accuracy": 0.78, "speed": 0.85, "scalability": 0.65},
    {"name": "Particle Swarm", "algorithm": "particle_swarm", "accuracy": 0.76, "speed": 0.80, "scalability": 0.75},
    {"name": "Quantum-Inspired", "algorithm": "quantum_inspired", "accuracy": 0.91, "speed": 0.65, "scalability": 0.95},
    {"name": "Hybrid", "algorithm": "hybrid", "accuracy": 0.94, "speed": 0.70, "scalability": 0.85},
]


class PortfolioOrchestrator:
    """
    Coordinate allocation requests end to end.

    Attributes:
        settings: Engine settings (algorithm configs, thresholds, cache)
        formulator: Request validation and Problem construction
        selector: Algorithm selection and solver factory
        decomposer: Large-scale solve path
        analyzer: Solution post-processing
        cache: Best-effort result cache

    Thread Safety:
        Runs are independent, but the statistics counters and the status
        registry are not synchronized. Use one orchestrator per thread.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache_store: Optional[CacheStore] = None,
        analyzer: Optional[SolutionAnalyzer] = None,
    ):
        """
        Args:
            settings: Engine settings; defaults to the environment-loaded settings
            cache_store: Cache backend; defaults to the store selected by ``settings.cache``
            analyzer: Solution analyzer; defaults to ``SolutionAnalyzer()``
        """
        logger.info("Initializing PortfolioOrchestrator")

        self.settings = settings or default_settings
        self.formulator = ProblemFormulator(self.settings.formulation)
        self.selector = AlgorithmSelector(self.settings)
        self.decomposer = HierarchicalDecomposer(self.settings.decomposition, self.settings.quantum_inspired)
        self.analyzer = analyzer or SolutionAnalyzer()
        self.cache = SolutionCache(cache_store, self.settings.cache)

        # Status registry, bounded by settings.max_tracked_runs
        self._runs: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

        # Execution statistics
        self._runs_completed = 0
        self._runs_failed = 0
        self._cache_hits = 0
        self._total_execution_time_ms = 0.0

        logger.info("PortfolioOrchestrator initialization complete")

    # =========================================================================
    # PUBLIC ENTRY POINTS
    # =========================================================================

    def optimize_portfolio(
        self,
        request: Union[OptimizationRequest, Mapping[str, Any]],
        seed: Optional[int] = None,
        progress_callback: Optional[Callable[[str, float], None]] = None,
    ) -> Solution:
        """
        Solve one allocation request.

        Args:
            request: ``OptimizationRequest`` or its camelCase JSON mapping
            seed: Seed for the run RNG; identical seeds give identical
                solutions apart from timing fields
            progress_callback: Optional callback(stage: str, progress: float [0-1])

        Returns:
            Analyzed Solution

        Raises:
            ProblemValidationError: If the request is malformed
            UnknownAlgorithmError: If ``request.algorithm`` is not registered
            SolverException: If a solver fails
        """
        request = self._coerce_request(request)
        start_time = time.perf_counter()
        rng = np.random.default_rng(seed)
        # Request keys exist only for seeded runs
        fingerprint = None
        if seed is not None:
            fingerprint = request_fingerprint(f"{request.model_dump_json(by_alias=True)}|seed={seed}")

        # ================================================================
        # STAGE A: CACHE LOOKUP
        # ================================================================
        if progress_callback:
            progress_callback("cache", 0.05)

        cached = self.cache.get(self.cache.request_key(fingerprint)) if fingerprint else None
        if cached is not None:
            self._cache_hits += 1
            self._track(cached.problem_id, self._completed_entry(cached, cached=True))
            logger.info(f"[{cached.problem_id}] Served from cache")
            return cached

        problem_id = None
        try:
            # ================================================================
            # STAGE B: FORMULATE
            # ================================================================
            if progress_callback:
                progress_callback("formulate", 0.1)

            problem = self.formulator.formulate(request, rng=rng)
            problem_id = problem.id
            self._track(problem_id, {"status": "running", "progress": 10, "stage": "formulate"})

            logger.info(f"[{problem_id}] Stage B: Formulated {problem.variable_count} variables, "
                        f"{problem.constraint_count} constraints")

            # ================================================================
            # STAGE C: ROUTE + SOLVE
            # ================================================================
            if progress_callback:
                progress_callback("solve", 0.2)
            self._runs[problem_id].update(progress=20, stage="solve")

            logger.info(f"[{problem_id}] Stage C: Solving...")
            solution = self._solve(problem, request.algorithm, rng)

            logger.info(f"[{problem_id}] {solution.algorithm_name} returned {solution.status.value} "
                        f"(objective={solution.objective_value:.2f}, "
                        f"violation={solution.constraint_violation:.2f})")

            # ================================================================
            # STAGE D: ANALYZE
            # ================================================================
            if progress_callback:
                progress_callback("analyze", 0.8)
            self._runs[problem_id].update(progress=80, stage="analyze")

            logger.info(f"[{problem_id}] Stage D: Analyzing solution...")
            self.analyzer.analyze(solution, problem, request.constraints.min_diversification)
            solution.metadata.update(
                risk_tolerance=request.objectives.risk_tolerance,
                secondary_objectives=list(request.objectives.secondary),
            )

            # ================================================================
            # STAGE E: CACHE WRITE
            # ================================================================
            if progress_callback:
                progress_callback("cache", 0.9)

            logger.info(f"[{problem_id}] Stage E: Caching result...")
            self.cache.put(solution, fingerprint)

            elapsed_ms = (time.perf_counter() - start_time) * 1000.0
            self._runs_completed += 1
            self._total_execution_time_ms += elapsed_ms
            self._track(problem_id, self._completed_entry(solution))

            if progress_callback:
                progress_callback("complete", 1.0)

            logger.info(f"[{problem_id}] Optimization complete (total: {elapsed_ms:.2f} ms)")
            return solution

        except Exception as e:
            self._runs_failed += 1
            if problem_id is not None:
                self._track(problem_id, {"status": "failed", "progress": 100, "error": str(e)})
            logger.error(f"[{problem_id or 'unformulated'}] Optimization failed: {e}")
            raise

    def optimize_large_portfolio(
        self,
        products: Sequence[Union[ProductInput, Mapping[str, Any]]],
        constraints: Union[ConstraintsInput, Mapping[str, Any]],
        seed: Optional[int] = None,
    ) -> Solution:
        """
        Solve a catalogue-sized request with default objectives.

        Above ``large_scale_threshold`` items the hierarchical decomposer is
        used; below it the quantum-inspired solver runs directly. Objectives
        are profit first with risk minimization as secondary and a risk
        tolerance of 0.6.

        Raises:
            ProblemValidationError: If more than ``max_items`` products are given
        """
        cfg = self.settings.decomposition
        if len(products) > cfg.max_items:
            raise ProblemValidationError(
                f"Large-scale requests are limited to {cfg.max_items} products, got {len(products)}"
            )

        algorithm = None if len(products) > cfg.large_scale_threshold else Algorithm.QUANTUM_INSPIRED.value
        logger.info(f"Large-scale request with {len(products)} products "
                    f"({'decomposed' if algorithm is None else algorithm})")

        request = self._coerce_request(
            {
                "products": list(products),
                "constraints": constraints,
                "objectives": ObjectivesInput(
                    primary=ObjectiveKind.MAXIMIZE_PROFIT,
                    secondary=["minimize_risk"],
                    risk_tolerance=0.6,
                ),
                "algorithm": algorithm,
            }
        )
        return self.optimize_portfolio(request, seed=seed)

    def get_optimization_status(self, problem_id: str) -> Dict[str, Any]:
        """
        Status of a run by problem id.

        Returns:
            ``{'status': 'running' | 'completed' | 'failed' | 'unknown', 'progress': 0-100, ...}``
        """
        entry = self._runs.get(problem_id)
        if entry is None:
            return {"status": "unknown", "progress": 0}
        return dict(entry)

    def get_algorithm_performance(self) -> Dict[str, List[Dict[str, Any]]]:
        """Relative accuracy, speed and scalability of the registered algorithms."""
        return {"algorithms": [dict(row) for row in ALGORITHM_PERFORMANCE]}

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _coerce_request(self, request: Union[OptimizationRequest, Mapping[str, Any]]) -> OptimizationRequest:
        if isinstance(request, OptimizationRequest):
            return request
        try:
            return OptimizationRequest.model_validate(request)
        except ValidationError as e:
            raise ProblemValidationError(f"Malformed request: {e}") from e

    def _solve(self, problem: Problem, override: Optional[str], rng: np.random.Generator) -> Solution:
        if override is None and self.decomposer.should_decompose(problem):
            logger.info(f"[{problem.id}] {problem.variable_count} variables exceed "
                        f"{self.settings.decomposition.large_scale_threshold}; decomposing")
            return self.decomposer.solve(problem, rng=rng)

        decision = self.selector.select(problem, override)
        logger.debug(f"[{problem.id}] {decision.reasoning}")

        with self.selector.create_solver(decision.algorithm.value, rng=rng) as solver:
            solution = solver.solve(problem)
        solution.metadata["selection_reasoning"] = decision.reasoning
        return solution

    def _track(self, problem_id: str, entry: Dict[str, Any]) -> None:
        self._runs[problem_id] = entry
        self._runs.move_to_end(problem_id)
        while len(self._runs) > self.settings.max_tracked_runs:
            self._runs.popitem(last=False)

    @staticmethod
    def _completed_entry(solution: Solution, cached: bool = False) -> Dict[str, Any]:
        return {
            "status": "completed",
            "progress": 100,
            "solution_id": solution.id,
            "solution_status": solution.status.value,
            "algorithm": solution.algorithm_name,
            "cached": cached,
        }

    # =========================================================================
    # PUBLIC UTILITY METHODS
    # =========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get orchestrator execution statistics.

        Returns:
            Statistics dictionary:
            {
                'runs_completed': int,
                'runs_failed': int,
                'cache_hits': int,
                'success_rate': float,
                'average_execution_time_ms': float,
                'total_execution_time_ms': float
            }
        """
        total = self._runs_completed + self._runs_failed
        success_rate = self._runs_completed / total if total > 0 else 0.0
        avg_time = self._total_execution_time_ms / self._runs_completed if self._runs_completed > 0 else 0.0

        return {
            "runs_completed": self._runs_completed,
            "runs_failed": self._runs_failed,
            "cache_hits": self._cache_hits,
            "success_rate": success_rate,
            "average_execution_time_ms": avg_time,
            "total_execution_time_ms": self._total_execution_time_ms,
        }

    def reset_statistics(self):
        """Reset execution statistics counters."""
        self._runs_completed = 0
        self._runs_failed = 0
        self._cache_hits = 0
        self._total_execution_time_ms = 0.0
        logger.info("Statistics reset")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logger.info("PortfolioOrchestrator context exiting")
        return False

    def __repr__(self) -> str:
        return (f"PortfolioOrchestrator(cache={'enabled' if self.cache.enabled else 'disabled'}, "
                f"runs_completed={self._runs_completed})")

"""
Hierarchical Decomposer for very large allocation problems.

Problems above ``large_scale_threshold`` variables are too large to search
directly. The decomposer splits them, solves the pieces concurrently and
reconciles the merged result against the global constraints.

Stages:
-------
1. **Partition**: chunk the variables in order into clusters of
   ``ceil(n / cluster_count)`` variables.
2. **Apportion**: give each cluster a share of every ``<=`` bound
   (budget, risk, category limits) proportional to its expected value
   ``Σ max(expected_return, 0) · upper``. Clusters share equally when no
   cluster has positive value.
3. **Solve**: run the quantum-inspired solver on each cluster in a thread
   pool. Every cluster gets an independent random stream spawned from the
   run's generator and all clusters share the run deadline.
4. **Merge + reconcile**: combine the cluster assignments, then trim the
   least efficient allocations (lowest return per unit of the constrained
   quantity) until every global ``<=`` constraint holds.
5. **Evaluate** the merged assignment on the full problem. Status is
   ``feasible`` without violation, ``infeasible`` otherwise, ``timeout`` when
   any cluster ran out of time.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import logging
import math
import time
import uuid

import numpy as np

from portfolio_engine.config import DecompositionConfig, QuantumInspiredConfig
from portfolio_engine.problems.evaluator import ProblemArrays, objective, violation
from portfolio_engine.problems.models import (
    Comparator,
    PerformanceMetrics,
    Problem,
    Solution,
    SolutionStatus,
    Variable,
)
from portfolio_engine.solvers.quantum_inspired_solver import QuantumInspiredSolver
from portfolio_engine.solvers.solver_base import QUALITY_SCALE, Deadline


logger = logging.getLogger(__name__)

_TRIM_PASSES = 3


@dataclass
class ClusterResult:
    """Solution of one cluster plus the share of the global bounds it received."""
    index: int
    share: float
    solution: Solution


class HierarchicalDecomposer:
    """
    Divide-and-conquer solver for problems beyond the direct-solve threshold.

    Attributes:
        config: Thresholds, cluster count and pool size
        quantum_config: Configuration of the per-cluster solver
    """

    algorithm_name = "quantum_inspired"

    def __init__(
        self,
        config: Optional[DecompositionConfig] = None,
        quantum_config: Optional[QuantumInspiredConfig] = None,
    ):
        self.config = config or DecompositionConfig()
        self.quantum_config = quantum_config or QuantumInspiredConfig()

    def should_decompose(self, problem: Problem) -> bool:
        return problem.variable_count > self.config.large_scale_threshold

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def partition(self, problem: Problem) -> List[Tuple[Variable, ...]]:
        """Split variables into ordered chunks of ``ceil(n / cluster_count)``."""
        variables = problem.variables
        size = max(1, math.ceil(len(variables) / self.config.cluster_count))
        return [variables[i:i + size] for i in range(0, len(variables), size)]

    @staticmethod
    def cluster_shares(clusters: List[Tuple[Variable, ...]]) -> List[float]:
        """Fraction of the global bounds assigned to each cluster."""
        values = [
            sum(max(v.expected_return, 0.0) * v.domain.upper for v in cluster)
            for cluster in clusters
        ]
        total = sum(values)
        if total <= 0:
            return [1.0 / len(clusters)] * len(clusters)
        return [value / total for value in values]

    def build_subproblems(self, problem: Problem) -> List[Tuple[Problem, float]]:
        """Cluster sub-problems with apportioned ``<=`` bounds."""
        clusters = self.partition(problem)
        shares = self.cluster_shares(clusters)
        subproblems = []
        for index, (cluster, share) in enumerate(zip(clusters, shares)):
            constraints = tuple(
                c.model_copy(update={"bound": c.bound * share}) if c.comparator == Comparator.LESS_EQUAL else c
                for c in problem.constraints
            )
            sub = problem.model_copy(
                update={
                    "id": f"{problem.id}_cluster_{index}",
                    "variables": cluster,
                    "constraints": constraints,
                }
            )
            subproblems.append((sub, share))
        return subproblems

    def reconcile(self, problem: Problem, assignment: Dict[str, float]) -> Tuple[Dict[str, float], Dict[str, float]]:
        """
        Trim allocations until every global ``<=`` constraint holds.

        Returns:
            (reconciled assignment, units trimmed per constraint id)
        """
        arrays = ProblemArrays.from_problem(problem)
        x = arrays.to_vector(assignment)
        trimmed: Dict[str, float] = {}

        # Trimming only lowers values, so earlier rows stay satisfied
        for row, constraint_id, comparator, bound in zip(
            arrays.coefficients, arrays.constraint_ids, arrays.comparators, arrays.bounds
        ):
            if comparator != 0 or not np.all(row >= 0):
                continue
            before = x.sum()
            x = self._trim(arrays, x, row, float(bound))
            trimmed[constraint_id] = float(before - x.sum())

        return arrays.to_assignment(arrays.repair(x)), trimmed

    @staticmethod
    def _trim(arrays: ProblemArrays, x: np.ndarray, weights: np.ndarray, bound: float) -> np.ndarray:
        x = x.copy()
        efficiency = np.divide(arrays.ret, weights, out=np.full_like(weights, np.inf), where=weights > 0)
        order = np.argsort(efficiency, kind="stable")

        # A second pass absorbs float drift in the running excess
        for _ in range(_TRIM_PASSES):
            excess = float(x @ weights) - bound
            if excess <= 0:
                break
            for i in order:
                if excess <= 0:
                    break
                if weights[i] <= 0 or x[i] <= arrays.lower[i]:
                    continue
                step = arrays.unit[i]
                needed = math.ceil(excess / (weights[i] * step)) * step
                cut = min(x[i] - arrays.lower[i], needed)
                x[i] -= cut
                excess -= cut * weights[i]
        return x

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def solve(self, problem: Problem, rng: Optional[np.random.Generator] = None) -> Solution:
        """
        Solve a large problem by decomposition.

        Args:
            problem: Full problem
            rng: Run random source; cluster streams are spawned from it
        """
        rng = rng if rng is not None else np.random.default_rng()
        deadline = Deadline(problem.time_limit_seconds)
        start_time = time.perf_counter()

        subproblems = self.build_subproblems(problem)
        streams = rng.spawn(len(subproblems))

        logger.info(f"[{problem.id}] Decomposing {problem.variable_count} variables "
                    f"into {len(subproblems)} clusters")

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = [
                executor.submit(self._solve_cluster, sub, stream, deadline)
                for (sub, _), stream in zip(subproblems, streams)
            ]
            # Collected in submission order so the merge is deterministic
            results = [
                ClusterResult(index=i, share=share, solution=future.result())
                for i, ((_, share), future) in enumerate(zip(subproblems, futures))
            ]

        merged: Dict[str, float] = {}
        for result in results:
            merged.update(result.solution.assignment)

        assignment, trimmed = self.reconcile(problem, merged)
        raw = objective(problem, assignment)
        penalty = violation(problem, assignment)
        value = raw - penalty

        if any(r.solution.status == SolutionStatus.TIMEOUT for r in results):
            status = SolutionStatus.TIMEOUT
        elif penalty == 0:
            status = SolutionStatus.FEASIBLE
        else:
            status = SolutionStatus.INFEASIBLE

        elapsed_ms = (time.perf_counter() - start_time) * 1000.0
        logger.info(f"[{problem.id}] Decomposition finished: status={status.value}, "
                    f"objective={value:.2f}, time={elapsed_ms:.0f}ms")

        return Solution(
            id=str(uuid.UUID(bytes=rng.bytes(16), version=4)),
            problem_id=problem.id,
            algorithm_name=self.algorithm_name,
            status=status,
            objective_value=value,
            constraint_violation=penalty,
            execution_time_ms=elapsed_ms,
            iterations=sum(r.solution.iterations for r in results),
            assignment=assignment,
            performance=PerformanceMetrics(
                convergence_rate=QuantumInspiredSolver.convergence_rate,
                solution_quality=float(np.clip(value / QUALITY_SCALE, 0.0, 1.0)) if math.isfinite(value) else 0.0,
                robustness=QuantumInspiredSolver.robustness,
                computational_efficiency=0.9,
            ),
            metadata=self._metadata(results, trimmed),
        )

    def _solve_cluster(self, problem: Problem, rng: np.random.Generator, deadline: Deadline) -> Solution:
        solver = QuantumInspiredSolver(self.quantum_config, rng=rng)
        return solver.solve(problem, deadline=deadline)

    @staticmethod
    def _metadata(results: List[ClusterResult], trimmed: Dict[str, float]) -> Dict[str, Any]:
        return {
            "decomposed": True,
            "cluster_count": len(results),
            "clusters": [
                {
                    "index": r.index,
                    "size": len(r.solution.assignment),
                    "share": r.share,
                    "objective_value": r.solution.objective_value,
                    "status": r.solution.status.value,
                }
                for r in results
            ],
            "reconciliation_trimmed_units": trimmed,
        }


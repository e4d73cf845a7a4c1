"""
Abstract base class for all allocation solvers.

This module defines the standard interface that every metaheuristic (genetic,
simulated annealing, particle swarm, quantum-inspired and hybrid) implements.
It ensures consistent behavior, fair comparison, and easy integration with
the algorithm selector.

Why a Template Method?
----------------------
Each solver only differs in its search loop. Everything around the loop is
shared and lives here:
- deadline tracking (``Problem.time_limit_seconds``)
- timing and CPU energy estimation
- repairing the incumbent onto the variable domains
- recomputing objective and violation so that
  ``objective_value == objective(assignment) - constraint_violation`` holds
- building the standardized ``Solution``

Subclasses implement ``_search`` and return a ``SearchOutcome``.

Randomness
----------
Every solver receives a ``numpy.random.Generator``. No solver touches global
random state, so concurrent runs never interfere and a fixed seed reproduces
a run exactly (apart from ``execution_time_ms``).

Example Usage
-------------
```python
import numpy as np
from portfolio_engine.config import GeneticConfig
from portfolio_engine.solvers.genetic_solver import GeneticSolver

solver = GeneticSolver(GeneticConfig(population_size=40, elite_size=4), rng=np.random.default_rng(7))
solution = solver.solve(problem)
print(solution.status, solution.objective_value)
```
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional
import logging
import os
import time
import uuid

import numpy as np
import psutil

from portfolio_engine.problems.evaluator import ProblemArrays, objective, violation
from portfolio_engine.problems.models import PerformanceMetrics, Problem, Solution, SolutionStatus


# Configure module logger
logger = logging.getLogger(__name__)

# Objective value at which solution_quality saturates at 1.0
QUALITY_SCALE = 1e6


# ============================================================================
# Custom Exceptions
# ============================================================================

class SolverException(Exception):
    """Base exception for all solver-related errors."""
    pass


class SolverConfigurationError(SolverException):
    """Raised when solver is misconfigured or missing required parameters."""
    pass


class UnknownAlgorithmError(SolverConfigurationError):
    """Raised when an algorithm name does not match any registered solver."""

    def __init__(self, name: str):
        super().__init__(f"Unknown algorithm: {name}")
        self.name = name


class SolverConvergenceError(SolverException):
    """Raised when a search loop fails unexpectedly."""
    pass


# ============================================================================
# Deadline
# ============================================================================

class Deadline:
    """
    Wall-clock budget for one run.

    Checked at the top of every solver iteration; once expired the solver
    stops and reports ``timeout`` with its incumbent.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.perf_counter):
        self._clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())


@dataclass
class SearchOutcome:
    """What a search loop hands back to ``SolverBase.solve``."""

    best: np.ndarray
    status: SolutionStatus
    iterations: int
    efficiency: float
    metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Abstract Solver Base Class
# ============================================================================

class SolverBase(ABC):
    """
    Abstract base class for all allocation solvers.

    Attributes:
        algorithm_name (str): Registry name, e.g. ``'genetic'``
        convergence_rate (float): Reported convergence heuristic
        robustness (float): Reported robustness heuristic
        config: Immutable algorithm configuration
        rng (np.random.Generator): Injected random source

    Thread Safety:
        Solvers are NOT thread-safe. Create one instance (and one RNG) per
        concurrent run.
    """

    algorithm_name: str = ""
    convergence_rate: float = 0.0
    robustness: float = 0.0

    def __init__(self, config: Any, rng: Optional[np.random.Generator] = None):
        """
        Initialize base solver.

        Args:
            config: Frozen configuration object for this algorithm
            rng: Random source; a fresh unseeded generator when omitted

        Raises:
            SolverConfigurationError: If config is missing
        """
        if config is None:
            raise SolverConfigurationError(f"{self.__class__.__name__} requires a configuration object")

        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng()

        # Energy monitoring
        self._energy_start: Optional[float] = None
        self._process: psutil.Process = psutil.Process(os.getpid())

        logger.debug(f"Initialized solver: {self.algorithm_name}")

    # ========================================================================
    # Abstract Methods - Must be implemented by subclasses
    # ========================================================================

    @abstractmethod
    def _search(
        self,
        arrays: ProblemArrays,
        deadline: Deadline,
        initial: Optional[np.ndarray],
    ) -> SearchOutcome:
        """
        Run the search loop.

        Implementations must check ``deadline.expired()`` at the top of each
        iteration and return the incumbent with status ``timeout`` on expiry.
        """

    @abstractmethod
    def get_solver_info(self) -> Dict[str, Any]:
        """Return information about solver capabilities and configuration."""

    # ========================================================================
    # Template Method
    # ========================================================================

    def solve(
        self,
        problem: Problem,
        initial: Optional[Mapping[str, float]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Solution:
        """
        Solve the problem and return a standardized Solution.

        Args:
            problem: Problem to solve
            initial: Optional starting assignment (used by solvers that
                support warm starts, ignored by the others)
            deadline: Shared deadline; defaults to ``problem.time_limit_seconds``
                from now

        Returns:
            Solution whose assignment lies inside every variable domain

        Raises:
            SolverConvergenceError: If the search loop fails unexpectedly
        """
        arrays = ProblemArrays.from_problem(problem)
        deadline = deadline or Deadline(problem.time_limit_seconds)
        start_vector = arrays.repair(arrays.to_vector(initial)) if initial is not None else None

        logger.debug(f"[{problem.id}] {self.algorithm_name}: {arrays.size} variables, "
                     f"{problem.constraint_count} constraints")

        start_time = time.perf_counter()
        self.measure_energy_start()

        try:
            outcome = self._search(arrays, deadline, start_vector)
        except SolverException:
            self.measure_energy_end()
            raise
        except Exception as e:
            self.measure_energy_end()
            logger.error(f"{self.algorithm_name} failed with exception: {e}")
            raise SolverConvergenceError(f"{self.algorithm_name} failed: {e}") from e

        elapsed_ms = (time.perf_counter() - start_time) * 1000.0
        energy_mj = self.measure_energy_end()

        solution = self._build_solution(problem, arrays, outcome, elapsed_ms, energy_mj)

        logger.debug(f"[{problem.id}] {self.algorithm_name} finished: status={solution.status.value}, "
                     f"objective={solution.objective_value:.4f}, iterations={solution.iterations}, "
                     f"time={elapsed_ms:.1f}ms")
        return solution

    # ========================================================================
    # Concrete Methods - Provided for all solvers
    # ========================================================================

    def new_id(self) -> str:
        """Solution id drawn from the run RNG so seeded runs are reproducible."""
        return str(uuid.UUID(bytes=self.rng.bytes(16), version=4))

    def _build_solution(
        self,
        problem: Problem,
        arrays: ProblemArrays,
        outcome: SearchOutcome,
        elapsed_ms: float,
        energy_mj: float,
    ) -> Solution:
        best = arrays.repair(outcome.best)
        assignment = arrays.to_assignment(best)
        raw = objective(problem, assignment)
        penalty = violation(problem, assignment)
        value = raw - penalty

        quality = float(np.clip(value / QUALITY_SCALE, 0.0, 1.0)) if np.isfinite(value) else 0.0

        return Solution(
            id=self.new_id(),
            problem_id=problem.id,
            algorithm_name=self.algorithm_name,
            status=outcome.status,
            objective_value=value,
            constraint_violation=penalty,
            execution_time_ms=elapsed_ms,
            iterations=int(outcome.iterations),
            assignment=assignment,
            performance=PerformanceMetrics(
                convergence_rate=self.convergence_rate,
                solution_quality=quality,
                robustness=self.robustness,
                computational_efficiency=float(np.clip(outcome.efficiency, 0.0, 1.0)),
            ),
            metadata={
                "energy_mj": energy_mj,
                "raw_objective": raw,
                **outcome.metadata,
            },
        )

    def measure_energy_start(self) -> None:
        """
        Start measuring energy consumption.

        Energy (J) ≈ Power (W) × CPU time (s), with power estimated from a
        nominal TDP. This is an approximation meant for comparing solvers,
        not an absolute measurement.
        """
        try:
            cpu_times = self._process.cpu_times()
            self._energy_start = cpu_times.user + cpu_times.system
        except psutil.Error as e:
            logger.warning(f"Failed to start energy measurement: {e}")
            self._energy_start = None

    def measure_energy_end(self) -> float:
        """
        End measuring energy consumption and return estimate in millijoules.

        Default Assumptions:
        - TDP: 65W (typical modern CPU)
        - Utilization factor: 0.6
        - Efficiency: 0.8

        Returns 0.0 if measurement failed or wasn't started.
        """
        if self._energy_start is None:
            return 0.0

        try:
            cpu_times = self._process.cpu_times()
            cpu_time_seconds = (cpu_times.user + cpu_times.system) - self._energy_start
        except psutil.Error as e:
            logger.warning(f"Failed to measure energy: {e}")
            self._energy_start = None
            return 0.0

        tdp_watts = 65.0
        utilization_factor = 0.6
        efficiency = 0.8
        average_power = tdp_watts * utilization_factor * efficiency

        self._energy_start = None
        return max(0.0, average_power * cpu_time_seconds * 1000.0)

    # ========================================================================
    # Context Manager Support
    # ========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"Exception in solver context: {exc_type.__name__}: {exc_val}")
        # Propagate exceptions
        return False

    # ========================================================================
    # String Representations
    # ========================================================================

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(algorithm_name='{self.algorithm_name}')"

    def __str__(self) -> str:
        return f"Solver: {self.algorithm_name}"

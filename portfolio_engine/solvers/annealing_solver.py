"""
Simulated annealing solver.

Algorithm Description:
----------------------
Simulated annealing is a probabilistic optimization technique inspired by
metallurgical annealing. It allows occasional "downhill" moves to escape
local optima, controlled by a temperature parameter that decreases over time.

Procedure:
1. Start with one random assignment inside the variable domains
   (or a supplied warm-start assignment)
2. Repeat until the temperature reaches the floor or ``max_iterations``:
   a. Perturb one random variable by a uniform delta inside a window of
      ``neighbor_fraction`` × its domain span, then repair onto the domain
   b. Δ = fitness(candidate) - fitness(current)
   c. If Δ >= 0: accept
   d. If Δ < 0: accept with probability exp(Δ/T)
   e. Cool: T ← T × cooling_rate
3. Return the best assignment ever seen (tracked apart from the current one)

Status is ``optimal`` when the schedule cooled to the floor and ``timeout``
otherwise (iteration cap or deadline).

With the default schedule (T0=1000, rate=0.95, floor=0.01) the floor is
reached after about 225 iterations, well before the iteration cap.
"""

from typing import Any, Dict, Optional
import logging
import math

import numpy as np

from portfolio_engine.config import AnnealingConfig
from portfolio_engine.problems.evaluator import ProblemArrays
from portfolio_engine.problems.models import SolutionStatus
from portfolio_engine.solvers.solver_base import Deadline, SearchOutcome, SolverBase


# Configure module logger
logger = logging.getLogger(__name__)


class SimulatedAnnealingSolver(SolverBase):
    """Metropolis annealing over a single incumbent assignment."""

    algorithm_name = "simulated_annealing"
    convergence_rate = 0.7
    robustness = 0.9

    def __init__(self, config: Optional[AnnealingConfig] = None, rng: Optional[np.random.Generator] = None):
        super().__init__(config or AnnealingConfig(), rng)

    def _search(self, arrays: ProblemArrays, deadline: Deadline, initial: Optional[np.ndarray]) -> SearchOutcome:
        cfg: AnnealingConfig = self.config
        rng = self.rng

        current = initial.copy() if initial is not None else arrays.random_population(rng, 1)[0]
        current_fitness = float(arrays.fitness_batch(current)[0])
        best, best_fitness = current.copy(), current_fitness

        temperature = cfg.initial_temperature
        iterations = 0
        accepted = 0
        timed_out = False

        while iterations < cfg.max_iterations and temperature > cfg.min_temperature:
            if deadline.expired():
                timed_out = True
                break

            candidate = self._neighbor(arrays, current)
            candidate_fitness = float(arrays.fitness_batch(candidate)[0])

            if self._accept(current_fitness, candidate_fitness, temperature):
                current, current_fitness = candidate, candidate_fitness
                accepted += 1
                if current_fitness > best_fitness:
                    best, best_fitness = current.copy(), current_fitness

            temperature *= cfg.cooling_rate
            iterations += 1

        cooled = temperature <= cfg.min_temperature
        status = SolutionStatus.OPTIMAL if cooled and not timed_out else SolutionStatus.TIMEOUT

        logger.debug(f"Annealing stopped after {iterations} iterations at T={temperature:.4f} "
                     f"(accepted {accepted}, best fitness {best_fitness:.4f})")

        return SearchOutcome(
            best=best,
            status=status,
            iterations=iterations,
            efficiency=iterations / cfg.max_iterations,
            metadata={
                "final_temperature": temperature,
                "acceptance_ratio": accepted / iterations if iterations else 0.0,
                "warm_start": initial is not None,
            },
        )

    def _accept(self, current: float, candidate: float, temperature: float) -> bool:
        if candidate >= current:
            return True
        if not math.isfinite(candidate):
            return False
        return self.rng.random() < math.exp((candidate - current) / temperature)

    def _neighbor(self, arrays: ProblemArrays, current: np.ndarray) -> np.ndarray:
        """Perturb exactly one variable; discrete variables move at least one unit."""
        rng = self.rng
        index = int(rng.integers(arrays.size))
        delta = (rng.random() - 0.5) * arrays.span[index] * self.config.neighbor_fraction

        if arrays.discrete[index] and abs(delta) < arrays.unit[index]:
            delta = arrays.unit[index] if rng.random() < 0.5 else -arrays.unit[index]

        candidate = current.copy()
        candidate[index] += delta
        return arrays.repair(candidate)

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "algorithm_name": self.algorithm_name,
            "description": "Simulated annealing with geometric cooling and Metropolis acceptance",
            "capabilities": {"anytime": True, "warm_start": True, "parallel": False},
            "parameters": self.config.model_dump(),
        }

"""
Particle swarm solver.

Each particle carries a position, a velocity and its personal best. Per
iteration the swarm is evaluated, personal and global bests are updated, and
every particle moves:

    v = inertia * v + cognitive * r1 * (personal_best - x) + social * r2 * (global_best - x)
    x = x + v

with r1, r2 drawn independently per particle and variable. Positions are
not clamped to the domains unless ``clamp_positions`` is set; particles are
repaired onto the domains before evaluation, so every reported assignment
stays within bounds either way.
"""

from typing import Any, Dict, Optional
import logging

import numpy as np

from portfolio_engine.config import ParticleSwarmConfig
from portfolio_engine.problems.evaluator import ProblemArrays
from portfolio_engine.problems.models import SolutionStatus
from portfolio_engine.solvers.solver_base import Deadline, SearchOutcome, SolverBase


logger = logging.getLogger(__name__)


class ParticleSwarmSolver(SolverBase):
    """Global-best particle swarm optimization."""

    algorithm_name = "particle_swarm"
    convergence_rate = 0.8
    robustness = 0.85

    def __init__(self, config: Optional[ParticleSwarmConfig] = None, rng: Optional[np.random.Generator] = None):
        super().__init__(config or ParticleSwarmConfig(), rng)

    def _search(self, arrays: ProblemArrays, deadline: Deadline, initial: Optional[np.ndarray]) -> SearchOutcome:
        cfg: ParticleSwarmConfig = self.config
        rng = self.rng
        size, n = cfg.swarm_size, arrays.size

        positions = arrays.random_population(rng, size)
        if initial is not None:
            positions[0] = initial
        velocities = (rng.random((size, n)) - 0.5) * arrays.span * 0.1

        personal_best = positions.copy()
        personal_fitness = np.full(size, -np.inf)
        global_best = positions[0].copy()
        global_fitness = -np.inf

        status = SolutionStatus.OPTIMAL
        iteration = 0

        with np.errstate(over="ignore", invalid="ignore"):
            while iteration < cfg.iterations:
                if deadline.expired():
                    status = SolutionStatus.TIMEOUT
                    break

                candidates = arrays.repair(positions)
                scores = arrays.fitness_batch(candidates)

                improved = scores > personal_fitness
                personal_best[improved] = candidates[improved]
                personal_fitness[improved] = scores[improved]

                leader = int(np.argmax(personal_fitness))
                if personal_fitness[leader] > global_fitness:
                    global_best = personal_best[leader].copy()
                    global_fitness = float(personal_fitness[leader])

                r1 = rng.random((size, n))
                r2 = rng.random((size, n))
                velocities = (
                    cfg.inertia * velocities
                    + cfg.cognitive * r1 * (personal_best - positions)
                    + cfg.social * r2 * (global_best - positions)
                )
                positions = positions + velocities
                if cfg.clamp_positions:
                    positions = np.clip(positions, arrays.lower, arrays.upper)

                iteration += 1

        logger.debug(f"Particle swarm stopped after {iteration} iterations, best fitness {global_fitness:.4f}")

        return SearchOutcome(
            best=global_best,
            status=status,
            iterations=iteration,
            efficiency=0.9,
            metadata={"clamp_positions": cfg.clamp_positions},
        )

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "algorithm_name": self.algorithm_name,
            "description": "Particle swarm optimization (global-best topology)",
            "capabilities": {"anytime": True, "warm_start": True, "parallel": False},
            "parameters": self.config.model_dump(),
        }

"""
Genetic algorithm solver.

Generation loop:
    1. Keep the ``elite_size`` best individuals as parents
    2. Breed a full population of offspring from random elite pairs
       (uniform crossover with probability ``crossover_rate``, otherwise a clone)
    3. Mutate each gene with probability ``mutation_rate`` (Gaussian step,
       10% of the domain span) and repair onto the domains
    4. Merge parents and offspring, rank by fitness, truncate

The search stops early once the variance of the last ``convergence_window``
best-fitness values drops below ``convergence_epsilon`` (after
``min_generations``), which is reported as ``optimal``. Hitting the
generation cap is reported as ``near_optimal``.
"""

from typing import Any, Dict, Optional
import logging

import numpy as np

from portfolio_engine.config import GeneticConfig
from portfolio_engine.problems.evaluator import ProblemArrays
from portfolio_engine.problems.models import SolutionStatus
from portfolio_engine.solvers.solver_base import Deadline, SearchOutcome, SolverBase


logger = logging.getLogger(__name__)


class GeneticSolver(SolverBase):
    """Elitist real-valued genetic algorithm."""

    algorithm_name = "genetic"
    convergence_rate = 0.8
    robustness = 0.8

    def __init__(self, config: Optional[GeneticConfig] = None, rng: Optional[np.random.Generator] = None):
        super().__init__(config or GeneticConfig(), rng)

    def _search(self, arrays: ProblemArrays, deadline: Deadline, initial: Optional[np.ndarray]) -> SearchOutcome:
        cfg: GeneticConfig = self.config

        population = arrays.random_population(self.rng, cfg.population_size)
        if initial is not None:
            population[0] = initial
        scores = arrays.fitness_batch(population)
        population, scores = self._rank(population, scores, cfg.population_size)

        history = []
        status = SolutionStatus.NEAR_OPTIMAL
        generation = 0

        while generation < cfg.generations:
            if deadline.expired():
                status = SolutionStatus.TIMEOUT
                logger.debug(f"Genetic search hit deadline at generation {generation}")
                break

            offspring = self._breed(arrays, population[:cfg.elite_size], cfg.population_size)
            merged = np.vstack([population, offspring])
            merged_scores = np.concatenate([scores, arrays.fitness_batch(offspring)])
            population, scores = self._rank(merged, merged_scores, cfg.population_size)

            history.append(scores[0])
            generation += 1

            if generation >= cfg.min_generations and self._converged(history, cfg):
                status = SolutionStatus.OPTIMAL
                logger.debug(f"Genetic search converged at generation {generation}")
                break

        return SearchOutcome(
            best=population[0],
            status=status,
            iterations=generation,
            efficiency=1.0 - generation / cfg.generations,
            metadata={"best_fitness_history_tail": [float(v) for v in history[-5:]]},
        )

    @staticmethod
    def _rank(population: np.ndarray, scores: np.ndarray, size: int):
        order = np.argsort(-scores, kind="stable")[:size]
        return population[order], scores[order]

    @staticmethod
    def _converged(history, cfg: GeneticConfig) -> bool:
        if len(history) < cfg.convergence_window:
            return False
        window = np.asarray(history[-cfg.convergence_window:], dtype=float)
        if not np.all(np.isfinite(window)):
            return False
        return float(np.var(window)) < cfg.convergence_epsilon

    def _breed(self, arrays: ProblemArrays, elites: np.ndarray, count: int) -> np.ndarray:
        cfg: GeneticConfig = self.config
        rng = self.rng
        n = arrays.size

        parents = rng.integers(0, len(elites), size=(count, 2))
        first = elites[parents[:, 0]]
        second = elites[parents[:, 1]]

        # Uniform crossover on the rows selected for crossover, clone otherwise
        crossover = rng.random(count) < cfg.crossover_rate
        gene_mask = rng.random((count, n)) < 0.5
        children = np.where(crossover[:, None] & gene_mask, second, first)

        mutate = rng.random((count, n)) < cfg.mutation_rate
        scale = np.maximum(arrays.span * 0.1, arrays.unit)
        children = children + mutate * rng.normal(0.0, 1.0, size=(count, n)) * scale

        return arrays.repair(children)

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "algorithm_name": self.algorithm_name,
            "description": "Elitist genetic algorithm with uniform crossover and Gaussian mutation",
            "capabilities": {"anytime": True, "warm_start": True, "parallel": False},
            "parameters": self.config.model_dump(),
        }

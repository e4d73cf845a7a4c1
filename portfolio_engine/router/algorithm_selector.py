"""
Algorithm Selector for Solver Routing

Maps a problem's shape (variable count, constraint count) to one of the five
solvers, or honours an explicit override from the request.

Decision Rules (first match wins):
----------------------------------
1. variable_count > 1000                          → quantum_inspired
2. variable_count > 100 and constraint_count > 5  → hybrid
3. constraint_count > 10                          → simulated_annealing
4. otherwise                                      → genetic

The rules are a pure function of the two counts; ``select_algorithm`` never
looks at anything else. An override that does not name a known algorithm
raises ``UnknownAlgorithmError``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

import numpy as np

from portfolio_engine.config import Settings, settings as default_settings
from portfolio_engine.problems.models import Problem
from portfolio_engine.solvers.annealing_solver import SimulatedAnnealingSolver
from portfolio_engine.solvers.genetic_solver import GeneticSolver
from portfolio_engine.solvers.hybrid_solver import HybridSolver
from portfolio_engine.solvers.particle_swarm_solver import ParticleSwarmSolver
from portfolio_engine.solvers.quantum_inspired_solver import QuantumInspiredSolver
from portfolio_engine.solvers.solver_base import SolverBase, UnknownAlgorithmError


# Configure module logger
logger = logging.getLogger(__name__)


class Algorithm(str, Enum):
    """Registered solver names."""
    GENETIC = "genetic"
    SIMULATED_ANNEALING = "simulated_annealing"
    PARTICLE_SWARM = "particle_swarm"
    QUANTUM_INSPIRED = "quantum_inspired"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, name: str) -> "Algorithm":
        """
        Resolve an algorithm name.

        Raises:
            UnknownAlgorithmError: If the name is not registered
        """
        try:
            return cls(name)
        except ValueError:
            raise UnknownAlgorithmError(name) from None


@dataclass(frozen=True)
class SelectionThresholds:
    """Size thresholds used by the decision rules."""
    quantum_variables: int = 1000
    hybrid_variables: int = 100
    hybrid_constraints: int = 5
    annealing_constraints: int = 10


DEFAULT_THRESHOLDS = SelectionThresholds()


@dataclass(frozen=True)
class SelectionDecision:
    """Outcome of a selection with the reasoning behind it."""
    algorithm: Algorithm
    variable_count: int
    constraint_count: int
    overridden: bool
    reasoning: str


def select_algorithm(
    variable_count: int,
    constraint_count: int,
    thresholds: SelectionThresholds = DEFAULT_THRESHOLDS,
) -> Algorithm:
    """
    Pick an algorithm from problem shape alone.

    Example:
        >>> select_algorithm(1500, 2)
        <Algorithm.QUANTUM_INSPIRED: 'quantum_inspired'>
        >>> select_algorithm(20, 2)
        <Algorithm.GENETIC: 'genetic'>
    """
    if variable_count > thresholds.quantum_variables:
        return Algorithm.QUANTUM_INSPIRED
    if variable_count > thresholds.hybrid_variables and constraint_count > thresholds.hybrid_constraints:
        return Algorithm.HYBRID
    if constraint_count > thresholds.annealing_constraints:
        return Algorithm.SIMULATED_ANNEALING
    return Algorithm.GENETIC


class AlgorithmSelector:
    """
    Chooses and builds the solver for a problem.

    Attributes:
        settings: Engine settings carrying the per-algorithm configs
        thresholds: Decision rule thresholds
    """

    def __init__(self, settings: Optional[Settings] = None, thresholds: SelectionThresholds = DEFAULT_THRESHOLDS):
        self.settings = settings or default_settings
        self.thresholds = thresholds

    def select(self, problem: Problem, override: Optional[str] = None) -> SelectionDecision:
        """
        Decide which algorithm solves ``problem``.

        Args:
            problem: Problem to route
            override: Explicit algorithm name from the request; always wins

        Raises:
            UnknownAlgorithmError: If ``override`` is not a registered name
        """
        variables, constraints = problem.variable_count, problem.constraint_count

        if override is not None:
            algorithm = Algorithm.parse(override)
            reasoning = f"Explicit override requested '{algorithm.value}'."
            overridden = True
        else:
            algorithm = select_algorithm(variables, constraints, self.thresholds)
            reasoning = self._reasoning(algorithm, variables, constraints)
            overridden = False

        logger.info(f"[{problem.id}] Selected {algorithm.value} "
                    f"(variables={variables}, constraints={constraints}, override={overridden})")

        return SelectionDecision(
            algorithm=algorithm,
            variable_count=variables,
            constraint_count=constraints,
            overridden=overridden,
            reasoning=reasoning,
        )

    def create_solver(self, algorithm: str, rng: Optional[np.random.Generator] = None) -> SolverBase:
        """
        Build a solver with its configuration from ``settings``.

        Raises:
            UnknownAlgorithmError: If ``algorithm`` is not registered
        """
        return create_solver(algorithm, self.settings, rng)

    def explain_decision(self, decision: SelectionDecision) -> str:
        """Human-readable summary of a selection."""
        lines = [
            "=" * 60,
            "ALGORITHM SELECTION",
            "=" * 60,
            f"DECISION: {decision.algorithm.value.upper()}",
            f"VARIABLES: {decision.variable_count}",
            f"CONSTRAINTS: {decision.constraint_count}",
            "",
            "REASONING:",
            decision.reasoning,
        ]
        return "\n".join(lines)

    def _reasoning(self, algorithm: Algorithm, variables: int, constraints: int) -> str:
        t = self.thresholds
        if algorithm == Algorithm.QUANTUM_INSPIRED:
            return f"{variables} variables exceed {t.quantum_variables}; quantum-inspired search scales best."
        if algorithm == Algorithm.HYBRID:
            return (f"{variables} variables (> {t.hybrid_variables}) with {constraints} constraints "
                    f"(> {t.hybrid_constraints}); hybrid exploration plus refinement.")
        if algorithm == Algorithm.SIMULATED_ANNEALING:
            return f"{constraints} constraints exceed {t.annealing_constraints}; annealing handles tight penalties."
        return "Small problem; genetic algorithm."


def create_solver(
    algorithm: str,
    settings: Optional[Settings] = None,
    rng: Optional[np.random.Generator] = None,
) -> SolverBase:
    """
    Solver factory.

    Args:
        algorithm: Registered algorithm name
        settings: Settings providing the immutable per-algorithm configs
        rng: Random source handed to the solver

    Raises:
        UnknownAlgorithmError: If ``algorithm`` is not registered
    """
    settings = settings or default_settings
    name = Algorithm.parse(algorithm)

    if name == Algorithm.GENETIC:
        return GeneticSolver(settings.genetic, rng=rng)
    if name == Algorithm.SIMULATED_ANNEALING:
        return SimulatedAnnealingSolver(settings.annealing, rng=rng)
    if name == Algorithm.PARTICLE_SWARM:
        return ParticleSwarmSolver(settings.particle_swarm, rng=rng)
    if name == Algorithm.QUANTUM_INSPIRED:
        return QuantumInspiredSolver(settings.quantum_inspired, rng=rng)
    return HybridSolver(
        settings.hybrid,
        rng=rng,
        quantum_config=settings.quantum_inspired,
        annealing_config=settings.annealing,
    )

"""
Quantum-inspired evolutionary solver.

A classical heuristic that borrows the qubit metaphor; nothing here runs on
quantum hardware or simulates a quantum circuit.

State
-----
Every individual holds one ``QubitState(amplitude_zero, amplitude_one)`` per
variable. Observing a qubit yields 1 with probability
``amplitude_one² / (amplitude_zero² + amplitude_one²)`` and 0 otherwise.
An observed 0 maps to the variable's lower bound and a 1 to one unit above
it (the step, 1 for discrete domains, 1% of the span otherwise), clamped to
the domain.

Generation cycle
----------------
1. **Observe**: collapse ``observation_count`` randomly chosen individuals
   into classical assignments and evaluate them.
2. **Rotate**: turn every qubit of every individual towards the best
   observed bit string by angle ``π · clip(angle_scale · |best| / scale,
   min_rotation, max_rotation)``. ``scale`` is ``fitness_scale`` when configured,
   otherwise the first non-zero best fitness of the run, so the angle starts at
   ``min_rotation`` and grows as the best fitness improves on that reference.
3. **Entangle**: pair individuals (0,1), (2,3), ... and swap
   ``amplitude_zero`` at one random variable index per pair.
4. **Normalize** (when ``normalize_amplitudes``): rescale every pair to unit
   norm. Observation only depends on the amplitude ratio, so normalization
   keeps the sampling distribution unchanged while preventing drift of the
   stored magnitudes.

Runs for the full generation count and reports ``optimal`` unless the
deadline expires first.
"""

from typing import Any, Dict, NamedTuple, Optional
import logging
import math

import numpy as np

from portfolio_engine.config import QuantumInspiredConfig
from portfolio_engine.problems.evaluator import ProblemArrays
from portfolio_engine.problems.models import SolutionStatus
from portfolio_engine.solvers.solver_base import Deadline, SearchOutcome, SolverBase


logger = logging.getLogger(__name__)


class QubitState(NamedTuple):
    """Amplitude pair of one (individual, variable) qubit."""

    amplitude_zero: float
    amplitude_one: float

    @property
    def probability_one(self) -> float:
        norm = self.amplitude_zero ** 2 + self.amplitude_one ** 2
        return self.amplitude_one ** 2 / norm if norm > 0 else 0.5


class QuantumPopulation:
    """
    Amplitude pairs for a whole population.

    Stored as two ``(population, variables)`` arrays; ``state(i, j)`` exposes
    a single pair as a ``QubitState``.
    """

    def __init__(self, amplitude_zero: np.ndarray, amplitude_one: np.ndarray):
        if amplitude_zero.shape != amplitude_one.shape:
            raise ValueError("amplitude arrays must share a shape")
        self.amplitude_zero = amplitude_zero
        self.amplitude_one = amplitude_one

    @classmethod
    def random(cls, rng: np.random.Generator, size: int, variables: int) -> "QuantumPopulation":
        return cls(rng.random((size, variables)), rng.random((size, variables)))

    @property
    def size(self) -> int:
        return self.amplitude_zero.shape[0]

    def state(self, individual: int, variable: int) -> QubitState:
        return QubitState(
            float(self.amplitude_zero[individual, variable]),
            float(self.amplitude_one[individual, variable]),
        )

    def probability_one(self) -> np.ndarray:
        norm = self.amplitude_zero ** 2 + self.amplitude_one ** 2
        return np.divide(self.amplitude_one ** 2, norm, out=np.full_like(norm, 0.5), where=norm > 0)

    def observe(self, rng: np.random.Generator, individuals: np.ndarray) -> np.ndarray:
        """Collapse the selected individuals into bit strings."""
        p_one = self.probability_one()[individuals]
        return (rng.random(p_one.shape) < p_one).astype(np.int8)

    def rotate(self, target_bits: np.ndarray, angle: float) -> None:
        """
        Rotate every qubit so the probability of observing ``target_bits`` grows.

        P(1) = sin²φ for the pair's polar angle φ, and d(sin²φ)/dφ = 2·a0·a1,
        so the rotation sign follows the sign of ``amplitude_zero * amplitude_one``.
        Qubits sitting on a pole only move when the pole is the wrong one.
        """
        zero, one = self.amplitude_zero, self.amplitude_one
        target = np.broadcast_to(target_bits.astype(bool), zero.shape)
        product = zero * one
        aligned = np.where(target, np.abs(one) >= np.abs(zero), np.abs(zero) >= np.abs(one))
        direction = np.where(product == 0, np.where(aligned, 0.0, 1.0), np.sign(product))
        theta = np.where(target, direction, -direction) * angle
        cos, sin = np.cos(theta), np.sin(theta)
        self.amplitude_zero = zero * cos - one * sin
        self.amplitude_one = zero * sin + one * cos

    def entangle(self, rng: np.random.Generator) -> None:
        """Swap ``amplitude_zero`` of pairs (i, i+1) at one random variable."""
        variables = self.amplitude_zero.shape[1]
        for i in range(0, self.size - 1, 2):
            j = int(rng.integers(variables))
            self.amplitude_zero[[i, i + 1], j] = self.amplitude_zero[[i + 1, i], j]

    def normalize(self) -> None:
        norm = np.sqrt(self.amplitude_zero ** 2 + self.amplitude_one ** 2)
        safe = np.where(norm > 0, norm, 1.0)
        self.amplitude_zero = np.where(norm > 0, self.amplitude_zero / safe, math.sqrt(0.5))
        self.amplitude_one = np.where(norm > 0, self.amplitude_one / safe, math.sqrt(0.5))


class QuantumInspiredSolver(SolverBase):
    """Quantum-inspired evolutionary algorithm (amplitude-pair metaphor)."""

    algorithm_name = "quantum_inspired"
    convergence_rate = 0.95
    robustness = 0.95

    def __init__(self, config: Optional[QuantumInspiredConfig] = None, rng: Optional[np.random.Generator] = None):
        super().__init__(config or QuantumInspiredConfig(), rng)
        self.population: Optional[QuantumPopulation] = None

    def rotation_angle(self, best_fitness: float, reference: Optional[float] = None) -> float:
        """
        Rotation angle in radians for the current best fitness.

        The magnitude of ``best_fitness`` is divided by ``config.fitness_scale``
        when set, otherwise by ``reference`` (the first non-zero best of the run).
        """
        cfg: QuantumInspiredConfig = self.config
        scale = cfg.fitness_scale if cfg.fitness_scale is not None else reference
        if not math.isfinite(best_fitness) or not scale:
            return math.pi * cfg.min_rotation
        scaled = cfg.angle_scale * abs(best_fitness) / abs(scale)
        return math.pi * min(max(scaled, cfg.min_rotation), cfg.max_rotation)

    @staticmethod
    def decode(arrays: ProblemArrays, bits: np.ndarray) -> np.ndarray:
        """Map observed bits onto domain values."""
        return arrays.repair(arrays.lower + bits * arrays.unit)

    def _search(self, arrays: ProblemArrays, deadline: Deadline, initial: Optional[np.ndarray]) -> SearchOutcome:
        cfg: QuantumInspiredConfig = self.config
        rng = self.rng

        population = QuantumPopulation.random(rng, cfg.population_size, arrays.size)
        self.population = population

        best_bits = np.zeros(arrays.size, dtype=np.int8)
        best = self.decode(arrays, best_bits)
        best_fitness = -math.inf
        reference = None

        status = SolutionStatus.OPTIMAL
        generation = 0

        while generation < cfg.generations:
            if deadline.expired():
                status = SolutionStatus.TIMEOUT
                break

            chosen = rng.integers(0, population.size, size=cfg.observation_count)
            bits = population.observe(rng, chosen)
            candidates = self.decode(arrays, bits)
            scores = arrays.fitness_batch(candidates)

            leader = int(np.argmax(scores))
            if scores[leader] > best_fitness:
                best_fitness = float(scores[leader])
                best_bits = bits[leader].copy()
                best = candidates[leader].copy()
                if reference is None and math.isfinite(best_fitness) and best_fitness != 0.0:
                    reference = abs(best_fitness)

            population.rotate(best_bits, self.rotation_angle(best_fitness, reference))
            population.entangle(rng)
            if cfg.normalize_amplitudes:
                population.normalize()

            generation += 1
            if generation % 50 == 0:
                logger.debug(f"Quantum-inspired generation {generation}: best fitness = {best_fitness:.2f}")

        return SearchOutcome(
            best=best,
            status=status,
            iterations=generation,
            efficiency=0.9,
            metadata={
                "observations": generation * cfg.observation_count,
                "normalized_amplitudes": cfg.normalize_amplitudes,
                "rotation_reference": reference,
                "mean_probability_one": float(population.probability_one().mean()),
            },
        )

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "algorithm_name": self.algorithm_name,
            "description": "Quantum-inspired evolutionary algorithm (classical heuristic)",
            "capabilities": {"anytime": True, "warm_start": False, "parallel": False},
            "parameters": self.config.model_dump(),
        }

"""
Unit tests for solvers module (minimal coverage with success/failure cases).
"""

import math

import pytest
import numpy as np

# Import modules to test
from portfolio_engine.config import (
    AnnealingConfig,
    GeneticConfig,
    HybridConfig,
    ParticleSwarmConfig,
    QuantumInspiredConfig,
)
from portfolio_engine.problems.evaluator import ProblemArrays, objective, violation
from portfolio_engine.problems.models import (
    Constraint,
    ConstraintKind,
    Problem,
    SolutionStatus,
    Variable,
    VariableDomain,
)
from portfolio_engine.solvers.annealing_solver import SimulatedAnnealingSolver
from portfolio_engine.solvers.genetic_solver import GeneticSolver
from portfolio_engine.solvers.hybrid_solver import HybridSolver
from portfolio_engine.solvers.particle_swarm_solver import ParticleSwarmSolver
from portfolio_engine.solvers.quantum_inspired_solver import (
    QuantumInspiredSolver,
    QuantumPopulation,
    QubitState,
)
from portfolio_engine.solvers.solver_base import (
    Deadline,
    SolverConfigurationError,
    SolverBase,
    SolverConvergenceError,
)


SMALL_GENETIC = GeneticConfig(population_size=20, generations=40, elite_size=4, min_generations=10)
SMALL_ANNEALING = AnnealingConfig(max_iterations=2000)
SMALL_SWARM = ParticleSwarmConfig(swarm_size=15, iterations=60)
SMALL_QUANTUM = QuantumInspiredConfig(population_size=10, generations=40, observation_count=5)


def _build_solver(name: str, seed: int = 0):
    rng = np.random.default_rng(seed)
    if name == "genetic":
        return GeneticSolver(SMALL_GENETIC, rng=rng)
    if name == "simulated_annealing":
        return SimulatedAnnealingSolver(SMALL_ANNEALING, rng=rng)
    if name == "particle_swarm":
        return ParticleSwarmSolver(SMALL_SWARM, rng=rng)
    if name == "quantum_inspired":
        return QuantumInspiredSolver(SMALL_QUANTUM, rng=rng)
    return HybridSolver(HybridConfig(), rng=rng, quantum_config=SMALL_QUANTUM, annealing_config=SMALL_ANNEALING)


ALL_SOLVERS = ["genetic", "simulated_annealing", "particle_swarm", "quantum_inspired", "hybrid"]


def _problem(time_limit: float = 60.0) -> Problem:
    """Four items, costs 100/120/90/60, budget 300."""
    costs = [100.0, 120.0, 90.0, 60.0]
    returns = [20.0, 30.0, 15.0, 12.0]
    risks = [0.2, 0.3, 0.1, 0.4]
    return Problem(
        id="four_items",
        constraints=(
            Constraint(id="budget", kind=ConstraintKind.BUDGET, bound=300.0, penalty_weight=1000.0),
            Constraint(id="max_risk", kind=ConstraintKind.RISK, bound=100.0, penalty_weight=500.0),
        ),
        variables=tuple(
            Variable(id=name, domain=VariableDomain(lower=0, upper=3), unit_cost=c,
                     expected_return=r, risk=k)
            for name, c, r, k in zip("ABCD", costs, returns, risks)
        ),
        time_limit_seconds=time_limit,
    )


def _assert_solution_invariants(problem, solution):
    assert set(solution.assignment) == {v.id for v in problem.variables}
    for variable in problem.variables:
        value = solution.assignment[variable.id]
        assert variable.domain.lower <= value <= variable.domain.upper
        assert value == round(value)
    assert solution.constraint_violation >= 0
    assert solution.objective_value == pytest.approx(
        objective(problem, solution.assignment) - solution.constraint_violation
    )
    assert solution.constraint_violation == pytest.approx(violation(problem, solution.assignment))
    assert 0.0 <= solution.performance.solution_quality <= 1.0


class TestSolverBase:
    """Test behaviour shared by every solver."""

    def test_deadline_success(self):
        """Test deadline bookkeeping with an injected clock."""
        now = [100.0]
        deadline = Deadline(5.0, clock=lambda: now[0])

        assert deadline.expired() is False
        assert deadline.remaining() == pytest.approx(5.0)
        now[0] = 106.0
        assert deadline.expired() is True
        assert deadline.remaining() == 0.0

    def test_missing_config_failure(self):
        """Test solvers refuse to run without configuration."""
        with pytest.raises(SolverConfigurationError, match="requires a configuration"):
            SolverBase.__init__(GeneticSolver.__new__(GeneticSolver), None)

    def test_search_exception_failure(self, monkeypatch):
        """Test unexpected search errors surface as SolverConvergenceError."""
        solver = _build_solver("genetic")

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(solver, "_search", broken)

        with pytest.raises(SolverConvergenceError, match="genetic failed: boom"):
            solver.solve(_problem())

    def test_solver_info_success(self):
        """Test solver info exposes name and parameters."""
        info = _build_solver("particle_swarm").get_solver_info()

        assert info["algorithm_name"] == "particle_swarm"
        assert info["parameters"]["swarm_size"] == 15


class TestAllSolvers:
    """Properties every solver must satisfy."""

    @pytest.mark.parametrize("name", ALL_SOLVERS)
    def test_solve_success(self, name):
        """Test solutions stay in the domains and satisfy the objective identity."""
        problem = _problem()

        with _build_solver(name) as solver:
            solution = solver.solve(problem)

        _assert_solution_invariants(problem, solution)
        assert solution.algorithm_name == name
        assert solution.problem_id == problem.id
        assert solution.iterations > 0
        assert solution.metadata["energy_mj"] >= 0.0

    @pytest.mark.parametrize("name", ALL_SOLVERS)
    def test_seeded_determinism_success(self, name):
        """Test identical seeds reproduce identical solutions."""
        problem = _problem()

        first = _build_solver(name, seed=11).solve(problem)
        second = _build_solver(name, seed=11).solve(problem)

        exclude = {"execution_time_ms": True, "metadata": {"energy_mj"}}
        assert first.model_dump(exclude=exclude) == second.model_dump(exclude=exclude)

    @pytest.mark.parametrize("name", ALL_SOLVERS)
    def test_deadline_timeout_failure(self, name):
        """Test an expired deadline returns the incumbent with status timeout."""
        problem = _problem(time_limit=1e-9)

        solution = _build_solver(name).solve(problem)

        assert solution.status == SolutionStatus.TIMEOUT
        _assert_solution_invariants(problem, solution)

    @pytest.mark.parametrize("name", ["genetic", "simulated_annealing", "hybrid"])
    def test_budget_respected_success(self, name):
        """Test heavy budget penalties keep the spend within the budget."""
        problem = _problem()

        solution = _build_solver(name, seed=3).solve(problem)
        spend = sum(solution.assignment[v.id] * v.unit_cost for v in problem.variables)

        assert spend <= 300.0
        assert solution.constraint_violation == 0.0


class TestGeneticSolver:
    """Test GeneticSolver specifics."""

    def test_status_success(self):
        """Test early convergence reports optimal, the generation cap near_optimal."""
        problem = _problem()

        converged = GeneticSolver(
            GeneticConfig(population_size=20, generations=500, elite_size=4,
                          min_generations=10, convergence_window=10, convergence_epsilon=1.0),
            rng=np.random.default_rng(0),
        ).solve(problem)
        capped = GeneticSolver(
            GeneticConfig(population_size=20, generations=5, elite_size=4, min_generations=10),
            rng=np.random.default_rng(0),
        ).solve(problem)

        assert converged.status == SolutionStatus.OPTIMAL
        assert converged.iterations < 500
        assert capped.status == SolutionStatus.NEAR_OPTIMAL
        assert capped.iterations == 5

    def test_efficiency_success(self):
        """Test efficiency reflects the share of the generation cap left unused."""
        problem = _problem()

        converged = GeneticSolver(
            GeneticConfig(population_size=20, generations=500, elite_size=4,
                          min_generations=10, convergence_window=10, convergence_epsilon=1.0),
            rng=np.random.default_rng(0),
        ).solve(problem)
        capped = GeneticSolver(
            GeneticConfig(population_size=20, generations=5, elite_size=4, min_generations=10),
            rng=np.random.default_rng(0),
        ).solve(problem)

        assert converged.performance.computational_efficiency == pytest.approx(1.0 - converged.iterations / 500)
        assert converged.performance.computational_efficiency > 0.0
        assert capped.performance.computational_efficiency == 0.0

    def test_config_failure(self):
        """Test elites must fit inside the population."""
        with pytest.raises(ValueError, match="elite_size"):
            GeneticConfig(population_size=10, elite_size=10)


class TestSimulatedAnnealingSolver:
    """Test SimulatedAnnealingSolver specifics."""

    def test_cooling_schedule_success(self):
        """Test the default schedule cools to the floor and reports optimal."""
        solution = _build_solver("simulated_annealing").solve(_problem())

        assert solution.status == SolutionStatus.OPTIMAL
        # ln(0.01 / 1000) / ln(0.95) ≈ 224.5
        assert solution.iterations == 225
        assert solution.metadata["final_temperature"] <= 0.01

    def test_warm_start_success(self):
        """Test a warm start is accepted and reported."""
        solution = _build_solver("simulated_annealing").solve(_problem(), initial={"A": 0, "B": 2, "C": 0, "D": 1})

        assert solution.metadata["warm_start"] is True
        assert solution.objective_value >= 72.0

    def test_iteration_cap_failure(self):
        """Test stopping on the iteration cap reports timeout."""
        solver = SimulatedAnnealingSolver(AnnealingConfig(max_iterations=10), rng=np.random.default_rng(0))

        solution = solver.solve(_problem())

        assert solution.status == SolutionStatus.TIMEOUT
        assert solution.iterations == 10

    def test_accept_success(self):
        """Test Metropolis acceptance rules."""
        solver = _build_solver("simulated_annealing")

        assert solver._accept(1.0, 2.0, 0.5) is True
        assert solver._accept(1.0, -math.inf, 1000.0) is False

    def test_config_failure(self):
        """Test the temperature floor must sit below the start."""
        with pytest.raises(ValueError, match="min_temperature"):
            AnnealingConfig(initial_temperature=1.0, min_temperature=2.0)


class TestParticleSwarmSolver:
    """Test ParticleSwarmSolver specifics."""

    def test_clamped_positions_success(self):
        """Test the clamp flag is honoured and reported."""
        solver = ParticleSwarmSolver(SMALL_SWARM.model_copy(update={"clamp_positions": True}),
                                     rng=np.random.default_rng(0))

        solution = solver.solve(_problem())

        assert solution.metadata["clamp_positions"] is True
        assert solution.status == SolutionStatus.OPTIMAL


class TestQuantumInspiredSolver:
    """Test QuantumInspiredSolver and its amplitude population."""

    def test_qubit_state_success(self):
        """Test observation probability follows the amplitude ratio."""
        assert QubitState(0.6, 0.8).probability_one == pytest.approx(0.64)
        assert QubitState(3.0, 4.0).probability_one == pytest.approx(0.64)
        assert QubitState(0.0, 0.0).probability_one == 0.5

    def test_rotation_moves_towards_target_success(self):
        """Test rotation increases the probability of the target bits."""
        # Polar angles between 10 and 70 degrees so a 9 degree turn cannot pass a pole
        phi = np.radians(np.random.default_rng(2).uniform(10.0, 70.0, size=(6, 4)))
        population = QuantumPopulation(np.cos(phi), np.sin(phi))
        target = np.array([1, 0, 1, 0], dtype=np.int8)
        before = population.probability_one()

        population.rotate(target, 0.05 * math.pi)
        after = population.probability_one()

        assert np.all(after[:, [0, 2]] >= before[:, [0, 2]])
        assert np.all(after[:, [1, 3]] <= before[:, [1, 3]])

    def test_normalize_success(self):
        """Test normalization yields unit-norm pairs without changing probabilities."""
        population = QuantumPopulation.random(np.random.default_rng(4), 5, 3)
        before = population.probability_one()

        population.normalize()

        norm = population.amplitude_zero ** 2 + population.amplitude_one ** 2
        np.testing.assert_allclose(norm, 1.0)
        np.testing.assert_allclose(population.probability_one(), before)

    def test_entangle_success(self):
        """Test entanglement only swaps amplitude_zero inside pairs."""
        population = QuantumPopulation.random(np.random.default_rng(5), 4, 3)
        zero_before = population.amplitude_zero.copy()
        one_before = population.amplitude_one.copy()

        population.entangle(np.random.default_rng(6))

        np.testing.assert_array_equal(population.amplitude_one, one_before)
        np.testing.assert_allclose(np.sort(population.amplitude_zero[:2], axis=0), np.sort(zero_before[:2], axis=0))

    def test_rotation_angle_success(self):
        """Test the rotation angle grows with best fitness relative to the run reference."""
        solver = _build_solver("quantum_inspired")

        assert solver.rotation_angle(100.0, reference=100.0) == pytest.approx(0.01 * math.pi)
        assert solver.rotation_angle(300.0, reference=100.0) == pytest.approx(0.03 * math.pi)
        assert solver.rotation_angle(-300.0, reference=100.0) == pytest.approx(0.03 * math.pi)
        assert solver.rotation_angle(1e12, reference=1.0) == pytest.approx(0.05 * math.pi)

    def test_rotation_angle_fixed_scale_success(self):
        """Test a configured fitness scale replaces the run reference."""
        solver = QuantumInspiredSolver(SMALL_QUANTUM.model_copy(update={"fitness_scale": 1e6}),
                                       rng=np.random.default_rng(0))

        assert solver.rotation_angle(3e6, reference=1.0) == pytest.approx(0.03 * math.pi)

    def test_rotation_angle_failure(self):
        """Test degenerate inputs fall back to the minimum angle."""
        solver = _build_solver("quantum_inspired")

        assert solver.rotation_angle(0.0) == pytest.approx(0.01 * math.pi)
        assert solver.rotation_angle(500.0) == pytest.approx(0.01 * math.pi)
        assert solver.rotation_angle(-math.inf, reference=10.0) == pytest.approx(0.01 * math.pi)

    def test_decode_success(self):
        """Test bit 0 maps to the lower bound and bit 1 one unit above."""
        arrays = ProblemArrays.from_problem(_problem())

        decoded = QuantumInspiredSolver.decode(arrays, np.array([0, 1, 1, 0]))

        assert decoded.tolist() == [0.0, 1.0, 1.0, 0.0]

    def test_population_shape_failure(self):
        """Test mismatched amplitude arrays are rejected."""
        with pytest.raises(ValueError, match="share a shape"):
            QuantumPopulation(np.zeros((2, 3)), np.zeros((3, 2)))


class TestHybridSolver:
    """Test HybridSolver composition."""

    def test_stage_selection_success(self):
        """Test the better stage is kept and iterations are summed."""
        problem = _problem()

        solution = _build_solver("hybrid", seed=8).solve(problem)

        objectives = solution.metadata["stage_objectives"]
        assert solution.algorithm_name == "hybrid"
        assert solution.objective_value == pytest.approx(max(objectives.values()))
        assert solution.metadata["selected_stage"] in ("quantum_inspired", "simulated_annealing")
        assert solution.iterations > SMALL_QUANTUM.generations

    def test_warm_start_success(self):
        """Test the warm-start flag seeds annealing with the stage-1 result."""
        solver = HybridSolver(HybridConfig(warm_start=True), rng=np.random.default_rng(1),
                              quantum_config=SMALL_QUANTUM, annealing_config=SMALL_ANNEALING)

        solution = solver.solve(_problem())

        assert solution.metadata["warm_start"] is True
        assert solution.objective_value >= solution.metadata["stage_objectives"]["quantum_inspired"]

    def test_search_outcome_success(self):
        """Test the composed search returns the better stage vector on shared arrays."""
        solver = _build_solver("hybrid", seed=4)
        arrays = ProblemArrays.from_problem(_problem())

        outcome = solver._search(arrays, Deadline(10.0), None)

        stage_values = outcome.metadata["stage_objectives"]
        chosen = float(arrays.fitness_batch(arrays.repair(outcome.best))[0])
        assert chosen == pytest.approx(max(stage_values.values()))
        assert outcome.iterations > SMALL_QUANTUM.generations

    def test_performance_success(self):
        """Test reported metrics come from the selected stage with the quality boost."""
        solver = _build_solver("hybrid", seed=8)

        solution = solver.solve(_problem())

        stage = solver._stages[solution.metadata["selected_stage"]]
        base_quality = min(max(solution.objective_value / 1e6, 0.0), 1.0)
        assert solution.performance.convergence_rate == stage.convergence_rate
        assert solution.performance.robustness == stage.robustness
        assert solution.performance.solution_quality == pytest.approx(min(base_quality * 1.1, 1.0))

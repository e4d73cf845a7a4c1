"""
Unit tests for decomposition module (minimal coverage with success/failure cases).
"""

import pytest
import numpy as np

# Import modules to test
from portfolio_engine.config import DecompositionConfig, QuantumInspiredConfig
from portfolio_engine.decomposition.hierarchical_decomposer import HierarchicalDecomposer
from portfolio_engine.problems.evaluator import objective, violation
from portfolio_engine.problems.models import (
    Constraint,
    ConstraintKind,
    Problem,
    SolutionStatus,
    Variable,
    VariableDomain,
)


def _problem(count: int = 40, time_limit: float = 60.0) -> Problem:
    return Problem(
        id="large",
        constraints=(
            Constraint(id="budget", kind=ConstraintKind.BUDGET, bound=400.0, penalty_weight=1000.0),
            Constraint(id="max_risk", kind=ConstraintKind.RISK, bound=30.0, penalty_weight=500.0),
        ),
        variables=tuple(
            Variable(
                id=f"item_{i:03d}",
                domain=VariableDomain(lower=0, upper=4),
                unit_cost=float(10 + i % 7),
                expected_return=float(1 + i % 5),
                risk=1.0,
            )
            for i in range(count)
        ),
        time_limit_seconds=time_limit,
    )


class TestHierarchicalDecomposer:
    """Test HierarchicalDecomposer class."""

    @pytest.fixture
    def decomposer(self):
        return HierarchicalDecomposer(
            DecompositionConfig(large_scale_threshold=10, max_items=1000, cluster_count=4, max_workers=2),
            QuantumInspiredConfig(population_size=8, generations=20, observation_count=4),
        )

    def test_should_decompose_success(self, decomposer):
        """Test only problems above the threshold are decomposed."""
        assert decomposer.should_decompose(_problem(40)) is True
        assert decomposer.should_decompose(_problem(10)) is False

    def test_partition_success(self, decomposer):
        """Test variables are chunked in order."""
        clusters = decomposer.partition(_problem(42))

        assert [len(c) for c in clusters] == [11, 11, 11, 9]
        assert clusters[0][0].id == "item_000"
        assert clusters[-1][-1].id == "item_041"

    def test_cluster_shares_success(self, decomposer):
        """Test shares follow expected cluster value and sum to one."""
        clusters = decomposer.partition(_problem(40))

        shares = decomposer.cluster_shares(clusters)

        assert sum(shares) == pytest.approx(1.0)
        values = [sum(v.expected_return * v.domain.upper for v in c) for c in clusters]
        assert shares[0] == pytest.approx(values[0] / sum(values))

    def test_cluster_shares_no_value_success(self):
        """Test clusters share equally when nothing has positive value."""
        variable = Variable(id="x", domain=VariableDomain(lower=0, upper=1), unit_cost=1.0,
                            expected_return=-1.0, risk=0.0)

        shares = HierarchicalDecomposer.cluster_shares([(variable,), (variable,)])

        assert shares == [0.5, 0.5]

    def test_build_subproblems_success(self, decomposer):
        """Test every sub-problem gets its share of the global bounds."""
        subproblems = decomposer.build_subproblems(_problem(40))

        assert len(subproblems) == 4
        total_budget = sum(sub.constraint("budget").bound for sub, _ in subproblems)
        assert total_budget == pytest.approx(400.0)
        for sub, share in subproblems:
            assert sub.constraint("max_risk").bound == pytest.approx(30.0 * share)
            assert sub.id.startswith("large_cluster_")

    def test_reconcile_success(self, decomposer):
        """Test over-allocated assignments are trimmed back inside every bound."""
        problem = _problem(40)
        assignment = {v.id: 4.0 for v in problem.variables}

        reconciled, trimmed = decomposer.reconcile(problem, assignment)

        assert violation(problem, reconciled) == 0.0
        assert trimmed["budget"] > 0
        assert all(0.0 <= value <= 4.0 for value in reconciled.values())

    def test_reconcile_noop_success(self, decomposer):
        """Test feasible assignments are left untouched."""
        problem = _problem(40)
        assignment = {v.id: 0.0 for v in problem.variables}
        assignment["item_000"] = 2.0

        reconciled, trimmed = decomposer.reconcile(problem, assignment)

        assert reconciled == assignment
        assert trimmed == {"budget": 0.0, "max_risk": 0.0}

    def test_solve_success(self, decomposer):
        """Test the merged solution covers every item and is feasible."""
        problem = _problem(40)

        solution = decomposer.solve(problem, rng=np.random.default_rng(9))

        assert set(solution.assignment) == {v.id for v in problem.variables}
        assert solution.status == SolutionStatus.FEASIBLE
        assert solution.constraint_violation == 0.0
        assert solution.objective_value == pytest.approx(objective(problem, solution.assignment))
        assert solution.algorithm_name == "quantum_inspired"
        assert solution.metadata["decomposed"] is True
        assert solution.metadata["cluster_count"] == 4
        assert solution.iterations == 4 * 20

    def test_solve_deterministic_success(self, decomposer):
        """Test seeded decomposed solves are reproducible."""
        problem = _problem(40)

        first = decomposer.solve(problem, rng=np.random.default_rng(4))
        second = decomposer.solve(problem, rng=np.random.default_rng(4))

        assert first.assignment == second.assignment
        assert first.id == second.id

    def test_solve_timeout_failure(self, decomposer):
        """Test an expired deadline marks the merged result as timeout."""
        problem = _problem(40, time_limit=1e-9)

        solution = decomposer.solve(problem, rng=np.random.default_rng(0))

        assert solution.status == SolutionStatus.TIMEOUT
        assert len(solution.assignment) == 40

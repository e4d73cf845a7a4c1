"""
Unit tests for problems module (minimal coverage with success/failure cases).
"""

import pytest
import numpy as np
from pydantic import ValidationError

# Import modules to test
from portfolio_engine.config import FormulationConfig
from portfolio_engine.problems.formulator import (
    ConstraintsInput,
    ObjectivesInput,
    OptimizationRequest,
    ProblemFormulator,
    ProblemValidationError,
    ProductInput,
    generate_products,
)
from portfolio_engine.problems.models import (
    Comparator,
    Constraint,
    ConstraintKind,
    ObjectiveKind,
    Problem,
    Solution,
    SolutionStatus,
    Variable,
    VariableDomain,
    VariableMetadata,
)


def _variable(var_id: str, upper: float = 5.0) -> Variable:
    return Variable(
        id=var_id,
        domain=VariableDomain(lower=0.0, upper=upper),
        unit_cost=10.0,
        expected_return=2.0,
        risk=0.1,
    )


class TestModels:
    """Test problem and solution data models."""

    def test_domain_aliases_success(self):
        """Test domain accepts min/max aliases and exposes its span."""
        domain = VariableDomain.model_validate({"min": 1.0, "max": 4.0, "step": 0.5})

        assert domain.lower == 1.0
        assert domain.upper == 4.0
        assert domain.span == 3.0
        assert domain.model_dump(by_alias=True)["min"] == 1.0

    def test_domain_bounds_failure(self):
        """Test domain with min > max is rejected."""
        with pytest.raises(ValidationError, match="must be <= max"):
            VariableDomain(lower=5.0, upper=1.0)

    def test_problem_success(self):
        """Test problem construction and lookup helpers."""
        problem = Problem(
            id="p1",
            constraints=(Constraint(id="budget", kind=ConstraintKind.BUDGET, bound=100.0),),
            variables=(_variable("a"), _variable("b")),
        )

        assert problem.variable_count == 2
        assert problem.constraint_count == 1
        assert problem.constraint("budget").comparator == Comparator.LESS_EQUAL
        assert problem.constraint("missing") is None

    def test_problem_failure(self):
        """Test problems without variables or with duplicate ids are rejected."""
        with pytest.raises(ValidationError, match="at least one variable"):
            Problem(id="empty", variables=())

        with pytest.raises(ValidationError, match="unique"):
            Problem(id="dup", variables=(_variable("a"), _variable("a")))

    def test_problem_is_frozen_failure(self):
        """Test problems cannot be mutated after construction."""
        problem = Problem(id="p1", variables=(_variable("a"),))

        with pytest.raises(ValidationError):
            problem.id = "other"

    def test_metadata_tags_failure(self):
        """Test the metadata map is bounded."""
        tags = {f"k{i}": "v" for i in range(17)}

        with pytest.raises(ValidationError, match="metadata tags"):
            VariableMetadata(tags=tags)

    def test_solution_serialization_success(self):
        """Test solutions serialize with camelCase keys."""
        solution = Solution(
            id="s1",
            problem_id="p1",
            algorithm_name="genetic",
            status=SolutionStatus.OPTIMAL,
            objective_value=12.5,
            constraint_violation=0.0,
            assignment={"a": 1.0},
        )

        dumped = solution.model_dump(by_alias=True)
        assert dumped["objectiveValue"] == 12.5
        assert dumped["algorithmName"] == "genetic"
        assert dumped["analysis"]["diversificationScore"] == 0.0

    def test_solution_violation_failure(self):
        """Test negative constraint violation is rejected."""
        with pytest.raises(ValidationError):
            Solution(
                id="s1",
                problem_id="p1",
                algorithm_name="genetic",
                status=SolutionStatus.OPTIMAL,
                objective_value=0.0,
                constraint_violation=-1.0,
                assignment={},
            )


class TestProblemFormulator:
    """Test ProblemFormulator class."""

    @pytest.fixture
    def request_payload(self):
        """Four-item request in the camelCase wire shape."""
        return {
            "products": [
                {"id": "A", "currentQuantity": 1, "maxQuantity": 3, "unitCost": 100,
                 "expectedReturn": 20, "riskScore": 0.2, "category": "toys"},
                {"id": "B", "currentQuantity": 0, "maxQuantity": 3, "unitCost": 120,
                 "expectedReturn": 30, "riskScore": 0.3, "category": "home"},
                {"id": "C", "currentQuantity": 0, "maxQuantity": 3, "unitCost": 90,
                 "expectedReturn": 15, "riskScore": 0.1},
                {"id": "D", "currentQuantity": 2, "maxQuantity": 3, "unitCost": 60,
                 "expectedReturn": 12, "riskScore": 0.4},
            ],
            "constraints": {
                "totalBudget": 300,
                "maxRiskLevel": 100,
                "categoryLimits": {"toys": 150, "home": 200},
            },
            "objectives": {"primary": "maximize_profit", "secondary": ["minimize_risk"], "riskTolerance": 0.8},
        }

    def test_formulate_success(self, request_payload):
        """Test a request becomes a problem with the expected constraints."""
        formulator = ProblemFormulator()
        request = OptimizationRequest.model_validate(request_payload)

        problem = formulator.formulate(request, problem_id="p1")

        assert problem.id == "p1"
        assert problem.objective_kind == ObjectiveKind.MAXIMIZE_PROFIT
        assert problem.variable_count == 4
        assert [c.id for c in problem.constraints] == ["budget", "max_risk", "category_0", "category_1"]
        assert problem.constraint("budget").bound == 300
        assert problem.constraint("budget").penalty_weight == 1000.0
        assert problem.constraint("max_risk").penalty_weight == 500.0
        assert problem.constraint("category_0").category == "toys"

        first = problem.variables[0]
        assert first.domain.lower == 0.0
        assert first.domain.upper == 3.0
        assert first.domain.discrete is True
        assert first.metadata.current_quantity == 1
        assert first.metadata.external_score == 50.0
        assert first.category == "toys"

    def test_formulate_seeded_id_success(self, request_payload):
        """Test generated problem ids are reproducible from a seed."""
        formulator = ProblemFormulator()
        request = OptimizationRequest.model_validate(request_payload)

        first = formulator.formulate(request, rng=np.random.default_rng(5))
        second = formulator.formulate(request, rng=np.random.default_rng(5))

        assert first.id == second.id
        assert first.id.startswith("portfolio_opt_")

    def test_formulate_config_success(self, request_payload):
        """Test formulation defaults come from the configuration."""
        formulator = ProblemFormulator(
            FormulationConfig(time_limit_seconds=12.0, budget_penalty=5.0, evaluate_category_limits=True)
        )
        request = OptimizationRequest.model_validate(request_payload)

        problem = formulator.formulate(request, problem_id="p1")

        assert problem.time_limit_seconds == 12.0
        assert problem.constraint("budget").penalty_weight == 5.0
        assert problem.evaluate_category_limits is True

    def test_formulate_empty_failure(self):
        """Test an empty product list is rejected before any solver runs."""
        formulator = ProblemFormulator()
        request = OptimizationRequest(
            products=[],
            constraints=ConstraintsInput(total_budget=100, max_risk_level=10),
        )

        with pytest.raises(ProblemValidationError, match="at least one product"):
            formulator.formulate(request)

    def test_formulate_budget_failure(self, request_payload):
        """Test non-positive budgets are rejected."""
        formulator = ProblemFormulator()
        request_payload["constraints"]["totalBudget"] = 0
        request = OptimizationRequest.model_validate(request_payload)

        with pytest.raises(ProblemValidationError, match="totalBudget must be positive"):
            formulator.formulate(request)

    def test_formulate_product_failure(self, request_payload):
        """Test malformed products are rejected."""
        formulator = ProblemFormulator()

        request_payload["products"][1]["id"] = "A"
        with pytest.raises(ProblemValidationError, match="Duplicate product id"):
            formulator.formulate(OptimizationRequest.model_validate(request_payload))

        request_payload["products"][1]["id"] = "B"
        request_payload["products"][2]["maxQuantity"] = -1
        with pytest.raises(ProblemValidationError, match="maxQuantity"):
            formulator.formulate(OptimizationRequest.model_validate(request_payload))

    def test_request_schema_failure(self):
        """Test unknown objectives fail schema validation."""
        with pytest.raises(ValidationError):
            ObjectivesInput(primary="maximize_happiness")


class TestGenerateProducts:
    """Test synthetic catalogue generation."""

    def test_generate_products_success(self):
        """Test catalogues are reproducible and well-formed."""
        first = generate_products(np.random.default_rng(1), count=25)
        second = generate_products(np.random.default_rng(1), count=25)

        assert len(first) == 25
        assert [p.model_dump() for p in first] == [p.model_dump() for p in second]
        assert all(isinstance(p, ProductInput) for p in first)
        assert all(p.current_quantity <= p.max_quantity for p in first)
        assert first[0].id == "item_000000"

    def test_generate_products_failure(self):
        """Test invalid parameters are rejected."""
        rng = np.random.default_rng(1)

        with pytest.raises(ValueError, match="count must be at least 1"):
            generate_products(rng, count=0)

        with pytest.raises(ValueError, match="cost_range"):
            generate_products(rng, count=5, cost_range=(10.0, 1.0))

"""
Problem Formulator: allocation requests → abstract optimization problems.

The formulator is the validation boundary of the engine. Requests arrive in
the camelCase JSON shape used by callers:

    {
        "products": [{"id", "currentQuantity", "maxQuantity", "unitCost",
                      "expectedReturn", "riskScore", "externalScore"?, "category"?}],
        "constraints": {"totalBudget", "maxRiskLevel", "categoryLimits"?, "minDiversification"?},
        "objectives": {"primary", "secondary"?, "riskTolerance"},
        "algorithm"?: "genetic" | "simulated_annealing" | ...
    }

and become a ``Problem`` with:
- one discrete variable per product, domain ``[0, maxQuantity]``
- a ``budget`` constraint (Σ quantity·unitCost <= totalBudget)
- a ``max_risk`` constraint (Σ quantity·riskScore <= maxRiskLevel)
- one ``category_{i}`` limit per entry of ``categoryLimits``

Empty product lists, non-positive budgets and malformed products are
rejected with ``ProblemValidationError`` before any solver runs.

Example Usage:
    >>> import numpy as np
    >>> formulator = ProblemFormulator()
    >>> products = generate_products(np.random.default_rng(42), count=20)
    >>> request = OptimizationRequest(
    ...     products=products,
    ...     constraints=ConstraintsInput(total_budget=5000, max_risk_level=400),
    ... )
    >>> problem = formulator.formulate(request, problem_id="demo")
    >>> problem.variable_count
    20
"""

from typing import Dict, List, Optional
import logging
import uuid

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from portfolio_engine.config import FormulationConfig
from portfolio_engine.problems.models import (
    Comparator,
    Constraint,
    ConstraintKind,
    ObjectiveKind,
    Problem,
    Variable,
    VariableDomain,
    VariableMetadata,
)


logger = logging.getLogger(__name__)


class ProblemValidationError(ValueError):
    """Raised when a request cannot be turned into a valid Problem."""
    pass


# =============================================================================
# Request schema
# =============================================================================

class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ProductInput(_RequestModel):
    """One candidate item with figures supplied by the upstream scoring service."""

    id: str
    current_quantity: float = 0.0
    max_quantity: float
    unit_cost: float
    expected_return: float
    risk_score: float
    external_score: Optional[float] = None
    category: Optional[str] = None
    title: Optional[str] = None


class ConstraintsInput(_RequestModel):
    total_budget: float
    max_risk_level: float
    category_limits: Optional[Dict[str, float]] = None
    min_diversification: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ObjectivesInput(_RequestModel):
    primary: ObjectiveKind = ObjectiveKind.MAXIMIZE_PROFIT
    secondary: List[str] = Field(default_factory=list)
    risk_tolerance: float = Field(default=0.6, ge=0.0, le=1.0)


class OptimizationRequest(_RequestModel):
    """Domain-level allocation request."""

    products: List[ProductInput]
    constraints: ConstraintsInput
    objectives: ObjectivesInput = Field(default_factory=ObjectivesInput)
    algorithm: Optional[str] = None
    time_limit_seconds: Optional[float] = Field(default=None, gt=0.0)


# =============================================================================
# Formulator
# =============================================================================

class ProblemFormulator:
    """
    Converts ``OptimizationRequest`` objects into ``Problem`` instances.

    Attributes:
        config: Defaults for deadlines, quality target and penalty weights
    """

    def __init__(self, config: Optional[FormulationConfig] = None):
        self.config = config or FormulationConfig()

    def validate(self, request: OptimizationRequest) -> None:
        """
        Reject requests no solver should see.

        Raises:
            ProblemValidationError: On empty product lists, non-positive
                budgets, negative risk bounds or malformed products
        """
        if not request.products:
            raise ProblemValidationError("Request must contain at least one product")

        if request.constraints.total_budget <= 0:
            raise ProblemValidationError(
                f"totalBudget must be positive, got {request.constraints.total_budget}"
            )

        if request.constraints.max_risk_level < 0:
            raise ProblemValidationError(
                f"maxRiskLevel must be non-negative, got {request.constraints.max_risk_level}"
            )

        seen = set()
        for product in request.products:
            if product.id in seen:
                raise ProblemValidationError(f"Duplicate product id '{product.id}'")
            seen.add(product.id)
            if product.max_quantity < 0:
                raise ProblemValidationError(f"Product '{product.id}': maxQuantity must be >= 0")
            if product.unit_cost < 0:
                raise ProblemValidationError(f"Product '{product.id}': unitCost must be >= 0")
            if product.current_quantity < 0:
                raise ProblemValidationError(f"Product '{product.id}': currentQuantity must be >= 0")

        for category, limit in (request.constraints.category_limits or {}).items():
            if limit < 0:
                raise ProblemValidationError(f"Category limit for '{category}' must be >= 0")

    def formulate(
        self,
        request: OptimizationRequest,
        problem_id: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> Problem:
        """
        Build the Problem for a request.

        Args:
            request: Validated request schema
            problem_id: Explicit id; otherwise derived from ``rng``
            rng: Random source for the id so seeded runs stay reproducible

        Raises:
            ProblemValidationError: If the request is invalid
        """
        self.validate(request)
        cfg = self.config

        if problem_id is None:
            rng = rng if rng is not None else np.random.default_rng()
            problem_id = f"portfolio_opt_{uuid.UUID(bytes=rng.bytes(16), version=4).hex[:12]}"

        budget = request.constraints.total_budget
        max_risk = request.constraints.max_risk_level

        constraints = [
            Constraint(
                id="budget",
                kind=ConstraintKind.BUDGET,
                bound=budget,
                comparator=Comparator.LESS_EQUAL,
                penalty_weight=cfg.budget_penalty,
                description=f"Total investment must not exceed {budget:,.2f}",
            ),
            Constraint(
                id="max_risk",
                kind=ConstraintKind.RISK,
                bound=max_risk,
                comparator=Comparator.LESS_EQUAL,
                penalty_weight=cfg.risk_penalty,
                description=f"Portfolio risk must not exceed {max_risk}",
            ),
        ]

        for index, (category, limit) in enumerate((request.constraints.category_limits or {}).items()):
            constraints.append(
                Constraint(
                    id=f"category_{index}",
                    kind=ConstraintKind.CATEGORY_LIMIT,
                    bound=limit,
                    comparator=Comparator.LESS_EQUAL,
                    penalty_weight=cfg.category_penalty,
                    description=f"{category} category allocation limit: {limit}",
                    category=category,
                )
            )

        try:
            variables = [self._variable(product) for product in request.products]
            problem = Problem(
                id=problem_id,
                objective_kind=request.objectives.primary,
                constraints=tuple(constraints),
                variables=tuple(variables),
                time_limit_seconds=request.time_limit_seconds or cfg.time_limit_seconds,
                quality_target=cfg.quality_target,
                evaluate_category_limits=cfg.evaluate_category_limits,
            )
        except ValidationError as e:
            raise ProblemValidationError(f"Invalid problem definition: {e}") from e

        logger.debug(f"[{problem_id}] Formulated {problem.variable_count} variables, "
                     f"{problem.constraint_count} constraints")
        return problem

    def _variable(self, product: ProductInput) -> Variable:
        return Variable(
            id=product.id,
            domain=VariableDomain(lower=0.0, upper=product.max_quantity, discrete=True),
            unit_cost=product.unit_cost,
            expected_return=product.expected_return,
            risk=product.risk_score,
            category=product.category,
            metadata=VariableMetadata(
                current_quantity=product.current_quantity,
                external_score=(
                    product.external_score
                    if product.external_score is not None
                    else self.config.default_external_score
                ),
                title=product.title or product.id,
            ),
        )


# =============================================================================
# Synthetic data
# =============================================================================

def generate_products(
    rng: np.random.Generator,
    count: int,
    cost_range: tuple = (500.0, 5000.0),
    margin_range: tuple = (0.05, 0.35),
    risk_range: tuple = (0.1, 1.0),
    max_quantity_range: tuple = (1, 20),
    categories: Optional[List[str]] = None,
) -> List[ProductInput]:
    """
    Generate a synthetic product catalogue for demos, benchmarks and tests.

    Expected return per unit is ``unit_cost * margin``; risk is sampled
    independently. Everything comes from ``rng`` so a seed reproduces the
    catalogue.

    Raises:
        ValueError: If parameters are invalid
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    if cost_range[0] <= 0 or cost_range[1] < cost_range[0]:
        raise ValueError("cost_range must be (min, max) with 0 < min <= max")
    if max_quantity_range[0] < 0 or max_quantity_range[1] < max_quantity_range[0]:
        raise ValueError("max_quantity_range must be (min, max) with 0 <= min <= max")

    categories = categories or ["electronics", "home", "toys", "books", "sports"]

    costs = rng.uniform(cost_range[0], cost_range[1], size=count)
    margins = rng.uniform(margin_range[0], margin_range[1], size=count)
    risks = rng.uniform(risk_range[0], risk_range[1], size=count)
    max_quantities = rng.integers(max_quantity_range[0], max_quantity_range[1] + 1, size=count)
    current = np.floor(rng.random(count) * (max_quantities + 1) * 0.5)
    scores = rng.uniform(0.0, 100.0, size=count)
    picks = rng.integers(0, len(categories), size=count)

    return [
        ProductInput(
            id=f"item_{i:06d}",
            current_quantity=float(current[i]),
            max_quantity=float(max_quantities[i]),
            unit_cost=round(float(costs[i]), 2),
            expected_return=round(float(costs[i] * margins[i]), 2),
            risk_score=round(float(risks[i]), 4),
            external_score=round(float(scores[i]), 1),
            category=categories[int(picks[i])],
        )
        for i in range(count)
    ]

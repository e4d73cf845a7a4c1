"""
Data model for constrained portfolio allocation.

A ``Problem`` is an immutable description of one optimization run: the
objective, the declarative constraints and the allocatable variables. Solvers
turn a Problem into a ``Solution`` which the analyzer then enriches with risk
metrics, diversification and recommended actions.

All models serialize with camelCase aliases (``objectiveValue``,
``algorithmName``, ...) while Python code uses snake_case attributes:

    >>> solution.model_dump(by_alias=True)["objectiveValue"]
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


MAX_METADATA_TAGS = 16


class ObjectiveKind(str, Enum):
    """Objective the solvers maximize."""
    MAXIMIZE_PROFIT = "maximize_profit"
    MINIMIZE_RISK = "minimize_risk"
    MAXIMIZE_SHARPE = "maximize_sharpe"


class ConstraintKind(str, Enum):
    """Quantity a constraint measures."""
    BUDGET = "budget"
    RISK = "risk"
    CATEGORY_LIMIT = "category_limit"
    CUSTOM = "custom"


class Comparator(str, Enum):
    LESS_EQUAL = "<="
    GREATER_EQUAL = ">="
    EQUAL = "=="


class SolutionStatus(str, Enum):
    OPTIMAL = "optimal"
    NEAR_OPTIMAL = "near_optimal"
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    TIMEOUT = "timeout"


class ActionType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"
    REALLOCATE = "reallocate"
    HEDGE = "hedge"


class ActionPriority(str, Enum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


# =============================================================================
# Problem side
# =============================================================================

class Constraint(_FrozenModel):
    """
    Declarative constraint scored by the penalty method.

    ``category`` names the category a ``category_limit`` constraint applies to.
    """

    id: str = Field(min_length=1)
    kind: ConstraintKind
    bound: float
    comparator: Comparator = Comparator.LESS_EQUAL
    penalty_weight: float = Field(default=1.0, ge=0.0)
    description: str = ""
    category: Optional[str] = None


class VariableDomain(_FrozenModel):
    """Closed interval ``[lower, upper]`` with an optional step."""

    lower: float = Field(alias="min")
    upper: float = Field(alias="max")
    step: Optional[float] = Field(default=None, gt=0.0)
    discrete: bool = True

    @model_validator(mode="after")
    def validate_bounds(self) -> "VariableDomain":
        """Ensure lower <= upper."""
        if self.lower > self.upper:
            raise ValueError(f"domain min ({self.lower}) must be <= max ({self.upper})")
        return self

    @property
    def span(self) -> float:
        return self.upper - self.lower


class VariableMetadata(_FrozenModel):
    """Typed per-item metadata carried through from the request."""

    current_quantity: float = Field(default=0.0, ge=0.0)
    external_score: float = 50.0
    title: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Dict[str, str]) -> Dict[str, str]:
        if len(v) > MAX_METADATA_TAGS:
            raise ValueError(f"at most {MAX_METADATA_TAGS} metadata tags allowed, got {len(v)}")
        return v


class Variable(_FrozenModel):
    """One allocatable item, e.g. a unit quantity of a product."""

    id: str = Field(min_length=1)
    domain: VariableDomain
    unit_cost: float
    expected_return: float
    risk: float
    category: Optional[str] = None
    metadata: VariableMetadata = Field(default_factory=VariableMetadata)


class Problem(_FrozenModel):
    """
    Immutable optimization problem owned by a single run.

    Attributes:
        evaluate_category_limits: When False, category-limit constraints are
            declared but contribute nothing to the violation sum.
    """

    id: str = Field(min_length=1)
    objective_kind: ObjectiveKind = ObjectiveKind.MAXIMIZE_PROFIT
    constraints: Tuple[Constraint, ...] = ()
    variables: Tuple[Variable, ...]
    time_limit_seconds: float = Field(default=300.0, gt=0.0)
    quality_target: float = Field(default=0.95, ge=0.0, le=1.0)
    evaluate_category_limits: bool = False

    @field_validator("variables")
    @classmethod
    def validate_variables(cls, v: Tuple[Variable, ...]) -> Tuple[Variable, ...]:
        if not v:
            raise ValueError("problem must declare at least one variable")
        ids = [var.id for var in v]
        if len(set(ids)) != len(ids):
            raise ValueError("variable ids must be unique")
        return v

    @property
    def variable_count(self) -> int:
        return len(self.variables)

    @property
    def constraint_count(self) -> int:
        return len(self.constraints)

    def constraint(self, constraint_id: str) -> Optional[Constraint]:
        """Look up a constraint by id."""
        for c in self.constraints:
            if c.id == constraint_id:
                return c
        return None


# =============================================================================
# Solution side
# =============================================================================

class PerformanceMetrics(_Model):
    convergence_rate: float = 0.0
    solution_quality: float = 0.0
    robustness: float = 0.0
    computational_efficiency: float = 0.0


class RiskMetrics(_Model):
    """Fixed-fraction heuristics derived from the objective value."""

    value_at_risk: float = 0.0
    expected_shortfall: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0


class ExpectedImpact(_Model):
    profit_change: float = 0.0
    risk_change: float = 0.0
    diversification_change: float = 0.0


class OptimizationAction(_Model):
    type: ActionType
    target: str
    quantity: float = Field(ge=0.0)
    priority: ActionPriority
    reasoning: str = ""
    expected_impact: ExpectedImpact = Field(default_factory=ExpectedImpact)


class SensitivityEntry(_Model):
    """Change in objective and violation for one extra unit of a variable."""

    variable_id: str
    marginal_objective: float
    marginal_violation: float


class SolutionAnalysis(_Model):
    risk_metrics: RiskMetrics = Field(default_factory=RiskMetrics)
    diversification_score: float = Field(default=0.0, ge=0.0, le=1.0)
    recommended_actions: List[OptimizationAction] = Field(default_factory=list)
    sensitivity_analysis: List[SensitivityEntry] = Field(default_factory=list)
    diversification_target_met: Optional[bool] = None


class Solution(_Model):
    """
    Result of one optimization run.

    Invariant: ``objective_value == objective(assignment) - constraint_violation``.
    """

    id: str
    problem_id: str
    algorithm_name: str
    status: SolutionStatus
    objective_value: float
    constraint_violation: float = Field(ge=0.0)
    execution_time_ms: float = Field(default=0.0, ge=0.0)
    iterations: int = Field(default=0, ge=0)
    assignment: Dict[str, float]
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    analysis: SolutionAnalysis = Field(default_factory=SolutionAnalysis)
    metadata: Dict[str, Any] = Field(default_factory=dict)

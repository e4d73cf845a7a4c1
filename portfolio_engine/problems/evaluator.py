"""
Constraint evaluator: objective, penalty and fitness of candidate assignments.

Two flavours are provided:

1. Mapping-based functions (``objective``, ``violation``, ``fitness``) that
   score a single ``{variable_id: value}`` assignment. These define the
   numbers reported on a Solution.
2. ``ProblemArrays``, a numpy view of a Problem that scores a whole
   population ``X`` of shape ``(P, n)`` at once. Solvers use it in their
   inner loops.

Penalty method
--------------
Every constraint measures a quantity (spend for budget, risk-weighted units
for risk) and contributes ``penalty_weight * shortfall`` where shortfall is
``max(0, measured - bound)`` for ``<=``, ``max(0, bound - measured)`` for
``>=`` and ``|measured - bound|`` for ``==``. Fitness is the objective minus
the summed penalties. Non-finite fitness is reported as ``-inf`` so that
ranking and selection keep working.

All functions are deterministic and side-effect free.
"""

import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import numpy as np

from portfolio_engine.problems.models import (
    Comparator,
    Constraint,
    ConstraintKind,
    ObjectiveKind,
    Problem,
)


_COMPARATOR_CODES = {
    Comparator.LESS_EQUAL: 0,
    Comparator.GREATER_EQUAL: 1,
    Comparator.EQUAL: 2,
}


# ============================================================================
# Scalar evaluation
# ============================================================================

def _measure(problem: Problem, constraint: Constraint, assignment: Mapping[str, float]) -> Optional[float]:
    """Measured quantity for a constraint, or None when it is not scored."""
    if constraint.kind == ConstraintKind.BUDGET:
        return sum(assignment.get(v.id, 0.0) * v.unit_cost for v in problem.variables)
    if constraint.kind == ConstraintKind.RISK:
        return sum(assignment.get(v.id, 0.0) * v.risk for v in problem.variables)
    if constraint.kind == ConstraintKind.CATEGORY_LIMIT:
        if not problem.evaluate_category_limits:
            return None
        return sum(
            assignment.get(v.id, 0.0) * v.unit_cost
            for v in problem.variables
            if v.category == constraint.category
        )
    return 0.0


def _shortfall(comparator: Comparator, measured: float, bound: float) -> float:
    if comparator == Comparator.LESS_EQUAL:
        return max(0.0, measured - bound)
    if comparator == Comparator.GREATER_EQUAL:
        return max(0.0, bound - measured)
    return abs(measured - bound)


def objective(problem: Problem, assignment: Mapping[str, float]) -> float:
    """
    Raw objective of an assignment (higher is better).

    - maximize_profit: sum of value * expected_return
    - minimize_risk: negated sum of value * risk
    - maximize_sharpe: profit / risk sum, 0 when the risk sum is not positive
    """
    profit = sum(assignment.get(v.id, 0.0) * v.expected_return for v in problem.variables)
    risk = sum(assignment.get(v.id, 0.0) * v.risk for v in problem.variables)

    if problem.objective_kind == ObjectiveKind.MINIMIZE_RISK:
        return -risk
    if problem.objective_kind == ObjectiveKind.MAXIMIZE_SHARPE:
        return profit / risk if risk > 0 else 0.0
    return profit


def violation(problem: Problem, assignment: Mapping[str, float]) -> float:
    """Summed weighted constraint shortfall; always >= 0."""
    total = 0.0
    for constraint in problem.constraints:
        measured = _measure(problem, constraint, assignment)
        if measured is None:
            continue
        total += _shortfall(constraint.comparator, measured, constraint.bound) * constraint.penalty_weight
    return total


def fitness(problem: Problem, assignment: Mapping[str, float]) -> float:
    """Penalized objective; ``-inf`` when the result is not finite."""
    try:
        value = objective(problem, assignment) - violation(problem, assignment)
    except OverflowError:
        return -math.inf
    return value if math.isfinite(value) else -math.inf


# ============================================================================
# Vectorised evaluation
# ============================================================================

@dataclass(frozen=True)
class ProblemArrays:
    """
    Column-aligned numpy arrays for a Problem.

    Attributes:
        ids: Variable ids in column order
        lower, upper: Domain bounds
        step: Domain step (NaN where the domain has none)
        discrete: Boolean mask of integer-valued variables
        unit: Smallest meaningful move per variable (step, 1 if discrete, else 1% of span)
        cost, ret, risk: Per-unit cost, expected return and risk
        coefficients: ``(m, n)`` matrix, row i measures constraint i
        constraint_ids, bounds, comparators, weights: Per scored constraint
    """

    problem: Problem
    ids: tuple
    lower: np.ndarray
    upper: np.ndarray
    step: np.ndarray
    discrete: np.ndarray
    unit: np.ndarray
    cost: np.ndarray
    ret: np.ndarray
    risk: np.ndarray
    coefficients: np.ndarray
    constraint_ids: tuple
    bounds: np.ndarray
    comparators: np.ndarray
    weights: np.ndarray

    @classmethod
    def from_problem(cls, problem: Problem) -> "ProblemArrays":
        variables = problem.variables
        lower = np.array([v.domain.lower for v in variables], dtype=float)
        upper = np.array([v.domain.upper for v in variables], dtype=float)
        step = np.array([v.domain.step if v.domain.step else np.nan for v in variables], dtype=float)
        discrete = np.array([v.domain.discrete for v in variables], dtype=bool)
        cost = np.array([v.unit_cost for v in variables], dtype=float)
        ret = np.array([v.expected_return for v in variables], dtype=float)
        risk = np.array([v.risk for v in variables], dtype=float)
        categories = [v.category for v in variables]

        unit = np.where(discrete, 1.0, np.maximum((upper - lower) * 0.01, 1e-9))
        unit = np.where(np.isnan(step), unit, step)

        rows, constraint_ids, bounds, comparators, weights = [], [], [], [], []
        for constraint in problem.constraints:
            if constraint.kind == ConstraintKind.BUDGET:
                row = cost
            elif constraint.kind == ConstraintKind.RISK:
                row = risk
            elif constraint.kind == ConstraintKind.CATEGORY_LIMIT:
                if not problem.evaluate_category_limits:
                    continue
                mask = np.array([c == constraint.category for c in categories], dtype=float)
                row = cost * mask
            else:
                row = np.zeros(len(variables))
            rows.append(row)
            constraint_ids.append(constraint.id)
            bounds.append(constraint.bound)
            comparators.append(_COMPARATOR_CODES[constraint.comparator])
            weights.append(constraint.penalty_weight)

        n = len(variables)
        return cls(
            problem=problem,
            ids=tuple(v.id for v in variables),
            lower=lower,
            upper=upper,
            step=step,
            discrete=discrete,
            unit=unit,
            cost=cost,
            ret=ret,
            risk=risk,
            coefficients=np.array(rows, dtype=float).reshape(len(rows), n),
            constraint_ids=tuple(constraint_ids),
            bounds=np.array(bounds, dtype=float),
            comparators=np.array(comparators, dtype=int),
            weights=np.array(weights, dtype=float),
        )

    @property
    def size(self) -> int:
        return len(self.ids)

    @property
    def span(self) -> np.ndarray:
        return self.upper - self.lower

    # ------------------------------------------------------------------
    # Domain handling
    # ------------------------------------------------------------------

    def repair(self, x: np.ndarray) -> np.ndarray:
        """
        Project values onto the domain: clamp, snap to step, round discrete.

        Works on a single vector ``(n,)`` or a population ``(P, n)`` and
        returns a new array.
        """
        x = np.clip(np.nan_to_num(x, nan=0.0), self.lower, self.upper)

        has_step = ~np.isnan(self.step)
        if has_step.any():
            step = np.where(has_step, self.step, 1.0)
            # Highest grid index that stays inside the domain
            top = np.floor((self.upper - self.lower) / step + 1e-9)
            snapped = self.lower + np.minimum(np.round((x - self.lower) / step), top) * step
            x = np.where(has_step, snapped, x)

        if self.discrete.any():
            lo = np.ceil(self.lower)
            hi = np.floor(self.upper)
            # Integer bounds exist only when ceil(lower) <= floor(upper)
            usable = self.discrete & (lo <= hi)
            x = np.where(usable, np.clip(np.round(x), lo, hi), x)

        return np.clip(x, self.lower, self.upper)

    def random_population(self, rng: np.random.Generator, count: int) -> np.ndarray:
        """Uniform random values per variable domain, repaired."""
        raw = rng.uniform(self.lower, self.upper, size=(count, self.size))
        return self.repair(raw)

    def to_vector(self, assignment: Mapping[str, float]) -> np.ndarray:
        return np.array([assignment.get(i, 0.0) for i in self.ids], dtype=float)

    def to_assignment(self, x: np.ndarray) -> Dict[str, float]:
        return {var_id: float(value) for var_id, value in zip(self.ids, x)}

    # ------------------------------------------------------------------
    # Batch scoring
    # ------------------------------------------------------------------

    def objective_batch(self, x: np.ndarray) -> np.ndarray:
        x = np.atleast_2d(x)
        kind = self.problem.objective_kind
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            if kind == ObjectiveKind.MINIMIZE_RISK:
                return -(x @ self.risk)
            profit = x @ self.ret
            if kind == ObjectiveKind.MAXIMIZE_SHARPE:
                risk = x @ self.risk
                return np.divide(profit, risk, out=np.zeros_like(profit), where=risk > 0)
            return profit

    def violation_batch(self, x: np.ndarray) -> np.ndarray:
        x = np.atleast_2d(x)
        if self.coefficients.shape[0] == 0:
            return np.zeros(x.shape[0])
        with np.errstate(over="ignore", invalid="ignore"):
            measured = x @ self.coefficients.T
            diff = measured - self.bounds
            shortfall = np.where(
                self.comparators == 0,
                np.maximum(diff, 0.0),
                np.where(self.comparators == 1, np.maximum(-diff, 0.0), np.abs(diff)),
            )
            return shortfall @ self.weights

    def fitness_batch(self, x: np.ndarray) -> np.ndarray:
        """Penalized objective per row; non-finite values become ``-inf``."""
        with np.errstate(over="ignore", invalid="ignore"):
            values = self.objective_batch(x) - self.violation_batch(x)
        return np.where(np.isfinite(values), values, -np.inf)

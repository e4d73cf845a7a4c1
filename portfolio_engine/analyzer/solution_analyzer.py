"""
Solution Analyzer for the Portfolio Optimization Engine.

Turns a raw Solution into something a caller can act on:

1. **Diversification**: share of variables with a positive allocation
2. **Recommended actions**: buy/sell moves from the current holding to the
   new allocation, ranked by priority then by absolute profit change
3. **Risk metrics**: fixed-fraction heuristics of the objective value
4. **Sensitivity**: change in objective and violation for one more unit of
   the largest allocations

The analyzer only fills ``solution.analysis``; it never changes the
assignment or the reported objective.

Example Usage
-------------
```python
from portfolio_engine.analyzer.solution_analyzer import SolutionAnalyzer

analyzer = SolutionAnalyzer()
solution = analyzer.analyze(solution, problem, min_diversification=0.3)

print(f"Diversification: {solution.analysis.diversification_score:.2%}")
for action in solution.analysis.recommended_actions:
    print(action.type.value, action.target, action.quantity)
```
"""

from typing import List, Optional
import logging

import numpy as np

from portfolio_engine.problems.evaluator import ProblemArrays
from portfolio_engine.problems.models import (
    ActionPriority,
    ActionType,
    ExpectedImpact,
    OptimizationAction,
    Problem,
    RiskMetrics,
    SensitivityEntry,
    Solution,
)


# Configure module logger
logger = logging.getLogger(__name__)


VALUE_AT_RISK_FRACTION = 0.05
EXPECTED_SHORTFALL_FRACTION = 0.08
MAX_DRAWDOWN_FRACTION = 0.12

_PRIORITY_ORDER = {
    ActionPriority.IMMEDIATE: 0,
    ActionPriority.HIGH: 1,
    ActionPriority.MEDIUM: 2,
    ActionPriority.LOW: 3,
}


class SolutionAnalyzer:
    """
    Post-processing of solver output.

    Attributes:
        max_actions: Number of recommended actions kept
        max_sensitivity: Number of allocated variables probed for sensitivity
        high_priority_ratio: Buy actions above ``ratio * current`` are high priority
        risk_change_factor: Scale from risk score to reported risk change
    """

    def __init__(
        self,
        max_actions: int = 10,
        max_sensitivity: int = 20,
        high_priority_ratio: float = 1.5,
        risk_change_factor: float = 0.01,
    ):
        if max_actions < 0 or max_sensitivity < 0:
            raise ValueError("max_actions and max_sensitivity must be non-negative")
        self.max_actions = max_actions
        self.max_sensitivity = max_sensitivity
        self.high_priority_ratio = high_priority_ratio
        self.risk_change_factor = risk_change_factor

    def analyze(
        self,
        solution: Solution,
        problem: Problem,
        min_diversification: Optional[float] = None,
    ) -> Solution:
        """
        Fill ``solution.analysis`` in place and return the solution.

        Args:
            solution: Solver output for ``problem``
            problem: Problem the solution was produced for
            min_diversification: Requested minimum share of allocated variables
        """
        analysis = solution.analysis
        analysis.diversification_score = self.diversification_score(solution, problem)
        analysis.recommended_actions = self.recommended_actions(solution, problem)
        analysis.risk_metrics = self.risk_metrics(solution)
        analysis.sensitivity_analysis = self.sensitivity(solution, problem)

        if min_diversification is not None:
            analysis.diversification_target_met = analysis.diversification_score >= min_diversification
            if not analysis.diversification_target_met:
                logger.warning(
                    f"[{problem.id}] Diversification {analysis.diversification_score:.2f} "
                    f"below requested {min_diversification:.2f}"
                )

        logger.debug(f"[{problem.id}] Analysis: {len(analysis.recommended_actions)} actions, "
                     f"diversification={analysis.diversification_score:.3f}")
        return solution

    # =========================================================================
    # Individual analyses
    # =========================================================================

    @staticmethod
    def diversification_score(solution: Solution, problem: Problem) -> float:
        """Fraction of variables with a positive allocation, in [0, 1]."""
        if problem.variable_count == 0:
            return 0.0
        allocated = sum(1 for v in problem.variables if solution.assignment.get(v.id, 0.0) > 0)
        return allocated / problem.variable_count

    def recommended_actions(self, solution: Solution, problem: Problem) -> List[OptimizationAction]:
        """
        Buy/sell moves from the current holding to the solved allocation.

        Variables whose allocation equals the current holding get no action.
        """
        n = problem.variable_count
        actions = []
        for variable in problem.variables:
            current = variable.metadata.current_quantity
            quantity = solution.assignment.get(variable.id, 0.0)
            if quantity == current:
                continue

            diff = quantity - current
            if current == 0 and quantity > 0:
                diversification_change = 1.0 / n
            elif current > 0 and quantity == 0:
                diversification_change = -1.0 / n
            else:
                diversification_change = 0.0

            actions.append(
                OptimizationAction(
                    type=ActionType.BUY if diff > 0 else ActionType.SELL,
                    target=variable.id,
                    quantity=abs(diff),
                    priority=(
                        ActionPriority.HIGH
                        if quantity > current * self.high_priority_ratio
                        else ActionPriority.MEDIUM
                    ),
                    reasoning=f"Optimize position from {current:g} to {quantity:g}",
                    expected_impact=ExpectedImpact(
                        profit_change=diff * variable.expected_return,
                        risk_change=diff * variable.risk * self.risk_change_factor,
                        diversification_change=diversification_change,
                    ),
                )
            )

        actions.sort(key=lambda a: (_PRIORITY_ORDER[a.priority], -abs(a.expected_impact.profit_change)))
        return actions[:self.max_actions]

    @staticmethod
    def risk_metrics(solution: Solution) -> RiskMetrics:
        value = solution.objective_value
        if not np.isfinite(value):
            return RiskMetrics()
        return RiskMetrics(
            value_at_risk=value * VALUE_AT_RISK_FRACTION,
            expected_shortfall=value * EXPECTED_SHORTFALL_FRACTION,
            max_drawdown=value * MAX_DRAWDOWN_FRACTION,
            sharpe_ratio=value / (solution.constraint_violation + 1.0) if value > 0 else 0.0,
        )

    def sensitivity(self, solution: Solution, problem: Problem) -> List[SensitivityEntry]:
        """
        Marginal objective and violation for one more unit of each of the
        largest allocations.
        """
        if self.max_sensitivity == 0:
            return []

        arrays = ProblemArrays.from_problem(problem)
        x = arrays.to_vector(solution.assignment)
        allocated = np.flatnonzero(x > 0)
        if allocated.size == 0:
            return []

        # Largest allocations first, ties broken by column order
        order = allocated[np.argsort(-x[allocated], kind="stable")][:self.max_sensitivity]

        probes = np.tile(x, (order.size, 1))
        probes[np.arange(order.size), order] += arrays.unit[order]

        base_objective = arrays.objective_batch(x)[0]
        base_violation = arrays.violation_batch(x)[0]
        objectives = arrays.objective_batch(probes)
        violations = arrays.violation_batch(probes)

        return [
            SensitivityEntry(
                variable_id=arrays.ids[i],
                marginal_objective=float(obj - base_objective),
                marginal_violation=float(viol - base_violation),
            )
            for i, obj, viol in zip(order, objectives, violations)
        ]

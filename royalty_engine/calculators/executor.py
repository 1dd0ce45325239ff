"""
Calculation Strategy Executor

Selects exactly one pricing strategy per rule, checked in order:
1. Formula-based (rule carries a formula definition)
2. Container-size-tiered
3. Volume-tiered (rule carries quantity tiers)
4. Flat percentage of gross amount

Rates are percentages except for the formula and container-size strategies,
which are per-unit.
"""

from ..formula import FormulaEvaluator
from ..models import CalculationRule, ConditionCheck, SaleTransaction, StrategyResult
from .container_size import ContainerSizeCalculator
from .formula import FormulaCalculator
from .percentage import PercentageCalculator
from .volume_tier import VolumeTierCalculator, parse_tiers

CONTAINER_SIZE_RULE = "container_size_tiered"


class StrategyExecutor:
    """Runs the pricing strategy that applies to a rule."""

    def __init__(self, formula_evaluator: FormulaEvaluator | None = None):
        self.formula = FormulaCalculator(formula_evaluator)
        self.container_size = ContainerSizeCalculator()
        self.volume_tier = VolumeTierCalculator()
        self.percentage = PercentageCalculator()

    def calculate(self, transaction: SaleTransaction, rule: CalculationRule) -> StrategyResult:
        if rule.formula_definition:
            return self.formula.calculate(transaction, rule)

        if rule.rule_type == CONTAINER_SIZE_RULE:
            result = self.container_size.calculate(transaction, rule)
            if not result.flagged:
                result.conditions_checked.extend(self._filter_conditions(transaction, rule))
            return result

        tiers = parse_tiers(rule)
        if tiers:
            result = self.volume_tier.calculate(transaction, rule, tiers)
        else:
            result = self.percentage.calculate(transaction, rule)

        # Filters first, then the tier check
        result.conditions_checked[:0] = self._filter_conditions(transaction, rule)
        return result

    def _filter_conditions(self, transaction: SaleTransaction, rule: CalculationRule) -> list[ConditionCheck]:
        """Record the category/territory filters that let the rule through."""
        conditions = []
        if rule.product_categories:
            conditions.append(ConditionCheck(
                condition="Product Category",
                expected=", ".join(rule.product_categories),
                actual=transaction.category or transaction.product_name,
                matched=True,
            ))
        if rule.territories:
            conditions.append(ConditionCheck(
                condition="Territory",
                expected=", ".join(rule.territories),
                actual=transaction.territory or "Not specified",
                matched=True,
            ))
        return conditions

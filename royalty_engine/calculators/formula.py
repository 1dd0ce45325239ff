"""
Formula Strategy

Delegates formula-based rules to the external formula evaluator.
"""

import logging
from decimal import Decimal

from ..exceptions import FormulaEvaluationError
from ..formula import FormulaEvaluator
from ..models import CalculationRule, ConditionCheck, SaleTransaction, StrategyResult, to_decimal
from .adjustments import determine_season, quantize_money

logger = logging.getLogger(__name__)


class FormulaCalculator:
    """Prices a sale by evaluating the rule's formula definition."""

    def __init__(self, evaluator: FormulaEvaluator | None = None):
        self.evaluator = evaluator

    def build_context(self, transaction: SaleTransaction) -> dict:
        """Values a formula may reference."""
        return {
            "units": transaction.quantity,
            "quantity": transaction.quantity,
            "season": determine_season(transaction.transaction_date),
            "territory": transaction.territory,
            "product": transaction.product_name,
            "category": transaction.category,
            "salesVolume": str(transaction.quantity),  # range-based lookups
            "grossAmount": transaction.gross_amount,
        }

    def calculate(self, transaction: SaleTransaction, rule: CalculationRule) -> StrategyResult:
        if self.evaluator is None:
            raise FormulaEvaluationError(rule.rule_name, "no formula evaluator configured")

        definition = rule.formula_definition or {}
        try:
            result = self.evaluator.evaluate(definition, self.build_context(transaction))
        except FormulaEvaluationError:
            raise
        except Exception as exc:
            raise FormulaEvaluationError(rule.rule_name, str(exc)) from exc

        value = to_decimal(result.value)
        if value is None:
            raise FormulaEvaluationError(rule.rule_name, f"non-numeric result {result.value!r}")

        fee = quantize_money(value)
        for line in result.debug_log:
            logger.debug(f"[{rule.rule_name}] {line}")

        # Display only
        if transaction.quantity:
            effective_rate = (value / transaction.quantity).quantize(Decimal("0.0001"))
        else:
            effective_rate = Decimal("0")

        description = definition.get("description") if isinstance(definition, dict) else None
        return StrategyResult(
            strategy_used="formula",
            effective_rate=effective_rate,
            base_rate=Decimal("0"),
            computed_fee=fee,
            explanation=f"Formula: {description or rule.rule_name} = ${fee:,.2f}",
            conditions_checked=[
                ConditionCheck(
                    condition="Formula Evaluation",
                    expected=description or "Custom formula",
                    actual="Formula executed",
                    matched=True,
                )
            ],
            debug_log=list(result.debug_log),
        )

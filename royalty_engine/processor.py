"""
Fee Processor - Calculation Orchestrator

Coordinates the fee calculation pipeline through discrete, testable steps.
Everything here is in-memory: rules, blueprints and the calculation approach
are passed in, never looked up mid-run.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict

from .calculators import StrategyExecutor
from .exceptions import FeeExceedsSaleAmountError
from .formula import FormulaEvaluator
from .matcher import RuleMatcher
from .models import (
    Blueprint,
    BreakdownItem,
    CalculationApproach,
    CalculationInput,
    CalculationResult,
    CalculationRule,
    SaleTransaction,
)
from .output import AuditBreakdownBuilder, result_to_dict
from .validators import InputValidator

logger = logging.getLogger(__name__)

MINIMUM_GUARANTEE = "minimum_guarantee"

# Rule types priced per transaction
PRICEABLE_RULE_TYPES = frozenset({
    "tiered", "tiered_pricing", "formula_based", "percentage", "cap",
    "fixed_fee", "fixed_price", "variable_price", "per_seat", "per_unit",
    "per_time_period", "volume_discount", "license_scope", "usage_based",
    "container_size_tiered",
})

# 1% tolerance for rounding
FEE_TOLERANCE = Decimal("1.01")

BLUEPRINT_SUFFIX = " [via Blueprint]"


class FeeProcessor:
    """
    Main orchestrator for fee calculation.

    Implements a clear pipeline pattern:
    1. Validate Input
    2. Split priceable rules from the minimum guarantee
    3. Match each transaction (blueprint first, then raw rules, as the approach allows)
    4. Execute the pricing strategy
    5. Enforce the fee <= gross amount invariant
    6. Build the audit breakdown
    7. Apply the minimum guarantee floor
    """

    def __init__(self, formula_evaluator: FormulaEvaluator | None = None):
        self.validator = InputValidator()
        self.matcher = RuleMatcher()
        self.executor = StrategyExecutor(formula_evaluator)
        self.audit_builder = AuditBreakdownBuilder()

    def process(self, input_data: CalculationInput) -> CalculationResult:
        """
        Calculate fees for a batch of transactions.

        Args:
            input_data: CalculationInput with rules, blueprints and transactions

        Returns:
            CalculationResult with per-transaction breakdown and totals

        Raises:
            FeeExceedsSaleAmountError: a computed fee exceeds its sale amount
        """
        # Step 1: Validate
        self.validator.validate(input_data)

        # Step 2: Split rules
        rules, minimum_guarantee = self.split_rules(input_data.rules)
        blueprints = self.usable_blueprints(input_data.blueprints)

        logger.info(
            f"Calculating fees for contract {input_data.contract_id}: "
            f"{len(input_data.transactions)} transactions, {len(rules)} rules, "
            f"{len(blueprints)} blueprints, approach {input_data.approach.value}"
        )

        # Steps 3-6: Price each transaction
        breakdown = []
        rules_applied = []
        unmatched = []
        for transaction in input_data.transactions:
            priced = self.price_transaction(transaction, rules, blueprints, input_data.approach)
            if priced is None:
                unmatched.append(transaction.id)
                continue
            item, applied_name = priced
            breakdown.append(item)
            if applied_name not in rules_applied:
                rules_applied.append(applied_name)

        # Step 7: Minimum guarantee
        return self.summarize(breakdown, rules_applied, unmatched, minimum_guarantee)

    def split_rules(self, rules: list[CalculationRule]) -> tuple[list[CalculationRule], Decimal | None]:
        """Active priceable rules, and the floor from the first minimum-guarantee rule."""
        active = [r for r in rules if r.is_active]
        priceable = [r for r in active if r.rule_type in PRICEABLE_RULE_TYPES]

        minimum_guarantee = None
        for rule in active:
            if rule.rule_type == MINIMUM_GUARANTEE and rule.minimum_guarantee:
                minimum_guarantee = rule.minimum_guarantee
                break

        return priceable, minimum_guarantee

    def usable_blueprints(self, blueprints: list[Blueprint]) -> list[Blueprint]:
        return [b for b in blueprints if b.rule.is_active and b.rule.rule_type in PRICEABLE_RULE_TYPES]

    def price_transaction(
        self,
        transaction: SaleTransaction,
        rules: list[CalculationRule],
        blueprints: list[Blueprint],
        approach: CalculationApproach,
    ) -> tuple[BreakdownItem, str] | None:
        """
        Price one transaction.

        Returns the breakdown item and the name to report in rules_applied,
        or None when nothing matched.
        """
        decision = None
        if approach.uses_blueprints and blueprints:
            decision = self.matcher.find_matching_blueprint(transaction, blueprints)
        if decision is None and approach.allows_raw_rules:
            decision = self.matcher.find_matching_rule(transaction, rules)

        if decision is None:
            logger.warning(
                f"No matching rule for sale {transaction.id}: {transaction.product_name} ({transaction.category})"
            )
            return None

        rule = decision.rule
        result = self.executor.calculate(transaction, rule)

        blueprint = decision.blueprint
        if blueprint is not None and blueprint.dual_terminology_map:
            result.explanation += f" [ERP: {json.dumps(blueprint.erp_field_bindings)}]"

        if result.computed_fee > transaction.gross_amount * FEE_TOLERANCE:
            error = FeeExceedsSaleAmountError(
                rule_name=rule.rule_name,
                transaction_id=transaction.id,
                product_name=transaction.product_name,
                computed_fee=result.computed_fee,
                gross_amount=transaction.gross_amount,
            )
            logger.error(str(error))
            raise error

        item = self.audit_builder.build(transaction, rule, result, result.conditions_checked, decision)
        applied_name = rule.rule_name + (BLUEPRINT_SUFFIX if blueprint is not None else "")
        return item, applied_name

    def summarize(
        self,
        breakdown: list[BreakdownItem],
        rules_applied: list[str],
        unmatched: list[str],
        minimum_guarantee: Decimal | None,
    ) -> CalculationResult:
        """Total the breakdown and apply the minimum guarantee floor."""
        total_fee = sum((item.computed_fee for item in breakdown), Decimal("0.00"))
        final_fee = max(total_fee, minimum_guarantee) if minimum_guarantee else total_fee

        logger.info(f"Calculated fee: ${total_fee:,.2f}")
        if minimum_guarantee:
            logger.info(f"Minimum guarantee: ${minimum_guarantee:,.2f}, final fee: ${final_fee:,.2f}")
        if unmatched:
            logger.warning(f"{len(unmatched)} transaction(s) matched no rule and were excluded from totals")

        return CalculationResult(
            total_fee=total_fee,
            breakdown=breakdown,
            minimum_guarantee=minimum_guarantee,
            final_fee=final_fee,
            rules_applied=rules_applied,
            unmatched_transactions=unmatched,
        )

    def process_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Calculate fees from raw dictionary input.

        Convenience method for API usage.
        """
        input_data = CalculationInput.from_dict(data)
        result = self.process(input_data)
        return result_to_dict(result)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def calculate_fees_from_dict(input_data: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate fees from a Python dict and return a Python dict."""
    processor = FeeProcessor()
    return processor.process_from_dict(input_data)


def calculate_fees_from_json(json_input: str) -> str:
    """
    Calculate fees from JSON string input and return JSON string output.
    Errors are reported in the response body.
    """
    try:
        input_data = json.loads(json_input)
        processor = FeeProcessor()
        result = processor.process_from_dict(input_data)
        return json.dumps(result, indent=2)

    except FeeExceedsSaleAmountError as e:
        error_response = {
            "error": str(e),
            "status": "fee_exceeds_sale_amount",
            "rule_name": e.rule_name,
            "transaction_id": e.transaction_id,
        }
        return json.dumps(error_response, indent=2)

    except ValueError as e:
        error_response = {"error": str(e), "status": "validation_failed"}
        return json.dumps(error_response, indent=2)

    except Exception as e:
        logger.error(f"Fee calculation failed: {e}", exc_info=True)
        error_response = {"error": str(e), "status": "failed"}
        return json.dumps(error_response, indent=2)

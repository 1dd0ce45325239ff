"""
Input Validation for the Royalty Engine

Validates calculation input before any rule is matched.
Raises ValueError with clear messages for any constraint violations.
"""

from .models import CalculationInput, CalculationRule, SaleTransaction


class InputValidator:
    """Validates calculation input according to business rules."""

    def validate(self, input_data: CalculationInput) -> None:
        """
        Run all validations. Raises ValueError if any check fails.
        """
        self.validate_rules(input_data.rules)
        for blueprint in input_data.blueprints:
            if not blueprint.name:
                raise ValueError("blueprint name is required")
            self._validate_rule(blueprint.rule)
        self.validate_transactions(input_data.transactions)

    def validate_rules(self, rules: list[CalculationRule]) -> None:
        for rule in rules:
            self._validate_rule(rule)

    def validate_transactions(self, transactions: list[SaleTransaction]) -> None:
        seen = set()
        for transaction in transactions:
            self._validate_transaction(transaction)
            if transaction.id in seen:
                raise ValueError(f"Duplicate transaction id: {transaction.id}")
            seen.add(transaction.id)

    def _validate_rule(self, rule: CalculationRule) -> None:
        """Validate rule-level constraints."""
        if not rule.rule_name.strip():
            raise ValueError("rule_name is required for every rule")

        if rule.base_rate < 0:
            raise ValueError(f"base_rate cannot be negative for rule {rule.rule_name}, got: {rule.base_rate}")

        if rule.minimum_guarantee is not None and rule.minimum_guarantee < 0:
            raise ValueError(
                f"minimum_guarantee cannot be negative for rule {rule.rule_name}, got: {rule.minimum_guarantee}"
            )

        if rule.formula_definition is not None and not isinstance(rule.formula_definition, dict):
            raise ValueError(f"formula_definition must be an object for rule {rule.rule_name}")

    def _validate_transaction(self, transaction: SaleTransaction) -> None:
        """Validate transaction-level constraints."""
        if not transaction.id:
            raise ValueError(f"Transaction id is required (product: {transaction.product_name or 'unknown'})")

        if transaction.quantity < 0:
            raise ValueError(f"quantity cannot be negative for transaction {transaction.id}, got: {transaction.quantity}")

        if transaction.gross_amount < 0:
            raise ValueError(
                f"gross_amount cannot be negative for transaction {transaction.id}, got: {transaction.gross_amount}"
            )

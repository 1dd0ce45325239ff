"""
Exceptions for the Royalty Engine

Each error subclasses the built-in the entry points already handle
(ValueError for bad input or configuration, LookupError for missing records)
and carries the identifiers needed to attribute it.
"""

from decimal import Decimal


class ContractNotFoundError(LookupError):
    """The contract does not exist."""

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract not found: {contract_id}")


class MissingCompanyError(ValueError):
    """The contract has no owning company."""

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} has no company association")


class CalculationNotFoundError(LookupError):
    """The calculation run does not exist."""

    def __init__(self, calculation_id: str):
        self.calculation_id = calculation_id
        super().__init__(f"Calculation not found: {calculation_id}")


class FeeExceedsSaleAmountError(ValueError):
    """A computed fee is larger than the sale it was computed from.

    Raised instead of capping: the cause is a wrong rate, tier or formula
    that has to be corrected on the rule.
    """

    def __init__(self, rule_name: str, transaction_id: str, product_name: str,
                 computed_fee: Decimal, gross_amount: Decimal):
        self.rule_name = rule_name
        self.transaction_id = transaction_id
        self.product_name = product_name
        self.computed_fee = computed_fee
        self.gross_amount = gross_amount
        super().__init__(
            f"Fee (${computed_fee:,.2f}) exceeds sale amount (${gross_amount:,.2f}) "
            f"for transaction {transaction_id} ({product_name}). Rule: {rule_name}. "
            f"This indicates incorrect tier rates or formula structure."
        )


class FormulaEvaluationError(ValueError):
    """A formula-based rule could not be evaluated."""

    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        super().__init__(f"Formula evaluation failed for rule {rule_name}: {reason}")

"""
Fee Calculation Service

Storage-backed entry to the engine: loads a contract's settings, rules and
latest blueprints, prices the transactions in bounded chunks, and persists
calculation runs with their structured line items.
"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from .exceptions import ContractNotFoundError, MissingCompanyError
from .formula import FormulaEvaluator
from .models import CalculationResult, SaleTransaction
from .output import breakdown_to_dict
from .processor import FeeProcessor
from .reporting import CalculationReportService
from .storage.models import FeeCalculationRow
from .storage.repository import ContractRepository

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500


class FeeCalculationService:
    """Calculates and records fees for stored contracts."""

    def __init__(self, session: Session, formula_evaluator: FormulaEvaluator | None = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got: {chunk_size}")
        self.session = session
        self.repository = ContractRepository(session)
        self.processor = FeeProcessor(formula_evaluator)
        self.chunk_size = chunk_size

    def calculate_fees(self, contract_id: str, transactions: list[SaleTransaction]) -> CalculationResult:
        """
        Price a contract's sales.

        The organization's calculation approach is read once here and passed
        down; blueprints are only loaded when the approach uses them.

        Raises:
            ContractNotFoundError: the contract does not exist
            MissingCompanyError: the contract has no company
            FeeExceedsSaleAmountError: a computed fee exceeds its sale amount
        """
        contract = self.repository.get_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        if not contract.company_id:
            raise MissingCompanyError(contract_id)

        approach = self.repository.get_calculation_approach(contract.company_id)
        all_rules = self.repository.get_active_rules(contract_id)
        blueprints = self.repository.get_blueprints(contract_id) if approach.uses_blueprints else []

        validator = self.processor.validator
        validator.validate_rules(all_rules)
        validator.validate_transactions(transactions)

        rules, minimum_guarantee = self.processor.split_rules(all_rules)
        blueprints = self.processor.usable_blueprints(blueprints)
        logger.info(
            f"Calculating fees for contract {contract_id} ({approach.value}): "
            f"{len(transactions)} transactions, {len(rules)} rules, {len(blueprints)} blueprints"
        )

        breakdown = []
        rules_applied = []
        unmatched = []
        for start in range(0, len(transactions), self.chunk_size):
            chunk = transactions[start:start + self.chunk_size]
            logger.debug(f"Pricing transactions {start + 1}-{start + len(chunk)} of {len(transactions)}")
            for transaction in chunk:
                priced = self.processor.price_transaction(transaction, rules, blueprints, approach)
                if priced is None:
                    unmatched.append(transaction.id)
                    continue
                item, applied_name = priced
                breakdown.append(item)
                if applied_name not in rules_applied:
                    rules_applied.append(applied_name)

        return self.processor.summarize(breakdown, rules_applied, unmatched, minimum_guarantee)

    def save_calculation(self, contract_id: str, result: CalculationResult, name: str | None = None) -> str:
        """
        Record a calculation run: the run row, its JSON breakdown and its
        structured line items. Returns the run id; the caller commits.
        """
        contract = self.repository.get_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)

        breakdown = [breakdown_to_dict(item) for item in result.breakdown]
        row = FeeCalculationRow(
            contract_id=contract_id,
            company_id=contract.company_id,
            name=name,
            status="completed",
            calculation_approach=self.repository.get_calculation_approach(contract.company_id).value,
            total_sales_amount=sum((item.transaction.gross_amount for item in result.breakdown), Decimal("0")),
            total_fee=result.total_fee,
            minimum_guarantee=result.minimum_guarantee,
            final_fee=result.final_fee,
            transaction_count=len(result.breakdown),
            breakdown=breakdown,
            rules_applied=list(result.rules_applied),
        )
        self.session.add(row)
        self.session.flush()

        CalculationReportService(self.session).populate_line_items_from_calculation(row.id, contract_id, breakdown)
        logger.info(f"Saved calculation {row.id} for contract {contract_id} ({len(breakdown)} line items)")
        return row.id

    def calculate_and_save(self, contract_id: str, transactions: list[SaleTransaction],
                           name: str | None = None) -> tuple[str, CalculationResult]:
        result = self.calculate_fees(contract_id, transactions)
        return self.save_calculation(contract_id, result, name=name), result

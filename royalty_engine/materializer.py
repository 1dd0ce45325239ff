"""
Blueprint Materializer

Creates executable calculation blueprints by merging:
1. Calculation rules (calculation logic)
2. Confirmed term-to-field mappings (data bindings)

Each materialization replaces the contract's blueprints with a new
generation inside a single transaction.
"""

import logging
import threading
import weakref

from sqlalchemy.orm import Session

from .dimensions import DimensionExtractor, terms_match
from .exceptions import ContractNotFoundError, MissingCompanyError
from .models import (
    Blueprint,
    CalculationApproach,
    CalculationRule,
    MaterializationResult,
    MaterializationSummary,
    TermMapping,
)
from .storage.repository import ContractRepository

logger = logging.getLogger(__name__)

DEFAULT_BLUEPRINT_PRIORITY = 10

_locks_guard = threading.Lock()
# Entries disappear once no caller holds the lock
_contract_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def contract_lock(contract_id: str) -> threading.Lock:
    """In-process lock serializing materializations of one contract."""
    with _locks_guard:
        lock = _contract_locks.get(contract_id)
        if lock is None:
            lock = threading.Lock()
            _contract_locks[contract_id] = lock
        return lock


def find_mapping(value: str, mappings: list[TermMapping]) -> TermMapping | None:
    """First confirmed mapping with a field name whose term or value matches."""
    for mapping in mappings:
        if not mapping.erp_field_name:
            continue
        if terms_match(mapping.original_term, value) or terms_match(mapping.original_value, value):
            return mapping
    return None


class BlueprintMaterializer:
    """Materializes and looks up calculation blueprints for a contract."""

    def __init__(self, session: Session):
        self.session = session
        self.repository = ContractRepository(session)
        self.extractor = DimensionExtractor()

    def get_calculation_approach(self, company_id: str | None) -> CalculationApproach:
        return self.repository.get_calculation_approach(company_id)

    def is_erp_calculation_enabled(self, company_id: str | None) -> bool:
        return self.get_calculation_approach(company_id).uses_blueprints

    def materialize_for_contract(self, contract_id: str) -> MaterializationSummary:
        """
        Materialize blueprints for all active rules of a contract.

        Commits on success and rolls back on failure. Concurrent calls for
        the same contract are serialized.

        Raises:
            ContractNotFoundError: the contract does not exist
            MissingCompanyError: the contract has no company
        """
        logger.info(f"Starting materialization for contract {contract_id}")

        with contract_lock(contract_id):
            try:
                summary = self._materialize(contract_id)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"Created {summary.blueprints_created} blueprints for contract {contract_id} "
            f"({summary.fully_mapped} fully mapped, {summary.partially_mapped} partially mapped)"
        )
        return summary

    def _materialize(self, contract_id: str) -> MaterializationSummary:
        contract = self.repository.get_contract(contract_id, for_update=True)
        if contract is None:
            raise ContractNotFoundError(contract_id)

        company_id = contract.company_id
        if not company_id:
            raise MissingCompanyError(contract_id)

        if not self.is_erp_calculation_enabled(company_id):
            logger.info(f"Blueprint calculation not enabled for company {company_id}, skipping")
            return MaterializationSummary(contract_id=contract_id)

        rules = self.repository.get_active_rules(contract_id)
        mappings = self.repository.get_confirmed_mappings(contract_id)
        rule_set_id = self.repository.get_active_rule_set_id(company_id)
        logger.info(f"Found {len(rules)} active rules and {len(mappings)} confirmed mappings")

        blueprints = [
            self.build_blueprint(rule, mappings, position, erp_rule_set_id=rule_set_id)
            for position, rule in enumerate(rules)
        ]
        generation = self.repository.replace_blueprints(contract_id, company_id, blueprints)

        results = [
            MaterializationResult(
                blueprint_id=b.id,
                rule_name=b.name,
                rule_type=b.rule_type,
                is_fully_mapped=b.is_fully_mapped,
                unmapped_fields=list(b.unmapped_fields),
                dimension_count=len(b.dimensions),
            )
            for b in blueprints
        ]
        return MaterializationSummary(
            contract_id=contract_id,
            blueprints_created=len(results),
            fully_mapped=sum(1 for r in results if r.is_fully_mapped),
            partially_mapped=sum(1 for r in results if not r.is_fully_mapped and r.dimension_count > 0),
            generation=generation,
            results=results,
        )

    def build_blueprint(
        self,
        rule: CalculationRule,
        mappings: list[TermMapping],
        position: int = 0,
        erp_rule_set_id: str | None = None,
    ) -> Blueprint:
        """Bind each of the rule's dimensions to a confirmed mapping where one matches."""
        dimensions = self.extractor.extract(rule)
        bindings = {}
        dual_terminology = {}
        unmapped = []

        for dimension in dimensions:
            mapping = find_mapping(dimension.contract_term, mappings)
            if mapping is None:
                unmapped.append(f"{dimension.dimension_type}: {dimension.contract_term}")
                continue
            dimension.is_mapped = True
            dimension.erp_field_name = mapping.erp_field_name
            dimension.mapping_id = mapping.id
            dimension.confidence = mapping.confidence
            bindings[dimension.dimension_type] = mapping.erp_field_name
            dual_terminology[dimension.contract_term] = f"{dimension.contract_term} (ERP: {mapping.erp_field_name})"

        blueprint = Blueprint(
            name=rule.rule_name,
            rule_type=rule.rule_type,
            rule=rule,
            contract_id=rule.contract_id,
            rule_id=rule.id,
            erp_rule_set_id=erp_rule_set_id,
            dimensions=dimensions,
            erp_field_bindings=bindings,
            dual_terminology_map=dual_terminology,
            priority=rule.priority if rule.priority is not None else DEFAULT_BLUEPRINT_PRIORITY,
            position=position,
            is_fully_mapped=bool(dimensions) and not unmapped,
            unmapped_fields=unmapped,
        )
        logger.debug(
            f"Blueprint '{rule.rule_name}': {len(dimensions)} dimensions, "
            f"{'fully' if blueprint.is_fully_mapped else 'partially'} mapped"
        )
        return blueprint

    def get_blueprints_for_contract(self, contract_id: str) -> list[Blueprint]:
        """Latest-generation blueprints in matching order."""
        return self.repository.get_blueprints(contract_id)

    def get_blueprint_with_dimensions(self, blueprint_id: str) -> Blueprint | None:
        return self.repository.get_blueprint(blueprint_id)

    def on_mappings_confirmed(self, contract_id: str) -> MaterializationSummary:
        """Re-materialization trigger for the mapping confirmation workflow."""
        logger.info(f"Mappings confirmed for contract {contract_id}, re-materializing blueprints")
        return self.materialize_for_contract(contract_id)

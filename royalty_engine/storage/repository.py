"""
Repository for engine data.

Loads rules, mappings, settings and blueprints as domain models and writes
blueprint generations. Takes a session; the caller owns the transaction.
"""

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..models import (
    Blueprint,
    BlueprintDimension,
    CalculationApproach,
    CalculationRule,
    TermMapping,
)
from .models import (
    BlueprintDimensionRow,
    BlueprintRow,
    CalculationRuleRow,
    ContractRow,
    MappingRuleSetRow,
    OrgCalculationSettingsRow,
    TermMappingRow,
    VendorRow,
)

CONFIRMED = "confirmed"


def rule_from_row(row: CalculationRuleRow) -> CalculationRule:
    return CalculationRule.from_dict({
        "id": row.id,
        "contract_id": row.contract_id,
        "rule_name": row.rule_name,
        "rule_type": row.rule_type,
        "description": row.description,
        "base_rate": row.base_rate,
        "volume_tiers": row.volume_tiers or [],
        "product_categories": row.product_categories or [],
        "territories": row.territories or [],
        "container_sizes": row.container_sizes or [],
        "seasonal_adjustments": row.seasonal_adjustments or {},
        "territory_premiums": row.territory_premiums or {},
        "formula_definition": row.formula_definition,
        "calculation_formula": row.calculation_formula,
        "minimum_guarantee": row.minimum_guarantee,
        "priority": row.priority,
        "is_active": row.is_active,
        "confidence": row.confidence,
        "source_text": row.source_text,
    })


def blueprint_from_row(row: BlueprintRow) -> Blueprint:
    logic = dict(row.calculation_logic or {})
    logic.setdefault("rule_name", row.name)
    logic.setdefault("rule_type", row.rule_type)
    return Blueprint(
        id=row.id,
        contract_id=row.contract_id,
        rule_id=row.rule_id,
        erp_rule_set_id=row.erp_rule_set_id,
        name=row.name,
        rule_type=row.rule_type,
        rule=CalculationRule.from_dict(logic),
        dimensions=[
            BlueprintDimension(
                dimension_type=d.dimension_type,
                contract_term=d.contract_term,
                match_value=d.match_value,
                erp_field_name=d.erp_field_name,
                mapping_id=d.mapping_id,
                is_mapped=d.is_mapped,
                confidence=d.confidence,
            )
            for d in row.dimensions
        ],
        erp_field_bindings=dict(row.erp_field_bindings or {}),
        dual_terminology_map=dict(row.dual_terminology_map or {}),
        priority=row.priority,
        position=row.position,
        generation=row.generation,
        is_fully_mapped=row.is_fully_mapped,
        unmapped_fields=list(row.unmapped_fields or []),
    )


class ContractRepository:
    """Read and write access to a contract's engine data."""

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # CONTRACT / SETTINGS
    # =========================================================================

    def get_contract(self, contract_id: str, for_update: bool = False) -> ContractRow | None:
        """Load a contract row, optionally locking it (no-op on SQLite)."""
        stmt = select(ContractRow).where(ContractRow.id == contract_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get_calculation_approach(self, company_id: str | None) -> CalculationApproach:
        """Organization approach; manual when the company has no settings."""
        if not company_id:
            return CalculationApproach.MANUAL
        approach = self.session.execute(
            select(OrgCalculationSettingsRow.calculation_approach)
            .where(OrgCalculationSettingsRow.company_id == company_id)
        ).scalar_one_or_none()
        return CalculationApproach.from_value(approach)

    def get_active_rule_set_id(self, company_id: str) -> str | None:
        return self.session.execute(
            select(MappingRuleSetRow.id)
            .where(MappingRuleSetRow.company_id == company_id, MappingRuleSetRow.is_active.is_(True))
            .order_by(MappingRuleSetRow.name, MappingRuleSetRow.id)
            .limit(1)
        ).scalar_one_or_none()

    # =========================================================================
    # RULES / MAPPINGS
    # =========================================================================

    def get_active_rules(self, contract_id: str) -> list[CalculationRule]:
        """Active rules in declaration order."""
        rows = self.session.execute(
            select(CalculationRuleRow)
            .where(CalculationRuleRow.contract_id == contract_id, CalculationRuleRow.is_active.is_(True))
            .order_by(CalculationRuleRow.position, CalculationRuleRow.id)
        ).scalars().all()
        return [rule_from_row(row) for row in rows]

    def get_confirmed_mappings(self, contract_id: str) -> list[TermMapping]:
        rows = self.session.execute(
            select(TermMappingRow)
            .where(TermMappingRow.contract_id == contract_id, TermMappingRow.status == CONFIRMED)
            .order_by(TermMappingRow.created_at, TermMappingRow.id)
        ).scalars().all()
        return [
            TermMapping(
                id=row.id,
                original_term=row.original_term,
                original_value=row.original_value,
                erp_field_name=row.erp_field_name,
                erp_entity_name=row.erp_entity_name,
                confidence=row.confidence,
            )
            for row in rows
        ]

    def get_active_vendor_names(self, company_id: str) -> list[str]:
        """Distinct active vendor names, alphabetical."""
        return list(self.session.execute(
            select(VendorRow.vendor_name)
            .where(VendorRow.company_id == company_id, VendorRow.vendor_status == "Active")
            .distinct()
            .order_by(VendorRow.vendor_name)
        ).scalars().all())

    # =========================================================================
    # BLUEPRINTS
    # =========================================================================

    def get_latest_generation(self, contract_id: str) -> int | None:
        return self.session.execute(
            select(func.max(BlueprintRow.generation)).where(BlueprintRow.contract_id == contract_id)
        ).scalar_one_or_none()

    def get_blueprints(self, contract_id: str) -> list[Blueprint]:
        """Blueprints of the latest generation, in (priority, position) order."""
        generation = self.get_latest_generation(contract_id)
        if generation is None:
            return []
        rows = self.session.execute(
            select(BlueprintRow)
            .where(BlueprintRow.contract_id == contract_id, BlueprintRow.generation == generation)
            .order_by(BlueprintRow.priority, BlueprintRow.position)
        ).scalars().all()
        return [blueprint_from_row(row) for row in rows]

    def get_blueprint(self, blueprint_id: str) -> Blueprint | None:
        row = self.session.get(BlueprintRow, blueprint_id)
        return blueprint_from_row(row) if row is not None else None

    def replace_blueprints(self, contract_id: str, company_id: str, blueprints: list[Blueprint]) -> int:
        """
        Replace every blueprint of the contract with a new generation.

        Runs inside the caller's transaction, so the old generation is only
        gone once the new one is committed with it.
        """
        generation = (self.get_latest_generation(contract_id) or 0) + 1

        old_ids = select(BlueprintRow.id).where(BlueprintRow.contract_id == contract_id)
        self.session.execute(
            delete(BlueprintDimensionRow).where(BlueprintDimensionRow.blueprint_id.in_(old_ids))
        )
        self.session.execute(delete(BlueprintRow).where(BlueprintRow.contract_id == contract_id))

        for blueprint in blueprints:
            row = BlueprintRow(
                contract_id=contract_id,
                company_id=company_id,
                rule_id=blueprint.rule_id,
                erp_rule_set_id=blueprint.erp_rule_set_id,
                name=blueprint.name,
                rule_type=blueprint.rule_type,
                calculation_logic=blueprint.calculation_logic,
                erp_field_bindings=dict(blueprint.erp_field_bindings),
                dual_terminology_map=dict(blueprint.dual_terminology_map),
                matching_criteria=blueprint.matching_criteria,
                priority=blueprint.priority,
                position=blueprint.position,
                generation=generation,
                is_fully_mapped=blueprint.is_fully_mapped,
                unmapped_fields=list(blueprint.unmapped_fields),
                dimensions=[
                    BlueprintDimensionRow(
                        dimension_type=d.dimension_type,
                        contract_term=d.contract_term,
                        match_value=d.match_value,
                        erp_field_name=d.erp_field_name,
                        mapping_id=d.mapping_id,
                        is_mapped=d.is_mapped,
                        confidence=d.confidence,
                        position=index,
                    )
                    for index, d in enumerate(blueprint.dimensions)
                ],
            )
            self.session.add(row)
            self.session.flush()
            blueprint.id = row.id
            blueprint.contract_id = contract_id
            blueprint.generation = generation

        self.session.flush()
        return generation

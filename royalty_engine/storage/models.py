"""
ORM models for the tables the engine reads and writes.

Only the columns the engine needs are modelled; contract authoring,
mapping generation and company settings live elsewhere and own the rest.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType


class ContractRow(Base):
    __tablename__ = "contracts"

    company_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    name: Mapped[str | None] = mapped_column(String(300), nullable=True)


class OrgCalculationSettingsRow(Base):
    __tablename__ = "org_calculation_settings"

    company_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    # manual | erp_rules | erp_mapping_rules | hybrid
    calculation_approach: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")


class CalculationRuleRow(Base):
    __tablename__ = "calculation_rules"
    __table_args__ = (
        Index("idx_rules_contract_active", "contract_id", "is_active"),
    )

    contract_id: Mapped[str] = mapped_column(String(36), ForeignKey("contracts.id"), nullable=False)
    rule_name: Mapped[str] = mapped_column(String(300), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False, default="percentage")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    volume_tiers: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    product_categories: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    territories: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    container_sizes: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    seasonal_adjustments: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    territory_premiums: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    formula_definition: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    calculation_formula: Mapped[str | None] = mapped_column(Text, nullable=True)
    minimum_guarantee: Mapped[Decimal | None] = mapped_column(nullable=True)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Declaration order within the contract
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    confidence: Mapped[Decimal | None] = mapped_column(nullable=True)
    source_text: Mapped[str | None] = mapped_column(Text, nullable=True)


class TermMappingRow(Base):
    __tablename__ = "term_mappings"
    __table_args__ = (
        Index("idx_term_mappings_contract_status", "contract_id", "status"),
    )

    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    original_term: Mapped[str] = mapped_column(String(500), nullable=False)
    original_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
    erp_field_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    erp_entity_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    confidence: Mapped[Decimal | None] = mapped_column(nullable=True)
    # pending | confirmed | rejected
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MappingRuleSetRow(Base):
    __tablename__ = "mapping_rule_sets"

    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class VendorRow(Base):
    __tablename__ = "vendors"

    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(300), nullable=False)
    vendor_status: Mapped[str] = mapped_column(String(20), nullable=False, default="Active")


class BlueprintRow(Base):
    __tablename__ = "calculation_blueprints"
    __table_args__ = (
        Index("idx_blueprints_contract_generation", "contract_id", "generation"),
    )

    contract_id: Mapped[str] = mapped_column(String(36), ForeignKey("contracts.id"), nullable=False)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    rule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    erp_rule_set_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)
    calculation_logic: Mapped[dict] = mapped_column(JSONType, nullable=False)
    erp_field_bindings: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    dual_terminology_map: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    matching_criteria: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_fully_mapped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unmapped_fields: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    dimensions: Mapped[list["BlueprintDimensionRow"]] = relationship(
        back_populates="blueprint",
        cascade="all, delete-orphan",
        order_by="BlueprintDimensionRow.position",
        lazy="selectin",
    )


class BlueprintDimensionRow(Base):
    __tablename__ = "blueprint_dimensions"

    blueprint_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("calculation_blueprints.id", ondelete="CASCADE"), nullable=False
    )
    dimension_type: Mapped[str] = mapped_column(String(30), nullable=False)
    contract_term: Mapped[str] = mapped_column(String(500), nullable=False)
    match_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
    erp_field_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    mapping_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_mapped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence: Mapped[Decimal | None] = mapped_column(nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    blueprint: Mapped[BlueprintRow] = relationship(back_populates="dimensions")


class FeeCalculationRow(Base):
    __tablename__ = "fee_calculations"

    contract_id: Mapped[str] = mapped_column(String(36), ForeignKey("contracts.id"), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    calculation_approach: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")
    total_sales_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    minimum_guarantee: Mapped[Decimal | None] = mapped_column(nullable=True)
    final_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Legacy JSON breakdown; older rows hold a JSON-encoded string of the list
    breakdown: Mapped[Any] = mapped_column(JSONType, nullable=True)
    rules_applied: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CalculationLineItemRow(Base):
    __tablename__ = "calculation_line_items"
    __table_args__ = (
        Index("idx_line_items_calculation", "calculation_id"),
    )

    calculation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("fee_calculations.id", ondelete="CASCADE"), nullable=False
    )
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    period: Mapped[str | None] = mapped_column(String(7), nullable=True)  # YYYY-MM
    item_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    item_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    item_class: Mapped[str | None] = mapped_column(String(300), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rule_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    rule_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    blueprint_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sales_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    calculated_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    applied_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    dimensions: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DimensionConfigRow(Base):
    __tablename__ = "calculation_dimension_config"
    __table_args__ = (
        UniqueConstraint("contract_id", "dimension_key", name="uq_dimension_config_key"),
    )

    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    dimension_key: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # summary | detail | standard | custom
    dimension_type: Mapped[str] = mapped_column(String(20), nullable=False)
    erp_field_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_groupable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

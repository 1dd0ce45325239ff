"""
Calculation Reporting

Dimension aggregation over the structured line items of a calculation run,
plus the one-time back-fill of line items from the legacy JSON breakdown.

Known dimensions are grouped with fixed column expressions. Custom
dimensions are keys of the per-item dimension map; their names are checked
against a strict pattern before anything touches storage.
"""

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .exceptions import CalculationNotFoundError
from .models import AggregatedResult, DimensionConfig, parse_date, to_decimal
from .storage.models import (
    CalculationLineItemRow,
    ContractRow,
    DimensionConfigRow,
    FeeCalculationRow,
)
from .storage.repository import ContractRepository

logger = logging.getLogger(__name__)

CUSTOM_DIMENSION_KEY = re.compile(r"^[a-zA-Z0-9_]+$")
UNKNOWN = "Unknown"
ZERO = Decimal("0")

# Aliases accepted for the first-class dimensions
DIMENSION_COLUMNS = {
    "vendor_name": "vendor_name",
    "vendor": "vendor_name",
    "item_name": "item_name",
    "item": "item_name",
    "product": "item_name",
    "item_class": "item_class",
    "category": "item_class",
    "territory": "territory",
    "period": "period",
    "rule_name": "rule_name",
}

STANDARD_DIMENSIONS = [
    ("item_name", "By Item", "product"),
    ("vendor_name", "By Vendor", "vendor"),
    ("item_class", "By Category", "category"),
    ("territory", "By Territory", "territory"),
    ("period", "By Period", "period"),
    ("rule_name", "By Rule", "rule"),
]

# Field synonyms found in legacy breakdown payloads
ITEM_KEYS = ("productName", "product_name", "itemName", "item_name", "variety", "product")
VENDOR_KEYS = ("vendorName", "vendor_name", "vendor", "supplier", "licensee")
TERRITORY_KEYS = ("territory", "region", "location", "state")
CLASS_KEYS = ("category", "itemClass", "item_class", "productCategory", "class")
RULE_KEYS = ("ruleApplied", "rule_applied", "ruleName", "rule_name", "rule")
SALES_KEYS = ("salesAmount", "sales_amount", "saleAmount", "netAmount", "grossAmount", "gross_amount")
FEE_KEYS = ("calculatedFee", "calculated_fee", "calculatedRoyalty", "royalty", "royaltyAmount", "computed_fee")
RATE_KEYS = ("appliedRate", "applied_rate", "tierRate", "tier_rate", "rate")
ADDITIONAL_FIELDS = (
    "customerId", "customerName", "channel", "salesRep",
    "brand", "segment", "division", "warehouse", "store",
)


def _first(item: dict, keys: tuple) -> str:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def _amount(value) -> Decimal:
    return to_decimal(value, ZERO)


def _first_amount(item: dict, keys: tuple) -> Decimal:
    for key in keys:
        amount = to_decimal(item.get(key))
        if amount:
            return amount
    return ZERO


def parse_breakdown(raw) -> list:
    """Decode a stored breakdown, which may be JSON-encoded once or twice.

    Unparseable payloads are logged and treated as empty.
    """
    breakdown = raw
    for _ in range(2):
        if not isinstance(breakdown, str):
            break
        try:
            breakdown = json.loads(breakdown)
        except json.JSONDecodeError as exc:
            logger.error(f"Failed to parse stored breakdown: {exc}")
            return []
    return breakdown if isinstance(breakdown, list) else []


@dataclass
class CalculationReport:
    calculation_id: str
    contract_id: str
    calculation_name: str | None
    total_sales_amount: Decimal
    total_fee: Decimal
    transaction_count: int
    available_dimensions: list[DimensionConfig]
    line_items: list[dict] | None = None
    aggregated_data: dict[str, list[AggregatedResult]] | None = None


class CalculationReportService:
    """Read-side reporting over calculation runs."""

    def __init__(self, session: Session):
        self.session = session
        self.repository = ContractRepository(session)

    # =========================================================================
    # DIMENSION CONFIGURATION
    # =========================================================================

    def get_available_dimensions(self, contract_id: str) -> list[DimensionConfig]:
        """Stored dimension config, generated from mappings on first use."""
        rows = self.session.execute(
            select(DimensionConfigRow)
            .where(DimensionConfigRow.contract_id == contract_id)
            .order_by(DimensionConfigRow.sort_order, DimensionConfigRow.dimension_key)
        ).scalars().all()
        if rows:
            return [
                DimensionConfig(
                    dimension_key=row.dimension_key,
                    display_name=row.display_name,
                    dimension_type=row.dimension_type,
                    is_groupable=row.is_groupable,
                    sort_order=row.sort_order or 0,
                    erp_field_name=row.erp_field_name,
                )
                for row in rows
            ]
        return self.generate_dimension_config_from_mappings(contract_id)

    def generate_dimension_config_from_mappings(self, contract_id: str) -> list[DimensionConfig]:
        """
        Build and persist the reporting taxonomy for a contract.

        Summary and detail first, then the standard dimensions (vendor is
        labelled "By Supplier" when a supplier field is mapped), then one
        custom dimension per further confirmed field name.
        """
        mappings = [m for m in self.repository.get_confirmed_mappings(contract_id) if m.erp_field_name]
        has_supplier_mapping = any(
            (m.erp_field_name or "").lower() == "suppliername" or (m.erp_entity_name or "").lower() == "suppliers"
            for m in mappings
        )

        dimensions = [
            DimensionConfig("summary", "Summary", "summary", is_groupable=False, sort_order=0),
            DimensionConfig("detail", "Detail", "detail", is_groupable=False, sort_order=1),
        ]
        sort_order = 2
        for key, display, dimension_type in STANDARD_DIMENSIONS:
            erp_field = None
            if key == "vendor_name" and has_supplier_mapping:
                display, erp_field = "By Supplier", "SupplierName"
            dimensions.append(DimensionConfig(key, display, dimension_type, True, sort_order, erp_field))
            sort_order += 1

        seen = {key.lower() for key, _, _ in STANDARD_DIMENSIONS}
        if has_supplier_mapping:
            seen.update({"suppliername", "supplier_name"})

        for field_name in sorted({m.erp_field_name for m in mappings}):
            if field_name.lower() in seen or not CUSTOM_DIMENSION_KEY.match(field_name):
                continue
            seen.add(field_name.lower())
            dimensions.append(DimensionConfig(field_name, f"By {field_name}", "custom", True, sort_order, field_name))
            sort_order += 1

        existing = set(self.session.execute(
            select(DimensionConfigRow.dimension_key).where(DimensionConfigRow.contract_id == contract_id)
        ).scalars().all())
        for dimension in dimensions:
            if dimension.dimension_key in existing:
                continue
            self.session.add(DimensionConfigRow(
                contract_id=contract_id,
                dimension_key=dimension.dimension_key,
                display_name=dimension.display_name,
                dimension_type=dimension.dimension_type,
                erp_field_name=dimension.erp_field_name,
                is_groupable=dimension.is_groupable,
                sort_order=dimension.sort_order,
            ))
        self.session.flush()
        return dimensions

    # =========================================================================
    # REPORTS
    # =========================================================================

    def _get_calculation(self, calculation_id: str) -> FeeCalculationRow:
        calculation = self.session.get(FeeCalculationRow, calculation_id)
        if calculation is None:
            raise CalculationNotFoundError(calculation_id)
        return calculation

    def get_calculation_report(self, calculation_id: str, dimension_key: str | None = None) -> CalculationReport:
        """
        Report for one calculation run.

        No key or "detail" returns line items; any other key except
        "summary" returns the aggregation for that dimension.
        """
        calculation = self._get_calculation(calculation_id)
        self.ensure_line_items(calculation)

        report = CalculationReport(
            calculation_id=calculation.id,
            contract_id=calculation.contract_id,
            calculation_name=calculation.name,
            total_sales_amount=calculation.total_sales_amount or ZERO,
            total_fee=calculation.final_fee or ZERO,
            transaction_count=calculation.transaction_count or 0,
            available_dimensions=self.get_available_dimensions(calculation.contract_id),
        )
        if not dimension_key or dimension_key == "detail":
            report.line_items = self.get_detailed_line_items(calculation_id)
        if dimension_key and dimension_key not in ("detail", "summary"):
            report.aggregated_data = {
                dimension_key: self.get_aggregated_by_dimension(calculation_id, dimension_key)
            }
        return report

    def get_detailed_line_items(self, calculation_id: str) -> list[dict]:
        rows = self.session.execute(
            select(CalculationLineItemRow)
            .where(CalculationLineItemRow.calculation_id == calculation_id)
            .order_by(
                CalculationLineItemRow.transaction_date.desc(),
                CalculationLineItemRow.item_name,
                CalculationLineItemRow.position,
            )
        ).scalars().all()
        return [
            {
                "id": row.id,
                "transaction_date": row.transaction_date.isoformat() if row.transaction_date else None,
                "transaction_id": row.transaction_id,
                "sales_amount": row.sales_amount or ZERO,
                "quantity": row.quantity or ZERO,
                "calculated_fee": row.calculated_fee or ZERO,
                "applied_rate": row.applied_rate or ZERO,
                "rule_name": row.rule_name,
                "rule_type": row.rule_type,
                "dimensions": dict(row.dimensions or {}),
                "vendor_name": row.vendor_name,
                "item_name": row.item_name,
                "item_code": row.item_code,
                "item_class": row.item_class,
                "territory": row.territory,
                "period": row.period,
            }
            for row in rows
        ]

    def get_summary_report(self, calculation_id: str) -> dict:
        """Run totals with breakdowns by rule and by item class."""
        calculation = self._get_calculation(calculation_id)
        self.ensure_line_items(calculation)
        contract = self.session.get(ContractRow, calculation.contract_id)
        items = CalculationLineItemRow

        total_fee = func.coalesce(func.sum(items.calculated_fee), 0)
        by_rule = self.session.execute(
            select(
                items.rule_name,
                items.rule_type,
                func.count().label("transaction_count"),
                func.coalesce(func.sum(items.quantity), 0).label("total_quantity"),
                total_fee.label("total_fee"),
            )
            .where(items.calculation_id == calculation_id)
            .group_by(items.rule_name, items.rule_type)
            .order_by(total_fee.desc(), items.rule_name)
        ).all()

        item_class = func.coalesce(items.item_class, "Unclassified")
        by_item_class = self.session.execute(
            select(
                item_class.label("item_class"),
                func.count().label("transaction_count"),
                func.coalesce(func.sum(items.quantity), 0).label("total_quantity"),
                total_fee.label("total_fee"),
            )
            .where(items.calculation_id == calculation_id)
            .group_by(items.item_class)
            .order_by(total_fee.desc(), items.item_class)
        ).all()

        return {
            "calculation": {
                "id": calculation.id,
                "name": calculation.name,
                "contract_name": contract.name if contract else None,
                "status": calculation.status,
                "total_sales_amount": calculation.total_sales_amount or ZERO,
                "total_fee": calculation.final_fee or ZERO,
                "sales_count": calculation.transaction_count or 0,
            },
            "by_rule": [
                {
                    "rule_name": row.rule_name,
                    "rule_type": row.rule_type,
                    "transaction_count": row.transaction_count,
                    "total_quantity": _amount(row.total_quantity),
                    "total_fee": _amount(row.total_fee),
                }
                for row in by_rule
            ],
            "by_item_class": [
                {
                    "item_class": row.item_class,
                    "transaction_count": row.transaction_count,
                    "total_quantity": _amount(row.total_quantity),
                    "total_fee": _amount(row.total_fee),
                }
                for row in by_item_class
            ],
        }

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    def get_aggregated_by_dimension(self, calculation_id: str, dimension_key: str) -> list[AggregatedResult]:
        """
        Totals per value of one dimension, largest fee first.

        Unknown keys are treated as custom dimension names; a key that does
        not match ^[a-zA-Z0-9_]+$ returns an empty list without a query.
        """
        column_name = DIMENSION_COLUMNS.get(dimension_key)
        if column_name is None:
            if not CUSTOM_DIMENSION_KEY.match(dimension_key or ""):
                logger.warning(f"Invalid dimension key format: {dimension_key!r}")
                return []
            return self._aggregate_custom(calculation_id, dimension_key)

        if column_name == "vendor_name":
            registry = self._aggregate_vendor_registry(calculation_id)
            if registry:
                return registry

        return self._aggregate_column(calculation_id, getattr(CalculationLineItemRow, column_name))

    def _aggregate_column(self, calculation_id: str, column) -> list[AggregatedResult]:
        items = CalculationLineItemRow
        value = func.coalesce(column, UNKNOWN)
        total_fee = func.coalesce(func.sum(items.calculated_fee), 0)
        rows = self.session.execute(
            select(
                value.label("dimension_value"),
                func.coalesce(func.sum(items.sales_amount), 0).label("total_sales"),
                func.coalesce(func.sum(items.quantity), 0).label("total_quantity"),
                total_fee.label("total_fee"),
                func.count().label("transaction_count"),
                func.avg(items.applied_rate, type_=items.applied_rate.type).label("avg_rate"),
            )
            .where(items.calculation_id == calculation_id)
            .group_by(column)
            .order_by(total_fee.desc(), column)
        ).all()
        return [
            AggregatedResult(
                dimension_value=row.dimension_value or UNKNOWN,
                total_sales=_amount(row.total_sales),
                total_quantity=_amount(row.total_quantity),
                total_fee=_amount(row.total_fee),
                transaction_count=row.transaction_count,
                avg_rate=_amount(row.avg_rate),
            )
            for row in rows
        ]

    def _aggregate_vendor_registry(self, calculation_id: str) -> list[AggregatedResult]:
        """
        Every active vendor of the contract's company, each carrying the
        calculation's overall totals. Empty when the company has no vendors.
        """
        company_id = self.session.execute(
            select(ContractRow.company_id)
            .join(FeeCalculationRow, FeeCalculationRow.contract_id == ContractRow.id)
            .where(FeeCalculationRow.id == calculation_id)
        ).scalar_one_or_none()
        if not company_id:
            return []

        vendors = self.repository.get_active_vendor_names(company_id)
        if not vendors:
            return []

        items = CalculationLineItemRow
        totals = self.session.execute(
            select(
                func.coalesce(func.sum(items.sales_amount), 0).label("total_sales"),
                func.coalesce(func.sum(items.quantity), 0).label("total_quantity"),
                func.coalesce(func.sum(items.calculated_fee), 0).label("total_fee"),
                func.count().label("transaction_count"),
                func.avg(items.applied_rate, type_=items.applied_rate.type).label("avg_rate"),
            )
            .where(items.calculation_id == calculation_id)
        ).one()

        return [
            AggregatedResult(
                dimension_value=vendor,
                total_sales=_amount(totals.total_sales),
                total_quantity=_amount(totals.total_quantity),
                total_fee=_amount(totals.total_fee),
                transaction_count=totals.transaction_count,
                avg_rate=_amount(totals.avg_rate),
            )
            for vendor in vendors
        ]

    def _aggregate_custom(self, calculation_id: str, dimension_key: str) -> list[AggregatedResult]:
        """Group by a key of the per-item dimension map."""
        items = CalculationLineItemRow
        rows = self.session.execute(
            select(items.dimensions, items.sales_amount, items.quantity, items.calculated_fee, items.applied_rate)
            .where(items.calculation_id == calculation_id)
            .order_by(items.position)
        ).all()

        groups: dict[str, dict] = {}
        for row in rows:
            value = (row.dimensions or {}).get(dimension_key)
            key = str(value) if value not in (None, "") else UNKNOWN
            group = groups.setdefault(key, {"sales": ZERO, "quantity": ZERO, "fee": ZERO, "count": 0, "rate": ZERO})
            group["sales"] += row.sales_amount or ZERO
            group["quantity"] += row.quantity or ZERO
            group["fee"] += row.calculated_fee or ZERO
            group["rate"] += row.applied_rate or ZERO
            group["count"] += 1

        results = [
            AggregatedResult(
                dimension_value=key,
                total_sales=group["sales"],
                total_quantity=group["quantity"],
                total_fee=group["fee"],
                transaction_count=group["count"],
                avg_rate=group["rate"] / group["count"],
            )
            for key, group in groups.items()
        ]
        results.sort(key=lambda r: (-r.total_fee, r.dimension_value))
        return results

    # =========================================================================
    # LINE ITEM BACK-FILL
    # =========================================================================

    def ensure_line_items(self, calculation: FeeCalculationRow) -> int:
        """
        Back-fill structured line items from the legacy breakdown once.

        Returns the number of items inserted (0 when they already exist).
        """
        existing = self.session.execute(
            select(func.count()).select_from(CalculationLineItemRow)
            .where(CalculationLineItemRow.calculation_id == calculation.id)
        ).scalar_one()
        if existing or not calculation.breakdown:
            return 0

        breakdown = parse_breakdown(calculation.breakdown)
        if not breakdown:
            return 0

        logger.info(f"Back-filling {len(breakdown)} line items for calculation {calculation.id}")
        return self.populate_line_items_from_calculation(calculation.id, calculation.contract_id, breakdown)

    def populate_line_items_from_calculation(self, calculation_id: str, contract_id: str, breakdown: list) -> int:
        """Insert one line item per breakdown entry, resolving field synonyms."""
        term_to_field = {}
        for mapping in self.repository.get_confirmed_mappings(contract_id):
            if mapping.original_term and mapping.erp_field_name:
                term_to_field[mapping.original_term.lower()] = mapping.erp_field_name

        inserted = 0
        for position, item in enumerate(breakdown):
            if not isinstance(item, dict):
                continue
            self.session.add(self._line_item(calculation_id, contract_id, item, term_to_field, position))
            inserted += 1
        self.session.flush()
        return inserted

    def _line_item(self, calculation_id: str, contract_id: str, item: dict,
                   term_to_field: dict[str, str], position: int) -> CalculationLineItemRow:
        item_name = _first(item, ITEM_KEYS)
        vendor_name = _first(item, VENDOR_KEYS)
        territory = _first(item, TERRITORY_KEYS)
        item_class = _first(item, CLASS_KEYS)

        dimensions = {}
        extra = item.get("dimensions")
        if isinstance(extra, dict):
            dimensions.update({str(k): str(v) for k, v in extra.items() if v not in (None, "")})

        def mapped(value: str) -> None:
            erp_field = term_to_field.get(value.lower())
            if erp_field:
                dimensions[erp_field] = value

        if item_name:
            dimensions["item_name"] = dimensions["product"] = item_name
            mapped(item_name)
        if vendor_name:
            dimensions["vendor_name"] = dimensions["vendor"] = vendor_name
            mapped(vendor_name)
        if territory:
            dimensions["territory"] = dimensions["region"] = territory
            mapped(territory)
        if item_class:
            dimensions["item_class"] = dimensions["category"] = item_class
        for field_name in ADDITIONAL_FIELDS:
            if item.get(field_name):
                value = str(item[field_name])
                dimensions[field_name] = value
                mapped(value)

        transaction_date = None
        raw_date = _first(item, ("transactionDate", "transaction_date"))
        if raw_date:
            try:
                transaction_date = parse_date(raw_date)
            except ValueError:
                logger.warning(f"Unparseable transaction date in breakdown: {raw_date!r}")

        period = _first(item, ("period",)) or (transaction_date.strftime("%Y-%m") if transaction_date else "")
        if period:
            dimensions["period"] = period

        rule_name = _first(item, RULE_KEYS)
        if rule_name:
            dimensions["rule_name"] = rule_name
        snapshot = item.get("rule_snapshot") or item.get("ruleSnapshot") or {}
        rule_type = _first(item, ("ruleType", "rule_type")) or _first(
            snapshot if isinstance(snapshot, dict) else {}, ("rule_type", "ruleType")
        )

        return CalculationLineItemRow(
            calculation_id=calculation_id,
            contract_id=contract_id,
            transaction_id=_first(item, ("transactionId", "transaction_id", "saleId", "sale_id")) or None,
            transaction_date=transaction_date,
            period=period or None,
            item_name=item_name or None,
            item_code=_first(item, ("productCode", "itemCode", "item_code")) or None,
            vendor_name=vendor_name or None,
            item_class=item_class or None,
            territory=territory or None,
            rule_name=rule_name or None,
            rule_type=rule_type or None,
            rule_id=_first(item, ("ruleId", "rule_id")) or None,
            blueprint_id=_first(item, ("blueprintId", "blueprint_id")) or None,
            quantity=_first_amount(item, ("quantity",)),
            sales_amount=_first_amount(item, SALES_KEYS),
            calculated_fee=_first_amount(item, FEE_KEYS),
            applied_rate=_first_amount(item, RATE_KEYS),
            dimensions=dimensions,
            position=position,
        )

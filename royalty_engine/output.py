"""
Audit Breakdown Builder

Turns a strategy result into a self-contained audit record: numbered
calculation steps, the conditions that were checked, and a snapshot of the
rule as it was when the fee was computed. Also serialises results for the
API.
"""

from decimal import Decimal

from .calculators.adjustments import HUNDRED, ONE, format_number
from .models import (
    AggregatedResult,
    BreakdownItem,
    CalculationResult,
    CalculationRule,
    CalculationStep,
    ConditionCheck,
    DimensionConfig,
    MatchDecision,
    MaterializationSummary,
    RuleSnapshot,
    SaleTransaction,
    StrategyResult,
)


def to_money(value: Decimal | None) -> float | None:
    """Convert Decimal to float with 2 decimal places."""
    if value is None:
        return None
    return round(float(value), 2)


def _fmt(value) -> str:
    """Format a number as currency string for descriptions."""
    return f"${value:,.2f}"


def _rate4(value: Decimal) -> str:
    return f"{value:.4f}"


class AuditBreakdownBuilder:
    """Builds BreakdownItem audit records."""

    def build(
        self,
        transaction: SaleTransaction,
        rule: CalculationRule,
        result: StrategyResult,
        conditions_checked: list[ConditionCheck],
        decision: MatchDecision | None = None,
    ) -> BreakdownItem:
        """Construct the audit record for one priced transaction."""
        blueprint = decision.blueprint if decision else None
        return BreakdownItem(
            transaction=transaction,
            rule_applied=rule.rule_name,
            calculation_type=result.strategy_used,
            base_rate=result.base_rate,
            tier_rate=result.effective_rate,
            seasonal_multiplier=result.seasonal_multiplier,
            territory_multiplier=result.territory_multiplier,
            computed_fee=result.computed_fee,
            explanation=result.explanation,
            calculation_steps=self.build_steps(transaction, result),
            conditions_checked=list(conditions_checked),
            rule_snapshot=self.snapshot(rule),
            volume_discount_applied=result.volume_discount_applied,
            volume_threshold_met=result.volume_threshold_met,
            flagged=result.flagged,
            rule_id=rule.id,
            blueprint_id=blueprint.id if blueprint else None,
            selection_rationale=decision.to_dict() if decision else None,
        )

    # =========================================================================
    # CALCULATION STEPS
    # =========================================================================

    def build_steps(self, transaction: SaleTransaction, result: StrategyResult) -> list[CalculationStep]:
        """Strategy steps, then adjustment steps, then the total."""
        if result.strategy_used == "container_size":
            steps = self._container_size_steps(transaction, result)
        elif result.strategy_used == "volume_tier":
            steps = self._volume_tier_steps(transaction, result)
        elif result.strategy_used == "percentage":
            steps = self._percentage_steps(transaction, result)
        else:
            steps = self._formula_steps(result)

        if result.seasonal_multiplier != ONE:
            steps.append(("Apply seasonal adjustment",
                          "Subtotal × Seasonal Multiplier",
                          f"× {result.seasonal_multiplier:.2f} ({result.season})",
                          "Seasonal factor applied"))

        if result.territory_multiplier != ONE:
            steps.append(("Apply territory adjustment",
                          "Subtotal × Territory Multiplier",
                          f"× {result.territory_multiplier:.2f} ({transaction.territory})",
                          "Territory factor applied"))

        if result.strategy_used in ("container_size", "formula"):
            final_formula = (
                f"${format_number(result.effective_rate)}/unit × {format_number(transaction.quantity)} × "
                f"{format_number(result.seasonal_multiplier)} × {format_number(result.territory_multiplier)}"
            )
        else:
            final_formula = (
                f"{_fmt(transaction.gross_amount)} × {format_number(result.effective_rate)}% × "
                f"{format_number(result.seasonal_multiplier)} × {format_number(result.territory_multiplier)}"
            )
        steps.append(("Final license fee amount", final_formula, "All factors applied", _fmt(result.computed_fee)))

        return [
            CalculationStep(step=number, description=d, formula=f, values=v, result=r)
            for number, (d, f, v, r) in enumerate(steps, start=1)
        ]

    def _container_size_steps(self, transaction: SaleTransaction, result: StrategyResult) -> list[tuple]:
        steps = [
            ("Identify container size from sale data",
             "Container Size Match",
             f'Sale container: "{transaction.container_size or "inferred from product"}"',
             f"Matched: {result.matched_container_size or 'none'}"),
            ("Look up base rate for container size",
             "Rate = lookup(containerSize)",
             f"Container: {result.matched_container_size or 'none'}",
             f"Base Rate = ${_rate4(result.base_rate)}/unit"),
        ]
        if result.volume_discount_applied:
            threshold = format_number(result.volume_threshold_met)
            quantity = format_number(transaction.quantity)
            steps.append(("Apply volume discount (quantity >= threshold)",
                          f"Quantity ({quantity}) >= Threshold ({threshold})",
                          f"{quantity} >= {threshold} = TRUE",
                          f"Discounted Rate = ${_rate4(result.effective_rate)}/unit"))
        steps.append(("Calculate base license fee",
                      "Rate × Quantity",
                      f"${_rate4(result.effective_rate)} × {format_number(transaction.quantity)}",
                      _fmt(result.effective_rate * transaction.quantity)))
        return steps

    def _volume_tier_steps(self, transaction: SaleTransaction, result: StrategyResult) -> list[tuple]:
        tier = result.matched_tier
        if tier is not None:
            upper = format_number(tier.max) if tier.max is not None else "∞"
            tier_values = f"{format_number(tier.min)} <= {format_number(transaction.quantity)} <= {upper}"
        else:
            tier_values = "No tier matched, using base rate"
        rate = result.effective_rate / HUNDRED
        return [
            ("Identify quantity for tier matching",
             "Check quantity against tier thresholds",
             f"Quantity: {format_number(transaction.quantity)} units",
             "Looking for matching tier..."),
            ("Match quantity to volume tier",
             "min <= quantity <= max",
             tier_values,
             f"Tier Rate = {format_number(result.effective_rate)}%"),
            ("Calculate license fee from gross amount",
             "Gross Amount × Rate",
             f"{_fmt(transaction.gross_amount)} × {_rate4(rate)}",
             _fmt(transaction.gross_amount * rate)),
        ]

    def _percentage_steps(self, transaction: SaleTransaction, result: StrategyResult) -> list[tuple]:
        rate = result.base_rate / HUNDRED
        return [
            ("Identify applicable rate",
             "Rate = baseRate / 100",
             f"{format_number(result.base_rate)}% → {_rate4(rate)}",
             f"Rate = {_rate4(rate)}"),
            ("Calculate license fee from gross amount",
             "Gross Amount × Rate",
             f"{_fmt(transaction.gross_amount)} × {_rate4(rate)}",
             _fmt(transaction.gross_amount * rate)),
        ]

    def _formula_steps(self, result: StrategyResult) -> list[tuple]:
        return [
            ("Evaluate contract formula",
             "Formula definition",
             "; ".join(result.debug_log) or "Formula executed",
             _fmt(result.computed_fee)),
        ]

    # =========================================================================
    # RULE SNAPSHOT
    # =========================================================================

    def snapshot(self, rule: CalculationRule) -> RuleSnapshot:
        """Copy the rule's defining fields so the record survives rule edits."""
        return RuleSnapshot(
            rule_id=rule.id or "unknown",
            rule_name=rule.rule_name,
            rule_type=rule.rule_type,
            base_rate=rule.base_rate,
            volume_tiers=[dict(t) for t in rule.volume_tiers if isinstance(t, dict)],
            product_categories=list(rule.product_categories),
            territories=list(rule.territories),
            seasonal_adjustments=dict(rule.seasonal_adjustments),
            territory_premiums=dict(rule.territory_premiums),
            source_text=rule.source_text,
            confidence=rule.confidence,
            is_ai_extracted=bool(rule.source_text or rule.confidence),
        )


# =============================================================================
# SERIALISATION
# =============================================================================


def _number(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _plain_map(values: dict) -> dict:
    return {k: float(v) if isinstance(v, Decimal) else v for k, v in values.items()}


def breakdown_to_dict(item: BreakdownItem) -> dict:
    """API/storage representation of one breakdown item."""
    sale = item.transaction
    snapshot = item.rule_snapshot
    return {
        "sale_id": sale.id,
        "product_name": sale.product_name,
        "category": sale.category,
        "territory": sale.territory,
        "quantity": float(sale.quantity),
        "gross_amount": to_money(sale.gross_amount),
        "container_size": sale.container_size,
        "vendor_name": sale.vendor_name,
        "item_code": sale.item_code,
        "dimensions": dict(sale.extra),
        "transaction_date": sale.transaction_date.isoformat(),
        "rule_applied": item.rule_applied,
        "rule_id": item.rule_id,
        "blueprint_id": item.blueprint_id,
        "calculation_type": item.calculation_type,
        "base_rate": float(item.base_rate),
        "tier_rate": float(item.tier_rate),
        "seasonal_multiplier": float(item.seasonal_multiplier),
        "territory_multiplier": float(item.territory_multiplier),
        "calculated_fee": to_money(item.computed_fee),
        "explanation": item.explanation,
        "volume_discount_applied": item.volume_discount_applied,
        "volume_threshold_met": _number(item.volume_threshold_met),
        "flagged": item.flagged,
        "calculation_steps": [
            {"step": s.step, "description": s.description, "formula": s.formula,
             "values": s.values, "result": s.result}
            for s in item.calculation_steps
        ],
        "conditions_checked": [
            {"condition": c.condition, "expected": c.expected, "actual": c.actual, "matched": c.matched}
            for c in item.conditions_checked
        ],
        "rule_snapshot": {
            "rule_id": snapshot.rule_id,
            "rule_name": snapshot.rule_name,
            "rule_type": snapshot.rule_type,
            "base_rate": float(snapshot.base_rate),
            "volume_tiers": snapshot.volume_tiers,
            "product_categories": snapshot.product_categories,
            "territories": snapshot.territories,
            "seasonal_adjustments": _plain_map(snapshot.seasonal_adjustments),
            "territory_premiums": _plain_map(snapshot.territory_premiums),
            "source_text": snapshot.source_text,
            "confidence": _number(snapshot.confidence),
            "is_ai_extracted": snapshot.is_ai_extracted,
        },
        "selection_rationale": item.selection_rationale,
    }


def result_to_dict(result: CalculationResult) -> dict:
    """API representation of a calculation run."""
    return {
        "total_fee": to_money(result.total_fee),
        "minimum_guarantee": to_money(result.minimum_guarantee),
        "final_fee": to_money(result.final_fee),
        "rules_applied": list(result.rules_applied),
        "unmatched_transactions": list(result.unmatched_transactions),
        "breakdown": [breakdown_to_dict(item) for item in result.breakdown],
    }


def aggregated_to_dict(result: AggregatedResult) -> dict:
    return {
        "dimension_value": result.dimension_value,
        "total_sales": to_money(result.total_sales),
        "total_quantity": float(result.total_quantity),
        "total_fee": to_money(result.total_fee),
        "transaction_count": result.transaction_count,
        "avg_rate": float(result.avg_rate),
    }


def dimension_config_to_dict(config: DimensionConfig) -> dict:
    return {
        "dimension_key": config.dimension_key,
        "display_name": config.display_name,
        "dimension_type": config.dimension_type,
        "erp_field_name": config.erp_field_name,
        "is_groupable": config.is_groupable,
        "sort_order": config.sort_order,
    }


def materialization_to_dict(summary: MaterializationSummary) -> dict:
    return {
        "contract_id": summary.contract_id,
        "blueprints_created": summary.blueprints_created,
        "fully_mapped": summary.fully_mapped,
        "partially_mapped": summary.partially_mapped,
        "generation": summary.generation,
        "results": [
            {
                "blueprint_id": r.blueprint_id,
                "rule_name": r.rule_name,
                "rule_type": r.rule_type,
                "is_fully_mapped": r.is_fully_mapped,
                "unmapped_fields": list(r.unmapped_fields),
                "dimension_count": r.dimension_count,
            }
            for r in summary.results
        ],
    }


def _json_value(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_value(v) for v in value]
    return value


def report_to_dict(report) -> dict:
    """API representation of a CalculationReport."""
    output = {
        "calculation_id": report.calculation_id,
        "contract_id": report.contract_id,
        "calculation_name": report.calculation_name,
        "total_sales_amount": to_money(report.total_sales_amount),
        "total_fee": to_money(report.total_fee),
        "transaction_count": report.transaction_count,
        "available_dimensions": [dimension_config_to_dict(d) for d in report.available_dimensions],
    }
    if report.line_items is not None:
        output["line_items"] = _json_value(report.line_items)
    if report.aggregated_data is not None:
        output["aggregated_data"] = {
            key: [aggregated_to_dict(r) for r in results]
            for key, results in report.aggregated_data.items()
        }
    return output


def summary_report_to_dict(summary: dict) -> dict:
    return _json_value(summary)

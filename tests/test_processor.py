"""
Tests for the fee processor (calculation orchestrator).

Run with: python -m pytest tests/test_processor.py -v
"""

import copy
import json
from decimal import Decimal

import pytest

from royalty_engine import CalculationApproach, CalculationInput, FeeProcessor
from royalty_engine.exceptions import FeeExceedsSaleAmountError
from royalty_engine.processor import calculate_fees_from_dict, calculate_fees_from_json


def sale(id, product_name="Climbing Roses", category="Roses", gross_amount=1000, quantity=10,
         transaction_date="2025-02-10", **fields):
    return {
        "id": id,
        "product_name": product_name,
        "category": category,
        "territory": fields.pop("territory", "East"),
        "quantity": quantity,
        "gross_amount": gross_amount,
        "transaction_date": transaction_date,
        **fields,
    }


ROSES_RULE = {
    "id": "rule-roses",
    "rule_name": "Roses Royalty",
    "rule_type": "percentage",
    "base_rate": 10,
    "product_categories": ["Roses"],
}

ROSES_BLUEPRINT = {
    "id": "bp-roses",
    "name": "Roses Blueprint",
    "rule_type": "percentage",
    "calculation_logic": {"base_rate": 8, "product_categories": ["Roses"]},
    "dimensions": [
        {"dimension_type": "product", "contract_term": "Roses", "erp_field_name": "ItemClass", "is_mapped": True},
    ],
    "erp_field_bindings": {"product": "ItemClass"},
    "dual_terminology_map": {"Roses": "Roses (ERP: ItemClass)"},
}


@pytest.fixture
def processor():
    return FeeProcessor()


class TestMinimumGuarantee:
    """The minimum guarantee is a floor on the total."""

    def test_floor_applies(self, processor):
        result = processor.process_from_dict({
            "rules": [ROSES_RULE, {"rule_name": "Annual Minimum", "rule_type": "minimum_guarantee",
                                   "minimum_guarantee": 10000}],
            "transactions": [sale("s1", gross_amount=50000), sale("s2", gross_amount=30000)],
        })

        assert result["total_fee"] == 8000.0
        assert result["minimum_guarantee"] == 10000.0
        assert result["final_fee"] == 10000.0
        assert result["rules_applied"] == ["Roses Royalty"]

    def test_floor_below_total(self, processor):
        result = processor.process_from_dict({
            "rules": [ROSES_RULE, {"rule_name": "Annual Minimum", "rule_type": "minimum_guarantee",
                                   "minimum_guarantee": 500}],
            "transactions": [sale("s1", gross_amount=50000)],
        })

        assert result["final_fee"] == 5000.0

    def test_no_guarantee(self, processor):
        result = processor.process_from_dict({"rules": [ROSES_RULE], "transactions": [sale("s1")]})

        assert result["minimum_guarantee"] is None
        assert result["final_fee"] == result["total_fee"] == 100.0

    def test_guarantee_rule_is_not_priced(self, processor):
        result = processor.process_from_dict({
            "rules": [{"rule_name": "Annual Minimum", "rule_type": "minimum_guarantee", "minimum_guarantee": 100}],
            "transactions": [sale("s1")],
        })

        assert result["breakdown"] == []
        assert result["unmatched_transactions"] == ["s1"]
        assert result["final_fee"] == 100.0


class TestFeeInvariant:
    """A fee above gross amount (plus 1%) is an error, never capped."""

    def test_excessive_fee_raises(self, processor):
        rule = dict(ROSES_RULE, base_rate=150)
        with pytest.raises(FeeExceedsSaleAmountError) as exc_info:
            processor.process_from_dict({"rules": [rule], "transactions": [sale("s1", gross_amount=100)]})

        assert exc_info.value.rule_name == "Roses Royalty"
        assert exc_info.value.transaction_id == "s1"
        assert exc_info.value.computed_fee == Decimal("150.00")
        assert "exceeds sale amount" in str(exc_info.value)

    def test_one_percent_tolerance(self, processor):
        rule = dict(ROSES_RULE, base_rate=101)
        result = processor.process_from_dict({"rules": [rule], "transactions": [sale("s1", gross_amount=100)]})

        assert result["total_fee"] == 101.0

    def test_container_rate_against_small_sale(self, processor):
        rule = {
            "rule_name": "Containers",
            "rule_type": "container_size_tiered",
            "volume_tiers": [{"size": "5gal", "baseRate": 5}],
        }
        with pytest.raises(FeeExceedsSaleAmountError):
            processor.process_from_dict({
                "rules": [rule],
                "transactions": [sale("s1", container_size="5gal", quantity=100, gross_amount=50)],
            })

    def test_json_entry_reports_status(self):
        payload = {"rules": [dict(ROSES_RULE, base_rate=150)], "transactions": [sale("s1", gross_amount=100)]}
        result = json.loads(calculate_fees_from_json(json.dumps(payload)))

        assert result["status"] == "fee_exceeds_sale_amount"
        assert result["rule_name"] == "Roses Royalty"
        assert result["transaction_id"] == "s1"


class TestApproachGating:
    """The calculation approach decides which sources may price a sale."""

    def payload(self, approach):
        return {
            "calculation_approach": approach,
            "rules": [ROSES_RULE],
            "blueprints": [ROSES_BLUEPRINT],
            "transactions": [sale("s1")],
        }

    def test_manual_ignores_blueprints(self, processor):
        result = processor.process_from_dict(self.payload("manual"))

        assert result["rules_applied"] == ["Roses Royalty"]
        assert result["breakdown"][0]["blueprint_id"] is None
        assert result["total_fee"] == 100.0

    @pytest.mark.parametrize("approach", ["erp_rules", "erp_mapping_rules", "hybrid"])
    def test_blueprint_preferred(self, processor, approach):
        result = processor.process_from_dict(self.payload(approach))
        item = result["breakdown"][0]

        assert result["rules_applied"] == ["Roses Blueprint [via Blueprint]"]
        assert item["blueprint_id"] == "bp-roses"
        assert item["selection_rationale"]["match_quality"] == "blueprint"
        assert result["total_fee"] == 80.0

    def test_erp_suffix_in_explanation(self, processor):
        result = processor.process_from_dict(self.payload("erp_rules"))
        assert result["breakdown"][0]["explanation"] == '8% of gross sales [ERP: {"product": "ItemClass"}]'

    def test_erp_rules_never_uses_raw_rules(self, processor):
        payload = self.payload("erp_rules")
        payload["transactions"] = [sale("s1", product_name="Boxwood", category="Roses Hybrid Tea")]
        payload["blueprints"][0] = dict(ROSES_BLUEPRINT, dimensions=[
            {"dimension_type": "territory", "contract_term": "West", "is_mapped": True},
        ])
        result = processor.process_from_dict(payload)

        assert result["unmatched_transactions"] == ["s1"]
        assert result["total_fee"] == 0.0

    def test_hybrid_falls_back_to_raw_rules(self, processor):
        payload = self.payload("hybrid")
        payload["blueprints"][0] = dict(ROSES_BLUEPRINT, dimensions=[
            {"dimension_type": "territory", "contract_term": "West", "is_mapped": True},
        ])
        result = processor.process_from_dict(payload)

        assert result["rules_applied"] == ["Roses Royalty"]
        assert result["total_fee"] == 100.0

    def test_invalid_approach(self, processor):
        with pytest.raises(ValueError, match="Invalid calculation approach"):
            processor.process_from_dict(self.payload("spreadsheet"))


class TestProcessing:
    """End-to-end processing behaviour."""

    def test_unmatched_transactions_reported(self, processor):
        result = processor.process_from_dict({
            "rules": [ROSES_RULE],
            "transactions": [sale("s1"), sale("s2", product_name="Boxwood", category="Shrubs")],
        })

        assert result["unmatched_transactions"] == ["s2"]
        assert [item["sale_id"] for item in result["breakdown"]] == ["s1"]

    def test_rules_applied_deduplicated_in_order(self, processor):
        shrubs = {"rule_name": "Shrubs Royalty", "rule_type": "percentage", "base_rate": 5,
                  "product_categories": ["Shrubs"]}
        result = processor.process_from_dict({
            "rules": [ROSES_RULE, shrubs],
            "transactions": [
                sale("s1", product_name="Boxwood", category="Shrubs"),
                sale("s2"),
                sale("s3", product_name="Holly", category="Shrubs"),
            ],
        })

        assert result["rules_applied"] == ["Shrubs Royalty", "Roses Royalty"]

    def test_inactive_and_unknown_rules_skipped(self, processor):
        result = processor.process_from_dict({
            "rules": [
                dict(ROSES_RULE, rule_name="Retired", is_active=False),
                dict(ROSES_RULE, rule_name="Notes", rule_type="contract_note"),
                dict(ROSES_RULE, base_rate=2),
            ],
            "transactions": [sale("s1")],
        })

        assert result["rules_applied"] == ["Roses Royalty"]
        assert result["total_fee"] == 20.0

    def test_identical_input_identical_output(self, processor):
        payload = {
            "rules": [
                ROSES_RULE,
                dict(ROSES_RULE, rule_name="Roses Alt", base_rate=7),
                {"rule_name": "General", "rule_type": "percentage", "base_rate": 3},
            ],
            "transactions": [sale(f"s{i}", gross_amount=100 + i) for i in range(10)],
        }
        first = processor.process_from_dict(copy.deepcopy(payload))
        second = FeeProcessor().process_from_dict(copy.deepcopy(payload))

        assert first == second

    def test_totals_are_sum_of_items(self, processor):
        result = processor.process(CalculationInput.from_dict({
            "rules": [ROSES_RULE],
            "transactions": [sale("s1", gross_amount="333.35"), sale("s2", gross_amount="0.05")],
        }))

        assert result.total_fee == sum(item.computed_fee for item in result.breakdown)
        assert result.total_fee == Decimal("33.35")

    def test_default_approach_is_manual(self):
        assert CalculationInput.from_dict({}).approach is CalculationApproach.MANUAL


class TestValidation:
    """Invalid input is rejected before pricing."""

    def test_negative_rate(self, processor):
        with pytest.raises(ValueError, match="base_rate cannot be negative"):
            processor.process_from_dict({"rules": [dict(ROSES_RULE, base_rate=-1)], "transactions": [sale("s1")]})

    def test_duplicate_transaction_ids(self, processor):
        with pytest.raises(ValueError, match="Duplicate transaction id"):
            processor.process_from_dict({"rules": [ROSES_RULE], "transactions": [sale("s1"), sale("s1")]})

    def test_json_entry_validation_status(self):
        payload = {"rules": [ROSES_RULE], "transactions": [sale("s1", gross_amount=-5)]}
        result = json.loads(calculate_fees_from_json(json.dumps(payload)))
        assert result["status"] == "validation_failed"

    def test_dict_entry(self):
        result = calculate_fees_from_dict({"rules": [ROSES_RULE], "transactions": [sale("s1")]})
        assert result["final_fee"] == 100.0

    @pytest.mark.parametrize("field", ["quantity", "gross_amount"])
    def test_unparseable_amount_is_rejected(self, processor, field):
        with pytest.raises(ValueError, match=f"{field} for transaction s1 must be a finite number"):
            processor.process_from_dict({"rules": [ROSES_RULE], "transactions": [sale("s1", **{field: "1,000"})]})

    def test_unparseable_amount_json_status(self):
        payload = {"rules": [ROSES_RULE], "transactions": [sale("s1", gross_amount="N/A")]}
        result = json.loads(calculate_fees_from_json(json.dumps(payload)))
        assert result["status"] == "validation_failed"

    @pytest.mark.parametrize("flag", ["false", "False", "0", 0])
    def test_string_false_deactivates_rule(self, processor, flag):
        result = processor.process_from_dict({
            "rules": [dict(ROSES_RULE, is_active=flag)],
            "transactions": [sale("s1")],
        })

        assert result["total_fee"] == 0.0
        assert result["unmatched_transactions"] == ["s1"]

    def test_string_true_keeps_rule_active(self, processor):
        result = processor.process_from_dict({
            "rules": [dict(ROSES_RULE, isActive="true")],
            "transactions": [sale("s1")],
        })
        assert result["total_fee"] == 100.0

    def test_unrecognised_active_flag(self, processor):
        with pytest.raises(ValueError, match="Expected a boolean"):
            processor.process_from_dict({"rules": [dict(ROSES_RULE, is_active="maybe")], "transactions": [sale("s1")]})

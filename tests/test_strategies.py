"""
Tests for the pricing strategies and strategy selection.

Run with: python -m pytest tests/test_strategies.py -v
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import make_sale
from royalty_engine.calculators import StrategyExecutor
from royalty_engine.calculators.adjustments import (
    determine_season,
    quantize_money,
    seasonal_multiplier,
    territory_multiplier,
)
from royalty_engine.exceptions import FormulaEvaluationError
from royalty_engine.formula import FormulaResult
from royalty_engine.models import CalculationRule


CONTAINER_RATES = [
    {"size": "1gal", "baseRate": 1.25},
    {"size": "5gal", "baseRate": 5.00, "volumeThreshold": 100, "discountedRate": 4.00},
]


def container_rule(rates=None, **fields):
    return CalculationRule(
        rule_name=fields.pop("rule_name", "Container Royalty"),
        rule_type="container_size_tiered",
        volume_tiers=CONTAINER_RATES if rates is None else rates,
        **fields,
    )


class StubEvaluator:
    """Returns a fixed value and records the context it was given."""

    def __init__(self, value, debug_log=None):
        self.value = value
        self.debug_log = debug_log or []
        self.contexts = []

    def evaluate(self, formula_definition, context):
        self.contexts.append(context)
        return FormulaResult(value=self.value, debug_log=list(self.debug_log))


class FailingEvaluator:
    def evaluate(self, formula_definition, context):
        raise KeyError("unknown variable: premium")


@pytest.fixture
def executor():
    return StrategyExecutor()


class TestAdjustments:
    """Season and territory multipliers."""

    @pytest.mark.parametrize("month,season", [
        (1, "Holiday"), (2, "Winter"), (3, "Spring"), (5, "Spring"), (6, "Summer"),
        (8, "Summer"), (9, "Fall"), (11, "Fall"), (12, "Holiday"),
    ])
    def test_determine_season(self, month, season):
        assert determine_season(date(2025, month, 15)) == season

    def test_seasonal_lookup_is_case_insensitive(self):
        rule = CalculationRule(rule_name="R", rule_type="percentage", seasonal_adjustments={"summer": Decimal("1.2")})
        assert seasonal_multiplier(rule, "Summer") == Decimal("1.2")
        assert seasonal_multiplier(rule, "Fall") == Decimal("1")

    def test_first_contained_territory_premium(self):
        rule = CalculationRule(
            rule_name="R",
            rule_type="percentage",
            territory_premiums={"California": Decimal("1.1"), "Northern": Decimal("1.3")},
        )
        assert territory_multiplier(rule, "Northern California") == Decimal("1.1")
        assert territory_multiplier(rule, "Texas") == Decimal("1")
        assert territory_multiplier(rule, "") == Decimal("1")

    def test_quantize_rounds_half_up(self):
        assert quantize_money(Decimal("2.345")) == Decimal("2.35")
        assert quantize_money(Decimal("2.344")) == Decimal("2.34")


class TestContainerSizeStrategy:
    """Per-unit container pricing."""

    def test_volume_discount_applied(self, executor):
        sale = make_sale(product_name="Hydrangea", container_size="5gal", quantity=150, gross_amount=3000)
        result = executor.calculate(sale, container_rule())

        assert result.strategy_used == "container_size"
        assert result.computed_fee == Decimal("600.00")
        assert result.effective_rate == Decimal("4.0")
        assert result.base_rate == Decimal("5.0")
        assert result.volume_discount_applied is True
        assert result.volume_threshold_met == Decimal("100")
        assert "Container size 5gal" in result.explanation
        assert "(volume discount at 100+)" in result.explanation

    def test_below_threshold_uses_base_rate(self, executor):
        sale = make_sale(product_name="Hydrangea", container_size="5gal", quantity=50, gross_amount=1000)
        result = executor.calculate(sale, container_rule())

        assert result.computed_fee == Decimal("250.00")
        assert result.volume_discount_applied is False
        threshold = next(c for c in result.conditions_checked if c.condition == "Volume Threshold")
        assert threshold.matched is False

    def test_size_inferred_from_product_name(self, executor):
        sale = make_sale(product_name="Hosta 1gal", quantity=10, gross_amount=100)
        result = executor.calculate(sale, container_rule())

        assert result.matched_container_size == "1gal"
        assert result.computed_fee == Decimal("12.50")

    def test_exact_size_beats_earlier_overlapping_label(self, executor):
        rule = container_rule(rates=[{"size": "5gal", "baseRate": 5}, {"size": "15gal", "baseRate": 20}])
        sale = make_sale(container_size="15gal", quantity=10, gross_amount=300)
        result = executor.calculate(sale, rule)

        assert result.matched_container_size == "15gal"
        assert result.computed_fee == Decimal("200.00")

    def test_inferred_size_prefers_longest_label(self, executor):
        rule = container_rule(rates=[{"size": "5gal", "baseRate": 5}, {"size": "15gal", "baseRate": 20}])
        sale = make_sale(product_name="Japanese Maple 15gal", quantity=2, gross_amount=100)
        result = executor.calculate(sale, rule)

        assert result.matched_container_size == "15gal"
        assert result.computed_fee == Decimal("40.00")

    def test_no_match_falls_back_to_first_entry(self, executor):
        sale = make_sale(product_name="Fern", container_size="3gal", quantity=10, gross_amount=100)
        result = executor.calculate(sale, container_rule())

        assert result.matched_container_size == "1gal (default)"
        assert result.computed_fee == Decimal("12.50")
        assert "(no exact match found)" in result.explanation
        assert result.flagged is False

    def test_no_valid_rates_prices_zero_and_flags(self, executor):
        rule = container_rule(rates=[{"size": "1gal", "baseRate": 0}, {"baseRate": 3}])
        sale = make_sale(container_size="1gal", quantity=10, gross_amount=100)
        result = executor.calculate(sale, rule)

        assert result.computed_fee == Decimal("0.00")
        assert result.flagged is True
        assert result.conditions_checked[0].condition == "Container Size Rates Configured"
        assert result.conditions_checked[0].matched is False

    def test_alternate_rate_key(self, executor):
        rule = container_rule(rates=[{"size": "2gal", "rate": "2.50"}])
        sale = make_sale(container_size="2gal", quantity=4, gross_amount=100)
        assert executor.calculate(sale, rule).computed_fee == Decimal("10.00")

    def test_filter_conditions_follow_container_checks(self, executor):
        rule = container_rule(product_categories=["Hydrangea"], territories=["All"])
        sale = make_sale(product_name="Hydrangea", container_size="5gal", quantity=150, gross_amount=3000)
        conditions = [c.condition for c in executor.calculate(sale, rule).conditions_checked]

        assert conditions == ["Container Size Match", "Volume Threshold", "Product Category", "Territory"]


class TestVolumeTierStrategy:
    """Quantity-banded percentage pricing."""

    @pytest.fixture
    def tiered_rule(self):
        return CalculationRule(
            rule_name="Tiered",
            rule_type="tiered",
            base_rate=Decimal("3"),
            volume_tiers=[
                {"min": 0, "max": 999, "rate": 5},
                {"min": 1000, "max": None, "rate": 4},
            ],
            product_categories=["Roses"],
        )

    def test_first_tier(self, executor, tiered_rule):
        result = executor.calculate(make_sale(quantity=500, gross_amount=1000), tiered_rule)

        assert result.strategy_used == "volume_tier"
        assert result.effective_rate == Decimal("5")
        assert result.computed_fee == Decimal("50.00")

    def test_unbounded_tier(self, executor, tiered_rule):
        result = executor.calculate(make_sale(quantity=5000, gross_amount=10000), tiered_rule)

        assert result.effective_rate == Decimal("4")
        assert result.computed_fee == Decimal("400.00")

    def test_no_tier_falls_back_to_base_rate(self, executor):
        rule = CalculationRule(
            rule_name="Gap",
            rule_type="tiered",
            base_rate=Decimal("2"),
            volume_tiers=[{"min": 100, "max": 200, "rate": 6}],
        )
        result = executor.calculate(make_sale(quantity=10, gross_amount=1000), rule)

        assert result.effective_rate == Decimal("2")
        assert result.computed_fee == Decimal("20.00")
        assert result.matched_tier is None

    def test_conditions_list_filters_first(self, executor, tiered_rule):
        conditions = executor.calculate(make_sale(quantity=500, gross_amount=1000), tiered_rule).conditions_checked
        assert [c.condition for c in conditions] == ["Product Category", "Volume Tier"]


class TestPercentageStrategy:
    """Flat percentage with multipliers."""

    def test_plain_percentage(self, executor):
        rule = CalculationRule(rule_name="Flat", rule_type="percentage", base_rate=Decimal("5"))
        result = executor.calculate(make_sale(gross_amount=1000), rule)

        assert result.strategy_used == "percentage"
        assert result.computed_fee == Decimal("50.00")
        assert result.explanation == "5% of gross sales"

    def test_seasonal_and_territory_multipliers(self, executor):
        rule = CalculationRule(
            rule_name="Flat",
            rule_type="percentage",
            base_rate=Decimal("10"),
            seasonal_adjustments={"Summer": Decimal("1.2")},
            territory_premiums={"California": Decimal("1.5")},
        )
        sale = make_sale(gross_amount=1000, territory="California", transaction_date=date(2025, 7, 1))
        result = executor.calculate(sale, rule)

        assert result.season == "Summer"
        assert result.computed_fee == Decimal("180.00")
        assert "× 1.20 (Summer)" in result.explanation
        assert "× 1.50 (California)" in result.explanation


class TestFormulaStrategy:
    """Delegation to the formula evaluator."""

    @pytest.fixture
    def formula_rule(self):
        return CalculationRule(
            rule_name="Formula Rule",
            rule_type="formula_based",
            base_rate=Decimal("10"),
            formula_definition={"description": "Units × $2", "expression": "units * 2"},
            seasonal_adjustments={"Summer": Decimal("2")},
        )

    def test_evaluator_result_is_the_fee(self, formula_rule):
        evaluator = StubEvaluator(Decimal("20.005"), debug_log=["units=10"])
        executor = StrategyExecutor(evaluator)
        sale = make_sale(quantity=10, gross_amount=500, transaction_date=date(2025, 7, 1))
        result = executor.calculate(sale, formula_rule)

        assert result.strategy_used == "formula"
        assert result.computed_fee == Decimal("20.01")
        assert result.seasonal_multiplier == Decimal("1")
        assert result.effective_rate == Decimal("2.0005")
        assert result.explanation == "Formula: Units × $2 = $20.01"
        assert result.debug_log == ["units=10"]

    def test_context_carries_sale_values(self, formula_rule):
        evaluator = StubEvaluator(Decimal("1"))
        sale = make_sale(product_name="Rose", category="Roses", territory="East", quantity=7,
                         transaction_date=date(2025, 7, 1))
        StrategyExecutor(evaluator).calculate(sale, formula_rule)

        context = evaluator.contexts[0]
        assert context["units"] == Decimal("7")
        assert context["season"] == "Summer"
        assert context["product"] == "Rose"
        assert context["salesVolume"] == "7"

    def test_formula_takes_precedence_over_tiers(self, formula_rule):
        formula_rule.volume_tiers = [{"min": 0, "rate": 50}]
        result = StrategyExecutor(StubEvaluator(Decimal("3"))).calculate(make_sale(quantity=1), formula_rule)
        assert result.strategy_used == "formula"

    def test_zero_quantity_rate_is_zero(self, formula_rule):
        result = StrategyExecutor(StubEvaluator(Decimal("0"))).calculate(make_sale(quantity=0), formula_rule)
        assert result.effective_rate == Decimal("0")

    def test_missing_evaluator_raises(self, executor, formula_rule):
        with pytest.raises(FormulaEvaluationError, match="Formula Rule"):
            executor.calculate(make_sale(), formula_rule)

    def test_evaluator_failure_is_wrapped(self, formula_rule):
        with pytest.raises(FormulaEvaluationError, match="premium"):
            StrategyExecutor(FailingEvaluator()).calculate(make_sale(), formula_rule)

"""
Container-Size Strategy

Per-unit pricing keyed by container size, with an optional volume discount
per size. Rates are money per unit, not percentages.
"""

import logging
from decimal import Decimal

from ..models import CalculationRule, ConditionCheck, ContainerSizeRate, SaleTransaction, StrategyResult
from .adjustments import (
    determine_season,
    explain_adjustments,
    format_number,
    quantize_money,
    seasonal_multiplier,
    territory_multiplier,
)

logger = logging.getLogger(__name__)


class ContainerSizeCalculator:
    """Prices container_size_tiered rules."""

    def parse_rates(self, rule: CalculationRule) -> list[ContainerSizeRate]:
        """Valid rate entries in declaration order."""
        rates = []
        for entry in rule.volume_tiers:
            rate = ContainerSizeRate.parse(entry)
            if rate is not None:
                rates.append(rate)
        return rates

    def find_rate(self, transaction: SaleTransaction, rates: list[ContainerSizeRate]) -> ContainerSizeRate | None:
        """Match the declared container size, else infer it from the product name.

        An exact size wins over any partial hit. Among partial hits the
        longest size label wins, so "15gal" is never priced as "5gal".
        """
        declared = (transaction.container_size or "").strip().lower()
        if declared:
            for rate in rates:
                if rate.size.strip().lower() == declared:
                    return rate

            partial = [
                rate for rate in rates
                if rate.size.strip().lower() in declared or declared in rate.size.strip().lower()
            ]
            if partial:
                return self._longest_size(partial)

        product = transaction.product_name.lower()
        if product:
            inferred = [rate for rate in rates if rate.size.strip().lower() in product]
            if inferred:
                return self._longest_size(inferred)
        return None

    def _longest_size(self, rates: list[ContainerSizeRate]) -> ContainerSizeRate:
        # max() keeps the first of equal-length labels
        return max(rates, key=lambda rate: len(rate.size.strip()))

    def calculate(self, transaction: SaleTransaction, rule: CalculationRule) -> StrategyResult:
        rates = self.parse_rates(rule)
        if not rates:
            logger.warning(f"Rule {rule.rule_name} has no valid container size rates, pricing at zero")
            return StrategyResult(
                strategy_used="container_size",
                effective_rate=Decimal("0"),
                base_rate=Decimal("0"),
                computed_fee=Decimal("0.00"),
                explanation=f"Rule {rule.rule_name}: No valid container size rates configured",
                conditions_checked=[
                    ConditionCheck(
                        condition="Container Size Rates Configured",
                        expected="At least one valid rate",
                        actual="No valid rates found",
                        matched=False,
                    )
                ],
                flagged=True,
            )

        expected_sizes = ", ".join(r.size for r in rates)
        season = determine_season(transaction.transaction_date)
        seasonal = seasonal_multiplier(rule, season)
        territory = territory_multiplier(rule, transaction.territory)
        quantity = transaction.quantity

        matched = self.find_rate(transaction, rates)
        if matched is None:
            default = rates[0]
            logger.warning(
                f"No container size match for {transaction.container_size or transaction.product_name}, "
                f"using default {default.size} @ ${default.base_rate}/unit"
            )
            fee = quantize_money(default.base_rate * quantity * seasonal * territory)
            return StrategyResult(
                strategy_used="container_size",
                effective_rate=default.base_rate,
                base_rate=default.base_rate,
                computed_fee=fee,
                explanation=(
                    f"Default container size {default.size}: ${format_number(default.base_rate)}/unit × "
                    f"{format_number(quantity)} units (no exact match found)"
                    + explain_adjustments(seasonal, season, territory, transaction.territory)
                ),
                seasonal_multiplier=seasonal,
                territory_multiplier=territory,
                season=season,
                matched_container_size=f"{default.size} (default)",
                conditions_checked=[
                    ConditionCheck(
                        condition="Container Size Match",
                        expected=expected_sizes,
                        actual=transaction.container_size or transaction.product_name,
                        matched=False,
                    )
                ],
            )

        threshold = matched.volume_threshold
        discounted = (
            threshold is not None
            and threshold > 0
            and quantity >= threshold
            and matched.discounted_rate is not None
        )
        rate = matched.discounted_rate if discounted else matched.base_rate
        fee = quantize_money(rate * quantity * seasonal * territory)

        explanation = f"Container size {matched.size}: ${format_number(rate)}/unit × {format_number(quantity)} units"
        if discounted:
            explanation += f" (volume discount at {format_number(threshold)}+)"
        explanation += explain_adjustments(seasonal, season, territory, transaction.territory)

        return StrategyResult(
            strategy_used="container_size",
            effective_rate=rate,
            base_rate=matched.base_rate,
            computed_fee=fee,
            explanation=explanation,
            seasonal_multiplier=seasonal,
            territory_multiplier=territory,
            season=season,
            volume_discount_applied=discounted,
            volume_threshold_met=threshold if discounted else None,
            matched_container_size=matched.size,
            conditions_checked=[
                ConditionCheck(
                    condition="Container Size Match",
                    expected=expected_sizes,
                    actual=transaction.container_size or "inferred",
                    matched=True,
                ),
                ConditionCheck(
                    condition="Volume Threshold",
                    expected=f"≥ {format_number(threshold)} units" if threshold else "No threshold",
                    actual=f"{format_number(quantity)} units",
                    matched=discounted or not threshold,
                ),
            ],
        )

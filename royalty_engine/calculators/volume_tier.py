"""
Volume-Tier Strategy

Percentage of gross amount, with the rate taken from the quantity band the
sale falls into. Falls back to the rule's base rate when no band contains
the quantity.
"""

from ..models import CalculationRule, ConditionCheck, SaleTransaction, StrategyResult, VolumeTier
from .adjustments import (
    HUNDRED,
    determine_season,
    explain_adjustments,
    format_number,
    quantize_money,
    seasonal_multiplier,
    territory_multiplier,
)


def parse_tiers(rule: CalculationRule) -> list[VolumeTier]:
    """Volume tiers of a rule, skipping entries without a min or rate."""
    tiers = []
    for entry in rule.volume_tiers:
        tier = VolumeTier.parse(entry)
        if tier is not None:
            tiers.append(tier)
    return tiers


def describe_tiers(tiers: list[VolumeTier]) -> str:
    return ", ".join(
        f"{format_number(t.min)}-{format_number(t.max) if t.max is not None else '∞'}: {format_number(t.rate)}%"
        for t in tiers
    )


class VolumeTierCalculator:
    """Prices rules carrying quantity tiers."""

    def find_tier(self, tiers: list[VolumeTier], quantity) -> VolumeTier | None:
        for tier in tiers:
            if tier.contains(quantity):
                return tier
        return None

    def calculate(self, transaction: SaleTransaction, rule: CalculationRule, tiers: list[VolumeTier]) -> StrategyResult:
        matched = self.find_tier(tiers, transaction.quantity)
        rate = matched.rate if matched else rule.base_rate

        season = determine_season(transaction.transaction_date)
        seasonal = seasonal_multiplier(rule, season)
        territory = territory_multiplier(rule, transaction.territory)
        fee = quantize_money(transaction.gross_amount * (rate / HUNDRED) * seasonal * territory)

        return StrategyResult(
            strategy_used="volume_tier",
            effective_rate=rate,
            base_rate=rule.base_rate,
            computed_fee=fee,
            explanation=(
                f"{format_number(rate)}% of gross sales"
                + explain_adjustments(seasonal, season, territory, transaction.territory)
            ),
            seasonal_multiplier=seasonal,
            territory_multiplier=territory,
            season=season,
            matched_tier=matched,
            conditions_checked=[
                ConditionCheck(
                    condition="Volume Tier",
                    expected=describe_tiers(tiers),
                    actual=f"{format_number(transaction.quantity)} units",
                    matched=matched is not None,
                )
            ],
        )

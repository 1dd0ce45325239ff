"""
Percentage Strategy

Default pricing: the rule's base rate as a percentage of gross amount.
"""

from ..models import CalculationRule, SaleTransaction, StrategyResult
from .adjustments import (
    HUNDRED,
    determine_season,
    explain_adjustments,
    format_number,
    quantize_money,
    seasonal_multiplier,
    territory_multiplier,
)


class PercentageCalculator:
    """Flat percentage of gross sales."""

    def calculate(self, transaction: SaleTransaction, rule: CalculationRule) -> StrategyResult:
        rate = rule.base_rate
        season = determine_season(transaction.transaction_date)
        seasonal = seasonal_multiplier(rule, season)
        territory = territory_multiplier(rule, transaction.territory)
        fee = quantize_money(transaction.gross_amount * (rate / HUNDRED) * seasonal * territory)

        return StrategyResult(
            strategy_used="percentage",
            effective_rate=rate,
            base_rate=rate,
            computed_fee=fee,
            explanation=(
                f"{format_number(rate)}% of gross sales"
                + explain_adjustments(seasonal, season, territory, transaction.territory)
            ),
            seasonal_multiplier=seasonal,
            territory_multiplier=territory,
            season=season,
        )

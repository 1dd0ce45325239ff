"""
Seasonal and territory adjustments shared by the pricing strategies.

All use Decimal for precision with ROUND_HALF_UP rounding.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from ..models import CalculationRule

ONE = Decimal("1")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_number(value: Decimal) -> str:
    """Plain decimal notation without trailing zeros (15.00 -> '15')."""
    normalized = value.normalize()
    return f"{normalized:f}"


def determine_season(transaction_date: date) -> str:
    """Calendar season of a sale date."""
    month = transaction_date.month
    if 3 <= month <= 5:
        return "Spring"
    if 6 <= month <= 8:
        return "Summer"
    if 9 <= month <= 11:
        return "Fall"
    if month in (12, 1):
        return "Holiday"
    return "Winter"


def seasonal_multiplier(rule: CalculationRule, season: str) -> Decimal:
    """Multiplier for the season from the rule's adjustment map (default 1)."""
    wanted = season.lower()
    for key, multiplier in rule.seasonal_adjustments.items():
        if key.strip().lower() == wanted:
            return multiplier or ONE
    return ONE


def territory_multiplier(rule: CalculationRule, territory: str) -> Decimal:
    """First premium whose key is contained in the sale territory (default 1)."""
    sale_territory = (territory or "").lower()
    if not sale_territory:
        return ONE
    for key, premium in rule.territory_premiums.items():
        if key.strip() and key.strip().lower() in sale_territory:
            return premium
    return ONE


def explain_adjustments(seasonal: Decimal, season: str, territory: Decimal, territory_name: str) -> str:
    """Explanation suffix for multipliers other than 1."""
    parts = []
    if seasonal != ONE:
        parts.append(f" × {seasonal:.2f} ({season})")
    if territory != ONE:
        parts.append(f" × {territory:.2f} ({territory_name})")
    return "".join(parts)

"""
Dimension Extractor

Pulls the structural constraints of a calculation rule (product categories,
territories, container sizes, formula field references) out as blueprint
dimensions, and provides the term comparison used to bind and match them.
"""

import re

from .models import BlueprintDimension, CalculationRule

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def tokenize(text: str | None) -> list[str]:
    """Lower-case alphanumeric tokens of a term."""
    return [token for token in _TOKEN_SPLIT.split((text or "").lower()) if token]


def terms_match(left: str | None, right: str | None) -> bool:
    """Bidirectional containment on word boundaries.

    True when the shorter term's tokens appear, in order and contiguous, in
    the longer term. "East" matches "East Coast" but not "Eastern Europe";
    an empty term matches nothing.
    """
    left_tokens = tokenize(left)
    right_tokens = tokenize(right)
    if not left_tokens or not right_tokens:
        return False

    if len(left_tokens) <= len(right_tokens):
        shorter, longer = left_tokens, right_tokens
    else:
        shorter, longer = right_tokens, left_tokens

    width = len(shorter)
    return any(longer[i:i + width] == shorter for i in range(len(longer) - width + 1))


class DimensionExtractor:
    """Extracts blueprint dimensions from a calculation rule."""

    def extract(self, rule: CalculationRule) -> list[BlueprintDimension]:
        """
        Extract dimensions in a fixed order:
        1. Product categories
        2. Territories
        3. Container sizes
        4. Formula variables sourced from sales data
        """
        dimensions = []
        dimensions.extend(self._from_values("product", rule.product_categories))
        dimensions.extend(self._from_values("territory", rule.territories))
        dimensions.extend(self._from_values("container_size", rule.container_sizes))
        dimensions.extend(self._from_formula(rule.formula_definition))
        return dimensions

    def _from_values(self, dimension_type: str, values: list[str]) -> list[BlueprintDimension]:
        return [
            BlueprintDimension(dimension_type=dimension_type, contract_term=value, match_value=value)
            for value in values
            if value and value.strip()
        ]

    def _from_formula(self, formula_definition: dict | None) -> list[BlueprintDimension]:
        if not isinstance(formula_definition, dict):
            return []

        variables = formula_definition.get("variables") or {}
        if not isinstance(variables, dict):
            return []

        dimensions = []
        for definition in variables.values():
            if not isinstance(definition, dict):
                continue
            source_field = definition.get("field")
            if definition.get("source") == "sales_data" and source_field:
                dimensions.append(BlueprintDimension(
                    dimension_type="sales_field",
                    contract_term=str(source_field),
                    match_value=str(source_field),
                ))
        return dimensions

"""
Rule / Blueprint Matcher

Selects the single most specific rule (or materialized blueprint) for a sale
transaction. Selection is deterministic and returns a MatchDecision that
records why the rule won.
"""

import logging
import re
from decimal import Decimal

from .dimensions import terms_match
from .models import Blueprint, CalculationRule, MatchDecision, SaleTransaction

logger = logging.getLogger(__name__)


def specificity_score(rule: CalculationRule) -> Decimal:
    """Fewer product categories = more specific. Catch-all rules score 0."""
    if not rule.product_categories:
        return Decimal("0")
    return Decimal("1000") / Decimal(len(rule.product_categories))


class RuleMatcher:
    """Matches sale transactions to calculation rules and blueprints."""

    DEFAULT_PRIORITY = 50
    MAX_CANDIDATE_NAMES = 5

    # strict_exact > contains > category > fallback
    QUALITY_RANK = {"strict_exact": 0, "contains": 1, "category": 2, "fallback": 3}

    # Generic placeholders in sales data; territory filters are not enforced against them
    ABSTRACT_TERRITORIES = frozenset({
        "primary", "secondary", "tertiary", "domestic", "international",
        "north", "south", "east", "west",
    })

    GENERIC_CATEGORY_WORDS = frozenset({"tier", "grade", "level", "class", "type"})
    STOP_WORDS = frozenset({"and", "or", "the", "a", "an", "of", "in", "on", "at", "to", "for"})
    _CATEGORY_SPLIT = re.compile(r"[\s&,/\-()]+")
    _NUMBER = re.compile(r"^\d+$")

    # =========================================================================
    # RAW RULE MATCHING
    # =========================================================================

    def find_matching_rule(
        self,
        transaction: SaleTransaction,
        rules: list[CalculationRule],
    ) -> MatchDecision | None:
        """
        Find the best matching rule for a transaction.

        Among rules whose category/territory filters pass, order by:
        1. Strict exact product-name match (case-insensitive equality)
        2. Match quality (strict_exact > contains > category > fallback)
        3. Specificity score (1000 / number of categories; 0 for catch-alls)
        4. Explicit priority (lower wins, default 50)
        5. Declaration order
        """
        product = transaction.product_name.lower().strip()
        candidates = []

        for index, rule in enumerate(rules):
            if not self.rule_matches_transaction(transaction, rule):
                continue

            quality = self._match_quality(product, rule.product_categories)
            priority = rule.priority if rule.priority is not None else self.DEFAULT_PRIORITY
            score = specificity_score(rule)
            sort_key = (
                0 if quality == "strict_exact" else 1,
                self.QUALITY_RANK[quality],
                -score,
                priority,
                index,
            )
            candidates.append((sort_key, rule, quality, score, priority))

        if not candidates:
            return None

        candidates.sort(key=lambda c: c[0])
        _, selected, quality, score, priority = candidates[0]

        if len(candidates) > 1:
            others = ", ".join(c[1].rule_name for c in candidates[1:])
            logger.info(
                f"Rule selection for '{transaction.product_name}': selected '{selected.rule_name}' "
                f"({quality}, specificity: {score:.1f}, priority: {priority}) over "
                f"{len(candidates) - 1} other matching rule(s): {others}"
            )

        return MatchDecision(
            rule=selected,
            match_quality=quality,
            specificity_score=score,
            priority=priority,
            candidates_considered=len(candidates),
            candidate_names=tuple(c[1].rule_name for c in candidates[:self.MAX_CANDIDATE_NAMES]),
        )

    def _match_quality(self, product: str, categories: list[str]) -> str:
        quality = "fallback"
        for category in categories:
            category_lower = category.lower().strip()
            if not category_lower:
                continue
            if product == category_lower:
                return "strict_exact"
            if product and (category_lower in product or product in category_lower):
                quality = "contains"

        if quality == "fallback" and categories:
            return "category"
        return quality

    def rule_matches_transaction(self, transaction: SaleTransaction, rule: CalculationRule) -> bool:
        """Coarse category and territory filters."""
        if rule.product_categories and not self._categories_pass(transaction, rule.product_categories):
            return False

        territories = rule.territories
        if territories and not any(t.strip().lower() == "all" for t in territories):
            sale_territory = transaction.territory.lower().strip()
            if sale_territory not in self.ABSTRACT_TERRITORIES:
                if not sale_territory:
                    return False
                if not any(
                    t.lower() in sale_territory or sale_territory in t.lower()
                    for t in territories
                    if t.strip()
                ):
                    return False

        return True

    def _categories_pass(self, transaction: SaleTransaction, categories: list[str]) -> bool:
        product = transaction.product_name.lower().strip()
        sale_category = transaction.category.lower().strip()

        for category in categories:
            category_lower = category.lower().strip()
            if not category_lower:
                continue
            # Extracted rules often store product names in the category list
            if product and (category_lower in product or product in category_lower):
                if self._tiers_compatible(self._category_words(product), self._category_words(category_lower)):
                    return True
            if sale_category and self.categories_match(sale_category, category_lower):
                return True
        return False

    def categories_match(self, sale_category: str, rule_category: str) -> bool:
        """
        Word-overlap category matching with tier/grade awareness.

        "Ornamental Shrubs" matches "Ornamental Trees & Shrubs".
        "Tier 1 Shrubs" does not match "Tier 1 Trees" or "Tier 2 Shrubs".
        "Shrubs" does not match "Tier 2 Shrubs".
        """
        sale_words = self._category_words(sale_category)
        rule_words = self._category_words(rule_category)
        if not sale_words or not rule_words:
            return False

        if not self._tiers_compatible(sale_words, rule_words):
            return False

        sale_meaningful = [w for w in sale_words if not self._is_generic(w)]
        rule_meaningful = [w for w in rule_words if not self._is_generic(w)]
        shared = [w for w in sale_meaningful if w in rule_meaningful]
        if not shared:
            return False

        if len(sale_meaningful) == 1 and len(rule_meaningful) == 1:
            return sale_meaningful[0] == rule_meaningful[0]

        required = min(2, len(sale_meaningful), len(rule_meaningful))
        return len(shared) >= required

    def _tiers_compatible(self, sale_words: list[str], rule_words: list[str]) -> bool:
        """Both sides untiered, or both carry the same tier numbers."""
        sale_numbers = {w for w in sale_words if self._NUMBER.match(w)}
        rule_numbers = {w for w in rule_words if self._NUMBER.match(w)}
        return sale_numbers == rule_numbers

    def _category_words(self, category: str) -> list[str]:
        return [
            word.strip()
            for word in self._CATEGORY_SPLIT.split(category.lower())
            if word.strip() and word.strip() not in self.STOP_WORDS
        ]

    def _is_generic(self, word: str) -> bool:
        return word in self.GENERIC_CATEGORY_WORDS or bool(self._NUMBER.match(word))

    # =========================================================================
    # BLUEPRINT MATCHING
    # =========================================================================

    def match_transaction_to_blueprint(self, transaction: SaleTransaction, blueprint: Blueprint) -> bool:
        """
        A blueprint matches when every mapped product/territory/category
        dimension matches the transaction. Unmapped dimensions are ignored;
        a blueprint with no dimensions never matches.
        """
        if not blueprint.dimensions:
            return False

        for dimension in blueprint.dimensions:
            if not dimension.is_mapped or not dimension.match_value:
                continue

            if dimension.dimension_type == "product":
                # Product dimensions hold product names or category labels
                matched = (
                    terms_match(transaction.product_name, dimension.match_value)
                    or terms_match(transaction.category, dimension.match_value)
                )
            elif dimension.dimension_type == "territory":
                matched = terms_match(transaction.territory, dimension.match_value)
            elif dimension.dimension_type == "category":
                matched = terms_match(transaction.category, dimension.match_value)
            else:
                continue

            if not matched:
                return False

        return True

    def find_matching_blueprint(
        self,
        transaction: SaleTransaction,
        blueprints: list[Blueprint],
    ) -> MatchDecision | None:
        """First matching blueprint in (priority, declaration) order."""
        ordered = sorted(blueprints, key=lambda b: (b.priority, b.position))
        matches = [b for b in ordered if self.match_transaction_to_blueprint(transaction, b)]
        if not matches:
            return None

        selected = matches[0]
        logger.info(f"Blueprint matched: {selected.name} for {transaction.product_name}")
        return MatchDecision(
            rule=selected.rule,
            match_quality="blueprint",
            specificity_score=specificity_score(selected.rule),
            priority=selected.priority,
            candidates_considered=len(matches),
            candidate_names=tuple(b.name for b in matches[:self.MAX_CANDIDATE_NAMES]),
            blueprint=selected,
        )

"""
Tests for rule and blueprint matching.

Run with: python -m pytest tests/test_matcher.py -v
"""

from decimal import Decimal

import pytest

from conftest import make_sale
from royalty_engine.dimensions import terms_match
from royalty_engine.matcher import RuleMatcher, specificity_score
from royalty_engine.models import Blueprint, BlueprintDimension, CalculationRule


def rule(name, categories=(), territories=(), priority=None, **fields):
    return CalculationRule(
        rule_name=name,
        rule_type=fields.pop("rule_type", "percentage"),
        base_rate=Decimal(str(fields.pop("base_rate", "5"))),
        product_categories=list(categories),
        territories=list(territories),
        priority=priority,
        **fields,
    )


def blueprint(name, dimensions, priority=10, position=0):
    return Blueprint(
        name=name,
        rule_type="percentage",
        rule=rule(name),
        dimensions=dimensions,
        priority=priority,
        position=position,
    )


def mapped(dimension_type, value, erp_field="Field"):
    return BlueprintDimension(
        dimension_type=dimension_type,
        contract_term=value,
        match_value=value,
        erp_field_name=erp_field,
        is_mapped=True,
    )


@pytest.fixture
def matcher():
    return RuleMatcher()


class TestSpecificityScore:
    """Fewer categories = more specific."""

    def test_single_category(self):
        assert specificity_score(rule("A", ["Roses"])) == Decimal("1000")

    def test_four_categories(self):
        assert specificity_score(rule("A", ["a", "b", "c", "d"])) == Decimal("250")

    def test_catch_all_scores_zero(self):
        assert specificity_score(rule("A")) == Decimal("0")


class TestCategoryMatching:
    """Word-overlap category matching with tier awareness."""

    def test_shared_words_match(self, matcher):
        assert matcher.categories_match("ornamental shrubs", "ornamental trees & shrubs")

    def test_untiered_sale_does_not_match_tiered_rule(self, matcher):
        assert not matcher.categories_match("shrubs", "tier 2 shrubs")

    def test_tiered_sale_does_not_match_untiered_rule(self, matcher):
        assert not matcher.categories_match("tier 2 shrubs", "shrubs")

    def test_different_tiers_do_not_match(self, matcher):
        assert not matcher.categories_match("tier 1 shrubs", "tier 2 shrubs")

    def test_same_tier_different_plant_does_not_match(self, matcher):
        assert not matcher.categories_match("tier 1 shrubs", "tier 1 trees")

    def test_same_tier_same_plant_matches(self, matcher):
        assert matcher.categories_match("tier 1 shrubs", "Tier 1 Shrubs".lower())

    def test_single_meaningful_words_must_be_equal(self, matcher):
        assert matcher.categories_match("perennials", "perennials")
        assert not matcher.categories_match("perennials", "annuals")

    def test_shrubs_sale_skips_tier_2_rule(self, matcher):
        """A 'Shrubs' sale never falls into a 'Tier 2 Shrubs' rule."""
        sale = make_sale(product_name="Boxwood", category="Shrubs")
        assert not matcher.rule_matches_transaction(sale, rule("Tier 2", ["Tier 2 Shrubs"]))
        assert matcher.rule_matches_transaction(sale, rule("Shrubs", ["Shrubs"]))

    def test_product_name_in_category_list(self, matcher):
        sale = make_sale(product_name="Aurora Rose 2gal", category="Flowering")
        assert matcher.rule_matches_transaction(sale, rule("Aurora", ["Aurora Rose"]))

    def test_product_named_like_category_skips_tier_2_rule(self, matcher):
        sale = make_sale(product_name="Shrubs", category="Shrubs")

        assert not matcher.rule_matches_transaction(sale, rule("Tier 2", ["Tier 2 Shrubs"]))
        assert matcher.rule_matches_transaction(sale, rule("Shrubs", ["Shrubs"]))

    def test_tiered_product_skips_untiered_rule(self, matcher):
        sale = make_sale(product_name="Tier 2 Shrubs", category="Tier 2 Shrubs")

        assert not matcher.rule_matches_transaction(sale, rule("Shrubs", ["Shrubs"]))
        assert matcher.rule_matches_transaction(sale, rule("Tier 2", ["Tier 2 Shrubs"]))

    def test_tiered_product_skips_other_tier(self, matcher):
        sale = make_sale(product_name="Tier 1 Shrubs", category="Tier 1 Shrubs")
        assert not matcher.rule_matches_transaction(sale, rule("Tier 2", ["Tier 2 Shrubs"]))

    def test_tier_2_rule_not_selected_for_plain_shrubs(self, matcher):
        sale = make_sale(product_name="Shrubs", category="Shrubs")
        rules = [rule("Tier 2", ["Tier 2 Shrubs"]), rule("Shrubs", ["Shrubs"])]

        assert matcher.find_matching_rule(sale, rules).rule.rule_name == "Shrubs"


class TestTerritoryFilter:
    """Territory filters on raw rules."""

    def test_substring_match(self, matcher):
        sale = make_sale(territory="Northern California")
        assert matcher.rule_matches_transaction(sale, rule("CA", territories=["California"]))

    def test_non_matching_territory(self, matcher):
        sale = make_sale(territory="Texas")
        assert not matcher.rule_matches_transaction(sale, rule("CA", territories=["California"]))

    def test_all_matches_everything(self, matcher):
        sale = make_sale(territory="Texas")
        assert matcher.rule_matches_transaction(sale, rule("All", territories=["All"]))

    @pytest.mark.parametrize("territory", ["Primary", "secondary", "Domestic", "West"])
    def test_abstract_territory_passes(self, matcher, territory):
        sale = make_sale(territory=territory)
        assert matcher.rule_matches_transaction(sale, rule("CA", territories=["California"]))

    def test_missing_territory_fails(self, matcher):
        sale = make_sale(territory="")
        assert not matcher.rule_matches_transaction(sale, rule("CA", territories=["California"]))


class TestRuleSelection:
    """Ordering: strict exact, quality, specificity, priority, declaration order."""

    def test_strict_exact_beats_contains(self, matcher):
        sale = make_sale(product_name="Rose Bush")
        decision = matcher.find_matching_rule(sale, [rule("Roses", ["Rose"]), rule("Rose Bush", ["Rose Bush"])])

        assert decision.rule.rule_name == "Rose Bush"
        assert decision.match_quality == "strict_exact"
        assert decision.candidates_considered == 2

    def test_contains_beats_category(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe", category="Flowering Shrubs")
        rules = [rule("Flowering", ["Flowering Shrubs"]), rule("Azalea", ["Azalea"])]
        decision = matcher.find_matching_rule(sale, rules)

        assert decision.rule.rule_name == "Azalea"
        assert decision.match_quality == "contains"

    def test_category_quality(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe", category="Flowering Shrubs")
        decision = matcher.find_matching_rule(sale, [rule("Flowering", ["Flowering Shrubs"])])
        assert decision.match_quality == "category"

    def test_contains_beats_catch_all(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe")
        decision = matcher.find_matching_rule(sale, [rule("General"), rule("Azalea", ["Azalea"])])

        assert decision.rule.rule_name == "Azalea"

    def test_specific_rule_beats_catch_all_regardless_of_priority(self, matcher):
        sale = make_sale(product_name="Sugar Maple", category="Trees")
        rules = [rule("Catch All", priority=1), rule("Maple", ["Maple"], priority=90)]

        assert matcher.find_matching_rule(sale, rules).rule.rule_name == "Maple"
        assert matcher.find_matching_rule(sale, list(reversed(rules))).rule.rule_name == "Maple"

    def test_catch_all_is_fallback(self, matcher):
        decision = matcher.find_matching_rule(make_sale(), [rule("General")])
        assert decision.match_quality == "fallback"
        assert decision.specificity_score == Decimal("0")

    def test_specificity_breaks_tie(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe")
        rules = [rule("Broad", ["Azalea", "Camellia"]), rule("Narrow", ["Azalea"])]
        decision = matcher.find_matching_rule(sale, rules)

        assert decision.rule.rule_name == "Narrow"
        assert decision.specificity_score == Decimal("1000")

    def test_priority_breaks_tie(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe")
        rules = [rule("Low", ["Azalea"], priority=20), rule("High", ["Azalea"], priority=5)]
        decision = matcher.find_matching_rule(sale, rules)

        assert decision.rule.rule_name == "High"
        assert decision.priority == 5

    def test_default_priority(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe")
        rules = [rule("Default", ["Azalea"]), rule("Explicit", ["Azalea"], priority=60)]
        decision = matcher.find_matching_rule(sale, rules)

        assert decision.rule.rule_name == "Default"
        assert decision.priority == RuleMatcher.DEFAULT_PRIORITY

    def test_declaration_order_breaks_tie(self, matcher):
        sale = make_sale(product_name="Azalea Deluxe")
        rules = [rule("First", ["Azalea"]), rule("Second", ["Azalea"])]
        decision = matcher.find_matching_rule(sale, rules)

        assert decision.rule.rule_name == "First"
        assert decision.candidate_names == ("First", "Second")

    def test_no_match_returns_none(self, matcher):
        sale = make_sale(product_name="Boxwood", category="Shrubs")
        assert matcher.find_matching_rule(sale, [rule("Roses", ["Roses"])]) is None

    def test_decision_does_not_modify_rule(self, matcher):
        roses = rule("Roses", ["Rose"])
        before = roses.to_dict()
        matcher.find_matching_rule(make_sale(product_name="Rose"), [roses])
        assert roses.to_dict() == before


class TestTermsMatch:
    """Token-aware term comparison."""

    def test_whole_words(self):
        assert terms_match("East", "East Coast")
        assert terms_match("East Coast", "east")

    def test_partial_word_does_not_match(self):
        assert not terms_match("East", "Eastern Europe")

    def test_empty_matches_nothing(self):
        assert not terms_match("", "East")
        assert not terms_match(None, "East")


class TestBlueprintMatching:
    """Blueprint dimension matching."""

    def test_no_dimensions_never_matches(self, matcher):
        assert not matcher.match_transaction_to_blueprint(make_sale(), blueprint("Empty", []))

    def test_territory_word_boundary(self, matcher):
        bp = blueprint("East", [mapped("territory", "East")])

        assert matcher.match_transaction_to_blueprint(make_sale(territory="East Coast"), bp)
        assert not matcher.match_transaction_to_blueprint(make_sale(territory="Eastern Europe"), bp)

    def test_product_dimension_matches_name_or_category(self, matcher):
        bp = blueprint("Roses", [mapped("product", "Roses")])

        assert matcher.match_transaction_to_blueprint(make_sale(product_name="Climbing Roses"), bp)
        assert matcher.match_transaction_to_blueprint(make_sale(product_name="Iceberg", category="Roses"), bp)
        assert not matcher.match_transaction_to_blueprint(make_sale(product_name="Boxwood", category="Shrubs"), bp)

    def test_every_mapped_dimension_must_match(self, matcher):
        bp = blueprint("Roses East", [mapped("product", "Roses"), mapped("territory", "East")])

        assert matcher.match_transaction_to_blueprint(make_sale(product_name="Roses", territory="East"), bp)
        assert not matcher.match_transaction_to_blueprint(make_sale(product_name="Roses", territory="West"), bp)

    def test_unmapped_dimensions_are_ignored(self, matcher):
        unmapped = BlueprintDimension(dimension_type="territory", contract_term="Mars", match_value="Mars")
        bp = blueprint("Roses", [mapped("product", "Roses"), unmapped])

        assert matcher.match_transaction_to_blueprint(make_sale(product_name="Roses", territory="East"), bp)

    def test_priority_then_position(self, matcher):
        blueprints = [
            blueprint("Later", [mapped("product", "Roses")], priority=10, position=1),
            blueprint("Earlier", [mapped("product", "Roses")], priority=10, position=0),
            blueprint("Urgent", [mapped("product", "Roses")], priority=1, position=2),
        ]
        decision = matcher.find_matching_blueprint(make_sale(product_name="Roses"), blueprints)

        assert decision.blueprint.name == "Urgent"
        assert decision.match_quality == "blueprint"
        assert decision.candidates_considered == 3
        assert decision.candidate_names == ("Urgent", "Earlier", "Later")

    def test_no_blueprint_matches(self, matcher):
        blueprints = [blueprint("Roses", [mapped("product", "Roses")])]
        assert matcher.find_matching_blueprint(make_sale(product_name="Boxwood"), blueprints) is None

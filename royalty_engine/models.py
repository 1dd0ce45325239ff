"""
Domain Models for the Royalty Engine

These dataclasses provide type-safe representations of calculation rules,
materialized blueprints, sales transactions and calculation results.
All monetary values and rates use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum


def to_decimal(value, default: Decimal | None = None) -> Decimal | None:
    """Coerce a number or numeric string to Decimal.

    Extracted rules frequently store rates as strings, so anything that
    cannot be parsed (or is NaN/infinite) falls back to ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str) and not value.strip():
        return default
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "t"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "f"})


def parse_bool(value, default: bool = True) -> bool:
    """Parse a JSON flag. Strings like "false" or "0" are false; anything unrecognised raises ValueError."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"Expected a boolean, got: {value!r}")


def parse_amount(value, field_name: str) -> Decimal:
    """Parse a required numeric field. Missing is zero; present but unparseable raises ValueError."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal("0")
    amount = to_decimal(value)
    if amount is None:
        raise ValueError(f"{field_name} must be a finite number, got: {value!r}")
    return amount


def parse_date(value) -> date:
    """Parse an ISO date or datetime (a trailing 'Z' is accepted)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")).date()


def _get(data: dict, *keys, default=None):
    """Return the first present key. Supports snake_case and legacy camelCase payloads."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _str_list(values) -> list[str]:
    return [str(v) for v in (values or []) if v is not None]


def _decimal_map(values) -> dict[str, Decimal]:
    result = {}
    for key, raw in (values or {}).items():
        amount = to_decimal(raw)
        if amount is not None:
            result[str(key)] = amount
    return result


def _plain(value):
    """Make a value JSON-safe for storage (Decimals as strings)."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# =============================================================================
# CONFIGURATION
# =============================================================================


class CalculationApproach(str, Enum):
    """Organization-level calculation approach."""

    MANUAL = "manual"
    ERP_RULES = "erp_rules"
    ERP_MAPPING_RULES = "erp_mapping_rules"
    HYBRID = "hybrid"

    @property
    def uses_blueprints(self) -> bool:
        return self is not CalculationApproach.MANUAL

    @property
    def allows_raw_rules(self) -> bool:
        return self in (CalculationApproach.MANUAL, CalculationApproach.HYBRID)

    @classmethod
    def from_value(cls, value) -> "CalculationApproach":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.MANUAL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(a.value for a in cls)
            raise ValueError(f"Invalid calculation approach: {value}. Must be one of: {allowed}") from None


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass
class VolumeTier:
    """A quantity band with a percentage rate."""

    min: Decimal
    max: Decimal | None  # None = unbounded
    rate: Decimal

    def contains(self, quantity: Decimal) -> bool:
        if self.max is None:
            return quantity >= self.min
        return self.min <= quantity <= self.max

    @classmethod
    def parse(cls, data: dict) -> "VolumeTier | None":
        """Build a tier from raw JSON, or None when it is not a volume tier."""
        if not isinstance(data, dict):
            return None
        lower = to_decimal(data.get("min"))
        rate = to_decimal(data.get("rate"))
        if lower is None or rate is None:
            return None
        return cls(min=lower, max=to_decimal(data.get("max")), rate=rate)


@dataclass
class ContainerSizeRate:
    """Per-unit rate for one container size, with an optional volume discount."""

    size: str
    base_rate: Decimal
    volume_threshold: Decimal | None = None
    discounted_rate: Decimal | None = None

    @classmethod
    def parse(cls, data: dict) -> "ContainerSizeRate | None":
        """Build a rate entry from raw JSON.

        Returns None for entries without a size or with a non-positive or
        unparseable rate; those are discarded rather than priced at zero.
        """
        if not isinstance(data, dict) or not data.get("size"):
            return None
        base_rate = to_decimal(_get(data, "baseRate", "base_rate"))
        if not base_rate:
            base_rate = to_decimal(data.get("rate"))
        if base_rate is None or base_rate <= 0:
            return None
        threshold = to_decimal(_get(data, "volumeThreshold", "volume_threshold"))
        discounted = to_decimal(_get(data, "discountedRate", "discounted_rate"))
        return cls(
            size=str(data["size"]),
            base_rate=base_rate,
            volume_threshold=threshold if threshold else None,
            discounted_rate=discounted if discounted else None,
        )


@dataclass
class CalculationRule:
    """A single extracted or manually-authored pricing rule for a contract."""

    rule_name: str
    rule_type: str
    id: str | None = None
    contract_id: str | None = None
    description: str | None = None
    base_rate: Decimal = Decimal("0")
    volume_tiers: list[dict] = field(default_factory=list)  # raw: volume tiers or container-size rates
    product_categories: list[str] = field(default_factory=list)
    territories: list[str] = field(default_factory=list)
    container_sizes: list[str] = field(default_factory=list)
    seasonal_adjustments: dict[str, Decimal] = field(default_factory=dict)
    territory_premiums: dict[str, Decimal] = field(default_factory=dict)
    formula_definition: dict | None = None
    calculation_formula: str | None = None
    minimum_guarantee: Decimal | None = None
    priority: int | None = None
    is_active: bool = True
    confidence: Decimal | None = None
    source_text: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CalculationRule":
        priority = _get(data, "priority")
        return cls(
            rule_name=str(_get(data, "rule_name", "ruleName", default="")),
            rule_type=str(_get(data, "rule_type", "ruleType", default="percentage")),
            id=_get(data, "id", "rule_id", "ruleId"),
            contract_id=_get(data, "contract_id", "contractId"),
            description=_get(data, "description"),
            base_rate=to_decimal(_get(data, "base_rate", "baseRate"), Decimal("0")),
            volume_tiers=list(_get(data, "volume_tiers", "volumeTiers", default=[])),
            product_categories=_str_list(_get(data, "product_categories", "productCategories")),
            territories=_str_list(_get(data, "territories")),
            container_sizes=_str_list(_get(data, "container_sizes", "containerSizes")),
            seasonal_adjustments=_decimal_map(_get(data, "seasonal_adjustments", "seasonalAdjustments")),
            territory_premiums=_decimal_map(_get(data, "territory_premiums", "territoryPremiums")),
            formula_definition=_get(data, "formula_definition", "formulaDefinition"),
            calculation_formula=_get(data, "calculation_formula", "calculationFormula"),
            minimum_guarantee=to_decimal(_get(data, "minimum_guarantee", "minimumGuarantee")),
            priority=int(priority) if priority is not None else None,
            is_active=parse_bool(_get(data, "is_active", "isActive")),
            confidence=to_decimal(_get(data, "confidence")),
            source_text=_get(data, "source_text", "sourceText"),
        )

    def to_dict(self) -> dict:
        """JSON-safe copy of the rule's defining fields."""
        return _plain({
            "id": self.id,
            "contract_id": self.contract_id,
            "rule_name": self.rule_name,
            "rule_type": self.rule_type,
            "description": self.description,
            "base_rate": self.base_rate,
            "volume_tiers": self.volume_tiers,
            "product_categories": self.product_categories,
            "territories": self.territories,
            "container_sizes": self.container_sizes,
            "seasonal_adjustments": self.seasonal_adjustments,
            "territory_premiums": self.territory_premiums,
            "formula_definition": self.formula_definition,
            "calculation_formula": self.calculation_formula,
            "minimum_guarantee": self.minimum_guarantee,
            "priority": self.priority,
            "is_active": self.is_active,
            "confidence": self.confidence,
            "source_text": self.source_text,
        })


@dataclass
class TermMapping:
    """A confirmed contract-term to external (ERP) field mapping."""

    original_term: str
    erp_field_name: str | None
    id: str | None = None
    original_value: str | None = None
    erp_entity_name: str | None = None
    confidence: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TermMapping":
        return cls(
            id=_get(data, "id"),
            original_term=str(_get(data, "original_term", "originalTerm", default="")),
            original_value=_get(data, "original_value", "originalValue"),
            erp_field_name=_get(data, "erp_field_name", "erpFieldName", "bound_field_name"),
            erp_entity_name=_get(data, "erp_entity_name", "erpEntityName"),
            confidence=to_decimal(_get(data, "confidence")),
        )


@dataclass
class SaleTransaction:
    """One unit of incoming sales data to be priced."""

    id: str
    product_name: str
    category: str
    territory: str
    quantity: Decimal
    gross_amount: Decimal
    transaction_date: date
    container_size: str | None = None
    vendor_name: str | None = None
    item_code: str | None = None
    extra: dict[str, str] = field(default_factory=dict)  # free-form reporting dimensions

    @classmethod
    def from_dict(cls, data: dict) -> "SaleTransaction":
        transaction_id = str(_get(data, "id", "sale_id", "saleId", "transaction_id", "transactionId", default=""))
        return cls(
            id=transaction_id,
            product_name=str(_get(data, "product_name", "productName", default="")),
            category=str(_get(data, "category", default="")),
            territory=str(_get(data, "territory", default="")),
            quantity=parse_amount(_get(data, "quantity"), f"quantity for transaction {transaction_id}"),
            gross_amount=parse_amount(
                _get(data, "gross_amount", "grossAmount"), f"gross_amount for transaction {transaction_id}"
            ),
            transaction_date=parse_date(_get(data, "transaction_date", "transactionDate")),
            container_size=_get(data, "container_size", "containerSize"),
            vendor_name=_get(data, "vendor_name", "vendorName"),
            item_code=_get(data, "item_code", "itemCode", "product_code", "productCode"),
            extra={str(k): str(v) for k, v in (_get(data, "dimensions", default={}) or {}).items()},
        )


@dataclass
class BlueprintDimension:
    """One bound or unbound constraint on a blueprint."""

    dimension_type: str  # 'product', 'territory', 'container_size', 'sales_field'
    contract_term: str
    match_value: str | None = None
    erp_field_name: str | None = None
    mapping_id: str | None = None
    is_mapped: bool = False
    confidence: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "BlueprintDimension":
        term = str(_get(data, "contract_term", "contractTerm", default=""))
        return cls(
            dimension_type=str(_get(data, "dimension_type", "dimensionType", default="")),
            contract_term=term,
            match_value=_get(data, "match_value", "matchValue", default=term),
            erp_field_name=_get(data, "erp_field_name", "erpFieldName"),
            mapping_id=_get(data, "mapping_id", "mappingId"),
            is_mapped=bool(_get(data, "is_mapped", "isMapped", default=False)),
            confidence=to_decimal(_get(data, "confidence")),
        )

    def to_dict(self) -> dict:
        return _plain({
            "dimension_type": self.dimension_type,
            "contract_term": self.contract_term,
            "match_value": self.match_value,
            "erp_field_name": self.erp_field_name,
            "mapping_id": self.mapping_id,
            "is_mapped": self.is_mapped,
            "confidence": self.confidence,
        })


@dataclass
class Blueprint:
    """A materialized calculation unit: one rule plus its resolved field bindings."""

    name: str
    rule_type: str
    rule: CalculationRule
    id: str | None = None
    contract_id: str | None = None
    rule_id: str | None = None
    erp_rule_set_id: str | None = None
    dimensions: list[BlueprintDimension] = field(default_factory=list)
    erp_field_bindings: dict[str, str] = field(default_factory=dict)
    dual_terminology_map: dict[str, str] = field(default_factory=dict)
    priority: int = 10
    position: int = 0
    generation: int = 1
    is_fully_mapped: bool = False
    unmapped_fields: list[str] = field(default_factory=list)

    @property
    def calculation_logic(self) -> dict:
        """Embedded copy of the rule's calculation fields plus field selectors."""
        logic = self.rule.to_dict()
        logic["erp_field_bindings"] = dict(self.erp_field_bindings)
        logic["erp_selectors"] = [
            {"dimension": dimension, "erp_field": erp_field, "match_type": "equals"}
            for dimension, erp_field in self.erp_field_bindings.items()
        ]
        return logic

    @property
    def matching_criteria(self) -> dict:
        return {
            "dimensions": [
                {
                    "erp_field": d.erp_field_name,
                    "match_value": d.match_value,
                    "dimension_type": d.dimension_type,
                }
                for d in self.dimensions
                if d.is_mapped
            ],
            "match_mode": "all",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Blueprint":
        logic = dict(_get(data, "calculation_logic", "calculationLogic", default={}))
        logic.setdefault("rule_name", _get(data, "name", default=""))
        logic.setdefault("rule_type", _get(data, "rule_type", "ruleType", default="percentage"))
        rule = CalculationRule.from_dict(logic)
        dimensions = [BlueprintDimension.from_dict(d) for d in _get(data, "dimensions", default=[])]
        return cls(
            id=_get(data, "id"),
            contract_id=_get(data, "contract_id", "contractId"),
            rule_id=_get(data, "rule_id", "royaltyRuleId", default=rule.id),
            erp_rule_set_id=_get(data, "erp_rule_set_id", "erpRuleSetId"),
            name=str(_get(data, "name", default=rule.rule_name)),
            rule_type=str(_get(data, "rule_type", "ruleType", default=rule.rule_type)),
            rule=rule,
            dimensions=dimensions,
            erp_field_bindings=dict(_get(data, "erp_field_bindings", "erpFieldBindings", default={})),
            dual_terminology_map=dict(_get(data, "dual_terminology_map", "dualTerminologyMap", default={})),
            priority=int(_get(data, "priority", default=10)),
            position=int(_get(data, "position", default=0)),
            generation=int(_get(data, "generation", default=1)),
            is_fully_mapped=bool(_get(data, "is_fully_mapped", "isFullyMapped", default=False)),
            unmapped_fields=_str_list(_get(data, "unmapped_fields", "unmappedFields")),
        )


@dataclass
class CalculationInput:
    """Complete input for one in-memory calculation run."""

    contract_id: str
    approach: CalculationApproach
    rules: list[CalculationRule]
    transactions: list[SaleTransaction]
    blueprints: list[Blueprint] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "CalculationInput":
        return cls(
            contract_id=str(_get(data, "contract_id", "contractId", default="")),
            approach=CalculationApproach.from_value(_get(data, "calculation_approach", "approach")),
            rules=[CalculationRule.from_dict(r) for r in data.get("rules", [])],
            transactions=[SaleTransaction.from_dict(t) for t in data.get("transactions", [])],
            blueprints=[Blueprint.from_dict(b) for b in data.get("blueprints", [])],
        )


# =============================================================================
# MATCHING / STRATEGY RESULTS
# =============================================================================


@dataclass(frozen=True)
class MatchDecision:
    """Why a rule was selected for a transaction."""

    rule: CalculationRule
    match_quality: str  # 'strict_exact', 'contains', 'category', 'fallback', 'blueprint'
    specificity_score: Decimal
    priority: int
    candidates_considered: int
    candidate_names: tuple[str, ...] = ()
    blueprint: Blueprint | None = None

    def to_dict(self) -> dict:
        return {
            "match_quality": self.match_quality,
            "specificity_score": float(self.specificity_score),
            "priority": self.priority,
            "candidates_considered": self.candidates_considered,
            "candidate_names": list(self.candidate_names),
            "blueprint_id": self.blueprint.id if self.blueprint else None,
        }


@dataclass
class CalculationStep:
    """One numbered, human-readable step of a fee calculation."""

    step: int
    description: str
    formula: str
    values: str
    result: str


@dataclass
class ConditionCheck:
    """A condition evaluated while pricing a transaction."""

    condition: str
    expected: str
    actual: str
    matched: bool


@dataclass
class StrategyResult:
    """Output of a pricing strategy, before the audit trail is rendered."""

    strategy_used: str  # 'formula', 'container_size', 'volume_tier', 'percentage'
    effective_rate: Decimal
    base_rate: Decimal
    computed_fee: Decimal
    explanation: str
    seasonal_multiplier: Decimal = Decimal("1")
    territory_multiplier: Decimal = Decimal("1")
    season: str | None = None
    volume_discount_applied: bool = False
    volume_threshold_met: Decimal | None = None
    matched_container_size: str | None = None
    matched_tier: VolumeTier | None = None
    conditions_checked: list[ConditionCheck] = field(default_factory=list)
    flagged: bool = False  # zero-fee because of partial configuration
    debug_log: list[str] = field(default_factory=list)


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class RuleSnapshot:
    """The rule's defining fields at calculation time."""

    rule_id: str
    rule_name: str
    rule_type: str
    base_rate: Decimal
    volume_tiers: list[dict] = field(default_factory=list)
    product_categories: list[str] = field(default_factory=list)
    territories: list[str] = field(default_factory=list)
    seasonal_adjustments: dict[str, Decimal] = field(default_factory=dict)
    territory_premiums: dict[str, Decimal] = field(default_factory=dict)
    source_text: str | None = None
    confidence: Decimal | None = None
    is_ai_extracted: bool = False


@dataclass
class BreakdownItem:
    """Full audit record for one transaction's fee."""

    transaction: SaleTransaction
    rule_applied: str
    calculation_type: str
    base_rate: Decimal
    tier_rate: Decimal
    seasonal_multiplier: Decimal
    territory_multiplier: Decimal
    computed_fee: Decimal
    explanation: str
    calculation_steps: list[CalculationStep]
    conditions_checked: list[ConditionCheck]
    rule_snapshot: RuleSnapshot
    volume_discount_applied: bool = False
    volume_threshold_met: Decimal | None = None
    flagged: bool = False
    rule_id: str | None = None
    blueprint_id: str | None = None
    selection_rationale: dict | None = None


@dataclass
class CalculationResult:
    """Aggregate output of one calculation run."""

    total_fee: Decimal
    breakdown: list[BreakdownItem]
    minimum_guarantee: Decimal | None
    final_fee: Decimal
    rules_applied: list[str]
    unmatched_transactions: list[str] = field(default_factory=list)


@dataclass
class MaterializationResult:
    """Outcome of materializing one rule."""

    blueprint_id: str | None
    rule_name: str
    rule_type: str
    is_fully_mapped: bool
    unmapped_fields: list[str]
    dimension_count: int


@dataclass
class MaterializationSummary:
    """Outcome of materializing every active rule of a contract."""

    contract_id: str
    blueprints_created: int = 0
    fully_mapped: int = 0
    partially_mapped: int = 0
    generation: int | None = None
    results: list[MaterializationResult] = field(default_factory=list)


@dataclass
class DimensionConfig:
    """Reporting taxonomy entry for a contract."""

    dimension_key: str
    display_name: str
    dimension_type: str
    is_groupable: bool
    sort_order: int
    erp_field_name: str | None = None


@dataclass
class AggregatedResult:
    """Totals for one value of a reporting dimension."""

    dimension_value: str
    total_sales: Decimal
    total_quantity: Decimal
    total_fee: Decimal
    transaction_count: int
    avg_rate: Decimal

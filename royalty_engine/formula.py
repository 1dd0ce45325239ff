"""
Formula Evaluator Contract

The formula micro-language is interpreted by an external component. The
engine only depends on this interface: given a formula definition and a
context of sale values, return a scalar fee and a debug log. Evaluation must
be deterministic for identical inputs.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol


@dataclass
class FormulaResult:
    value: Decimal
    debug_log: list[str] = field(default_factory=list)


class FormulaEvaluator(Protocol):
    def evaluate(self, formula_definition: dict, context: dict[str, Any]) -> FormulaResult:
        ...

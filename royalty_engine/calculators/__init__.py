"""
Calculators Package

Provides the pricing strategies and the executor that selects between them.
"""

from .adjustments import determine_season, quantize_money, seasonal_multiplier, territory_multiplier
from .container_size import ContainerSizeCalculator
from .executor import StrategyExecutor
from .formula import FormulaCalculator
from .percentage import PercentageCalculator
from .volume_tier import VolumeTierCalculator

__all__ = [
    "StrategyExecutor",
    "FormulaCalculator",
    "ContainerSizeCalculator",
    "VolumeTierCalculator",
    "PercentageCalculator",
    "determine_season",
    "quantize_money",
    "seasonal_multiplier",
    "territory_multiplier",
]

"""
ROYALTY ENGINE
Contract license fee calculation: blueprint materialization, rule matching,
pricing strategies, audit trail and dimensional reporting.
"""

from .materializer import BlueprintMaterializer
from .models import CalculationApproach, CalculationInput, CalculationResult
from .processor import FeeProcessor
from .reporting import CalculationReportService
from .services import FeeCalculationService

__all__ = [
    'FeeProcessor',
    'FeeCalculationService',
    'BlueprintMaterializer',
    'CalculationReportService',
    'CalculationApproach',
    'CalculationInput',
    'CalculationResult',
]

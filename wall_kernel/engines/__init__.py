"""
Kernel engines, one per pipeline stage.
"""

from .base_engine import BaseEngine
from .tolerance_manager import ToleranceManager
from .offset_engine import OffsetEngine
from .boolean_engine import BooleanEngine
from .intersection_resolver import IntersectionResolver
from .healing_engine import HealingEngine
from .simplification_engine import SimplificationEngine
from .validator import Validator
from .error_handler import ErrorHandler

__all__ = [
    'BaseEngine',
    'ToleranceManager',
    'OffsetEngine',
    'BooleanEngine',
    'IntersectionResolver',
    'HealingEngine',
    'SimplificationEngine',
    'Validator',
    'ErrorHandler'
]

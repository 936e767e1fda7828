"""
Field validators used by the rule engine.
"""

from .base_validator import BaseValidator, ValidationError
from .range_validator import RangeValidator
from .required_field_validator import RequiredFieldValidator
from .upc_validator import UpcValidator, is_valid_upc, normalize_upc

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RangeValidator",
    "RequiredFieldValidator",
    "UpcValidator",
    "is_valid_upc",
    "normalize_upc",
]

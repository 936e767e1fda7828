"""
UpcValidator - validates product barcodes by digit count.
"""

import re
from typing import Any

from .base_validator import BaseValidator

NON_DIGITS = re.compile(r"\D")

MIN_UPC_DIGITS = 8
MAX_UPC_DIGITS = 14


def normalize_upc(value: Any) -> str:
    """Strip everything but digits from a UPC/EAN/GTIN value."""
    if value is None:
        return ""
    return NON_DIGITS.sub("", str(value))


def is_valid_upc(value: Any, min_digits: int = MIN_UPC_DIGITS, max_digits: int = MAX_UPC_DIGITS) -> bool:
    """
    Check whether a value is a plausible barcode.

    Examples:
        >>> is_valid_upc("0-29465-06458-3")
        True
        >>> is_valid_upc("12345")
        False
    """
    return min_digits <= len(normalize_upc(value)) <= max_digits


class UpcValidator(BaseValidator):
    """
    Validates that a UPC has between min_digits and max_digits digits
    once separators and other non-digit characters are removed.

    Parameters:
    - min_digits: Minimum digit count (default 8)
    - max_digits: Maximum digit count (default 14)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.min_digits = int(self.parameters.get("min_digits", MIN_UPC_DIGITS))
        self.max_digits = int(self.parameters.get("max_digits", MAX_UPC_DIGITS))

        if self.min_digits > self.max_digits:
            raise ValueError("min_digits cannot exceed max_digits")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None or str(value).strip() == "":
            raise self.fail("UPC is missing", "MISSING_UPC")

        digits = normalize_upc(value)
        if not self.min_digits <= len(digits) <= self.max_digits:
            raise self.fail(
                f"UPC must have {self.min_digits}-{self.max_digits} digits, got {len(digits)}",
                "INVALID_UPC",
            )

    @property
    def rule_type(self) -> str:
        return "upc"

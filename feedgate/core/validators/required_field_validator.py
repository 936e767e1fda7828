"""
RequiredFieldValidator - ensures a field is present and not null/empty.
"""

from typing import Any

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Validates that a required field is present and not null/empty.

    Fails with MISSING_<FIELD> if:
    - Field is missing from the record
    - Field value is None
    - Field value is a blank string
    """

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        missing_code = f"MISSING_{self.field_name.upper()}"

        if self.field_name not in record or value is None:
            raise self.fail(f"{self.field_name} is missing", missing_code)

        if isinstance(value, str) and value.strip() == "":
            raise self.fail(f"{self.field_name} is empty", missing_code)

    @property
    def rule_type(self) -> str:
        return "required_field"

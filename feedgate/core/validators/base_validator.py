"""
Field rule interface used by the RuleEngine.

A validator checks one canonical field of a normalized product record and
raises ValidationError carrying the error code stored on the quarantine record.
"""

from abc import ABC, abstractmethod
from typing import Any


class ValidationError(Exception):
    """A field rule rejected a value; code is the machine-readable reason."""

    def __init__(self, rule_name: str, field_name: str, message: str, code: str | None = None):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        self.code = code or f"INVALID_{field_name.upper()}"
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class BaseValidator(ABC):
    """
    Abstract base class for all validators.

    Each validator implements a specific rule type (required_field, range, upc).
    The optional "code" parameter overrides the error code reported on failure.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        self.field_name = field_name
        self.parameters = parameters or {}
        self.code = self.parameters.get("code")

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """Raise ValidationError (via fail()) when value breaks the rule."""

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Name used for this rule in YAML rule files."""

    def fail(self, message: str, code: str | None = None) -> ValidationError:
        return ValidationError(
            rule_name=self.rule_type,
            field_name=self.field_name,
            message=message,
            code=self.code or code,
        )

    def __repr__(self) -> str:
        return f"<{self.rule_type} {self.field_name} {self.parameters}>"

"""
Rule engine that classifies parsed records.

Every record lands in exactly one lane: a failed reject-severity rule makes it
a reject, otherwise a failed quarantine-severity rule quarantines it, otherwise
it is indexable. Failures are collected, never raised.
"""

from typing import Any

from feedgate.core.errors import ConfigurationError
from feedgate.core.models import FieldCoercion, FieldError, ParsedRecord, RecordLane, ValidationOutcome
from feedgate.core.validators import (
    BaseValidator,
    RangeValidator,
    RequiredFieldValidator,
    UpcValidator,
    ValidationError,
)

from .rule_config import DEFAULT_RULES_PATH, RuleConfigLoader, default_rules


class RuleEngine:
    """
    Orchestrates validation rules on parsed records.

    Rules are applied in order and all failures are collected so operators
    see every problem with a record, not only the first.
    """

    VALIDATOR_REGISTRY = {
        "required_field": RequiredFieldValidator,
        "range": RangeValidator,
        "upc": UpcValidator,
    }

    def __init__(self, rules: list[dict[str, Any]] | None = None):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: List of rule configurations, each containing:
                   - rule_name: str
                   - rule_type: str (required_field, range, upc)
                   - field_name: str
                   - parameters: Dict[str, Any] (optional)
                   - severity: str (reject or quarantine)
                   - enabled: bool (default True)
                   Defaults to the standard title/price/UPC policy.
        """
        self.rules = rules if rules is not None else default_rules()
        self.validators: list[tuple[str, str, BaseValidator]] = []
        self._build_validators()

    @classmethod
    def from_settings(cls, settings) -> "RuleEngine":
        """
        Build an engine from the rules file named in settings (or the bundled one).

        Raises:
            ConfigurationError: If the rules file is missing or invalid
        """
        path = settings.rules_path or DEFAULT_RULES_PATH
        try:
            return cls(RuleConfigLoader(path).load_rules())
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Invalid validation rules in {path}: {e}") from e

    def _build_validators(self) -> None:
        for rule in self.rules:
            if not rule.get("enabled", True):
                continue

            rule_name = rule["rule_name"]
            rule_type = rule["rule_type"]

            validator_class = self.VALIDATOR_REGISTRY.get(rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule_type}")

            try:
                validator = validator_class(rule["field_name"], rule.get("parameters", {}))
            except ValueError as e:
                raise ValueError(f"Failed to create validator for rule '{rule_name}': {e}") from e
            self.validators.append((rule_name, rule.get("severity", "reject"), validator))

    def classify_fields(
        self,
        fields: dict[str, Any],
        row_index: int = 0,
        coercions: list[FieldCoercion] | None = None,
    ) -> ValidationOutcome:
        """
        Classify a canonical field mapping.

        Args:
            fields: Canonical field values (title, price, upc, ...)
            row_index: Source row, carried onto the outcome
            coercions: Coercions recorded while normalizing

        Returns:
            ValidationOutcome with the lane and all field errors
        """
        errors: list[FieldError] = []
        severities: set[str] = set()

        for _, severity, validator in self.validators:
            try:
                validator.validate(fields.get(validator.field_name), fields)
            except ValidationError as e:
                errors.append(FieldError(field=e.field_name, code=e.code, message=e.message))
                severities.add(severity)

        if "reject" in severities:
            lane = RecordLane.REJECT
        elif "quarantine" in severities:
            lane = RecordLane.QUARANTINE
        else:
            lane = RecordLane.INDEXABLE

        return ValidationOutcome(
            row_index=row_index,
            lane=lane,
            errors=errors,
            coercions=list(coercions or []),
        )

    def validate_record(self, record: ParsedRecord) -> ValidationOutcome:
        """
        Validate a parsed record against all rules.

        Args:
            record: The ParsedRecord to classify

        Returns:
            ValidationOutcome for the record
        """
        return self.classify_fields(record.canonical_fields(), record.row_index, record.coercions)

    def validate_batch(self, records: list[ParsedRecord]) -> list[ValidationOutcome]:
        return [self.validate_record(record) for record in records]

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts by type and severity
        """
        by_type: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for _, severity, validator in self.validators:
            by_type[validator.rule_type] = by_type.get(validator.rule_type, 0) + 1
            by_severity[severity] = by_severity.get(severity, 0) + 1
        return {
            "total_rules": len(self.validators),
            "rules_by_type": by_type,
            "rules_by_severity": by_severity,
        }

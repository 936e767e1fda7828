"""
Rule configuration management.

Loads record validation rules from YAML files and provides a builder for
assembling rule sets in code.
"""

from pathlib import Path
from typing import Any

import yaml

SEVERITIES = ("reject", "quarantine")

DEFAULT_RULES_PATH = Path(__file__).resolve().parents[2] / "config" / "validation_rules.yaml"


class RuleConfigLoader:
    """
    Loads validation rules from YAML configuration files.

    Expected YAML format:
    ```yaml
    rules:
      title:
        - type: required_field
          severity: reject
      price:
        - type: range
          severity: reject
          params:
            min_exclusive: 0
      upc:
        - type: upc
          severity: quarantine
    ```
    """

    def __init__(self, config_path: str | Path = DEFAULT_RULES_PATH):
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")

    def load_rules(self) -> list[dict[str, Any]]:
        """
        Read the rule file into RuleEngine rule dicts, ordered by field then position.

        Raises:
            ValueError: If the file has no rules mapping or a rule is malformed
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict) or not isinstance(config.get("rules"), dict):
            raise ValueError(f"{self.config_path.name}: expected a top-level 'rules' mapping")

        rules = []
        for field_name, field_rule_list in config["rules"].items():
            if not isinstance(field_rule_list, list):
                raise ValueError(f"Rules for field '{field_name}' must be a list")

            rules.extend(
                self._rule_from_yaml(field_name, rule_def, position)
                for position, rule_def in enumerate(field_rule_list)
            )

        return rules

    def _rule_from_yaml(self, field_name: str, rule_def: dict[str, Any], position: int) -> dict[str, Any]:
        if not isinstance(rule_def, dict) or "type" not in rule_def:
            raise ValueError(f"Rule {position} for field '{field_name}' needs a 'type'")

        rule_type = rule_def["type"]
        rule_name = rule_def.get("name", f"{field_name}_{rule_type}_{position}")
        parameters = rule_def.get("params", rule_def.get("parameters", {})) or {}

        severity = rule_def.get("severity", "reject")
        if severity not in SEVERITIES:
            raise ValueError(
                f"Invalid severity '{severity}' for rule '{rule_name}'. Must be one of {', '.join(SEVERITIES)}"
            )

        return {
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": severity,
            "enabled": rule_def.get("enabled", True),
        }


class RuleConfigBuilder:
    """Fluent builder for rule lists, used for the built-in policy and in tests."""

    def __init__(self):
        self.rules: list[dict[str, Any]] = []

    def _add(self, rule_name: str, rule_type: str, field_name: str, parameters: dict[str, Any], severity: str) -> "RuleConfigBuilder":
        if severity not in SEVERITIES:
            raise ValueError(f"Invalid severity '{severity}'")
        self.rules.append({
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": severity,
            "enabled": True,
        })
        return self

    def add_required_field(self, field_name: str, severity: str = "reject") -> "RuleConfigBuilder":
        """Add a required field rule."""
        return self._add(f"{field_name}_required", "required_field", field_name, {}, severity)

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None,
        min_exclusive: float | None = None,
        severity: str = "reject",
    ) -> "RuleConfigBuilder":
        """Add a range validation rule."""
        params: dict[str, Any] = {}
        if min_value is not None:
            params["min"] = min_value
        if max_value is not None:
            params["max"] = max_value
        if min_exclusive is not None:
            params["min_exclusive"] = min_exclusive
        return self._add(f"{field_name}_range", "range", field_name, params, severity)

    def add_upc(self, field_name: str = "upc", severity: str = "quarantine") -> "RuleConfigBuilder":
        """Add a barcode rule."""
        return self._add(f"{field_name}_upc", "upc", field_name, {}, severity)

    def build(self) -> list[dict[str, Any]]:
        return list(self.rules)


def default_rules() -> list[dict[str, Any]]:
    """Rules that reproduce the standard indexable/quarantine/reject policy."""
    return (
        RuleConfigBuilder()
        .add_required_field("title", severity="reject")
        .add_range("price", min_exclusive=0, severity="reject")
        .add_upc("upc", severity="quarantine")
        .build()
    )

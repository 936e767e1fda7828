"""
Record classification rules.
"""

from .rule_config import RuleConfigBuilder, RuleConfigLoader, default_rules
from .rule_engine import RuleEngine

__all__ = ["RuleConfigBuilder", "RuleConfigLoader", "RuleEngine", "default_rules"]

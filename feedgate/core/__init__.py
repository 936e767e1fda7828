"""Core domain: models, validators, rules, identity and error taxonomy."""

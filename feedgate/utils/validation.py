"""
Input validation for operator-supplied values.

Ids, pagination and correction fields are checked here before they reach a
store, so malformed input fails fast with a readable message.
"""

import re

from feedgate.core.models import CANONICAL_FIELDS

ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\.:]+$")


class InputValidationError(ValueError):
    """Raised when operator input is invalid."""
    pass


def validate_id(value: str, field_name: str = "id") -> str:
    """
    Validate an entity id.

    Ids must be non-empty strings of alphanumerics, hyphens, underscores,
    dots or colons, at most 255 characters.

    Args:
        value: The id to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated id, stripped of whitespace

    Raises:
        InputValidationError: If validation fails

    Examples:
        >>> validate_id("qr_7f3c")
        'qr_7f3c'
    """
    if not value or not isinstance(value, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()
    if not value:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not ID_PATTERN.match(value):
        raise InputValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, dots and colons are allowed."
        )

    if len(value) > 255:
        raise InputValidationError(f"{field_name} exceeds maximum length of 255 characters")

    return value


def validate_id_list(values: list[str], max_items: int, field_name: str = "record_ids") -> list[str]:
    """
    Validate a batch of ids: between 1 and max_items entries, duplicates dropped.

    Raises:
        InputValidationError: If the list is empty, too long or has a bad id
    """
    if not isinstance(values, list):
        raise InputValidationError(f"{field_name} must be a list")
    if not values:
        raise InputValidationError(f"{field_name} cannot be empty")
    if len(values) > max_items:
        raise InputValidationError(f"{field_name} exceeds maximum of {max_items} items")

    seen: dict[str, None] = {}
    for value in values:
        seen[validate_id(value, field_name)] = None
    return list(seen)


def validate_page(page: int, field_name: str = "page") -> int:
    """Pages are 1-based."""
    if not isinstance(page, int) or isinstance(page, bool):
        raise InputValidationError(f"{field_name} must be an integer, got {type(page).__name__}")
    if page < 1:
        raise InputValidationError(f"{field_name} must be at least 1, got {page}")
    return page


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 100) -> int:
    """
    Validate a limit parameter for listings.

    Raises:
        InputValidationError: If limit is not an integer in 1..max_limit
    """
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise InputValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")
    if limit <= 0:
        raise InputValidationError(f"{field_name} must be a positive integer, got {limit}")
    if limit > max_limit:
        raise InputValidationError(f"{field_name} exceeds maximum of {max_limit}")
    return limit


def validate_correction_field(field: str) -> str:
    if field not in CANONICAL_FIELDS:
        raise InputValidationError(
            f"Unknown field '{field}'. Must be one of: {', '.join(CANONICAL_FIELDS)}"
        )
    return field


def validate_actor(actor: str, field_name: str = "actor") -> str:
    if not actor or not isinstance(actor, str) or not actor.strip():
        raise InputValidationError(f"{field_name} is required")
    return actor.strip()

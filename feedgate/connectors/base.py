"""
Shared parsing interface for feed connectors.

Each connector turns raw feed text into flat row dictionaries; the base class
maps those rows onto ParsedRecord through an ordered alias list per canonical
field. The first alias with a non-empty value wins.
"""

import math
import re
from abc import ABC, abstractmethod
from typing import Any

from feedgate.core.models import FeedFormat, FieldCoercion, ParsedRecord
from feedgate.observability.logger import get_logger

logger = get_logger(__name__)

TRUTHY_STOCK_TOKENS = frozenset({"true", "yes", "in stock", "available", "1", "y", "instock"})

PRICE_NOISE = re.compile(r"[$,\s]")

TEXT_FIELDS = ("title", "upc", "sku", "brand", "category", "image_url", "product_url", "description")


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_price(value: Any) -> tuple[float, str | None]:
    """
    Parse a price value.

    Args:
        value: Raw price (number or text such as "$1,299.00")

    Returns:
        Tuple of (price, coercion_type). Unparseable or missing prices
        become 0.0 with coercion "default"; text converted to a number
        reports "numeric"; native numbers report None.
    """
    if is_blank(value):
        return 0.0, "default"

    if isinstance(value, bool):
        return 0.0, "default"

    if isinstance(value, int | float):
        price = float(value)
        return (price, None) if math.isfinite(price) else (0.0, "default")

    try:
        price = float(PRICE_NOISE.sub("", str(value)))
    except ValueError:
        return 0.0, "default"

    if not math.isfinite(price):
        return 0.0, "default"
    return price, "numeric"


def parse_stock_status(value: Any) -> tuple[bool, str | None]:
    """
    Parse a stock flag.

    A missing stock field means "in stock"; this is a business default,
    reported with coercion "default" so operators can see how often it applies.

    Returns:
        Tuple of (in_stock, coercion_type)
    """
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return True, "default"

    if isinstance(value, bool):
        return value, None

    if isinstance(value, int | float):
        return value > 0, "boolean"

    token = str(value).strip().lower()
    if token in TRUTHY_STOCK_TOKENS:
        return True, "boolean"

    try:
        return float(token) > 0, "boolean"
    except ValueError:
        return False, "boolean"


class FeedConnector(ABC):
    """
    Base class for format-specific feed connectors.

    Subclasses implement extract_rows() and declare FIELD_ALIASES, an ordered
    tuple of source keys per canonical field.
    """

    format: FeedFormat
    FIELD_ALIASES: dict[str, tuple[str, ...]] = {}

    @abstractmethod
    def extract_rows(self, content: str) -> list[dict[str, Any]]:
        """
        Split raw content into source rows.

        Raises:
            ParseError: If the content is malformed or has an unknown shape
        """
        pass

    def parse(self, content: str) -> list[ParsedRecord]:
        """
        Parse feed content into canonical records, in source order.

        Args:
            content: Raw feed text

        Returns:
            One ParsedRecord per source row
        """
        rows = self.extract_rows(content)
        records = [self.normalize_row(row, idx) for idx, row in enumerate(rows)]
        logger.debug(
            f"Parsed {len(records)} {self.format.value} records",
            extra={"format": self.format.value, "record_count": len(records)},
        )
        return records

    def resolve_alias(self, row: dict[str, Any], field: str) -> tuple[Any, str | None, bool]:
        """
        Find the first non-empty alias for a canonical field.

        Returns:
            Tuple of (value, source_key, used_fallback). used_fallback is True
            when the winning key was not the first alias.
        """
        aliases = self.FIELD_ALIASES.get(field, ())
        for position, alias in enumerate(aliases):
            value = row.get(alias)
            if not is_blank(value):
                return value, alias, position > 0
        return None, None, False

    def normalize_row(self, row: dict[str, Any], row_index: int) -> ParsedRecord:
        """Map one source row onto a ParsedRecord, recording every coercion."""
        coercions: list[FieldCoercion] = []
        values: dict[str, Any] = {}

        for field in TEXT_FIELDS:
            value, source, used_fallback = self.resolve_alias(row, field)
            if used_fallback:
                coercions.append(FieldCoercion(field=field, coercion_type="alias", source=source))
            if value is None:
                values[field] = "" if field == "title" else None
                continue
            text = value if isinstance(value, str) else str(value)
            stripped = text.strip()
            if stripped != text:
                coercions.append(FieldCoercion(field=field, coercion_type="trim", source=source))
            values[field] = stripped

        raw_price, price_source, used_fallback = self.resolve_alias(row, "price")
        if used_fallback:
            coercions.append(FieldCoercion(field="price", coercion_type="alias", source=price_source))
        price, price_coercion = parse_price(raw_price)
        if price_coercion:
            coercions.append(FieldCoercion(field="price", coercion_type=price_coercion, source=price_source))

        raw_stock, stock_source, used_fallback = self.resolve_alias(row, "in_stock")
        if used_fallback:
            coercions.append(FieldCoercion(field="in_stock", coercion_type="alias", source=stock_source))
        in_stock, stock_coercion = parse_stock_status(raw_stock)
        if stock_coercion:
            coercions.append(FieldCoercion(field="in_stock", coercion_type=stock_coercion, source=stock_source))

        return ParsedRecord(
            row_index=row_index,
            price=price,
            in_stock=in_stock,
            raw=row,
            coercions=coercions,
            **values,
        )

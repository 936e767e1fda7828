"""
Identity hashing for retailer SKUs and quarantined records.

The SKU hash is the upsert key (with retailer_id), so it must be identical for
the same logical product regardless of the feed format it arrived in.
"""

import hashlib
import math
from typing import Any

from feedgate.core.models import IdentityType

HASH_LENGTH = 32
SEPARATOR = "|"


def format_price(price: Any) -> str:
    """
    Render a price the same way for every feed format.

    Integral values drop the fractional part so 20, 20.0 and "20" agree.
    Zero, missing and non-finite prices render as an empty string.

    Examples:
        >>> format_price(20.0)
        '20'
        >>> format_price(18.99)
        '18.99'
        >>> format_price(None)
        ''
    """
    if price is None or isinstance(price, bool):
        return ""
    try:
        value = float(price)
    except (TypeError, ValueError):
        return ""
    if not math.isfinite(value) or value == 0:
        return ""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _digest(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def normalize_title(title: Any) -> str:
    return str(title or "").strip().lower()


def compute_sku_hash(title: Any, upc: Any = None, sku: Any = None, price: Any = None) -> str:
    """
    Compute the retailer SKU identity hash.

    Args:
        title: Product title (lowercased and trimmed)
        upc: Raw UPC
        sku: Retailer SKU
        price: Price, formatted with format_price

    Returns:
        32 hex characters of the sha256 digest
    """
    parts = [
        normalize_title(title),
        str(upc).strip() if upc else "",
        str(sku).strip() if sku else "",
        format_price(price),
    ]
    return _digest(SEPARATOR.join(parts))


def hash_fields(fields: dict[str, Any]) -> str:
    """compute_sku_hash over a canonical field mapping."""
    return compute_sku_hash(fields.get("title"), fields.get("upc"), fields.get("sku"), fields.get("price"))


def compute_match_key(title: Any, sku: Any = None) -> str:
    """
    Stable key used to find the same quarantined product across runs.

    Price and UPC are left out so a corrected or repriced record keeps its key.
    """
    return _digest(f"{normalize_title(title)}{SEPARATOR}{str(sku).strip() if sku else ''}")


def resolve_identity_type(fields: dict[str, Any]) -> IdentityType:
    """Records with a retailer SKU have a strong identity; the rest fall back to URL hash."""
    sku = fields.get("sku")
    if sku is not None and str(sku).strip():
        return IdentityType.SKU
    return IdentityType.URL_HASH

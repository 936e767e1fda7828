"""
JSON connector: top-level array, or an array under "products" or "items".
"""

import json
from typing import Any

from feedgate.core.errors import ParseError
from feedgate.core.models import FeedFormat

from .base import FeedConnector

CONTAINER_KEYS = ("products", "items")


class JsonConnector(FeedConnector):
    """Parses JSON feeds with camelCase or lowercase product keys."""

    format = FeedFormat.JSON

    FIELD_ALIASES = {
        "title": ("productName", "productname", "name", "title", "Name"),
        "price": ("price", "retailPrice", "retailprice", "currentPrice", "Price"),
        "in_stock": ("stockStatus", "stockstatus", "inStock", "instock", "StockStatus"),
        "product_url": ("productUrl", "producturl", "custom1", "url", "link", "URL"),
        "upc": ("upc", "upcCode", "upccode", "UPC", "ean"),
        "sku": ("sku", "merchantProductId", "merchantproductid", "SKU"),
        "category": ("category", "subcategory", "Category"),
        "brand": ("brand", "manufacturer", "Brand"),
        "image_url": ("thumbnail", "imageUrl", "imageurl", "image", "Thumbnail"),
        "description": ("description", "shortDescription", "shortdescription", "productDescription", "Description"),
    }

    def extract_rows(self, content: str) -> list[dict[str, Any]]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed JSON content: {e.msg} at line {e.lineno}") from e

        if isinstance(data, list):
            products = data
        elif isinstance(data, dict):
            products = next(
                (data[key] for key in CONTAINER_KEYS if isinstance(data.get(key), list)),
                None,
            )
            if products is None:
                raise ParseError("JSON object has no 'products' or 'items' array")
        else:
            raise ParseError(f"Unsupported JSON root type: {type(data).__name__}")

        # Non-object entries keep their row position and fail validation downstream
        return [item if isinstance(item, dict) else {} for item in products]

"""
XML connector for <products><product> and <datafeed><item> feeds.
"""

import xml.etree.ElementTree as ET
from typing import Any

from feedgate.core.errors import ParseError
from feedgate.core.models import FeedFormat

from .base import FeedConnector

ITEM_TAGS = ("product", "item")
CONTAINER_TAGS = ("products", "datafeed")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def element_to_row(element: ET.Element) -> dict[str, Any]:
    """Flatten an item element: attributes first, then child element text."""
    row: dict[str, Any] = {_local_name(key): value for key, value in element.attrib.items()}
    for child in element:
        row[_local_name(child.tag)] = (child.text or "").strip()
    return row


class XmlConnector(FeedConnector):
    """Parses XML feeds; product keys follow the JSON naming conventions."""

    format = FeedFormat.XML

    FIELD_ALIASES = {
        "title": ("productName", "productname", "name", "title"),
        "price": ("price", "retailPrice", "retailprice", "currentPrice"),
        "in_stock": ("stockStatus", "stockstatus", "inStock", "instock"),
        "product_url": ("productUrl", "producturl", "custom1", "url", "link"),
        "upc": ("upc", "upcCode", "upccode", "ean"),
        "sku": ("sku", "merchantProductId", "merchantproductid"),
        "category": ("category", "subcategory"),
        "brand": ("brand", "manufacturer"),
        "image_url": ("thumbnail", "imageUrl", "imageurl", "image"),
        "description": ("description", "shortDescription", "shortdescription", "productDescription"),
    }

    def extract_rows(self, content: str) -> list[dict[str, Any]]:
        try:
            root = ET.fromstring(content.lstrip("\ufeff").strip())
        except ET.ParseError as e:
            raise ParseError(f"Malformed XML content: {e}") from e

        root_tag = _local_name(root.tag)
        if root_tag in ITEM_TAGS:
            return [element_to_row(root)]

        items = [child for child in root if _local_name(child.tag) in ITEM_TAGS]
        if not items and root_tag not in CONTAINER_TAGS:
            raise ParseError(f"Unrecognized XML feed root element: <{root_tag}>")

        return [element_to_row(item) for item in items]

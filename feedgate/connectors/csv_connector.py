"""
CSV connector for comma- and pipe-delimited feeds (ShareASale style).
"""

import csv
import io
from typing import Any

from feedgate.core.errors import ParseError
from feedgate.core.models import FeedFormat

from .base import FeedConnector


def detect_delimiter(content: str) -> str:
    """Pipe when the content contains one anywhere, comma otherwise."""
    return "|" if "|" in content else ","


class CsvConnector(FeedConnector):
    """
    Parses delimited text with a required header row.

    Quoting is relaxed: stray quotes inside unquoted fields are kept as
    literal characters and lines that are entirely empty are skipped.
    """

    format = FeedFormat.CSV

    FIELD_ALIASES = {
        "title": ("Product Name", "productname", "name", "title"),
        "price": ("Price", "price", "retailprice", "Retail Price"),
        "in_stock": ("Stock Status", "stockstatus", "instock"),
        "product_url": ("Product URL", "producturl", "custom1", "URL"),
        "upc": ("UPC", "upccode", "UPC Code"),
        "sku": ("SKU", "sku", "Merchant Product ID"),
        "category": ("Category", "category", "subcategory"),
        "brand": ("Brand", "brand", "manufacturer"),
        "image_url": ("Thumbnail", "thumbnail", "Image URL", "imageurl"),
        "description": ("Description", "description", "Short Description", "shortdescription"),
    }

    def extract_rows(self, content: str) -> list[dict[str, Any]]:
        text = content.lstrip("\ufeff")
        delimiter = detect_delimiter(text)

        try:
            reader = csv.reader(io.StringIO(text), delimiter=delimiter, strict=False, skipinitialspace=True)
            lines = [line for line in reader if any(cell.strip() for cell in line)]
        except csv.Error as e:
            raise ParseError(f"Malformed CSV content: {e}") from e

        if not lines:
            raise ParseError("CSV content has no header row")

        header = [name.strip() for name in lines[0]]
        if not any(header):
            raise ParseError("CSV header row is empty")

        rows = []
        for line in lines[1:]:
            row = {}
            for idx, name in enumerate(header):
                if not name:
                    continue
                row[name] = line[idx] if idx < len(line) else None
            rows.append(row)
        return rows

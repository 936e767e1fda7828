"""
Feed connectors: detect a format and parse it into canonical records.
"""

from .base import FeedConnector, parse_price, parse_stock_status
from .csv_connector import CsvConnector
from .detector import detect_format, get_connector, parse_feed
from .json_connector import JsonConnector
from .xml_connector import XmlConnector

__all__ = [
    "CsvConnector",
    "FeedConnector",
    "JsonConnector",
    "XmlConnector",
    "detect_format",
    "get_connector",
    "parse_feed",
    "parse_price",
    "parse_stock_status",
]

"""
Format detection and connector lookup.
"""

from feedgate.core.errors import ParseError
from feedgate.core.models import FeedFormat

from .base import FeedConnector
from .csv_connector import CsvConnector
from .json_connector import JsonConnector
from .xml_connector import XmlConnector

CONNECTORS: dict[FeedFormat, type[FeedConnector]] = {
    FeedFormat.CSV: CsvConnector,
    FeedFormat.XML: XmlConnector,
    FeedFormat.JSON: JsonConnector,
}


def detect_format(content: str) -> FeedFormat:
    """
    Sniff the feed format from the first non-whitespace character.

    Examples:
        >>> detect_format('  <products/>')
        <FeedFormat.XML: 'XML'>
        >>> detect_format('[{"name": "x"}]')
        <FeedFormat.JSON: 'JSON'>
        >>> detect_format('name,price')
        <FeedFormat.CSV: 'CSV'>
    """
    stripped = content.lstrip().lstrip("\ufeff").lstrip()
    if not stripped:
        raise ParseError("Feed content is empty")
    first = stripped[0]
    if first == "<":
        return FeedFormat.XML
    if first in "[{":
        return FeedFormat.JSON
    return FeedFormat.CSV


def get_connector(feed_format: FeedFormat) -> FeedConnector:
    return CONNECTORS[feed_format]()


def parse_feed(content: str, format_hint: FeedFormat | None = None) -> tuple[FeedFormat, list]:
    """Parse content into ParsedRecords, detecting the format unless a hint is given."""
    feed_format = format_hint or detect_format(content)
    return feed_format, get_connector(feed_format).parse(content)

"""
feedgate - trust boundary between third-party product feeds and the catalog.

Fetches retailer and affiliate feeds, normalizes them into a canonical record
shape, routes soft failures into quarantine and guards bulk catalog promotion
with a run-level circuit breaker.
"""

__version__ = "0.1.0"

"""
Operator surface over the ingestion pipeline.
"""

from .operator import OperatorService

__all__ = ["OperatorService"]

"""Quarantine lifecycle and correction ledger."""

from .corrections import CorrectionLedger, apply_corrections, latest_by_field
from .manager import (
    BatchReprocessResult,
    QuarantineEntry,
    QuarantineManager,
    QuarantinePage,
    ReprocessOutcome,
)

__all__ = [
    "BatchReprocessResult",
    "CorrectionLedger",
    "QuarantineEntry",
    "QuarantineManager",
    "QuarantinePage",
    "ReprocessOutcome",
    "apply_corrections",
    "latest_by_field",
]

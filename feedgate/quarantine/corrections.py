"""
Correction ledger: append-only field overrides for quarantined records.

When corrections are applied the most recently created one per field wins;
corrections to different fields apply together.
"""

import uuid
from typing import Any

from feedgate.connectors.base import parse_price, parse_stock_status
from feedgate.core.models import FeedCorrection
from feedgate.observability.logger import get_logger
from feedgate.storage import CatalogStore
from feedgate.utils.validation import validate_actor, validate_correction_field, validate_id

logger = get_logger(__name__)


def latest_by_field(corrections: list[FeedCorrection]) -> dict[str, FeedCorrection]:
    """
    Pick the winning correction for each field.

    Args:
        corrections: Corrections newest first, as stores return them; on equal
            timestamps the earlier entry in the list wins

    Returns:
        Mapping of field name to its most recently created correction
    """
    latest: dict[str, FeedCorrection] = {}
    for correction in corrections:
        current = latest.get(correction.field)
        if current is None or correction.created_at > current.created_at:
            latest[correction.field] = correction
    return latest


def coerce_correction_value(field: str, value: str) -> Any:
    """Convert a stored text override back into the canonical field type."""
    if field == "price":
        price, _ = parse_price(value)
        return price
    if field == "in_stock":
        in_stock, _ = parse_stock_status(value)
        return in_stock

    text = value.strip()
    if field == "title":
        return text
    return text or None


def apply_corrections(parsed_fields: dict[str, Any], corrections: list[FeedCorrection]) -> dict[str, Any]:
    """
    Overlay corrections on a parsed-field snapshot.

    The snapshot is copied, never mutated. Fields without a correction keep
    their original value.
    """
    corrected = dict(parsed_fields)
    for field, correction in latest_by_field(corrections).items():
        corrected[field] = coerce_correction_value(field, correction.new_value)
    return corrected


class CorrectionLedger:
    """Creates, lists and removes corrections."""

    def __init__(self, store: CatalogStore):
        self.store = store

    def create_correction(self, record_id: str, field: str, new_value: Any, created_by: str) -> FeedCorrection:
        """
        Append a correction, capturing the record's current parsed value.

        Args:
            record_id: Quarantined record to correct
            field: Canonical field name
            new_value: Replacement value (stored as text)
            created_by: Operator supplying the correction

        Returns:
            The stored FeedCorrection

        Raises:
            InputValidationError: If the field or actor is invalid
            NotFoundError: If the record does not exist
        """
        record_id = validate_id(record_id, "record_id")
        validate_correction_field(field)
        created_by = validate_actor(created_by, "created_by")

        record = self.store.get_quarantined_record(record_id)
        old = (record.parsed_fields or {}).get(field)

        correction = FeedCorrection(
            id=uuid.uuid4().hex,
            quarantined_record_id=record_id,
            field=field,
            old_value=str(old) if old is not None else None,
            new_value="" if new_value is None else str(new_value),
            created_by=created_by,
        )
        stored = self.store.create_correction(correction)

        logger.info(
            f"Correction added to {record_id}",
            extra={"record_id": record_id, "field_name": field, "created_by": created_by},
        )
        return stored

    def delete_correction(self, correction_id: str, actor: str) -> FeedCorrection:
        removed = self.store.delete_correction(validate_id(correction_id, "correction_id"))
        logger.info(
            f"Correction {correction_id} removed",
            extra={"correction_id": correction_id, "record_id": removed.quarantined_record_id, "actor": actor},
        )
        return removed

    def list_corrections(self, record_id: str, limit: int | None = None) -> list[FeedCorrection]:
        return self.store.list_corrections(record_id, limit=limit)

    def corrected_fields(self, record_id: str, parsed_fields: dict[str, Any]) -> dict[str, Any]:
        return apply_corrections(parsed_fields, self.store.list_corrections(record_id))

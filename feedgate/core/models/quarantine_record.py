"""
QuarantinedRecord model: plausible records that are not yet safe to index.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QuarantineStatus(str, Enum):
    """Lifecycle of a quarantined record. RESOLVED and DISMISSED are terminal."""

    QUARANTINED = "QUARANTINED"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"

    @property
    def is_terminal(self) -> bool:
        return self != QuarantineStatus.QUARANTINED


class QuarantinedRecord(BaseModel):
    """
    A record held back from the catalog pending correction.

    Attributes:
        id: Record identifier
        feed_id: Feed that produced the record
        retailer_id: Retailer the record belongs to
        feed_type: RETAILER or AFFILIATE, used to route reprocess jobs
        run_id: Run that last quarantined it
        match_key: Stable human-facing key (title + SKU digest)
        parsed_fields: Canonical field snapshot at quarantine time
        raw_data: Source row as read from the feed
        errors: Validation errors that caused the quarantine
        status: QUARANTINED, RESOLVED or DISMISSED
        resolved_sku_id: RetailerSku created on resolution
    """

    id: str
    feed_id: str
    retailer_id: str
    feed_type: str = "RETAILER"
    run_id: str | None = None
    match_key: str = Field(..., min_length=1)
    parsed_fields: dict[str, Any] | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    status: QuarantineStatus = QuarantineStatus.QUARANTINED
    resolved_sku_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def title(self) -> str:
        return (self.parsed_fields or {}).get("title") or ""

    class Config:
        json_schema_extra = {
            "example": {
                "id": "qr_7f3c",
                "feed_id": "feed_001",
                "retailer_id": "ret_001",
                "match_key": "b1946ac92492d2347c6235b4d2611184",
                "parsed_fields": {"title": "Hornady 308 168gr", "price": 32.5, "upc": None},
                "errors": [{"field": "upc", "code": "MISSING_UPC", "message": "UPC is missing"}],
                "status": "QUARANTINED",
            }
        }

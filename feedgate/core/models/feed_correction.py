"""
FeedCorrection model: append-only field override for a quarantined record.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class FeedCorrection(BaseModel):
    """
    A manual override of one field of a quarantined record.

    Attributes:
        id: Correction identifier
        quarantined_record_id: Record the correction targets
        field: Canonical field name being overridden
        old_value: Parsed value captured when the correction was created
        new_value: Replacement value, stored as text
        created_by: Operator who supplied it
        created_at: Creation time; the latest correction per field wins
    """

    id: str
    quarantined_record_id: str
    field: str = Field(..., min_length=1)
    old_value: str | None = None
    new_value: str
    created_by: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "corr_01",
                "quarantined_record_id": "qr_7f3c",
                "field": "upc",
                "old_value": None,
                "new_value": "090255123456",
                "created_by": "ops@example.com",
            }
        }

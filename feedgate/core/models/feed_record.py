"""
ParsedRecord and ValidationOutcome models.

A ParsedRecord is the canonical shape every connector produces, one per
source row. It lives only for the duration of a run.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

CANONICAL_FIELDS = (
    "title",
    "price",
    "upc",
    "sku",
    "brand",
    "category",
    "image_url",
    "product_url",
    "description",
    "in_stock",
)


class RecordLane(str, Enum):
    """Routing decision for a validated record."""

    INDEXABLE = "indexable"
    QUARANTINE = "quarantine"
    REJECT = "reject"


class FieldError(BaseModel):
    """A single field-level validation problem."""

    field: str
    code: str
    message: str


class FieldCoercion(BaseModel):
    """
    A conversion applied while normalizing a field.

    Attributes:
        field: Canonical field name
        coercion_type: One of trim, numeric, boolean, alias, default
        source: Source column the value was read from, when relevant
    """

    field: str
    coercion_type: str
    source: str | None = None

    @property
    def summary_key(self) -> str:
        return f"{self.field}:{self.coercion_type}"


class ParsedRecord(BaseModel):
    """
    Canonical product record produced from one feed row.

    Attributes:
        row_index: Zero-based position of the row in the source
        title: Product title
        price: Parsed price; 0.0 when absent or unparseable
        upc: Raw UPC as supplied
        sku: Retailer SKU
        in_stock: Stock flag; defaults to True when the feed omits it
        raw: Original row as read from the feed
        coercions: Conversions applied while normalizing
    """

    row_index: int = Field(..., ge=0)
    title: str = ""
    price: float = 0.0
    upc: str | None = None
    sku: str | None = None
    brand: str | None = None
    category: str | None = None
    image_url: str | None = None
    product_url: str | None = None
    description: str | None = None
    in_stock: bool = True
    raw: dict[str, Any] = Field(default_factory=dict)
    coercions: list[FieldCoercion] = Field(default_factory=list)

    def canonical_fields(self) -> dict[str, Any]:
        """Snapshot of the canonical fields, as stored on a quarantined record."""
        return {name: getattr(self, name) for name in CANONICAL_FIELDS}

    class Config:
        json_schema_extra = {
            "example": {
                "row_index": 0,
                "title": "Federal 9mm 115gr FMJ 50rd",
                "price": 18.99,
                "upc": "029465064583",
                "sku": "FED-9-115",
                "brand": "Federal",
                "in_stock": True,
                "coercions": [{"field": "price", "coercion_type": "numeric", "source": "Price"}],
            }
        }


class ValidationOutcome(BaseModel):
    """
    Classification of a ParsedRecord.

    Attributes:
        row_index: Row the outcome belongs to
        lane: indexable, quarantine or reject
        errors: Field-level problems found
        coercions: Coercions carried over from normalization
    """

    row_index: int
    lane: RecordLane
    errors: list[FieldError] = Field(default_factory=list)
    coercions: list[FieldCoercion] = Field(default_factory=list)

    @property
    def is_indexable(self) -> bool:
        return self.lane == RecordLane.INDEXABLE

    @property
    def error_codes(self) -> list[str]:
        return [error.code for error in self.errors]

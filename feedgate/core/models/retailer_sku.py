"""
RetailerSku model and the ordered mapping-confidence scale.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MappingConfidence(str, Enum):
    """Certainty of a retailer SKU to canonical SKU mapping, NONE < LOW < MEDIUM < HIGH."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return list(MappingConfidence).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, MappingConfidence):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, MappingConfidence):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, MappingConfidence):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, MappingConfidence):
            return NotImplemented
        return self.rank >= other.rank


class IdentityType(str, Enum):
    """Which identifier anchored the SKU hash."""

    SKU = "SKU"
    URL_HASH = "URL_HASH"


class RetailerSku(BaseModel):
    """
    Persistent catalog row for one retailer product.

    Keyed by (retailer_id, retailer_sku_hash). Deactivated, never deleted,
    when a promoted run no longer contains it.

    Attributes:
        retailer_id: Owning retailer
        retailer_sku_hash: 32-hex identity hash
        raw_title: Title as last ingested
        raw_price: Price as last ingested
        raw_upc: UPC as last ingested
        raw_sku: Retailer SKU as last ingested
        is_active: False once expired from the feed
        canonical_sku_id: Linked canonical product, if mapped
        mapping_confidence: Confidence of the canonical link
        needs_review: Whether an operator should confirm the mapping
        identity_type: SKU or URL_HASH
    """

    id: str | None = None
    retailer_id: str = Field(..., min_length=1)
    retailer_sku_hash: str = Field(..., min_length=32, max_length=32)
    raw_title: str
    raw_price: float
    raw_upc: str | None = None
    raw_sku: str | None = None
    raw_brand: str | None = None
    raw_category: str | None = None
    raw_image_url: str | None = None
    raw_product_url: str | None = None
    raw_description: str | None = None
    in_stock: bool = True
    is_active: bool = True
    canonical_sku_id: str | None = None
    mapping_confidence: MappingConfidence = MappingConfidence.NONE
    needs_review: bool = False
    identity_type: IdentityType = IdentityType.SKU
    feed_id: str | None = None
    last_seen_run_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def fields_from_record(cls, fields: dict[str, Any]) -> dict[str, Any]:
        """Map canonical record fields onto raw_* columns."""
        return {
            "raw_title": fields.get("title") or "",
            "raw_price": float(fields.get("price") or 0.0),
            "raw_upc": fields.get("upc"),
            "raw_sku": fields.get("sku"),
            "raw_brand": fields.get("brand"),
            "raw_category": fields.get("category"),
            "raw_image_url": fields.get("image_url"),
            "raw_product_url": fields.get("product_url"),
            "raw_description": fields.get("description"),
            "in_stock": True if fields.get("in_stock") is None else bool(fields.get("in_stock")),
        }

    class Config:
        json_schema_extra = {
            "example": {
                "retailer_id": "ret_001",
                "retailer_sku_hash": "3f2a9c0d4e5b6a7f8091a2b3c4d5e6f7",
                "raw_title": "Federal 9mm 115gr FMJ 50rd",
                "raw_price": 18.99,
                "raw_upc": "029465064583",
                "is_active": True,
                "mapping_confidence": "HIGH",
                "needs_review": False,
            }
        }

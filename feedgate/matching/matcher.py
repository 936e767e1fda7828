"""
Canonical matching of retailer SKUs.

Automatic matching is a pluggable MatchStrategy; anything below HIGH
confidence is flagged for review. Operators can map, approve or unmap a SKU.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any

from feedgate.core.models import MappingConfidence, RetailerSku
from feedgate.core.validators import is_valid_upc, normalize_upc
from feedgate.observability.logger import get_logger
from feedgate.storage import CatalogStore

logger = get_logger(__name__)

TOKEN = re.compile(r"[a-z0-9.]+")


@dataclass
class MatchResult:
    """Proposed canonical link for a record."""

    canonical_sku_id: str | None
    confidence: MappingConfidence
    needs_review: bool

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["confidence"] = self.confidence.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MatchResult":
        return cls(
            canonical_sku_id=data.get("canonical_sku_id"),
            confidence=MappingConfidence(data["confidence"]),
            needs_review=bool(data.get("needs_review")),
        )

    @classmethod
    def none(cls, needs_review: bool = False) -> "MatchResult":
        return cls(canonical_sku_id=None, confidence=MappingConfidence.NONE, needs_review=needs_review)


@dataclass
class CanonicalProduct:
    id: str
    name: str
    brand: str | None = None
    upc: str | None = None


class MatchStrategy(ABC):
    """Proposes a canonical product for a record's canonical fields."""

    @abstractmethod
    def match(self, fields: dict[str, Any]) -> MatchResult:
        pass


class NoMatchStrategy(MatchStrategy):
    """Leaves every SKU unmapped."""

    def match(self, fields: dict[str, Any]) -> MatchResult:
        return MatchResult.none()


def _tokens(text: str | None) -> set[str]:
    return set(TOKEN.findall((text or "").lower()))


class CatalogMatchStrategy(MatchStrategy):
    """
    Matches against a list of canonical products.

    - Exact UPC match: HIGH, no review.
    - Same brand and title similarity above min_similarity: MEDIUM for an
      exact title, LOW otherwise. Several plausible candidates without an
      exact title are ambiguous and match LOW.
    - Missing brand or no candidate: NONE, flagged for review.
    """

    def __init__(self, products: list[CanonicalProduct], min_similarity: float = 0.5):
        self.min_similarity = min_similarity
        self.by_upc = {normalize_upc(p.upc): p for p in products if p.upc and is_valid_upc(p.upc)}
        self.by_brand: dict[str, list[CanonicalProduct]] = {}
        for product in products:
            if product.brand:
                self.by_brand.setdefault(product.brand.strip().lower(), []).append(product)

    def match(self, fields: dict[str, Any]) -> MatchResult:
        upc = normalize_upc(fields.get("upc"))
        if upc and upc in self.by_upc:
            return MatchResult(self.by_upc[upc].id, MappingConfidence.HIGH, needs_review=False)

        brand = (fields.get("brand") or "").strip().lower()
        title = (fields.get("title") or "").strip().lower()
        if not brand or not title:
            return MatchResult.none(needs_review=True)

        title_tokens = _tokens(title)
        scored = []
        for product in self.by_brand.get(brand, []):
            product_tokens = _tokens(product.name)
            union = title_tokens | product_tokens
            score = len(title_tokens & product_tokens) / len(union) if union else 0.0
            if score >= self.min_similarity:
                scored.append((score, product))

        if not scored:
            return MatchResult.none(needs_review=True)

        exact = [product for _, product in scored if product.name.strip().lower() == title]
        if exact:
            return MatchResult(exact[0].id, MappingConfidence.MEDIUM, needs_review=True)

        scored.sort(key=lambda item: item[0], reverse=True)
        return MatchResult(scored[0][1].id, MappingConfidence.LOW, needs_review=True)


class CanonicalMatcher:
    """
    Applies automatic matches and operator mapping actions to RetailerSku rows.
    """

    def __init__(self, store: CatalogStore, strategy: MatchStrategy | None = None):
        self.store = store
        self.strategy = strategy or NoMatchStrategy()

    def propose(self, fields: dict[str, Any]) -> MatchResult:
        result = self.strategy.match(fields)
        # Only HIGH confidence escapes review
        if result.confidence != MappingConfidence.HIGH:
            result.needs_review = result.needs_review or result.canonical_sku_id is not None
        return result

    def apply_match(self, retailer_id: str, sku_hash: str, result: MatchResult) -> RetailerSku | None:
        """
        Record an automatic match on a promoted SKU.

        A SKU that already has a HIGH, reviewed mapping keeps it; otherwise the
        proposal is applied when it is at least as confident as the current one.
        """
        sku = self.store.get_retailer_sku(retailer_id, sku_hash)
        if sku is None:
            return None

        if sku.mapping_confidence == MappingConfidence.HIGH and not sku.needs_review:
            return sku
        if result.confidence == MappingConfidence.NONE or result.confidence < sku.mapping_confidence:
            return sku

        updated = sku.model_copy(
            update={
                "canonical_sku_id": result.canonical_sku_id,
                "mapping_confidence": result.confidence,
                "needs_review": result.needs_review,
            }
        )
        return self.store.save_retailer_sku(updated)

    def map_sku(self, sku_id: str, canonical_sku_id: str, actor: str) -> RetailerSku:
        """Link a SKU to a canonical product with HIGH confidence."""
        sku = self.store.get_retailer_sku_by_id(sku_id)
        updated = sku.model_copy(
            update={
                "canonical_sku_id": canonical_sku_id,
                "mapping_confidence": MappingConfidence.HIGH,
                "needs_review": False,
            }
        )
        logger.info(
            f"SKU {sku_id} mapped to {canonical_sku_id}",
            extra={"sku_id": sku_id, "canonical_sku_id": canonical_sku_id, "actor": actor},
        )
        return self.store.save_retailer_sku(updated)

    def approve(self, sku_id: str, actor: str) -> RetailerSku:
        """Clear the review flag; LOW and MEDIUM links are upgraded to HIGH."""
        sku = self.store.get_retailer_sku_by_id(sku_id)
        confidence = sku.mapping_confidence
        if MappingConfidence.LOW <= confidence < MappingConfidence.HIGH:
            confidence = MappingConfidence.HIGH
        updated = sku.model_copy(update={"mapping_confidence": confidence, "needs_review": False})
        logger.info(
            f"SKU {sku_id} mapping approved",
            extra={"sku_id": sku_id, "confidence": confidence.value, "actor": actor},
        )
        return self.store.save_retailer_sku(updated)

    def unmap(self, sku_id: str, actor: str) -> RetailerSku:
        """Remove the canonical link."""
        sku = self.store.get_retailer_sku_by_id(sku_id)
        updated = sku.model_copy(
            update={
                "canonical_sku_id": None,
                "mapping_confidence": MappingConfidence.NONE,
                "needs_review": False,
            }
        )
        logger.info(f"SKU {sku_id} unmapped", extra={"sku_id": sku_id, "actor": actor})
        return self.store.save_retailer_sku(updated)

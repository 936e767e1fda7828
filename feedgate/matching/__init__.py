"""Canonical product matching."""

from .matcher import (
    CanonicalMatcher,
    CanonicalProduct,
    CatalogMatchStrategy,
    MatchResult,
    MatchStrategy,
    NoMatchStrategy,
)

__all__ = [
    "CanonicalMatcher",
    "CanonicalProduct",
    "CatalogMatchStrategy",
    "MatchResult",
    "MatchStrategy",
    "NoMatchStrategy",
]

"""Similarity engine: scores candidates against a studio's catalog.

Submodules:
- normalize: text / code / website normalization
- similarity: pure field-weighted scorer with the SKU + manufacturer override
- catalog_pool: tenant-scoped catalog reads and manufacturer resolution
- matcher: DB-backed matching with safe degradation
"""

from catalog_ingest.matching.catalog_pool import CatalogPool
from catalog_ingest.matching.matcher import CatalogMatcher, PrecheckResult
from catalog_ingest.matching.similarity import (
    MatchCandidate,
    ProjectRef,
    SimilarityScorer,
    score_band,
    text_similarity,
)

__all__ = [
    "CatalogMatcher",
    "CatalogPool",
    "MatchCandidate",
    "PrecheckResult",
    "ProjectRef",
    "SimilarityScorer",
    "score_band",
    "text_similarity",
]

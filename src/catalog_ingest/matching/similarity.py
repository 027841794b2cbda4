"""Field-weighted similarity scoring between candidates and catalog records.

Key principles:
- Base comparison is rapidfuzz's normalized Indel similarity on normalized text
  (symmetric, range [0, 1], identical strings -> 1.0)
- Composite score is a weighted sum over the fields present on BOTH sides,
  renormalized by the weights of those fields (missing fields are ignored,
  never counted as disagreement)
- Category and manufacturer are identity terms: 1.0 on match, 0.0 otherwise
- Exact-match override: same non-empty reference SKU AND same manufacturer
  scores a fixed near-maximum value, whatever the name similarity says
- Pure and deterministic: no I/O, no mutation of the records passed in

Score bands (very_high / high / medium / low) are presentation only; they never
change the create/link default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from rapidfuzz import fuzz

from catalog_ingest.config import settings
from catalog_ingest.intake.schemas import Candidate, CandidateManufacturer, CandidateMaterial
from catalog_ingest.matching.normalize import (
    normalize_code,
    normalize_email,
    normalize_text,
    normalize_website,
)
from catalog_ingest.models.enums import EntityKind, MatchBand
from catalog_ingest.models.manufacturer import Manufacturer
from catalog_ingest.models.material import Material

logger = logging.getLogger(__name__)

# Field weights per entity kind. Renormalized over the fields present on both sides.
MATERIAL_WEIGHTS: dict[str, float] = {
    "name": 0.50,  # Highest weight
    "category": 0.20,  # Identity: must match or contributes nothing
    "manufacturer": 0.15,  # Identity, only when both sides resolve to an id
    "subcategory": 0.10,
    "reference_sku": 0.05,
}

MANUFACTURER_WEIGHTS: dict[str, float] = {
    "name": 0.80,
    "website": 0.10,
    "email": 0.10,
}


@dataclass(frozen=True)
class ProjectRef:
    """A project that already uses a matched material."""

    project_id: UUID
    name: str


@dataclass
class MatchCandidate:
    """One plausible duplicate of a candidate. Ephemeral, never persisted."""

    existing_id: UUID
    kind: EntityKind
    name: str
    score: float
    """Composite similarity in [0, 1]."""

    matched_fields: dict[str, float] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    """Per-field similarity for the fields compared."""

    exact_match: bool = False
    """True when the reference SKU + manufacturer override applied."""

    category: str | None = None
    reference_sku: str | None = None

    projects: list[ProjectRef] | None = None
    """Projects already using this entity. None until the caller enriches it."""

    @property
    def band(self) -> MatchBand:
        return score_band(self.score)


def text_similarity(a: str | None, b: str | None) -> float:
    """Normalized edit-distance similarity of two strings in [0, 1].

    Symmetric; identical (after normalization) -> 1.0; either side empty -> 0.0.
    """
    left = normalize_text(a)
    right = normalize_text(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return fuzz.ratio(left, right) / 100.0


def score_band(score: float) -> MatchBand:
    """Presentation label for a score."""
    if score >= settings.band_very_high:
        return MatchBand.VERY_HIGH
    if score >= settings.band_high:
        return MatchBand.HIGH
    if score >= settings.band_medium:
        return MatchBand.MEDIUM
    return MatchBand.LOW


def _identity(a: str, b: str) -> float:
    return 1.0 if a == b else 0.0


def _weighted(field_scores: dict[str, float], weights: dict[str, float]) -> float:
    total_weight = sum(weights[name] for name in field_scores)
    if total_weight == 0:
        return 0.0
    score = sum(weights[name] * value for name, value in field_scores.items()) / total_weight
    return max(0.0, min(1.0, score))


class SimilarityScorer:
    """Scores a candidate against catalog records.

    Usage:
        scorer = SimilarityScorer()
        matches = scorer.score(candidate, materials, threshold=0.6, manufacturer_id=mid)
    """

    def __init__(self, *, exact_match_score: float | None = None) -> None:
        self._exact_match_score = (
            exact_match_score if exact_match_score is not None else settings.exact_match_score
        )
        if not 0.95 <= self._exact_match_score <= 0.99:
            raise ValueError("exact_match_score must be within [0.95, 0.99]")

    def score(
        self,
        candidate: Candidate,
        catalog: list[Material] | list[Manufacturer],
        *,
        threshold: float,
        manufacturer_id: UUID | None = None,
    ) -> list[MatchCandidate]:
        """Rank the catalog records that plausibly duplicate the candidate.

        Args:
            candidate: The record proposed for ingestion.
            catalog: Existing records of the same kind, from one studio.
            threshold: Minimum composite score to include a record.
            manufacturer_id: Resolved manufacturer of a material candidate
                (falls back to ``candidate.manufacturer_id``).

        Returns:
            Matches with score >= threshold, best first. Ties are broken by
            name, then id, so the ordering is fully deterministic.
        """
        matches: list[MatchCandidate] = []
        for record in catalog:
            if isinstance(candidate, CandidateMaterial) and isinstance(record, Material):
                match = self.score_material(candidate, record, manufacturer_id=manufacturer_id)
            elif isinstance(candidate, CandidateManufacturer) and isinstance(record, Manufacturer):
                match = self.score_manufacturer(candidate, record)
            else:
                continue
            if match.score >= threshold:
                matches.append(match)

        matches.sort(key=lambda m: (-m.score, normalize_text(m.name), str(m.existing_id)))
        logger.debug(
            "Scored %r against %d records: %d above %.2f",
            candidate.name,
            len(catalog),
            len(matches),
            threshold,
        )
        return matches

    def score_material(
        self,
        candidate: CandidateMaterial,
        existing: Material,
        *,
        manufacturer_id: UUID | None = None,
    ) -> MatchCandidate:
        """Score one material pair."""
        manufacturer_id = manufacturer_id or candidate.manufacturer_id
        field_scores: dict[str, float] = {
            "name": text_similarity(candidate.name, existing.name),
        }

        if candidate.category and existing.category:
            field_scores["category"] = _identity(
                normalize_text(candidate.category), normalize_text(existing.category)
            )
        if manufacturer_id is not None and existing.manufacturer_id is not None:
            field_scores["manufacturer"] = _identity(
                str(manufacturer_id), str(existing.manufacturer_id)
            )
        if candidate.subcategory and existing.subcategory:
            field_scores["subcategory"] = text_similarity(
                candidate.subcategory, existing.subcategory
            )

        candidate_code = normalize_code(candidate.reference_sku)
        existing_code = normalize_code(existing.reference_sku)
        if candidate_code and existing_code:
            field_scores["reference_sku"] = _identity(candidate_code, existing_code)

        exact = (
            bool(candidate_code)
            and candidate_code == existing_code
            and field_scores.get("manufacturer") == 1.0
        )
        score = self._exact_match_score if exact else _weighted(field_scores, MATERIAL_WEIGHTS)

        return MatchCandidate(
            existing_id=existing.material_id,
            kind=EntityKind.MATERIAL,
            name=existing.name,
            score=score,
            matched_fields=field_scores,
            exact_match=exact,
            category=existing.category,
            reference_sku=existing.reference_sku,
        )

    def score_manufacturer(
        self,
        candidate: CandidateManufacturer,
        existing: Manufacturer,
    ) -> MatchCandidate:
        """Score one manufacturer pair."""
        field_scores: dict[str, float] = {
            "name": text_similarity(candidate.name, existing.name),
        }
        candidate_site = normalize_website(candidate.website)
        existing_site = normalize_website(existing.website)
        if candidate_site and existing_site:
            field_scores["website"] = _identity(candidate_site, existing_site)

        candidate_email = normalize_email(candidate.email)
        existing_email = normalize_email(existing.email)
        if candidate_email and existing_email:
            field_scores["email"] = _identity(candidate_email, existing_email)

        return MatchCandidate(
            existing_id=existing.manufacturer_id,
            kind=EntityKind.MANUFACTURER,
            name=existing.name,
            score=_weighted(field_scores, MANUFACTURER_WEIGHTS),
            matched_fields=field_scores,
        )

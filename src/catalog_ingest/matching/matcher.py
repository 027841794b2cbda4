"""DB-backed duplicate matching for one studio.

Wraps the pure SimilarityScorer with catalog loading and manufacturer
resolution. If matching cannot be computed (storage error, timeout) the
candidate is reported as having no matches: "treat as new" is the
data-loss-free fallback.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.config import settings
from catalog_ingest.errors import MatchComputationUnavailable
from catalog_ingest.intake.schemas import Candidate, CandidateMaterial
from catalog_ingest.matching.catalog_pool import CatalogPool
from catalog_ingest.matching.similarity import MatchCandidate, SimilarityScorer
from catalog_ingest.models.enums import EntityKind

logger = logging.getLogger(__name__)


@dataclass
class PrecheckResult:
    """Result of screening a whole batch before opening a resolution session."""

    matches: dict[int, list[MatchCandidate]]
    """Candidate index -> matches, only for candidates that have any."""

    @property
    def has_duplicates(self) -> bool:
        return bool(self.matches)


class CatalogMatcher:
    """Finds existing catalog records that plausibly duplicate a candidate.

    Usage:
        async with AsyncSession(engine) as session:
            matcher = CatalogMatcher(session)
            matches = await matcher.find_matches(studio_id, candidate)
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        scorer: SimilarityScorer | None = None,
        pool: CatalogPool | None = None,
        timeout: float | None = None,
    ) -> None:
        self._session = session
        self._scorer = scorer or SimilarityScorer()
        self._pool = pool or CatalogPool(session)
        self._timeout = timeout if timeout is not None else settings.match_timeout_seconds

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def pool(self) -> CatalogPool:
        return self._pool

    async def find_matches(
        self,
        studio_id: UUID,
        candidate: Candidate,
        *,
        threshold: float | None = None,
    ) -> list[MatchCandidate]:
        """Ranked matches for one candidate; [] when matching is unavailable."""
        threshold = settings.match_threshold if threshold is None else threshold
        try:
            return await self._compute_with_timeout(studio_id, candidate, threshold)
        except MatchComputationUnavailable as exc:
            logger.warning(
                "Match computation unavailable for %s %r in studio %s, treating as new: %s",
                candidate.kind.value,
                candidate.name,
                studio_id,
                exc,
            )
            return []

    async def _compute_with_timeout(
        self,
        studio_id: UUID,
        candidate: Candidate,
        threshold: float,
    ) -> list[MatchCandidate]:
        try:
            return await asyncio.wait_for(
                self._compute(studio_id, candidate, threshold), timeout=self._timeout
            )
        except (SQLAlchemyError, asyncio.TimeoutError) as exc:
            raise MatchComputationUnavailable(str(exc) or type(exc).__name__) from exc

    async def _compute(
        self,
        studio_id: UUID,
        candidate: Candidate,
        threshold: float,
    ) -> list[MatchCandidate]:
        # Savepoint: a failed read must not poison the caller's transaction
        async with self._session.begin_nested():
            if candidate.kind == EntityKind.MANUFACTURER:
                manufacturers = await self._pool.manufacturers(studio_id)
                return self._scorer.score(candidate, manufacturers, threshold=threshold)

            assert isinstance(candidate, CandidateMaterial)
            manufacturer_id = candidate.manufacturer_id or await self._pool.resolve_manufacturer_id(
                studio_id, candidate.manufacturer_name
            )
            materials = await self._pool.materials(studio_id)
            if manufacturer_id is not None and candidate.reference_sku:
                loaded = {m.material_id for m in materials}
                materials += [
                    m
                    for m in await self._pool.materials_with_sku(
                        studio_id, manufacturer_id, candidate.reference_sku
                    )
                    if m.material_id not in loaded
                ]
            return self._scorer.score(
                candidate, materials, threshold=threshold, manufacturer_id=manufacturer_id
            )

    async def precheck(
        self,
        studio_id: UUID,
        candidates: list[Candidate],
        *,
        threshold: float | None = None,
    ) -> PrecheckResult:
        """Screen a batch; a batch without duplicates can skip the session."""
        threshold = settings.precheck_threshold if threshold is None else threshold
        found: dict[int, list[MatchCandidate]] = {}
        for index, candidate in enumerate(candidates):
            matches = await self.find_matches(studio_id, candidate, threshold=threshold)
            if matches:
                found[index] = matches
        logger.info(
            "Precheck: %d of %d candidates have possible duplicates", len(found), len(candidates)
        )
        return PrecheckResult(matches=found)

    async def attach_projects(
        self,
        studio_id: UUID,
        matches: list[MatchCandidate],
    ) -> list[MatchCandidate]:
        """Return copies of the matches enriched with the projects using them."""
        material_ids = [m.existing_id for m in matches if m.kind == EntityKind.MATERIAL]
        usage = await self._pool.projects_using(studio_id, material_ids)
        return [
            replace(m, projects=list(usage.get(m.existing_id, [])))
            if m.kind == EntityKind.MATERIAL
            else replace(m, projects=[])
            for m in matches
        ]

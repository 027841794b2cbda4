"""FastAPI application for catalog ingest."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest import __version__
from catalog_ingest.db import get_session, init_db
from catalog_ingest.errors import (
    AlreadyResolvedError,
    CommitFailureError,
    IngestError,
    NotFoundError,
)
from catalog_ingest.intake.schemas import CandidateMaterial
from catalog_ingest.matching import CatalogMatcher, MatchCandidate
from catalog_ingest.models import EntityKind, PendingEntity, PendingStatus
from catalog_ingest.services import ApprovalQueue


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()
    yield


app = FastAPI(
    title="Catalog Ingest",
    description="Duplicate-aware ingestion of materials and manufacturers",
    version=__version__,
    lifespan=lifespan,
)

SessionDep = Annotated[AsyncSession, Depends(get_session)]


class MatchRequest(BaseModel):
    candidate: CandidateMaterial
    threshold: float | None = None
    include_projects: bool = False


class ProjectOut(BaseModel):
    project_id: UUID
    name: str


class MatchOut(BaseModel):
    existing_id: UUID
    name: str
    score: float
    band: str
    exact_match: bool
    matched_fields: dict[str, float]
    category: str | None = None
    reference_sku: str | None = None
    projects: list[ProjectOut] | None = None

    @classmethod
    def from_match(cls, match: MatchCandidate) -> MatchOut:
        return cls(
            existing_id=match.existing_id,
            name=match.name,
            score=round(match.score, 4),
            band=match.band.value,
            exact_match=match.exact_match,
            matched_fields=match.matched_fields,
            category=match.category,
            reference_sku=match.reference_sku,
            projects=(
                [ProjectOut(project_id=p.project_id, name=p.name) for p in match.projects]
                if match.projects is not None
                else None
            ),
        )


class PendingOut(BaseModel):
    pending_id: UUID
    entity_kind: EntityKind
    name: str
    category: str | None
    fields: dict[str, Any]
    status: PendingStatus
    submission_id: UUID | None
    project_id: UUID | None
    created_by: str | None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: PendingEntity) -> PendingOut:
        return cls(
            pending_id=entry.pending_id,
            entity_kind=entry.entity_kind,
            name=entry.name,
            category=entry.category,
            fields=entry.fields or {},
            status=entry.status,
            submission_id=entry.submission_id,
            project_id=entry.project_id,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )


class ReviewRequest(BaseModel):
    reviewer_id: str
    reason: str | None = None


def http_error(exc: IngestError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AlreadyResolvedError):
        return HTTPException(status_code=409, detail=str(exc))
    if exc.retryable:
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.post("/studios/{studio_id}/matches/materials")
async def match_material(
    studio_id: UUID, request: MatchRequest, session: SessionDep
) -> list[MatchOut]:
    """Rank existing materials that may duplicate the candidate."""
    matcher = CatalogMatcher(session)
    matches = await matcher.find_matches(studio_id, request.candidate, threshold=request.threshold)
    if request.include_projects:
        matches = await matcher.attach_projects(studio_id, matches)
    return [MatchOut.from_match(m) for m in matches]


@app.get("/studios/{studio_id}/queue")
async def list_queue(
    studio_id: UUID,
    session: SessionDep,
    status: PendingStatus = PendingStatus.PENDING,
    submission_id: UUID | None = None,
    limit: int = 100,
) -> list[PendingOut]:
    """Queue entries, oldest first."""
    entries = await ApprovalQueue(session).list_entries(
        studio_id, status, submission_id=submission_id, limit=limit
    )
    return [PendingOut.from_entry(e) for e in entries]


@app.post("/studios/{studio_id}/queue/{pending_id}/approve")
async def approve_entry(
    studio_id: UUID, pending_id: UUID, request: ReviewRequest, session: SessionDep
) -> dict[str, Any]:
    """Approve an entry and commit it to the catalog."""
    try:
        result = await ApprovalQueue(session).approve(studio_id, pending_id, request.reviewer_id)
    except CommitFailureError as exc:
        # The approval stands; a retry completes the commit
        await session.commit()
        raise http_error(exc) from exc
    except IngestError as exc:
        raise http_error(exc) from exc
    await session.commit()
    return {
        "pending_id": str(result.pending_id),
        "entity_kind": result.kind.value,
        "entity_id": str(result.entity_id),
        "association_id": str(result.association_id) if result.association_id else None,
        "association_created": result.association_created,
        "submission_completed": result.submission_completed,
    }


@app.post("/studios/{studio_id}/queue/{pending_id}/reject")
async def reject_entry(
    studio_id: UUID, pending_id: UUID, request: ReviewRequest, session: SessionDep
) -> dict[str, Any]:
    """Reject an entry."""
    try:
        result = await ApprovalQueue(session).reject(
            studio_id, pending_id, request.reviewer_id, request.reason
        )
    except IngestError as exc:
        raise http_error(exc) from exc
    await session.commit()
    return {
        "pending_id": str(result.pending_id),
        "submission_completed": result.submission_completed,
    }

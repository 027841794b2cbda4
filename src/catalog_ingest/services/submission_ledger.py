"""Submission ledger: lifecycle of one ingestion batch.

States: pending → processing → ready_for_review → completed | rejected.

- pending → processing: extraction / candidate generation started (external)
- processing → ready_for_review: candidates available for a resolution session
- ready_for_review → completed: ONLY via on_child_resolved, once no pending
  child remains. Never set directly by a user action.
- any non-terminal state → rejected: explicit override

A submission whose children were all rejected still completes; ``rejected`` is
never inferred.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.errors import InvalidTransitionError, NotFoundError
from catalog_ingest.models.base import utcnow
from catalog_ingest.models.enums import PendingStatus, SubmissionStatus
from catalog_ingest.models.pending_entity import PendingEntity
from catalog_ingest.models.submission import Submission

logger = logging.getLogger(__name__)

# User-driven transitions. COMPLETED is only reached through on_child_resolved.
ALLOWED_TRANSITIONS: dict[SubmissionStatus, set[SubmissionStatus]] = {
    SubmissionStatus.PENDING: {SubmissionStatus.PROCESSING, SubmissionStatus.REJECTED},
    SubmissionStatus.PROCESSING: {SubmissionStatus.READY_FOR_REVIEW, SubmissionStatus.REJECTED},
    SubmissionStatus.READY_FOR_REVIEW: {SubmissionStatus.REJECTED},
    SubmissionStatus.COMPLETED: set(),
    SubmissionStatus.REJECTED: set(),
}


@dataclass
class SubmissionProgress:
    """Per-submission review counters."""

    submission_id: UUID
    status: SubmissionStatus
    total: int
    pending: int
    approved: int
    rejected: int

    @property
    def all_processed(self) -> bool:
        return self.pending == 0


class SubmissionLedger:
    """Service for the Submission state machine.

    Usage:
        async with AsyncSession(engine) as session:
            ledger = SubmissionLedger(session)
            submission = await ledger.create(studio_id, "finish-schedule.pdf")
            await ledger.start_processing(studio_id, submission.submission_id)
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the service with a database session."""
        self._session = session

    async def create(
        self,
        studio_id: UUID,
        file_name: str,
        *,
        project_id: UUID | None = None,
        client_id: UUID | None = None,
        notes: str | None = None,
    ) -> Submission:
        """Register a new submission in state ``pending``."""
        submission = Submission(
            submission_id=uuid4(),
            studio_id=studio_id,
            file_name=file_name,
            project_id=project_id,
            client_id=client_id,
            notes=notes,
            status=SubmissionStatus.PENDING,
            details={"transitions": []},
        )
        self._session.add(submission)
        await self._session.flush()
        logger.info("Submission %s created for %r", submission.submission_id, file_name)
        return submission

    async def get(self, studio_id: UUID, submission_id: UUID) -> Submission:
        """Fetch a submission of this studio.

        Raises:
            NotFoundError: If it does not exist or belongs to another studio.
        """
        submission = await self._session.get(Submission, submission_id)
        if submission is None or submission.studio_id != studio_id:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    async def list_submissions(
        self,
        studio_id: UUID,
        *,
        status: SubmissionStatus | None = None,
        limit: int = 50,
    ) -> list[Submission]:
        """Submissions of a studio, newest first."""
        stmt = select(Submission).where(Submission.studio_id == studio_id)
        if status is not None:
            stmt = stmt.where(Submission.status == status)
        stmt = stmt.order_by(Submission.created_at.desc(), Submission.submission_id).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def start_processing(
        self, studio_id: UUID, submission_id: UUID, *, actor: str | None = None
    ) -> Submission:
        """pending → processing."""
        return await self._transition(
            studio_id, submission_id, SubmissionStatus.PROCESSING, actor=actor
        )

    async def mark_ready_for_review(
        self,
        studio_id: UUID,
        submission_id: UUID,
        *,
        actor: str | None = None,
        extracted_count: int | None = None,
    ) -> Submission:
        """processing → ready_for_review.

        Children may already have been queued and resolved during processing.
        If at least one exists and none is pending, the submission completes
        right away.
        """
        extra = {"extracted_count": extracted_count} if extracted_count is not None else None
        submission = await self._transition(
            studio_id, submission_id, SubmissionStatus.READY_FOR_REVIEW, actor=actor, extra=extra
        )
        submission.processed_at = utcnow()
        submission.processed_by = actor
        await self._session.flush()

        if await self._count_children(submission_id):
            await self.on_child_resolved(studio_id, submission_id)
        return submission

    async def reject(
        self,
        studio_id: UUID,
        submission_id: UUID,
        *,
        reason: str | None = None,
        actor: str | None = None,
    ) -> Submission:
        """Explicit terminal rejection from any non-terminal state."""
        submission = await self._transition(
            studio_id, submission_id, SubmissionStatus.REJECTED, actor=actor
        )
        submission.rejection_reason = reason
        return submission

    async def on_child_resolved(self, studio_id: UUID, submission_id: UUID) -> bool:
        """Complete the submission if no pending child remains.

        Called by the approval queue after every approve/reject (and after a
        batch of link-only decisions). This is the only write path into
        ``completed``; the conditional UPDATE makes concurrent callers safe.

        Returns:
            True if this call moved the submission to ``completed``.
        """
        remaining = await self._count_children(submission_id, PendingStatus.PENDING)
        if remaining:
            logger.debug("Submission %s has %d pending children", submission_id, remaining)
            return False

        now = utcnow()
        stmt = (
            update(Submission)
            .where(Submission.submission_id == submission_id)
            .where(Submission.studio_id == studio_id)
            .where(Submission.status == SubmissionStatus.READY_FOR_REVIEW)
            .values(status=SubmissionStatus.COMPLETED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            return False

        submission = await self._session.get(Submission, submission_id, populate_existing=True)
        if submission is not None:
            self._record(
                submission, SubmissionStatus.READY_FOR_REVIEW, SubmissionStatus.COMPLETED, None
            )
        logger.info("Submission %s completed: all children resolved", submission_id)
        return True

    async def progress(self, studio_id: UUID, submission_id: UUID) -> SubmissionProgress:
        """Counts of this submission's pending entities by status."""
        submission = await self.get(studio_id, submission_id)
        stmt = (
            select(PendingEntity.status, func.count(PendingEntity.pending_id))
            .where(PendingEntity.submission_id == submission_id)
            .group_by(PendingEntity.status)
        )
        result = await self._session.execute(stmt)
        counts: dict[PendingStatus, int] = {status: count for status, count in result.all()}
        return SubmissionProgress(
            submission_id=submission_id,
            status=submission.status,
            total=sum(counts.values()),
            pending=counts.get(PendingStatus.PENDING, 0),
            approved=counts.get(PendingStatus.APPROVED, 0),
            rejected=counts.get(PendingStatus.REJECTED, 0),
        )

    async def _count_children(
        self, submission_id: UUID, status: PendingStatus | None = None
    ) -> int:
        stmt = select(func.count(PendingEntity.pending_id)).where(
            PendingEntity.submission_id == submission_id
        )
        if status is not None:
            stmt = stmt.where(PendingEntity.status == status)
        return (await self._session.execute(stmt)).scalar_one()

    async def _transition(
        self,
        studio_id: UUID,
        submission_id: UUID,
        target: SubmissionStatus,
        *,
        actor: str | None,
        extra: dict[str, Any] | None = None,
    ) -> Submission:
        submission = await self.get(studio_id, submission_id)
        current = submission.status
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(submission_id, current.value, target.value)

        submission.status = target
        self._record(submission, current, target, actor, extra)
        await self._session.flush()
        logger.info("Submission %s: %s -> %s", submission_id, current.value, target.value)
        return submission

    @staticmethod
    def _record(
        submission: Submission,
        source: SubmissionStatus,
        target: SubmissionStatus,
        actor: str | None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        entry: dict[str, Any] = {
            "from": source.value,
            "to": target.value,
            "by": actor,
            "at": utcnow().isoformat(),
        }
        if extra:
            entry.update(extra)
        transitions = list((submission.details or {}).get("transitions", []))
        transitions.append(entry)
        submission.details = {**(submission.details or {}), "transitions": transitions}

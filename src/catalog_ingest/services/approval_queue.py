"""Approval queue: the review gate between resolution and the canonical catalog.

CREATE decisions that need review become PendingEntity rows. A reviewer
approves or rejects each one:

1. Claim the row with a conditional UPDATE (status pending → approved/rejected);
   a second reviewer racing on the same row gets AlreadyResolvedError
2. Reviewer and timestamp are written by the same statement
3. Insert the canonical record, unless the commit marker is already set
4. Insert-if-absent the project association
5. Notify the submission ledger, which may complete the parent submission
   (also when steps 3-4 fail: completion only looks at pending rows)

Steps 3-4 run in a savepoint. If storage fails there, the row stays approved
without a commit marker and ``retry_commit`` finishes the job later without
inserting twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.errors import (
    AlreadyResolvedError,
    CandidateValidationError,
    CommitFailureError,
    IngestError,
    NotFoundError,
)
from catalog_ingest.intake.schemas import (
    Candidate,
    CandidateManufacturer,
    CandidateMaterial,
    candidate_fields,
)
from catalog_ingest.models.base import utcnow
from catalog_ingest.models.enums import DecisionAction, EntityKind, PendingStatus
from catalog_ingest.models.manufacturer import Manufacturer
from catalog_ingest.models.material import Material
from catalog_ingest.models.pending_entity import PendingEntity
from catalog_ingest.services.associations import AssociationResult, insert_association_if_absent
from catalog_ingest.services.catalog import CatalogService
from catalog_ingest.services.submission_ledger import SubmissionLedger

if TYPE_CHECKING:
    from catalog_ingest.resolution.decisions import ResolutionDecision

logger = logging.getLogger(__name__)


def tag_note(fields: dict[str, Any]) -> str | None:
    """Association notes carried over from the candidate's tag."""
    tag = fields.get("tag")
    return f"Tag: {tag}" if tag else None


def entity_id_of(entity: Material | Manufacturer) -> UUID:
    if isinstance(entity, Material):
        return entity.material_id
    return entity.manufacturer_id


@dataclass
class ApprovalResult:
    """Result of approving (or re-committing) one pending entity."""

    pending_id: UUID
    kind: EntityKind
    entity_id: UUID
    entity_created: bool
    """False when a retry found the commit marker already set."""

    association_id: UUID | None = None
    association_created: bool = False
    submission_completed: bool = False


@dataclass
class RejectionResult:
    """Result of rejecting one pending entity."""

    pending_id: UUID
    submission_completed: bool = False


@dataclass
class QueueSubmission:
    """Result of handing a batch of resolution decisions to the queue."""

    pending: list[PendingEntity] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    associations: list[AssociationResult] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    linked: int = 0
    replaced: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    submission_completed: bool = False

    @property
    def already_linked(self) -> int:
        return sum(1 for a in self.associations if not a.created)


@dataclass
class BulkApprovalResult:
    """Result of approve_all. Each item is committed independently."""

    approved: list[ApprovalResult] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    skipped: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    """Rows another reviewer resolved first."""

    failed: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    """Rows approved whose commit failed; retry with retry_commit."""


class ApprovalQueue:
    """Service for the PendingEntity review workflow.

    Usage:
        async with AsyncSession(engine) as session:
            queue = ApprovalQueue(session)
            result = await queue.approve(studio_id, pending_id, "reviewer-1")
            await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        catalog: CatalogService | None = None,
        ledger: SubmissionLedger | None = None,
    ) -> None:
        """Initialize the service with a database session."""
        self._session = session
        self._catalog = catalog or CatalogService(session)
        self._ledger = ledger or SubmissionLedger(session)

    # ── Intake ──────────────────────────────────────────────────────────────

    async def enqueue(
        self,
        studio_id: UUID,
        candidate: Candidate,
        *,
        submission_id: UUID | None = None,
        project_id: UUID | None = None,
        client_id: UUID | None = None,
        created_by: str | None = None,
    ) -> PendingEntity:
        """Hold a candidate for review as a new pending entity.

        Raises:
            NotFoundError: If ``project_id`` is not a project of this studio.
        """
        if project_id is not None:
            await self._catalog.require_project(studio_id, project_id)
        fields = candidate_fields(candidate)
        name = fields.pop("name")
        category = fields.pop("category", None)
        entry = PendingEntity(
            pending_id=uuid4(),
            studio_id=studio_id,
            entity_kind=candidate.kind,
            name=name,
            category=category,
            fields=fields,
            status=PendingStatus.PENDING,
            submission_id=submission_id,
            project_id=project_id,
            client_id=client_id,
            created_by=created_by,
        )
        self._session.add(entry)
        await self._session.flush()
        logger.info("Queued %s %r as %s", candidate.kind.value, name, entry.pending_id)
        return entry

    async def submit_decisions(
        self,
        studio_id: UUID,
        decisions: list[ResolutionDecision],
        *,
        submission_id: UUID | None = None,
        project_id: UUID | None = None,
        client_id: UUID | None = None,
        created_by: str | None = None,
    ) -> QueueSubmission:
        """Route a completed session's decisions through the review gate.

        CREATE decisions are queued. LINK and REPLACE decisions never wait for
        review: only their association step runs, immediately.
        """
        if project_id is not None:
            await self._catalog.require_project(studio_id, project_id)
        outcome = QueueSubmission()
        for decision in decisions:
            if decision.action == DecisionAction.CREATE:
                outcome.pending.append(
                    await self.enqueue(
                        studio_id,
                        decision.candidate,
                        submission_id=submission_id,
                        project_id=project_id,
                        client_id=client_id,
                        created_by=created_by,
                    )
                )
                continue

            assert decision.linked_entity_id is not None
            if not await self._catalog.entity_exists(
                studio_id, decision.kind, decision.linked_entity_id
            ):
                raise CandidateValidationError(
                    f"Linked {decision.kind.value} {decision.linked_entity_id} does not exist"
                )
            if decision.action == DecisionAction.REPLACE:
                assert isinstance(decision.candidate, CandidateManufacturer)
                await self._catalog.replace_manufacturer(
                    studio_id, decision.linked_entity_id, decision.candidate
                )
                outcome.replaced.append(decision.linked_entity_id)

            outcome.linked += 1
            if decision.kind == EntityKind.MATERIAL and project_id is not None:
                outcome.associations.append(
                    await insert_association_if_absent(
                        self._session,
                        studio_id=studio_id,
                        project_id=project_id,
                        material_id=decision.linked_entity_id,
                        notes=tag_note(candidate_fields(decision.candidate)),
                    )
                )

        if submission_id is not None:
            outcome.submission_completed = await self._ledger.on_child_resolved(
                studio_id, submission_id
            )
        logger.info(
            "Submitted %d decisions: %d queued, %d linked (%d already associated)",
            len(decisions),
            len(outcome.pending),
            outcome.linked,
            outcome.already_linked,
        )
        return outcome

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get(self, studio_id: UUID, pending_id: UUID) -> PendingEntity:
        entry = await self._session.get(PendingEntity, pending_id)
        if entry is None or entry.studio_id != studio_id:
            raise NotFoundError(f"Pending entity {pending_id} not found")
        return entry

    async def list_entries(
        self,
        studio_id: UUID,
        status: PendingStatus | None = PendingStatus.PENDING,
        *,
        submission_id: UUID | None = None,
        kind: EntityKind | None = None,
        limit: int = 100,
    ) -> list[PendingEntity]:
        """Queue entries of a studio, oldest first."""
        stmt = select(PendingEntity).where(PendingEntity.studio_id == studio_id)
        if status is not None:
            stmt = stmt.where(PendingEntity.status == status)
        if submission_id is not None:
            stmt = stmt.where(PendingEntity.submission_id == submission_id)
        if kind is not None:
            stmt = stmt.where(PendingEntity.entity_kind == kind)
        stmt = stmt.order_by(PendingEntity.created_at, PendingEntity.pending_id).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_uncommitted(self, studio_id: UUID) -> list[PendingEntity]:
        """Approved entries whose commit never finished."""
        stmt = (
            select(PendingEntity)
            .where(PendingEntity.studio_id == studio_id)
            .where(PendingEntity.status == PendingStatus.APPROVED)
            .where(PendingEntity.committed_entity_id.is_(None))
            .order_by(PendingEntity.approved_at, PendingEntity.pending_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # ── Review ──────────────────────────────────────────────────────────────

    async def approve(self, studio_id: UUID, pending_id: UUID, reviewer_id: str) -> ApprovalResult:
        """Approve a pending entity and commit it to the canonical catalog.

        The submission ledger is notified even when the commit fails, so a
        parent submission completes once no child is pending, whatever the
        commit outcome of each child.

        Raises:
            NotFoundError: If the entry does not exist in this studio.
            AlreadyResolvedError: If it already left ``pending``.
            CommitFailureError: If storage failed after the claim (retryable).
        """
        now = utcnow()
        entry = await self._claim(
            studio_id,
            pending_id,
            PendingStatus.APPROVED,
            reviewed_by=reviewer_id,
            approved_at=now,
        )
        logger.info("Pending entity %s approved by %s", pending_id, reviewer_id)
        submission_id = entry.submission_id
        try:
            result = await self._commit(studio_id, entry)
        except CommitFailureError:
            # The row already left pending; completion only counts pending rows
            if submission_id is not None:
                await self._ledger.on_child_resolved(studio_id, submission_id)
            raise
        if submission_id is not None:
            result.submission_completed = await self._ledger.on_child_resolved(
                studio_id, submission_id
            )
        return result

    async def reject(
        self,
        studio_id: UUID,
        pending_id: UUID,
        reviewer_id: str,
        reason: str | None = None,
    ) -> RejectionResult:
        """Reject a pending entity. Terminal; nothing is written to the catalog."""
        entry = await self._claim(
            studio_id,
            pending_id,
            PendingStatus.REJECTED,
            reviewed_by=reviewer_id,
            rejected_at=utcnow(),
            rejection_reason=reason,
        )
        logger.info("Pending entity %s rejected by %s: %s", pending_id, reviewer_id, reason)
        result = RejectionResult(pending_id=pending_id)
        if entry.submission_id is not None:
            result.submission_completed = await self._ledger.on_child_resolved(
                studio_id, entry.submission_id
            )
        return result

    async def approve_all(
        self,
        studio_id: UUID,
        reviewer_id: str,
        *,
        submission_id: UUID | None = None,
        kind: EntityKind | None = None,
    ) -> BulkApprovalResult:
        """Approve every pending entry, one independent commit per item."""
        stmt = (
            select(PendingEntity.pending_id)
            .where(PendingEntity.studio_id == studio_id)
            .where(PendingEntity.status == PendingStatus.PENDING)
        )
        if submission_id is not None:
            stmt = stmt.where(PendingEntity.submission_id == submission_id)
        if kind is not None:
            stmt = stmt.where(PendingEntity.entity_kind == kind)
        stmt = stmt.order_by(PendingEntity.created_at, PendingEntity.pending_id)
        pending_ids = list((await self._session.execute(stmt)).scalars().all())

        bulk = BulkApprovalResult()
        for pending_id in pending_ids:
            try:
                bulk.approved.append(await self.approve(studio_id, pending_id, reviewer_id))
            except AlreadyResolvedError:
                bulk.skipped.append(pending_id)
            except CommitFailureError:
                bulk.failed.append(pending_id)

        logger.info(
            "Bulk approval: %d approved, %d skipped, %d failed",
            len(bulk.approved),
            len(bulk.skipped),
            len(bulk.failed),
        )
        return bulk

    async def retry_commit(self, studio_id: UUID, pending_id: UUID) -> ApprovalResult:
        """Finish the commit of an approved entry.

        Safe to call repeatedly: the canonical record is only inserted while
        the commit marker is unset, and the association insert is idempotent.
        """
        entry = await self.get(studio_id, pending_id)
        if entry.status != PendingStatus.APPROVED:
            raise IngestError(
                f"Pending entity {pending_id} is {entry.status.value}; "
                "only approved entries can be committed"
            )
        result = await self._commit(studio_id, entry)
        if entry.submission_id is not None:
            result.submission_completed = await self._ledger.on_child_resolved(
                studio_id, entry.submission_id
            )
        return result

    async def update_pending(
        self, studio_id: UUID, pending_id: UUID, **changes: Any
    ) -> PendingEntity:
        """Edit the descriptive fields of an entry that is still pending.

        The merged record is re-validated with the candidate schema.

        Raises:
            AlreadyResolvedError: If the entry was approved or rejected meanwhile.
            CandidateValidationError: If the edit leaves the record invalid.
        """
        entry = await self.get(studio_id, pending_id)
        if entry.status != PendingStatus.PENDING:
            raise AlreadyResolvedError(pending_id, entry.status.value)

        model = CandidateMaterial if entry.entity_kind == EntityKind.MATERIAL else CandidateManufacturer
        try:
            candidate = model.model_validate({**entry.descriptive_fields, **changes})
        except ValidationError as exc:
            raise CandidateValidationError(
                f"Invalid edit for pending entity {pending_id}: {exc.errors()[0]['msg']}"
            ) from exc

        fields = candidate_fields(candidate)
        name = fields.pop("name")
        category = fields.pop("category", None)
        stmt = (
            update(PendingEntity)
            .where(PendingEntity.pending_id == pending_id)
            .where(PendingEntity.status == PendingStatus.PENDING)
            .values(name=name, category=category, fields=fields, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise AlreadyResolvedError(pending_id)

        refreshed = await self._session.get(PendingEntity, pending_id, populate_existing=True)
        assert refreshed is not None
        logger.info("Edited pending entity %s", pending_id)
        return refreshed

    # ── Internals ───────────────────────────────────────────────────────────

    async def _claim(
        self,
        studio_id: UUID,
        pending_id: UUID,
        target: PendingStatus,
        **values: Any,
    ) -> PendingEntity:
        """Move a row out of ``pending`` with a compare-and-swap UPDATE."""
        stmt = (
            update(PendingEntity)
            .where(PendingEntity.pending_id == pending_id)
            .where(PendingEntity.studio_id == studio_id)
            .where(PendingEntity.status == PendingStatus.PENDING)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            existing = await self._session.get(PendingEntity, pending_id, populate_existing=True)
            if existing is None or existing.studio_id != studio_id:
                raise NotFoundError(f"Pending entity {pending_id} not found")
            raise AlreadyResolvedError(pending_id, existing.status.value)

        entry = await self._session.get(PendingEntity, pending_id, populate_existing=True)
        assert entry is not None
        return entry

    async def _commit(self, studio_id: UUID, entry: PendingEntity) -> ApprovalResult:
        # Read everything up front: a rolled-back savepoint expires the entry
        pending_id = entry.pending_id
        kind = entry.entity_kind
        fields = entry.descriptive_fields
        project_id = entry.project_id
        entity_id = entry.committed_entity_id
        entity_created = False
        association: AssociationResult | None = None

        try:
            async with self._session.begin_nested():
                if entity_id is None:
                    entity = await self._catalog.create_entity(studio_id, kind, fields)
                    entity_id = entity_id_of(entity)
                    entity_created = True
                    entry.committed_entity_id = entity_id

                if kind == EntityKind.MATERIAL and project_id is not None:
                    association = await insert_association_if_absent(
                        self._session,
                        studio_id=studio_id,
                        project_id=project_id,
                        material_id=entity_id,
                        notes=tag_note(fields),
                    )
                    entry.association_id = association.association_id
                await self._session.flush()
        except SQLAlchemyError as exc:
            logger.error("Commit failed for pending entity %s: %s", pending_id, exc)
            raise CommitFailureError(pending_id, exc) from exc

        logger.info(
            "Committed pending entity %s as %s %s", pending_id, kind.value, entity_id
        )
        return ApprovalResult(
            pending_id=pending_id,
            kind=kind,
            entity_id=entity_id,
            entity_created=entity_created,
            association_id=association.association_id if association else None,
            association_created=association.created if association else False,
        )

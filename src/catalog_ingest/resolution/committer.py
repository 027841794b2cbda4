"""Zero-review commit of resolution decisions.

Used when a batch does not go through the approval queue: CREATE decisions
become canonical records immediately, LINK decisions only add the project
association, REPLACE overwrites the linked manufacturer first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.errors import CandidateValidationError
from catalog_ingest.intake.schemas import CandidateManufacturer, candidate_fields
from catalog_ingest.models.enums import DecisionAction, EntityKind
from catalog_ingest.resolution.decisions import ResolutionDecision
from catalog_ingest.services.approval_queue import entity_id_of, tag_note
from catalog_ingest.services.associations import insert_association_if_absent
from catalog_ingest.services.catalog import CatalogService

logger = logging.getLogger(__name__)


@dataclass
class CommitSummary:
    """Result of committing a batch of decisions directly."""

    created: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    """Ids of canonical records created, in decision order."""

    linked: int = 0
    """LINK/REPLACE decisions applied."""

    replaced: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    associations_created: int = 0
    already_linked: int = 0
    """Associations that already existed (the write was a no-op)."""


class DirectCommitter:
    """Commits decisions straight into the canonical catalog.

    Usage:
        async with AsyncSession(engine) as session:
            committer = DirectCommitter(session)
            summary = await committer.commit(studio_id, decisions, project_id=project_id)
            await session.commit()
    """

    def __init__(self, session: AsyncSession, *, catalog: CatalogService | None = None) -> None:
        """Initialize the committer with a database session."""
        self._session = session
        self._catalog = catalog or CatalogService(session)

    async def commit(
        self,
        studio_id: UUID,
        decisions: list[ResolutionDecision],
        *,
        project_id: UUID | None = None,
    ) -> CommitSummary:
        """Apply every decision. The caller owns (and commits) the transaction.

        Raises:
            NotFoundError: If project_id does not exist in this studio.
            CandidateValidationError: If a LINK/REPLACE target does not exist.
        """
        if project_id is not None:
            await self._catalog.require_project(studio_id, project_id)

        summary = CommitSummary()
        for decision in decisions:
            fields = candidate_fields(decision.candidate)
            if decision.action == DecisionAction.CREATE:
                entity = await self._catalog.create_entity(studio_id, decision.kind, fields)
                entity_id = entity_id_of(entity)
                summary.created.append(entity_id)
            else:
                assert decision.linked_entity_id is not None
                entity_id = decision.linked_entity_id
                if not await self._catalog.entity_exists(studio_id, decision.kind, entity_id):
                    raise CandidateValidationError(
                        f"Linked {decision.kind.value} {entity_id} does not exist"
                    )
                if decision.action == DecisionAction.REPLACE:
                    assert isinstance(decision.candidate, CandidateManufacturer)
                    await self._catalog.replace_manufacturer(
                        studio_id, entity_id, decision.candidate
                    )
                    summary.replaced.append(entity_id)
                summary.linked += 1

            if decision.kind != EntityKind.MATERIAL or project_id is None:
                continue
            association = await insert_association_if_absent(
                self._session,
                studio_id=studio_id,
                project_id=project_id,
                material_id=entity_id,
                notes=tag_note(fields),
            )
            if association.created:
                summary.associations_created += 1
            else:
                summary.already_linked += 1

        logger.info(
            "Direct commit: %d created, %d linked, %d associations (%d already present)",
            len(summary.created),
            summary.linked,
            summary.associations_created,
            summary.already_linked,
        )
        return summary

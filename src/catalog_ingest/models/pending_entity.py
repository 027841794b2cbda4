"""PendingEntity model for candidates awaiting reviewer approval."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_ingest.models.base import Base, JSONType, utcnow
from catalog_ingest.models.enums import EntityKind, PendingStatus

if TYPE_CHECKING:
    from catalog_ingest.models.submission import Submission


class PendingEntity(Base):
    """A candidate material or manufacturer held in the approval queue.

    Lifecycle: pending → approved | rejected.

    Key design decisions:
    - Status flips with a conditional UPDATE (compare-and-swap on status), so
      concurrent reviewers cannot both commit the same row
    - committed_entity_id is the commit marker: once set, a retried approval
      never inserts the canonical record again
    - Descriptive fields beyond name/category live in ``fields`` so one table
      serves both entity kinds
    """

    __tablename__ = "pending_entities"

    pending_id: Mapped[UUID] = mapped_column(primary_key=True)
    studio_id: Mapped[UUID] = mapped_column(index=True)
    entity_kind: Mapped[EntityKind] = mapped_column(index=True)

    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[str | None] = mapped_column(String(128))
    """Required for materials, unused for manufacturers."""

    fields: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    """Remaining descriptive fields (subcategory, reference_sku, email, ...)."""

    status: Mapped[PendingStatus] = mapped_column(default=PendingStatus.PENDING, index=True)

    submission_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("submissions.submission_id"), index=True
    )
    project_id: Mapped[UUID | None] = mapped_column(ForeignKey("projects.project_id"))
    """Project to associate the committed material with."""

    client_id: Mapped[UUID | None] = mapped_column()
    created_by: Mapped[str | None] = mapped_column(String(64))

    reviewed_by: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    committed_entity_id: Mapped[UUID | None] = mapped_column()
    """Canonical Material/Manufacturer created on approval (commit marker)."""

    association_id: Mapped[UUID | None] = mapped_column()
    """ProjectMaterial row linked on approval, if any."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    submission: Mapped[Submission | None] = relationship(back_populates="pending_entities")

    @property
    def descriptive_fields(self) -> dict[str, Any]:
        """All descriptive fields, flattened (name, category and ``fields``)."""
        data: dict[str, Any] = {"name": self.name, **(self.fields or {})}
        if self.category is not None:
            data["category"] = self.category
        return data

"""Submission model: the parent record of one ingestion batch."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_ingest.models.base import Base, JSONType, utcnow
from catalog_ingest.models.enums import SubmissionStatus

if TYPE_CHECKING:
    from catalog_ingest.models.pending_entity import PendingEntity


class Submission(Base):
    """One uploaded document (or JSON batch) moving through ingestion.

    Lifecycle: pending → processing → ready_for_review → completed | rejected.
    ``completed`` is only ever written by ``SubmissionLedger.on_child_resolved``.
    """

    __tablename__ = "submissions"

    submission_id: Mapped[UUID] = mapped_column(primary_key=True)
    studio_id: Mapped[UUID] = mapped_column(index=True)
    file_name: Mapped[str] = mapped_column(String(512))
    project_id: Mapped[UUID | None] = mapped_column(ForeignKey("projects.project_id"))
    client_id: Mapped[UUID | None] = mapped_column()
    status: Mapped[SubmissionStatus] = mapped_column(default=SubmissionStatus.PENDING, index=True)
    notes: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    processed_by: Mapped[str | None] = mapped_column(String(64))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    """Transition history and extraction metadata."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    pending_entities: Mapped[list[PendingEntity]] = relationship(back_populates="submission")

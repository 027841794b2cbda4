"""ProjectMaterial model: the project ↔ material association."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_ingest.models.base import Base

if TYPE_CHECKING:
    from catalog_ingest.models.material import Material
    from catalog_ingest.models.project import Project


class ProjectMaterial(Base):
    """Records that a project uses a catalog material.

    At most one row exists per (project_id, material_id). Inserts go through
    ``insert_association_if_absent`` so a repeated link is a no-op.
    """

    __tablename__ = "project_materials"
    __table_args__ = (UniqueConstraint("project_id", "material_id", name="uq_project_material"),)

    association_id: Mapped[UUID] = mapped_column(primary_key=True)
    studio_id: Mapped[UUID] = mapped_column(index=True)
    project_id: Mapped[UUID] = mapped_column(ForeignKey("projects.project_id"), index=True)
    material_id: Mapped[UUID] = mapped_column(ForeignKey("materials.material_id"), index=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    unit: Mapped[str | None] = mapped_column(String(32))
    cost_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    notes: Mapped[str | None] = mapped_column(Text)
    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    project: Mapped[Project] = relationship(back_populates="material_links")
    material: Mapped[Material] = relationship(back_populates="project_links")

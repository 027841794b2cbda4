"""Project model (association target only; project CRUD lives elsewhere)."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_ingest.models.base import Base

if TYPE_CHECKING:
    from catalog_ingest.models.project_material import ProjectMaterial


class Project(Base):
    __tablename__ = "projects"

    project_id: Mapped[UUID] = mapped_column(primary_key=True)
    studio_id: Mapped[UUID] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(255))
    client_name: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    material_links: Mapped[list[ProjectMaterial]] = relationship(back_populates="project")

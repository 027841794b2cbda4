"""Material model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_ingest.models.base import Base

if TYPE_CHECKING:
    from catalog_ingest.models.manufacturer import Manufacturer
    from catalog_ingest.models.project_material import ProjectMaterial


class Material(Base):
    """A canonical physical material in a studio's catalog.

    Materials are never hard-deleted while a project still references them;
    the catalog service removes ProjectMaterial rows first.
    """

    __tablename__ = "materials"

    material_id: Mapped[UUID] = mapped_column(primary_key=True)
    studio_id: Mapped[UUID] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(128), index=True)
    subcategory: Mapped[str | None] = mapped_column(String(128))
    manufacturer_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("manufacturers.manufacturer_id"), index=True
    )
    reference_sku: Mapped[str | None] = mapped_column(String(128), index=True)
    """Manufacturer reference code. Same SKU + same manufacturer is treated as identity."""

    dimensions: Mapped[str | None] = mapped_column(String(255))
    location: Mapped[str | None] = mapped_column(String(255))
    tag: Mapped[str | None] = mapped_column(String(128))
    model: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    manufacturer: Mapped[Manufacturer | None] = relationship(back_populates="materials")
    project_links: Mapped[list[ProjectMaterial]] = relationship(back_populates="material")

"""Manufacturer model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_ingest.models.base import Base

if TYPE_CHECKING:
    from catalog_ingest.models.material import Material


class Manufacturer(Base):
    """A canonical manufacturer in a studio's catalog."""

    __tablename__ = "manufacturers"

    manufacturer_id: Mapped[UUID] = mapped_column(primary_key=True)
    studio_id: Mapped[UUID] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(255))
    contact_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    website: Mapped[str | None] = mapped_column(String(512))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    materials: Mapped[list[Material]] = relationship(back_populates="manufacturer")

"""Idempotent project ↔ material association writes.

The uniqueness of (project_id, material_id) is enforced by the database and
written with a single INSERT ... ON CONFLICT DO NOTHING, so concurrent commits
targeting the same pair cannot race between a read and a write.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.models.project_material import ProjectMaterial

_DIALECT_INSERTS: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class AssociationResult:
    """Result of an insert-if-absent association write."""

    association_id: UUID
    project_id: UUID
    material_id: UUID
    created: bool
    """False when the pair was already associated (the write was a no-op)."""


async def insert_association_if_absent(
    session: AsyncSession,
    *,
    studio_id: UUID,
    project_id: UUID,
    material_id: UUID,
    notes: str | None = None,
    quantity: Decimal | None = None,
    unit: str | None = None,
    cost_per_unit: Decimal | None = None,
) -> AssociationResult:
    """Associate a material with a project unless the pair already exists.

    Args:
        session: Database session (the caller owns the transaction).
        studio_id: Tenant of both the project and the material.
        project_id: Project to link.
        material_id: Catalog material to link.
        notes: Optional notes stored on a newly created row.
        quantity: Optional quantity metadata.
        unit: Optional unit for quantity/cost.
        cost_per_unit: Optional cost metadata.

    Returns:
        AssociationResult with the (new or existing) association id.
    """
    dialect = session.get_bind().dialect.name
    try:
        insert = _DIALECT_INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Idempotent association insert not supported on {dialect}") from None

    stmt = (
        insert(ProjectMaterial)
        .values(
            association_id=uuid4(),
            studio_id=studio_id,
            project_id=project_id,
            material_id=material_id,
            notes=notes,
            quantity=quantity,
            unit=unit,
            cost_per_unit=cost_per_unit,
        )
        .on_conflict_do_nothing(index_elements=["project_id", "material_id"])
        .returning(ProjectMaterial.association_id)
    )
    result = await session.execute(stmt)
    inserted_id = result.scalar_one_or_none()
    if inserted_id is not None:
        return AssociationResult(
            association_id=inserted_id,
            project_id=project_id,
            material_id=material_id,
            created=True,
        )

    existing = await session.execute(
        select(ProjectMaterial.association_id)
        .where(ProjectMaterial.project_id == project_id)
        .where(ProjectMaterial.material_id == material_id)
    )
    return AssociationResult(
        association_id=existing.scalar_one(),
        project_id=project_id,
        material_id=material_id,
        created=False,
    )

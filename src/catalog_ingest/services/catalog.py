"""Canonical catalog writes used by the commit paths.

Single-record CRUD screens live elsewhere; this service only covers what the
ingestion pipeline needs: building canonical rows from candidates, the
manufacturer "replace" action, tenant-scoped existence checks, and deletes
that keep referential integrity (dependents first).
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.errors import NotFoundError
from catalog_ingest.intake.schemas import CandidateManufacturer
from catalog_ingest.matching.catalog_pool import CatalogPool
from catalog_ingest.models.enums import EntityKind
from catalog_ingest.models.manufacturer import Manufacturer
from catalog_ingest.models.material import Material
from catalog_ingest.models.project import Project
from catalog_ingest.models.project_material import ProjectMaterial
from catalog_ingest.services.associations import AssociationResult, insert_association_if_absent

logger = logging.getLogger(__name__)

MATERIAL_COLUMNS = (
    "name",
    "category",
    "subcategory",
    "reference_sku",
    "dimensions",
    "location",
    "tag",
    "model",
    "notes",
)

MANUFACTURER_COLUMNS = ("name", "contact_name", "email", "phone", "website", "notes")


def _as_uuid(value: Any) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


class CatalogService:
    """Tenant-scoped canonical catalog operations.

    Usage:
        async with AsyncSession(engine) as session:
            catalog = CatalogService(session)
            material = await catalog.create_material(studio_id, {"name": ..., "category": ...})
    """

    def __init__(self, session: AsyncSession, *, pool: CatalogPool | None = None) -> None:
        """Initialize the service with a database session."""
        self._session = session
        self._pool = pool or CatalogPool(session)

    # ── Creation ────────────────────────────────────────────────────────────

    async def create_material(self, studio_id: UUID, fields: dict[str, Any]) -> Material:
        """Insert a canonical material from descriptive fields.

        ``manufacturer_id`` is used when present; otherwise ``manufacturer_name``
        is resolved against the studio's manufacturers. An unresolved name
        leaves the material without a manufacturer.
        """
        manufacturer_id = _as_uuid(fields.get("manufacturer_id"))
        if manufacturer_id is None and fields.get("manufacturer_name"):
            manufacturer_id = await self._pool.resolve_manufacturer_id(
                studio_id, fields["manufacturer_name"]
            )

        material = Material(
            material_id=uuid4(),
            studio_id=studio_id,
            manufacturer_id=manufacturer_id,
            **{column: fields.get(column) for column in MATERIAL_COLUMNS},
        )
        self._session.add(material)
        await self._session.flush()
        logger.info(
            "Created material %s (%r) in studio %s", material.material_id, material.name, studio_id
        )
        return material

    async def create_manufacturer(self, studio_id: UUID, fields: dict[str, Any]) -> Manufacturer:
        """Insert a canonical manufacturer from descriptive fields."""
        manufacturer = Manufacturer(
            manufacturer_id=uuid4(),
            studio_id=studio_id,
            **{column: fields.get(column) for column in MANUFACTURER_COLUMNS},
        )
        self._session.add(manufacturer)
        await self._session.flush()
        logger.info(
            "Created manufacturer %s (%r) in studio %s",
            manufacturer.manufacturer_id,
            manufacturer.name,
            studio_id,
        )
        return manufacturer

    async def create_entity(
        self, studio_id: UUID, kind: EntityKind, fields: dict[str, Any]
    ) -> Material | Manufacturer:
        if kind == EntityKind.MATERIAL:
            return await self.create_material(studio_id, fields)
        return await self.create_manufacturer(studio_id, fields)

    async def replace_manufacturer(
        self,
        studio_id: UUID,
        manufacturer_id: UUID,
        candidate: CandidateManufacturer,
    ) -> Manufacturer:
        """Overwrite an existing manufacturer's descriptive fields with the candidate's."""
        manufacturer = await self.get_manufacturer(studio_id, manufacturer_id)
        for column in MANUFACTURER_COLUMNS:
            setattr(manufacturer, column, getattr(candidate, column))
        await self._session.flush()
        logger.info("Replaced manufacturer %s with imported details", manufacturer_id)
        return manufacturer

    # ── Lookups ─────────────────────────────────────────────────────────────

    async def get_material(self, studio_id: UUID, material_id: UUID) -> Material:
        material = await self._session.get(Material, material_id)
        if material is None or material.studio_id != studio_id:
            raise NotFoundError(f"Material {material_id} not found")
        return material

    async def get_manufacturer(self, studio_id: UUID, manufacturer_id: UUID) -> Manufacturer:
        manufacturer = await self._session.get(Manufacturer, manufacturer_id)
        if manufacturer is None or manufacturer.studio_id != studio_id:
            raise NotFoundError(f"Manufacturer {manufacturer_id} not found")
        return manufacturer

    async def require_project(self, studio_id: UUID, project_id: UUID) -> Project:
        project = await self._session.get(Project, project_id)
        if project is None or project.studio_id != studio_id:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def entity_exists(self, studio_id: UUID, kind: EntityKind, entity_id: UUID) -> bool:
        """Whether a canonical entity of this kind exists in the studio."""
        model = Material if kind == EntityKind.MATERIAL else Manufacturer
        pk = Material.material_id if kind == EntityKind.MATERIAL else Manufacturer.manufacturer_id
        stmt = select(func.count()).select_from(model).where(pk == entity_id).where(
            model.studio_id == studio_id
        )
        return (await self._session.execute(stmt)).scalar_one() > 0

    # ── Associations ────────────────────────────────────────────────────────

    async def link_material_to_project(
        self,
        studio_id: UUID,
        project_id: UUID,
        material_id: UUID,
        *,
        notes: str | None = None,
    ) -> AssociationResult:
        """Idempotently associate a material with a project."""
        result = await insert_association_if_absent(
            self._session,
            studio_id=studio_id,
            project_id=project_id,
            material_id=material_id,
            notes=notes,
        )
        if result.created:
            logger.info("Linked material %s to project %s", material_id, project_id)
        else:
            logger.debug("Material %s already linked to project %s", material_id, project_id)
        return result

    # ── Deletes (dependents first) ──────────────────────────────────────────

    async def delete_material(self, studio_id: UUID, material_id: UUID) -> int:
        """Delete a material and, first, its project associations.

        Returns:
            Number of project associations removed.
        """
        await self.get_material(studio_id, material_id)
        result = await self._session.execute(
            delete(ProjectMaterial)
            .where(ProjectMaterial.material_id == material_id)
            .where(ProjectMaterial.studio_id == studio_id)
        )
        removed: int = getattr(result, "rowcount", 0) or 0
        await self._session.execute(
            delete(Material)
            .where(Material.material_id == material_id)
            .where(Material.studio_id == studio_id)
        )
        logger.info("Deleted material %s (%d project associations removed)", material_id, removed)
        return removed

    async def delete_manufacturer(self, studio_id: UUID, manufacturer_id: UUID) -> int:
        """Delete a manufacturer after detaching the materials that reference it.

        Returns:
            Number of materials detached.
        """
        await self.get_manufacturer(studio_id, manufacturer_id)
        result = await self._session.execute(
            update(Material)
            .where(Material.manufacturer_id == manufacturer_id)
            .where(Material.studio_id == studio_id)
            .values(manufacturer_id=None)
        )
        detached: int = getattr(result, "rowcount", 0) or 0
        await self._session.execute(
            delete(Manufacturer)
            .where(Manufacturer.manufacturer_id == manufacturer_id)
            .where(Manufacturer.studio_id == studio_id)
        )
        logger.info("Deleted manufacturer %s (%d materials detached)", manufacturer_id, detached)
        return detached

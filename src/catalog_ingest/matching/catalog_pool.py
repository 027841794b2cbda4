"""Tenant-scoped catalog reads for the similarity engine.

All lookups are filtered by studio_id; matching never crosses tenants.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_ingest.matching.normalize import normalize_code, normalize_name_key
from catalog_ingest.matching.similarity import ProjectRef
from catalog_ingest.models.manufacturer import Manufacturer
from catalog_ingest.models.material import Material
from catalog_ingest.models.project import Project
from catalog_ingest.models.project_material import ProjectMaterial

logger = logging.getLogger(__name__)


class CatalogPool:
    """Loads the slice of a studio's catalog a candidate is scored against.

    Usage:
        async with AsyncSession(engine) as session:
            pool = CatalogPool(session)
            materials = await pool.materials(studio_id)
    """

    def __init__(self, session: AsyncSession, *, limit: int = 5000) -> None:
        """Initialize the pool.

        Args:
            session: Database session for queries.
            limit: Maximum number of records loaded per fuzzy-scoring lookup.
                Exact SKU + manufacturer hits are loaded separately and are
                never cut off by it.
        """
        self._session = session
        self._limit = limit

    async def materials(self, studio_id: UUID) -> list[Material]:
        """All materials of a studio, in stable (name, id) order, up to the limit."""
        stmt = (
            select(Material)
            .where(Material.studio_id == studio_id)
            .order_by(Material.name, Material.material_id)
            .limit(self._limit)
        )
        result = await self._session.execute(stmt)
        materials = list(result.scalars().all())
        self._warn_if_truncated("materials", studio_id, len(materials))
        return materials

    async def manufacturers(self, studio_id: UUID) -> list[Manufacturer]:
        """All manufacturers of a studio, in stable (name, id) order, up to the limit."""
        stmt = (
            select(Manufacturer)
            .where(Manufacturer.studio_id == studio_id)
            .order_by(Manufacturer.name, Manufacturer.manufacturer_id)
            .limit(self._limit)
        )
        result = await self._session.execute(stmt)
        manufacturers = list(result.scalars().all())
        self._warn_if_truncated("manufacturers", studio_id, len(manufacturers))
        return manufacturers

    async def materials_with_sku(
        self,
        studio_id: UUID,
        manufacturer_id: UUID,
        reference_sku: str | None,
    ) -> list[Material]:
        """Materials of one manufacturer carrying the same reference code.

        Loaded without the pool limit so an exact duplicate is always scored.
        """
        code = normalize_code(reference_sku)
        if not code:
            return []

        stmt = (
            select(Material)
            .where(Material.studio_id == studio_id)
            .where(Material.manufacturer_id == manufacturer_id)
            .where(Material.reference_sku.is_not(None))
            .order_by(Material.name, Material.material_id)
        )
        result = await self._session.execute(stmt)
        return [m for m in result.scalars().all() if normalize_code(m.reference_sku) == code]

    async def resolve_manufacturer_id(self, studio_id: UUID, name: str | None) -> UUID | None:
        """Resolve a free-text manufacturer name to an id.

        Exact lookup on normalize_name_key, applied in Python to both sides so
        case folding and whitespace rules do not depend on the database. When
        several rows share the name, the oldest wins. Returns None when nothing
        matches.
        """
        key = normalize_name_key(name)
        if not key:
            return None

        stmt = (
            select(Manufacturer.manufacturer_id, Manufacturer.name)
            .where(Manufacturer.studio_id == studio_id)
            .order_by(Manufacturer.created_at, Manufacturer.manufacturer_id)
        )
        result = await self._session.execute(stmt)
        for manufacturer_id, existing_name in result.all():
            if normalize_name_key(existing_name) == key:
                return manufacturer_id

        logger.debug("Manufacturer %r not found in studio %s", name, studio_id)
        return None

    async def projects_using(
        self,
        studio_id: UUID,
        material_ids: list[UUID],
    ) -> dict[UUID, list[ProjectRef]]:
        """Map each material id to the projects that already use it."""
        usage: dict[UUID, list[ProjectRef]] = defaultdict(list)
        if not material_ids:
            return usage

        stmt = (
            select(ProjectMaterial.material_id, Project.project_id, Project.name)
            .join(Project, Project.project_id == ProjectMaterial.project_id)
            .where(ProjectMaterial.studio_id == studio_id)
            .where(ProjectMaterial.material_id.in_(material_ids))
            .order_by(Project.name, Project.project_id)
        )
        result = await self._session.execute(stmt)
        for material_id, project_id, project_name in result.all():
            usage[material_id].append(ProjectRef(project_id=project_id, name=project_name))
        return usage

    def _warn_if_truncated(self, what: str, studio_id: UUID, loaded: int) -> None:
        if loaded >= self._limit:
            logger.warning(
                "Catalog pool truncated: fuzzy scoring only the first %d %s of studio %s",
                self._limit,
                what,
                studio_id,
            )

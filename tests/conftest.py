"""Shared pytest fixtures for catalog ingest tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_ingest.db import init_db, make_engine
from catalog_ingest.intake.schemas import CandidateManufacturer, CandidateMaterial
from catalog_ingest.models import Manufacturer, Material, Project

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# Every test gets its own in-memory database
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine with all tables."""
    engine = make_engine(TEST_DATABASE_URL)
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session, rolled back at the end of the test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def studio_id() -> UUID:
    return uuid4()


# Type aliases for factory fixtures
MakeManufacturer = Callable[..., Manufacturer]
MakeMaterial = Callable[..., Material]
MakeProject = Callable[..., Project]


@pytest.fixture
def make_manufacturer(studio_id: UUID) -> MakeManufacturer:
    """Factory fixture for creating Manufacturer instances."""

    def _make(
        name: str = "Premium Woods Co",
        *,
        manufacturer_id: UUID | None = None,
        studio: UUID | None = None,
        **fields: Any,
    ) -> Manufacturer:
        return Manufacturer(
            manufacturer_id=manufacturer_id or uuid4(),
            studio_id=studio or studio_id,
            name=name,
            **fields,
        )

    return _make


@pytest.fixture
def make_material(studio_id: UUID) -> MakeMaterial:
    """Factory fixture for creating Material instances."""

    def _make(
        name: str = "White Oak Flooring",
        category: str = "Flooring",
        *,
        material_id: UUID | None = None,
        studio: UUID | None = None,
        manufacturer_id: UUID | None = None,
        reference_sku: str | None = None,
        **fields: Any,
    ) -> Material:
        return Material(
            material_id=material_id or uuid4(),
            studio_id=studio or studio_id,
            name=name,
            category=category,
            manufacturer_id=manufacturer_id,
            reference_sku=reference_sku,
            **fields,
        )

    return _make


@pytest.fixture
def make_project(studio_id: UUID) -> MakeProject:
    """Factory fixture for creating Project instances."""

    def _make(name: str = "Harbor House", *, studio: UUID | None = None) -> Project:
        return Project(project_id=uuid4(), studio_id=studio or studio_id, name=name)

    return _make


@pytest.fixture
async def premium_woods(db_session: AsyncSession, make_manufacturer: MakeManufacturer) -> Manufacturer:
    """A persisted manufacturer."""
    manufacturer = make_manufacturer("Premium Woods Co", website="https://premiumwoods.com")
    db_session.add(manufacturer)
    await db_session.flush()
    return manufacturer


@pytest.fixture
async def white_oak(
    db_session: AsyncSession, make_material: MakeMaterial, premium_woods: Manufacturer
) -> Material:
    """A persisted material with a reference code and manufacturer."""
    material = make_material(
        "White Oak Flooring",
        "Flooring",
        subcategory="Hardwood",
        manufacturer_id=premium_woods.manufacturer_id,
        reference_sku="WO-3-NAT",
    )
    db_session.add(material)
    await db_session.flush()
    return material


@pytest.fixture
async def project(db_session: AsyncSession, make_project: MakeProject) -> Project:
    """A persisted project."""
    project = make_project("Harbor House")
    db_session.add(project)
    await db_session.flush()
    return project


def material_candidate(name: str = "White Oak Flooring", **fields: Any) -> CandidateMaterial:
    fields.setdefault("category", "Flooring")
    return CandidateMaterial(name=name, **fields)


def manufacturer_candidate(name: str = "Premium Woods Co", **fields: Any) -> CandidateManufacturer:
    return CandidateManufacturer(name=name, **fields)

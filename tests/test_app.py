"""Tests for the FastAPI application."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from catalog_ingest import __version__
from catalog_ingest.app import app
from catalog_ingest.db import get_session
from catalog_ingest.models import Material
from catalog_ingest.services import ApprovalQueue

from conftest import material_candidate

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def test_health() -> None:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


class TestMatchesEndpoint:
    async def test_exact_match(
        self, client: AsyncClient, studio_id: UUID, white_oak: Material
    ) -> None:
        response = await client.post(
            f"/studios/{studio_id}/matches/materials",
            json={
                "candidate": {
                    "name": "White Oak Flooring",
                    "category": "Flooring",
                    "sku": "wo-3-nat",
                    "manufacturer_name": "Premium Woods Co",
                },
                "include_projects": True,
            },
        )

        assert response.status_code == 200
        [match] = response.json()
        assert match["existing_id"] == str(white_oak.material_id)
        assert match["exact_match"] is True
        assert match["band"] == "very_high"
        assert match["projects"] == []

    async def test_invalid_candidate(self, client: AsyncClient, studio_id: UUID) -> None:
        response = await client.post(
            f"/studios/{studio_id}/matches/materials", json={"candidate": {"name": "Oak"}}
        )
        assert response.status_code == 422


class TestQueueEndpoints:
    async def test_list_and_approve(
        self, client: AsyncClient, db_session: AsyncSession, studio_id: UUID
    ) -> None:
        entry = await ApprovalQueue(db_session).enqueue(studio_id, material_candidate())
        pending_id = entry.pending_id

        listed = await client.get(f"/studios/{studio_id}/queue")
        assert [e["pending_id"] for e in listed.json()] == [str(pending_id)]

        approved = await client.post(
            f"/studios/{studio_id}/queue/{pending_id}/approve", json={"reviewer_id": "bob"}
        )
        assert approved.status_code == 200
        assert approved.json()["entity_kind"] == "material"

        again = await client.post(
            f"/studios/{studio_id}/queue/{pending_id}/approve", json={"reviewer_id": "carol"}
        )
        assert again.status_code == 409

        remaining = await client.get(f"/studios/{studio_id}/queue")
        assert remaining.json() == []

    async def test_reject(
        self, client: AsyncClient, db_session: AsyncSession, studio_id: UUID
    ) -> None:
        entry = await ApprovalQueue(db_session).enqueue(studio_id, material_candidate())

        response = await client.post(
            f"/studios/{studio_id}/queue/{entry.pending_id}/reject",
            json={"reviewer_id": "bob", "reason": "Duplicate"},
        )

        assert response.status_code == 200
        assert response.json()["submission_completed"] is False

    async def test_unknown_entry(self, client: AsyncClient, studio_id: UUID) -> None:
        response = await client.post(
            f"/studios/{studio_id}/queue/00000000-0000-0000-0000-000000000000/approve",
            json={"reviewer_id": "bob"},
        )
        assert response.status_code == 404

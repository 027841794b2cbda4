"""Tests for the approval queue: exclusivity, commit retry and the ingestion scenarios."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_ingest.db import init_db, make_engine
from catalog_ingest.errors import (
    AlreadyResolvedError,
    CandidateValidationError,
    CommitFailureError,
    IngestError,
    NotFoundError,
)
from catalog_ingest.matching import CatalogMatcher
from catalog_ingest.models import Material, PendingEntity, Project, ProjectMaterial
from catalog_ingest.models.base import utcnow
from catalog_ingest.models.enums import DecisionAction, EntityKind, MatchBand, PendingStatus
from catalog_ingest.resolution import ResolutionDecision, ResolutionSession
from catalog_ingest.services import ApprovalQueue

from conftest import manufacturer_candidate, material_candidate

if TYPE_CHECKING:
    from uuid import UUID

    from conftest import MakeProject


async def count(session: AsyncSession, model: type) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestEnqueue:
    async def test_enqueue_splits_fields(self, db_session: AsyncSession, studio_id: UUID) -> None:
        entry = await ApprovalQueue(db_session).enqueue(
            studio_id,
            material_candidate(reference_sku="WO-3-NAT", manufacturer_name="Premium Woods Co"),
            created_by="alice",
        )

        assert entry.status == PendingStatus.PENDING
        assert entry.entity_kind == EntityKind.MATERIAL
        assert entry.name == "White Oak Flooring"
        assert entry.category == "Flooring"
        assert entry.fields == {"reference_sku": "WO-3-NAT", "manufacturer_name": "Premium Woods Co"}

    async def test_list_oldest_first(self, db_session: AsyncSession, studio_id: UUID) -> None:
        queue = ApprovalQueue(db_session)
        newer = await queue.enqueue(studio_id, material_candidate("Newer"))
        older = await queue.enqueue(studio_id, material_candidate("Older"))
        older.created_at = newer.created_at - timedelta(minutes=5)
        await db_session.flush()

        entries = await queue.list_entries(studio_id)

        assert [e.name for e in entries] == ["Older", "Newer"]
        assert await queue.list_entries(uuid4()) == []

    async def test_project_of_another_studio_is_refused(
        self,
        db_session: AsyncSession,
        studio_id: UUID,
        white_oak: Material,
        make_project: MakeProject,
    ) -> None:
        foreign = make_project("Loft Conversion", studio=uuid4())
        db_session.add(foreign)
        await db_session.flush()
        queue = ApprovalQueue(db_session)
        link = ResolutionDecision(material_candidate(), DecisionAction.LINK, white_oak.material_id)

        with pytest.raises(NotFoundError):
            await queue.enqueue(studio_id, material_candidate(), project_id=foreign.project_id)
        with pytest.raises(NotFoundError):
            await queue.submit_decisions(studio_id, [link], project_id=foreign.project_id)

        assert await count(db_session, PendingEntity) == 0
        assert await count(db_session, ProjectMaterial) == 0


class TestApprove:
    async def test_approve_creates_entity_and_association(
        self, db_session: AsyncSession, studio_id: UUID, project: Project
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(
            studio_id, material_candidate(tag="F-01"), project_id=project.project_id
        )

        result = await queue.approve(studio_id, entry.pending_id, "bob")

        assert result.entity_created
        assert result.association_created
        assert entry.status == PendingStatus.APPROVED
        assert entry.reviewed_by == "bob"
        assert entry.approved_at is not None
        assert entry.committed_entity_id == result.entity_id
        assert entry.association_id == result.association_id
        material = await db_session.get(Material, result.entity_id)
        assert material is not None and material.name == "White Oak Flooring"

    async def test_approve_manufacturer_has_no_association(
        self, db_session: AsyncSession, studio_id: UUID, project: Project
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(
            studio_id, manufacturer_candidate("Stone Source"), project_id=project.project_id
        )

        result = await queue.approve(studio_id, entry.pending_id, "bob")

        assert result.kind == EntityKind.MANUFACTURER
        assert result.association_id is None
        assert await count(db_session, ProjectMaterial) == 0

    async def test_second_approval_is_rejected(
        self, db_session: AsyncSession, studio_id: UUID
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())
        await queue.approve(studio_id, entry.pending_id, "bob")

        with pytest.raises(AlreadyResolvedError):
            await queue.approve(studio_id, entry.pending_id, "carol")
        with pytest.raises(AlreadyResolvedError):
            await queue.reject(studio_id, entry.pending_id, "carol")
        assert await count(db_session, Material) == 1

    async def test_row_claimed_concurrently(
        self, db_session: AsyncSession, studio_id: UUID
    ) -> None:
        """Another reviewer resolved the row after we loaded it."""
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())
        await db_session.execute(
            update(PendingEntity)
            .where(PendingEntity.pending_id == entry.pending_id)
            .values(status=PendingStatus.REJECTED)
            .execution_options(synchronize_session=False)
        )
        assert entry.status == PendingStatus.PENDING  # stale in-memory view

        with pytest.raises(AlreadyResolvedError) as exc_info:
            await queue.approve(studio_id, entry.pending_id, "bob")

        assert exc_info.value.status == "rejected"
        assert await count(db_session, Material) == 0

    async def test_unknown_or_foreign_entry(self, db_session: AsyncSession, studio_id: UUID) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())

        with pytest.raises(NotFoundError):
            await queue.approve(studio_id, uuid4(), "bob")
        with pytest.raises(NotFoundError):
            await queue.approve(uuid4(), entry.pending_id, "bob")

    async def test_reject(self, db_session: AsyncSession, studio_id: UUID) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())

        await queue.reject(studio_id, entry.pending_id, "bob", reason="Duplicate of an existing oak")

        assert entry.status == PendingStatus.REJECTED
        assert entry.rejection_reason == "Duplicate of an existing oak"
        assert entry.rejected_at is not None
        assert await count(db_session, Material) == 0

    async def test_manufacturer_name_resolved_at_commit(
        self, db_session: AsyncSession, studio_id: UUID, make_manufacturer
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(
            studio_id, material_candidate(manufacturer_name="Stone Source")
        )
        # The manufacturer only appears after the candidate was queued
        manufacturer = make_manufacturer("Stone Source")
        db_session.add(manufacturer)
        await db_session.flush()

        result = await queue.approve(studio_id, entry.pending_id, "bob")

        material = await db_session.get(Material, result.entity_id)
        assert material is not None
        assert material.manufacturer_id == manufacturer.manufacturer_id


class TestConcurrentReview:
    """Two reviewers on separate connections to one file-backed database."""

    @pytest.fixture
    async def file_sessions(
        self, tmp_path: Path
    ) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
        engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
        await init_db(engine)
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        await engine.dispose()

    async def test_approve_and_reject_race(
        self, file_sessions: async_sessionmaker[AsyncSession], studio_id: UUID
    ) -> None:
        async with file_sessions() as session:
            entry = await ApprovalQueue(session).enqueue(studio_id, material_candidate())
            pending_id = entry.pending_id
            await session.commit()

        async def review(approve: bool) -> bool:
            async with file_sessions() as session:
                queue = ApprovalQueue(session)
                try:
                    if approve:
                        await queue.approve(studio_id, pending_id, "bob")
                    else:
                        await queue.reject(studio_id, pending_id, "carol")
                except AlreadyResolvedError:
                    await session.rollback()
                    return False
                await session.commit()
                return True

        approved, rejected = await asyncio.gather(review(True), review(False))

        assert approved != rejected
        async with file_sessions() as session:
            stored = await session.get(PendingEntity, pending_id)
            assert stored is not None
            materials = await count(session, Material)
            if approved:
                assert stored.status == PendingStatus.APPROVED
                assert stored.reviewed_by == "bob"
                assert materials == 1
            else:
                assert stored.status == PendingStatus.REJECTED
                assert stored.reviewed_by == "carol"
                assert materials == 0


class TestCommitRetry:
    async def test_failed_commit_keeps_approval_and_retries_once(
        self,
        db_session: AsyncSession,
        studio_id: UUID,
        project: Project,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate(), project_id=project.project_id)
        pending_id = entry.pending_id

        async def broken(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        with monkeypatch.context() as patch:
            patch.setattr(queue._catalog, "create_entity", broken)
            with pytest.raises(CommitFailureError) as exc_info:
                await queue.approve(studio_id, pending_id, "bob")

        assert exc_info.value.retryable is True
        [uncommitted] = await queue.list_uncommitted(studio_id)
        assert uncommitted.pending_id == pending_id
        assert uncommitted.status == PendingStatus.APPROVED
        assert uncommitted.committed_entity_id is None

        result = await queue.retry_commit(studio_id, pending_id)
        again = await queue.retry_commit(studio_id, pending_id)

        assert result.entity_created is True
        assert again.entity_created is False
        assert again.entity_id == result.entity_id
        assert again.association_created is False
        assert await count(db_session, Material) == 1
        assert await count(db_session, ProjectMaterial) == 1
        assert await queue.list_uncommitted(studio_id) == []

    async def test_retry_requires_approved_entry(
        self, db_session: AsyncSession, studio_id: UUID
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())
        with pytest.raises(IngestError):
            await queue.retry_commit(studio_id, entry.pending_id)


class TestApproveAll:
    async def test_bulk_approval_is_per_item(
        self,
        db_session: AsyncSession,
        studio_id: UUID,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        queue = ApprovalQueue(db_session)
        ok = await queue.enqueue(studio_id, material_candidate("Walnut Veneer", category="Wood"))
        ok_id = ok.pending_id
        failing = await queue.enqueue(studio_id, material_candidate("Broken Record"))
        failing_id = failing.pending_id
        original = queue._catalog.create_entity

        async def flaky(studio_id, kind, fields):
            if fields["name"] == "Broken Record":
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return await original(studio_id, kind, fields)

        monkeypatch.setattr(queue._catalog, "create_entity", flaky)

        bulk = await queue.approve_all(studio_id, "bob")

        assert [r.pending_id for r in bulk.approved] == [ok_id]
        assert bulk.failed == [failing_id]
        assert bulk.skipped == []
        assert await count(db_session, Material) == 1

    async def test_nothing_pending(self, db_session: AsyncSession, studio_id: UUID) -> None:
        bulk = await ApprovalQueue(db_session).approve_all(studio_id, "bob")
        assert bulk.approved == [] and bulk.failed == [] and bulk.skipped == []


class TestUpdatePending:
    async def test_edit_while_pending(self, db_session: AsyncSession, studio_id: UUID) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())

        edited = await queue.update_pending(
            studio_id, entry.pending_id, name="White Oak Plank", reference_sku="WO-4"
        )

        assert edited.name == "White Oak Plank"
        assert edited.category == "Flooring"
        assert edited.fields["reference_sku"] == "WO-4"

    async def test_edit_must_stay_valid(self, db_session: AsyncSession, studio_id: UUID) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())
        with pytest.raises(CandidateValidationError):
            await queue.update_pending(studio_id, entry.pending_id, category="")

    async def test_edit_after_resolution(self, db_session: AsyncSession, studio_id: UUID) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())
        await queue.reject(studio_id, entry.pending_id, "bob")
        with pytest.raises(AlreadyResolvedError):
            await queue.update_pending(studio_id, entry.pending_id, name="Other")


class TestIngestionScenarios:
    async def test_exact_duplicate_is_suggested_as_link(
        self, db_session: AsyncSession, studio_id: UUID, white_oak: Material
    ) -> None:
        session = ResolutionSession(
            CatalogMatcher(db_session),
            studio_id,
            [
                material_candidate(
                    "White Oak Flooring",
                    reference_sku="WO-3-NAT",
                    manufacturer_name="Premium Woods Co",
                )
            ],
        )

        step = await session.current()

        assert step is not None
        assert step.top_match is not None
        assert step.top_match.existing_id == white_oak.material_id
        assert step.top_match.score >= 0.95
        assert step.top_match.band == MatchBand.VERY_HIGH
        assert step.suggested_action == DecisionAction.LINK

    async def test_new_material_approved_exactly_once(
        self, db_session: AsyncSession, studio_id: UUID, white_oak: Material, project: Project
    ) -> None:
        session = ResolutionSession(
            CatalogMatcher(db_session),
            studio_id,
            [material_candidate("Terrazzo Tile", category="Tile")],
            project_id=project.project_id,
        )
        step = await session.current()
        assert step is not None and step.matches == []
        await session.accept_suggestion()
        decisions = session.complete()

        queue = ApprovalQueue(db_session)
        queued = await queue.submit_decisions(
            studio_id, decisions, project_id=project.project_id, created_by="alice"
        )
        [entry] = queued.pending
        await queue.approve(studio_id, entry.pending_id, "bob")
        with pytest.raises(AlreadyResolvedError):
            await queue.approve(studio_id, entry.pending_id, "bob")

        names = (
            await db_session.execute(select(Material.name).where(Material.studio_id == studio_id))
        ).scalars().all()
        assert sorted(names) == ["Terrazzo Tile", "White Oak Flooring"]

    async def test_link_to_already_associated_entity(
        self, db_session: AsyncSession, studio_id: UUID, white_oak: Material, project: Project
    ) -> None:
        queue = ApprovalQueue(db_session)
        decision = ResolutionDecision(material_candidate(), DecisionAction.LINK, white_oak.material_id)

        first = await queue.submit_decisions(studio_id, [decision], project_id=project.project_id)
        second = await queue.submit_decisions(studio_id, [decision], project_id=project.project_id)

        assert first.pending == [] and second.pending == []
        assert first.already_linked == 0
        assert second.already_linked == 1
        assert await count(db_session, ProjectMaterial) == 1
        assert await count(db_session, PendingEntity) == 0

    async def test_submit_replace_decision(
        self, db_session: AsyncSession, studio_id: UUID, premium_woods
    ) -> None:
        decision = ResolutionDecision(
            manufacturer_candidate(email="orders@premiumwoods.com"),
            DecisionAction.REPLACE,
            premium_woods.manufacturer_id,
        )

        outcome = await ApprovalQueue(db_session).submit_decisions(studio_id, [decision])

        assert outcome.replaced == [premium_woods.manufacturer_id]
        assert premium_woods.email == "orders@premiumwoods.com"

    async def test_approval_timestamps_are_recent(
        self, db_session: AsyncSession, studio_id: UUID
    ) -> None:
        queue = ApprovalQueue(db_session)
        entry = await queue.enqueue(studio_id, material_candidate())
        before = utcnow().replace(tzinfo=None)
        await queue.approve(studio_id, entry.pending_id, "bob")
        assert entry.approved_at is not None
        assert entry.approved_at.replace(tzinfo=None) >= before - timedelta(seconds=1)

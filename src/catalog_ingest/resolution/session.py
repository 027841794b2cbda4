"""Interactive resolution of one candidate batch.

A session walks the batch one candidate at a time. For the current candidate
it shows the ranked matches and a default suggestion (LINK to the top match
when there is one, CREATE otherwise); the user records a decision and moves
on, or steps back to revise an earlier one.

Matches are computed once per candidate, the first time it becomes current,
and cached: going back re-displays them without recomputing. A session never
writes to the catalog. ``complete()`` hands the decisions to a committer (or
to the approval queue); ``cancel()`` simply drops them.

Plain JSON imports and PDF-derived batches use the same session; the only
difference is provenance (``submission_id`` set or not).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from catalog_ingest.errors import (
    CandidateValidationError,
    SessionClosedError,
    SessionIncompleteError,
)
from catalog_ingest.intake.schemas import Candidate
from catalog_ingest.matching.matcher import CatalogMatcher
from catalog_ingest.matching.similarity import MatchCandidate
from catalog_ingest.models.enums import DecisionAction, EntityKind
from catalog_ingest.resolution.decisions import ResolutionDecision
from catalog_ingest.services.catalog import CatalogService

logger = logging.getLogger(__name__)


@dataclass
class SessionStep:
    """What the user sees for the current candidate."""

    index: int
    total: int
    candidate: Candidate
    matches: list[MatchCandidate]
    suggested_action: DecisionAction
    suggested_entity_id: UUID | None = None
    decision: ResolutionDecision | None = None
    """Decision already recorded for this candidate (when revisiting)."""

    @property
    def top_match(self) -> MatchCandidate | None:
        return self.matches[0] if self.matches else None


class ResolutionSession:
    """Walks a batch of candidates and collects one decision per candidate.

    Usage:
        session = ResolutionSession(matcher, studio_id, candidates, project_id=project_id)
        while (step := await session.current()) is not None:
            await session.accept_suggestion()
        decisions = session.complete()
    """

    def __init__(
        self,
        matcher: CatalogMatcher,
        studio_id: UUID,
        candidates: list[Candidate],
        *,
        kind: EntityKind | None = None,
        submission_id: UUID | None = None,
        project_id: UUID | None = None,
        client_id: UUID | None = None,
        threshold: float | None = None,
        catalog: CatalogService | None = None,
    ) -> None:
        self._matcher = matcher
        self._catalog = catalog or CatalogService(matcher.session, pool=matcher.pool)
        self.studio_id = studio_id
        self.kind = kind or (candidates[0].kind if candidates else EntityKind.MATERIAL)
        for index, candidate in enumerate(candidates):
            if candidate.kind != self.kind:
                raise CandidateValidationError(
                    f"Candidate at index {index} is a {candidate.kind.value}, "
                    f"expected {self.kind.value}",
                    index=index,
                )

        self.submission_id = submission_id
        self.project_id = project_id
        self.client_id = client_id
        self._threshold = threshold
        self._candidates = list(candidates)
        self._decisions: list[ResolutionDecision | None] = [None] * len(candidates)
        self._matches: dict[int, list[MatchCandidate]] = {}
        self._index = 0
        self._closed = False

    # ── State ───────────────────────────────────────────────────────────────

    @property
    def index(self) -> int:
        return self._index

    @property
    def total(self) -> int:
        return len(self._candidates)

    @property
    def from_submission(self) -> bool:
        """True for PDF-derived batches (the session has a parent submission)."""
        return self.submission_id is not None

    @property
    def is_complete(self) -> bool:
        return all(d is not None for d in self._decisions)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def progress(self) -> tuple[int, int]:
        """(decided, total)."""
        return sum(1 for d in self._decisions if d is not None), self.total

    def decision_at(self, index: int) -> ResolutionDecision | None:
        return self._decisions[index]

    # ── Navigation ──────────────────────────────────────────────────────────

    async def current(self) -> SessionStep | None:
        """The step for the current candidate, or None once past the last one."""
        self._ensure_open()
        if self._index >= self.total:
            return None
        return await self._step(self._index)

    def back(self) -> bool:
        """Move to the previous candidate. Returns False when already at the first."""
        self._ensure_open()
        if self._index == 0:
            return False
        self._index -= 1
        return True

    def go_to(self, index: int) -> None:
        self._ensure_open()
        if not 0 <= index < self.total:
            raise IndexError(f"Candidate index {index} out of range (0..{self.total - 1})")
        self._index = index

    # ── Decisions ───────────────────────────────────────────────────────────

    async def decide(
        self,
        action: DecisionAction,
        linked_entity_id: UUID | None = None,
    ) -> ResolutionDecision:
        """Record (or override) the decision for the current candidate and advance.

        Raises:
            CandidateValidationError: If the decision is inconsistent, or the
                linked entity does not exist in this studio.
            SessionClosedError: After complete() or cancel().
        """
        self._ensure_open()
        if self._index >= self.total:
            raise IndexError("No current candidate: every candidate has been visited")

        candidate = self._candidates[self._index]
        try:
            decision = ResolutionDecision(candidate, action, linked_entity_id)
        except ValueError as exc:
            raise CandidateValidationError(str(exc), index=self._index) from exc

        if linked_entity_id is not None:
            await self._validate_link(self._index, linked_entity_id)

        self._decisions[self._index] = decision
        logger.debug(
            "Candidate %d (%r): %s %s",
            self._index,
            candidate.name,
            action.value,
            linked_entity_id or "",
        )
        self._index += 1
        return decision

    async def accept_suggestion(self) -> ResolutionDecision:
        """Decide the current candidate with its default suggestion."""
        step = await self.current()
        if step is None:
            raise IndexError("No current candidate: every candidate has been visited")
        return await self.decide(step.suggested_action, step.suggested_entity_id)

    async def auto_resolve(self) -> int:
        """Apply the default suggestion to every undecided candidate.

        Returns:
            Number of candidates decided by this call.
        """
        self._ensure_open()
        applied = 0
        for index in range(self.total):
            if self._decisions[index] is not None:
                continue
            step = await self._step(index)
            self._decisions[index] = ResolutionDecision(
                step.candidate, step.suggested_action, step.suggested_entity_id
            )
            applied += 1
        self._index = self.total
        logger.info("Auto-resolved %d of %d candidates", applied, self.total)
        return applied

    def complete(self) -> list[ResolutionDecision]:
        """Close the session and return the decisions in original order.

        Raises:
            SessionIncompleteError: If any candidate has no decision yet.
            SessionClosedError: If the session was already completed or cancelled.
        """
        self._ensure_open()
        undecided = [i for i, d in enumerate(self._decisions) if d is None]
        if undecided:
            raise SessionIncompleteError(
                f"{len(undecided)} candidate(s) still undecided (first at index {undecided[0]})"
            )
        self._closed = True
        decisions = [d for d in self._decisions if d is not None]
        creates = sum(1 for d in decisions if d.is_create)
        logger.info(
            "Session completed: %d create, %d link/replace", creates, len(decisions) - creates
        )
        return decisions

    def cancel(self) -> None:
        """Abandon the session. Nothing was written, so nothing is undone."""
        self._ensure_open()
        self._closed = True
        logger.info("Session cancelled after %d of %d decisions", self.progress[0], self.total)

    # ── Internals ───────────────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Resolution session is closed")

    async def _matches_for(self, index: int) -> list[MatchCandidate]:
        if index not in self._matches:
            self._matches[index] = await self._matcher.find_matches(
                self.studio_id, self._candidates[index], threshold=self._threshold
            )
        return self._matches[index]

    async def _step(self, index: int) -> SessionStep:
        matches = await self._matches_for(index)
        top = matches[0] if matches else None
        return SessionStep(
            index=index,
            total=self.total,
            candidate=self._candidates[index],
            matches=matches,
            suggested_action=DecisionAction.LINK if top else DecisionAction.CREATE,
            suggested_entity_id=top.existing_id if top else None,
            decision=self._decisions[index],
        )

    async def _validate_link(self, index: int, entity_id: UUID) -> None:
        if any(m.existing_id == entity_id for m in self._matches.get(index, [])):
            return
        if not await self._catalog.entity_exists(self.studio_id, self.kind, entity_id):
            raise CandidateValidationError(
                f"{self.kind.value.capitalize()} {entity_id} does not exist in this studio",
                index=index,
            )

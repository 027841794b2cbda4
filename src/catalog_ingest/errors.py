"""Exception taxonomy for the ingestion pipeline."""

from __future__ import annotations

from uuid import UUID


class IngestError(Exception):
    """Base class for all ingestion pipeline errors."""

    retryable: bool = False


class CandidateValidationError(IngestError):
    """A candidate record is malformed (e.g. missing a required field)."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class NotFoundError(IngestError):
    """A referenced row does not exist in the caller's studio."""


class AlreadyResolvedError(IngestError):
    """approve/reject/edit was attempted on a pending entity that already left ``pending``."""

    def __init__(self, pending_id: UUID, status: str | None = None) -> None:
        detail = f" (status: {status})" if status else ""
        super().__init__(f"Pending entity {pending_id} is already resolved{detail}")
        self.pending_id = pending_id
        self.status = status


class CommitFailureError(IngestError):
    """Storage failed while writing the canonical record or its association.

    The pending entity stays ``approved`` without a commit marker; calling
    ``ApprovalQueue.retry_commit`` finishes the commit without double inserts.
    """

    retryable = True

    def __init__(self, pending_id: UUID, cause: BaseException | None = None) -> None:
        super().__init__(f"Commit failed for pending entity {pending_id}: {cause}")
        self.pending_id = pending_id
        self.cause = cause


class MatchComputationUnavailable(IngestError):
    """The catalog could not be scored; callers degrade to "no matches"."""

    retryable = True


class InvalidTransitionError(IngestError):
    """A submission state transition is not allowed from its current state."""

    def __init__(self, submission_id: UUID, current: str, target: str) -> None:
        super().__init__(f"Submission {submission_id} cannot move from {current} to {target}")
        self.submission_id = submission_id
        self.current = current
        self.target = target


class SessionIncompleteError(IngestError):
    """complete() was called before every candidate had a decision."""


class SessionClosedError(IngestError):
    """The resolution session was already completed or cancelled."""

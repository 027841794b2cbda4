"""Enumerations for the catalog ingest data model."""

from enum import Enum


class EntityKind(str, Enum):
    """Which catalog table a candidate or pending row belongs to."""

    MATERIAL = "material"
    MANUFACTURER = "manufacturer"


class PendingStatus(str, Enum):
    """Lifecycle status of a PendingEntity.

    PENDING → APPROVED | REJECTED. Both outcomes are terminal.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SubmissionStatus(str, Enum):
    """Lifecycle status of a Submission (one uploaded document or batch)."""

    PENDING = "pending"  # Uploaded, extraction not started
    PROCESSING = "processing"  # Candidate generation in progress
    READY_FOR_REVIEW = "ready_for_review"  # Candidates available for resolution
    COMPLETED = "completed"  # All children resolved (set by the approval queue only)
    REJECTED = "rejected"  # Explicit terminal override


class DecisionAction(str, Enum):
    """What to do with a candidate once it has been compared to the catalog."""

    CREATE = "create"  # New canonical record
    LINK = "link"  # Reuse an existing record
    REPLACE = "replace"  # Overwrite an existing manufacturer, then link to it


class MatchBand(str, Enum):
    """Presentation label for a similarity score."""

    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

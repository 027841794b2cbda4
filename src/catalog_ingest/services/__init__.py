"""Business logic services for catalog ingestion."""

from catalog_ingest.services.approval_queue import (
    ApprovalQueue,
    ApprovalResult,
    BulkApprovalResult,
    QueueSubmission,
    RejectionResult,
)
from catalog_ingest.services.associations import AssociationResult, insert_association_if_absent
from catalog_ingest.services.catalog import CatalogService
from catalog_ingest.services.submission_ledger import SubmissionLedger, SubmissionProgress

__all__ = [
    "ApprovalQueue",
    "ApprovalResult",
    "AssociationResult",
    "BulkApprovalResult",
    "CatalogService",
    "insert_association_if_absent",
    "QueueSubmission",
    "RejectionResult",
    "SubmissionLedger",
    "SubmissionProgress",
]

"""Resolution of candidate batches into create/link decisions.

Submodules:
- decisions: ResolutionDecision and its invariants
- session: interactive walk over a batch with cached matches
- committer: zero-review commit of decisions
"""

from catalog_ingest.resolution.committer import CommitSummary, DirectCommitter
from catalog_ingest.resolution.decisions import ResolutionDecision
from catalog_ingest.resolution.session import ResolutionSession, SessionStep

__all__ = [
    "CommitSummary",
    "DirectCommitter",
    "ResolutionDecision",
    "ResolutionSession",
    "SessionStep",
]

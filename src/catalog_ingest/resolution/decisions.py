"""Resolution decisions: what to do with each candidate of a batch."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from catalog_ingest.intake.schemas import Candidate
from catalog_ingest.models.enums import DecisionAction, EntityKind


@dataclass(frozen=True)
class ResolutionDecision:
    """The outcome of resolving one candidate.

    Invariants:
    - CREATE carries no linked_entity_id
    - LINK / REPLACE carry the id of an existing entity of the candidate's kind
    - REPLACE only applies to manufacturers
    """

    candidate: Candidate
    action: DecisionAction
    linked_entity_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.action == DecisionAction.CREATE and self.linked_entity_id is not None:
            raise ValueError("CREATE decisions must not carry a linked entity id")
        if self.action in (DecisionAction.LINK, DecisionAction.REPLACE):
            if self.linked_entity_id is None:
                raise ValueError(f"{self.action.value.upper()} decisions require a linked entity id")
        if self.action == DecisionAction.REPLACE and self.kind != EntityKind.MANUFACTURER:
            raise ValueError("REPLACE is only supported for manufacturers")

    @property
    def kind(self) -> EntityKind:
        return self.candidate.kind

    @property
    def is_create(self) -> bool:
        return self.action == DecisionAction.CREATE

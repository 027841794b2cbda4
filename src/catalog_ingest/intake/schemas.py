"""Pydantic schemas for candidate records entering the pipeline.

Candidates come from a JSON import or from upstream PDF extraction. They carry
the same descriptive fields as the canonical catalog rows but are never
persisted as-is: a resolution decision either discards them (LINK) or turns
them into a PendingEntity / canonical record (CREATE).
"""

from __future__ import annotations

from typing import Annotated, Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from catalog_ingest.models.enums import EntityKind


def _blank_to_none(v: Any) -> Any:
    """Treat empty / whitespace-only strings as missing; coerce numbers to str.

    Extracted records often carry "" for absent fields and numeric SKUs.
    """
    if v is None:
        return None
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        v = str(v)
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


OptionalText = Annotated[str | None, BeforeValidator(_blank_to_none)]
RequiredText = Annotated[str, BeforeValidator(_blank_to_none), Field(min_length=1)]


class CandidateMaterial(BaseModel):
    """A material proposed for ingestion."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: RequiredText
    category: RequiredText
    subcategory: OptionalText = None
    manufacturer_name: OptionalText = None
    manufacturer_id: UUID | None = None
    reference_sku: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("reference_sku", "reference_model_sku", "sku"),
    )
    dimensions: OptionalText = None
    location: OptionalText = None
    tag: OptionalText = None
    model: OptionalText = None
    notes: OptionalText = None

    @property
    def kind(self) -> EntityKind:
        return EntityKind.MATERIAL


class CandidateManufacturer(BaseModel):
    """A manufacturer proposed for ingestion."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: RequiredText
    contact_name: OptionalText = None
    email: OptionalText = None
    phone: OptionalText = None
    website: OptionalText = None
    notes: OptionalText = None

    @property
    def kind(self) -> EntityKind:
        return EntityKind.MANUFACTURER


Candidate = CandidateMaterial | CandidateManufacturer


def candidate_fields(candidate: Candidate) -> dict[str, Any]:
    """Descriptive fields of a candidate as a JSON-safe dict, without empty values."""
    return candidate.model_dump(mode="json", exclude_none=True)

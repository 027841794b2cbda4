"""Candidate schemas and batch parsing for imports."""

from catalog_ingest.intake.batch import (
    BatchParseResult,
    MalformedGroup,
    SkippedRecord,
    flatten_records,
    parse_batch,
    parse_manufacturer_batch,
    parse_material_batch,
)
from catalog_ingest.intake.schemas import (
    Candidate,
    CandidateManufacturer,
    CandidateMaterial,
    candidate_fields,
)

__all__ = [
    "BatchParseResult",
    "Candidate",
    "CandidateManufacturer",
    "CandidateMaterial",
    "MalformedGroup",
    "SkippedRecord",
    "candidate_fields",
    "flatten_records",
    "parse_batch",
    "parse_manufacturer_batch",
    "parse_material_batch",
]

"""Batch parsing at the ingestion boundary.

Imports arrive either as a flat list of records or keyed by manufacturer:

    {"Premium Woods Co": [{"name": "White Oak Flooring", ...}, ...], ...}

The keyed shape is flattened here, with ``manufacturer_name`` back-filled from
the key, so matching and resolution only ever see a flat candidate list.
Malformed records are skipped and reported; the rest of the batch continues.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from catalog_ingest.errors import CandidateValidationError
from catalog_ingest.intake.schemas import Candidate, CandidateManufacturer, CandidateMaterial
from catalog_ingest.models.enums import EntityKind

logger = logging.getLogger(__name__)

# Pydantic error types that mean "required field absent or blank"
_MISSING_ERROR_TYPES = {"missing", "string_too_short", "string_type"}


@dataclass
class SkippedRecord:
    """A record rejected before entering a session."""

    index: int
    reason: str


@dataclass(frozen=True)
class MalformedGroup:
    """A keyed entry whose value is not an array of records."""

    key: str
    value_type: str


@dataclass
class BatchParseResult:
    """Result of parsing one import batch."""

    candidates: list[Candidate]
    skipped_records: list[SkippedRecord] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def skipped(self) -> int:
        return len(self.skipped_records)


def flatten_records(payload: Any, *, kind: EntityKind) -> list[Any]:
    """Flatten a decoded import payload into a list of raw records.

    Args:
        payload: A list of records, or a dict mapping manufacturer name to a list.
        kind: Entity kind. Only materials get ``manufacturer_name`` back-filled.

    Returns:
        Raw records in input order (dict keys in insertion order). A keyed entry
        that is not a list stays in place as a MalformedGroup so it is counted
        as skipped.

    Raises:
        CandidateValidationError: If the payload is neither shape, or is empty.
    """
    if isinstance(payload, list):
        records = list(payload)
    elif isinstance(payload, dict):
        records = []
        for key, items in payload.items():
            if not isinstance(items, list):
                records.append(MalformedGroup(key=str(key), value_type=type(items).__name__))
                continue
            for item in items:
                if (
                    kind == EntityKind.MATERIAL
                    and isinstance(item, dict)
                    and not item.get("manufacturer_name")
                ):
                    item = {**item, "manufacturer_name": key}
                records.append(item)
    else:
        raise CandidateValidationError(
            "Import must be an array of records or an object of arrays keyed by manufacturer"
        )

    if not records:
        raise CandidateValidationError("Import contains no records")
    return records


def _validate_record(record: Any, index: int, kind: EntityKind) -> Candidate:
    if isinstance(record, MalformedGroup):
        raise CandidateValidationError(
            f"Entry {record.key!r} at index {index} is a {record.value_type}, not an array of records",
            index=index,
        )
    if not isinstance(record, dict):
        raise CandidateValidationError(f"Record at index {index} is not an object", index=index)
    model = CandidateMaterial if kind == EntityKind.MATERIAL else CandidateManufacturer
    try:
        return model.model_validate(record)
    except ValidationError as exc:
        missing = sorted(
            str(err["loc"][0])
            for err in exc.errors()
            if err["loc"] and err["type"] in _MISSING_ERROR_TYPES
        )
        if missing:
            message = f"Record at index {index} is missing required field(s): {', '.join(missing)}"
        else:
            message = f"Record at index {index} is invalid: {exc.errors()[0]['msg']}"
        raise CandidateValidationError(message, index=index) from exc


def parse_batch(payload: Any, *, kind: EntityKind) -> BatchParseResult:
    """Parse an import batch into validated candidates.

    Args:
        payload: JSON text or an already-decoded list/dict.
        kind: Whether the batch holds materials or manufacturers.

    Returns:
        BatchParseResult with valid candidates and skipped records.

    Raises:
        CandidateValidationError: If the payload itself is unusable (bad JSON, wrong shape).
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise CandidateValidationError(f"Invalid JSON: {exc.msg}") from exc

    records = flatten_records(payload, kind=kind)
    result = BatchParseResult(candidates=[])
    for index, record in enumerate(records):
        try:
            result.candidates.append(_validate_record(record, index, kind))
        except CandidateValidationError as exc:
            result.skipped_records.append(SkippedRecord(index=index, reason=str(exc)))

    if result.skipped:
        logger.warning(
            "Skipped %d of %d %s records during import", result.skipped, len(records), kind.value
        )
    return result


def parse_material_batch(payload: Any) -> BatchParseResult:
    return parse_batch(payload, kind=EntityKind.MATERIAL)


def parse_manufacturer_batch(payload: Any) -> BatchParseResult:
    return parse_batch(payload, kind=EntityKind.MANUFACTURER)

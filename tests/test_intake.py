"""Tests for candidate schemas and batch parsing."""

from __future__ import annotations

import json

import pytest

from catalog_ingest.errors import CandidateValidationError
from catalog_ingest.intake import (
    CandidateManufacturer,
    CandidateMaterial,
    MalformedGroup,
    candidate_fields,
    flatten_records,
    parse_manufacturer_batch,
    parse_material_batch,
)
from catalog_ingest.models.enums import EntityKind


class TestCandidateSchemas:
    def test_blank_optional_fields_become_none(self) -> None:
        candidate = CandidateMaterial(name="Oak", category="Wood", subcategory="  ", notes="")
        assert candidate.subcategory is None
        assert candidate.notes is None

    def test_sku_aliases(self) -> None:
        for key in ("reference_sku", "reference_model_sku", "sku"):
            candidate = CandidateMaterial.model_validate(
                {"name": "Oak", "category": "Wood", key: "WO-3"}
            )
            assert candidate.reference_sku == "WO-3"

    def test_numeric_sku_is_text(self) -> None:
        candidate = CandidateMaterial.model_validate({"name": "Oak", "category": "Wood", "sku": 1234})
        assert candidate.reference_sku == "1234"

    def test_unknown_fields_ignored(self) -> None:
        candidate = CandidateManufacturer.model_validate({"name": "Acme", "fax": "555"})
        assert candidate_fields(candidate) == {"name": "Acme"}

    def test_kind(self) -> None:
        assert CandidateMaterial(name="Oak", category="Wood").kind == EntityKind.MATERIAL
        assert CandidateManufacturer(name="Acme").kind == EntityKind.MANUFACTURER

    def test_candidate_fields_drops_empty_values(self) -> None:
        candidate = CandidateMaterial(name="Oak", category="Wood", tag="F-01")
        assert candidate_fields(candidate) == {"name": "Oak", "category": "Wood", "tag": "F-01"}


class TestFlattenRecords:
    def test_flat_list_is_used_as_is(self) -> None:
        records = [{"name": "Oak"}, {"name": "Ash"}]
        assert flatten_records(records, kind=EntityKind.MATERIAL) == records

    def test_keyed_by_manufacturer_backfills_name(self) -> None:
        payload = {
            "Premium Woods Co": [{"name": "White Oak Flooring", "category": "Flooring"}],
            "Stone Source": [
                {"name": "Carrara Marble", "category": "Stone"},
                {"name": "Basalt", "category": "Stone", "manufacturer_name": "Other"},
            ],
        }

        records = flatten_records(payload, kind=EntityKind.MATERIAL)

        assert [r["manufacturer_name"] for r in records] == [
            "Premium Woods Co",
            "Stone Source",
            "Other",
        ]

    def test_keyed_manufacturers_are_not_backfilled(self) -> None:
        records = flatten_records({"group": [{"name": "Acme"}]}, kind=EntityKind.MANUFACTURER)
        assert records == [{"name": "Acme"}]

    def test_keyed_entry_that_is_not_a_list_is_kept_in_place(self) -> None:
        payload = {
            "Premium Woods Co": {"name": "White Oak Flooring"},
            "Stone Source": [{"name": "Basalt"}],
        }

        records = flatten_records(payload, kind=EntityKind.MATERIAL)

        assert records[0] == MalformedGroup(key="Premium Woods Co", value_type="dict")
        assert records[1]["name"] == "Basalt"

    @pytest.mark.parametrize("payload", ["text", 42, None])
    def test_wrong_shape(self, payload: object) -> None:
        with pytest.raises(CandidateValidationError):
            flatten_records(payload, kind=EntityKind.MATERIAL)

    @pytest.mark.parametrize("payload", [[], {}, {"Acme": []}])
    def test_empty(self, payload: object) -> None:
        with pytest.raises(CandidateValidationError, match="no records"):
            flatten_records(payload, kind=EntityKind.MATERIAL)


class TestParseBatch:
    def test_malformed_records_are_skipped(self) -> None:
        payload = json.dumps(
            [
                {"name": "White Oak Flooring", "category": "Flooring"},
                {"category": "Flooring"},
                {"name": "Carrara Marble", "category": "  "},
                "not an object",
                {"name": "Walnut Veneer", "category": "Wood"},
            ]
        )

        result = parse_material_batch(payload)

        assert [c.name for c in result.candidates] == ["White Oak Flooring", "Walnut Veneer"]
        assert result.skipped == 3
        assert [s.index for s in result.skipped_records] == [1, 2, 3]
        assert "name" in result.skipped_records[0].reason
        assert "category" in result.skipped_records[1].reason

    def test_keyed_payload_as_decoded_object(self) -> None:
        result = parse_material_batch(
            {"Premium Woods Co": [{"name": "White Oak Flooring", "category": "Flooring"}]}
        )
        [candidate] = result.candidates
        assert candidate.manufacturer_name == "Premium Woods Co"
        assert result.skipped == 0

    def test_manufacturer_batch_requires_name_only(self) -> None:
        result = parse_manufacturer_batch(b'[{"name": "Acme"}, {"email": "x@y.z"}]')
        assert [c.name for c in result.candidates] == ["Acme"]
        assert result.skipped == 1

    def test_invalid_json(self) -> None:
        with pytest.raises(CandidateValidationError, match="Invalid JSON"):
            parse_material_batch("[{")

    def test_keyed_entry_that_is_not_a_list_counts_as_skipped(self) -> None:
        result = parse_material_batch(
            {
                "Premium Woods Co": {"name": "White Oak Flooring", "category": "Flooring"},
                "Stone Source": [{"name": "Carrara Marble", "category": "Stone"}],
            }
        )

        assert [c.name for c in result.candidates] == ["Carrara Marble"]
        assert result.skipped == 1
        [skipped] = result.skipped_records
        assert skipped.index == 0
        assert "Premium Woods Co" in skipped.reason
        assert "not an array" in skipped.reason

"""Tests for taxonomy and assumptions parsing."""

import json
from pathlib import Path
from typing import Any

import pytest

from cohort_demand.ingest.parsers import (
    generate_node_id,
    load_assumptions,
    load_taxonomy,
    parse_assumptions,
    parse_dose_schema,
    parse_route,
    parse_taxonomy,
    parse_treatment_node,
    sanitize_key,
)
from cohort_demand.models import DoseType, Route


class TestKeys:
    """Tests for key sanitizing and node id generation."""

    def test_sanitize_key(self) -> None:
        """Non-alphanumerics should collapse to single underscores."""
        assert sanitize_key("HER2+ / Metastatic") == "her2_metastatic"
        assert sanitize_key("  1L  ") == "1l"

    def test_generate_node_id(self) -> None:
        """Node ids should join the non-empty path parts."""
        assert generate_node_id("HER2+", "Adjuvant", None, "1L", "TH") == "her2_adjuvant_1l_th"

    def test_generate_node_id_skips_repeated_stage(self) -> None:
        """A stage equal to the setting should appear once."""
        assert generate_node_id(None, "early", "early", None, "th") == "early_th"


class TestParseTreatmentNode:
    """Tests for single node parsing."""

    def test_full_node(self, taxonomy_document: dict[str, Any]) -> None:
        """All fields of a complete node should be parsed."""
        node = parse_treatment_node(taxonomy_document["nodes"][0])

        assert node.node_id == "her2_adjuvant_1l_th"
        assert node.route == Route.IV
        assert node.regimen_name == "Trastuzumab + paclitaxel"
        assert node.dose_schema.type == DoseType.MG_PER_KG
        assert node.dose_schema.maintenance.value == 6.0
        assert node.dose_schema.loading is not None
        assert node.dose_schema.loading.value == 8.0

    def test_generated_node_id(self) -> None:
        """A missing node_id should be built from the path."""
        node = parse_treatment_node(
            {
                "setting_key": "metastatic",
                "line_key": "2l",
                "regimen_key": "t_dxd",
                "route": "iv",
                "dose_schema": {
                    "type": "mg_per_kg",
                    "maintenance": {"value": 5.4, "unit": "mg/kg"},
                    "interval_days": 21,
                },
            }
        )

        assert node.node_id == "metastatic_2l_t_dxd"
        assert node.route == Route.IV

    def test_missing_regimen_key(self) -> None:
        """Nodes need a regimen."""
        with pytest.raises(ValueError, match="regimen_key"):
            parse_treatment_node({"dose_schema": {}})

    def test_missing_dose_schema(self) -> None:
        """Nodes need a dose schema."""
        with pytest.raises(ValueError, match="dose_schema"):
            parse_treatment_node({"regimen_key": "th"})


class TestParseDoseSchema:
    """Tests for dose schema parsing."""

    def test_unknown_type_and_defaults(self) -> None:
        """Unknown types map to OTHER and loading repeats default to 1."""
        schema = parse_dose_schema(
            {
                "type": "flat",
                "maintenance": {"value": 600},
                "loading": {"value": 1200, "unit": "mg"},
                "interval_days": 21,
            }
        )

        assert schema.type == DoseType.OTHER
        assert schema.maintenance.unit == "mg"
        assert schema.loading is not None
        assert schema.loading.repeats == 1

    def test_missing_interval(self) -> None:
        """The interval is required."""
        with pytest.raises(ValueError, match="interval_days"):
            parse_dose_schema({"type": "fixed_mg", "maintenance": {"value": 600}})

    def test_missing_maintenance(self) -> None:
        """The maintenance dose is required."""
        with pytest.raises(ValueError, match="maintenance"):
            parse_dose_schema({"type": "fixed_mg", "interval_days": 21})

    def test_unknown_route(self) -> None:
        """Unknown routes map to OTHER."""
        assert parse_route("intrathecal") == Route.OTHER
        assert parse_route(None) == Route.OTHER
        assert parse_route("sc") == Route.SC


class TestParseTaxonomy:
    """Tests for taxonomy parsing."""

    def test_document_with_nodes(self, taxonomy_document: dict[str, Any]) -> None:
        """A {"nodes": [...]} document should be accepted."""
        nodes = parse_taxonomy(taxonomy_document)

        assert [n.node_id for n in nodes] == [
            "her2_adjuvant_1l_th",
            "her2_metastatic_1l_th",
            "her2_metastatic_2l_sc",
        ]

    def test_plain_list(self, taxonomy_document: dict[str, Any]) -> None:
        """A bare node list should be accepted."""
        assert len(parse_taxonomy(taxonomy_document["nodes"])) == 3

    def test_duplicate_node_id(self, taxonomy_document: dict[str, Any]) -> None:
        """Duplicate node ids should be rejected."""
        nodes = taxonomy_document["nodes"]
        with pytest.raises(ValueError, match="Duplicate node_id"):
            parse_taxonomy([nodes[0], nodes[0]])


class TestParseAssumptions:
    """Tests for assumptions parsing."""

    def test_full_document(self, assumptions_document: dict[str, Any]) -> None:
        """All fields should be parsed into an Assumptions instance."""
        assumptions = parse_assumptions(assumptions_document)

        assert assumptions.prevalence == 200_000
        assert assumptions.treated_rate == 0.9
        assert assumptions.avg_weight_kg == 70.0
        assert assumptions.avg_weight_sd_kg == 12.0
        assert assumptions.line_shares == {"1l": 0.7, "2l": 0.3}
        assert assumptions.time_on_treatment_months == {"1l": 12.0, "2l": 6.0}
        assert [v.size_mg for v in assumptions.vial_sizes["IV"]] == [150.0, 420.0]
        assert [v.size_mg for v in assumptions.vial_sizes["SC"]] == [600.0]
        assert assumptions.scenarios is not None
        assert assumptions.scenarios["low"].adoption_multiplier == 0.85

    def test_minimal_document(self) -> None:
        """Missing fields should take defaults."""
        assumptions = parse_assumptions({"incidence": 1000})

        assert assumptions.incidence == 1000.0
        assert assumptions.prevalence is None
        assert assumptions.treated_rate == 0.85
        assert assumptions.subtype_shares is None
        assert assumptions.vial_sizes == {}
        assert assumptions.scenarios is None


class TestLoaders:
    """Tests for loading JSON files."""

    def test_load_taxonomy(self, tmp_path: Path, taxonomy_document: dict[str, Any]) -> None:
        """Taxonomy files should be parsed."""
        path = tmp_path / "taxonomy.json"
        path.write_text(json.dumps(taxonomy_document), encoding="utf-8")

        assert len(load_taxonomy(path)) == 3

    def test_load_assumptions(
        self, tmp_path: Path, assumptions_document: dict[str, Any]
    ) -> None:
        """Assumption files should be parsed."""
        path = tmp_path / "assumptions.json"
        path.write_text(json.dumps(assumptions_document), encoding="utf-8")

        assert load_assumptions(str(path)).incidence == 50_000

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Broken JSON should raise ValueError naming the file."""
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError, match="Cannot parse JSON file"):
            load_taxonomy(path)

"""Shared pytest fixtures for Cohort Demand Engine tests."""

import os
from collections.abc import Callable, Generator
from unittest.mock import patch

import pytest

from cohort_demand.config import Settings
from cohort_demand.models import (
    Assumptions,
    DoseAmount,
    DoseSchema,
    DoseType,
    LoadingDose,
    Route,
    TreatmentNode,
    VialSize,
)

NodeFactory = Callable[..., TreatmentNode]


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Set up mock environment variables for testing.

    Yields:
        Dictionary of mock environment variables.
    """
    env_vars = {
        "LOG_LEVEL": "DEBUG",
        "POPULATION_MODEL": "incidence_based",
        "SHARE_SUM_TOLERANCE": "0.01",
        "MAX_RENORMALIZATION_DEVIATION": "0.2",
        "ALLOW_SHARE_RENORMALIZATION": "false",
        "ALLOW_EQUAL_REGIMEN_SPLIT": "false",
        "MAX_POPULATION": "1000000",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        yield env_vars


@pytest.fixture
def test_settings(mock_env_vars: dict[str, str]) -> Settings:
    """Create test settings with mock values."""
    return Settings.from_env()


@pytest.fixture
def weight_based_schema() -> DoseSchema:
    """6 mg/kg every 21 days (trastuzumab-like maintenance)."""
    return DoseSchema(
        type=DoseType.MG_PER_KG,
        maintenance=DoseAmount(value=6, unit="mg/kg"),
        interval_days=21,
    )


@pytest.fixture
def loading_schema() -> DoseSchema:
    """8 mg/kg loading once, then 6 mg/kg every 21 days."""
    return DoseSchema(
        type=DoseType.MG_PER_KG,
        maintenance=DoseAmount(value=6, unit="mg/kg"),
        interval_days=21,
        loading=LoadingDose(value=8, unit="mg/kg", repeats=1),
    )


@pytest.fixture
def make_node(weight_based_schema: DoseSchema) -> NodeFactory:
    """Factory for treatment nodes with a weight-based IV schema by default.

    Returns:
        Callable accepting TreatmentNode keyword arguments.
    """

    def _make(
        node_id: str,
        regimen_key: str | None = None,
        route: Route = Route.IV,
        dose_schema: DoseSchema | None = None,
        **keys: str | None,
    ) -> TreatmentNode:
        return TreatmentNode(
            node_id=node_id,
            regimen_key=regimen_key or node_id,
            route=route,
            dose_schema=dose_schema or weight_based_schema,
            **keys,
        )

    return _make


@pytest.fixture
def sample_taxonomy(make_node: NodeFactory) -> list[TreatmentNode]:
    """One subtype, three settings, one line, one regimen per setting."""
    return [
        make_node(
            "her2_adjuvant_1l_trastuzumab",
            regimen_key="trastuzumab",
            subtype_key="her2_positive",
            setting_key="adjuvant",
            line_key="1l",
        ),
        make_node(
            "her2_neoadjuvant_1l_trastuzumab",
            regimen_key="trastuzumab",
            subtype_key="her2_positive",
            setting_key="neoadjuvant",
            line_key="1l",
        ),
        make_node(
            "her2_metastatic_1l_trastuzumab",
            regimen_key="trastuzumab",
            subtype_key="her2_positive",
            setting_key="metastatic",
            line_key="1l",
        ),
    ]


@pytest.fixture
def sample_assumptions() -> Assumptions:
    """Assumptions matching sample_taxonomy with full share coverage."""
    return Assumptions(
        treated_rate=1.0,
        base_year=2024,
        horizon_years=5,
        prevalence=1_000_000,
        subtype_shares={"her2_positive": 1.0},
        setting_shares={"adjuvant": 0.40, "neoadjuvant": 0.25, "metastatic": 0.35},
        line_shares={"1l": 1.0},
        avg_weight_kg=70.0,
        vial_sizes={
            "IV": [VialSize(size_mg=150), VialSize(size_mg=420)],
            "SC": [VialSize(size_mg=600)],
        },
    )


@pytest.fixture
def taxonomy_document() -> dict[str, object]:
    """Taxonomy as produced by the upstream treatment-map stage."""
    return {
        "disease": "breast cancer",
        "molecule": "trastuzumab",
        "nodes": [
            {
                "node_id": "her2_adjuvant_1l_th",
                "subtype_key": "her2_positive",
                "setting_key": "adjuvant",
                "line_key": "1l",
                "regimen_key": "th",
                "regimen_name_human": "Trastuzumab + paclitaxel",
                "route": "IV",
                "dose_schema": {
                    "type": "mg_per_kg",
                    "loading": {"value": 8, "unit": "mg/kg", "repeats": 1},
                    "maintenance": {"value": 6, "unit": "mg/kg"},
                    "interval_days": 21,
                    "notes": None,
                },
            },
            {
                "node_id": "her2_metastatic_1l_th",
                "subtype_key": "her2_positive",
                "setting_key": "metastatic",
                "line_key": "1l",
                "regimen_key": "th",
                "route": "IV",
                "dose_schema": {
                    "type": "mg_per_kg",
                    "maintenance": {"value": 6, "unit": "mg/kg"},
                    "interval_days": 21,
                },
            },
            {
                "node_id": "her2_metastatic_2l_sc",
                "subtype_key": "her2_positive",
                "setting_key": "metastatic",
                "line_key": "2l",
                "regimen_key": "trastuzumab_sc",
                "route": "SC",
                "dose_schema": {
                    "type": "fixed_mg",
                    "maintenance": {"value": 600, "unit": "mg"},
                    "interval_days": 21,
                },
            },
        ],
    }


@pytest.fixture
def assumptions_document() -> dict[str, object]:
    """Assumptions as produced by the upstream assumptions stage."""
    return {
        "base_year": 2024,
        "horizon_years": 3,
        "prevalence": 200_000,
        "incidence": 50_000,
        "treated_rate": 0.9,
        "subtype_shares": {"her2_positive": 1.0},
        "setting_shares": {"adjuvant": 0.6, "metastatic": 0.4},
        "line_shares": {"1l": 0.7, "2l": 0.3},
        "time_on_treatment_months": {"1l": 12, "2l": 6},
        "avg_weight_kg": {"mean": 70, "sd": 12},
        "relative_dose_intensity": 1.0,
        "vial_sizes": {
            "IV": [{"size_mg": 150, "is_single_dose": True}, {"size_mg": 420}],
            "SC": [600],
        },
        "scenarios": {
            "base": {
                "incidence_cagr": 0.01,
                "treated_rate_multiplier": 1.0,
                "tot_multiplier": 1.0,
                "adoption_multiplier": 1.0,
            },
            "low": {
                "incidence_cagr": 0.0,
                "treated_rate_multiplier": 0.9,
                "tot_multiplier": 0.9,
                "adoption_multiplier": 0.85,
            },
        },
    }

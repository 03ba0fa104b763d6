"""Default assumptions and override merging.

Assumptions are merged field by field in priority order:
user overrides > upstream suggestions > defaults.
"""

import logging
from typing import Any

from cohort_demand.ingest.parsers import parse_assumptions
from cohort_demand.models import Assumptions

logger = logging.getLogger(__name__)

DEFAULT_TREATED_RATE = 0.85
DEFAULT_WEIGHT_KG = 70.0

DEFAULT_ASSUMPTIONS: dict[str, Any] = {
    "base_year": 2024,
    "horizon_years": 10,
    "avg_weight_kg": DEFAULT_WEIGHT_KG,
    "vial_sizes": {
        "IV": [
            {"size_mg": 150, "is_single_dose": True},
            {"size_mg": 420, "is_single_dose": True},
        ],
        "SC": [{"size_mg": 600, "is_single_dose": True}],
    },
    "treated_rate": DEFAULT_TREATED_RATE,
    "relative_dose_intensity": 1.0,
    "scenarios": {
        "base": {
            "incidence_cagr": 0.005,
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
        "high": {
            "incidence_cagr": 0.01,
            "treated_rate_multiplier": 1.1,
            "tot_multiplier": 1.1,
            "adoption_multiplier": 1.15,
        },
    },
}


def merge_assumption_layers(*layers: dict[str, Any] | None) -> dict[str, Any]:
    """Merge assumption documents, earlier layers winning.

    A field set to None in a layer does not hide lower-priority values.
    """
    merged: dict[str, Any] = {}
    for layer in reversed([layer for layer in layers if layer]):
        merged.update({key: value for key, value in layer.items() if value is not None})
    return merged


def resolve_assumptions(
    overrides: dict[str, Any] | None = None,
    suggestions: dict[str, Any] | None = None,
) -> Assumptions:
    """Resolve the assumptions for a run.

    Args:
        overrides: User-supplied values (highest priority).
        suggestions: Values proposed by upstream stages.

    Returns:
        Parsed Assumptions with defaults filling the gaps.
    """
    merged = merge_assumption_layers(overrides, suggestions, DEFAULT_ASSUMPTIONS)

    logger.info(
        f"Resolved assumptions: {len(overrides or {})} overrides, "
        f"{len(suggestions or {})} suggestions, treated_rate={merged['treated_rate']}"
    )

    return parse_assumptions(merged)

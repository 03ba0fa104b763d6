"""Input module for the Cohort Demand Engine.

This module handles:
- Parsing taxonomy and assumptions documents
- Default assumptions and override merging
- Validating shares, rates and population bounds
"""

from cohort_demand.ingest.assumptions import (
    DEFAULT_ASSUMPTIONS,
    merge_assumption_layers,
    resolve_assumptions,
)
from cohort_demand.ingest.parsers import (
    generate_node_id,
    load_assumptions,
    load_taxonomy,
    parse_assumptions,
    parse_taxonomy,
    parse_treatment_node,
    sanitize_key,
)
from cohort_demand.ingest.validators import (
    ShareValidationTrace,
    ValidationConfig,
    ValidationResult,
    aggregate_validation_results,
    raise_if_invalid,
    validate_population,
    validate_rate,
    validate_shares,
)

__all__ = [
    # Parsers
    "parse_taxonomy",
    "parse_treatment_node",
    "parse_assumptions",
    "load_taxonomy",
    "load_assumptions",
    "sanitize_key",
    "generate_node_id",
    # Defaults
    "DEFAULT_ASSUMPTIONS",
    "merge_assumption_layers",
    "resolve_assumptions",
    # Validators
    "ValidationConfig",
    "ValidationResult",
    "ShareValidationTrace",
    "validate_rate",
    "validate_shares",
    "validate_population",
    "aggregate_validation_results",
    "raise_if_invalid",
]

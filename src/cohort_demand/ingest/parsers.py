"""Parsing of taxonomy and assumptions documents.

The taxonomy and assumptions arrive as JSON produced by upstream stages.
This module turns those documents into the immutable models the compute
layer consumes.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from cohort_demand.models import (
    Assumptions,
    DoseAmount,
    DoseSchema,
    DoseType,
    LoadingDose,
    Route,
    ScenarioParameters,
    TreatmentNode,
    VialSize,
)

logger = logging.getLogger(__name__)

SHARE_MAP_FIELDS = (
    "subtype_shares",
    "setting_shares",
    "stage_shares",
    "line_shares",
    "regimen_shares",
    "time_on_treatment_months",
)


def sanitize_key(key: str) -> str:
    """Lowercase a key and collapse non-alphanumerics into underscores.

    Example: "HER2+ / Metastatic" -> "her2_metastatic"
    """
    return re.sub(r"[^a-z0-9]+", "_", key.lower()).strip("_")


def generate_node_id(
    subtype_key: str | None,
    setting_key: str | None,
    stage_key: str | None,
    line_key: str | None,
    regimen_key: str,
) -> str:
    """Build a stable node identifier from a node's path."""
    parts = []
    if subtype_key:
        parts.append(sanitize_key(subtype_key))
    if setting_key:
        parts.append(sanitize_key(setting_key))
    if stage_key and stage_key != setting_key:
        parts.append(sanitize_key(stage_key))
    if line_key:
        parts.append(sanitize_key(line_key))
    parts.append(sanitize_key(regimen_key))
    return "_".join(parts)


def parse_route(value: str | None) -> Route:
    """Parse a route, mapping anything unknown to ``Route.OTHER``."""
    if not value:
        return Route.OTHER
    for route in Route:
        if route.value.lower() == str(value).strip().lower():
            return route
    logger.debug(f"Unknown route '{value}', using {Route.OTHER.value}")
    return Route.OTHER


def parse_dose_type(value: str | None) -> DoseType:
    """Parse a dose type, mapping anything unknown to ``DoseType.OTHER``."""
    try:
        return DoseType(str(value).strip().lower())
    except ValueError:
        logger.debug(f"Unknown dose type '{value}', using {DoseType.OTHER.value}")
        return DoseType.OTHER


def parse_dose_schema(data: dict[str, Any]) -> DoseSchema:
    """Parse a dose schema document.

    Args:
        data: Mapping with ``type``, ``maintenance``, ``interval_days`` and
            optional ``loading`` and ``notes``.

    Returns:
        DoseSchema instance.

    Raises:
        ValueError: If the maintenance dose or interval is missing.
    """
    maintenance = data.get("maintenance")
    if not maintenance or maintenance.get("value") is None:
        raise ValueError("dose_schema.maintenance.value is required")
    if data.get("interval_days") is None:
        raise ValueError("dose_schema.interval_days is required")

    loading = None
    loading_data = data.get("loading")
    if loading_data and loading_data.get("value") is not None:
        repeats = loading_data.get("repeats")
        loading = LoadingDose(
            value=float(loading_data["value"]),
            unit=loading_data.get("unit") or "mg",
            repeats=1 if repeats is None else int(repeats),
        )

    return DoseSchema(
        type=parse_dose_type(data.get("type")),
        maintenance=DoseAmount(
            value=float(maintenance["value"]),
            unit=maintenance.get("unit") or "mg",
        ),
        interval_days=float(data["interval_days"]),
        loading=loading,
        notes=data.get("notes"),
    )


def parse_treatment_node(data: dict[str, Any]) -> TreatmentNode:
    """Parse one treatment node document.

    A missing ``node_id`` is generated from the node's path.

    Raises:
        ValueError: If ``regimen_key`` or ``dose_schema`` is missing.
    """
    regimen_key = data.get("regimen_key")
    if not regimen_key:
        raise ValueError(f"Treatment node missing regimen_key: {data}")
    if not data.get("dose_schema"):
        raise ValueError(f"Treatment node {regimen_key} missing dose_schema")

    subtype_key = data.get("subtype_key") or None
    setting_key = data.get("setting_key") or None
    stage_key = data.get("stage_key") or None
    line_key = data.get("line_key") or None

    node_id = data.get("node_id") or generate_node_id(
        subtype_key, setting_key, stage_key, line_key, regimen_key
    )

    return TreatmentNode(
        node_id=node_id,
        regimen_key=regimen_key,
        route=parse_route(data.get("route")),
        dose_schema=parse_dose_schema(data["dose_schema"]),
        subtype_key=subtype_key,
        setting_key=setting_key,
        stage_key=stage_key,
        line_key=line_key,
        regimen_name=data.get("regimen_name_human") or data.get("regimen_name"),
    )


def parse_taxonomy(data: list[dict[str, Any]] | dict[str, Any]) -> list[TreatmentNode]:
    """Parse a taxonomy given as a node list or as ``{"nodes": [...]}``.

    Raises:
        ValueError: If two nodes share a ``node_id``.
    """
    raw_nodes = data.get("nodes", []) if isinstance(data, dict) else data

    nodes = [parse_treatment_node(raw) for raw in raw_nodes]

    seen: set[str] = set()
    for node in nodes:
        if node.node_id in seen:
            raise ValueError(f"Duplicate node_id in taxonomy: {node.node_id}")
        seen.add(node.node_id)

    logger.info(f"Parsed taxonomy with {len(nodes)} treatment nodes")
    return nodes


def parse_vial_sizes(data: dict[str, Any] | None) -> dict[str, list[VialSize]]:
    """Parse vial sizes per route (entries may be numbers or objects)."""
    vial_sizes: dict[str, list[VialSize]] = {}
    for route_name, entries in (data or {}).items():
        route = parse_route(route_name)
        vials = []
        for entry in entries or []:
            if isinstance(entry, dict):
                vials.append(
                    VialSize(
                        size_mg=float(entry["size_mg"]),
                        is_single_dose=bool(entry.get("is_single_dose", True)),
                    )
                )
            else:
                vials.append(VialSize(size_mg=float(entry)))
        vial_sizes[route.value] = vials
    return vial_sizes


def parse_scenarios(data: dict[str, Any] | None) -> dict[str, ScenarioParameters] | None:
    """Parse the named scenario map."""
    if not data:
        return None
    return {
        name: ScenarioParameters(
            incidence_cagr=float(params.get("incidence_cagr", 0.0)),
            treated_rate_multiplier=float(params.get("treated_rate_multiplier", 1.0)),
            tot_multiplier=float(params.get("tot_multiplier", 1.0)),
            adoption_multiplier=float(params.get("adoption_multiplier", 1.0)),
        )
        for name, params in data.items()
    }


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def parse_assumptions(data: dict[str, Any]) -> Assumptions:
    """Parse an assumptions document.

    ``avg_weight_kg`` may be a number or ``{"mean": ..., "sd": ...}``.
    """
    weight = data.get("avg_weight_kg", 70.0)
    weight_sd = None
    if isinstance(weight, dict):
        weight_sd = _optional_float(weight.get("sd"))
        weight = weight["mean"]

    share_maps = {
        name: {key: float(value) for key, value in data[name].items()}
        for name in SHARE_MAP_FIELDS
        if data.get(name) is not None
    }

    return Assumptions(
        treated_rate=float(data.get("treated_rate", 0.85)),
        base_year=int(data.get("base_year", 2024)),
        horizon_years=int(data.get("horizon_years", 10)),
        incidence=_optional_float(data.get("incidence")),
        prevalence=_optional_float(data.get("prevalence")),
        avg_weight_kg=float(weight),
        avg_weight_sd_kg=weight_sd,
        relative_dose_intensity=float(data.get("relative_dose_intensity", 1.0)),
        vial_sizes=parse_vial_sizes(data.get("vial_sizes")),
        incidence_cagr=_optional_float(data.get("incidence_cagr")),
        scenarios=parse_scenarios(data.get("scenarios")),
        **share_maps,
    )


def _read_json(path: Path | str) -> Any:
    path = Path(path)
    logger.info(f"Loading {path}")
    try:
        with path.open(encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON file {path}: {e}")
        raise ValueError(f"Cannot parse JSON file {path}: {e}") from e


def load_taxonomy(path: Path | str) -> list[TreatmentNode]:
    """Load and parse a taxonomy JSON file."""
    return parse_taxonomy(_read_json(path))


def load_assumptions(path: Path | str) -> Assumptions:
    """Load and parse an assumptions JSON file."""
    return parse_assumptions(_read_json(path))

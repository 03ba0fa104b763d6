"""Dose and exposure calculation.

This module handles:
- Dose type / unit mismatch correction
- Per-administration dose (mg/kg, flat mg, mg/m2 via Mosteller BSA)
- Maintenance interval resolution against free-text notes
- Loading dose contribution (first year, not prorated)
- Vial rounding into dispensable quantities
- Per-node demand totals

Example: 6 mg/kg every 21 days at 70 kg
- 420 mg per administration
- 365 / 21 = 17.38 administrations per year
- 7,300 mg administered per patient-year
"""

import logging
import math
from dataclasses import dataclass, field

from cohort_demand.compute.intervals import infer_maintenance_interval
from cohort_demand.exceptions import DosingError
from cohort_demand.ingest.validators import raise_if_invalid, validate_rate
from cohort_demand.models import (
    Assumptions,
    DemandNode,
    DoseSchema,
    DoseType,
    PopulationNode,
    TreatmentNode,
    VialSize,
)

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365
DEFAULT_HEIGHT_CM = 170.0
# Required doses are rounded before vial packing so that float noise from
# dividing an annual total back into administrations cannot add a vial.
VIAL_ROUNDING_PRECISION = 6


@dataclass
class DemandResult:
    """Per-node demand with run-level totals.

    Attributes:
        nodes: One DemandNode per population node with a treatment node.
        warnings: Best-effort corrections applied while computing demand.
    """

    nodes: list[DemandNode]
    warnings: list[str] = field(default_factory=list)

    @property
    def total_administered_mg(self) -> int:
        return sum(n.total_administered_mg for n in self.nodes)

    @property
    def total_dispensed_mg(self) -> int:
        return sum(n.total_dispensed_mg for n in self.nodes)

    @property
    def wastage_pct(self) -> float:
        """Share of dispensed drug that is not administered, in percent."""
        dispensed = self.total_dispensed_mg
        if dispensed <= 0:
            return 0.0
        return (dispensed - self.total_administered_mg) / dispensed * 100

    def node(self, node_id: str) -> DemandNode | None:
        """Look up the demand for one node."""
        for demand_node in self.nodes:
            if demand_node.node_id == node_id:
                return demand_node
        return None


def calculate_bsa(weight_kg: float, height_cm: float = DEFAULT_HEIGHT_CM) -> float:
    """Estimate body surface area with the Mosteller formula.

    Formula:
        BSA (m2) = sqrt(height_cm x weight_kg / 3600)

    Args:
        weight_kg: Body weight.
        height_cm: Body height (170 cm assumed by default).

    Returns:
        Body surface area in square metres.
    """
    return math.sqrt(height_cm * weight_kg / 3600)


def _unit_has_m2(unit: str) -> bool:
    return "m2" in unit or "m²" in unit or "m^2" in unit


def resolve_dose_type(
    declared: DoseType,
    unit: str | None,
) -> tuple[DoseType, str | None]:
    """Reconcile a declared dose type with the maintenance unit text.

    The unit wins when the two disagree, e.g. ``fixed_mg`` with unit
    "mg/kg" becomes ``mg_per_kg``.

    Args:
        declared: Dose type from the schema.
        unit: Maintenance dose unit text.

    Returns:
        Tuple of (effective type, warning or None).
    """
    unit_text = (unit or "").lower()

    corrected = declared
    if declared == DoseType.FIXED_MG and "kg" in unit_text:
        corrected = DoseType.MG_PER_KG
    elif declared == DoseType.FIXED_MG and _unit_has_m2(unit_text):
        corrected = DoseType.MG_PER_M2
    elif declared == DoseType.MG_PER_KG and "kg" not in unit_text:
        corrected = DoseType.FIXED_MG
    elif declared == DoseType.MG_PER_M2 and not _unit_has_m2(unit_text):
        corrected = DoseType.FIXED_MG

    if corrected == declared:
        return declared, None

    warning = (
        f"Type/unit mismatch: type is {declared.value} but unit is '{unit}'. "
        f"Auto-correcting to {corrected.value}."
    )
    return corrected, warning


def dose_per_administration(
    dose_type: DoseType,
    value: float,
    weight_kg: float,
) -> float:
    """Convert a dose value into mg for one administration.

    Args:
        dose_type: Effective dose type.
        value: Dose value in the unit implied by ``dose_type``.
        weight_kg: Average patient weight.

    Returns:
        Milligrams per administration.
    """
    if dose_type == DoseType.MG_PER_KG:
        return value * weight_kg
    if dose_type == DoseType.MG_PER_M2:
        return value * calculate_bsa(weight_kg)
    if dose_type != DoseType.FIXED_MG:
        logger.warning(f"Unknown dose type {dose_type.value}, using value as mg")
    return value


def _loading_dose_type(unit: str | None) -> DoseType:
    unit_text = (unit or "").lower()
    if "kg" in unit_text:
        return DoseType.MG_PER_KG
    if _unit_has_m2(unit_text):
        return DoseType.MG_PER_M2
    return DoseType.FIXED_MG


def resolve_maintenance_interval(schema: DoseSchema) -> tuple[float, str | None]:
    """Pick the maintenance interval, preferring strong signals in the notes.

    Args:
        schema: Dose schema with declared interval and notes.

    Returns:
        Tuple of (interval in days, warning or None).

    Raises:
        DosingError: If the resolved interval is not positive.
    """
    declared = schema.interval_days
    inferred = infer_maintenance_interval(schema.notes, declared)

    interval = declared
    warning = None
    if inferred is not None:
        interval = inferred
        warning = (
            f"Interval mismatch: declared interval_days={declared:g} but notes "
            f"suggest {inferred:g} days. Using {inferred:g}."
        )

    if not interval or interval <= 0:
        raise DosingError(f"interval_days must be positive, got: {interval}")

    return interval, warning


def _record(warnings: list[str] | None, node: TreatmentNode, message: str) -> None:
    logger.warning(f"{node.node_id}: {message}")
    if warnings is not None:
        warnings.append(f"{node.node_id}: {message}")


def loading_dose_mg(node: TreatmentNode, weight_kg: float) -> float:
    """Total loading dose (all repeats) in mg, zero when there is none."""
    loading = node.dose_schema.loading
    if loading is None or loading.repeats <= 0:
        return 0.0
    per_admin = dose_per_administration(
        _loading_dose_type(loading.unit), loading.value, weight_kg
    )
    return per_admin * loading.repeats


def administrations_per_year(schema: DoseSchema, interval_days: float) -> float:
    """Maintenance administrations per year plus loading repeats."""
    loading_repeats = schema.loading.repeats if schema.loading else 0
    return DAYS_PER_YEAR / interval_days + max(loading_repeats, 0)


def calculate_administered_dose(
    node: TreatmentNode,
    assumptions: Assumptions,
    warnings: list[str] | None = None,
) -> float:
    """Calculate administered mg per patient-year.

    Formula:
        maintenance = dose_per_admin x 365 / interval
        annual = (loading + maintenance) x RDI

    Args:
        node: Treatment node with dose schema.
        assumptions: Supplies weight and relative dose intensity.
        warnings: Optional list collecting correction warnings.

    Returns:
        Administered milligrams per patient-year.
    """
    schema = node.dose_schema

    interval_days, interval_warning = resolve_maintenance_interval(schema)
    if interval_warning:
        _record(warnings, node, interval_warning)

    dose_type, type_warning = resolve_dose_type(schema.type, schema.maintenance.unit)
    if type_warning:
        _record(warnings, node, type_warning)

    weight_kg = assumptions.avg_weight_kg
    per_admin = dose_per_administration(dose_type, schema.maintenance.value, weight_kg)
    maintenance_mg = per_admin * (DAYS_PER_YEAR / interval_days)

    loading_mg = loading_dose_mg(node, weight_kg)
    if loading_mg:
        logger.debug(
            f"Loading dose for {node.node_id}: {loading_mg:.1f} mg "
            f"over {schema.loading.repeats} administrations"
        )

    rdi = assumptions.relative_dose_intensity
    annual_mg = (loading_mg + maintenance_mg) * rdi

    logger.debug(
        f"Administered dose for {node.node_id}: {per_admin:.1f} mg x "
        f"{DAYS_PER_YEAR}/{interval_days:g} + {loading_mg:.1f} mg loading "
        f"@ {rdi:.0%} RDI = {annual_mg:.1f} mg/patient-year"
    )

    return annual_mg


def round_to_vials(required_dose_mg: float, vial_sizes: list[VialSize]) -> float:
    """Round a per-administration dose up to whole vials.

    Vials are taken largest first until the required dose is covered. The
    largest vial always covers the remainder on its own, so the result is a
    whole multiple of the largest vial size; smaller vials are never mixed in.

    Args:
        required_dose_mg: Dose needed for one administration.
        vial_sizes: Available vial presentations.

    Returns:
        Dispensed milligrams for one administration.
    """
    sorted_vials = sorted(
        (v for v in vial_sizes if v.size_mg > 0),
        key=lambda v: v.size_mg,
        reverse=True,
    )
    if not sorted_vials:
        return required_dose_mg

    remaining = round(required_dose_mg, VIAL_ROUNDING_PRECISION)
    dispensed = 0.0

    for vial in sorted_vials:
        while remaining > 0:
            dispensed += vial.size_mg
            remaining -= vial.size_mg
        if remaining <= 0:
            break

    return dispensed


def calculate_dispensed_dose(
    node: TreatmentNode,
    assumptions: Assumptions,
    administered_mg_per_patient_year: float,
    warnings: list[str] | None = None,
) -> float:
    """Calculate dispensed mg per patient-year after vial rounding.

    The annual administered dose is spread evenly over all administrations
    (maintenance plus loading repeats); each administration is then rounded
    to whole vials.

    Args:
        node: Treatment node (route selects the vial sizes).
        assumptions: Supplies vial sizes per route.
        administered_mg_per_patient_year: Output of
            :func:`calculate_administered_dose`.
        warnings: Optional list collecting warnings.

    Returns:
        Dispensed milligrams per patient-year.
    """
    vial_sizes = assumptions.vials_for_route(node.route)
    if not vial_sizes:
        _record(
            warnings,
            node,
            f"No vial sizes defined for route {node.route.value}, "
            "using administered dose",
        )
        return administered_mg_per_patient_year

    interval_days, _ = resolve_maintenance_interval(node.dose_schema)
    total_admins = administrations_per_year(node.dose_schema, interval_days)

    per_admin = administered_mg_per_patient_year / total_admins
    dispensed_per_admin = round_to_vials(per_admin, vial_sizes)

    return dispensed_per_admin * total_admins


def calculate_demand(
    taxonomy: list[TreatmentNode],
    population_nodes: list[PopulationNode],
    assumptions: Assumptions,
) -> DemandResult:
    """Calculate drug demand for every populated treatment node.

    Args:
        taxonomy: Treatment nodes.
        population_nodes: Population per node (from population allocation).
        assumptions: Dosing assumptions.

    Returns:
        DemandResult with per-node demand and warnings.

    Raises:
        ShareValidationError: If relative_dose_intensity is not in [0, 1].
        DosingError: If a dose schema has a non-positive interval.
    """
    raise_if_invalid(
        validate_rate(assumptions.relative_dose_intensity, "relative_dose_intensity"),
        "relative_dose_intensity",
    )

    nodes_by_id = {node.node_id: node for node in taxonomy}
    warnings: list[str] = []
    demand_nodes: list[DemandNode] = []

    for pop_node in population_nodes:
        node = nodes_by_id.get(pop_node.node_id)
        if node is None:
            message = f"Treatment node {pop_node.node_id} not found for population node"
            logger.warning(message)
            warnings.append(message)
            continue

        administered = calculate_administered_dose(node, assumptions, warnings)
        dispensed = calculate_dispensed_dose(node, assumptions, administered, warnings)

        demand_nodes.append(
            DemandNode(
                node_id=node.node_id,
                treated_patients=round(pop_node.treated_patients),
                administered_mg_per_patient_year=round(administered),
                dispensed_mg_per_patient_year=round(dispensed),
                total_administered_mg=round(administered * pop_node.patient_years),
                total_dispensed_mg=round(dispensed * pop_node.patient_years),
            )
        )

    result = DemandResult(demand_nodes, warnings)

    logger.info(
        f"Demand calculated for {len(demand_nodes)} nodes: "
        f"{result.total_administered_mg / 1_000_000:.2f} kg administered, "
        f"{result.total_dispensed_mg / 1_000_000:.2f} kg dispensed "
        f"({result.wastage_pct:.1f}% wastage)"
    )

    return result

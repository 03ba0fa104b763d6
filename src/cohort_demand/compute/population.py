"""Population allocation per treatment node.

Wraps the cohort allocation engine: every taxonomy node receives the
population of its leaf cohort, and patients are rolled up by subtype,
setting and line.
"""

import logging
from dataclasses import dataclass, field

from cohort_demand.compute.allocation import (
    DEFAULT_ALLOCATION_CONFIG,
    AllocationConfig,
    CohortAllocationResult,
    allocate_cohorts,
    map_cohorts_to_nodes,
)
from cohort_demand.models import (
    AllocationTrace,
    Assumptions,
    PopulationNode,
    TreatmentNode,
)

logger = logging.getLogger(__name__)


@dataclass
class PopulationAllocation:
    """Population attached to each treatment node.

    Attributes:
        base_year: Year the assumptions describe.
        nodes: One PopulationNode per taxonomy node, in taxonomy order.
        rollups: Patients by dimension ("by_subtype", "by_setting", "by_line").
        allocation: The underlying cohort allocation result.
        node_traces: Allocation trace per node_id.
        warnings: Allocation and mapping warnings.
    """

    base_year: int
    nodes: list[PopulationNode]
    rollups: dict[str, dict[str, float]]
    allocation: CohortAllocationResult
    node_traces: dict[str, list[AllocationTrace]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def total_treated_patients(self) -> float:
        return sum(node.treated_patients for node in self.nodes)

    @property
    def total_patient_years(self) -> float:
        return sum(node.patient_years for node in self.nodes)

    def node(self, node_id: str) -> PopulationNode | None:
        """Look up the population of one node."""
        for pop_node in self.nodes:
            if pop_node.node_id == node_id:
                return pop_node
        return None


def _add(rollup: dict[str, float], key: str | None, patients: float) -> None:
    if key:
        rollup[key] = rollup.get(key, 0.0) + patients


def allocate_population(
    taxonomy: list[TreatmentNode],
    assumptions: Assumptions,
    config: AllocationConfig = DEFAULT_ALLOCATION_CONFIG,
) -> PopulationAllocation:
    """Allocate the treated pool to treatment nodes.

    Args:
        taxonomy: Treatment nodes.
        assumptions: Population, rates and shares.
        config: Allocation configuration.

    Returns:
        PopulationAllocation with per-node counts and roll-ups.
    """
    logger.info(f"Allocating population to treatment nodes for {assumptions.base_year}")

    allocation = allocate_cohorts(taxonomy, assumptions, config)
    node_to_cohort, mapping_warnings = map_cohorts_to_nodes(
        allocation.leaf_cohorts, taxonomy
    )

    nodes: list[PopulationNode] = []
    node_traces: dict[str, list[AllocationTrace]] = {}
    by_subtype: dict[str, float] = {}
    by_setting: dict[str, float] = {}
    by_line: dict[str, float] = {}

    for treatment_node in taxonomy:
        cohort = node_to_cohort.get(treatment_node.node_id)
        if cohort is None:
            nodes.append(
                PopulationNode(
                    node_id=treatment_node.node_id,
                    eligible_patients=0.0,
                    treated_patients=0.0,
                    patient_years=0.0,
                )
            )
            continue

        nodes.append(
            PopulationNode(
                node_id=treatment_node.node_id,
                eligible_patients=cohort.patients,
                treated_patients=cohort.patients,
                patient_years=cohort.patient_years,
            )
        )
        node_traces[treatment_node.node_id] = cohort.trace

        _add(by_subtype, treatment_node.subtype_key, cohort.patients)
        _add(by_setting, treatment_node.setting_dimension, cohort.patients)
        _add(by_line, treatment_node.line_key, cohort.patients)

    result = PopulationAllocation(
        base_year=assumptions.base_year,
        nodes=nodes,
        rollups={
            "by_subtype": by_subtype,
            "by_setting": by_setting,
            "by_line": by_line,
        },
        allocation=allocation,
        node_traces=node_traces,
        warnings=allocation.warnings + mapping_warnings,
    )

    logger.info(
        f"Population allocation completed: {len(nodes)} nodes, "
        f"{result.total_treated_patients:,.0f} treated patients, "
        f"{result.total_patient_years:,.0f} patient-years, "
        f"conservation ratio {allocation.conservation_ratio:.4f}"
    )

    return result

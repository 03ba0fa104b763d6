"""Computation module for the Cohort Demand Engine.

This module handles:
- Hierarchical cohort allocation with conservation checks
- Population per treatment node and dimension roll-ups
- Administered and dispensed dose per patient-year
- Multi-scenario forecasting and tabular summaries
"""

from cohort_demand.compute.allocation import (
    DEFAULT_ALLOCATION_CONFIG,
    AllocationConfig,
    CohortAllocationResult,
    allocate_cohorts,
    map_cohorts_to_nodes,
)
from cohort_demand.compute.dosing import (
    DemandResult,
    calculate_administered_dose,
    calculate_bsa,
    calculate_demand,
    calculate_dispensed_dose,
    resolve_dose_type,
    resolve_maintenance_interval,
    round_to_vials,
)
from cohort_demand.compute.forecast import (
    DEFAULT_SCENARIOS,
    default_scenarios,
    generate_forecast,
    scale_assumptions,
)
from cohort_demand.compute.intervals import infer_maintenance_interval
from cohort_demand.compute.population import PopulationAllocation, allocate_population
from cohort_demand.compute.summary import (
    demand_by_dimension,
    forecast_to_frame,
    summarize_forecast,
)

__all__ = [
    # Allocation
    "AllocationConfig",
    "DEFAULT_ALLOCATION_CONFIG",
    "CohortAllocationResult",
    "allocate_cohorts",
    "map_cohorts_to_nodes",
    "PopulationAllocation",
    "allocate_population",
    # Dosing
    "DemandResult",
    "calculate_administered_dose",
    "calculate_dispensed_dose",
    "calculate_demand",
    "calculate_bsa",
    "resolve_dose_type",
    "resolve_maintenance_interval",
    "round_to_vials",
    "infer_maintenance_interval",
    # Forecast
    "DEFAULT_SCENARIOS",
    "default_scenarios",
    "generate_forecast",
    "scale_assumptions",
    "forecast_to_frame",
    "summarize_forecast",
    "demand_by_dimension",
]

"""Multi-year, multi-scenario demand forecast.

Every (scenario, year) is recomputed from the base assumptions:

    incidence_t  = incidence  x (1 + cagr) ^ t
    prevalence_t = prevalence x (1 + cagr) ^ t
    treated_rate = treated_rate x treated_rate_multiplier
    ToT[line]    = ToT[line] x tot_multiplier

The full allocation and demand calculation then runs on the scaled
assumptions, so each year is internally consistent and no drift accumulates.
"""

import logging
from dataclasses import replace

from cohort_demand.compute.allocation import DEFAULT_ALLOCATION_CONFIG, AllocationConfig
from cohort_demand.compute.dosing import calculate_demand
from cohort_demand.compute.population import allocate_population
from cohort_demand.models import (
    Assumptions,
    ForecastRecord,
    ScenarioParameters,
    TreatmentNode,
)

logger = logging.getLogger(__name__)

DEFAULT_INCIDENCE_CAGR = 0.005

DEFAULT_SCENARIOS = {
    "base": ScenarioParameters(
        incidence_cagr=DEFAULT_INCIDENCE_CAGR,
        treated_rate_multiplier=1.0,
        tot_multiplier=1.0,
        adoption_multiplier=1.0,
    ),
}


def project_with_cagr(base_value: float, cagr: float, years: int) -> float:
    """Compound a value forward by ``years`` at ``cagr``."""
    return base_value * (1 + cagr) ** years


def scale_assumptions(
    base: Assumptions,
    scenario: ScenarioParameters,
    year_offset: int,
    warnings: list[str] | None = None,
) -> Assumptions:
    """Build the assumptions for one scenario year.

    Args:
        base: Base-year assumptions (not modified).
        scenario: Scenario deltas.
        year_offset: Years after the base year.
        warnings: Optional list collecting the treated-rate cap warning.

    Returns:
        A new Assumptions instance for ``base_year + year_offset``.
    """
    epi_scale = project_with_cagr(1.0, scenario.incidence_cagr, year_offset)

    treated_rate = base.treated_rate * scenario.treated_rate_multiplier
    if treated_rate > 1.0:
        message = (
            f"Scaled treated_rate {treated_rate:.4f} exceeds 1.0 "
            f"(base {base.treated_rate} x {scenario.treated_rate_multiplier}); "
            "capping at 1.0"
        )
        logger.warning(message)
        if warnings is not None:
            warnings.append(message)
        treated_rate = 1.0

    time_on_treatment = None
    if base.time_on_treatment_months is not None:
        time_on_treatment = {
            line: months * scenario.tot_multiplier
            for line, months in base.time_on_treatment_months.items()
        }

    return replace(
        base,
        base_year=base.base_year + year_offset,
        incidence=base.incidence * epi_scale if base.incidence else base.incidence,
        prevalence=base.prevalence * epi_scale if base.prevalence else base.prevalence,
        treated_rate=treated_rate,
        time_on_treatment_months=time_on_treatment,
    )


def default_scenarios(base_assumptions: Assumptions) -> dict[str, ScenarioParameters]:
    """Single base scenario, growing at the assumptions' own CAGR when given."""
    if base_assumptions.incidence_cagr is None:
        return DEFAULT_SCENARIOS
    return {
        "base": replace(
            DEFAULT_SCENARIOS["base"], incidence_cagr=base_assumptions.incidence_cagr
        ),
    }


def generate_forecast(
    taxonomy: list[TreatmentNode],
    base_assumptions: Assumptions,
    horizon_years: int | None = None,
    config: AllocationConfig = DEFAULT_ALLOCATION_CONFIG,
    warnings: list[str] | None = None,
) -> list[ForecastRecord]:
    """Forecast demand for every scenario and year of the horizon.

    Args:
        taxonomy: Treatment nodes.
        base_assumptions: Base-year assumptions, including scenarios.
        horizon_years: Years after the base year to project (defaults to
            ``base_assumptions.horizon_years``). Years 0..horizon are emitted.
        config: Allocation configuration.
        warnings: Optional list collecting every allocation, demand and
            scaling warning, prefixed with scenario and year.

    Returns:
        One ForecastRecord per (scenario, year, node), scenario-major.

    Raises:
        ValueError: If ``horizon_years`` is negative.
    """
    horizon = base_assumptions.horizon_years if horizon_years is None else horizon_years
    if horizon < 0:
        raise ValueError(f"horizon_years cannot be negative: {horizon}")

    scenarios = base_assumptions.scenarios or default_scenarios(base_assumptions)

    logger.info(
        f"Generating forecast from {base_assumptions.base_year} over {horizon} years "
        f"for {len(scenarios)} scenarios"
    )

    records: list[ForecastRecord] = []

    for scenario_name, scenario in scenarios.items():
        logger.info(f"Forecasting scenario {scenario_name}")

        for year_offset in range(horizon + 1):
            year_warnings: list[str] = []
            year_assumptions = scale_assumptions(
                base_assumptions, scenario, year_offset, year_warnings
            )

            population = allocate_population(taxonomy, year_assumptions, config)
            demand = calculate_demand(taxonomy, population.nodes, year_assumptions)

            if warnings is not None:
                year_warnings.extend(population.warnings)
                year_warnings.extend(demand.warnings)
                warnings.extend(
                    f"{scenario_name} {year_assumptions.base_year}: {warning}"
                    for warning in year_warnings
                )
            patient_years = {node.node_id: node.patient_years for node in population.nodes}

            for demand_node in demand.nodes:
                records.append(
                    ForecastRecord(
                        year=year_assumptions.base_year,
                        node_id=demand_node.node_id,
                        scenario=scenario_name,
                        treated_patients=demand_node.treated_patients,
                        patient_years=round(patient_years[demand_node.node_id], 2),
                        administered_mg_per_patient_year=(
                            demand_node.administered_mg_per_patient_year
                        ),
                        dispensed_mg_per_patient_year=(
                            demand_node.dispensed_mg_per_patient_year
                        ),
                        total_administered_mg=demand_node.total_administered_mg,
                        total_dispensed_mg=demand_node.total_dispensed_mg,
                    )
                )

    logger.info(f"Forecast generation completed: {len(records)} records")

    return records

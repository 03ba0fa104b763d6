"""Cohort allocation engine.

Single-pass hierarchical allocation of the treated pool. Each patient flows
through exactly one path, so no patient is counted twice:

    treated_pool
      -> subtype allocation
        -> setting allocation
          -> line allocation
            -> regimen allocation (leaf cohorts)

Every multiplication is recorded in the leaf's trace so that any allocation
can be replayed and audited.
"""

import logging
from dataclasses import dataclass, field

from cohort_demand.exceptions import AllocationError
from cohort_demand.ingest.validators import (
    ShareValidationTrace,
    ValidationConfig,
    raise_if_invalid,
    validate_population,
    validate_rate,
    validate_shares,
)
from cohort_demand.models import (
    AllocationTrace,
    Assumptions,
    CohortPath,
    LeafCohort,
    PopulationModel,
    TreatmentNode,
)

logger = logging.getLogger(__name__)

# Path-level regimen shares are renormalized beyond this deviation from 1.0
REGIMEN_SHARE_TOLERANCE = 0.001

DIMENSIONS = ("subtype", "setting", "line")


@dataclass
class AllocationConfig(ValidationConfig):
    """Validation policy plus base population selection."""

    population_model: PopulationModel = PopulationModel.AUTO


DEFAULT_ALLOCATION_CONFIG = AllocationConfig()


@dataclass
class CohortAllocationResult:
    """Outcome of one allocation pass.

    Attributes:
        base_pool: Base population before the treated rate.
        base_pool_source: "prevalence" or "incidence".
        treated_pool: base_pool x treated_rate.
        leaf_cohorts: Flat list of leaf cohorts, in taxonomy order.
        total_allocated: Sum of leaf cohort patients.
        conservation_ratio: total_allocated / treated_pool.
        share_traces: Validation trace per share map.
        warnings: Best-effort corrections applied during allocation.
    """

    base_pool: float
    base_pool_source: str
    treated_pool: float
    leaf_cohorts: list[LeafCohort]
    total_allocated: float
    conservation_ratio: float
    share_traces: dict[str, ShareValidationTrace] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass
class _PathGroup:
    subtype_key: str | None
    setting_key: str | None
    line_key: str | None
    regimen_keys: list[str] = field(default_factory=list)

    def dimension_value(self, dimension: str) -> str | None:
        return getattr(self, f"{dimension}_key")

    @property
    def key(self) -> str:
        return "|".join(
            part or "_" for part in (self.subtype_key, self.setting_key, self.line_key)
        )


def build_cohort_id(path: CohortPath) -> str:
    """Join the non-empty parts of a path into a cohort identifier."""
    parts = [
        part
        for part in (path.subtype_key, path.setting_key, path.line_key)
        if part
    ]
    parts.append(path.regimen_key)
    return "_".join(parts)


def select_base_pool(
    assumptions: Assumptions,
    population_model: PopulationModel,
) -> tuple[float, str, str | None]:
    """Pick the base population according to the population model.

    Args:
        assumptions: Supplies incidence and prevalence.
        population_model: Explicit model or AUTO (prefer prevalence).

    Returns:
        Tuple of (base_pool, source, warning or None).
    """
    prevalence = assumptions.prevalence
    incidence = assumptions.incidence

    if population_model == PopulationModel.PREVALENCE_BASED:
        if not prevalence:
            return 0.0, "prevalence", (
                "prevalence_based model selected but no prevalence provided"
            )
        return float(prevalence), "prevalence", None

    if population_model == PopulationModel.INCIDENCE_BASED:
        if not incidence:
            return 0.0, "incidence", (
                "incidence_based model selected but no incidence provided"
            )
        return float(incidence), "incidence", None

    if prevalence and prevalence > 0:
        return float(prevalence), "prevalence", None
    if incidence and incidence > 0:
        return float(incidence), "incidence", None
    return 0.0, "prevalence", "No prevalence or incidence provided - base_pool is 0"


def _group_paths(taxonomy: list[TreatmentNode]) -> dict[str, _PathGroup]:
    groups: dict[str, _PathGroup] = {}
    for node in taxonomy:
        group = _PathGroup(node.subtype_key, node.setting_dimension, node.line_key)
        group = groups.setdefault(group.key, group)
        if node.regimen_key not in group.regimen_keys:
            group.regimen_keys.append(node.regimen_key)
    return groups


def _observed_values(groups: dict[str, _PathGroup], dimension: str) -> list[str]:
    values: list[str] = []
    for group in groups.values():
        value = group.dimension_value(dimension)
        if value and value not in values:
            values.append(value)
    return values


def _raw_shares(assumptions: Assumptions, dimension: str) -> dict[str, float] | None:
    if dimension == "subtype":
        return assumptions.subtype_shares
    if dimension == "setting":
        if assumptions.setting_shares is not None:
            return assumptions.setting_shares
        return assumptions.stage_shares
    return assumptions.line_shares


def resolve_dimension_shares(
    dimension: str,
    observed: list[str],
    raw_shares: dict[str, float] | None,
    config: ValidationConfig,
    warnings: list[str],
) -> tuple[dict[str, float], ShareValidationTrace | None]:
    """Validate the share map for one dimension of the taxonomy.

    Keys the taxonomy never references are dropped before validation. When
    the assumptions carry no map for a dimension the taxonomy uses, patients
    are split evenly across the observed values.

    Args:
        dimension: "subtype", "setting" or "line".
        observed: Distinct values of the dimension in the taxonomy.
        raw_shares: Share map from the assumptions (None if absent).
        config: Validation policy.
        warnings: List collecting warnings.

    Returns:
        Tuple of (shares to allocate with, validation trace or None).

    Raises:
        ShareValidationError: If the filtered map is empty or invalid.
    """
    name = f"{dimension}_shares"
    if not observed:
        return {}, None

    if raw_shares is None:
        equal_share = 1.0 / len(observed)
        warnings.append(
            f"No {name} provided. Using equal distribution: {equal_share:.4f} each."
        )
        return {value: equal_share for value in observed}, None

    filtered = {key: raw_shares[key] for key in observed if key in raw_shares}
    result, trace = validate_shares(filtered, name, config)
    raise_if_invalid(result, name)
    warnings.extend(result.warnings)

    normalized = result.normalized_value
    assert isinstance(normalized, dict)
    return normalized, trace


def _regimen_split(
    group: _PathGroup,
    regimen_shares: dict[str, float],
    config: AllocationConfig,
    population: float,
    trace: list[AllocationTrace],
    warnings: list[str],
) -> dict[str, float]:
    regimens = group.regimen_keys
    has_shares = any(regimen in regimen_shares for regimen in regimens)

    if not has_shares and not config.allow_equal_regimen_split:
        raise AllocationError(
            f"No regimen_shares provided for path [{group.key}] and "
            "allow_equal_regimen_split=False. Provide regimen market shares "
            "or set allow_equal_regimen_split=True."
        )

    if not has_shares:
        equal_share = 1.0 / len(regimens)
        trace.append(
            AllocationTrace(
                step="regimen_equal_split",
                input_population=population,
                output_population=population,
                note=(
                    f"Equal split across {len(regimens)} regimens "
                    f"({equal_share:.4f} each)"
                ),
            )
        )
        return {regimen: equal_share for regimen in regimens}

    path_shares = {regimen: regimen_shares.get(regimen, 0.0) for regimen in regimens}
    for regimen in regimens:
        if regimen not in regimen_shares:
            warnings.append(
                f"Regimen {regimen} on path [{group.key}] has no regimen share, "
                "defaulting to 0 patients"
            )

    # A global share set rarely applies node-for-node to every path
    path_sum = sum(path_shares.values())
    if path_sum > 0 and abs(path_sum - 1.0) > REGIMEN_SHARE_TOLERANCE:
        path_shares = {regimen: share / path_sum for regimen, share in path_shares.items()}
        trace.append(
            AllocationTrace(
                step="regimen_renormalization",
                input_population=population,
                output_population=population,
                note=(
                    f"Renormalized regimen shares from sum={path_sum:.4f} "
                    f"to 1.0 for path [{group.key}]"
                ),
            )
        )
    return path_shares


def allocate_cohorts(
    taxonomy: list[TreatmentNode],
    assumptions: Assumptions,
    config: AllocationConfig = DEFAULT_ALLOCATION_CONFIG,
) -> CohortAllocationResult:
    """Distribute the treated pool into leaf cohorts.

    Args:
        taxonomy: Treatment nodes defining the dimension paths.
        assumptions: Population, rates and shares.
        config: Validation policy and population model.

    Returns:
        CohortAllocationResult with leaf cohorts and conservation ratio.

    Raises:
        ShareValidationError: On invalid rates, share maps or populations.
        AllocationError: If a path's regimens cannot be split.
    """
    logger.info(f"Starting cohort allocation for {len(taxonomy)} treatment nodes")

    warnings: list[str] = []
    share_traces: dict[str, ShareValidationTrace] = {}

    # Step 1: base population
    base_pool, base_pool_source, pool_warning = select_base_pool(
        assumptions, config.population_model
    )
    if pool_warning:
        warnings.append(pool_warning)

    population_check = validate_population(base_pool, "base_pool", config)
    raise_if_invalid(population_check, "base_pool")
    warnings.extend(population_check.warnings)

    # Step 2: treated pool
    treated_rate = assumptions.treated_rate
    raise_if_invalid(validate_rate(treated_rate, "treated_rate"), "treated_rate")
    treated_pool = base_pool * treated_rate

    logger.info(
        f"Base pool {base_pool:,.0f} ({base_pool_source}) x {treated_rate:.0%} "
        f"treated = {treated_pool:,.0f}"
    )

    # Step 3: unique dimension paths
    groups = _group_paths(taxonomy)

    # Step 4: validated shares per dimension
    shares_by_dimension: dict[str, dict[str, float]] = {}
    observed_by_dimension: dict[str, list[str]] = {}
    for dimension in DIMENSIONS:
        observed = _observed_values(groups, dimension)
        observed_by_dimension[dimension] = observed
        shares, share_trace = resolve_dimension_shares(
            dimension,
            observed,
            _raw_shares(assumptions, dimension),
            config,
            warnings,
        )
        shares_by_dimension[dimension] = shares
        if share_trace is not None:
            share_traces[f"{dimension}_shares"] = share_trace

    regimen_shares = assumptions.regimen_shares or {}
    tot_months = assumptions.time_on_treatment_months or {}

    leaf_cohorts: list[LeafCohort] = []

    for group in groups.values():
        population = treated_pool
        trace = [
            AllocationTrace(
                step="start",
                input_population=base_pool,
                output_population=treated_pool,
                share_applied=treated_rate,
                share_key="treated_rate",
            )
        ]

        for dimension in DIMENSIONS:
            if not observed_by_dimension[dimension]:
                continue

            value = group.dimension_value(dimension)
            if value is None:
                warnings.append(
                    f"Path [{group.key}] has no {dimension} but the taxonomy uses "
                    f"{dimension}s; {dimension} allocation skipped for this path"
                )
                continue

            shares = shares_by_dimension[dimension]
            share = shares.get(value)
            if share is None:
                warnings.append(
                    f"{dimension} '{value}' has no {dimension}_shares entry, "
                    f"defaulting path [{group.key}] to 0 patients"
                )
                share = 0.0

            share_trace = share_traces.get(f"{dimension}_shares")
            new_population = population * share
            trace.append(
                AllocationTrace(
                    step=f"{dimension}_allocation",
                    input_population=population,
                    output_population=new_population,
                    share_applied=share,
                    share_key=value,
                    normalized=share_trace.normalized if share_trace else None,
                )
            )
            population = new_population

        # Step 5: regimens sharing this path
        path_shares = _regimen_split(
            group, regimen_shares, config, population, trace, warnings
        )

        for regimen in group.regimen_keys:
            share = path_shares.get(regimen, 0.0)
            patients = population * share
            leaf_trace = list(trace)
            leaf_trace.append(
                AllocationTrace(
                    step="regimen_allocation",
                    input_population=population,
                    output_population=patients,
                    share_applied=share,
                    share_key=regimen,
                )
            )

            # Step 6: patient-years
            patient_years = patients
            months = tot_months.get(group.line_key) if group.line_key else None
            if months:
                patient_years = patients * (months / 12)
                leaf_trace.append(
                    AllocationTrace(
                        step="patient_years_calculation",
                        input_population=patients,
                        output_population=patient_years,
                        share_applied=months / 12,
                        share_key=f"ToT_{group.line_key}",
                        note=f"{months:g} months on treatment",
                    )
                )

            path = CohortPath(
                subtype_key=group.subtype_key,
                setting_key=group.setting_key,
                line_key=group.line_key,
                regimen_key=regimen,
            )
            leaf_cohorts.append(
                LeafCohort(
                    cohort_id=build_cohort_id(path),
                    path=path,
                    patients=patients,
                    patient_years=patient_years,
                    trace=leaf_trace,
                )
            )

    # Step 7: conservation
    total_allocated = sum(cohort.patients for cohort in leaf_cohorts)
    conservation_ratio = total_allocated / treated_pool if treated_pool > 0 else 1.0

    if abs(conservation_ratio - 1.0) > config.share_sum_tolerance:
        warnings.append(
            f"Conservation check: total allocated ({total_allocated:,.0f}) differs "
            f"from treated pool ({treated_pool:,.0f}) by "
            f"{(conservation_ratio - 1) * 100:.2f}%"
        )

    for warning in warnings:
        logger.warning(warning)

    logger.info(
        f"Cohort allocation completed: {len(leaf_cohorts)} leaf cohorts, "
        f"{total_allocated:,.0f} allocated, conservation ratio "
        f"{conservation_ratio:.4f}"
    )

    return CohortAllocationResult(
        base_pool=base_pool,
        base_pool_source=base_pool_source,
        treated_pool=treated_pool,
        leaf_cohorts=leaf_cohorts,
        total_allocated=total_allocated,
        conservation_ratio=conservation_ratio,
        share_traces=share_traces,
        warnings=warnings,
    )


def map_cohorts_to_nodes(
    leaf_cohorts: list[LeafCohort],
    taxonomy: list[TreatmentNode],
) -> tuple[dict[str, LeafCohort], list[str]]:
    """Match each treatment node to the leaf cohort with the same path.

    A cohort is handed to one node only; a later node with an identical
    path gets none, so its patients are not counted twice.

    Args:
        leaf_cohorts: Output of :func:`allocate_cohorts`.
        taxonomy: Treatment nodes.

    Returns:
        Tuple of (node_id -> cohort, warnings).
    """
    cohorts_by_path = {cohort.path: cohort for cohort in leaf_cohorts}
    claimed: set[CohortPath] = set()
    node_to_cohort: dict[str, LeafCohort] = {}
    warnings: list[str] = []

    for node in taxonomy:
        path = CohortPath(
            subtype_key=node.subtype_key,
            setting_key=node.setting_dimension,
            line_key=node.line_key,
            regimen_key=node.regimen_key,
        )
        cohort = cohorts_by_path.get(path)
        if cohort is None:
            warnings.append(f"No matching cohort found for treatment node {node.node_id}")
            continue
        if path in claimed:
            warnings.append(
                f"Treatment node {node.node_id} duplicates the path of another node; "
                "it receives 0 patients"
            )
            continue
        claimed.add(path)
        node_to_cohort[node.node_id] = cohort

    for warning in warnings:
        logger.warning(warning)

    return node_to_cohort, warnings

"""Tabular views of demand and forecast results.

Roll-ups are built with polars so downstream export stages receive a single
DataFrame instead of walking record lists.
"""

import logging

import polars as pl

from cohort_demand.models import DemandNode, ForecastRecord, TreatmentNode

logger = logging.getLogger(__name__)

MG_PER_KG = 1_000_000

FORECAST_SCHEMA = {
    "year": pl.Int64,
    "node_id": pl.String,
    "scenario": pl.String,
    "treated_patients": pl.Int64,
    "patient_years": pl.Float64,
    "administered_mg_per_patient_year": pl.Int64,
    "dispensed_mg_per_patient_year": pl.Int64,
    "total_administered_mg": pl.Int64,
    "total_dispensed_mg": pl.Int64,
}

DIMENSION_ATTRIBUTES = {
    "subtype": "subtype_key",
    "setting": "setting_dimension",
    "line": "line_key",
}


def forecast_to_frame(records: list[ForecastRecord]) -> pl.DataFrame:
    """Convert forecast records into a DataFrame (one row per record)."""
    if not records:
        return pl.DataFrame(schema=FORECAST_SCHEMA)
    return pl.DataFrame([record.to_dict() for record in records], schema=FORECAST_SCHEMA)


def summarize_forecast(records: list[ForecastRecord]) -> pl.DataFrame:
    """Total demand per scenario and year.

    Args:
        records: Output of the forecast generator.

    Returns:
        DataFrame with columns scenario, year, treated_patients,
        patient_years, total_administered_mg, total_dispensed_mg,
        administered_kg, dispensed_kg, sorted by scenario and year.
    """
    df = forecast_to_frame(records)

    summary = (
        df.group_by(["scenario", "year"])
        .agg(
            pl.col("treated_patients").sum(),
            pl.col("patient_years").sum(),
            pl.col("total_administered_mg").sum(),
            pl.col("total_dispensed_mg").sum(),
        )
        .with_columns(
            (pl.col("total_administered_mg") / MG_PER_KG).alias("administered_kg"),
            (pl.col("total_dispensed_mg") / MG_PER_KG).alias("dispensed_kg"),
        )
        .sort(["scenario", "year"])
    )

    logger.debug(f"Summarized {df.height} forecast records into {summary.height} rows")
    return summary


def demand_by_dimension(
    taxonomy: list[TreatmentNode],
    demand_nodes: list[DemandNode],
    dimension: str,
) -> pl.DataFrame:
    """Roll dispensed and administered demand up by one dimension.

    Args:
        taxonomy: Treatment nodes (supply the dimension values).
        demand_nodes: Per-node demand.
        dimension: "subtype", "setting" or "line".

    Returns:
        DataFrame with the dimension column, treated_patients,
        total_administered_mg and total_dispensed_mg, largest dispensed
        first. Nodes without a value for the dimension are left out.

    Raises:
        ValueError: If ``dimension`` is unknown.
    """
    if dimension not in DIMENSION_ATTRIBUTES:
        raise ValueError(
            f"Unknown dimension '{dimension}', expected one of "
            f"{sorted(DIMENSION_ATTRIBUTES)}"
        )

    attribute = DIMENSION_ATTRIBUTES[dimension]
    values = {node.node_id: getattr(node, attribute) for node in taxonomy}

    rows = [
        {
            dimension: values.get(demand_node.node_id),
            "treated_patients": demand_node.treated_patients,
            "total_administered_mg": demand_node.total_administered_mg,
            "total_dispensed_mg": demand_node.total_dispensed_mg,
        }
        for demand_node in demand_nodes
        if values.get(demand_node.node_id)
    ]

    schema = {
        dimension: pl.String,
        "treated_patients": pl.Int64,
        "total_administered_mg": pl.Int64,
        "total_dispensed_mg": pl.Int64,
    }
    if not rows:
        return pl.DataFrame(schema=schema)

    return (
        pl.DataFrame(rows, schema=schema)
        .group_by(dimension)
        .agg(
            pl.col("treated_patients").sum(),
            pl.col("total_administered_mg").sum(),
            pl.col("total_dispensed_mg").sum(),
        )
        .sort(["total_dispensed_mg", dimension], descending=[True, False])
    )

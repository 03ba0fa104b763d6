"""Cohort Demand Engine.

Allocates a disease population to a tree of treatment regimens, converts
the allocation into drug demand and projects it across scenarios and years.
"""

from cohort_demand.config import Settings
from cohort_demand.models import (
    Assumptions,
    DemandNode,
    ForecastRecord,
    LeafCohort,
    TreatmentNode,
)

__version__ = "0.1.0"
__all__ = [
    "Settings",
    "Assumptions",
    "TreatmentNode",
    "LeafCohort",
    "DemandNode",
    "ForecastRecord",
]

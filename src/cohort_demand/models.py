"""Data models for the Cohort Demand Engine."""

from dataclasses import dataclass, field
from enum import Enum


class Route(str, Enum):
    """Route of administration."""

    IV = "IV"
    SC = "SC"
    PO = "PO"
    IM = "IM"
    OTHER = "other"


class DoseType(str, Enum):
    """How a dose value scales with the patient."""

    MG_PER_KG = "mg_per_kg"
    FIXED_MG = "fixed_mg"
    MG_PER_M2 = "mg_per_m2"
    OTHER = "other"


class PopulationModel(str, Enum):
    """Which epidemiological figure seeds the base pool."""

    PREVALENCE_BASED = "prevalence_based"
    INCIDENCE_BASED = "incidence_based"
    AUTO = "auto"


@dataclass(frozen=True)
class DoseAmount:
    """A dose value with its free-text unit (e.g. "mg/kg", "mg")."""

    value: float
    unit: str


@dataclass(frozen=True)
class LoadingDose:
    """Loading dose given at the start of therapy.

    Attributes:
        value: Dose value in ``unit``.
        unit: Free-text unit; its own type is inferred from this text.
        repeats: Number of loading administrations.
    """

    value: float
    unit: str
    repeats: int = 1


@dataclass(frozen=True)
class DoseSchema:
    """Dosing schedule for one regimen.

    Attributes:
        type: Declared dose type (may disagree with the maintenance unit).
        maintenance: Maintenance dose per administration.
        interval_days: Declared days between maintenance administrations.
        loading: Optional loading dose.
        notes: Free-text notes, mined for a better maintenance interval.
    """

    type: DoseType
    maintenance: DoseAmount
    interval_days: float
    loading: LoadingDose | None = None
    notes: str | None = None


@dataclass(frozen=True)
class TreatmentNode:
    """One concrete regimen in the treatment taxonomy.

    Attributes:
        node_id: Unique identifier of the node.
        regimen_key: Regimen identifier (leaf of the allocation tree).
        route: Route of administration, selects vial sizes.
        dose_schema: Dosing schedule.
        subtype_key: Disease subtype, if the taxonomy splits by subtype.
        setting_key: Treatment setting (adjuvant, metastatic, ...).
        stage_key: Disease stage, used when no setting is given.
        line_key: Line of therapy.
        regimen_name: Human-readable regimen name.
    """

    node_id: str
    regimen_key: str
    route: Route
    dose_schema: DoseSchema
    subtype_key: str | None = None
    setting_key: str | None = None
    stage_key: str | None = None
    line_key: str | None = None
    regimen_name: str | None = None

    @property
    def setting_dimension(self) -> str | None:
        """Value used for the setting level of the allocation tree."""
        return self.setting_key or self.stage_key


@dataclass(frozen=True)
class VialSize:
    """A dispensable vial presentation."""

    size_mg: float
    is_single_dose: bool = True


@dataclass(frozen=True)
class ScenarioParameters:
    """Named parameter deltas applied by the forecast.

    Attributes:
        incidence_cagr: Annual growth applied to incidence and prevalence.
        treated_rate_multiplier: Multiplier on the treated rate.
        tot_multiplier: Multiplier on every time-on-treatment entry.
        adoption_multiplier: Adoption delta, carried for downstream stages.
    """

    incidence_cagr: float = 0.0
    treated_rate_multiplier: float = 1.0
    tot_multiplier: float = 1.0
    adoption_multiplier: float = 1.0


@dataclass(frozen=True)
class Assumptions:
    """Epidemiological and dosing parameters for one forecasting run.

    Share maps are keyed by dimension value (subtype key, setting key, ...).
    ``stage_shares`` is used for the setting level when ``setting_shares`` is
    not given.
    """

    treated_rate: float = 0.85
    base_year: int = 2024
    horizon_years: int = 10
    incidence: float | None = None
    prevalence: float | None = None
    subtype_shares: dict[str, float] | None = None
    setting_shares: dict[str, float] | None = None
    stage_shares: dict[str, float] | None = None
    line_shares: dict[str, float] | None = None
    regimen_shares: dict[str, float] | None = None
    time_on_treatment_months: dict[str, float] | None = None
    avg_weight_kg: float = 70.0
    avg_weight_sd_kg: float | None = None
    relative_dose_intensity: float = 1.0
    vial_sizes: dict[str, list[VialSize]] = field(default_factory=dict)
    incidence_cagr: float | None = None
    scenarios: dict[str, ScenarioParameters] | None = None

    def vials_for_route(self, route: Route) -> list[VialSize]:
        """Return configured vial sizes for a route (empty if none)."""
        return list(self.vial_sizes.get(route.value, []))


@dataclass(frozen=True)
class AllocationTrace:
    """One step of an allocation decision.

    Attributes:
        step: Step name (``subtype_allocation``, ``regimen_equal_split``, ...).
        input_population: Population entering the step.
        output_population: Population leaving the step.
        share_applied: Share (or factor) multiplied in, if any.
        share_key: Dimension value or parameter the share belongs to.
        normalized: Whether the share map was renormalized.
        note: Free-text explanation.
    """

    step: str
    input_population: float
    output_population: float
    share_applied: float | None = None
    share_key: str | None = None
    normalized: bool | None = None
    note: str | None = None


@dataclass(frozen=True)
class CohortPath:
    """Tagged path key identifying a leaf of the allocation tree."""

    subtype_key: str | None
    setting_key: str | None
    line_key: str | None
    regimen_key: str

    @property
    def dimension_key(self) -> str:
        """Key of the path without the regimen, ``_`` for empty levels."""
        return "|".join(
            part or "_" for part in (self.subtype_key, self.setting_key, self.line_key)
        )


@dataclass
class LeafCohort:
    """Atomic unit of allocation.

    Attributes:
        cohort_id: Identifier built from the non-empty path parts.
        path: Dimension path of the cohort.
        patients: Patients allocated to the cohort.
        patient_years: Patients scaled by time on treatment.
        trace: Every allocation step that produced ``patients``.
    """

    cohort_id: str
    path: CohortPath
    patients: float
    patient_years: float
    trace: list[AllocationTrace] = field(default_factory=list)


@dataclass
class PopulationNode:
    """Population attached to one treatment node."""

    node_id: str
    eligible_patients: float
    treated_patients: float
    patient_years: float


@dataclass
class DemandNode:
    """Drug demand for one treatment node.

    Attributes:
        node_id: Treatment node identifier.
        treated_patients: Treated patients (rounded).
        administered_mg_per_patient_year: Annual administered dose.
        dispensed_mg_per_patient_year: Annual dose after vial rounding.
        total_administered_mg: Administered dose times patient-years.
        total_dispensed_mg: Dispensed dose times patient-years.
    """

    node_id: str
    treated_patients: int
    administered_mg_per_patient_year: int
    dispensed_mg_per_patient_year: int
    total_administered_mg: int
    total_dispensed_mg: int

    @property
    def wastage_mg(self) -> int:
        """Dispensed but not administered drug."""
        return self.total_dispensed_mg - self.total_administered_mg


@dataclass
class ForecastRecord:
    """Demand for one (year, node, scenario)."""

    year: int
    node_id: str
    scenario: str
    treated_patients: int
    patient_years: float
    administered_mg_per_patient_year: int
    dispensed_mg_per_patient_year: int
    total_administered_mg: int
    total_dispensed_mg: int

    def to_dict(self) -> dict[str, object]:
        """Convert to a plain dictionary for tabular output."""
        return {
            "year": self.year,
            "node_id": self.node_id,
            "scenario": self.scenario,
            "treated_patients": self.treated_patients,
            "patient_years": self.patient_years,
            "administered_mg_per_patient_year": self.administered_mg_per_patient_year,
            "dispensed_mg_per_patient_year": self.dispensed_mg_per_patient_year,
            "total_administered_mg": self.total_administered_mg,
            "total_dispensed_mg": self.total_dispensed_mg,
        }

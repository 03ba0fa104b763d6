"""Configuration management for the Cohort Demand Engine."""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from cohort_demand.compute.allocation import AllocationConfig
from cohort_demand.models import PopulationModel

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        log_level: Logging verbosity level.
        population_model: How the base pool is selected.
        share_sum_tolerance: Allowed deviation of a share sum from 1.0.
        max_renormalization_deviation: Largest deviation still renormalized.
        allow_share_renormalization: Whether share maps may be rescaled.
        allow_equal_regimen_split: Whether regimens without shares split evenly.
        max_population: Sanity ceiling for any base population.
    """

    log_level: str
    population_model: PopulationModel
    share_sum_tolerance: float
    max_renormalization_deviation: float
    allow_share_renormalization: bool
    allow_equal_regimen_split: bool
    max_population: float

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            ValueError: If POPULATION_MODEL is not a known model.
        """
        load_dotenv()

        log_level = os.getenv("LOG_LEVEL", "INFO")
        population_model = PopulationModel(os.getenv("POPULATION_MODEL", "auto"))
        share_sum_tolerance = float(os.getenv("SHARE_SUM_TOLERANCE", "0.05"))
        max_renormalization_deviation = float(
            os.getenv("MAX_RENORMALIZATION_DEVIATION", "0.15")
        )
        allow_share_renormalization = _env_bool("ALLOW_SHARE_RENORMALIZATION", "true")
        allow_equal_regimen_split = _env_bool("ALLOW_EQUAL_REGIMEN_SPLIT", "true")
        max_population = float(os.getenv("MAX_POPULATION", "350000000"))

        logger.debug(
            f"Loaded settings: log_level={log_level}, "
            f"population_model={population_model.value}, "
            f"share_sum_tolerance={share_sum_tolerance}, "
            f"allow_equal_regimen_split={allow_equal_regimen_split}"
        )

        return cls(
            log_level=log_level,
            population_model=population_model,
            share_sum_tolerance=share_sum_tolerance,
            max_renormalization_deviation=max_renormalization_deviation,
            allow_share_renormalization=allow_share_renormalization,
            allow_equal_regimen_split=allow_equal_regimen_split,
            max_population=max_population,
        )

    def to_allocation_config(self) -> AllocationConfig:
        """Build the allocation engine configuration from these settings."""
        return AllocationConfig(
            allow_share_renormalization=self.allow_share_renormalization,
            allow_equal_regimen_split=self.allow_equal_regimen_split,
            share_sum_tolerance=self.share_sum_tolerance,
            max_renormalization_deviation=self.max_renormalization_deviation,
            max_population=self.max_population,
            population_model=self.population_model,
        )

    def configure_logging(self) -> None:
        """Apply ``log_level`` to the root logger."""
        logging.basicConfig(level=self.log_level.upper(), format=LOG_FORMAT)
        logger.debug(f"Logging configured at {self.log_level.upper()}")

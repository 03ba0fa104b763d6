"""Tests for share, rate and population validation."""

import math

import pytest

from cohort_demand.exceptions import ShareValidationError
from cohort_demand.ingest.validators import (
    ValidationConfig,
    ValidationResult,
    aggregate_validation_results,
    raise_if_invalid,
    validate_population,
    validate_rate,
    validate_shares,
)


@pytest.fixture
def config() -> ValidationConfig:
    """Default validation policy."""
    return ValidationConfig()


class TestValidationResult:
    """Tests for ValidationResult dataclass."""

    def test_default_values(self) -> None:
        """ValidationResult should have sensible defaults."""
        result = ValidationResult()

        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []
        assert result.normalized_value is None


class TestValidateRate:
    """Tests for rate validation."""

    @pytest.mark.parametrize("rate", [0.0, 0.5, 1.0])
    def test_valid_rates(self, rate: float) -> None:
        """Rates in [0, 1] should pass unchanged."""
        result = validate_rate(rate, "treated_rate")

        assert result.is_valid is True
        assert result.normalized_value == rate

    def test_negative_rate_fails(self) -> None:
        """Negative rates should be rejected."""
        result = validate_rate(-0.1, "treated_rate")

        assert result.is_valid is False
        assert result.errors == ["treated_rate cannot be negative: -0.1"]

    def test_rate_above_one_fails(self) -> None:
        """Rates above 1.0 should be rejected."""
        result = validate_rate(1.5, "treated_rate")

        assert result.is_valid is False
        assert result.errors == ["treated_rate cannot exceed 1.0: 1.5"]

    def test_nan_rate_fails(self) -> None:
        """NaN should not pass as a number."""
        result = validate_rate(math.nan, "treated_rate")

        assert result.is_valid is False
        assert "must be a valid number" in result.errors[0]


class TestValidateShares:
    """Tests for share map validation and renormalization."""

    def test_exact_sum_unchanged(self, config: ValidationConfig) -> None:
        """Shares summing to 1.0 should pass without warnings."""
        shares = {"adjuvant": 0.4, "neoadjuvant": 0.25, "metastatic": 0.35}

        result, trace = validate_shares(shares, "setting_shares", config)

        assert result.is_valid is True
        assert result.warnings == []
        assert result.normalized_value == shares
        assert trace.normalized is False

    def test_slightly_high_sum_renormalized(self, config: ValidationConfig) -> None:
        """Sum of 1.10 should be rescaled with a warning naming the map."""
        shares = {"a": 0.5, "b": 0.35, "c": 0.25}

        result, trace = validate_shares(shares, "test_dim", config)

        assert result.is_valid is True
        normalized = result.normalized_value
        assert isinstance(normalized, dict)
        assert normalized["a"] == pytest.approx(0.5 / 1.10)
        assert normalized["c"] == pytest.approx(0.25 / 1.10)
        assert sum(normalized.values()) == pytest.approx(1.0)
        assert len(result.warnings) == 1
        assert "test_dim" in result.warnings[0]
        assert "1.1000" in result.warnings[0]
        assert trace.normalized is True
        assert trace.original_sum == pytest.approx(1.10)
        assert trace.original_shares == shares

    def test_large_excess_fails(self, config: ValidationConfig) -> None:
        """Sum of 1.6 cannot be allocated."""
        result, _ = validate_shares({"a": 0.8, "b": 0.8}, "line_shares", config)

        assert result.is_valid is False
        assert "Shares cannot exceed 1.0" in result.errors[0]
        assert "1.6000" in result.errors[0]

    def test_excess_fails_without_renormalization(self) -> None:
        """Excess within the deviation limit fails when rescaling is off."""
        config = ValidationConfig(allow_share_renormalization=False)

        result, _ = validate_shares({"a": 0.6, "b": 0.5}, "line_shares", config)

        assert result.is_valid is False

    def test_slightly_low_sum_renormalized(self, config: ValidationConfig) -> None:
        """Sum of 0.9 should be rescaled up to 1.0."""
        result, trace = validate_shares({"a": 0.5, "b": 0.4}, "setting_shares", config)

        assert result.is_valid is True
        normalized = result.normalized_value
        assert isinstance(normalized, dict)
        assert normalized["a"] == pytest.approx(0.5 / 0.9)
        assert trace.normalized is True

    def test_low_sum_kept_without_renormalization(self) -> None:
        """Sum of 0.9 passes unchanged but flagged as patient loss when rescaling is off."""
        config = ValidationConfig(allow_share_renormalization=False)
        shares = {"a": 0.5, "b": 0.4}

        result, trace = validate_shares(shares, "setting_shares", config)

        assert result.is_valid is True
        assert result.normalized_value == shares
        assert len(result.warnings) == 1
        assert "10.0% patient loss" in result.warnings[0]
        assert trace.normalized is False

    def test_large_shortfall_is_patient_loss(self, config: ValidationConfig) -> None:
        """Sum of 0.7 passes unchanged with a patient-loss warning."""
        shares = {"a": 0.5, "b": 0.2}

        result, trace = validate_shares(shares, "subtype_shares", config)

        assert result.is_valid is True
        assert result.normalized_value == shares
        assert "30.0% patient loss" in result.warnings[0]
        assert trace.normalized is False

    def test_empty_shares_fail(self, config: ValidationConfig) -> None:
        """An empty map cannot be allocated."""
        result, _ = validate_shares({}, "line_shares", config)

        assert result.is_valid is False
        assert result.errors == ["line_shares shares cannot be empty"]

    def test_negative_share_fails(self, config: ValidationConfig) -> None:
        """Negative entries should be rejected by key."""
        result, _ = validate_shares({"a": 1.1, "b": -0.1}, "line_shares", config)

        assert result.is_valid is False
        assert "line_shares[b] cannot be negative: -0.1" in result.errors

    def test_share_above_one_fails(self, config: ValidationConfig) -> None:
        """Single entries above 1.0 should be rejected."""
        result, _ = validate_shares({"a": 1.2}, "line_shares", config)

        assert result.is_valid is False
        assert "line_shares[a] cannot exceed 1.0: 1.2" in result.errors

    def test_nan_share_fails(self, config: ValidationConfig) -> None:
        """NaN entries should be rejected."""
        result, _ = validate_shares({"a": math.nan}, "line_shares", config)

        assert result.is_valid is False
        assert "must be a valid number" in result.errors[0]


class TestValidatePopulation:
    """Tests for population bounds."""

    def test_plausible_population_passes(self, config: ValidationConfig) -> None:
        """A million patients should pass quietly."""
        result = validate_population(1_000_000, "base_pool", config)

        assert result.is_valid is True
        assert result.warnings == []

    def test_negative_population_fails(self, config: ValidationConfig) -> None:
        """Negative populations should be rejected."""
        result = validate_population(-1, "base_pool", config)

        assert result.is_valid is False

    def test_large_population_warns(self, config: ValidationConfig) -> None:
        """Populations above 100M should warn but pass."""
        result = validate_population(150_000_000, "base_pool", config)

        assert result.is_valid is True
        assert "very large" in result.warnings[0]

    def test_population_above_ceiling_fails(self, config: ValidationConfig) -> None:
        """Populations above the ceiling should be rejected."""
        result = validate_population(400_000_000, "base_pool", config)

        assert result.is_valid is False
        assert "exceeds maximum allowed population" in result.errors[0]

    def test_ceiling_can_be_disabled(self) -> None:
        """max_population=None should disable the ceiling."""
        config = ValidationConfig(max_population=None)

        result = validate_population(400_000_000, "base_pool", config)

        assert result.is_valid is True
        assert len(result.warnings) == 1

    def test_nan_population_fails(self, config: ValidationConfig) -> None:
        """NaN populations should be rejected."""
        result = validate_population(math.nan, "base_pool", config)

        assert result.is_valid is False


class TestAggregation:
    """Tests for combining results and raising."""

    def test_aggregate_collects_everything(self) -> None:
        """Aggregated result should be invalid if any input is."""
        combined = aggregate_validation_results(
            [
                ValidationResult(warnings=["w1"]),
                ValidationResult(is_valid=False, errors=["e1"], warnings=["w2"]),
            ]
        )

        assert combined.is_valid is False
        assert combined.errors == ["e1"]
        assert combined.warnings == ["w1", "w2"]

    def test_raise_if_invalid_raises(self) -> None:
        """Invalid results should raise with context and errors."""
        result = validate_rate(2.0, "treated_rate")

        with pytest.raises(ShareValidationError) as excinfo:
            raise_if_invalid(result, "treated_rate")

        assert excinfo.value.context == "treated_rate"
        assert excinfo.value.errors == ["treated_rate cannot exceed 1.0: 2.0"]
        assert "Validation failed for treated_rate" in str(excinfo.value)

    def test_raise_if_invalid_passes_valid(self) -> None:
        """Valid results should not raise."""
        raise_if_invalid(ValidationResult(warnings=["just a warning"]), "x")

    def test_error_is_value_error(self) -> None:
        """ShareValidationError should be catchable as ValueError."""
        with pytest.raises(ValueError):
            raise_if_invalid(ValidationResult(is_valid=False, errors=["bad"]), "x")

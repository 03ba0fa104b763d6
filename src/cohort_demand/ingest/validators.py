"""Validation of shares, rates and population bounds.

Share maps may be renormalized when they drift slightly from 1.0. A map that
sums well below 1.0 is treated as deliberate patient loss (dimension values
that are not modelled) and passed through unchanged. A map that sums well
above 1.0 is always rejected: no more than 100% of patients can be allocated.
"""

import logging
import math
from dataclasses import dataclass, field

from cohort_demand.exceptions import ShareValidationError

logger = logging.getLogger(__name__)

DEFAULT_SHARE_SUM_TOLERANCE = 0.05
DEFAULT_MAX_RENORMALIZATION_DEVIATION = 0.15
DEFAULT_MAX_POPULATION = 350_000_000  # roughly the US population
LARGE_POPULATION_WARNING = 100_000_000


@dataclass
class ValidationConfig:
    """Tolerances and policies shared by all validators.

    Attributes:
        allow_share_renormalization: Rescale share maps that miss 1.0.
        allow_equal_regimen_split: Split a path evenly across regimens when
            no regimen shares apply to it.
        share_sum_tolerance: Deviation from 1.0 accepted without change.
        max_renormalization_deviation: Largest deviation that is still
            renormalized.
        max_population: Sanity ceiling for base populations (None disables).
    """

    allow_share_renormalization: bool = True
    allow_equal_regimen_split: bool = True
    share_sum_tolerance: float = DEFAULT_SHARE_SUM_TOLERANCE
    max_renormalization_deviation: float = DEFAULT_MAX_RENORMALIZATION_DEVIATION
    max_population: float | None = DEFAULT_MAX_POPULATION


@dataclass
class ValidationResult:
    """Result of a validation check.

    Attributes:
        is_valid: Whether the validation passed.
        errors: Hard errors; any entry makes the result invalid.
        warnings: Non-fatal issues detected.
        normalized_value: Value to use downstream (possibly rescaled).
    """

    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    normalized_value: float | dict[str, float] | None = None


@dataclass
class ShareValidationTrace:
    """Record of how a share map was validated."""

    original_shares: dict[str, float]
    original_sum: float = 0.0
    normalized_shares: dict[str, float] = field(default_factory=dict)
    normalized: bool = False
    warning: str | None = None


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not math.isnan(value)
    )


def validate_rate(rate: float, name: str) -> ValidationResult:
    """Validate that a rate lies in [0, 1].

    Args:
        rate: Rate to check (e.g. treated_rate).
        name: Name used in error messages.

    Returns:
        ValidationResult carrying the rate as ``normalized_value``.
    """
    result = ValidationResult(normalized_value=rate)

    if not _is_number(rate):
        result.is_valid = False
        result.errors.append(f"{name} must be a valid number, got: {rate}")
        return result

    if rate < 0:
        result.is_valid = False
        result.errors.append(f"{name} cannot be negative: {rate}")
    elif rate > 1:
        result.is_valid = False
        result.errors.append(f"{name} cannot exceed 1.0: {rate}")

    return result


def _renormalize(
    shares: dict[str, float],
    total: float,
    dimension_name: str,
    result: ValidationResult,
    trace: ShareValidationTrace,
) -> None:
    normalized = {key: value / total for key, value in shares.items()}
    trace.normalized_shares = normalized
    trace.normalized = True
    trace.warning = f"{dimension_name} shares summed to {total:.4f}, renormalized to 1.0"
    result.warnings.append(trace.warning)
    result.normalized_value = normalized


def validate_shares(
    shares: dict[str, float],
    dimension_name: str,
    config: ValidationConfig,
) -> tuple[ValidationResult, ShareValidationTrace]:
    """Validate and optionally renormalize a proportion map.

    Args:
        shares: Mapping of dimension value to share.
        dimension_name: Name used in messages (e.g. "setting_shares").
        config: Tolerances and renormalization policy.

    Returns:
        Tuple of (result, trace). ``result.normalized_value`` holds the map
        to allocate with when the result is valid.
    """
    result = ValidationResult()
    trace = ShareValidationTrace(original_shares=dict(shares or {}))

    if not shares:
        result.is_valid = False
        result.errors.append(f"{dimension_name} shares cannot be empty")
        return result, trace

    for key, value in shares.items():
        if not _is_number(value):
            result.is_valid = False
            result.errors.append(
                f"{dimension_name}[{key}] must be a valid number, got: {value}"
            )
            continue
        if value < 0:
            result.is_valid = False
            result.errors.append(f"{dimension_name}[{key}] cannot be negative: {value}")
        if value > 1:
            result.is_valid = False
            result.errors.append(f"{dimension_name}[{key}] cannot exceed 1.0: {value}")

    if not result.is_valid:
        return result, trace

    total = sum(shares.values())
    trace.original_sum = total
    deviation = abs(total - 1.0)

    if deviation <= config.share_sum_tolerance:
        trace.normalized_shares = dict(shares)
        result.normalized_value = dict(shares)
        return result, trace

    if total > 1.0:
        if (
            config.allow_share_renormalization
            and deviation <= config.max_renormalization_deviation
        ):
            _renormalize(shares, total, dimension_name, result, trace)
        else:
            result.is_valid = False
            result.errors.append(
                f"{dimension_name} shares must sum to ~1.0 "
                f"(tolerance: {config.share_sum_tolerance}). "
                f"Got: {total:.4f}. Shares cannot exceed 1.0."
            )
        return result, trace

    # Below 1.0: the missing mass is patients deliberately left unallocated
    trace.normalized_shares = dict(shares)
    result.normalized_value = dict(shares)

    if (
        deviation > config.max_renormalization_deviation
        or not config.allow_share_renormalization
    ):
        loss_pct = (1 - total) * 100
        result.warnings.append(
            f"{dimension_name} shares sum to {total:.4f} ({loss_pct:.1f}% patient loss). "
            "This may be intentional if not all dimension values are covered."
        )
    else:
        _renormalize(shares, total, dimension_name, result, trace)

    return result, trace


def validate_population(
    population: float,
    name: str,
    config: ValidationConfig,
) -> ValidationResult:
    """Validate that a population figure is plausible.

    Args:
        population: Population to check.
        name: Name used in messages.
        config: Supplies ``max_population``.

    Returns:
        ValidationResult; populations above 100M only produce a warning.
    """
    result = ValidationResult(normalized_value=population)

    if not _is_number(population):
        result.is_valid = False
        result.errors.append(f"{name} must be a valid number, got: {population}")
        return result

    if population < 0:
        result.is_valid = False
        result.errors.append(f"{name} cannot be negative: {population}")

    if config.max_population and population > config.max_population:
        result.is_valid = False
        result.errors.append(
            f"{name} ({population:,.0f}) exceeds maximum allowed population "
            f"({config.max_population:,.0f}). "
            "This may indicate incorrect epidemiology data."
        )

    if population > LARGE_POPULATION_WARNING:
        result.warnings.append(
            f"{name} is very large ({population:,.0f}). "
            "Please verify this is correct for the target geography."
        )

    return result


def aggregate_validation_results(results: list[ValidationResult]) -> ValidationResult:
    """Combine several results into one."""
    return ValidationResult(
        is_valid=all(r.is_valid for r in results),
        errors=[e for r in results for e in r.errors],
        warnings=[w for r in results for w in r.warnings],
    )


def raise_if_invalid(result: ValidationResult, context: str) -> None:
    """Raise on hard errors and log any warnings.

    Args:
        result: Result to check.
        context: What was validated, included in the error message.

    Raises:
        ShareValidationError: If ``result`` is not valid.
    """
    if not result.is_valid:
        raise ShareValidationError(context, result.errors)

    for warning in result.warnings:
        logger.warning(f"{context}: {warning}")

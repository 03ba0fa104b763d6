"""Maintenance interval inference from free-text dosing notes.

Upstream taxonomies often put the loading interval into ``interval_days``
while the notes describe the real maintenance schedule, e.g.
"600 mg loading dose, then every 6 months". The functions here only look at
text; they never touch dose arithmetic.

Recognized patterns:
- "maintenance every N months/weeks/days"
- "then / followed by / thereafter every N ..." (loading mentioned)
- "every N months" (loading mentioned, declared interval < 28 days)
- "q4w", "q6m", "q2d" codes (loading mentioned)
- "days 1 and 8 of a 21-day cycle" (2 doses per cycle)
- "days 1, 8, and 15 of a 28-day cycle" (3 doses per cycle)
"""

import re

DAYS_PER_UNIT = {
    "day": 1,
    "week": 7,
    "month": 30,  # approximate
}

# Minimum divergence (days) before notes override the declared interval
INTERVAL_OVERRIDE_THRESHOLD_DAYS = 7
CYCLE_OVERRIDE_THRESHOLD_DAYS = 1

LOADING_MARKERS = ("loading", "initial", "first month", "induction")

MAINTENANCE_PATTERN = re.compile(r"maintenance\s+every\s+(\d+)\s*(month|week|day)")
THEN_EVERY_PATTERN = re.compile(
    r"(?:then|followed by|thereafter)\s+(?:every\s+)?(\d+)\s*(month|week|day)"
)
EVERY_MONTHS_PATTERN = re.compile(r"every\s+(\d+)\s*(month)")
Q_CODE_PATTERN = re.compile(r"q(\d+)([mwd])")
TWO_DAY_CYCLE_PATTERN = re.compile(
    r"days?\s+(\d+)\s+and\s+(\d+)\s+of\s+(?:a\s+)?(\d+)[- ]day\s+cycle"
)
THREE_DAY_CYCLE_PATTERN = re.compile(
    r"days?\s+(\d+),\s*(\d+),?\s+and\s+(\d+)\s+of\s+(?:a\s+)?(\d+)[- ]day\s+cycle"
)

Q_CODE_UNITS = {"d": "day", "w": "week", "m": "month"}


def convert_to_days(value: int, unit: str) -> int | None:
    """Convert a count of days/weeks/months to days.

    Args:
        value: Number of units.
        unit: "day", "week" or "month" (plural accepted).

    Returns:
        Days, or None for an unknown unit.
    """
    per_unit = DAYS_PER_UNIT.get(unit.lower().rstrip("s"))
    if per_unit is None:
        return None
    return value * per_unit


def mentions_loading(notes: str) -> bool:
    """Whether the notes describe a separate loading/induction phase."""
    lowered = notes.lower()
    return any(marker in lowered for marker in LOADING_MARKERS)


def _diverges(interval: float, declared: float, threshold: float) -> bool:
    return abs(interval - declared) > threshold


def infer_maintenance_interval(
    notes: str | None,
    declared_interval_days: float,
) -> float | None:
    """Infer a maintenance interval that should override the declared one.

    Args:
        notes: Free-text dosing notes.
        declared_interval_days: Interval from the dose schema.

    Returns:
        The inferred interval in days when the notes carry a stronger signal
        that diverges from the declared interval, otherwise None.
    """
    if not notes:
        return None

    text = notes.lower()

    match = MAINTENANCE_PATTERN.search(text)
    if match:
        interval = convert_to_days(int(match.group(1)), match.group(2))
        if interval and _diverges(
            interval, declared_interval_days, INTERVAL_OVERRIDE_THRESHOLD_DAYS
        ):
            return float(interval)

    has_loading = mentions_loading(text)

    if has_loading:
        match = THEN_EVERY_PATTERN.search(text)
        if match:
            interval = convert_to_days(int(match.group(1)), match.group(2))
            if interval and _diverges(
                interval, declared_interval_days, INTERVAL_OVERRIDE_THRESHOLD_DAYS
            ):
                return float(interval)

        # Declared interval looks like a loading interval, notes say months
        match = EVERY_MONTHS_PATTERN.search(text)
        if match:
            interval = convert_to_days(int(match.group(1)), match.group(2))
            if interval and interval > 60 and declared_interval_days < 28:
                return float(interval)

        match = Q_CODE_PATTERN.search(text)
        if match:
            unit = Q_CODE_UNITS[match.group(2)]
            interval = convert_to_days(int(match.group(1)), unit)
            if interval and _diverges(
                interval, declared_interval_days, INTERVAL_OVERRIDE_THRESHOLD_DAYS
            ):
                return float(interval)

    match = TWO_DAY_CYCLE_PATTERN.search(text)
    if match:
        effective = int(match.group(3)) / 2
        if _diverges(effective, declared_interval_days, CYCLE_OVERRIDE_THRESHOLD_DAYS):
            return effective

    match = THREE_DAY_CYCLE_PATTERN.search(text)
    if match:
        effective = int(match.group(4)) / 3
        if _diverges(effective, declared_interval_days, CYCLE_OVERRIDE_THRESHOLD_DAYS):
            return effective

    return None

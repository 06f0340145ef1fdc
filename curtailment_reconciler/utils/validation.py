"""
Input validation utilities for the reconciliation engine.

Provides reusable validation functions for operator-supplied values such as
settlement dates, date ranges, miner models and run IDs, so that bad input is
rejected before any database work starts.
"""

import re
from datetime import date, datetime


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


# Longest range a single invocation accepts (roughly a decade of settlement days)
MAX_RANGE_DAYS = 3700


def validate_settlement_date(value: str | date, field_name: str = "date") -> date:
    """
    Validate and parse a settlement date.

    Args:
        value: A date or a "YYYY-MM-DD" string
        field_name: Name of the field (for error messages)

    Returns:
        The parsed date

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_settlement_date("2025-03-21")
        datetime.date(2025, 3, 21)
        >>> validate_settlement_date("21/03/2025")  # doctest: +SKIP
        ValidationError: date must be in YYYY-MM-DD format
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if not value or not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()
    if not re.match(r"^\d{4}-\d{2}-\d{2}$", value):
        raise ValidationError(f"{field_name} must be in YYYY-MM-DD format, got {value!r}")

    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"{field_name} is not a valid calendar date: {value!r}") from e


def validate_date_range(
    start: str | date,
    end: str | date,
    max_days: int = MAX_RANGE_DAYS
) -> tuple[date, date]:
    """
    Validate an inclusive date range.

    Args:
        start: First date
        end: Last date (inclusive)
        max_days: Maximum number of days the range may span

    Returns:
        (start, end) as dates

    Raises:
        ValidationError: If either date is invalid, start is after end, or the
            range is too long
    """
    start_date = validate_settlement_date(start, "start")
    end_date = validate_settlement_date(end, "end")

    if start_date > end_date:
        raise ValidationError(f"start ({start_date}) must not be after end ({end_date})")

    span = (end_date - start_date).days + 1
    if span > max_days:
        raise ValidationError(f"date range spans {span} days, maximum is {max_days}")

    return start_date, end_date


def validate_variant(variant: str, field_name: str = "variant") -> str:
    """
    Validate a miner model (derivation variant) name.

    Variant names are upper-cased; only letters, digits and underscores are
    allowed.

    Examples:
        >>> validate_variant("s19j_pro")
        'S19J_PRO'
    """
    if not variant or not isinstance(variant, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    variant = variant.strip().upper()
    if not re.match(r"^[A-Z0-9_]+$", variant):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only letters, digits and underscores are allowed."
        )

    if len(variant) > 32:
        raise ValidationError(f"{field_name} exceeds maximum length of 32 characters")

    return variant


def validate_positive_int(value: int, field_name: str, max_value: int = 10000) -> int:
    """
    Validate a positive integer option such as batch size or concurrency.

    Raises:
        ValidationError: If value is not an integer in 1..max_value
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer, got {type(value).__name__}")

    if value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {value}")

    if value > max_value:
        raise ValidationError(f"{field_name} exceeds maximum of {max_value}")

    return value


def validate_run_id(run_id: str, field_name: str = "run_id") -> str:
    """
    Validate a run identifier.

    Run IDs name progress log files, so they are restricted to characters
    that are safe in file names.

    Examples:
        >>> validate_run_id("reconcile_20250321T120000")
        'reconcile_20250321T120000'
    """
    if not run_id or not isinstance(run_id, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    run_id = run_id.strip()
    if not run_id:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not re.match(r"^[a-zA-Z0-9_\-\.]+$", run_id) or run_id.startswith("."):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, and dots are allowed."
        )

    if len(run_id) > 128:
        raise ValidationError(f"{field_name} exceeds maximum length of 128 characters")

    return run_id

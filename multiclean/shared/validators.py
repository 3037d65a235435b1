"""Shared validation utilities"""

from datetime import date, datetime
from typing import Iterable, Optional, Union


def validate_choice(value: Optional[str], choices: Iterable[str], field: str = "value") -> Optional[str]:
    """
    Validate that a value is one of the allowed choices.

    Raises:
        ValueError: If the value is not allowed
    """
    if value is None:
        return value

    allowed = tuple(choices)
    if value not in allowed:
        raise ValueError(f"Invalid {field}. Use: {', '.join(allowed)}")
    return value


def validate_positive_int(value: Optional[int], field: str = "value") -> Optional[int]:
    """Validate an optional integer is at least 1"""
    if value is None:
        return value
    if value < 1:
        raise ValueError(f"{field} must be at least 1")
    return value


def parse_iso_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Parse a YYYY-MM-DD (or full ISO timestamp) string into a date.

    Raises:
        ValueError: If the string is not a valid ISO date
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise ValueError(f"Invalid date: {value}") from e


def to_float(value, default: float = 0.0) -> float:
    """Lenient numeric parse for bed/bath counts stored as text or numbers"""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default

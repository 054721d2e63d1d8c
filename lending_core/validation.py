"""
Input validation helpers

Explicit precondition checks used at the start of each operation. Every check
raises ValidationError with a message suitable for returning to the caller.
"""

from datetime import date, datetime
from typing import Any, Union

from .exceptions import ValidationError


def require_positive_int(value: Any, field_name: str) -> int:
    """Return value if it is an int greater than zero"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}")
    if value <= 0:
        raise ValidationError(f"{field_name} must be positive, got {value}")
    return value


def parse_date(value: Union[str, date, datetime], field_name: str = "date") -> date:
    """
    Accept a date, a datetime (its date part is used) or an ISO 8601 string

    Raises:
        ValidationError: If the value is not a valid calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            # Timestamps such as "2024-01-31 10:00:00" are allowed; only the date counts
            return datetime.fromisoformat(value).date()
        except ValueError:
            raise ValidationError(f"{field_name} is not a valid ISO date: {value!r}")
    raise ValidationError(f"{field_name} must be a date, got {value!r}")

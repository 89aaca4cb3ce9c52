"""Shared service-layer helpers.

get_active:    fetch a non-deleted record or raise NotFoundError
parse_date:    lenient date parsing (returns None on bad input)
require_date:  strict date parsing (raises ValidationError)
parse_number:  numeric coercion for JSON bodies (raises ValidationError)
parse_sequence: non-negative whole number with a fallback for blank values
parse_id:      integer id from a query-string filter (raises ValidationError)
"""
import logging
import math
from datetime import date, datetime

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db

logger = logging.getLogger(__name__)


def get_active(model, pk, label=None):
    """Return the record with primary key ``pk`` unless missing or soft-deleted.

    Usage::

        material = get_active(Material, material_id)

    Raises:
        NotFoundError: record does not exist or has ``deleted_at`` set.
    """
    label = label or model.__name__
    try:
        pk = int(pk)
    except (TypeError, ValueError):
        raise NotFoundError(label, pk)
    obj = db.session.get(model, pk)
    if obj is None or getattr(obj, "deleted_at", None) is not None:
        raise NotFoundError(label, pk)
    return obj


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (→ .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def require_date(value, field):
    """Like parse_date() but raises ValidationError when the value is unusable."""
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"{field} must be a valid date (YYYY-MM-DD)", details={field: "invalid date"},
        )
    return parsed


def parse_number(value, field, *, required=False, minimum=None, exclusive_minimum=None):
    """Coerce a JSON value to float.

    Args:
        value: Raw value from the request body.
        field: Field name used in error messages.
        required: Raise when the value is missing.
        minimum: Inclusive lower bound.
        exclusive_minimum: Exclusive lower bound (e.g. 0 for "greater than 0").

    Returns:
        float, or None when the value is missing and not required.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: "not a number"})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "not a number"})
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number", details={field: "not a number"})
    if exclusive_minimum is not None and number <= exclusive_minimum:
        raise ValidationError(
            f"{field} must be greater than {exclusive_minimum:g}", details={field: "too small"},
        )
    if minimum is not None and number < minimum:
        raise ValidationError(
            f"{field} cannot be less than {minimum:g}", details={field: "too small"},
        )
    return number


def parse_sequence(value, field="sequence", *, default=None) -> int:
    """Whole number >= 0. Blank or missing gives ``default``; without one it is required."""
    number = parse_number(value, field, required=default is None, minimum=0)
    if number is None:
        return default
    if not number.is_integer():
        raise ValidationError(f"{field} must be a whole number", details={field: "not an integer"})
    return int(number)


def parse_id(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: value})


def clean_str(value, max_len=None):
    """Strip a string field; empty strings become None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:max_len] if max_len else text

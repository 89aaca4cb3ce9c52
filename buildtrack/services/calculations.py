"""
Material quantity and cost calculations.

Pure functions, no database access. Shared by the material service,
purchase-order delivery confirmation and discrepancy detection.
"""


def _num(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def calculate_total_cost(quantity, unit_cost) -> float:
    """quantity × unit_cost rounded to 2 places; 0 if either is missing or negative."""
    q = _num(quantity)
    c = _num(unit_cost)
    if q is None or c is None or q < 0 or c < 0:
        return 0.0
    return round(q * c, 2)


def calculate_remaining_quantity(purchased, delivered, used) -> float:
    """Stock still on hand.

    Nothing delivered yet → the whole purchased quantity is outstanding.
    Otherwise remaining = max(0, delivered − used).
    """
    purchased = _num(purchased) or 0.0
    delivered = _num(delivered) or 0.0
    used = _num(used) or 0.0
    if delivered == 0:
        return purchased
    return max(0.0, delivered - used)


def calculate_wastage(purchased, delivered, used) -> float:
    """Percentage of purchased quantity not consumed, clamped to 0..100."""
    purchased = _num(purchased) or 0.0
    delivered = _num(delivered) or 0.0
    used = _num(used) or 0.0
    if purchased == 0 or delivered == 0:
        return 0.0
    pct = round((purchased - used) / purchased * 100, 2)
    return min(100.0, max(0.0, pct))


def validate_quantities(purchased, delivered, used) -> list[str]:
    """Return human-readable errors for an inconsistent quantity triple."""
    errors = []
    purchased = _num(purchased) or 0.0
    delivered = _num(delivered) or 0.0
    used = _num(used) or 0.0
    if purchased <= 0:
        errors.append("Quantity purchased must be greater than 0")
    if delivered < 0:
        errors.append("Delivered quantity cannot be negative")
    elif delivered > purchased:
        errors.append(
            f"Delivered quantity ({delivered:g}) cannot exceed purchased quantity ({purchased:g})"
        )
    if used < 0:
        errors.append("Used quantity cannot be negative")
    elif used > delivered:
        errors.append(
            f"Used quantity ({used:g}) cannot exceed delivered quantity ({delivered:g})"
        )
    return errors


def percentage(part, whole, ndigits=1) -> float:
    """part / whole × 100, 0 when whole is 0."""
    part = _num(part) or 0.0
    whole = _num(whole) or 0.0
    if whole == 0:
        return 0.0
    return round(part / whole * 100, ndigits)

"""Small helpers shared by the context renderers."""
from datetime import date, datetime, timezone
from typing import Any, Optional


def to_number(value: Any) -> float:
    """Coerce a numeric column (may arrive as str/None) to float, 0 when invalid."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def format_number(value: Any) -> str:
    """Thousands separators, at most two decimals: 1234.5 -> '1,234.5'."""
    number = to_number(value)
    if number == int(number):
        return f"{int(number):,}"
    return f"{number:,.2f}".rstrip("0").rstrip(".")


def format_percent(numerator: float, denominator: float) -> str:
    """One-decimal ratio as a percentage, '0' when the denominator is empty."""
    if not denominator:
        return "0"
    return f"{numerator / denominator * 100:.1f}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO date/timestamp column into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def date_part(value: Any) -> str:
    """'2025-03-04T10:00:00Z' -> '2025-03-04'; 'N/A' when missing."""
    if not value:
        return "N/A"
    return str(value).split("T")[0]


def truncate(value: Any, length: int) -> str:
    """First ``length`` characters of a possibly missing text column."""
    return str(value or "")[:length]


def count_by(rows, key, default: str = "N/A") -> dict:
    """Group rows by a column and count, keeping first-seen order."""
    counts: dict = {}
    for row in rows:
        bucket = row.get(key) or default
        counts[bucket] = counts.get(bucket, 0) + 1
    return counts


def nested(row: dict, *path: str, default: Any = None) -> Any:
    """Follow embedded relations: nested(inv, 'projects', 'clients', 'company_name')."""
    current: Any = row
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current

"""
Formatting helpers for API responses and timestamps.
"""
from decimal import Decimal
from datetime import date, datetime, timezone
from typing import Any, Optional, Union


def utc_now() -> datetime:
    """Current time as naive UTC, the way timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_iso8601(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 string into naive UTC.

    Accepts a trailing "Z". Returns None for empty or unparseable input,
    callers decide whether that is an error.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str):
        return None
    s = value.strip()
    if s.endswith('Z'):
        s = s[:-1] + '+00:00'
    try:
        return to_naive_utc(datetime.fromisoformat(s))
    except ValueError:
        return None


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def json_ready(value: Any) -> Any:
    """
    Recursively convert Decimals to floats and dates to ISO strings.

    Used right before jsonify so API amounts are numbers, not strings.
    """
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_ready(v) for v in value]
    return value


def money_idr(value: Union[int, float, Decimal, None]) -> str:
    """
    Format an amount in Indonesian style: "Rp 10.000" (dot thousands separator).

    Fractions are shown with a comma only when non-zero.
    """
    if value is None:
        return 'Rp 0'
    amount = Decimal(str(value)).quantize(Decimal('0.01'))
    sign = '-' if amount < 0 else ''
    amount = abs(amount)
    integer_part = int(amount)
    cents = int((amount - integer_part) * 100)
    grouped = f"{integer_part:,}".replace(',', '.')
    if cents:
        return f"Rp {sign}{grouped},{cents:02d}"
    return f"Rp {sign}{grouped}"

# paperworth/utils.py
# small parsing / formatting helpers shared by the services
import math
from datetime import date, datetime, timezone
from typing import Optional

import pandas as pd


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value) -> Optional[datetime]:
    """Parse backend dates (ISO strings, 'YYYY-MM-DD', datetimes) into naive UTC datetimes.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    ts = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(ts):
        return None
    return ts.tz_convert(None).to_pydatetime()


def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC datetime as naive local wall-clock time."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)


def to_float(value, default=0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def round_half_up(value: float) -> int:
    # percentages on progress bars round .5 upwards
    return int(math.floor(value + 0.5))


def format_money(amount) -> str:
    return f"${to_float(amount):,.2f}"

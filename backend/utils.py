#file: backend/utils.py

import re
from datetime import date, datetime
import pytz
from typing import Tuple

AGGREGATION_PATTERN = re.compile(r"^[1-9][0-9]*(s|m|h|d)$")


def get_current_time() -> str:
    """Get current UTC time as a formatted string."""
    return datetime.now(pytz.utc).isoformat()


def parse_date_range(start_date: str | None, end_date: str | None) -> Tuple[date, date]:
    """Parse YYYY-MM-DD bounds; a missing start or end means today."""
    today = datetime.now(pytz.utc).date()
    start = datetime.strptime(start_date, "%Y-%m-%d").date() if start_date else today
    end = datetime.strptime(end_date, "%Y-%m-%d").date() if end_date else today
    if start > end:
        raise ValueError("Invalid date range: start_date must be <= end_date")
    return start, end


def validate_aggregation(aggregation: str) -> str:
    """Accept Flux durations such as 30s, 1m, 1h or 1d."""
    if not AGGREGATION_PATTERN.match(aggregation):
        raise ValueError(f"Invalid aggregation interval: {aggregation}")
    return aggregation

"""
Date tools - current time and simple date arithmetic for LLM agents.

Offered to agents created with ``tool_policy=AUTO``; the completion adapter
executes them when the model asks and feeds the result back.
"""

from datetime import datetime, timedelta, timezone

from langchain_core.tools import tool


@tool
def get_date_time() -> str:
    """Return the current local date and time (ISO 8601)."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


@tool
def get_date_time_utc() -> str:
    """Return the current UTC date and time (ISO 8601)."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@tool
def add_days(days_to_add: int) -> str:
    """Add a number of days (may be negative) to the current local date and time and return the result (ISO 8601)."""
    result = datetime.now().astimezone() + timedelta(days=days_to_add)
    return result.isoformat(timespec="seconds")


@tool
def subtract_dates(start_date: str, end_date: str) -> str:
    """Return the interval between two ISO 8601 dates as days, hours, minutes. start_date must not be after end_date."""
    start = datetime.fromisoformat(start_date)
    end = datetime.fromisoformat(end_date)
    if start > end:
        raise ValueError(f"start_date ({start_date}) must be earlier than end_date ({end_date})")
    delta = end - start
    hours, remainder = divmod(delta.seconds, 3600)
    minutes = remainder // 60
    return f"{delta.days} day(s), {hours} hour(s), {minutes} minute(s)"


DATE_TOOLS = [get_date_time, get_date_time_utc, add_days, subtract_dates]

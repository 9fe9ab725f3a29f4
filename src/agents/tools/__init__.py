"""
Agent tools - LangChain tools offered to LLM agents.

Tools run only under ``ToolPolicy.AUTO``; the router never binds tools.
"""

from .date_tools import DATE_TOOLS, add_days, get_date_time, get_date_time_utc, subtract_dates

__all__ = [
    "DATE_TOOLS",
    "add_days",
    "get_date_time",
    "get_date_time_utc",
    "subtract_dates",
]

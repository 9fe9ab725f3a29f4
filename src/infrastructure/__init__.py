"""
Infrastructure layer - pure plumbing (DB, LLM, config, logging, tracing).

No agent logic here. Just connections, clients, and configuration loading.
"""

from .log import setup_logging
from .observability import observe, flush, get_tracer

__all__ = [
    "setup_logging",
    "observe",
    "flush",
    "get_tracer",
]

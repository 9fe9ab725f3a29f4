"""
LLM layer - provider factories and the completion contract.

  get_agent_llm()        → ChatOpenAI for specialised agents
  get_router_llm()       → ChatOpenAI for route decisions (temperature 0)
  LangChainCompletion    → adapts a LangChain chat model to ``ChatCompletion``
"""

from .completion import (
    ChatCompletion,
    CompletionChunk,
    CompletionResult,
    ExecutionSettings,
    LangChainCompletion,
    ToolPolicy,
    Usage,
    usage_from_message,
)
from .llm_provider import get_agent_llm, get_router_llm

__all__ = [
    "ChatCompletion",
    "CompletionChunk",
    "CompletionResult",
    "ExecutionSettings",
    "LangChainCompletion",
    "ToolPolicy",
    "Usage",
    "get_agent_llm",
    "get_router_llm",
    "usage_from_message",
]

"""
Chat LLM providers - 2-model architecture.

  - Agent:  free-form specialised answers (streaming-capable, tool calls)
  - Router: deterministic JSON route decisions (temperature 0)
"""

from typing import Any, Optional

from langchain_openai import ChatOpenAI

from infrastructure.config import (
    AGENT_MODEL,
    AGENT_PROVIDER,
    LLM_MAX_RETRIES,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    OPENROUTER_BASE_URL,
    ROUTER_MODEL,
    ROUTER_PROVIDER,
    get_api_key,
)


def _build_llm(
    model: str,
    provider: str,
    temperature: float = 0,
    max_tokens: Optional[int] = None,
    **kwargs: Any,
) -> ChatOpenAI:
    """Internal factory - builds a ChatOpenAI for any provider."""
    llm_kwargs: dict[str, Any] = dict(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=LLM_TIMEOUT_SECONDS,
        # Transient API errors are retried here, never by the router loop
        max_retries=LLM_MAX_RETRIES,
        # Final streamed chunk carries aggregate token usage
        stream_usage=True,
        **kwargs,
    )

    if provider == "openrouter":
        llm_kwargs["openai_api_base"] = OPENROUTER_BASE_URL
        llm_kwargs["openai_api_key"] = get_api_key("openrouter")
    elif provider == "openai":
        llm_kwargs["openai_api_key"] = get_api_key("openai")

    return ChatOpenAI(**llm_kwargs)


def get_agent_llm(
    model: Optional[str] = None,
    temperature: float = LLM_TEMPERATURE,
    **kwargs: Any,
) -> ChatOpenAI:
    """LLM for specialised agents.

    ``model`` overrides the configured agent model for one roster entry.
    """
    return _build_llm(
        model or AGENT_MODEL,
        AGENT_PROVIDER,
        temperature=temperature,
        max_tokens=LLM_MAX_TOKENS,
        **kwargs,
    )


def get_router_llm(**kwargs: Any) -> ChatOpenAI:
    """LLM for route decisions.

    Temperature is pinned to 0 so the same history yields the same decision.
    """
    return _build_llm(ROUTER_MODEL, ROUTER_PROVIDER, temperature=0, **kwargs)

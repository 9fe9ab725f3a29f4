"""
Observability layer - OpenTelemetry tracing for agent turns and goal pursuit.

Provides:
- ``get_tracer()``                 - tracer from the process-wide provider
- ``fetch_prompt()``               - resolve a named prompt (config override or local Mustache)
- ``observe``                      - config-aware span decorator (sync and async functions)
- ``update_current_trace``         - tag the current span with session id / agent id
- ``update_current_observation``   - attach I/O, model and token usage
- ``flush()``                      - ensure spans are exported before process exit

Configuration:
    .env may contain:
        OTEL_EXPORTER_OTLP_ENDPOINT   (e.g. http://localhost:4318)
        OTEL_SERVICE_NAME             (default: goal-router)

    config/param.yaml (or OBSERVABILITY_ENABLED in .env):
        observability:
          enabled: true

When disabled every decorator is a passthrough and every helper a no-op.
"""

import functools
import inspect
import os
from typing import Any, Dict, Optional

import chevron
from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from infrastructure.config import OBSERVABILITY_ENABLED, OTEL_SERVICE_NAME, PROMPT_TEMPLATES

_TRACER_NAME = "goal-router"


def _is_enabled() -> bool:
    return OBSERVABILITY_ENABLED


# ---------------------------------------------------------------------------
# Singleton tracer provider
# ---------------------------------------------------------------------------

_provider: Optional[TracerProvider] = None
_initialised = False


def get_tracer_provider() -> Optional[TracerProvider]:
    """
    Return the process-wide TracerProvider, installing it on first use.

    Returns None if observability is disabled.
    """
    global _provider, _initialised
    if _initialised:
        return _provider

    _initialised = True

    if not _is_enabled():
        logger.info("Observability disabled via config - tracing not initialised.")
        return None

    provider = TracerProvider(resource=Resource.create({"service.name": OTEL_SERVICE_NAME}))
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
        logger.info("OpenTelemetry tracing initialised (endpoint={})", endpoint)
    else:
        logger.warning(
            "OTEL_EXPORTER_OTLP_ENDPOINT not set. Spans are recorded but not exported."
        )

    trace.set_tracer_provider(provider)
    _provider = provider
    return _provider


def get_tracer() -> trace.Tracer:
    """Tracer for agent spans (a no-op tracer when observability is off)."""
    get_tracer_provider()
    return trace.get_tracer(_TRACER_NAME)


# ---------------------------------------------------------------------------
# Prompt resolution - config override with local Mustache fallback
# ---------------------------------------------------------------------------


def fetch_prompt(
    name: str,
    *,
    fallback: str,
    **compile_vars: Any,
) -> str:
    """
    Resolve a named prompt template and render it.

    Templates use ``{{variable}}`` Mustache syntax. A template registered
    under ``name`` in the ``prompts`` section of config/param.yaml wins over
    the built-in ``fallback``, so prompts can be tuned without a code change.

    Args:
        name:  Prompt name (e.g. ``"goal-router-system"``).
        fallback:  Built-in template used when no override exists.
        **compile_vars:  Variables to substitute into the template.

    Returns:
        Compiled prompt string ready to send to the LLM.
    """
    template = PROMPT_TEMPLATES.get(name)
    if template:
        logger.debug("Prompt '{}' loaded from config", name)
    else:
        template = fallback
    return chevron.render(template, compile_vars, partials_path=None)


# ---------------------------------------------------------------------------
# @observe decorator
# ---------------------------------------------------------------------------


def observe(
    *,
    name: Optional[str] = None,
    as_type: Optional[str] = None,
):
    """
    Decorator that runs the wrapped function inside a span (sync and async).

    Falls back to a passthrough when observability is disabled in config.

    Args:
        name: Span name (defaults to the function's qualified name).
        as_type: ``"generation"`` for LLM calls, ``None`` for a plain span.
    """
    def _noop_decorator(fn):
        return fn

    if not _is_enabled():
        return _noop_decorator

    def decorator(fn):
        span_name = name or fn.__qualname__
        attributes = {"observation.type": as_type or "span"}

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                with get_tracer().start_as_current_span(span_name, attributes=attributes):
                    return await fn(*args, **kwargs)
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            with get_tracer().start_as_current_span(span_name, attributes=attributes):
                return fn(*args, **kwargs)
        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Trace & observation update helpers
# ---------------------------------------------------------------------------


def _current_span() -> Optional[trace.Span]:
    if not _is_enabled():
        return None
    span = trace.get_current_span()
    return span if span.is_recording() else None


def update_current_trace(
    *,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    tags: Optional[list] = None,
) -> None:
    """
    Tag the current span with session info.

    Tracing failures are logged at debug level and never reach the caller.
    """
    span = _current_span()
    if span is None:
        return
    attributes: Dict[str, Any] = {}
    if session_id is not None:
        attributes["session.id"] = session_id
    if user_id is not None:
        attributes["user.id"] = user_id
    if tags is not None:
        attributes["tags"] = [str(t) for t in tags]
    for key, value in (metadata or {}).items():
        attributes[f"metadata.{key}"] = str(value)
    try:
        span.set_attributes(attributes)
    except Exception as exc:
        logger.debug("update_current_trace failed (non-critical): {}", exc)


def update_current_observation(
    *,
    input: Optional[str] = None,
    output: Optional[str] = None,
    metadata: Optional[dict] = None,
    usage: Optional[dict] = None,
    model: Optional[str] = None,
) -> None:
    """
    Attach I/O and usage data to the current span.

    ``model`` and ``usage`` follow the OpenTelemetry GenAI attribute names
    (``gen_ai.request.model``, ``gen_ai.usage.*``).
    """
    span = _current_span()
    if span is None:
        return

    attributes: Dict[str, Any] = {}
    if input is not None:
        attributes["input.value"] = input
    if output is not None:
        attributes["output.value"] = output
    if model is not None:
        attributes["gen_ai.request.model"] = model
    for key, value in (usage or {}).items():
        attributes[f"gen_ai.usage.{key}_tokens"] = int(value)
    for key, value in (metadata or {}).items():
        attributes[f"metadata.{key}"] = str(value)

    try:
        span.set_attributes(attributes)
    except Exception as exc:
        logger.debug("update_current_observation failed (non-critical): {}", exc)


def flush() -> None:
    """Flush pending spans (call before program exit)."""
    if not _is_enabled() or _provider is None:
        return
    try:
        _provider.force_flush()
        logger.debug("Tracer provider flushed.")
    except Exception as exc:
        logger.debug("Tracer flush failed: {}", exc)

"""
Tests for logging, prompt resolution and the tracing switch.
"""
import logging

import pytest
from loguru import logger

from infrastructure import observability
from infrastructure.log import setup_logging


def test_setup_logging_intercepts_stdlib():
    records = []
    setup_logging("DEBUG")
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        logging.getLogger("goal_router.test").warning("from stdlib")
    finally:
        logger.remove(handler_id)
    assert any(r["message"] == "from stdlib" for r in records)


def test_fetch_prompt_fallback():
    assert observability.fetch_prompt("missing", fallback="Hi {{{who}}}", who="R&D") == "Hi R&D"


def test_fetch_prompt_config_override(monkeypatch):
    monkeypatch.setitem(observability.PROMPT_TEMPLATES, "greeting", "Hello {{{who}}} from config")
    assert observability.fetch_prompt("greeting", fallback="unused", who="Planner") == "Hello Planner from config"


@pytest.mark.asyncio
async def test_observe_is_passthrough_when_disabled():
    async def turn():
        return "ok"

    assert observability.observe(name="turn")(turn) is turn
    assert await turn() == "ok"
    observability.update_current_trace(session_id="S1")
    observability.update_current_observation(output="ok")
    observability.flush()

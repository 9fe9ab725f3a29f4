"""
Test configuration
"""
import os
import sys
from collections import deque
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# No tracing and no real keys while testing
os.environ["OBSERVABILITY_ENABLED"] = "false"
os.environ.setdefault("OPENAI_API_KEY", "test_openai_key")
os.environ.setdefault("OPENROUTER_API_KEY", "test_openrouter_key")

from agents.human_proxy import HumanProxy  # noqa: E402
from history import AgentMessage, InMemoryMessageStore, Role, SqlMessageStore  # noqa: E402
from infrastructure.db import create_engine_for, create_session_factory, create_tables  # noqa: E402
from infrastructure.llm.completion import CompletionChunk, CompletionResult, Usage  # noqa: E402


class FakeCompletion:
    """Scripted ChatCompletion: returns queued replies and records every call."""

    def __init__(self, replies=None, chunks=None, model_id="fake-model"):
        self.replies = deque(replies or [])
        self.chunks = list(chunks or [])
        self.model_id = model_id
        self.calls = []

    async def complete(self, turns, settings):
        self.calls.append((list(turns), settings))
        if not self.replies:
            raise AssertionError("FakeCompletion ran out of scripted replies")
        reply = self.replies.popleft()
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, CompletionResult):
            return reply
        return CompletionResult(
            content=reply,
            model_id=self.model_id,
            usage=Usage(input_tokens=10, output_tokens=5, total_tokens=15),
        )

    async def stream(self, turns, settings):
        self.calls.append((list(turns), settings))
        for chunk in self.chunks:
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk


class ScriptedHumanProxy(HumanProxy):
    """Human proxy answering from a queue; records prompts and notifications."""

    def __init__(self, store, answers=None, **kwargs):
        super().__init__(store, **kwargs)
        self.answers = deque(answers or [])
        self.prompts = []
        self.printed = []

    async def wait_for_response(self, prompt_text, history):
        self.prompts.append(prompt_text)
        if not self.answers:
            raise AssertionError("ScriptedHumanProxy ran out of answers")
        answer = self.answers.popleft()
        if isinstance(answer, BaseException):
            raise answer
        return answer

    async def print_message(self, text, mime_type="text/markdown"):
        self.printed.append((text, mime_type))


def make_message(content="hello", *, session_id="S1", agent_id="writer", role=Role.USER, **fields):
    return AgentMessage(session_id=session_id, agent_id=agent_id, role=role, content=content, **fields)


def chunk(content, **fields):
    return CompletionChunk(content=content, **fields)


@pytest.fixture
def memory_store():
    return InMemoryMessageStore()


@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'agents.db'}", echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_store(sql_engine):
    return SqlMessageStore(create_session_factory(sql_engine))


@pytest.fixture
def captured_logs():
    """Collect loguru records emitted during a test."""
    from loguru import logger

    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)

"""
Tests for the LangChain completion adapter.
"""
from collections import deque

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage, ToolMessage

from agents.tools import DATE_TOOLS
from history import ChatTurn, Role
from infrastructure.llm.completion import (
    ExecutionSettings,
    LangChainCompletion,
    ToolPolicy,
    Usage,
    to_langchain_messages,
    usage_from_message,
)


class FakeChatModel:
    """Stands in for ChatOpenAI: records binds and returns scripted messages."""

    model_name = "gpt-test"

    def __init__(self, responses=(), chunks=()):
        self.responses = deque(responses)
        self.chunks = list(chunks)
        self.bound_tools = None
        self.bound_kwargs = {}
        self.inputs = []

    def bind_tools(self, tools):
        self.bound_tools = [t.name for t in tools]
        return self

    def bind(self, **kwargs):
        self.bound_kwargs = kwargs
        return self

    async def ainvoke(self, messages):
        self.inputs.append(list(messages))
        return self.responses.popleft()

    async def astream(self, messages):
        self.inputs.append(list(messages))
        for item in self.chunks:
            yield item


TURNS = [
    ChatTurn(role=Role.SYSTEM, content="Be brief."),
    ChatTurn(role=Role.USER, content="What is today?", name="Project Planner"),
]


def test_to_langchain_messages():
    messages = to_langchain_messages(TURNS + [
        ChatTurn(role=Role.ASSISTANT, content="Monday", name="Writer"),
        ChatTurn(role=Role.HUMAN, content="Thanks", name="Human"),
    ])
    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert messages[1].name == "Project_Planner"
    assert messages[3].content == "Thanks"


class TestUsage:
    """Tests for token usage resolution."""

    def test_usage_metadata(self):
        message = AIMessage(
            content="x",
            usage_metadata={"input_tokens": 7, "output_tokens": 3, "total_tokens": 10},
        )
        assert usage_from_message(message) == Usage(7, 3, 10)

    def test_openai_token_usage(self):
        message = AIMessage(
            content="x",
            response_metadata={"token_usage": {"prompt_tokens": 5, "completion_tokens": 2}},
        )
        assert usage_from_message(message) == Usage(5, 2, 7)

    def test_no_usage(self):
        assert usage_from_message(AIMessage(content="x")) is None


class TestLangChainCompletion:
    """Tests for complete() and stream()."""

    @pytest.mark.asyncio
    async def test_complete(self):
        llm = FakeChatModel([AIMessage(
            content="It is Monday.",
            usage_metadata={"input_tokens": 12, "output_tokens": 4, "total_tokens": 16},
            response_metadata={"model_name": "gpt-4o-mini", "finish_reason": "stop"},
        )])
        completion = LangChainCompletion(llm)
        settings = ExecutionSettings(model_id="gpt-4o-mini", temperature=0, user="Writer")

        result = await completion.complete(TURNS, settings)

        assert result.content == "It is Monday."
        assert result.role is Role.ASSISTANT
        assert result.model_id == "gpt-4o-mini"
        assert result.usage == Usage(12, 4, 16)
        assert result.metadata["finish_reason"] == "stop"
        assert llm.bound_kwargs == {"model": "gpt-4o-mini", "temperature": 0, "user": "Writer"}
        assert llm.bound_tools is None

    @pytest.mark.asyncio
    async def test_tool_round_trip(self):
        llm = FakeChatModel([
            AIMessage(
                content="",
                tool_calls=[{"name": "add_days", "args": {"days_to_add": 2}, "id": "call_1"}],
                usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
            ),
            AIMessage(
                content="In two days.",
                usage_metadata={"input_tokens": 20, "output_tokens": 5, "total_tokens": 25},
            ),
        ])
        completion = LangChainCompletion(llm, tools=DATE_TOOLS)

        result = await completion.complete(TURNS, ExecutionSettings())

        assert result.content == "In two days."
        assert result.usage == Usage(30, 10, 40)
        assert result.metadata["tool_rounds"] == 1
        assert "add_days" in llm.bound_tools
        second_input = llm.inputs[1]
        assert isinstance(second_input[-1], ToolMessage)
        assert second_input[-1].tool_call_id == "call_1"
        assert result.model_id == "gpt-test"

    @pytest.mark.asyncio
    async def test_tool_errors_are_reported_to_model(self):
        llm = FakeChatModel([
            AIMessage(content="", tool_calls=[
                {"name": "subtract_dates", "args": {"start_date": "2024-02-01", "end_date": "2024-01-01"}, "id": "a"},
                {"name": "teleport", "args": {}, "id": "b"},
            ]),
            AIMessage(content="Sorry."),
        ])
        completion = LangChainCompletion(llm, tools=DATE_TOOLS)

        await completion.complete(TURNS, ExecutionSettings())

        tool_messages = llm.inputs[1][-2:]
        assert [m.status for m in tool_messages] == ["error", "error"]
        assert "unknown tool 'teleport'" in tool_messages[1].content

    @pytest.mark.asyncio
    async def test_tool_round_limit(self):
        call = AIMessage(content="", tool_calls=[{"name": "get_date_time_utc", "args": {}, "id": "c"}])
        llm = FakeChatModel([call, call, call])
        completion = LangChainCompletion(llm, tools=DATE_TOOLS, max_tool_rounds=2)

        with pytest.raises(RuntimeError, match="2 round"):
            await completion.complete(TURNS, ExecutionSettings())

    @pytest.mark.asyncio
    async def test_tools_not_bound_without_auto_policy(self):
        llm = FakeChatModel([AIMessage(content='{"next": "STOP"}')])
        completion = LangChainCompletion(llm, tools=DATE_TOOLS)

        await completion.complete(TURNS, ExecutionSettings(tool_policy=ToolPolicy.NONE))

        assert llm.bound_tools is None

    @pytest.mark.asyncio
    async def test_stream(self):
        llm = FakeChatModel(chunks=[
            AIMessageChunk(content="Mon"),
            AIMessageChunk(
                content="day",
                usage_metadata={"input_tokens": 3, "output_tokens": 2, "total_tokens": 5},
                response_metadata={"finish_reason": "stop"},
            ),
        ])
        completion = LangChainCompletion(llm, tools=DATE_TOOLS)

        chunks = [c async for c in completion.stream(TURNS, ExecutionSettings())]

        assert [c.content for c in chunks] == ["Mon", "day"]
        assert chunks[0].usage is None
        assert chunks[1].usage == Usage(3, 2, 5)
        assert chunks[1].metadata == {"finish_reason": "stop"}
        assert llm.bound_tools is None

"""
Completion contract - what an LLM-backed agent needs from a chat model.

Agents hand over an ordered list of role-tagged ``ChatTurn`` objects plus
``ExecutionSettings`` and get back either one ``CompletionResult`` or an
ordered stream of ``CompletionChunk`` objects. ``LangChainCompletion``
adapts any LangChain chat model (``ChatOpenAI`` in production) to that
contract and resolves token usage into an explicit ``Usage`` record.

Retries for transient API errors belong to the chat model itself
(``max_retries`` on ``ChatOpenAI``), never to the callers of this module.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from loguru import logger

from history.schemas import ChatTurn, Role
from infrastructure.config import TOOL_MAX_ROUNDS


class ToolPolicy(str, Enum):
    """Whether bound tools may be called (and executed) during a completion."""

    NONE = "none"
    AUTO = "auto"


@dataclass
class ExecutionSettings:
    """
    Per-call model parameters.

    Attributes:
        model_id: Overrides the chat model's configured model.
        temperature: Sampling temperature; 0 is the most deterministic.
        max_tokens: Completion token cap.
        response_format: OpenAI ``response_format`` payload, e.g. a
            ``json_schema`` constraint for structured output.
        tool_policy: ``AUTO`` lets the model call bound tools.
        user: End-user tag forwarded to the provider.
    """

    model_id: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    response_format: Optional[Dict[str, Any]] = None
    tool_policy: ToolPolicy = ToolPolicy.AUTO
    user: Optional[str] = None

    def to_invoke_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if self.model_id is not None:
            kwargs["model"] = self.model_id
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.response_format is not None:
            kwargs["response_format"] = self.response_format
        if self.user is not None:
            kwargs["user"] = self.user
        return kwargs


@dataclass
class Usage:
    """Token usage for one completion (summed across tool rounds)."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class CompletionResult:
    """One complete response turn."""

    content: str
    role: Role = Role.ASSISTANT
    model_id: Optional[str] = None
    usage: Optional[Usage] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CompletionChunk:
    """A partial response; the final chunk may carry aggregate usage."""

    content: str
    role: Role = Role.ASSISTANT
    model_id: Optional[str] = None
    usage: Optional[Usage] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ChatCompletion(Protocol):
    """The completion capability consumed by LLM-backed agents."""

    async def complete(
        self,
        turns: Sequence[ChatTurn],
        settings: ExecutionSettings,
    ) -> CompletionResult:
        ...

    def stream(
        self,
        turns: Sequence[ChatTurn],
        settings: ExecutionSettings,
    ) -> AsyncIterator[CompletionChunk]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# LangChain adapter
# ═══════════════════════════════════════════════════════════════════════════════

_NAME_RE = re.compile(r"[^A-Za-z0-9_-]")


def _participant_name(name: Optional[str]) -> Optional[str]:
    # OpenAI only accepts [A-Za-z0-9_-]{1,64} in the ``name`` field
    if not name:
        return None
    return _NAME_RE.sub("_", name)[:64]


def _text(content: Any) -> str:
    """Flatten LangChain message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)


def to_langchain_messages(turns: Sequence[ChatTurn]) -> List[BaseMessage]:
    """Convert chat turns into LangChain messages."""
    messages: List[BaseMessage] = []
    for turn in turns:
        role = Role(turn.role)
        name = _participant_name(turn.name)
        if role is Role.SYSTEM:
            messages.append(SystemMessage(content=turn.content))
        elif role is Role.ASSISTANT:
            messages.append(AIMessage(content=turn.content, name=name))
        else:
            # Human-proxy answers reach the model as user input
            messages.append(HumanMessage(content=turn.content, name=name))
    return messages


def usage_from_message(message: Any) -> Optional[Usage]:
    """
    Resolve token usage from a LangChain message.

    Two provider shapes are understood:
      1. ``usage_metadata`` (LangChain standard: input/output/total tokens)
      2. ``response_metadata["token_usage"]`` (OpenAI: prompt/completion/total)
    """
    usage = getattr(message, "usage_metadata", None)
    if usage:
        input_tokens = int(usage.get("input_tokens", 0) or 0)
        output_tokens = int(usage.get("output_tokens", 0) or 0)
        total = usage.get("total_tokens")
        return Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=int(total) if total is not None else input_tokens + output_tokens,
        )

    meta = getattr(message, "response_metadata", None) or {}
    token_usage = meta.get("token_usage") or meta.get("usage") or {}
    if token_usage:
        input_tokens = int(token_usage.get("prompt_tokens", 0) or 0)
        output_tokens = int(token_usage.get("completion_tokens", 0) or 0)
        total = token_usage.get("total_tokens")
        return Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=int(total) if total is not None else input_tokens + output_tokens,
        )
    return None


def _add_usage(total: Optional[Usage], extra: Optional[Usage]) -> Optional[Usage]:
    if extra is None:
        return total
    return extra if total is None else total + extra


class LangChainCompletion:
    """
    ``ChatCompletion`` backed by a LangChain chat model.

    With ``ToolPolicy.AUTO`` the bound tools are executed automatically and
    their results fed back to the model until it answers without tool calls
    (at most ``max_tool_rounds`` rounds). Streaming never binds tools.
    """

    def __init__(
        self,
        llm: Any,
        tools: Optional[Sequence[Any]] = None,
        max_tool_rounds: int = TOOL_MAX_ROUNDS,
    ) -> None:
        """
        Args:
            llm: A LangChain ``ChatOpenAI`` (or compatible) instance.
            tools: LangChain tools offered to the model.
            max_tool_rounds: Tool-call rounds allowed per completion.
        """
        self.llm = llm
        self.tools = {tool.name: tool for tool in tools or []}
        self.max_tool_rounds = max_tool_rounds

    @property
    def model_name(self) -> str:
        """Extract model name from the LLM for message metadata."""
        if hasattr(self.llm, "model_name"):
            return self.llm.model_name
        if hasattr(self.llm, "model"):
            return self.llm.model
        return "unknown"

    def _runnable(self, settings: ExecutionSettings, *, with_tools: bool) -> Any:
        runnable = self.llm
        if with_tools:
            runnable = runnable.bind_tools(list(self.tools.values()))
        kwargs = settings.to_invoke_kwargs()
        return runnable.bind(**kwargs) if kwargs else runnable

    def _model_id(self, message: Any, settings: ExecutionSettings) -> str:
        meta = getattr(message, "response_metadata", None) or {}
        return meta.get("model_name") or settings.model_id or self.model_name

    async def complete(
        self,
        turns: Sequence[ChatTurn],
        settings: ExecutionSettings,
    ) -> CompletionResult:
        auto_tools = settings.tool_policy is ToolPolicy.AUTO and bool(self.tools)
        runnable = self._runnable(settings, with_tools=auto_tools)
        messages = to_langchain_messages(turns)

        usage: Optional[Usage] = None
        rounds = 0
        while True:
            response = await runnable.ainvoke(messages)
            usage = _add_usage(usage, usage_from_message(response))

            tool_calls = (getattr(response, "tool_calls", None) or []) if auto_tools else []
            if not tool_calls:
                break
            if rounds >= self.max_tool_rounds:
                raise RuntimeError(
                    f"Model {self._model_id(response, settings)} still requested tools "
                    f"after {self.max_tool_rounds} round(s)"
                )
            rounds += 1
            messages.append(response)
            messages.extend(await self._invoke_tools(tool_calls))

        meta = getattr(response, "response_metadata", None) or {}
        metadata: Dict[str, Any] = {}
        if meta.get("finish_reason"):
            metadata["finish_reason"] = meta["finish_reason"]
        if rounds:
            metadata["tool_rounds"] = rounds
        if usage is not None:
            metadata["usage"] = asdict(usage)

        return CompletionResult(
            content=_text(response.content),
            role=Role.ASSISTANT,
            model_id=self._model_id(response, settings),
            usage=usage,
            metadata=metadata,
        )

    async def _invoke_tools(self, tool_calls: Sequence[Dict[str, Any]]) -> List[ToolMessage]:
        results: List[ToolMessage] = []
        for call in tool_calls:
            name = call.get("name", "")
            tool = self.tools.get(name)
            if tool is None:
                logger.warning("Model requested unknown tool '{}'", name)
                results.append(ToolMessage(
                    content=f"Error: unknown tool '{name}'",
                    tool_call_id=call.get("id", ""),
                    status="error",
                ))
                continue
            try:
                output = await tool.ainvoke(call.get("args", {}))
            except Exception as exc:
                # The model sees the failure and can correct its arguments
                logger.warning("Tool '{}' failed: {}", name, exc)
                results.append(ToolMessage(
                    content=f"Error: {exc}",
                    tool_call_id=call.get("id", ""),
                    status="error",
                ))
                continue
            logger.debug("Tool '{}' returned {}", name, output)
            results.append(ToolMessage(content=str(output), tool_call_id=call.get("id", "")))
        return results

    async def stream(
        self,
        turns: Sequence[ChatTurn],
        settings: ExecutionSettings,
    ) -> AsyncIterator[CompletionChunk]:
        runnable = self._runnable(settings, with_tools=False)
        async for chunk in runnable.astream(to_langchain_messages(turns)):
            meta = getattr(chunk, "response_metadata", None) or {}
            yield CompletionChunk(
                content=_text(chunk.content),
                role=Role.ASSISTANT,
                model_id=self._model_id(chunk, settings),
                usage=usage_from_message(chunk),
                metadata={"finish_reason": meta["finish_reason"]} if meta.get("finish_reason") else {},
            )

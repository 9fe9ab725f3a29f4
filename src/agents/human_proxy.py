"""
Human proxy - an agent whose answers come from a person.

``HumanProxy`` implements the agent capability on top of two operations a
front end provides:

  wait_for_response(prompt_text, history) → the operator's answer
  print_message(text, mime_type)          → display-only narration

Answers are persisted like any other turn (role ``human``, model id
``human-proxy``); narration is never stored.
"""

import abc
import asyncio
import inspect
from typing import Any, List, Mapping, Optional

from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt as RichPrompt
from rich.text import Text

from agents.base import AgentBase, ChunkCallback, MessageCallback, Prompt
from history import AgentMessage, MessageStore, Role
from infrastructure.config import DEFAULT_MIME_TYPE, HUMAN_PROXY_MODEL_ID
from infrastructure.llm.completion import ExecutionSettings

HUMAN_SYSTEM_PROMPT = "You are the human operator supervising the agents."


class HumanProxy(AgentBase):
    """Agent variant that blocks on an operator instead of a model."""

    def __init__(
        self,
        store: MessageStore,
        *,
        agent_id: str = "human",
        name: str = "Human",
        description: str = "The human operator. Can approve, decide and supply missing information.",
        system_prompt: Optional[str] = None,
        on_message_completed: Optional[MessageCallback] = None,
    ):
        super().__init__(
            store,
            agent_id=agent_id,
            name=name,
            description=description,
            system_prompt=system_prompt or HUMAN_SYSTEM_PROMPT,
            on_message_completed=on_message_completed,
        )

    # ------------------------------------------------------------------
    # Front-end contract
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def wait_for_response(self, prompt_text: str, history: List[AgentMessage]) -> str:
        """Block until the operator answers ``prompt_text``."""

    @abc.abstractmethod
    async def print_message(self, text: str, mime_type: str = DEFAULT_MIME_TYPE) -> None:
        """Show a notification that is not part of the conversation."""

    # ------------------------------------------------------------------
    # Agent capability
    # ------------------------------------------------------------------

    async def send(
        self,
        prompt: Prompt,
        *,
        data: Optional[Mapping[str, Any]] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> AgentMessage:
        self._require_session("send")
        user_message = self._prepare_prompt(prompt, data)
        self.history.append(user_message)
        try:
            response = await self._ask(user_message.content)
        except BaseException:
            self.history.remove(user_message)
            raise
        await self._notify_completed(response)
        await self._save(user_message, response)
        return response

    async def respond(self, settings: Optional[ExecutionSettings] = None) -> AgentMessage:
        self._require_session("respond")
        response = await self._ask(self._last_prompt_text())
        await self._notify_completed(response)
        await self._save(response)
        return response

    async def stream(
        self,
        prompt: Prompt,
        on_chunk: ChunkCallback,
        *,
        data: Optional[Mapping[str, Any]] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> AgentMessage:
        """The operator's whole answer is delivered as a single chunk."""
        if not callable(on_chunk):
            raise ValueError(f"[{self.name}] on_chunk must be callable")
        response = await self.send(prompt, data=data, settings=settings)
        try:
            result = on_chunk(response.content)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("[{}] on_chunk callback failed (ignored): {}", self.name, e)
        return response

    async def _ask(self, prompt_text: str) -> AgentMessage:
        try:
            answer = await self.wait_for_response(prompt_text, self.history.messages)
        except asyncio.CancelledError:
            logger.warning("[{}] Waiting for the operator was cancelled (session={})", self.name, self.session_id)
            raise
        except Exception as e:
            logger.error("[{}] Operator input failed (session={}): {}", self.name, self.session_id, e)
            raise
        response = self._new_message(
            Role.HUMAN,
            answer or "",
            model_id=HUMAN_PROXY_MODEL_ID,
            mime_type=DEFAULT_MIME_TYPE,
        )
        self.history.append(response)
        return response


class ConsoleHumanProxy(HumanProxy):
    """
    Human proxy for a terminal, rendered with rich.

    ``Prompt.ask`` runs on a worker thread so the event loop keeps serving
    other tasks (and cancellation) while the operator types.
    """

    def __init__(self, store: MessageStore, *, console: Optional[Console] = None, **kwargs: Any):
        super().__init__(store, **kwargs)
        self.console = console or Console()

    async def wait_for_response(self, prompt_text: str, history: List[AgentMessage]) -> str:
        self.console.print(Panel(Markdown(prompt_text), title="Request", title_align="left", border_style="cyan"))
        answer = await asyncio.to_thread(RichPrompt.ask, f"[bold cyan]{self.name}[/bold cyan]", console=self.console)
        return answer.strip()

    async def print_message(self, text: str, mime_type: str = DEFAULT_MIME_TYPE) -> None:
        body = Markdown(text) if mime_type == "text/markdown" else Text(text)
        self.console.print(body)

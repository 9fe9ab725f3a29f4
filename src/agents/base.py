"""
Agent base - what every agent variant shares.

An agent owns one ``ConversationHistory`` for the active session, persists
its turns through a ``MessageStore`` and answers prompts. Variants only
decide *how* a response is produced:

  LLMAgent          → completion contract (infrastructure.llm)
  HumanProxy        → an operator at the console
  RouterAgent       → LLMAgent constrained to route decisions
"""

from __future__ import annotations

import abc
import inspect
from typing import Any, Callable, Mapping, Optional, Union

from loguru import logger

from agents.errors import SessionNotStartedError
from agents.prompts.templating import render_template
from history import AgentMessage, ConversationHistory, MessageStore, Role, new_message_id
from infrastructure.config import DEFAULT_SYSTEM_PROMPT
from infrastructure.llm.completion import ExecutionSettings

Prompt = Union[str, AgentMessage]
MessageCallback = Callable[[AgentMessage], Any]
ChunkCallback = Callable[[str], Any]


class AgentBase(abc.ABC):
    """
    Session, history and persistence plumbing for one agent.

    Args:
        store: Message store used for persistence and restore.
        agent_id: Stable id written on every message (``agent_messages.agent_id``).
        name: Display name; the router resolves agents by this name.
        description: One line used in the router's roster prompt.
        system_prompt: Seed of every fresh history.
        on_message_completed: Called with each response message; failures
            are logged and ignored.
    """

    def __init__(
        self,
        store: MessageStore,
        *,
        agent_id: str,
        name: str,
        description: str = "",
        system_prompt: Optional[str] = None,
        on_message_completed: Optional[MessageCallback] = None,
    ):
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id must be a non-empty string")
        if not name or not name.strip():
            raise ValueError("name must be a non-empty string")
        self.store = store
        self.id = agent_id
        self.name = name
        self.description = description
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.on_message_completed = on_message_completed
        self.session_id: Optional[str] = None
        self.history = ConversationHistory()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, name={self.name!r}, session={self.session_id!r})"

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def start_session(self) -> str:
        """Begin a fresh session: new id, history holding only the system prompt."""
        self.session_id = new_message_id()
        self.reset_history()
        logger.info("[{}] Session started: {}", self.name, self.session_id)
        return self.session_id

    def set_session(self, session_id: str) -> None:
        """Adopt an existing session id. History is left as it is."""
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValueError(f"[{self.name}] session_id must be a non-empty string")
        self.session_id = session_id
        logger.debug("[{}] Session set: {}", self.name, session_id)

    def reset_history(self) -> None:
        """Clear the history and seed it with the system prompt (never persisted)."""
        self.history.clear()
        self.history.append(self._new_message(Role.SYSTEM, self.system_prompt))

    async def restore_history(self, session_id: Optional[str] = None) -> int:
        """
        Rebuild the history from the store.

        Args:
            session_id: Session to resume; defaults to the active one.

        Returns:
            Number of stored messages restored after the system prompt.
        """
        if session_id is not None:
            self.set_session(session_id)
        self._require_session("restore_history")
        self.reset_history()
        restored = await self.history.restore(self.store, self.session_id, self.id)
        logger.info("[{}] Restored {} message(s) for session {}", self.name, restored, self.session_id)
        return restored

    def set_system_prompt(self, text: str, data: Optional[Mapping[str, Any]] = None) -> None:
        """
        Replace the system prompt (used from the next ``reset_history``).

        With ``data`` the text is rendered as a Mustache template. When the
        history currently starts with a system message it is replaced too.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"[{self.name}] system prompt must be a non-empty string")
        self.system_prompt = render_template(text, data) if data is not None else text
        items = self.history.messages
        if items and items[0].role is Role.SYSTEM:
            rest = items[1:]
            self.history.clear()
            self.history.append(self._new_message(Role.SYSTEM, self.system_prompt))
            self.history.extend(rest)

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def send(
        self,
        prompt: Prompt,
        *,
        data: Optional[Mapping[str, Any]] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> AgentMessage:
        """Answer ``prompt``; both turns are appended to history and persisted."""

    @abc.abstractmethod
    async def respond(self, settings: Optional[ExecutionSettings] = None) -> AgentMessage:
        """Answer the current history without adding a new prompt."""

    @abc.abstractmethod
    async def stream(
        self,
        prompt: Prompt,
        on_chunk: ChunkCallback,
        *,
        data: Optional[Mapping[str, Any]] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> AgentMessage:
        """As ``send`` but forwards partial content to ``on_chunk`` as it arrives."""

    # ------------------------------------------------------------------
    # Helpers for variants
    # ------------------------------------------------------------------

    def _require_session(self, operation: str) -> str:
        if not self.session_id:
            raise SessionNotStartedError(
                f"[{self.name}] {operation} requires an active session "
                f"(agent_id={self.id}); call start_session() or set_session() first"
            )
        return self.session_id

    def _new_message(self, role: Role, content: str, **fields: Any) -> AgentMessage:
        # Only the never-persisted system seed can exist before a session is bound
        return AgentMessage(
            session_id=self.session_id or "unbound",
            agent_id=self.id,
            agent_name=self.name,
            role=role,
            content=content,
            **fields,
        )

    def _prepare_prompt(self, prompt: Prompt, data: Optional[Mapping[str, Any]]) -> AgentMessage:
        """Turn a literal, a template + data, or a ready message into the user turn."""
        if isinstance(prompt, AgentMessage):
            if not prompt.content or not prompt.content.strip():
                raise ValueError(f"[{self.name}] prompt message {prompt.id} has no content")
            return prompt
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError(f"[{self.name}] prompt must be a non-empty string")
        text = render_template(prompt, data) if data is not None else prompt
        return self._new_message(Role.USER, text)

    def _last_prompt_text(self) -> str:
        """Content of the latest non-system message (``respond`` needs one)."""
        for message in reversed(self.history.messages):
            if message.role is not Role.SYSTEM:
                return message.content
        raise ValueError(f"[{self.name}] respond() needs at least one non-system message in history")

    async def _notify_completed(self, message: AgentMessage) -> None:
        if self.on_message_completed is None:
            return
        try:
            result = self.on_message_completed(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("[{}] on_message_completed callback failed for {}: {}", self.name, message.id, e)

    async def _save(self, *messages: AgentMessage) -> None:
        try:
            await self.store.save_many(list(messages))
        except Exception as e:
            logger.error(
                "[{}] Failed to persist message(s) {} (session={}): {}",
                self.name, ", ".join(m.id for m in messages), self.session_id, e,
            )
            raise

"""
LLM-backed agent - answers through the completion contract.

Each turn:
  1. Append the user turn to history
  2. Call the completion with the full history + execution settings
  3. Wrap the reply as an ``AgentMessage`` (token usage captured)
  4. Append it, fire ``on_message_completed``, persist both turns

A failed or cancelled completion removes the unanswered user turn again, so
history never holds a prompt without its reply.
"""

import asyncio
import inspect
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from agents.base import AgentBase, ChunkCallback, MessageCallback, Prompt
from agents.errors import AgentError
from history import AgentMessage, MessageStore, Role
from infrastructure.llm.completion import ChatCompletion, ExecutionSettings, Usage
from infrastructure.observability import observe, update_current_observation, update_current_trace


class LLMAgent(AgentBase):
    """
    Agent whose responses come from a ``ChatCompletion``.

    Args:
        store: Message store.
        completion: Completion contract implementation
            (``LangChainCompletion`` in production).
        settings: Default execution settings, used when a call passes none.
        **kwargs: ``agent_id``, ``name``, ``description``, ``system_prompt``,
            ``on_message_completed`` (see ``AgentBase``).
    """

    def __init__(
        self,
        store: MessageStore,
        completion: ChatCompletion,
        *,
        agent_id: str,
        name: str,
        description: str = "",
        system_prompt: Optional[str] = None,
        settings: Optional[ExecutionSettings] = None,
        on_message_completed: Optional[MessageCallback] = None,
    ):
        super().__init__(
            store,
            agent_id=agent_id,
            name=name,
            description=description,
            system_prompt=system_prompt,
            on_message_completed=on_message_completed,
        )
        self.completion = completion
        self.default_settings = settings or ExecutionSettings()

    # ------------------------------------------------------------------
    # Single-shot
    # ------------------------------------------------------------------

    @observe(name="agent.send", as_type="generation")
    async def send(
        self,
        prompt: Prompt,
        *,
        data: Optional[Mapping[str, Any]] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> AgentMessage:
        self._require_session("send")
        user_message = self._prepare_prompt(prompt, data)
        settings = settings or self.default_settings
        update_current_trace(session_id=self.session_id, user_id=self.id, tags=[self.name])

        self.history.append(user_message)
        logger.debug("[{}] send: {} turn(s) in context", self.name, len(self.history))
        result = await self._complete(settings, pending=user_message)

        response = self._response_message(
            result.content,
            role=result.role,
            model_id=result.model_id,
            usage=result.usage,
            metadata=result.metadata,
        )
        self.history.append(response)
        self._trace_generation(user_message.content, response)
        await self._notify_completed(response)
        await self._save(user_message, response)
        return response

    @observe(name="agent.respond", as_type="generation")
    async def respond(self, settings: Optional[ExecutionSettings] = None) -> AgentMessage:
        self._require_session("respond")
        prompt_text = self._last_prompt_text()
        settings = settings or self.default_settings
        update_current_trace(session_id=self.session_id, user_id=self.id, tags=[self.name])

        result = await self._complete(settings, pending=None)

        response = self._response_message(
            result.content,
            role=result.role,
            model_id=result.model_id,
            usage=result.usage,
            metadata=result.metadata,
        )
        self.history.append(response)
        self._trace_generation(prompt_text, response)
        await self._notify_completed(response)
        await self._save(response)
        return response

    async def _complete(self, settings: ExecutionSettings, *, pending: Optional[AgentMessage]):
        try:
            return await self.completion.complete(self.history.turns, settings)
        except asyncio.CancelledError:
            if pending is not None:
                self.history.remove(pending)
            logger.warning("[{}] Completion cancelled (session={})", self.name, self.session_id)
            raise
        except Exception as e:
            if pending is not None:
                self.history.remove(pending)
            logger.error("[{}] Completion failed (session={}, agent_id={}): {}",
                         self.name, self.session_id, self.id, e)
            raise

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        prompt: Prompt,
        on_chunk: ChunkCallback,
        *,
        data: Optional[Mapping[str, Any]] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> AgentMessage:
        """
        Stream a response, forwarding each chunk's text to ``on_chunk``.

        ``on_chunk`` may be sync or async. Its exceptions are logged and the
        stream continues. The persisted message concatenates all chunks and
        takes role and model id from the last one.
        """
        if not callable(on_chunk):
            raise ValueError(f"[{self.name}] on_chunk must be callable")
        self._require_session("stream")
        user_message = self._prepare_prompt(prompt, data)
        settings = settings or self.default_settings

        self.history.append(user_message)
        parts: List[str] = []
        last = None
        usage: Optional[Usage] = None
        try:
            async for chunk in self.completion.stream(self.history.turns, settings):
                last = chunk
                if chunk.usage is not None:
                    usage = chunk.usage
                if not chunk.content:
                    continue
                parts.append(chunk.content)
                await self._deliver(on_chunk, chunk.content)
        except asyncio.CancelledError:
            self.history.remove(user_message)
            logger.warning("[{}] Stream cancelled after {} chunk(s) (session={})",
                           self.name, len(parts), self.session_id)
            raise
        except Exception as e:
            self.history.remove(user_message)
            logger.error("[{}] Stream failed (session={}, agent_id={}): {}",
                         self.name, self.session_id, self.id, e)
            raise

        if last is None:
            self.history.remove(user_message)
            raise AgentError(f"[{self.name}] Completion stream returned no chunks (session={self.session_id})")

        logger.debug("[{}] Stream finished: {} chunk(s)", self.name, len(parts))
        response = self._response_message(
            "".join(parts),
            role=last.role,
            model_id=last.model_id,
            usage=usage,
            metadata=dict(last.metadata),
        )
        self.history.append(response)
        await self._notify_completed(response)
        await self._save(user_message, response)
        return response

    async def _deliver(self, on_chunk: ChunkCallback, content: str) -> None:
        try:
            result = on_chunk(content)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("[{}] on_chunk callback failed (ignored): {}", self.name, e)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _response_message(
        self,
        content: str,
        *,
        role: Role,
        model_id: Optional[str],
        usage: Optional[Usage],
        metadata: Optional[Dict[str, Any]],
    ) -> AgentMessage:
        return self._new_message(
            role or Role.ASSISTANT,
            content or "",
            model_id=model_id or self.default_settings.model_id,
            metadata=metadata or {},
            input_tokens=usage.input_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
        )

    def _trace_generation(self, prompt_text: str, response: AgentMessage) -> None:
        usage = response.usage()
        update_current_observation(
            input=prompt_text,
            output=response.content,
            model=response.model_id,
            usage={k.replace("_tokens", ""): v for k, v in usage.items()} if usage else None,
        )

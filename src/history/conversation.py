"""
Conversation history - the per-agent, in-memory log of a session.

One ordered list of ``HistoryItem`` objects; ``turns`` (what a completion
call consumes) and ``messages`` (what the store persisted) are both read off
that list, so they can never drift apart in length or order.
"""

from typing import Iterable, Iterator, List, Optional, Union

from loguru import logger

from history.schemas import AgentMessage, ChatTurn, HistoryItem, MessageStore


class ConversationHistory:
    """Ordered, append-mostly message log with chat-turn and message views."""

    def __init__(self, messages: Optional[Iterable[AgentMessage]] = None):
        self._items: List[HistoryItem] = []
        if messages:
            self.extend(messages)

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @property
    def turns(self) -> List[ChatTurn]:
        return [item.turn for item in self._items]

    @property
    def messages(self) -> List[AgentMessage]:
        return [item.message for item in self._items]

    @property
    def items(self) -> List[HistoryItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[AgentMessage]:
        return iter(self.messages)

    def __contains__(self, message_or_id: Union[AgentMessage, str]) -> bool:
        return self._index_of(_message_id(message_or_id)) is not None

    def last(self) -> Optional[AgentMessage]:
        return self._items[-1].message if self._items else None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, message: AgentMessage) -> None:
        if not isinstance(message, AgentMessage):
            raise TypeError(f"ConversationHistory.append expects AgentMessage, got {type(message).__name__}")
        self._items.append(HistoryItem.of(message))

    def extend(self, messages: Iterable[AgentMessage]) -> None:
        """Append several messages, preserving their order."""
        items = []
        for message in messages:
            if not isinstance(message, AgentMessage):
                raise TypeError(f"ConversationHistory.extend expects AgentMessage, got {type(message).__name__}")
            items.append(HistoryItem.of(message))
        self._items.extend(items)

    def clear(self) -> None:
        self._items.clear()

    def remove(self, message_or_id: Union[AgentMessage, str]) -> bool:
        """
        Remove the entry for a message (or message id).

        Returns:
            True if an entry was removed, False if the id was not present.
        """
        index = self._index_of(_message_id(message_or_id))
        if index is None:
            return False
        del self._items[index]
        return True

    def merge(self, messages: Iterable[AgentMessage]) -> int:
        """
        Append the messages whose id is not already in the history.

        First-seen wins: a message whose id is present (or repeated within
        ``messages``) is skipped, so merging the same batch twice is a no-op.

        Returns:
            Number of messages appended.
        """
        seen = {item.message.id for item in self._items}
        added = 0
        for message in messages:
            if message.id in seen:
                continue
            self.append(message)
            seen.add(message.id)
            added += 1
        return added

    async def restore(self, store: MessageStore, session_id: str, agent_id: str) -> int:
        """
        Append the stored messages of ``session_id``/``agent_id`` in creation order.

        Corrupt stored rows are logged and skipped by the store, so the
        restore covers every message that still validates.

        Returns:
            Number of messages restored.
        """
        stored = await store.get_by_session_and_agent(session_id, agent_id)
        self.extend(stored)
        logger.debug("Restored {} message(s) for session={} agent={}",
                     len(stored), session_id, agent_id)
        return len(stored)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def transcript(self) -> str:
        """Markdown document with one section per message, for audit/debugging."""
        sections = []
        for item in self._items:
            message = item.message
            heading = message.agent_name or message.agent_id
            sections.append(f"### {heading} ({message.role.value})\n\n{message.content.strip()}\n")
        return "\n---\n\n".join(sections)

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.message.id == message_id:
                return index
        return None


def _message_id(message_or_id: Union[AgentMessage, str]) -> str:
    if isinstance(message_or_id, AgentMessage):
        return message_or_id.id
    if isinstance(message_or_id, str):
        return message_or_id
    raise TypeError(f"Expected AgentMessage or message id, got {type(message_or_id).__name__}")

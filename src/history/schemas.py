"""
History schemas and interfaces.

Dataclasses for persisted agent messages and the chat turns derived from them.
Protocol definition for the message store contract.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

from infrastructure.config import DEFAULT_MIME_TYPE


class Role(str, Enum):
    """Closed set of conversation roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    HUMAN = "human"


def new_message_id() -> str:
    """32-char upper-case hex id (also used for session ids)."""
    return uuid.uuid4().hex.upper()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ChatTurn:
    """
    A single role/content pair, the shape a completion call consumes.

    ``name`` carries the speaking agent's display name so a model can tell
    apart several assistants merged into one conversation.
    """
    role: Role
    content: str
    name: Optional[str] = None


@dataclass(eq=False)
class AgentMessage:
    """
    A persisted conversation message.

    Created when an agent produces or receives a turn and stored immediately
    in the ``agent_messages`` table. Only the message store changes it later
    (a corrective ``update`` bumps ``version``).

    Equality and hashing follow ``id``.
    """
    session_id: str
    agent_id: str
    role: Role
    content: str
    agent_name: Optional[str] = None
    mime_type: str = DEFAULT_MIME_TYPE
    model_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    id: str = field(default_factory=new_message_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("AgentMessage.id must be a non-empty string")
        if not isinstance(self.session_id, str) or not self.session_id.strip():
            raise ValueError(f"AgentMessage {self.id}: session_id is required")
        if not isinstance(self.agent_id, str) or not self.agent_id.strip():
            raise ValueError(f"AgentMessage {self.id}: agent_id is required")
        try:
            role = self.role
            if isinstance(role, str) and not isinstance(role, Role):
                role = role.strip().lower()
            self.role = Role(role)
        except ValueError:
            raise ValueError(
                f"AgentMessage {self.id}: invalid role {self.role!r} "
                f"(expected one of {', '.join(r.value for r in Role)})"
            ) from None
        if self.content is None:
            raise ValueError(f"AgentMessage {self.id}: content must not be None")
        self.metadata = dict(self.metadata or {})
        self.created_at = _as_utc(self.created_at)
        self.updated_at = _as_utc(self.updated_at)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError(f"AgentMessage.id is immutable (id={self.__dict__['id']})")
        super().__setattr__(name, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AgentMessage):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def to_turn(self) -> ChatTurn:
        """Project to the completion-facing chat turn."""
        return ChatTurn(role=self.role, content=self.content, name=self.agent_name)

    def usage(self) -> Dict[str, int]:
        """Token counts that are known (empty for human and system turns)."""
        counts = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }
        return {k: v for k, v in counts.items() if v is not None}

    def to_record(self) -> Dict[str, Any]:
        """Flatten for the ``agent_messages`` table (metadata as JSON text)."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "role": self.role.value,
            "content": self.content,
            "mime_type": self.mime_type,
            "model_id": self.model_id,
            "metadata_json": json.dumps(self.metadata, default=str),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "AgentMessage":
        """
        Create from a table row mapping.

        Raises:
            ValueError: role is outside the closed set or metadata is not
                a JSON object.
        """
        raw_meta = data.get("metadata_json")
        try:
            metadata = json.loads(raw_meta) if raw_meta else {}
        except json.JSONDecodeError as exc:
            raise ValueError(f"AgentMessage {data.get('id')}: metadata is not valid JSON ({exc})") from exc
        if not isinstance(metadata, dict):
            raise ValueError(f"AgentMessage {data.get('id')}: metadata must be a JSON object")

        return cls(
            id=data["id"],
            session_id=data["session_id"],
            agent_id=data["agent_id"],
            agent_name=data.get("agent_name"),
            role=data["role"],
            content=data["content"],
            mime_type=data.get("mime_type") or DEFAULT_MIME_TYPE,
            model_id=data.get("model_id"),
            metadata=metadata,
            input_tokens=data.get("input_tokens"),
            output_tokens=data.get("output_tokens"),
            total_tokens=data.get("total_tokens"),
            created_at=data["created_at"],
            updated_at=data.get("updated_at") or data["created_at"],
            version=data.get("version") or 1,
        )


@dataclass(frozen=True)
class HistoryItem:
    """One history entry; the chat turn is read off the message on access."""
    message: AgentMessage

    @property
    def turn(self) -> ChatTurn:
        return self.message.to_turn()

    @classmethod
    def of(cls, message: AgentMessage) -> "HistoryItem":
        return cls(message=message)


# ============================================================================
# Interfaces
# ============================================================================

class MessageStore(Protocol):
    """
    Persistence contract for agent messages.

    List results are ordered by ``created_at`` ascending. Delete operations
    return the number of removed messages.
    """

    async def save(self, message: AgentMessage) -> None:
        ...

    async def save_many(self, messages: Sequence[AgentMessage]) -> None:
        ...

    async def update(self, message: AgentMessage) -> AgentMessage:
        ...

    async def get_by_id(self, message_id: str) -> AgentMessage:
        ...

    async def get_by_session(self, session_id: str) -> List[AgentMessage]:
        ...

    async def get_by_agent(self, agent_id: str) -> List[AgentMessage]:
        ...

    async def get_by_session_and_agent(self, session_id: str, agent_id: str) -> List[AgentMessage]:
        ...

    async def delete_by_session(self, session_id: str) -> int:
        ...

    async def delete_by_agent(self, agent_id: str) -> int:
        ...

    async def delete_by_session_and_agent(self, session_id: str, agent_id: str) -> int:
        ...

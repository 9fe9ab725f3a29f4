"""
Conversation history - messages, per-agent histories and their persistence.

  AgentMessage          → persisted entity (agent_messages table)
  ConversationHistory   → in-memory per-agent log (chat turns + messages)
  SqlMessageStore       → async SQLAlchemy store
  InMemoryMessageStore  → same contract, no database
"""

from .schemas import AgentMessage, ChatTurn, HistoryItem, MessageStore, Role, new_message_id
from .conversation import ConversationHistory
from .message_store import InMemoryMessageStore, MessageNotFoundError, SqlMessageStore

__all__ = [
    "AgentMessage",
    "ChatTurn",
    "ConversationHistory",
    "HistoryItem",
    "InMemoryMessageStore",
    "MessageNotFoundError",
    "MessageStore",
    "Role",
    "SqlMessageStore",
    "new_message_id",
]

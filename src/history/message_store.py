"""
Message store - persistence of agent messages.

``SqlMessageStore`` keeps messages in the ``agent_messages`` table through an
async SQLAlchemy session factory. ``InMemoryMessageStore`` offers the same
contract without a database (tests, throwaway demos).
"""

from typing import Any, Dict, List, Sequence

from loguru import logger
from sqlalchemy import delete, insert, select
from sqlalchemy import update as sa_update

from history.schemas import AgentMessage, utc_now
from infrastructure.db.sql_client import agent_messages_table as _t


class MessageNotFoundError(KeyError):
    """No stored message has the requested id."""

    def __init__(self, message_id: str):
        super().__init__(message_id)
        self.message_id = message_id

    def __str__(self) -> str:
        return f"Message not found: {self.message_id}"


def _require(value: str, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} must be a non-empty string")
    return value


def _rows_to_messages(rows: Sequence[Any], scope: str) -> List[AgentMessage]:
    """Map rows to messages, logging and skipping rows that fail validation."""
    messages = []
    for row in rows:
        try:
            messages.append(AgentMessage.from_record(dict(row)))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping corrupt message row {} ({}): {}", row.get("id"), scope, e)
    return messages


class SqlMessageStore:
    """
    Message store backed by the ``agent_messages`` table.

    Every operation runs in its own session; failures are rolled back,
    logged and re-raised.
    """

    def __init__(self, session_factory=None):
        if session_factory is None:
            from infrastructure.db.sql_client import get_session_factory
            session_factory = get_session_factory()
        self.session_factory = session_factory

    async def save(self, message: AgentMessage) -> None:
        """Insert one message."""
        await self.save_many([message])

    async def save_many(self, messages: Sequence[AgentMessage]) -> None:
        """Insert several messages in one transaction."""
        if not messages:
            return
        async with self.session_factory() as session:
            try:
                await session.execute(insert(_t), [m.to_record() for m in messages])
                await session.commit()
                logger.debug("Saved {} message(s) for session={}",
                             len(messages), messages[0].session_id)
            except Exception as e:
                await session.rollback()
                logger.error("Failed to save message(s) {}: {}",
                             ", ".join(m.id for m in messages), e)
                raise

    async def update(self, message: AgentMessage) -> AgentMessage:
        """
        Corrective update of a stored message.

        Increments ``version`` and refreshes ``updated_at`` on both the row
        and ``message``.

        Raises:
            MessageNotFoundError: no row has ``message.id``.
        """
        now = utc_now()
        values: Dict[str, Any] = message.to_record()
        for key in ("id", "created_at", "version"):
            values.pop(key)
        values["updated_at"] = now
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    sa_update(_t)
                    .where(_t.c.id == message.id)
                    .values(version=_t.c.version + 1, **values)
                )
                if result.rowcount == 0:
                    raise MessageNotFoundError(message.id)
                version = (await session.execute(
                    select(_t.c.version).where(_t.c.id == message.id)
                )).scalar_one()
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Failed to update message {}: {}", message.id, e)
                raise
        message.version = version
        message.updated_at = now
        return message

    async def get_by_id(self, message_id: str) -> AgentMessage:
        """
        Raises:
            MessageNotFoundError: no row has ``message_id``.
        """
        _require(message_id, "message_id")
        async with self.session_factory() as session:
            row = (await session.execute(
                select(_t).where(_t.c.id == message_id)
            )).mappings().first()
        if row is None:
            raise MessageNotFoundError(message_id)
        return AgentMessage.from_record(dict(row))

    async def get_by_session(self, session_id: str) -> List[AgentMessage]:
        _require(session_id, "session_id")
        return await self._select(_t.c.session_id == session_id,
                                  scope=f"session={session_id}")

    async def get_by_agent(self, agent_id: str) -> List[AgentMessage]:
        _require(agent_id, "agent_id")
        return await self._select(_t.c.agent_id == agent_id,
                                  scope=f"agent={agent_id}")

    async def get_by_session_and_agent(self, session_id: str, agent_id: str) -> List[AgentMessage]:
        _require(session_id, "session_id")
        _require(agent_id, "agent_id")
        return await self._select(
            _t.c.session_id == session_id,
            _t.c.agent_id == agent_id,
            scope=f"session={session_id} agent={agent_id}",
        )

    async def delete_by_session(self, session_id: str) -> int:
        _require(session_id, "session_id")
        return await self._delete(_t.c.session_id == session_id,
                                  scope=f"session={session_id}")

    async def delete_by_agent(self, agent_id: str) -> int:
        _require(agent_id, "agent_id")
        return await self._delete(_t.c.agent_id == agent_id,
                                  scope=f"agent={agent_id}")

    async def delete_by_session_and_agent(self, session_id: str, agent_id: str) -> int:
        _require(session_id, "session_id")
        _require(agent_id, "agent_id")
        return await self._delete(
            _t.c.session_id == session_id,
            _t.c.agent_id == agent_id,
            scope=f"session={session_id} agent={agent_id}",
        )

    async def _select(self, *criteria, scope: str) -> List[AgentMessage]:
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(_t).where(*criteria).order_by(_t.c.created_at.asc())
            )).mappings().all()
        return _rows_to_messages(rows, scope)

    async def _delete(self, *criteria, scope: str) -> int:
        async with self.session_factory() as session:
            try:
                result = await session.execute(delete(_t).where(*criteria))
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Failed to delete messages ({}): {}", scope, e)
                raise
        logger.info("Deleted {} message(s) ({})", result.rowcount, scope)
        return result.rowcount


class InMemoryMessageStore:
    """
    Dict-backed message store with the same contract as ``SqlMessageStore``.

    Messages are copied on the way in and out, so callers never share
    instances with the store.
    """

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    async def save(self, message: AgentMessage) -> None:
        await self.save_many([message])

    async def save_many(self, messages: Sequence[AgentMessage]) -> None:
        ids = [m.id for m in messages]
        duplicates = [i for i in ids if i in self._records] or [i for i in set(ids) if ids.count(i) > 1]
        if duplicates:
            raise ValueError(f"Duplicate message id(s): {', '.join(sorted(duplicates))}")
        for message in messages:
            self._records[message.id] = message.to_record()

    async def update(self, message: AgentMessage) -> AgentMessage:
        record = self._records.get(message.id)
        if record is None:
            raise MessageNotFoundError(message.id)
        now = utc_now()
        updated = message.to_record()
        updated.update(created_at=record["created_at"], version=record["version"] + 1, updated_at=now)
        self._records[message.id] = updated
        message.version = updated["version"]
        message.updated_at = now
        return message

    async def get_by_id(self, message_id: str) -> AgentMessage:
        _require(message_id, "message_id")
        record = self._records.get(message_id)
        if record is None:
            raise MessageNotFoundError(message_id)
        return AgentMessage.from_record(record)

    async def get_by_session(self, session_id: str) -> List[AgentMessage]:
        _require(session_id, "session_id")
        return self._select(lambda r: r["session_id"] == session_id, scope=f"session={session_id}")

    async def get_by_agent(self, agent_id: str) -> List[AgentMessage]:
        _require(agent_id, "agent_id")
        return self._select(lambda r: r["agent_id"] == agent_id, scope=f"agent={agent_id}")

    async def get_by_session_and_agent(self, session_id: str, agent_id: str) -> List[AgentMessage]:
        _require(session_id, "session_id")
        _require(agent_id, "agent_id")
        return self._select(
            lambda r: r["session_id"] == session_id and r["agent_id"] == agent_id,
            scope=f"session={session_id} agent={agent_id}",
        )

    async def delete_by_session(self, session_id: str) -> int:
        _require(session_id, "session_id")
        return self._delete(lambda r: r["session_id"] == session_id)

    async def delete_by_agent(self, agent_id: str) -> int:
        _require(agent_id, "agent_id")
        return self._delete(lambda r: r["agent_id"] == agent_id)

    async def delete_by_session_and_agent(self, session_id: str, agent_id: str) -> int:
        _require(session_id, "session_id")
        _require(agent_id, "agent_id")
        return self._delete(lambda r: r["session_id"] == session_id and r["agent_id"] == agent_id)

    def _select(self, predicate, scope: str) -> List[AgentMessage]:
        records = sorted(
            (r for r in self._records.values() if predicate(r)),
            key=lambda r: r["created_at"],
        )
        return _rows_to_messages(records, scope)

    def _delete(self, predicate) -> int:
        doomed = [key for key, record in self._records.items() if predicate(record)]
        for key in doomed:
            del self._records[key]
        return len(doomed)

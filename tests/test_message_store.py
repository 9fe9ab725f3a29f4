"""
Tests for the message stores (SQL on a temporary SQLite file, and in-memory).
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert

from conftest import make_message
from history import MessageNotFoundError, Role
from infrastructure.db import agent_messages_table

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes):
    return T0 + timedelta(minutes=minutes)


class StoreContract:
    """Behaviour shared by every MessageStore implementation."""

    @pytest.mark.asyncio
    async def test_save_and_get_by_id(self, store):
        message = make_message(
            "answer",
            role=Role.ASSISTANT,
            agent_name="Writer",
            model_id="gpt-4o-mini",
            metadata={"finish_reason": "stop"},
            input_tokens=12,
            output_tokens=8,
            total_tokens=20,
            created_at=at(0),
            updated_at=at(0),
        )
        await store.save(message)

        loaded = await store.get_by_id(message.id)
        assert loaded == message
        assert loaded is not message
        assert loaded.role is Role.ASSISTANT
        assert loaded.metadata == {"finish_reason": "stop"}
        assert loaded.usage() == {"input_tokens": 12, "output_tokens": 8, "total_tokens": 20}
        assert loaded.created_at == at(0)
        assert loaded.version == 1

    @pytest.mark.asyncio
    async def test_get_missing_id(self, store):
        with pytest.raises(MessageNotFoundError) as exc_info:
            await store.get_by_id("NOPE")
        assert exc_info.value.message_id == "NOPE"
        assert isinstance(exc_info.value, KeyError)

    @pytest.mark.asyncio
    async def test_queries_order_by_creation(self, store):
        await store.save_many([
            make_message("w2", created_at=at(2)),
            make_message("p1", agent_id="planner", created_at=at(1)),
            make_message("w0", created_at=at(0)),
            make_message("other", session_id="S2", created_at=at(3)),
        ])

        assert [m.content for m in await store.get_by_session("S1")] == ["w0", "p1", "w2"]
        assert [m.content for m in await store.get_by_agent("writer")] == ["w0", "w2", "other"]
        assert [m.content for m in await store.get_by_session_and_agent("S1", "writer")] == ["w0", "w2"]
        assert await store.get_by_session("S3") == []

    @pytest.mark.asyncio
    async def test_blank_query_arguments(self, store):
        with pytest.raises(ValueError):
            await store.get_by_session(" ")
        with pytest.raises(ValueError):
            await store.delete_by_session_and_agent("S1", "")

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, store):
        message = make_message("draft", created_at=at(0), updated_at=at(0))
        await store.save(message)

        message.content = "final"
        updated = await store.update(message)

        assert updated.version == 2
        assert updated.updated_at > at(0)
        loaded = await store.get_by_id(message.id)
        assert loaded.content == "final"
        assert loaded.version == 2
        assert loaded.created_at == at(0)

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(MessageNotFoundError):
            await store.update(make_message())

    @pytest.mark.asyncio
    async def test_deletes_return_counts(self, store):
        await store.save_many([
            make_message("a"),
            make_message("b", agent_id="planner"),
            make_message("c", session_id="S2"),
            make_message("d", session_id="S2", agent_id="planner"),
        ])

        assert await store.delete_by_session_and_agent("S1", "planner") == 1
        assert await store.delete_by_agent("planner") == 1
        assert await store.delete_by_session("S2") == 1
        assert await store.delete_by_session("S2") == 0
        assert [m.content for m in await store.get_by_session("S1")] == ["a"]


class TestInMemoryMessageStore(StoreContract):

    @pytest.fixture
    def store(self, memory_store):
        return memory_store

    @pytest.mark.asyncio
    async def test_duplicate_ids_rejected(self, store):
        message = make_message()
        await store.save(message)
        with pytest.raises(ValueError, match="Duplicate"):
            await store.save(message)

    @pytest.mark.asyncio
    async def test_corrupt_records_are_skipped(self, store, captured_logs):
        good = make_message("good", created_at=at(0))
        bad = make_message("bad", created_at=at(1))
        await store.save_many([good, bad])
        store._records[bad.id]["role"] = "bogus"

        messages = await store.get_by_session_and_agent("S1", "writer")
        assert [m.content for m in messages] == ["good"]
        assert any("Skipping corrupt message row" in r["message"] for r in captured_logs)


class TestSqlMessageStore(StoreContract):

    @pytest.fixture
    def store(self, sql_store):
        return sql_store

    @pytest.mark.asyncio
    async def test_duplicate_insert_rolls_back_batch(self, store):
        existing = make_message("existing")
        await store.save(existing)

        fresh = make_message("fresh")
        with pytest.raises(Exception):
            await store.save_many([fresh, existing])

        assert [m.content for m in await store.get_by_session("S1")] == ["existing"]

    @pytest.mark.asyncio
    async def test_corrupt_rows_are_skipped(self, store, sql_engine, captured_logs):
        good = make_message("good", created_at=at(0))
        await store.save(good)

        bad = make_message("bad", created_at=at(1)).to_record()
        bad["role"] = "bogus"
        async with sql_engine.begin() as conn:
            await conn.execute(insert(agent_messages_table), [bad])

        messages = await store.get_by_session("S1")
        assert [m.content for m in messages] == ["good"]
        assert any("Skipping corrupt message row" in r["message"] for r in captured_logs)

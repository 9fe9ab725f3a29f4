"""
Tests for ConversationHistory and the message schema.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import insert

from conftest import make_message
from history import AgentMessage, ChatTurn, ConversationHistory, InMemoryMessageStore, Role
from infrastructure.db import agent_messages_table


class TestAgentMessage:
    """Tests for AgentMessage validation."""

    def test_defaults(self):
        message = make_message()
        assert len(message.id) == 32
        assert message.id == message.id.upper()
        assert message.mime_type == "text/markdown"
        assert message.version == 1
        assert message.created_at.tzinfo is not None

    def test_role_from_string(self):
        assert make_message(role="Assistant").role is Role.ASSISTANT

    @pytest.mark.parametrize("field", ["session_id", "agent_id"])
    def test_blank_required_fields(self, field):
        with pytest.raises(ValueError):
            make_message(**{field: "  "})

    def test_invalid_role(self):
        with pytest.raises(ValueError, match="invalid role"):
            make_message(role="robot")

    def test_id_is_immutable(self):
        message = make_message()
        with pytest.raises(AttributeError):
            message.id = "OTHER"

    def test_equality_follows_id(self):
        a = make_message("one", id="ABC")
        b = make_message("two", id="ABC")
        assert a == b
        assert len({a, b}) == 1

    def test_naive_datetime_becomes_utc(self):
        message = make_message(created_at=datetime(2024, 1, 1, 12, 0))
        assert message.created_at == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_record_rejects_bad_metadata(self):
        record = make_message().to_record()
        record["metadata_json"] = "[1, 2]"
        with pytest.raises(ValueError, match="JSON object"):
            AgentMessage.from_record(record)

    def test_usage_skips_unknown_counts(self):
        message = make_message(role=Role.ASSISTANT, input_tokens=3, output_tokens=4, total_tokens=7)
        assert message.usage() == {"input_tokens": 3, "output_tokens": 4, "total_tokens": 7}
        assert make_message().usage() == {}


class TestConversationHistory:
    """Tests for the two history projections."""

    def test_projections_stay_aligned(self):
        history = ConversationHistory()
        first = make_message("hi", agent_name="Writer")
        second = make_message("there", role=Role.ASSISTANT)
        history.append(first)
        history.extend([second])

        assert len(history) == 2
        assert history.messages == [first, second]
        assert history.turns == [
            ChatTurn(role=Role.USER, content="hi", name="Writer"),
            ChatTurn(role=Role.ASSISTANT, content="there", name=None),
        ]
        assert [item.message for item in history.items] == history.messages

    def test_append_rejects_other_types(self):
        history = ConversationHistory()
        with pytest.raises(TypeError):
            history.append(ChatTurn(role=Role.USER, content="hi"))
        with pytest.raises(TypeError):
            history.extend([make_message(), "nope"])
        assert len(history) == 0

    def test_remove(self):
        message = make_message()
        history = ConversationHistory([message])
        assert history.remove(message.id) is True
        assert len(history) == 0
        assert history.remove(message) is False

    def test_merge_is_idempotent(self):
        a, b, c = make_message("a"), make_message("b"), make_message("c")
        history = ConversationHistory([a])

        assert history.merge([a, b, c, b]) == 2
        assert history.merge([a, b, c]) == 0
        assert [m.content for m in history] == ["a", "b", "c"]

    def test_merge_keeps_first_seen_copy(self):
        original = make_message("original", id="SAME")
        history = ConversationHistory([original])
        history.merge([make_message("changed", id="SAME")])
        assert history.last().content == "original"

    def test_contains(self):
        message = make_message()
        history = ConversationHistory([message])
        assert message in history
        assert message.id in history
        assert "missing" not in history

    def test_transcript(self):
        history = ConversationHistory([
            make_message("Draft the plan.", agent_name="Planner"),
            make_message("  1. Outline  ", role=Role.ASSISTANT, agent_id="writer"),
        ])
        assert history.transcript() == (
            "### Planner (user)\n\nDraft the plan.\n"
            "\n---\n\n"
            "### writer (assistant)\n\n1. Outline\n"
        )

    @pytest.mark.asyncio
    async def test_restore_appends_in_creation_order(self):
        store = InMemoryMessageStore()
        late = make_message("late", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc))
        early = make_message("early", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        other = make_message("other agent", agent_id="planner")
        await store.save_many([late, early, other])

        seed = make_message("system", role=Role.SYSTEM)
        history = ConversationHistory([seed])
        restored = await history.restore(store, "S1", "writer")

        assert restored == 2
        assert [m.content for m in history] == ["system", "early", "late"]

    @pytest.mark.asyncio
    async def test_corrective_update_reaches_both_projections(self):
        store = InMemoryMessageStore()
        draft = make_message("draft v1", role=Role.ASSISTANT)
        await store.save(draft)
        history = ConversationHistory([draft])

        draft.content = "draft v2"
        await store.update(draft)

        assert [t.content for t in history.turns] == ["draft v2"]
        assert [m.content for m in history.messages] == ["draft v2"]
        assert "draft v2" in history.transcript()

    @pytest.mark.asyncio
    async def test_restore_then_transcript_skips_corrupt_row(self, sql_store, sql_engine, captured_logs):
        question = make_message("What is the plan?", agent_name="Planner",
                                created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        answer = make_message("Ship on Friday.", role=Role.ASSISTANT, agent_name="Writer",
                              created_at=datetime(2024, 1, 3, tzinfo=timezone.utc))
        await sql_store.save_many([question, answer])

        bad = make_message("lost", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc)).to_record()
        bad["role"] = "bogus"
        async with sql_engine.begin() as conn:
            await conn.execute(insert(agent_messages_table), [bad])

        history = ConversationHistory()
        restored = await history.restore(sql_store, "S1", "writer")

        assert restored == 2
        assert history.transcript() == (
            "### Planner (user)\n\nWhat is the plan?\n"
            "\n---\n\n"
            "### Writer (assistant)\n\nShip on Friday.\n"
        )
        assert any("Skipping corrupt message row" in r["message"] for r in captured_logs)

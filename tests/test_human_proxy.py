"""
Tests for the human proxy agent.
"""
import io

import pytest
from rich.console import Console

from agents import ConsoleHumanProxy, SessionNotStartedError
from conftest import ScriptedHumanProxy
from history import Role


def make_human(store, answers):
    human = ScriptedHumanProxy(store, answers)
    human.start_session()
    return human


class TestHumanProxy:
    """Tests for HumanProxy send / respond / stream."""

    @pytest.mark.asyncio
    async def test_send_records_answer(self, memory_store):
        human = make_human(memory_store, ["Approved"])

        response = await human.send("Approve the plan?")

        assert human.prompts == ["Approve the plan?"]
        assert response.role is Role.HUMAN
        assert response.content == "Approved"
        assert response.model_id == "human-proxy"
        assert response.agent_name == "Human"
        assert [m.role for m in human.history] == [Role.SYSTEM, Role.USER, Role.HUMAN]

        stored = await memory_store.get_by_session(human.session_id)
        assert [m.content for m in stored] == ["Approve the plan?", "Approved"]

    @pytest.mark.asyncio
    async def test_respond_uses_latest_message(self, memory_store):
        human = make_human(memory_store, ["Looks good"])
        human.history.append(human._new_message(Role.ASSISTANT, "Here is the draft", agent_name="Writer"))

        response = await human.respond()

        assert human.prompts == ["Here is the draft"]
        assert response.content == "Looks good"
        assert [m.content for m in await memory_store.get_by_session(human.session_id)] == ["Looks good"]

    @pytest.mark.asyncio
    async def test_failed_input_rolls_back(self, memory_store):
        human = make_human(memory_store, [EOFError()])
        with pytest.raises(EOFError):
            await human.send("Anything?")
        assert len(human.history) == 1

    @pytest.mark.asyncio
    async def test_stream_delivers_single_chunk(self, memory_store):
        human = make_human(memory_store, ["All in one"])
        chunks = []
        response = await human.stream("Go", chunks.append)
        assert chunks == ["All in one"]
        assert response.content == "All in one"

    @pytest.mark.asyncio
    async def test_requires_session(self, memory_store):
        human = ScriptedHumanProxy(memory_store, ["x"])
        with pytest.raises(SessionNotStartedError):
            await human.send("Hello")

    @pytest.mark.asyncio
    async def test_print_message_is_not_history(self, memory_store):
        human = make_human(memory_store, [])
        await human.print_message("Planner is up next.")
        assert human.printed == [("Planner is up next.", "text/markdown")]
        assert len(human.history) == 1


class TestConsoleHumanProxy:
    """Tests for the rich console front end."""

    @pytest.mark.asyncio
    async def test_wait_for_response_reads_console(self, memory_store, monkeypatch):
        output = io.StringIO()
        console = Console(file=output, force_terminal=False, width=80)
        human = ConsoleHumanProxy(memory_store, console=console)
        human.start_session()
        monkeypatch.setattr("agents.human_proxy.RichPrompt.ask", lambda *args, **kwargs: "  yes  ")

        response = await human.send("Ship it?")

        assert response.content == "yes"
        assert "Ship it?" in output.getvalue()

    @pytest.mark.asyncio
    async def test_print_message_plain_text(self, memory_store):
        output = io.StringIO()
        human = ConsoleHumanProxy(memory_store, console=Console(file=output, width=80))
        await human.print_message("**not bold**", mime_type="text/plain")
        assert "**not bold**" in output.getvalue()

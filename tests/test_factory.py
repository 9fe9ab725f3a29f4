"""
Tests for the agent factory and router wiring.
"""
import pytest
from langchain_core.messages import AIMessage

from agents import AgentFactory, LLMAgent, RouterAgent, build_router
from agents.factory import agent_id_for
from conftest import ScriptedHumanProxy
from infrastructure.config import load_agent_roster
from infrastructure.llm import LangChainCompletion


class StubChatModel:
    def __init__(self, model=None, **kwargs):
        self.model_name = model or "stub-model"

    def bind_tools(self, tools):
        return self

    def bind(self, **kwargs):
        return self

    async def ainvoke(self, messages):
        return AIMessage(content="ok")


def make_factory(store):
    return AgentFactory(store, agent_llm_factory=StubChatModel, router_llm_factory=StubChatModel)


ROSTER = [
    {"name": "Data Analyst", "description": "Crunches numbers.", "system_prompt": "You analyse data."},
    {"name": "Writer", "id": "writer-1", "model": "gpt-4o-mini", "system_prompt": "You write."},
]


class TestAgentFactory:
    """Tests for AgentFactory."""

    def test_agent_id_for(self):
        assert agent_id_for(" Data Analyst ") == "data_analyst"

    def test_from_roster(self, memory_store):
        analyst, writer = make_factory(memory_store).from_roster(ROSTER)

        assert isinstance(analyst, LLMAgent)
        assert analyst.id == "data_analyst"
        assert analyst.system_prompt == "You analyse data."
        assert writer.id == "writer-1"
        assert writer.completion.model_name == "gpt-4o-mini"
        assert writer.default_settings.model_id == "gpt-4o-mini"
        assert "add_days" in writer.completion.tools

    def test_create_without_tools(self, memory_store):
        agent = make_factory(memory_store).create("Critic", "Reviews.", "Be harsh.", tools=[])
        assert agent.completion.tools == {}

    def test_create_rejects_blank_name(self, memory_store):
        with pytest.raises(ValueError):
            make_factory(memory_store).create(" ", "", "prompt")

    def test_create_router(self, memory_store):
        router = make_factory(memory_store).create_router()
        assert isinstance(router, RouterAgent)
        assert isinstance(router.completion, LangChainCompletion)
        assert router.completion.tools == {}

    def test_configured_roster(self):
        names = [entry["name"] for entry in load_agent_roster()]
        assert names == ["Planner", "Writer", "Reviewer"]


class TestBuildRouter:
    """Tests for the build_router convenience factory."""

    def test_build_router_wires_roster(self, memory_store):
        human = ScriptedHumanProxy(memory_store, [])
        router = build_router(store=memory_store, roster=ROSTER, human=human)

        assert router.is_initialized
        assert [a.name for a in router.agents] == ["Data Analyst", "Writer"]
        assert router.human is human
        assert human.session_id == router.session_id

    def test_empty_roster(self, memory_store):
        with pytest.raises(ValueError, match="empty"):
            build_router(store=memory_store, roster=[], human=ScriptedHumanProxy(memory_store, []))

"""
Agent factory - builds wired agents and routers from config.

  AgentFactory.create()       → one LLMAgent (ChatOpenAI + completion adapter)
  AgentFactory.from_roster()  → LLMAgents for every entry of config/agents.yaml
  AgentFactory.create_router()→ RouterAgent on the router model
  build_router()              → router + roster + console human, session started
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from agents.human_proxy import ConsoleHumanProxy, HumanProxy
from agents.llm_agent import LLMAgent
from agents.router import RouterAgent
from agents.tools import DATE_TOOLS
from history import MessageStore
from infrastructure.llm import (
    ExecutionSettings,
    LangChainCompletion,
    ToolPolicy,
    get_agent_llm,
    get_router_llm,
)

LLMFactory = Callable[..., Any]


def agent_id_for(name: str) -> str:
    """Derive a stable agent id from a display name."""
    return name.strip().lower().replace(" ", "_")


class AgentFactory:
    """
    Creates agents sharing one message store.

    Args:
        store: Message store for every created agent.
        agent_llm_factory: ``(model=None) -> chat model``; defaults to
            ``get_agent_llm``.
        router_llm_factory: ``() -> chat model``; defaults to ``get_router_llm``.
    """

    def __init__(
        self,
        store: MessageStore,
        agent_llm_factory: Optional[LLMFactory] = None,
        router_llm_factory: Optional[LLMFactory] = None,
    ) -> None:
        self.store = store
        self.agent_llm_factory = agent_llm_factory or get_agent_llm
        self.router_llm_factory = router_llm_factory or get_router_llm

    def create(
        self,
        name: str,
        description: str,
        system_prompt: str,
        model_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        settings: Optional[ExecutionSettings] = None,
        tools: Optional[Sequence[Any]] = None,
    ) -> LLMAgent:
        """Build one LLM agent; tools default to the date tools."""
        if not name or not name.strip():
            raise ValueError("Agent name must be a non-empty string")
        llm = self.agent_llm_factory(model=model_id)
        completion = LangChainCompletion(llm, tools=DATE_TOOLS if tools is None else tools)
        agent = LLMAgent(
            self.store,
            completion,
            agent_id=agent_id or agent_id_for(name),
            name=name,
            description=description,
            system_prompt=system_prompt,
            settings=settings or ExecutionSettings(model_id=model_id, tool_policy=ToolPolicy.AUTO),
        )
        logger.debug("Created agent {} ({})", agent.name, agent.id)
        return agent

    def from_roster(self, entries: Iterable[Dict[str, Any]]) -> List[LLMAgent]:
        """Build agents from roster entries (``name``, ``description``, ``system_prompt``, optional ``id``/``model``)."""
        agents = []
        for entry in entries:
            agents.append(self.create(
                name=entry["name"],
                description=entry.get("description", ""),
                system_prompt=entry.get("system_prompt") or None,
                model_id=entry.get("model"),
                agent_id=entry.get("id"),
            ))
        return agents

    def create_router(self, settings: Optional[ExecutionSettings] = None) -> RouterAgent:
        return RouterAgent(
            self.store,
            LangChainCompletion(self.router_llm_factory()),
            settings=settings,
        )


def build_router(
    store: Optional[MessageStore] = None,
    roster: Optional[Iterable[Dict[str, Any]]] = None,
    human: Optional[HumanProxy] = None,
) -> RouterAgent:
    """
    Convenience factory that constructs and wires all components.

    Reads config / env for API keys and the database URL. The returned router
    has its roster bound and a fresh shared session started.

    Args:
        store: Message store; defaults to ``SqlMessageStore`` on DATABASE_URL.
        roster: Agent definitions; defaults to config/agents.yaml.
        human: Human proxy; defaults to a ``ConsoleHumanProxy``.
    """
    from dotenv import load_dotenv

    load_dotenv()

    # Install the tracer provider before the first span opens
    from infrastructure.observability import get_tracer_provider

    get_tracer_provider()

    from history import SqlMessageStore
    from infrastructure.config import load_agent_roster

    store = store or SqlMessageStore()
    entries = list(roster) if roster is not None else load_agent_roster()
    if not entries:
        raise ValueError("The agent roster is empty (config/agents.yaml)")

    factory = AgentFactory(store)
    agents = factory.from_roster(entries)
    router = factory.create_router()
    human = human or ConsoleHumanProxy(store)
    router.initialize_agents(human, agents)

    logger.info("Router ready with {} agent(s): {}", len(agents), ", ".join(a.name for a in agents))
    return router

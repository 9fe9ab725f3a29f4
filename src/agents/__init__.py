"""
Goal router - the core agent module.

Public API:
    build_router()       → RouterAgent (fully wired, roster bound)
    RouterAgent          → goal pursuit across specialised agents
    RouteDecision        → structured routing result
    LLMAgent             → agent backed by a chat completion
    HumanProxy           → agent backed by a human operator
    ChatWithHuman        → human ⇄ agent relay loop
    AgentFactory         → builds agents from config
"""

from .base import AgentBase
from .errors import (
    AgentError,
    RouteResolutionError,
    RouterNotInitializedError,
    SessionNotStartedError,
    TemplateRenderError,
)
from .factory import AgentFactory, build_router
from .human_proxy import ConsoleHumanProxy, HumanProxy
from .llm_agent import LLMAgent
from .orchestrator import ChatResult, ChatWithHuman
from .router import GoalOutcome, RouteDecision, RouterAgent, RouterState, parse_route_decision

__all__ = [
    "AgentBase",
    "AgentError",
    "AgentFactory",
    "ChatResult",
    "ChatWithHuman",
    "ConsoleHumanProxy",
    "GoalOutcome",
    "HumanProxy",
    "LLMAgent",
    "RouteDecision",
    "RouteResolutionError",
    "RouterAgent",
    "RouterNotInitializedError",
    "RouterState",
    "SessionNotStartedError",
    "TemplateRenderError",
    "build_router",
    "parse_route_decision",
]

"""
Agent error taxonomy.

Precondition violations on arguments use the built-in ``ValueError`` /
``TypeError``; everything agent-specific derives from ``AgentError``.
"""


class AgentError(Exception):
    """Base class for agent and router failures."""


class SessionNotStartedError(AgentError, RuntimeError):
    """An operation needs an active session and none was started or set."""


class RouterNotInitializedError(AgentError, RuntimeError):
    """``pursue_goal`` was called before ``initialize_agents``."""


class RouteResolutionError(AgentError):
    """
    A route decision could not be turned into an agent.

    Raised for malformed decision payloads and for agent names that match
    neither the roster nor a stop sentinel. Never retried.
    """

    def __init__(self, message: str, *, raw: str = None, agent_name: str = None):
        super().__init__(message)
        self.raw = raw
        self.agent_name = agent_name


class TemplateRenderError(AgentError):
    """A prompt template could not be rendered with its data."""

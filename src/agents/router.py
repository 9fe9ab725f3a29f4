"""
Router agent - goal pursuit across a roster of specialised agents.

The router is an ``LLMAgent`` whose every answer is a ``RouteDecision``
(structured JSON, temperature 0). ``pursue_goal`` loops:

  1. Ask for a decision (the goal first, then "is the goal complete?")
  2. Resolve the named agent (stop sentinels and goal completion end the loop)
  3. Seed the agent with the router's shared history and let it answer
  4. Merge the agent's turns back into the shared history

Unknown agent names and malformed decisions are fatal, never guessed.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agents.base import AgentBase, MessageCallback
from agents.errors import RouteResolutionError, RouterNotInitializedError
from agents.human_proxy import HumanProxy
from agents.llm_agent import LLMAgent
from agents.prompts.agent_prompts import build_follow_up_prompt, build_router_system_prompt
from history import AgentMessage, MessageStore, Role
from infrastructure.config import (
    ROUTE_RATIONALE_MAX_LENGTH,
    ROUTER_AGENT_ID,
    ROUTER_AGENT_NAME,
    ROUTER_MAX_ITERATIONS,
    ROUTER_MODEL,
    ROUTER_STOP_SENTINELS,
)
from infrastructure.llm.completion import ChatCompletion, ExecutionSettings, ToolPolicy
from infrastructure.observability import observe, update_current_trace


class RouteDecision(BaseModel):
    """
    Output of one router LLM call.

    Attributes:
        next: Name of the next agent, or a stop sentinel ("stop" / "exit").
        rationale: Short explanation shown to the operator.
        confidence: Router's self-assessed confidence [0-1].
        goal_completed: True ends the loop whatever ``next`` says.
    """

    model_config = ConfigDict(extra="forbid")

    next: str = Field(..., min_length=1, description="Exact name of the next agent, or STOP.")
    rationale: str = Field(
        "",
        description="Why this agent was chosen.",
        json_schema_extra={"maxLength": ROUTE_RATIONALE_MAX_LENGTH},
    )
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    goal_completed: bool = False

    @field_validator("rationale", mode="before")
    @classmethod
    def clip_rationale(cls, value):
        if value is None:
            return ""
        value = str(value).strip()
        return value[:ROUTE_RATIONALE_MAX_LENGTH]

    @property
    def is_stop(self) -> bool:
        return self.next.strip().lower() in ROUTER_STOP_SENTINELS


class RouterState(str, Enum):
    IDLE = "idle"
    AWAITING_DECISION = "awaiting_decision"
    DISPATCHING = "dispatching"
    MERGING = "merging"
    GOAL_COMPLETE = "goal_complete"
    STOPPED = "stopped"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"


@dataclass
class GoalOutcome:
    """
    Result of one ``pursue_goal`` run.

    Attributes:
        status: Terminal router state.
        dispatches: Number of agent turns executed.
        decisions: Every decision taken, in order.
        session_id: Shared session of the roster.
        last_agent: Name of the last agent dispatched.
    """

    status: RouterState
    dispatches: int
    decisions: List[RouteDecision] = field(default_factory=list)
    session_id: Optional[str] = None
    last_agent: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status is RouterState.GOAL_COMPLETE


def router_execution_settings(user: str = ROUTER_AGENT_NAME) -> ExecutionSettings:
    """Deterministic, schema-constrained settings for route decisions."""
    return ExecutionSettings(
        model_id=ROUTER_MODEL,
        temperature=0,
        response_format={
            "type": "json_schema",
            "json_schema": {
                "name": "route_decision",
                "schema": RouteDecision.model_json_schema(),
                "strict": False,
            },
        },
        tool_policy=ToolPolicy.NONE,
        user=user,
    )


# ── parsing ───────────────────────────────────────────────


def parse_route_decision(raw: str) -> RouteDecision:
    """
    Parse the router's JSON output.

    Handles markdown fences and leading/trailing prose.

    Raises:
        RouteResolutionError: no JSON object, invalid JSON or a payload
            that does not match ``RouteDecision``.
    """
    # Strip markdown fences if present
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]  # drop first line
    if text.endswith("```"):
        text = text.rsplit("```", 1)[0]
    text = text.strip()

    # Locate JSON object boundaries
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise RouteResolutionError("Router output is not a JSON object", raw=raw)

    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise RouteResolutionError(f"Router JSON parse error: {exc}", raw=raw) from exc

    try:
        return RouteDecision.model_validate(data)
    except ValidationError as exc:
        raise RouteResolutionError(f"Router decision is invalid: {exc}", raw=raw) from exc


class RouterAgent(LLMAgent):
    """
    Pursues a goal by routing turns between specialised agents and a human.

    The roster is fixed by ``initialize_agents`` and shares one session id,
    so every persisted message of a goal run can be found by session.
    """

    def __init__(
        self,
        store: MessageStore,
        completion: ChatCompletion,
        *,
        agent_id: str = ROUTER_AGENT_ID,
        name: str = ROUTER_AGENT_NAME,
        description: str = "Routes each step of a goal to the most suitable specialised agent.",
        settings: Optional[ExecutionSettings] = None,
        on_message_completed: Optional[MessageCallback] = None,
    ):
        super().__init__(
            store,
            completion,
            agent_id=agent_id,
            name=name,
            description=description,
            settings=settings or router_execution_settings(name),
            on_message_completed=on_message_completed,
        )
        self.human: Optional[HumanProxy] = None
        self.agents: List[AgentBase] = []
        self._roster: Dict[str, AgentBase] = {}
        self.state = RouterState.IDLE
        self.decisions: List[RouteDecision] = []

    @property
    def is_initialized(self) -> bool:
        return self.human is not None and bool(self.agents) and self.session_id is not None

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def initialize_agents(
        self,
        human: HumanProxy,
        agents: Iterable[AgentBase],
        system_prompt: Optional[str] = None,
    ) -> str:
        """
        Bind the roster and start the shared session.

        Args:
            human: The human proxy (also routable by name).
            agents: Specialised agents, in prompt order.
            system_prompt: Overrides the prompt generated from the roster.

        Returns:
            The session id now shared by the router and every roster member.
        """
        if human is None:
            raise ValueError("initialize_agents requires a human proxy")
        agents = list(agents or [])
        if not agents:
            raise ValueError("initialize_agents requires at least one specialised agent")

        roster: Dict[str, AgentBase] = {}
        ids = {self.id}
        for agent in [*agents, human]:
            key = agent.name.strip().lower()
            if key in ROUTER_STOP_SENTINELS:
                raise ValueError(f"Agent name '{agent.name}' is reserved as a stop sentinel")
            if key in roster:
                raise ValueError(f"Duplicate agent name '{agent.name}' (names are case-insensitive)")
            if agent.id == self.id:
                raise ValueError(f"Agent '{agent.name}' uses the router's id '{self.id}'")
            if agent.id in ids:
                raise ValueError(f"Duplicate agent id '{agent.id}' (agent '{agent.name}')")
            ids.add(agent.id)
            roster[key] = agent

        if system_prompt is None:
            system_prompt = build_router_system_prompt(
                [(a.name, a.description) for a in [*agents, human]],
                human_name=human.name,
            )
        self.set_system_prompt(system_prompt)

        self.human = human
        self.agents = agents
        self._roster = roster

        session_id = self.start_session()
        for agent in roster.values():
            agent.set_session(session_id)
            agent.reset_history()

        self.state = RouterState.IDLE
        self.decisions = []
        logger.info("Router initialised: session={} roster={}",
                    session_id, ", ".join(a.name for a in roster.values()))
        return session_id

    def resolve(self, decision: RouteDecision) -> Optional[AgentBase]:
        """
        Map a decision to the agent that acts next.

        Returns:
            None when the goal is complete or a stop sentinel was named.

        Raises:
            RouteResolutionError: the name matches no roster member.
        """
        if decision.goal_completed or decision.is_stop:
            return None
        agent = self._roster.get(decision.next.strip().lower())
        if agent is None:
            raise RouteResolutionError(
                f"Router chose unknown agent '{decision.next}' "
                f"(session={self.session_id}, roster: {', '.join(a.name for a in self._roster.values())})",
                agent_name=decision.next,
            )
        return agent

    def shared_context(self) -> List[AgentMessage]:
        """Conversation the roster shares: everything but system seeds and router decisions."""
        return [
            m for m in self.history.messages
            if m.role is not Role.SYSTEM and m.agent_id != self.id
        ]

    # ------------------------------------------------------------------
    # Goal pursuit
    # ------------------------------------------------------------------

    @observe(name="router.pursue_goal")
    async def pursue_goal(self, goal: str, max_iterations: int = ROUTER_MAX_ITERATIONS) -> GoalOutcome:
        """
        Route turns until the goal is complete, a stop sentinel is chosen or
        ``max_iterations`` agent turns have run.

        Errors from any agent (the router's own decision calls included)
        propagate unchanged; nothing is retried here.
        """
        if not self.is_initialized:
            raise RouterNotInitializedError(
                f"[{self.name}] call initialize_agents() before pursue_goal()"
            )
        if not isinstance(goal, str) or not goal.strip():
            raise ValueError("goal must be a non-empty string")
        if max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {max_iterations}")

        update_current_trace(session_id=self.session_id, user_id=self.id, metadata={"goal": goal[:200]})
        logger.info("Pursuing goal (session={}, max_iterations={}): {}",
                    self.session_id, max_iterations, goal[:120])

        self.decisions = []
        dispatches = 0
        last_agent: Optional[AgentBase] = None
        try:
            decision = await self._decide(goal)
            agent = self.resolve(decision)
            while agent is not None and dispatches < max_iterations:
                await self._dispatch(agent, decision, goal, first=dispatches == 0)
                dispatches += 1
                last_agent = agent
                decision = await self._decide(build_follow_up_prompt(goal, agent.name))
                agent = self.resolve(decision)
        except BaseException:
            self.state = RouterState.ERROR
            raise

        if agent is None:
            self.state = RouterState.GOAL_COMPLETE if decision.goal_completed else RouterState.STOPPED
        else:
            self.state = RouterState.MAX_ITERATIONS
            logger.warning("Goal not finished after {} dispatch(es) (session={})", dispatches, self.session_id)

        logger.info("Goal pursuit ended: {} after {} dispatch(es)", self.state.value, dispatches)
        return GoalOutcome(
            status=self.state,
            dispatches=dispatches,
            decisions=list(self.decisions),
            session_id=self.session_id,
            last_agent=last_agent.name if last_agent else None,
        )

    async def _decide(self, prompt: str) -> RouteDecision:
        self.state = RouterState.AWAITING_DECISION
        reply = await self.send(prompt)
        decision = parse_route_decision(reply.content)
        self.decisions.append(decision)
        logger.info("Route decision: next={} completed={} confidence={:.2f} - {}",
                    decision.next, decision.goal_completed, decision.confidence, decision.rationale)
        return decision

    async def _dispatch(self, agent: AgentBase, decision: RouteDecision, goal: str, *, first: bool) -> AgentMessage:
        self.state = RouterState.DISPATCHING
        agent.reset_history()
        seeded = agent.history.merge(self.shared_context())
        logger.debug("Seeded {} with {} shared message(s)", agent.name, seeded)

        await self.human.print_message(f"**{agent.name}** is up next. {decision.rationale}")
        response = await agent.send(goal) if first else await agent.respond()

        self.state = RouterState.MERGING
        merged = self.history.merge(m for m in agent.history.messages if m.role is not Role.SYSTEM)
        logger.debug("Merged {} message(s) from {}", merged, agent.name)

        if agent is not self.human:
            await self.human.print_message(f"### {agent.name}\n\n{response.content}", response.mime_type)
        return response

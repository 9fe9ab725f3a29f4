"""
Prompt templates for the router agent.

Prompts are resolved by name at runtime. A template registered under the
same name in the ``prompts`` section of config/param.yaml overrides the
local fallback (defined below) - so the system works out-of-the-box.

Templates use Mustache: {{{variable}}} inserts text as-is, {{variable}}
HTML-escapes it.

Two prompt roles:
  1. ROUTER SYSTEM - roster description + decision format
  2. FOLLOW-UP     - asks the router to judge the last turn and pick again
"""

from typing import Iterable, Optional, Tuple

from infrastructure.config import ROUTE_RATIONALE_MAX_LENGTH, ROUTER_STOP_SENTINELS
from infrastructure.observability import fetch_prompt


# Prompt names → keys for overrides in config/param.yaml


PROMPT_NAMES = {
    "router_system":    "goal-router-system",
    "router_follow_up": "goal-router-follow-up",
}


# 1. ROUTER SYSTEM (fallback)


_ROUTER_SYSTEM_FALLBACK = """\
You are a router agent that decides which specialized agent should act next
to move the user's goal forward.

You have access to the following agents:
{{{agent_list}}}

RULES:
1. Pick exactly ONE agent per turn, by its exact name from the list above.
2. Route to {{{human_name}}} when the goal needs a decision, an approval or
   information only a person can give.
3. Set "goal_completed" to true as soon as the conversation satisfies the goal.
4. Use "{{stop_word}}" as the agent name when no agent can make progress.

OUTPUT FORMAT (strict JSON, no markdown fences):
{
  "next": "<agent name or {{stop_word}}>",
  "rationale": "<why this agent, at most {{rationale_max}} characters>",
  "confidence": <0.0-1.0>,
  "goal_completed": <true|false>
}
"""


# 2. FOLLOW-UP (fallback)


_ROUTER_FOLLOW_UP_FALLBACK = """\
{{{agent_name}}} has just responded. Evaluate the whole conversation against the goal:

GOAL:
{{{goal}}}

Is the goal now complete? If it is, set "goal_completed" to true.
Otherwise choose the next agent. Answer with the JSON decision only."""


# Prompt builders - config override first, fall back to local


def format_agent_list(roster: Iterable[Tuple[str, str]]) -> str:
    """Render ``(name, description)`` pairs as a markdown bullet list."""
    lines = []
    for name, description in roster:
        lines.append(f"- {name}: {description}" if description else f"- {name}")
    return "\n".join(lines)


def build_router_system_prompt(
    roster: Iterable[Tuple[str, str]],
    human_name: str,
    stop_word: Optional[str] = None,
) -> str:
    """Return the router's system prompt for a roster (human proxy included)."""
    return fetch_prompt(
        PROMPT_NAMES["router_system"],
        fallback=_ROUTER_SYSTEM_FALLBACK,
        agent_list=format_agent_list(roster),
        human_name=human_name,
        stop_word=(stop_word or ROUTER_STOP_SENTINELS[0]).upper(),
        rationale_max=ROUTE_RATIONALE_MAX_LENGTH,
    )


def build_follow_up_prompt(goal: str, agent_name: str) -> str:
    """Return the prompt asking the router whether ``goal`` is complete."""
    return fetch_prompt(
        PROMPT_NAMES["router_follow_up"],
        fallback=_ROUTER_FOLLOW_UP_FALLBACK,
        goal=goal,
        agent_name=agent_name,
    )

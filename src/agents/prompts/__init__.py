"""
Agent prompt templates - router system prompt and follow-up query.

Prompts can be overridden by name in config/param.yaml.
Local fallbacks are defined in 'agent_prompts.py'.
"""

from .agent_prompts import (
    PROMPT_NAMES,
    build_follow_up_prompt,
    build_router_system_prompt,
    format_agent_list,
)
from .templating import render_template

__all__ = [
    "PROMPT_NAMES",
    "build_follow_up_prompt",
    "build_router_system_prompt",
    "format_agent_list",
    "render_template",
]

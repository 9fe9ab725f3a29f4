"""
Application configuration - loads from YAML param files.

CONFIGURATION POLICY:
====================
Configuration is loaded from config/param.yaml (models, router, storage)
and config/agents.yaml (the specialised agent roster).
Secrets (API keys) and per-deployment overrides live ONLY in .env and are
loaded via os.getenv().

Supported LLM providers:
- OpenAI (direct)
- OpenRouter (unified multi-provider access)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import yaml
from loguru import logger

# ========================================
# Project Paths
# ========================================

# Get project root (parent of src/infrastructure/)
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_CONFIG_DIR = _PROJECT_ROOT / "config"

# ========================================
# YAML Config Loading
# ========================================

def _load_yaml(filename: str) -> Dict[str, Any]:
    """Load a YAML config file."""
    filepath = _CONFIG_DIR / filename
    if not filepath.exists():
        return {}
    with open(filepath, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _get_nested(d: Dict, *keys, default=None):
    """Get nested dictionary value safely."""
    for key in keys:
        if isinstance(d, dict):
            d = d.get(key, default)
        else:
            return default
    return d if d is not None else default


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean override from the environment."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Load configs
_PARAMS = _load_yaml("param.yaml")
_AGENTS = _load_yaml("agents.yaml")

# ========================================
# Provider Configuration
# ========================================

PROVIDER = _get_nested(_PARAMS, "provider", "default", default="openai")
OPENROUTER_BASE_URL = _get_nested(_PARAMS, "provider", "openrouter_base_url",
                                   default="https://openrouter.ai/api/v1")

# ========================================
# 2-Model Architecture
# ========================================
# Specialised agents and the router use separate models:
#   Agent:  free-form answers, streaming, tool calls
#   Router: deterministic JSON route decisions (temperature pinned to 0)

AGENT_MODEL = _get_nested(_PARAMS, "models", "agent", "name", default="gpt-4o")
AGENT_PROVIDER = _get_nested(_PARAMS, "models", "agent", "provider", default=PROVIDER)

ROUTER_MODEL = _get_nested(_PARAMS, "models", "router", "name", default="gpt-4o")
ROUTER_PROVIDER = _get_nested(_PARAMS, "models", "router", "provider", default=PROVIDER)

# ========================================
# LLM Defaults
# ========================================

LLM_TEMPERATURE = _get_nested(_PARAMS, "llm", "temperature", default=0.2)
LLM_MAX_TOKENS = _get_nested(_PARAMS, "llm", "max_tokens", default=2000)
LLM_TIMEOUT_SECONDS = _get_nested(_PARAMS, "llm", "timeout_seconds", default=120)
LLM_MAX_RETRIES = _get_nested(_PARAMS, "llm", "max_retries", default=2)

# Upper bound on automatic tool-call rounds per completion
TOOL_MAX_ROUNDS = _get_nested(_PARAMS, "llm", "tool_max_rounds", default=5)

# ========================================
# Agent Defaults
# ========================================

DEFAULT_SYSTEM_PROMPT = _get_nested(
    _PARAMS, "agents", "default_system_prompt",
    default="You are a helpful assistant.",
)
DEFAULT_MIME_TYPE = "text/markdown"
HUMAN_PROXY_MODEL_ID = "human-proxy"

# ========================================
# Router Configuration
# ========================================

ROUTER_AGENT_ID = _get_nested(_PARAMS, "router", "agent_id", default="router-agent")
ROUTER_AGENT_NAME = _get_nested(_PARAMS, "router", "name", default="Router Agent")
ROUTER_MAX_ITERATIONS = _get_nested(_PARAMS, "router", "max_iterations", default=32)
ROUTER_STOP_SENTINELS = tuple(
    s.strip().lower()
    for s in _get_nested(_PARAMS, "router", "stop_sentinels", default=["stop", "exit"])
)
ROUTE_RATIONALE_MAX_LENGTH = 240

# ========================================
# Storage
# ========================================

DATA_DIR = _PROJECT_ROOT / _get_nested(_PARAMS, "paths", "data_dir", default="data")

# AGENT_DB_URL wins over param.yaml; default is a local SQLite file
DATABASE_URL = os.getenv("AGENT_DB_URL") or _get_nested(
    _PARAMS, "storage", "database_url",
    default=f"sqlite+aiosqlite:///{DATA_DIR / 'agents.db'}",
)
DATABASE_ECHO = _get_nested(_PARAMS, "storage", "echo", default=False)

# ========================================
# Logging & Observability
# ========================================

LOG_LEVEL = os.getenv("LOG_LEVEL") or _get_nested(_PARAMS, "logging", "level", default="INFO")
LOG_FILE = _get_nested(_PARAMS, "logging", "file", default=None)

OBSERVABILITY_ENABLED = _env_flag(
    "OBSERVABILITY_ENABLED",
    bool(_get_nested(_PARAMS, "observability", "enabled", default=True)),
)
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME") or _get_nested(
    _PARAMS, "observability", "service_name", default="goal-router",
)

# Prompt overrides (name → Mustache template), see agents/prompts
PROMPT_TEMPLATES: Dict[str, str] = _get_nested(_PARAMS, "prompts", default={}) or {}

# ========================================
# Roster
# ========================================

def load_agent_roster() -> List[Dict[str, Any]]:
    """
    Return the specialised agent definitions from config/agents.yaml.

    Each entry carries ``name``, ``description`` and ``system_prompt``;
    ``id`` and ``model`` are optional.
    """
    entries = _AGENTS.get("agents", []) if isinstance(_AGENTS, dict) else []
    roster = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("name"):
            logger.warning("Skipping roster entry without a name: {}", entry)
            continue
        roster.append(entry)
    return roster


# ========================================
# Helper Functions
# ========================================

def get_api_key(provider: Optional[str] = None) -> Optional[str]:
    """Get API key for the specified provider."""
    provider = provider or PROVIDER
    key_map = {
        "openrouter": "OPENROUTER_API_KEY",
        "openai": "OPENAI_API_KEY",
    }
    env_var = key_map.get(provider, f"{provider.upper()}_API_KEY")
    return os.getenv(env_var)


def validate() -> None:
    """
    Validate configuration and create required directories.

    Raises:
        ValueError: If required secrets are missing
        OSError: If directories cannot be created
    """
    for provider in {AGENT_PROVIDER, ROUTER_PROVIDER}:
        if not get_api_key(provider):
            raise ValueError(
                f"Missing required secret for provider '{provider}'.\n"
                f"Please add {provider.upper()}_API_KEY to your .env file."
            )

    try:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    except (PermissionError, OSError) as e:
        raise OSError(f"Cannot create directory {DATA_DIR}: {e}")


def dump() -> None:
    """Log all active non-secret configuration values for debugging."""
    logger.info("=" * 60)
    logger.info("CONFIGURATION (NON-SECRETS ONLY)")
    logger.info("=" * 60)
    logger.info("Agent model:   {} via {}", AGENT_MODEL, AGENT_PROVIDER)
    logger.info("Router model:  {} via {}", ROUTER_MODEL, ROUTER_PROVIDER)
    logger.info("Temperature:   {}  max_tokens: {}", LLM_TEMPERATURE, LLM_MAX_TOKENS)
    logger.info("Router:        max_iterations={} sentinels={}",
                ROUTER_MAX_ITERATIONS, ", ".join(ROUTER_STOP_SENTINELS))
    logger.info("Storage:       {}", DATABASE_URL.split("@")[-1])
    logger.info("Roster:        {} agent(s)", len(load_agent_roster()))
    logger.info("Observability: {}", "on" if OBSERVABILITY_ENABLED else "off")
    logger.info("=" * 60)


def get_config() -> Dict[str, Any]:
    """Return full config dictionary."""
    return _PARAMS

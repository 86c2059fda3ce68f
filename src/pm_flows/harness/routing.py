"""Routing resolution from logical agent names to CLI agents and models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from pm_flows.config import AgentSettings

SUPPORTED_AGENTS = ("claude", "codex", "gemini")
SUPPORTED_PROFILES = ("fast", "quality")
ROUTING_SCHEMA_VERSION = 1
DEFAULT_PROFILE = "quality"


@dataclass(slots=True)
class FrozenRouting:
    """Resolved immutable routing payload recorded with each invocation."""

    schema_version: int
    agent_name: str
    agent: str
    profile: str
    model: str
    command_template: str
    resolved_at: str

    def to_metadata(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "agent_name": self.agent_name,
            "agent": self.agent,
            "profile": self.profile,
            "model": self.model,
            "command_template": self.command_template,
            "resolved_at": self.resolved_at,
        }


@dataclass(slots=True)
class RoutingDefaults:
    """Settings snapshot used to route logical agents (``product-strategist``...)."""

    default_agent: str
    agent_profile_map: dict[str, str]
    command_templates: dict[str, str]
    models: dict[str, dict[str, str]]

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> RoutingDefaults:
        """Build validated defaults from agent settings."""

        default_agent = _normalize(settings.default_agent)
        _validate_supported_agent(default_agent)
        command_templates = {
            "claude": settings.claude_command_template,
            "codex": settings.codex_command_template,
            "gemini": settings.gemini_command_template,
        }
        for agent, template in command_templates.items():
            if not template.strip():
                raise ValueError(f"Empty command template for agent={agent!r}")
        models = {
            "claude": {
                "fast": settings.claude_model_fast,
                "quality": settings.claude_model_quality,
            },
            "codex": {
                "fast": settings.codex_model_fast,
                "quality": settings.codex_model_quality,
            },
            "gemini": {
                "fast": settings.gemini_model_fast,
                "quality": settings.gemini_model_quality,
            },
        }
        for agent, profile_models in models.items():
            for profile, model in profile_models.items():
                if not model.strip():
                    raise ValueError(
                        f"Empty model id for agent={agent!r}, profile={profile!r}",
                    )
        profile_map = {
            _normalize(name): _normalize(profile)
            for name, profile in settings.agent_profile_map.items()
        }
        for name, profile in profile_map.items():
            if profile not in SUPPORTED_PROFILES:
                raise ValueError(f"Unsupported profile={profile!r} for agent name={name!r}")
        return cls(
            default_agent=default_agent,
            agent_profile_map=profile_map,
            command_templates=command_templates,
            models=models,
        )


def resolve_routing(*, defaults: RoutingDefaults, agent_name: str) -> FrozenRouting:
    """Resolve which CLI agent and model serve a logical agent name."""

    agent = defaults.default_agent
    _validate_supported_agent(agent)
    profile = defaults.agent_profile_map.get(_normalize(agent_name), DEFAULT_PROFILE)
    model = defaults.models[agent][profile]
    if not model:
        raise ValueError(f"Resolved model is empty for agent={agent!r}, profile={profile!r}")
    command_template = defaults.command_templates[agent].strip()
    if not command_template:
        raise ValueError(f"Resolved command template is empty for agent={agent!r}")
    return FrozenRouting(
        schema_version=ROUTING_SCHEMA_VERSION,
        agent_name=agent_name,
        agent=agent,
        profile=profile,
        model=model,
        command_template=command_template,
        resolved_at=datetime.now(tz=UTC).isoformat(),
    )


def _normalize(value: str) -> str:
    return value.strip().lower()


def _validate_supported_agent(agent: str) -> None:
    if agent in SUPPORTED_AGENTS:
        return
    raise ValueError(f"Unsupported LLM agent: {agent!r}. Use codex, claude, or gemini.")

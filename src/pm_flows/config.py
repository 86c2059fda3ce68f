"""Runtime configuration for the process harness."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_CLAUDE_COMMAND_TEMPLATE = (
    "claude -p --model {model} --permission-mode dontAsk "
    '--allowed-tools "Read,Write,Edit,Bash(cat:*),Bash(ls:*)" '
    "-- {prompt}"
)
DEFAULT_CODEX_COMMAND_TEMPLATE = "codex exec --sandbox workspace-write --model {model} {prompt}"
DEFAULT_GEMINI_COMMAND_TEMPLATE = (
    "gemini --model {model} --approval-mode auto_edit --prompt {prompt}"
)

SUPPORTED_DEFAULT_AGENTS = ("claude", "codex", "gemini", "echo")
SUPPORTED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(slots=True)
class AgentSettings:
    """Agent capability settings."""

    default_agent: str = "claude"
    workdir_root: Path = Path(".pm_flows/agent")
    timeout_seconds: int = 900
    graceful_shutdown_seconds: int = 30
    claude_command_template: str = DEFAULT_CLAUDE_COMMAND_TEMPLATE
    codex_command_template: str = DEFAULT_CODEX_COMMAND_TEMPLATE
    gemini_command_template: str = DEFAULT_GEMINI_COMMAND_TEMPLATE
    claude_model_fast: str = "haiku"
    claude_model_quality: str = "sonnet"
    codex_model_fast: str = "gpt-5-mini"
    codex_model_quality: str = "gpt-5"
    gemini_model_fast: str = "gemini-2.5-flash"
    gemini_model_quality: str = "gemini-2.5-pro"
    agent_profile_map: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class BreakpointSettings:
    """Human-approval gate settings."""

    poll_interval_seconds: float = 2.0
    auto_approve: bool = False
    webhook_url: str | None = None
    webhook_timeout_seconds: float = 10.0


@dataclass(slots=True)
class LoggingSettings:
    """Log destination settings."""

    log_dir: Path = Path(".pm_flows/logs")
    level: str = "INFO"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".pm_flows.db")
    workdir_root: Path = Path(".pm_flows/runs")
    agents: AgentSettings = field(default_factory=AgentSettings)
    breakpoints: BreakpointSettings = field(default_factory=BreakpointSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("PM_FLOWS_DB_PATH", ".pm_flows.db")),
            workdir_root=Path(os.getenv("PM_FLOWS_WORKDIR_ROOT", ".pm_flows/runs")),
            agents=AgentSettings(
                default_agent=os.getenv("PM_FLOWS_DEFAULT_AGENT", "claude").strip().lower(),
                workdir_root=Path(os.getenv("PM_FLOWS_AGENT_WORKDIR_ROOT", ".pm_flows/agent")),
                timeout_seconds=int(os.getenv("PM_FLOWS_AGENT_TIMEOUT_SECONDS", "900")),
                graceful_shutdown_seconds=int(
                    os.getenv("PM_FLOWS_AGENT_GRACEFUL_SHUTDOWN_SECONDS", "30"),
                ),
                claude_command_template=os.getenv(
                    "PM_FLOWS_CLAUDE_COMMAND_TEMPLATE",
                    DEFAULT_CLAUDE_COMMAND_TEMPLATE,
                ),
                codex_command_template=os.getenv(
                    "PM_FLOWS_CODEX_COMMAND_TEMPLATE",
                    DEFAULT_CODEX_COMMAND_TEMPLATE,
                ),
                gemini_command_template=os.getenv(
                    "PM_FLOWS_GEMINI_COMMAND_TEMPLATE",
                    DEFAULT_GEMINI_COMMAND_TEMPLATE,
                ),
                claude_model_fast=os.getenv("PM_FLOWS_CLAUDE_MODEL_FAST", "haiku"),
                claude_model_quality=os.getenv("PM_FLOWS_CLAUDE_MODEL_QUALITY", "sonnet"),
                codex_model_fast=os.getenv("PM_FLOWS_CODEX_MODEL_FAST", "gpt-5-mini"),
                codex_model_quality=os.getenv("PM_FLOWS_CODEX_MODEL_QUALITY", "gpt-5"),
                gemini_model_fast=os.getenv("PM_FLOWS_GEMINI_MODEL_FAST", "gemini-2.5-flash"),
                gemini_model_quality=os.getenv(
                    "PM_FLOWS_GEMINI_MODEL_QUALITY",
                    "gemini-2.5-pro",
                ),
                agent_profile_map=_collect_profile_map(),
            ),
            breakpoints=BreakpointSettings(
                poll_interval_seconds=float(os.getenv("PM_FLOWS_BREAKPOINT_POLL_SECONDS", "2.0")),
                auto_approve=_env_bool("PM_FLOWS_AUTO_APPROVE", default=False),
                webhook_url=os.getenv("PM_FLOWS_BREAKPOINT_WEBHOOK_URL", "").strip() or None,
                webhook_timeout_seconds=float(
                    os.getenv("PM_FLOWS_BREAKPOINT_WEBHOOK_TIMEOUT_SECONDS", "10.0"),
                ),
            ),
            logging=LoggingSettings(
                log_dir=Path(os.getenv("PM_FLOWS_LOG_DIR", ".pm_flows/logs")),
                level=os.getenv("PM_FLOWS_LOG_LEVEL", "INFO").strip().upper(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the harness cannot run with."""

        if self.agents.default_agent not in SUPPORTED_DEFAULT_AGENTS:
            raise ValueError(
                f"PM_FLOWS_DEFAULT_AGENT must be one of {SUPPORTED_DEFAULT_AGENTS}, "
                f"got {self.agents.default_agent!r}.",
            )
        if self.agents.timeout_seconds <= 0:
            raise ValueError("PM_FLOWS_AGENT_TIMEOUT_SECONDS must be > 0.")
        if self.agents.graceful_shutdown_seconds < 0:
            raise ValueError("PM_FLOWS_AGENT_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.breakpoints.poll_interval_seconds <= 0:
            raise ValueError("PM_FLOWS_BREAKPOINT_POLL_SECONDS must be > 0.")
        if self.breakpoints.webhook_url is not None:
            _validate_webhook_url(self.breakpoints.webhook_url)
        if self.logging.level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(
                f"PM_FLOWS_LOG_LEVEL must be one of {SUPPORTED_LOG_LEVELS}, "
                f"got {self.logging.level!r}.",
            )


def _collect_profile_map() -> dict[str, str]:
    raw = os.getenv("PM_FLOWS_AGENT_PROFILE_MAP", "").strip()
    if not raw:
        return {}

    mapping: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if ":" not in token:
            raise ValueError(
                "Invalid PM_FLOWS_AGENT_PROFILE_MAP entry: "
                f"{token!r}. Expected format '<agent-name>:<profile>'.",
            )
        name, profile = token.rsplit(":", 1)
        mapping[name.strip()] = profile.strip()
    return mapping


def _validate_webhook_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid PM_FLOWS_BREAKPOINT_WEBHOOK_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")

# studybuddy/config.py
"""
Configuration for StudyBuddy.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Each subsystem gets its
own settings class; StudyBuddyConfig composes them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AliasChoices, BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

# Resolve .env relative to the project root (one level above the package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts a single str, a comma-separated str, a JSON array str or an
    existing list.
    """
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                return _coerce_str_list(json.loads(stripped))
            except json.JSONDecodeError:
                pass
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


# NoDecode keeps pydantic-settings from JSON-decoding the raw env value so
# comma-separated lists reach the validator intact.
StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


class ClaudeConfig(BaseSettings):
    """Configuration for the Claude API connection."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    auth_token: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("ANTHROPIC_AUTH_TOKEN", "CLAUDE_CODE_OAUTH_TOKEN"),
    )
    model: str = Field("claude-sonnet-4-5-20250929", alias="STUDYBUDDY_MODEL")
    max_tokens: int = Field(4096, alias="STUDYBUDDY_MAX_TOKENS")
    request_timeout_seconds: float = Field(120.0, alias="STUDYBUDDY_REQUEST_TIMEOUT_SECONDS")
    retry_max_retries: int = Field(3, alias="STUDYBUDDY_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, alias="STUDYBUDDY_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, alias="STUDYBUDDY_RETRY_MAX_DELAY")
    retry_exponential_base: float = Field(2.0, alias="STUDYBUDDY_RETRY_EXPONENTIAL_BASE")
    retry_jitter_range: float = Field(0.25, alias="STUDYBUDDY_RETRY_JITTER_RANGE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def require_auth(self) -> "ClaudeConfig":
        if self.api_key or self.auth_token:
            return self
        raise ValueError(
            "No authentication configured. Set ANTHROPIC_API_KEY or "
            "ANTHROPIC_AUTH_TOKEN."
        )

    @model_validator(mode="after")
    def normalize_runtime_limits(self) -> "ClaudeConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.retry_base_delay = max(0.05, float(self.retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(self.retry_max_delay))
        self.retry_exponential_base = max(1.0, float(self.retry_exponential_base))
        self.retry_jitter_range = max(0.0, min(1.0, float(self.retry_jitter_range)))
        return self


class AgentConfig(BaseSettings):
    """Configuration for the dialogue loop and tool execution."""

    max_steps: int = Field(10, alias="STUDYBUDDY_MAX_STEPS")

    # Tools listed here wait for explicit human approval before running.
    require_confirmation_for: StrList = Field(
        default_factory=lambda: ["schedule_task"],
        alias="STUDYBUDDY_REQUIRE_CONFIRMATION_FOR",
    )

    # 0 disables the max-pending-age policy.
    confirmation_max_age_seconds: float = Field(0.0, alias="STUDYBUDDY_CONFIRMATION_MAX_AGE")

    tool_default_timeout: float = Field(30.0, alias="STUDYBUDDY_TOOL_DEFAULT_TIMEOUT")
    tool_max_output_length: int = Field(25000, alias="STUDYBUDDY_TOOL_MAX_OUTPUT_LENGTH")

    system_prompt: str = Field(
        (
            "You are StudyBuddy, a friendly study assistant. Use the available "
            "tools to build flashcards, quizzes, study sessions, progress logs "
            "and exam plans. When a tool reports an error, fix the arguments "
            "and try again. When the user declines a tool, acknowledge it and "
            "do not retry the same call."
        ),
        alias="STUDYBUDDY_SYSTEM_PROMPT",
    )

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AgentConfig":
        self.max_steps = max(1, int(self.max_steps))
        self.confirmation_max_age_seconds = max(0.0, float(self.confirmation_max_age_seconds))
        self.tool_default_timeout = max(1.0, float(self.tool_default_timeout))
        self.tool_max_output_length = max(100, int(self.tool_max_output_length))
        return self


class StorageConfig(BaseSettings):
    """Where the conversation log and its companion records live."""

    data_dir: Path = Field(Path("./studybuddy_data"), alias="STUDYBUDDY_DATA_DIR")
    db_path: Optional[Path] = Field(None, alias="STUDYBUDDY_DB_PATH")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class SchedulerConfig(BaseSettings):
    """Configuration for the deferred-task poller."""

    enabled: bool = Field(True, alias="STUDYBUDDY_SCHEDULER_ENABLED")
    poll_interval_seconds: float = Field(1.0, alias="STUDYBUDDY_SCHEDULER_POLL_INTERVAL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_interval(self) -> "SchedulerConfig":
        self.poll_interval_seconds = max(0.05, float(self.poll_interval_seconds))
        return self


class StudyBuddyConfig:
    """
    Master configuration that composes all subsystem configs.

    The Claude config is loaded lazily: commands that only read the local
    store (history, pending, tasks) work without API credentials.
    """

    def __init__(self):
        self.agent = AgentConfig()
        self.storage = StorageConfig()
        self.scheduler = SchedulerConfig()
        self._claude: Optional[ClaudeConfig] = None

        self._resolve_paths()
        self.storage.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def claude(self) -> ClaudeConfig:
        if self._claude is None:
            self._claude = ClaudeConfig()
        return self._claude

    def _resolve_paths(self) -> None:
        """Resolve relative paths against the project root, not the CWD."""
        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (_PROJECT_ROOT / p).resolve()

        self.storage.data_dir = _resolve(self.storage.data_dir)
        if self.storage.db_path is None:
            self.storage.db_path = self.storage.data_dir / "studybuddy.db"
        else:
            self.storage.db_path = _resolve(self.storage.db_path)

    def __repr__(self) -> str:
        return (
            f"StudyBuddyConfig(db={self.storage.db_path}, "
            f"max_steps={self.agent.max_steps}, "
            f"confirm={self.agent.require_confirmation_for})"
        )

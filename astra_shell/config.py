"""Configuration management for AstraShell."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from astra_shell.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.astra-shell/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_SYSTEM_PROMPT = """You are AstraShell, a shell assistant running on the operator's machine.

You can call exactly one tool per reply. To call a tool, include a single JSON
object of this exact shape in your reply:

{"tool_to_use": "<tool name>", "parameters": {<tool parameters>}}

The tool result will be returned to you in the next message as JSON with
"success", "data" and "error" fields. When you have everything you need,
answer in plain language without any tool JSON.

Available tools:
{tools}
"""


class ModelConfig(BaseModel):
    """Model backend configuration."""

    provider: str = "ollama"
    model: str = "llama3.2"
    base_url: str = "http://127.0.0.1:11434"
    api_key: str = ""
    temperature: float = 0.2
    max_tokens: int = 4096
    timeout: float = 120.0


class OrchestratorConfig(BaseModel):
    """Tool-calling loop configuration."""

    max_iterations: int = 10
    retention: int = 40
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class RunCommandToolConfig(BaseModel):
    """RunCommand tool configuration."""

    timeout: int = 30
    blocked: list[str] = [
        "rm -rf /",
        "mkfs",
        ":(){:|:&};:",
    ]
    max_output_chars: int = 10000


class WebSearchToolConfig(BaseModel):
    """Web search tool configuration."""

    provider: str = "brave"
    api_key: str = ""
    base_url: str = "https://api.search.brave.com/res/v1/web/search"
    max_results: int = 5
    timeout: int = 20


class FileToolConfig(BaseModel):
    """File read/write tool configuration."""

    max_read_bytes: int = 100_000


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "ReadFile",
        "WriteFile",
        "WebSearch",
        "Stat",
        "RunCommand",
    ]
    timeout_seconds: float = 60.0
    run_command: RunCommandToolConfig = Field(default_factory=RunCommandToolConfig)
    web_search: WebSearchToolConfig = Field(default_factory=WebSearchToolConfig)
    files: FileToolConfig = Field(default_factory=FileToolConfig)


class PlanConfig(BaseModel):
    """Multi-step plan gate configuration."""

    enabled: bool = True
    confidence_threshold: float = 0.5
    require_confirmation: bool = True
    continue_on_failure: bool = False
    force: bool = False


class SecurityConfig(BaseModel):
    """Command auditing and domain safety configuration."""

    block_critical: bool = True
    domain_cache_ttl_seconds: float = 3600.0
    unsafe_domains: list[str] = []


class SentryConfig(BaseModel):
    """Background resource monitor configuration."""

    enabled: bool = False
    interval_seconds: float = 30.0
    cpu_percent_threshold: float = 90.0
    memory_percent_threshold: float = 90.0
    max_alerts: int = 50


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: Literal["console", "json", "plain"] = "console"
    max_value_chars: int = 500


class Config(BaseSettings):
    """Main configuration for AstraShell."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    plan: PlanConfig = Field(default_factory=PlanConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    sentry: SentryConfig = Field(default_factory=SentryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="ASTRA_",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError if the file is not valid YAML or fails validation
        """
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {config_path}")
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; env vars fill values the YAML file leaves unset."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config

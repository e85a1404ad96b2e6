"""Configuration management for Agent Relay."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_relay.models import ExecutionConfig, SessionMode, Transport

# Paths
DEFAULT_CONFIG_PATH = Path("~/.agent-relay/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "relay.yaml"


class AgentConfig(BaseModel):
    """External agent executable and argument template."""

    cli_path: str = "cursor-agent"
    working_directory: str = ""
    input_directory: str = ""
    default_args: str = ""
    transport: Literal["auto", "native", "compat"] = "auto"
    compat_shell: str = "bash"


class LimitsConfig(BaseModel):
    """Watchdog limits."""

    max_buffer_kb: int = Field(default=2048, gt=0)
    idle_timeout: float = Field(default=60.0, gt=0)
    terminal_idle_timeout: float = Field(default=600.0, gt=0)


class SessionConfig(BaseModel):
    """Session behaviour."""

    mode: Literal["chat", "terminal"] = "chat"
    interactive: bool = False


class TerminalConfig(BaseModel):
    """Pseudo-terminal session settings."""

    command: str = "cursor-agent"
    shell: str = ""
    cols: int = Field(default=120, gt=0)
    rows: int = Field(default=30, gt=0)
    term: str = "xterm-color"


class WorkspaceConfig(BaseModel):
    """Workspace root the agent works against."""

    path: str = "."


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file: str = ""


def is_compat_entry(cli_path: str) -> bool:
    """Return True when the executable is the compatibility-subsystem entry point."""
    lowered = cli_path.strip().lower()
    return lowered == "wsl" or lowered.endswith("wsl.exe")


class Config(BaseSettings):
    """Main configuration for Agent Relay."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment overrides them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; environment variables win over YAML values."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve workspace path, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.workspace.path).expanduser()
        if raw.is_absolute():
            return raw
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()

    def resolve_transport(self) -> Transport:
        """Pick the transport once, from mode and executable."""
        if self.session.mode == "terminal":
            return Transport.TERMINAL
        if self.agent.transport == "native":
            return Transport.NATIVE
        if self.agent.transport == "compat":
            return Transport.COMPAT
        return Transport.COMPAT if is_compat_entry(self.agent.cli_path) else Transport.NATIVE

    def resolve_session_mode(self) -> SessionMode:
        if self.session.mode == "terminal":
            return SessionMode.TERMINAL
        if self.session.interactive:
            return SessionMode.INTERACTIVE
        return SessionMode.ONE_SHOT

    def execution_config(self, runtime_base: Path | str | None = None) -> ExecutionConfig:
        """Build the immutable snapshot handed to the session controller."""
        workspace_root = str(self.resolved_workspace_path(runtime_base))
        project_root = self.agent.input_directory.strip() or workspace_root
        mode = self.resolve_session_mode()
        idle_timeout = (
            self.limits.terminal_idle_timeout if mode == SessionMode.TERMINAL else self.limits.idle_timeout
        )
        terminal_shell = self.terminal.shell.strip() or os.environ.get("SHELL", "") or "bash"
        return ExecutionConfig(
            executable=self.agent.cli_path.strip(),
            argument_template=self.agent.default_args.strip(),
            working_directory=self.agent.working_directory.strip(),
            project_root=project_root,
            workspace_root=workspace_root,
            max_output_bytes=self.limits.max_buffer_kb * 1024,
            idle_timeout=idle_timeout,
            interactive=mode != SessionMode.ONE_SHOT,
            session_mode=mode,
            transport=self.resolve_transport(),
            compat_shell=self.agent.compat_shell.strip() or "bash",
            terminal_command=self.terminal.command,
            terminal_shell=terminal_shell,
            terminal_wrapped=is_compat_entry(self.agent.cli_path),
            terminal_cols=self.terminal.cols,
            terminal_rows=self.terminal.rows,
            terminal_name=self.terminal.term,
        )


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

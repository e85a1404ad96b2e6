"""Value types shared by the relay pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from agent_relay.exceptions import RelayError

StreamName = Literal["stdout", "stderr", "pty"]


class Transport(str, Enum):
    """How the agent process is started."""

    NATIVE = "native"
    COMPAT = "compat"
    TERMINAL = "terminal"


class SessionMode(str, Enum):
    """Lifetime of the agent process across submissions."""

    ONE_SHOT = "one_shot"
    INTERACTIVE = "interactive"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class ExecutionConfig:
    """Immutable per-invocation snapshot of everything the core needs."""

    executable: str
    argument_template: str = ""
    working_directory: str = ""
    project_root: str = ""
    workspace_root: str = ""
    max_output_bytes: int = 2048 * 1024
    idle_timeout: float = 60.0
    interactive: bool = False
    session_mode: SessionMode = SessionMode.ONE_SHOT
    transport: Transport = Transport.NATIVE
    compat_shell: str = "bash"
    terminal_command: str = "cursor-agent"
    terminal_shell: str = ""
    terminal_wrapped: bool = False
    terminal_cols: int = 120
    terminal_rows: int = 30
    terminal_name: str = "xterm-color"

    @property
    def keeps_process(self) -> bool:
        """Whether the launched process is tracked across submissions."""
        return self.session_mode in (SessionMode.INTERACTIVE, SessionMode.TERMINAL)

    def native_cwd(self) -> str | None:
        """Working directory for transports that honour a native cwd."""
        for candidate in (self.working_directory, self.project_root, self.workspace_root):
            if candidate and candidate.strip():
                return candidate.strip()
        return None


@dataclass(frozen=True)
class TokenContext:
    """Substitution values for argument-template tokens."""

    prompt: str = ""
    project_root: str = ""
    workspace_root: str = ""

    @property
    def project_root_compat(self) -> str:
        from agent_relay.command_builder import to_compat_path

        return to_compat_path(self.project_root)

    @property
    def prompt_escaped(self) -> str:
        from agent_relay.command_builder import shell_quote

        return shell_quote(self.prompt)


@dataclass(frozen=True)
class ResolvedCommand:
    """A command ready for the launcher.

    Exec transports carry ``argv``; the native transport carries a single
    ``command_line`` for the local shell.
    """

    transport: Transport
    argv: tuple[str, ...] = ()
    command_line: str = ""
    cwd: str | None = None
    prompt_in_arguments: bool = False

    def describe(self) -> str:
        if self.command_line:
            return self.command_line
        return " ".join(self.argv)


@dataclass(frozen=True)
class OutputChunk:
    """One decoded fragment of process output."""

    text: str
    stream: StreamName = "stdout"


@dataclass(frozen=True)
class CloseEvent:
    """Terminal event of an invocation."""

    exit_code: int | None
    error: RelayError | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None and self.exit_code == 0

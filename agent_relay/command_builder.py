"""Argument-template resolution and per-transport command construction."""

import re

from agent_relay.logging import get_logger
from agent_relay.models import ExecutionConfig, ResolvedCommand, TokenContext, Transport

log = get_logger(__name__)

TOKEN_RE = re.compile(r"\{(workspace|project_wsl|project|prompt_bash|prompt)\}")
PROMPT_TOKEN_RE = re.compile(r"\{prompt(?:_bash)?\}")
DRIVE_PATH_RE = re.compile(r"^([A-Za-z]):\\")
WRAPPED_SHELL_RE = re.compile(
    r"\b(?:bash|sh|zsh)\s+-lc\s+(?:(?P<quote>[\"'])(?P<quoted>[\s\S]*)(?P=quote)|(?P<bare>.+))",
    re.IGNORECASE,
)
CD_RE = re.compile(r"\bcd\b", re.IGNORECASE)
DOUBLE_QUOTE_ESCAPE_RE = re.compile(r"\\([\"\\$`])")


def to_compat_path(path: str | None) -> str:
    """Translate ``C:\\dir\\sub`` into ``/mnt/c/dir/sub``.

    Anything that is not a drive-letter path is returned unchanged.
    """
    if not path:
        return ""
    match = DRIVE_PATH_RE.match(path)
    if not match:
        return path
    drive = match.group(1).lower()
    rest = path[2:].replace("\\", "/").lstrip("/")
    return f"/mnt/{drive}/{rest}"


def shell_quote(text: str) -> str:
    """Single-quote ``text`` for a POSIX shell."""
    return "'" + text.replace("'", "'\"'\"'") + "'"


def template_uses_prompt(template: str) -> bool:
    """Whether the template already carries the prompt on the command line."""
    return bool(PROMPT_TOKEN_RE.search(template or ""))


def substitute_tokens(template: str, context: TokenContext) -> str:
    """Replace recognised tokens in one pass; substituted values are not rescanned."""
    values = {
        "workspace": context.workspace_root,
        "project": context.project_root,
        "project_wsl": context.project_root_compat,
        "prompt": context.prompt,
        "prompt_bash": context.prompt_escaped,
    }
    return TOKEN_RE.sub(lambda m: values[m.group(1)], template or "")


def extract_inner_command(arguments: str) -> str:
    """Pull the command out of a ``bash -lc <command>`` wrapper, if present."""
    match = WRAPPED_SHELL_RE.search(arguments)
    if not match:
        return arguments.strip()
    if match.group("quoted") is not None:
        inner = match.group("quoted")
        if match.group("quote") == '"':
            inner = DOUBLE_QUOTE_ESCAPE_RE.sub(r"\1", inner)
        return inner.strip()
    return (match.group("bare") or "").strip()


def inject_directory(command: str, directory: str) -> str:
    """Prefix ``cd -- '<directory>' &&`` unless the command already changes directory."""
    if not directory or CD_RE.search(command):
        return command
    prefix = f"cd -- {shell_quote(directory)}"
    return f"{prefix} && {command}" if command else prefix


def compat_target_directory(context: TokenContext) -> str:
    return context.project_root_compat or to_compat_path(context.workspace_root)


def resolve(
    template: str,
    context: TokenContext,
    transport: Transport,
    *,
    executable: str,
    cwd: str | None = None,
    compat_shell: str = "bash",
) -> ResolvedCommand:
    """Resolve an argument template into a launchable command.

    Args:
        template: User argument template containing ``{token}`` placeholders
        context: Token values for this invocation
        transport: Transport the command will run under
        executable: Agent executable (or the compatibility entry point)
        cwd: Native working directory; ignored for the compatibility transport
        compat_shell: Shell run inside the compatibility subsystem

    Returns:
        ResolvedCommand for the launcher
    """
    prompt_in_arguments = template_uses_prompt(template)
    arguments = substitute_tokens(template, context).strip()

    if transport == Transport.COMPAT:
        inner = inject_directory(extract_inner_command(arguments), compat_target_directory(context))
        return ResolvedCommand(
            transport=transport,
            argv=(executable, "--", compat_shell, "-lc", inner),
            cwd=None,
            prompt_in_arguments=prompt_in_arguments,
        )

    if transport == Transport.NATIVE:
        command_line = f"{executable} {arguments}" if arguments else executable
        return ResolvedCommand(
            transport=transport,
            command_line=command_line,
            cwd=cwd,
            prompt_in_arguments=prompt_in_arguments,
        )

    raise ValueError(f"Use build_terminal_command for transport {transport.value}")


def build_terminal_command(config: ExecutionConfig) -> ResolvedCommand:
    """Command that starts the agent inside a pseudo-terminal."""
    command = config.terminal_command.strip() or config.executable
    if config.terminal_wrapped:
        target = to_compat_path(config.project_root) or to_compat_path(config.workspace_root)
        inner = inject_directory(command, target)
        return ResolvedCommand(
            transport=Transport.TERMINAL,
            argv=(config.executable, "--", config.compat_shell, "-lc", inner),
            cwd=None,
        )
    return ResolvedCommand(
        transport=Transport.TERMINAL,
        argv=(config.terminal_shell or "bash", "-lc", command),
        cwd=config.native_cwd(),
    )


def build_command(config: ExecutionConfig, prompt: str) -> ResolvedCommand:
    """Resolve the command for one submission under the configured transport."""
    if config.transport == Transport.TERMINAL:
        resolved = build_terminal_command(config)
    else:
        context = TokenContext(
            prompt=prompt,
            project_root=config.project_root,
            workspace_root=config.workspace_root,
        )
        resolved = resolve(
            config.argument_template,
            context,
            config.transport,
            executable=config.executable,
            cwd=config.native_cwd(),
            compat_shell=config.compat_shell,
        )
    log.debug(
        "Resolved agent command",
        transport=resolved.transport.value,
        command=resolved.describe()[:200],
        prompt_in_arguments=resolved.prompt_in_arguments,
    )
    return resolved

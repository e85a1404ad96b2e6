"""Custom exceptions for Agent Relay."""


class RelayError(Exception):
    """Base exception for Agent Relay."""

    pass


class ConfigurationError(RelayError):
    """Configuration-related errors."""

    pass


class LaunchError(RelayError):
    """The agent process could not be started."""

    def __init__(self, message: str, executable: str | None = None):
        super().__init__(message)
        self.executable = executable


class OutputLimitExceededError(RelayError):
    """Process output crossed the configured byte cap."""

    def __init__(self, limit: int, seen: int):
        super().__init__(f"Output exceeded max buffer ({seen} > {limit} bytes)")
        self.limit = limit
        self.seen = seen


class IdleTimeoutError(RelayError):
    """Process produced no output within the idle window."""

    def __init__(self, timeout: float):
        super().__init__(f"Process timed out (no output for {timeout:g}s)")
        self.timeout = timeout


class InputWriteError(RelayError):
    """Writing to the process input channel failed."""

    pass


class SessionError(RelayError):
    """Session-related errors."""

    pass


class SessionNotActiveError(SessionError):
    """No interactive or terminal process is being tracked."""

    def __init__(self, panel_id: str | None = None):
        message = f"No active session for panel: {panel_id}" if panel_id else "No active session"
        super().__init__(message)
        self.panel_id = panel_id

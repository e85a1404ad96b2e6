"""Agent Relay - supervise a CLI coding agent and stream its output."""

__version__ = "0.1.0"

from agent_relay.config import Config
from agent_relay.models import CloseEvent, ExecutionConfig, OutputChunk, SessionMode, Transport
from agent_relay.process import Invocation
from agent_relay.session import SessionController, SessionRegistry, SessionState

__all__ = [
    "CloseEvent",
    "Config",
    "ExecutionConfig",
    "Invocation",
    "OutputChunk",
    "SessionController",
    "SessionMode",
    "SessionRegistry",
    "SessionState",
    "Transport",
    "__version__",
]

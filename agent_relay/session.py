"""Session controller and per-panel session registry."""

from __future__ import annotations

import asyncio
from enum import Enum

from agent_relay.exceptions import SessionNotActiveError
from agent_relay.logging import get_logger
from agent_relay.models import ExecutionConfig, SessionMode
from agent_relay.process import ChunkCallback, CloseCallback, Invocation, RunningProcess

log = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING_ONE_SHOT = "running_one_shot"
    RUNNING_INTERACTIVE = "running_interactive"
    RUNNING_TERMINAL = "running_terminal"


class SessionController:
    """Owns the tracked interactive/terminal process for one panel.

    One-shot processes are not tracked as *the* active process, so a second
    one-shot submission simply launches another process. While an
    interactive or terminal process is alive, submissions are written to its
    input instead of launching anything.
    """

    def __init__(self, panel_id: str = "default"):
        self.panel_id = panel_id
        self._active: RunningProcess | None = None
        self._one_shots: list[RunningProcess] = []
        self.launch_count = 0

    @property
    def active(self) -> RunningProcess | None:
        return self._active

    @property
    def state(self) -> SessionState:
        if self._active is not None:
            if self._active.mode == SessionMode.TERMINAL:
                return SessionState.RUNNING_TERMINAL
            return SessionState.RUNNING_INTERACTIVE
        if self._one_shots:
            return SessionState.RUNNING_ONE_SHOT
        return SessionState.IDLE

    @property
    def is_active(self) -> bool:
        """True while an interactive or terminal process accepts input."""
        return self._active is not None

    async def submit(
        self,
        prompt: str,
        config: ExecutionConfig,
        on_chunk: ChunkCallback | None = None,
        on_close: CloseCallback | None = None,
    ) -> Invocation:
        """Start a process for ``prompt`` or forward it to the tracked one.

        Forwarded prompts return the tracked process's invocation; its
        callbacks, not the ones passed here, keep receiving output.
        """
        active = self._active
        if active is not None:
            if not await active.started():
                # The launch failed; its invocation already carries the error.
                log.warning("Prompt not forwarded, session failed to start", panel=self.panel_id)
                return active.invocation
            log.info("Forwarding prompt to active session", panel=self.panel_id, pid=active.pid)
            await active.send(self._line_for(active, prompt))
            return active.invocation

        invocation = Invocation(on_chunk=on_chunk, on_close=on_close)
        running = RunningProcess(config, invocation, on_exit=self._on_process_exit)
        if config.keeps_process:
            self._active = running
        else:
            self._one_shots.append(running)
        self.launch_count += 1
        log.info(
            "Starting agent process",
            panel=self.panel_id,
            mode=config.session_mode.value,
            transport=config.transport.value,
        )
        await running.start(prompt)
        return invocation

    async def write(self, text: str) -> bool:
        """Write raw text to the tracked process input."""
        active = self._active
        if active is None:
            raise SessionNotActiveError(self.panel_id)
        if not await active.started():
            return False
        return await active.send(text)

    def cancel(self) -> bool:
        """Send an interrupt to the tracked process, or the newest one-shot.

        There is no escalation; the process may ignore the signal.
        """
        target = self._active or (self._one_shots[-1] if self._one_shots else None)
        if target is None:
            return False
        return target.interrupt()

    async def close(self) -> None:
        """Kill every live process owned by this controller and wait for closure."""
        live = [p for p in [self._active, *self._one_shots] if p is not None]
        for running in live:
            await running.started()
            running.kill()
        if live:
            await asyncio.gather(*(p.wait_closed() for p in live), return_exceptions=True)

    @staticmethod
    def _line_for(running: RunningProcess, prompt: str) -> str:
        if running.mode == SessionMode.TERMINAL:
            return prompt.rstrip("\r\n") + "\r"
        return prompt if prompt.endswith("\n") else prompt + "\n"

    def _on_process_exit(self, running: RunningProcess) -> None:
        if self._active is running:
            self._active = None
        elif running in self._one_shots:
            self._one_shots.remove(running)


class SessionRegistry:
    """Independent session controllers keyed by panel identity."""

    def __init__(self):
        self._sessions: dict[str, SessionController] = {}
        self._lock = asyncio.Lock()

    @property
    def size(self) -> int:
        return len(self._sessions)

    def get(self, panel_id: str) -> SessionController | None:
        return self._sessions.get(panel_id)

    async def get_or_create(self, panel_id: str) -> SessionController:
        async with self._lock:
            existing = self._sessions.get(panel_id)
            if existing is not None:
                return existing
            created = SessionController(panel_id)
            self._sessions[panel_id] = created
            log.debug("Created session controller", panel=panel_id, sessions=len(self._sessions))
            return created

    async def close(self, panel_id: str) -> bool:
        """Dispose of a panel's controller, killing its live processes."""
        async with self._lock:
            session = self._sessions.pop(panel_id, None)
        if session is None:
            return False
        await session.close()
        log.info("Closed session", panel=panel_id)
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)

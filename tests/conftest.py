import asyncio
import dataclasses

import pytest

from agent_relay.exceptions import InputWriteError
from agent_relay.models import ExecutionConfig, SessionMode, Transport


class FakeHandle:
    """In-memory stand-in for a launched process."""

    def __init__(self, transport: Transport, fail_writes: bool = False):
        self.transport = transport
        self.stream_names = ("pty",) if transport == Transport.TERMINAL else ("stdout", "stderr")
        self.pid = 4242
        self.fail_writes = fail_writes
        self.writes: list[str] = []
        self.input_closed = False
        self.killed = False
        self.interrupts = 0
        self.command = None
        self._queues = {name: asyncio.Queue() for name in self.stream_names}
        self._exit_code: int | None = None
        self._exited = asyncio.Event()

    def feed(self, stream: str, data: bytes) -> None:
        self._queues[stream].put_nowait(data)

    def exit(self, code: int = 0) -> None:
        if self._exited.is_set():
            return
        for queue in self._queues.values():
            queue.put_nowait(b"")
        self._exit_code = code
        self._exited.set()

    async def read(self, stream: str) -> bytes:
        return await self._queues[stream].get()

    async def write(self, text: str) -> None:
        if self.fail_writes:
            raise InputWriteError("Process input channel is closed")
        self.writes.append(text)

    def close_input(self) -> None:
        self.input_closed = True

    def interrupt(self) -> bool:
        self.interrupts += 1
        return True

    def kill(self) -> bool:
        if self.killed:
            return False
        self.killed = True
        self.exit(-9)
        return True

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self._exit_code


class FakeLauncher:
    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.fail_writes = False
        self.fail_launch: Exception | None = None
        # When set, launches block until the event fires, like a slow spawn.
        self.gate: asyncio.Event | None = None

    async def __call__(self, command, config):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_launch is not None:
            raise self.fail_launch
        handle = FakeHandle(command.transport, fail_writes=self.fail_writes)
        handle.command = command
        self.handles.append(handle)
        return handle


@pytest.fixture
def fake_launch(monkeypatch) -> FakeLauncher:
    launcher = FakeLauncher()
    monkeypatch.setattr("agent_relay.process.launch", launcher)
    return launcher


@pytest.fixture
def make_config():
    base = ExecutionConfig(
        executable="agent",
        workspace_root="/tmp",
        project_root="/tmp",
        max_output_bytes=1024,
        idle_timeout=5.0,
    )

    def _make(**overrides) -> ExecutionConfig:
        mode = overrides.get("session_mode")
        if mode is not None and "interactive" not in overrides:
            overrides["interactive"] = mode != SessionMode.ONE_SHOT
        return dataclasses.replace(base, **overrides)

    return _make



"""One supervised agent process: launch, stream, guard, close exactly once."""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable

from agent_relay.command_builder import build_command
from agent_relay.exceptions import LaunchError, RelayError
from agent_relay.launcher import PtyHandle, ProcessHandle, launch
from agent_relay.logging import get_logger
from agent_relay.models import (
    CloseEvent,
    ExecutionConfig,
    OutputChunk,
    ResolvedCommand,
    StreamName,
    Transport,
)
from agent_relay.stream_decoder import StreamDecoder
from agent_relay.watchdog import Watchdog

log = get_logger(__name__)

ChunkCallback = Callable[[str], None]
CloseCallback = Callable[[int | None, RelayError | None], None]

FATAL_EXIT_CODE = 1


class Invocation:
    """Delivery channel for one submission's output.

    Chunks go to ``on_chunk``. When ``record`` is set (the default when no
    callback is given) they are also kept for ``text`` and queued for
    ``events()`` from the start. Without recording nothing is retained, and
    ``events()`` only sees chunks emitted after it is first iterated.
    ``close`` is accepted once; anything emitted afterwards is dropped.
    """

    def __init__(
        self,
        on_chunk: ChunkCallback | None = None,
        on_close: CloseCallback | None = None,
        record: bool | None = None,
    ):
        self.id = uuid.uuid4().hex[:12]
        self._on_chunk = on_chunk
        self._on_close = on_close
        self.record = on_chunk is None if record is None else record
        self._queue: asyncio.Queue[OutputChunk | CloseEvent] | None = asyncio.Queue() if self.record else None
        self._done = asyncio.Event()
        self._parts: list[str] = []
        self.close_event: CloseEvent | None = None

    @property
    def closed(self) -> bool:
        return self.close_event is not None

    @property
    def text(self) -> str:
        """Everything emitted so far, concatenated; empty unless recording."""
        return "".join(self._parts)

    def emit(self, chunk: OutputChunk) -> bool:
        if self.closed:
            return False
        if self.record:
            self._parts.append(chunk.text)
        if self._queue is not None:
            self._queue.put_nowait(chunk)
        if self._on_chunk is not None:
            try:
                self._on_chunk(chunk.text)
            except Exception as e:
                log.error("on_chunk callback failed", invocation=self.id, error=str(e))
        return True

    def close(self, exit_code: int | None, error: RelayError | None = None) -> bool:
        if self.closed:
            return False
        event = CloseEvent(exit_code=exit_code, error=error)
        self.close_event = event
        if self._queue is not None:
            self._queue.put_nowait(event)
        self._done.set()
        if self._on_close is not None:
            try:
                self._on_close(exit_code, error)
            except Exception as e:
                log.error("on_close callback failed", invocation=self.id, error=str(e))
        return True

    async def wait(self) -> CloseEvent:
        await self._done.wait()
        assert self.close_event is not None
        return self.close_event

    async def events(self) -> AsyncIterator[OutputChunk | CloseEvent]:
        """Yield chunks in arrival order, ending with the close event."""
        if self._queue is None:
            self._queue = asyncio.Queue()
            if self.close_event is not None:
                self._queue.put_nowait(self.close_event)
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, CloseEvent):
                return


class RunningProcess:
    """A launched agent process wired through decoders and a watchdog."""

    def __init__(
        self,
        config: ExecutionConfig,
        invocation: Invocation,
        on_exit: Callable[["RunningProcess"], None] | None = None,
    ):
        self.config = config
        self.invocation = invocation
        self.transport = config.transport
        self.mode = config.session_mode
        self.handle: ProcessHandle | None = None
        self.command: ResolvedCommand | None = None
        self.watchdog = Watchdog(
            max_bytes=config.max_output_bytes,
            idle_timeout=config.idle_timeout,
            on_trip=self._on_watchdog_trip,
        )
        self._on_exit = on_exit
        self._decoders: dict[StreamName, StreamDecoder] = {}
        self._readers: list[asyncio.Task[None]] = []
        self._supervisor: asyncio.Task[None] | None = None
        self._started = asyncio.Event()
        self._closed = False
        self._log = log.bind(invocation=invocation.id, transport=self.transport.value, mode=self.mode.value)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pid(self) -> int | None:
        return self.handle.pid if self.handle is not None else None

    @property
    def last_activity(self) -> float:
        return self.watchdog.last_activity

    async def start(self, prompt: str) -> None:
        """Launch the process and deliver the initial prompt.

        Launch failures close the invocation instead of raising. Callers
        forwarding more input wait on ``started()`` so nothing is written
        ahead of the launch or the initial prompt.
        """
        try:
            try:
                self.command = build_command(self.config, prompt)
                self.handle = await launch(self.command, self.config)
            except (LaunchError, ValueError) as e:
                error = e if isinstance(e, LaunchError) else LaunchError(str(e), executable=self.config.executable)
                self._finish(FATAL_EXIT_CODE, error)
                return

            self._log = self._log.bind(pid=self.handle.pid)
            raw = self.transport == Transport.TERMINAL
            self._decoders = {name: StreamDecoder(raw=raw) for name in self.handle.stream_names}
            self.watchdog.arm()
            self._readers = [asyncio.create_task(self._pump(name)) for name in self.handle.stream_names]
            self._supervisor = asyncio.create_task(self._supervise())
            await self._deliver_prompt(prompt)
        finally:
            self._started.set()

    async def started(self) -> bool:
        """Wait until launch and initial prompt delivery are done.

        Returns:
            True if the process is running and accepts input
        """
        await self._started.wait()
        return not self._closed and self.handle is not None

    async def _deliver_prompt(self, prompt: str) -> None:
        if self.transport == Transport.TERMINAL:
            if prompt:
                await self.send(prompt.rstrip("\r\n") + "\r")
            return
        if self.command is not None and not self.command.prompt_in_arguments:
            payload = prompt if prompt.endswith("\n") else prompt + "\n"
            if not await self.send(payload):
                return
        if not self.config.interactive and self.handle is not None:
            self.handle.close_input()

    async def send(self, text: str) -> bool:
        """Write to the process input; a failure closes the invocation."""
        if self._closed or self.handle is None:
            self._log.warning("Input dropped, process not running", closed=self._closed)
            return False
        try:
            await self.handle.write(text)
        except RelayError as e:
            self._log.warning("Input write failed", error=str(e))
            self.handle.kill()
            self._finish(FATAL_EXIT_CODE, e)
            return False
        return True

    def interrupt(self) -> bool:
        """Best-effort SIGINT; the process may ignore it."""
        if self._closed or self.handle is None:
            return False
        sent = self.handle.interrupt()
        self._log.info("Interrupt sent", delivered=sent)
        return sent

    def kill(self) -> bool:
        if self.handle is None:
            return False
        return self.handle.kill()

    async def wait_closed(self) -> CloseEvent:
        event = await self.invocation.wait()
        if self._supervisor is not None:
            await asyncio.gather(self._supervisor, return_exceptions=True)
        return event

    async def _pump(self, name: StreamName) -> None:
        assert self.handle is not None
        decoder = self._decoders[name]
        while True:
            try:
                data = await self.handle.read(name)
            except (OSError, ValueError) as e:
                self._log.error("Output stream failed", stream=name, error=str(e))
                self.handle.kill()
                self._finish(FATAL_EXIT_CODE, RelayError(f"Process {name} stream failed: {e}"))
                return
            if not data:
                break
            self._on_output(name, data)
        tail = decoder.flush()
        if tail:
            self._emit(name, tail)

    def _on_output(self, name: StreamName, data: bytes) -> None:
        if self._closed:
            return
        self.watchdog.touch()
        if name != "stderr" and not self.watchdog.feed(len(data)):
            return
        text = self._decoders[name].decode(data)
        if text:
            self._emit(name, text)

    def _emit(self, name: StreamName, text: str) -> None:
        if self._closed:
            return
        if name == "stderr":
            text = f"\n[stderr] {text}"
        self.invocation.emit(OutputChunk(text=text, stream=name))

    async def _supervise(self) -> None:
        assert self.handle is not None
        try:
            await asyncio.gather(*self._readers)
            exit_code = await self.handle.wait()
        except Exception as e:
            self._log.error("Process supervision failed", error=str(e))
            self.handle.kill()
            self._finish(FATAL_EXIT_CODE, RelayError(f"Failed to wait for process: {e}"))
            return
        finally:
            if isinstance(self.handle, PtyHandle):
                self.handle.close()
        self._finish(exit_code, None)

    def _on_watchdog_trip(self, error: RelayError) -> None:
        if self.handle is not None:
            self.handle.kill()
        self._finish(FATAL_EXIT_CODE, error)

    def _finish(self, exit_code: int | None, error: RelayError | None) -> None:
        if self._closed:
            return
        self._closed = True
        self.watchdog.disarm()
        if error is not None:
            self._log.warning("Agent process closed with error", exit_code=exit_code, error=str(error))
        else:
            self._log.info("Agent process exited", exit_code=exit_code)
        if self._on_exit is not None:
            self._on_exit(self)
        self.invocation.close(exit_code, error)

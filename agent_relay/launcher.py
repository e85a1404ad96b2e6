"""Process launchers for the native, compatibility-subsystem and terminal transports."""

import asyncio
import errno
import os
import signal
import struct
from typing import Protocol

from agent_relay.exceptions import InputWriteError, LaunchError
from agent_relay.logging import get_logger
from agent_relay.models import ExecutionConfig, ResolvedCommand, StreamName, Transport

log = get_logger(__name__)

READ_CHUNK_BYTES = 4096


class ProcessHandle(Protocol):
    """What the running-process wiring needs from a launched process."""

    transport: Transport
    stream_names: tuple[StreamName, ...]

    @property
    def pid(self) -> int | None: ...

    async def read(self, stream: StreamName) -> bytes:
        """Next chunk from ``stream``; ``b""`` at end of stream."""

    async def write(self, text: str) -> None:
        """Write to the process input channel."""

    def close_input(self) -> None: ...

    def interrupt(self) -> bool: ...

    def kill(self) -> bool: ...

    async def wait(self) -> int | None: ...


class _AsyncioProcessHandle:
    """Signal and wait plumbing shared by both handle kinds."""

    def __init__(self, process: asyncio.subprocess.Process, transport: Transport):
        self.process = process
        self.transport = transport

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def _signal(self, sig: int) -> bool:
        if self.process.returncode is not None:
            return False
        try:
            if os.name == "posix":
                # Launched with start_new_session, so pid is also the group id.
                os.killpg(self.process.pid, sig)
            else:
                self.process.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def interrupt(self) -> bool:
        return self._signal(signal.SIGINT)

    def kill(self) -> bool:
        if os.name != "posix":
            try:
                self.process.kill()
            except ProcessLookupError:
                return False
            return True
        return self._signal(signal.SIGKILL)

    async def wait(self) -> int | None:
        return await self.process.wait()


class SubprocessHandle(_AsyncioProcessHandle):
    """Process with separate stdin/stdout/stderr pipes."""

    stream_names: tuple[StreamName, ...] = ("stdout", "stderr")

    async def read(self, stream: StreamName) -> bytes:
        reader = self.process.stdout if stream == "stdout" else self.process.stderr
        if reader is None:
            return b""
        return await reader.read(READ_CHUNK_BYTES)

    async def write(self, text: str) -> None:
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            raise InputWriteError("Process input channel is closed")
        try:
            stdin.write(text.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError, RuntimeError, OSError) as e:
            raise InputWriteError(f"Failed to write to process input: {e}") from e

    def close_input(self) -> None:
        stdin = self.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()


class _PtyReadProtocol(asyncio.Protocol):
    """Queues master-side reads; connection loss (EIO on Linux) is end of stream."""

    def __init__(self):
        self.chunks: asyncio.Queue[bytes] = asyncio.Queue()

    def data_received(self, data: bytes) -> None:
        self.chunks.put_nowait(data)

    def eof_received(self) -> bool:
        self.chunks.put_nowait(b"")
        return False

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None and not (isinstance(exc, OSError) and exc.errno == errno.EIO):
            log.warning("Terminal read failed", error=str(exc))
        self.chunks.put_nowait(b"")


class PtyHandle(_AsyncioProcessHandle):
    """Process attached to a pseudo-terminal; one raw bidirectional byte stream."""

    stream_names: tuple[StreamName, ...] = ("pty",)

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        master_fd: int,
        protocol: _PtyReadProtocol,
        read_transport: asyncio.ReadTransport,
    ):
        super().__init__(process, Transport.TERMINAL)
        self.master_fd = master_fd
        self._protocol = protocol
        self._read_transport = read_transport
        self._eof = False

    async def read(self, stream: StreamName) -> bytes:
        if self._eof:
            return b""
        data = await self._protocol.chunks.get()
        if not data:
            self._eof = True
        return data

    async def write(self, text: str) -> None:
        if self._read_transport.is_closing():
            raise InputWriteError("Terminal is closed")
        data = text.encode("utf-8")
        while data:
            try:
                written = os.write(self.master_fd, data)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            except OSError as e:
                raise InputWriteError(f"Failed to write to terminal: {e}") from e
            data = data[written:]

    def close_input(self) -> None:
        # The terminal stays open for the life of the process.
        return None

    def close(self) -> None:
        if not self._read_transport.is_closing():
            self._read_transport.close()


async def _spawn_subprocess(command: ResolvedCommand) -> SubprocessHandle:
    pipes = {
        "stdin": asyncio.subprocess.PIPE,
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "start_new_session": os.name == "posix",
    }
    if command.transport == Transport.NATIVE:
        process = await asyncio.create_subprocess_shell(command.command_line, cwd=command.cwd, **pipes)
    else:
        # The entry executable does not understand a native cwd; the inner
        # command changes directory itself.
        process = await asyncio.create_subprocess_exec(*command.argv, cwd=None, **pipes)
    return SubprocessHandle(process, command.transport)


def _set_window_size(fd: int, rows: int, cols: int) -> None:
    import fcntl
    import termios

    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


async def _spawn_pty(command: ResolvedCommand, config: ExecutionConfig) -> PtyHandle:
    if os.name != "posix":
        raise LaunchError("Terminal mode requires a POSIX pseudo-terminal", executable=command.argv[0])

    import pty

    master_fd, slave_fd = pty.openpty()
    try:
        _set_window_size(slave_fd, config.terminal_rows, config.terminal_cols)
        env = os.environ.copy()
        env["TERM"] = config.terminal_name
        process = await asyncio.create_subprocess_exec(
            *command.argv,
            cwd=command.cwd,
            env=env,
            stdin=slave_fd,
            stdout=slave_fd,
            stderr=slave_fd,
            start_new_session=True,
        )
    except BaseException:
        os.close(master_fd)
        raise
    finally:
        os.close(slave_fd)

    loop = asyncio.get_running_loop()
    master = os.fdopen(master_fd, "rb", buffering=0)
    try:
        read_transport, protocol = await loop.connect_read_pipe(_PtyReadProtocol, master)
    except BaseException:
        master.close()
        _kill_group(process)
        raise
    return PtyHandle(process, master_fd, protocol, read_transport)


def _kill_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL a process started with start_new_session that never got a handle."""
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


async def launch(command: ResolvedCommand, config: ExecutionConfig) -> ProcessHandle:
    """Start the process described by ``command``.

    Raises:
        LaunchError: The process could not be spawned
    """
    executable = command.argv[0] if command.argv else config.executable
    try:
        if command.transport == Transport.TERMINAL:
            handle: ProcessHandle = await _spawn_pty(command, config)
        else:
            handle = await _spawn_subprocess(command)
    except LaunchError:
        raise
    except (OSError, ValueError) as e:
        log.error("Failed to launch agent", executable=executable, transport=command.transport.value, error=str(e))
        raise LaunchError(f"Failed to start {executable}: {e}", executable=executable) from e

    log.info(
        "Launched agent",
        pid=handle.pid,
        transport=command.transport.value,
        cwd=command.cwd,
    )
    return handle

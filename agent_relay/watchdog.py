"""Byte-cap and inactivity guards for one running process."""

import asyncio
import time
from collections.abc import Callable

from agent_relay.exceptions import IdleTimeoutError, OutputLimitExceededError, RelayError
from agent_relay.logging import get_logger

log = get_logger(__name__)


class Watchdog:
    """Two one-shot guards sharing a single trip callback.

    ``feed`` runs the byte cap synchronously in the output handler so a kill
    decision happens before the offending chunk is forwarded. The idle timer
    is a ``loop.call_later`` handle re-armed on every ``touch``. Once either
    guard trips, both are disarmed and later firings are ignored.
    """

    def __init__(
        self,
        max_bytes: int,
        idle_timeout: float,
        on_trip: Callable[[RelayError], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.max_bytes = max(0, int(max_bytes))
        self.idle_timeout = max(0.0, float(idle_timeout))
        self._on_trip = on_trip
        self._loop = loop
        self._timer: asyncio.TimerHandle | None = None
        self.bytes_seen = 0
        self.last_activity = time.monotonic()
        self.tripped: RelayError | None = None
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        if self.tripped is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._armed = True
        self.touch()

    def touch(self) -> None:
        """Record activity and restart the idle window."""
        self.last_activity = time.monotonic()
        if not self._armed:
            return
        self._cancel_timer()
        if self.idle_timeout > 0:
            self._timer = self._loop.call_later(self.idle_timeout, self._on_idle)

    def feed(self, size: int) -> bool:
        """Count output bytes; return False when the chunk must not be forwarded."""
        if not self._armed:
            return self.tripped is None
        self.bytes_seen += size
        if self.bytes_seen > self.max_bytes:
            self._trip(OutputLimitExceededError(self.max_bytes, self.bytes_seen))
            return False
        return True

    def disarm(self) -> None:
        self._armed = False
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self) -> None:
        self._timer = None
        if not self._armed:
            return
        self._trip(IdleTimeoutError(self.idle_timeout))

    def _trip(self, error: RelayError) -> None:
        if self.tripped is not None:
            return
        self.tripped = error
        self.disarm()
        log.warning("Watchdog tripped", reason=str(error), bytes_seen=self.bytes_seen)
        self._on_trip(error)

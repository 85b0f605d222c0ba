"""Restart signal and wake-from-sleep sources.

:class:`RestartSignal` is the only way the outside world interrupts the
refresh loop.  It is a level-triggered latch: any number of
:meth:`~RestartSignal.notify` calls between two waits collapse into a single
wake-up, and :meth:`~RestartSignal.wait` consumes the latch.

A :class:`WakeSignalSource` is anything that can observe an external event
(system resume, network change, ...) and poke the restart signal.  The loop
never depends on a concrete source.  :class:`ClockJumpWakeSource` is the
portable implementation: it notices that the wall clock advanced much
further than the monotonic clock, which is what a suspend/resume looks like
from user space.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import Final, Protocol, runtime_checkable

__all__ = [
    "RestartSignal",
    "WakeSignalSource",
    "ClockJumpWakeSource",
]

logger = logging.getLogger(__name__)

#: How often the clock-jump source samples both clocks.
_DEFAULT_CHECK_INTERVAL_S: Final[float] = 10.0

#: Wall-clock drift beyond monotonic progress that counts as a resume.
_DEFAULT_JUMP_THRESHOLD_S: Final[float] = 30.0


class RestartSignal:
    """Coalescing wake-up latch for the refresh loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def notify(self) -> None:
        """Set the latch.  Never blocks; safe to call any number of times."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def clear(self) -> None:
        self._event.clear()

    async def wait(self) -> None:
        """Block until the latch is set, then consume it."""
        await self._event.wait()
        self._event.clear()


@runtime_checkable
class WakeSignalSource(Protocol):
    """Something that triggers the restart signal on an external event."""

    def start(self, signal: RestartSignal) -> None: ...

    async def stop(self) -> None: ...


class ClockJumpWakeSource:
    """Detect suspend/resume by comparing wall-clock and monotonic progress.

    While the machine sleeps the monotonic clock stands still (on most
    platforms) but the wall clock does not.  When a sample shows the wall
    clock advanced more than *jump_threshold_s* beyond the monotonic clock,
    the restart signal is notified so usage is refreshed right after resume.

    Args:
        check_interval_s: Seconds between samples.
        jump_threshold_s: Minimum unexplained wall-clock advance.
        wall_clock: Returns wall time in seconds (override in tests).
        monotonic_clock: Returns monotonic time in seconds (override in tests).
    """

    def __init__(
        self,
        *,
        check_interval_s: float = _DEFAULT_CHECK_INTERVAL_S,
        jump_threshold_s: float = _DEFAULT_JUMP_THRESHOLD_S,
        wall_clock: Callable[[], float] = time.time,
        monotonic_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._check_interval_s = check_interval_s
        self._jump_threshold_s = jump_threshold_s
        self._wall_clock = wall_clock
        self._monotonic_clock = monotonic_clock
        self._task: asyncio.Task[None] | None = None
        self._last_wall = 0.0
        self._last_mono = 0.0

    def start(self, signal: RestartSignal) -> None:
        if self._task is not None:
            return
        self._last_wall = self._wall_clock()
        self._last_mono = self._monotonic_clock()
        self._task = asyncio.create_task(self._watch(signal), name="usagewatch-wake-source")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def check(self, signal: RestartSignal) -> bool:
        """Take one sample; notify *signal* and return ``True`` on a clock jump."""
        wall = self._wall_clock()
        mono = self._monotonic_clock()
        drift = (wall - self._last_wall) - (mono - self._last_mono)
        self._last_wall = wall
        self._last_mono = mono
        if drift > self._jump_threshold_s:
            logger.info("Wall clock jumped %.0f s ahead; assuming system resume.", drift)
            signal.notify()
            return True
        return False

    async def _watch(self, signal: RestartSignal) -> None:
        while True:
            await asyncio.sleep(self._check_interval_s)
            self.check(signal)

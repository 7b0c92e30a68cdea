"""Runs the poller once up front, then on a fixed interval in the background.

The first poll runs before the scheduler reports itself started, so a bad
credential or an unreachable API fails startup instead of producing an
exporter that never becomes ready. Later cycle failures are recorded in a
``PollStatus`` that the readiness probe reads from the HTTP server thread.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from surehub_exporter.poller import PollCycleError

if TYPE_CHECKING:
    from surehub_exporter.poller import Poller

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_S = 1.0


class SchedulerState(enum.StrEnum):
    CREATED = "created"
    PRIMING = "priming"
    RUNNING = "running"
    TERMINATED = "terminated"
    FAILED = "failed"


class PollStatus:
    """Outcome of the most recent poll cycle, safe to read from any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: BaseException | None = None
        self._last_success_at: float | None = None

    def record_success(self) -> None:
        with self._lock:
            self._error = None
            self._last_success_at = time.time()

    def record_failure(self, exc: BaseException) -> None:
        with self._lock:
            self._error = exc

    @property
    def error(self) -> BaseException | None:
        with self._lock:
            return self._error

    @property
    def last_success_at(self) -> float | None:
        with self._lock:
            return self._last_success_at


class PollScheduler:
    """Drives ``Poller.poll`` on a fixed cadence.

    ``on_fatal`` is called when the background loop dies from anything other
    than a recorded ``PollCycleError``; the runtime uses it to shut the
    process down.
    """

    def __init__(
        self,
        poller: Poller,
        *,
        interval_s: float,
        status: PollStatus | None = None,
        on_fatal: Callable[[BaseException], None] | None = None,
    ) -> None:
        if interval_s <= MIN_POLL_INTERVAL_S:
            raise ValueError(
                f"poll interval must be greater than {MIN_POLL_INTERVAL_S}s, got {interval_s}"
            )
        self._poller = poller
        self._interval_s = interval_s
        self._status = status if status is not None else PollStatus()
        self._on_fatal = on_fatal
        self._state = SchedulerState.CREATED
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def status(self) -> PollStatus:
        return self._status

    def unready_error(self) -> BaseException | None:
        """Error from the most recent cycle, or ``None`` if it succeeded."""
        return self._status.error

    async def start(self) -> None:
        """Run the priming poll, then start the background loop.

        Raises whatever the priming poll raised; the loop is not started.
        """
        if self._state is not SchedulerState.CREATED:
            raise RuntimeError(f"scheduler already started (state={self._state})")

        self._state = SchedulerState.PRIMING
        try:
            await self._poller.poll()
        except BaseException:
            self._state = SchedulerState.FAILED
            raise
        self._status.record_success()

        self._state = SchedulerState.RUNNING
        self._task = asyncio.create_task(self._loop(), name="surehub-poll-loop")
        self._task.add_done_callback(self._on_loop_done)
        logger.info(
            "First poll succeeded, now looping in background",
            extra={"interval_s": self._interval_s},
        )

    async def stop(self) -> None:
        """Stop looping. A cycle already in flight is allowed to finish."""
        self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            except Exception:
                # already reported through on_fatal
                pass
            self._task = None
        if self._state is not SchedulerState.FAILED:
            self._state = SchedulerState.TERMINATED

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._interval_s
        while True:
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=max(0.0, next_tick - loop.time()),
                )
                return
            except TimeoutError:
                pass

            next_tick += self._interval_s
            if next_tick <= loop.time():
                # a slow cycle overran one or more ticks; drop them
                next_tick = loop.time() + self._interval_s

            try:
                await self._poller.poll()
            except PollCycleError as exc:
                logger.error("Poll failed", extra={"error": str(exc)})
                self._status.record_failure(exc)
            else:
                logger.info("Poll succeeded")
                self._status.record_success()

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            self._state = SchedulerState.TERMINATED
            return
        exc = task.exception()
        if exc is None:
            return
        self._state = SchedulerState.FAILED
        self._status.record_failure(exc)
        logger.critical(
            "Poll loop crashed",
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        if self._on_fatal is not None:
            self._on_fatal(exc)

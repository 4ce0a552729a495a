from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional

from .const import DEFERRED_DELAY_SEC, DEFERRED_SPACING_SEC, IDLE_STAGE, STAGE_NAMES
from .obs import ObsNotConnectedError

_LOGGER = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


class StagePolicy:
    """Starts/stops the stream and exits the process on printer stage changes.

    Idle actions are queued and run by one deferred task: after ``delay`` the
    queue is drained in order with ``spacing`` between actions. A new batch is
    only queued once the previous one has finished.
    """

    def __init__(
        self,
        stream: Any,
        *,
        on_exit: Callable[[], None],
        stop_stream_on_idle: bool = False,
        exit_on_idle: bool = False,
        start_stream_on_startup: bool = False,
        delay: float = DEFERRED_DELAY_SEC,
        spacing: float = DEFERRED_SPACING_SEC,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self._stream = stream
        self._on_exit = on_exit
        self._stop_on_idle = stop_stream_on_idle
        self._exit_on_idle = exit_on_idle
        self._start_on_startup = start_stream_on_startup
        self._delay = delay
        self._spacing = spacing
        self._sleep = sleep
        self._log = logger or _LOGGER

        self._last_stage: Optional[int] = None
        self._pending: Deque[Action] = deque()
        self._timer: Optional[asyncio.Task] = None

    @property
    def last_stage(self) -> Optional[int]:
        return self._last_stage

    @property
    def has_pending(self) -> bool:
        return bool(self._pending) or (self._timer is not None and not self._timer.done())

    async def evaluate(self, stage: int) -> None:
        idle = stage == IDLE_STAGE
        try:
            if idle and self._last_stage is not None and self._last_stage != IDLE_STAGE:
                self._log.info("Print complete!")

            if not self.has_pending:
                if idle and self._stop_on_idle and await self._stream.is_stream_active():
                    self._log.info("Stopping stream in %ss", self._delay)
                    self._pending.append(self._stop_stream)
                if idle and self._exit_on_idle:
                    self._log.info("Printer is idle. Exiting in %ss.", self._delay)
                    self._pending.append(self._exit)
                if self._pending:
                    self._timer = asyncio.create_task(self._run_deferred())

            if (
                not self.has_pending
                and not idle
                and self._start_on_startup
                and not await self._stream.is_stream_active()
            ):
                self._log.info(
                    "Printer is active (%s). Starting stream.", STAGE_NAMES.get(stage, stage)
                )
                await self._stream.start_stream()
        finally:
            self._last_stage = stage

    async def _run_deferred(self) -> None:
        await self._sleep(self._delay)
        while self._pending:
            action = self._pending.popleft()
            try:
                await action()
            except ObsNotConnectedError as e:
                self._log.debug("Deferred action skipped: %s", e)
            except Exception:
                self._log.exception("Deferred action failed")
            await self._sleep(self._spacing)

    async def _stop_stream(self) -> None:
        # the stream may have been stopped while we waited
        if await self._stream.is_stream_active():
            await self._stream.stop_stream()
        else:
            self._log.debug("Stream already stopped")

    async def _exit(self) -> None:
        self._on_exit()

    async def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        self._pending.clear()

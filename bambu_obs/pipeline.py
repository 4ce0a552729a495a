from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional

from .const import QUEUE_CAPACITY, THROTTLE_SEC

_LOGGER = logging.getLogger(__name__)


class MessagePipeline:
    """Bounded single-consumer queue between the MQTT callback and processing.

    ``offer`` never blocks: when the queue is full the oldest unread message
    is evicted, since only the latest printer state matters.
    """

    def __init__(
        self,
        handler: Callable[[bytes], Awaitable[None]],
        capacity: int = QUEUE_CAPACITY,
        throttle: float = THROTTLE_SEC,
        on_exit: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._handler = handler
        self._capacity = capacity
        self._throttle = throttle
        self._on_exit = on_exit
        self._sleep = sleep
        self._log = logger or _LOGGER
        self._items: Deque[bytes] = deque()
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> list[bytes]:
        return list(self._items)

    def offer(self, payload: bytes) -> bool:
        """Enqueue without blocking. Returns False once the pipeline is closed."""
        if self._closed:
            return False
        if len(self._items) >= self._capacity:
            self._items.popleft()
            self.dropped += 1
            self._log.debug("Queue full, dropped oldest message (%s dropped so far)", self.dropped)
        self._items.append(payload)
        self._ready.set()
        return True

    def close(self) -> None:
        """Stop accepting writes and wake the consumer so it can exit."""
        self._closed = True
        self._ready.set()

    async def _next(self) -> Optional[bytes]:
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        if self._closed:
            # stop immediately, remaining items are discarded
            return None
        return self._items.popleft()

    async def run(self) -> None:
        """Consumer loop. Exits on close or cancellation and fires ``on_exit``."""
        try:
            while True:
                payload = await self._next()
                if payload is None:
                    break
                try:
                    await self._handler(payload)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self._log.exception("Failed to process message")
                await self._sleep(self._throttle)
        except asyncio.CancelledError:
            self._log.debug("Reader loop cancelled")
            raise
        finally:
            self._log.debug("Reader loop stopped")
            self._items.clear()
            if self._on_exit:
                self._on_exit()

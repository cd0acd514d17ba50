from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional


log = logging.getLogger("sonosrelay")

IntentFactory = Callable[[], Awaitable[Any]]


class PlaybackQueue:
    """Runs playback intents in the background, one at a time.

    Webhook handlers submit and answer immediately; failures are logged here
    because the response has already been sent. A single worker also means
    two triggers never interleave their calls against the speaker.
    """

    def __init__(self) -> None:
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._timers: set[asyncio.TimerHandle] = set()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def submit(self, label: str, factory: IntentFactory, *, delay: float = 0.0) -> None:
        if self._queue is None:
            raise RuntimeError("Playback queue is not running")
        if delay > 0:
            loop = asyncio.get_running_loop()
            handle: asyncio.TimerHandle

            def _enqueue() -> None:
                self._timers.discard(handle)
                self._queue.put_nowait((label, factory))

            handle = loop.call_later(delay, _enqueue)
            self._timers.add(handle)
            log.info("Scheduled '%s' in %.1fs", label, delay)
            return
        self._queue.put_nowait((label, factory))

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def _run(self) -> None:
        queue = self._queue
        while True:
            label, factory = await queue.get()
            try:
                log.info("Running playback intent '%s'", label)
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Playback intent '%s' failed", label)
            finally:
                queue.task_done()

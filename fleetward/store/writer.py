"""Bounded, single-worker queue for durable writes.

Callers on the pricing path must never wait on storage I/O. Writes are
queued and applied in order by one worker task; when the queue is full the
write is dropped and counted instead of blocking the caller.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Final

from loguru import logger

log = logger.bind(component="writer")

type Write = Callable[[], object] | Callable[[], Awaitable[object]]

DEFAULT_CAPACITY: Final = 4096

_STOP: Final = object()


class AsyncWriter:
    """FIFO write queue drained by exactly one worker.

    Sync writes run on a worker thread, coroutine functions are awaited.
    A failing write is logged and skipped; the worker keeps going.

    Example:
        writer = AsyncWriter(capacity=1024)
        writer.start()
        writer.enqueue(lambda: db.insert(row))
        ...
        await writer.drain()
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            capacity = DEFAULT_CAPACITY
        self._capacity = capacity
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity)
        self._dropped = 0
        self._applied = 0
        self._closed = False
        self._task: asyncio.Task[None] | None = None
        self._gate = asyncio.Event()
        self._gate.set()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def applied_count(self) -> int:
        return self._applied

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    # ─── Worker ──────────────────────────────────────────────────────

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="fleetward-writer")
        return self._task

    async def run(self) -> None:
        """Apply queued writes until :meth:`drain` or cancellation.

        On cancellation the writes already queued are flushed before the
        cancellation propagates.
        """
        held: object = None
        try:
            while True:
                await self._gate.wait()
                held = await self._queue.get()
                if held is _STOP:
                    self._queue.task_done()
                    return
                await self._gate.wait()
                write, held = held, None
                try:
                    await self._apply(write)  # type: ignore[arg-type]
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            if held is not None and held is not _STOP:
                await self._apply(held)  # type: ignore[arg-type]
                self._queue.task_done()
            await self._flush_remaining()
            raise

    async def _flush_remaining(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            if item is not _STOP:
                await self._apply(item)  # type: ignore[arg-type]
            self._queue.task_done()

    async def _apply(self, write: Write) -> None:
        try:
            if inspect.iscoroutinefunction(write):
                await write()
            else:
                result = await asyncio.to_thread(write)
                if inspect.isawaitable(result):
                    await result
            self._applied += 1
        except Exception as e:
            log.opt(exception=e).error("async writer: write failed: {err}", err=e)

    def pause(self) -> None:
        """Hold the worker before its next write (queued writes are kept)."""
        self._gate.clear()

    def resume(self) -> None:
        self._gate.set()

    # ─── Producers ───────────────────────────────────────────────────

    def enqueue(self, write: Write) -> bool:
        """Queue a write without blocking. Returns False when it was dropped."""
        if self._closed:
            log.warning("async writer: enqueue after drain, write discarded")
            return False
        try:
            self._queue.put_nowait(write)
        except asyncio.QueueFull:
            self._dropped += 1
            total = self._dropped
            if total & (total - 1) == 0:
                log.warning(
                    "async writer: dropping writes due to backpressure "
                    "(total_dropped={total_dropped}, queue_capacity={queue_capacity})",
                    total_dropped=total, queue_capacity=self._capacity,
                )
            return False
        return True

    async def drain(self) -> None:
        """Stop accepting writes and wait for every queued write to apply."""
        if self._closed and self._task is None:
            return
        self._closed = True
        self._gate.set()
        task = self.start() if self._task is None or self._task.done() else self._task
        await self._queue.put(_STOP)
        await task
        self._task = None
        log.debug(
            "async writer drained (applied={applied}, dropped={dropped})",
            applied=self._applied, dropped=self._dropped,
        )


__all__ = ["DEFAULT_CAPACITY", "AsyncWriter", "Write"]

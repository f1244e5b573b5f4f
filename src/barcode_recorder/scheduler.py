"""Cadence control for recurring asynchronous work."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TickFn = Callable[[], Awaitable[None]]


class TickScheduler(ABC):
    """Starts, stops, pauses and resumes a recurring tick."""

    @property
    @abstractmethod
    def running(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    @property
    @abstractmethod
    def paused(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def start(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def pause(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def resume(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def set_interval(self, seconds: float) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class AsyncTickScheduler(TickScheduler):
    """Runs *tick* repeatedly, sleeping *interval* seconds after each one.

    The next tick is only scheduled once the previous one has completed, so
    ticks never overlap. While paused, no new tick begins.
    """

    def __init__(self, tick: TickFn, interval: float = 0.5, *, name: str = "tick-scheduler") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._tick = tick
        self._interval = float(interval)
        self._name = name
        self._task: Optional[asyncio.Task[None]] = None
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    async def start(self) -> None:
        if self._task is not None:
            await self.stop()
        self._resumed.set()
        self._task = asyncio.create_task(self._run(), name=self._name)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def set_interval(self, seconds: float) -> None:
        """Change the pause between ticks; takes effect after the current sleep."""

        if seconds <= 0:
            raise ValueError("interval must be positive")
        self._interval = float(seconds)

    async def _run(self) -> None:
        while True:
            await self._resumed.wait()
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled tick failed")
            await asyncio.sleep(self._interval)


__all__ = ["AsyncTickScheduler", "TickFn", "TickScheduler"]

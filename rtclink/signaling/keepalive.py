"""
Dual-channel keepalive ticks for a connected session.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from .session import DEFAULT_KEEPALIVE_INTERVAL_MS

LOG = logging.getLogger(__name__)

DEFAULT_MAX_TICKS = 10

Probe = Callable[[], bool]
Emit = Callable[[int], None]
Sleep = Callable[[float], Awaitable[None]]


class KeepaliveScheduler:
    """
    Periodic liveness task bound to one session id.

    ``probe`` reports whether the session is still connected and is checked
    before every tick; ``emit`` publishes both channel envelopes for a
    sequence number.  The task ends after ``max_ticks`` ticks, as soon as the
    probe fails, or when it is cancelled.
    """

    def __init__(
        self,
        session_id: str,
        probe: Probe,
        emit: Emit,
        *,
        interval_ms: int = DEFAULT_KEEPALIVE_INTERVAL_MS,
        max_ticks: int = DEFAULT_MAX_TICKS,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.session_id = session_id
        self.interval_ms = interval_ms if interval_ms > 0 else DEFAULT_KEEPALIVE_INTERVAL_MS
        self.max_ticks = max(0, int(max_ticks))
        self._probe = probe
        self._emit = emit
        self._sleep: Sleep = sleep or asyncio.sleep
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.logger = LOG.getChild(session_id[:8])

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"keepalive-{self.session_id}"
        )
        return self._task

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _run(self) -> None:
        self.logger.info(
            "Dual-channel keepalive started (interval %sms, budget %s)", self.interval_ms, self.max_ticks
        )
        try:
            while self.ticks < self.max_ticks:
                if not self._probe():
                    self.logger.info("Session no longer connected; keepalive stops")
                    break
                sequence = self.ticks + 1
                try:
                    self._emit(sequence)
                except Exception:
                    self.logger.exception("Keepalive tick %s failed", sequence)
                self.ticks = sequence
                self.logger.debug("Keepalive tick %s/%s sent", sequence, self.max_ticks)
                if self.ticks >= self.max_ticks:
                    break
                await self._sleep(self.interval_ms / 1000.0)
        except asyncio.CancelledError:
            self.logger.info("Keepalive cancelled after %s tick(s)", self.ticks)
            raise
        self.logger.info("Keepalive finished after %s tick(s)", self.ticks)


__all__ = ["DEFAULT_MAX_TICKS", "KeepaliveScheduler"]

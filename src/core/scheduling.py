"""Periodic background loop shared by the sender and retry loops."""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging

LOGGER = logging.getLogger(__name__)


class PeriodicLoop(abc.ABC):
    """Run ``tick`` on a fixed interval until the stop event is set.

    A tick always runs to completion; the stop event is only observed
    between ticks so entries are never abandoned mid-batch. Any exception
    raised by a tick is logged and the loop carries on at the next interval.
    """

    name = "loop"

    def __init__(self, interval_seconds: float) -> None:
        self._interval = interval_seconds

    @abc.abstractmethod
    async def tick(self) -> int:
        """Handle one batch and return how many entries were touched."""

    async def run(self, stop: asyncio.Event) -> None:
        LOGGER.info("%s started (interval=%ss)", self.name, self._interval)
        while not stop.is_set():
            try:
                handled = await self.tick()
                if handled:
                    LOGGER.debug("%s handled %s deliveries", self.name, handled)
            except Exception:
                LOGGER.exception("%s tick failed", self.name)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
        LOGGER.info("%s stopped", self.name)

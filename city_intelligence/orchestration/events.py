"""
Event delivery from a running orchestration to one observer.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from city_intelligence.orchestration.schemas import OrchestratorEvent


logger = logging.getLogger(__name__)


class EventChannel:
    """
    Single-consumer queue of orchestrator events.

    Closes itself on the first terminal event (``done``, ``error`` or
    ``cancelled``); later events are dropped so a stream always ends
    with exactly one terminal frame.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._queue: "asyncio.Queue[OrchestratorEvent]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: OrchestratorEvent) -> bool:
        """Queue an event. Returns False if the channel was already closed."""
        if self._closed:
            logger.debug(f"[session={self.session_id}] Dropped '{event.type}' after close")
            return False
        if event.is_terminal:
            self._closed = True
        self._queue.put_nowait(event)
        return True

    async def iter_events(
        self, keepalive_interval: Optional[float] = None
    ) -> AsyncIterator[Optional[OrchestratorEvent]]:
        """
        Yield events until the terminal one.

        Yields None after ``keepalive_interval`` seconds without an event.
        """
        while True:
            if keepalive_interval:
                try:
                    event = await asyncio.wait_for(self._queue.get(), keepalive_interval)
                except asyncio.TimeoutError:
                    yield None
                    continue
            else:
                event = await self._queue.get()

            yield event
            if event.is_terminal:
                return

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator

from applyflow.types import BatchEvent


class EventBus:
    """Per-session fan-out of batch events to subscriber queues.

    ``publish`` never awaits, so events reach every queue in the order they
    were produced. Both sides must run on the same event loop.
    """

    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue[BatchEvent]]] = defaultdict(list)

    def publish(self, event: BatchEvent) -> None:
        for queue in list(self._queues.get(event.session_id, [])):
            queue.put_nowait(event)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._queues.get(session_id, []))

    async def subscribe(self, session_id: str) -> AsyncIterator[BatchEvent]:
        queue: asyncio.Queue[BatchEvent] = asyncio.Queue()
        self._queues[session_id].append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            if queue in self._queues.get(session_id, []):
                self._queues[session_id].remove(queue)
            if not self._queues.get(session_id):
                self._queues.pop(session_id, None)

"""In-process event transport used by default and in tests."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import LifecycleEvent
from .base import BaseTransport


class InMemoryTransport(BaseTransport[str]):
    """Per-topic FIFO queues held in memory."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, LifecycleEvent]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, event: LifecycleEvent) -> None:
        async with self._lock:
            self._queues[topic].append((event.to_json(), event))

    def pending(self, topic: str) -> List[LifecycleEvent]:
        """Events queued on ``topic`` that no subscriber has consumed yet."""
        return [event for _, event in self._queues[topic]]

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, LifecycleEvent]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            async with self._lock:
                item = self._queues[topic].popleft() if self._queues[topic] else None
            if item is not None:
                yield item
                continue

            await asyncio.sleep(0.05)

"""Base transport interface for lifecycle events."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..constants import EVENT_TOPIC_PREFIX
from ..contracts import LifecycleEvent

RawEventT = TypeVar("RawEventT")


def topic_for(family: str) -> str:
    """Topic carrying the events of one resource family."""
    return f"{EVENT_TOPIC_PREFIX}.{family}"


class BaseTransport(Generic[RawEventT], metaclass=abc.ABCMeta):
    """Abstract base transport for event delivery."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: LifecycleEvent) -> None:
        """Send an event to a topic."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawEventT, LifecycleEvent]]:
        """Yield raw transport payload and decoded event pairs.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        raise NotImplementedError

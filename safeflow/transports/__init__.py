"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SafeflowConfig, load_config
from .base import BaseTransport, topic_for
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[SafeflowConfig] = None
) -> BaseTransport:
    """Factory function to get the configured event transport."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("SAFEFLOW_TRANSPORT")
        or config.transport.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryTransport()
    elif backend == "redis":
        from .redis import RedisTransport

        redis_conf = config.transport.redis
        return RedisTransport(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport", "topic_for"]

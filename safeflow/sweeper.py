"""Periodic sweep persisting ``Active -> Expired`` for lapsed records.

Readers already see lapsed records as expired; the sweep only makes the stored
state catch up so that state filters and downstream event consumers see it too.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from .deadlines import to_utc
from .lifecycle import Phase
from .service import LifecycleService

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Expires lapsed records on a fixed interval."""

    def __init__(self, service: LifecycleService, interval: Optional[float] = None) -> None:
        self._service = service
        self.interval = (
            interval
            if interval is not None
            else service.config.engine.sweep_interval_seconds
        )

    async def sweep_once(self, now: Optional[datetime] = None) -> List[str]:
        """Expire every lapsed active record and return the ids that changed."""
        service = self._service
        now = to_utc(now or service.clock())
        expired: List[str] = []
        for name, family in service.families.items():
            if not family.supports(Phase.ACTIVE):
                continue
            machine = service.machine_for(name)
            active = await service.repository.list_records(
                family=name, state=family.state_for(Phase.ACTIVE)
            )
            for record in active:
                if not machine.is_lapsed(record, now):
                    continue
                result = await service.expire(record.id, now=now)
                if result.ok and result.state == family.state_for(Phase.EXPIRED):
                    expired.append(record.id)
        if expired:
            logger.info(f"Expiry sweep moved {len(expired)} record(s) to expired")
        return expired

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Sweep every ``interval`` seconds, for ``lifespan`` seconds or forever."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        logger.info(f"Expiry sweeper started (interval {self.interval}s)")
        while True:
            await self.sweep_once()
            if lifespan is not None:
                remaining = lifespan - (loop.time() - start)
                if remaining <= 0:
                    break
                await asyncio.sleep(min(self.interval, remaining))
            else:
                await asyncio.sleep(self.interval)
        logger.info("Expiry sweeper stopped")

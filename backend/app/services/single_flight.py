"""Per-page single-flight guard for scan execution."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Hashable

logger = logging.getLogger(__name__)


class ScanGuard:
    """Map of key -> start time for work currently in flight.

    acquire() checks and sets under one lock, so a second caller for the
    same key is rejected instead of waiting.
    """

    def __init__(self):
        self._in_flight: Dict[Hashable, datetime] = {}
        self._lock = asyncio.Lock()

    def is_held(self, key: Hashable) -> bool:
        return key in self._in_flight

    async def acquire(self, key: Hashable) -> bool:
        async with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight[key] = datetime.utcnow()
            return True

    async def release(self, key: Hashable):
        async with self._lock:
            self._in_flight.pop(key, None)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[bool]:
        """Yields True when the key was acquired; releases it on exit."""
        acquired = await self.acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)

    def in_flight(self) -> Dict[Hashable, datetime]:
        return dict(self._in_flight)

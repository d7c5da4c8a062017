"""Politeness throttling between outbound listing fetches."""

import asyncio
import logging
import random
import time
from collections import defaultdict
from typing import Optional

from catalog_sync.config import settings

logger = logging.getLogger(__name__)


class PolitenessLimiter:
    """
    Fixed-interval limiter keyed by worker.

    Each key (one per fetch worker) may start a request only once the
    interval has elapsed since its previous request, so N workers keep at
    most N fetches in flight per politeness interval.
    """

    def __init__(self, interval: Optional[float] = None, jitter: float = 0.0):
        """
        Initialize limiter.

        Args:
            interval: Minimum seconds between requests of one key (defaults to settings)
            jitter: Extra random delay in seconds, added on top of the interval
        """
        self.interval = settings.politeness_delay_seconds if interval is None else interval
        self.jitter = jitter
        self.locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.last_request: dict[str, float] = {}

    async def acquire(self, key: str) -> float:
        """
        Wait until ``key`` may issue its next request.

        Returns:
            Seconds actually waited
        """
        async with self.locks[key]:
            now = time.monotonic()
            last_time = self.last_request.get(key)

            wait_needed = 0.0
            if last_time is not None:
                interval = self.interval
                if self.jitter > 0:
                    interval += random.uniform(0, self.jitter)
                wait_needed = max(0.0, interval - (now - last_time))
                if wait_needed > 0:
                    await asyncio.sleep(wait_needed)

            self.last_request[key] = time.monotonic()
            return wait_needed

    def reset(self):
        """Forget request history (new run)."""
        self.last_request.clear()

"""Redis lock that lets only one catalog sync write at a time.

The lock value is a small JSON document naming the holding run and a
random token; release and refresh go through one Lua script that checks
both before touching the key.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis

from catalog_sync.config import settings

logger = logging.getLogger(__name__)

LOCK_KEY = "catalog_sync:lock"
HEARTBEAT_KEY = "catalog_sync:heartbeat"

MISSING, APPLIED, FOREIGN = 0, 1, 2

# KEYS: lock, heartbeat. ARGV: run_id, token, action, ttl, now
_OWNER_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return 0
end
local ok, holder = pcall(cjson.decode, raw)
if not ok or holder.run_id ~= ARGV[1] or holder.token ~= ARGV[2] then
    return 2
end
if ARGV[3] == 'release' then
    redis.call('DEL', KEYS[1], KEYS[2])
else
    redis.call('EXPIRE', KEYS[1], ARGV[4])
    redis.call('SET', KEYS[2], ARGV[5], 'EX', ARGV[4])
end
return 1
"""


def _short(run_id: str) -> str:
    return run_id[:12]


def _decode_holder(raw: str) -> Optional[Dict[str, Any]]:
    try:
        holder = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return holder if isinstance(holder, dict) else None


class SyncLockManager:
    """
    Run-level lock so two syncs never compute deactivations from stale
    snapshots at the same time.

    The key expires on its own if a worker dies; a live run keeps it
    alive with ``refresh_lock_heartbeat``.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None
        self._owner_script = None

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            self._owner_script = self._redis.register_script(_OWNER_SCRIPT)
        return self._redis

    async def _as_owner(self, action: str, run_id: str, token: str, ttl: int = 0) -> int:
        await self._client()
        return await self._owner_script(
            keys=[LOCK_KEY, HEARTBEAT_KEY],
            args=[run_id, token, action, str(ttl), str(time.time())],
        )

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._owner_script = None

    async def acquire_lock(self, run_id: str, ttl_seconds: Optional[int] = None) -> Optional[str]:
        """
        Make a single attempt at the lock.

        Returns:
            The ownership token, or None while another run holds the lock
        """
        client = await self._client()
        ttl = ttl_seconds or settings.sync_lock_ttl_seconds
        token = uuid4().hex
        payload = {"run_id": run_id, "token": token, "started_at": datetime.utcnow().isoformat()}

        if await client.set(LOCK_KEY, json.dumps(payload), nx=True, ex=ttl):
            await client.set(HEARTBEAT_KEY, str(time.time()), ex=ttl)
            logger.info(f"Sync lock taken by run {_short(run_id)} (ttl {ttl}s)")
            return token

        raw = await client.get(LOCK_KEY)
        holder = _decode_holder(raw) if raw else None
        if raw and holder is None:
            logger.warning(f"Sync lock holds an unreadable value: {raw!r}")
        elif holder:
            logger.debug(f"Sync lock busy, held by run {_short(str(holder.get('run_id', '?')))}")
        return None

    async def wait_for_lock(
        self,
        run_id: str,
        wait_seconds: float,
        ttl_seconds: Optional[int] = None,
        poll_interval: float = 0.5,
    ) -> Optional[str]:
        """Retry ``acquire_lock`` until it succeeds or ``wait_seconds`` pass."""
        give_up_at = time.monotonic() + wait_seconds
        token = await self.acquire_lock(run_id, ttl_seconds)
        while token is None and time.monotonic() < give_up_at:
            await asyncio.sleep(poll_interval)
            token = await self.acquire_lock(run_id, ttl_seconds)
        return token

    async def safe_unlock(self, run_id: str, token: Optional[str] = None) -> bool:
        """
        Release the lock if this run still owns it.

        An already expired lock counts as released. Returns False when the
        token is missing or another run holds the key.
        """
        if not token:
            logger.warning(f"Run {_short(run_id)} asked to unlock without a token")
            return False

        outcome = await self._as_owner("release", run_id, token)
        if outcome == FOREIGN:
            logger.warning(f"Run {_short(run_id)} does not own the sync lock; left in place")
            return False
        if outcome == APPLIED:
            logger.info(f"Sync lock released by run {_short(run_id)}")
        else:
            logger.debug(f"Sync lock for run {_short(run_id)} had already expired")
        return True

    async def force_unlock(self) -> bool:
        """Delete the lock regardless of owner. Only for operator recovery."""
        client = await self._client()
        await client.delete(LOCK_KEY, HEARTBEAT_KEY)
        logger.warning("Sync lock force-cleared")
        return True

    async def refresh_lock(self, run_id: str, token: str, ttl_seconds: Optional[int] = None) -> bool:
        """Push the lock expiry forward and stamp the heartbeat key."""
        ttl = ttl_seconds or settings.sync_lock_ttl_seconds
        outcome = await self._as_owner("refresh", run_id, token, ttl)
        if outcome == FOREIGN:
            logger.warning(f"Run {_short(run_id)} tried to refresh a sync lock it does not own")
        return outcome == APPLIED

    async def get_lock_info(self) -> Optional[Dict[str, Any]]:
        """Describe the current holder, or None when the lock is free."""
        client = await self._client()
        raw = await client.get(LOCK_KEY)
        if not raw:
            return None

        ttl = await client.ttl(LOCK_KEY)
        info: Dict[str, Any] = {"ttl_seconds": ttl if ttl > 0 else None}
        holder = _decode_holder(raw)
        if holder is None:
            info["raw_value"] = raw
            return info
        for field in ("run_id", "token", "started_at"):
            info[field] = holder.get(field)
        return info


async def refresh_lock_heartbeat(
    lock_manager: SyncLockManager,
    run_id: str,
    token: str,
    interval: Optional[float] = None,
    ttl: Optional[int] = None,
    max_failures: int = 3,
) -> None:
    """
    Keep the lock alive while a run is in progress.

    Meant to run as a task that the owner cancels when it finishes; gives
    up on its own after ``max_failures`` refreshes in a row fail.
    """
    interval = interval or settings.sync_lock_heartbeat_interval_seconds
    misses = 0

    while misses < max_failures:
        await asyncio.sleep(interval)
        try:
            ok = await lock_manager.refresh_lock(run_id, token, ttl)
        except redis.RedisError as e:
            logger.warning(f"Heartbeat for run {_short(run_id)} hit a Redis error: {e}")
            ok = False
        misses = 0 if ok else misses + 1
        if misses:
            logger.warning(f"Heartbeat for run {_short(run_id)} missed ({misses}/{max_failures})")

    logger.error(f"Heartbeat for run {_short(run_id)} gave up; lock will expire on its own")


sync_lock_manager = SyncLockManager()

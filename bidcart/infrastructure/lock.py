"""
Per-auction distributed lock with retry tracking

Sits in front of the bid compare-and-swap to keep replicas from hammering the
same auction row. The swap stays the correctness guard; the lock only reduces
contention.
"""
import time
import uuid
import logging
from contextlib import contextmanager
from typing import Tuple

import redis

from bidcart.core.config import get_settings

logger = logging.getLogger(__name__)


class AuctionLock:
    # Atomic "delete only if we still own it"
    UNLOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, redis_client: redis.Redis):
        settings = get_settings()
        self.redis = redis_client
        self.lock_expire_ms = settings.LOCK_EXPIRE_MS
        self.retry_delay = settings.LOCK_RETRY_DELAY
        self.max_retries = settings.LOCK_MAX_RETRIES

    @staticmethod
    def _key(auction_id: int) -> str:
        return f"auction:lock:{auction_id}"

    def acquire(self, auction_id: int) -> Tuple[str, str, int]:
        """
        Try to acquire lock with retry

        Returns: (lock_key, request_id, retry_count)
        Raises: TimeoutError if can't acquire
        """
        lock_key = self._key(auction_id)
        request_id = str(uuid.uuid4())

        for attempt in range(self.max_retries):
            acquired = self.redis.set(
                lock_key,
                request_id,
                nx=True,
                px=self.lock_expire_ms
            )

            if acquired:
                return lock_key, request_id, attempt

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_delay)

        raise TimeoutError(f"Could not acquire lock for auction {auction_id}")

    def release(self, lock_key: str, request_id: str):
        """Release lock only if we own it"""
        try:
            self.redis.eval(self.UNLOCK_SCRIPT, 1, lock_key, request_id)
        except redis.RedisError as e:
            # The key expires on its own after lock_expire_ms
            logger.warning(f"⚠️  Error releasing lock {lock_key}: {e}")

    @contextmanager
    def lock(self, auction_id: int):
        """
        Context manager for easy usage

        Usage:
            with lock_manager.lock(auction_id) as retry_count:
                place_bid()
        """
        lock_key, request_id, retry_count = self.acquire(auction_id)

        try:
            yield retry_count
        finally:
            self.release(lock_key, request_id)

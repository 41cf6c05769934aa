# backend/store.py

import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from config.settings import settings

from .model import JobRecord, Transaction


JOB_KEY_PREFIX = "job:"        # job:{video_id}
POINTS_KEY_PREFIX = "points:"  # points:{user_id}
PREFS_KEY_PREFIX = "prefs:"    # prefs:{user_id}
TRANSACTIONS_KEY_PREFIX = "transactions:"  # transactions:{user_id}
CLAIM_KEY_SUFFIX = ":claimed"  # job:{video_id}:claimed


async def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


class JobStore:
    """Job outcomes, point balances, the points ledger and preferences, kept in Redis as JSON."""

    def __init__(self, rds: redis.Redis):
        self.rds = rds

    async def ping(self) -> bool:
        return bool(await self.rds.ping())

    async def get_job(self, video_id: str) -> Optional[JobRecord]:
        data = await self.rds.get(f"{JOB_KEY_PREFIX}{video_id}")
        if not data:
            return None
        return JobRecord.model_validate(json.loads(data))

    async def save_job(self, video_id: str, record: JobRecord) -> None:
        await self.rds.set(f"{JOB_KEY_PREFIX}{video_id}", record.model_dump_json())

    async def claim_job(self, video_id: str) -> bool:
        """
        Take the right to settle a job. Only the first caller gets True,
        so concurrent callbacks for one video cannot both charge.
        """
        return bool(await self.rds.set(f"{JOB_KEY_PREFIX}{video_id}{CLAIM_KEY_SUFFIX}", 1, nx=True))

    async def release_job(self, video_id: str) -> None:
        await self.rds.delete(f"{JOB_KEY_PREFIX}{video_id}{CLAIM_KEY_SUFFIX}")

    async def get_points(self, user_id: int) -> int:
        value = await self.rds.get(f"{POINTS_KEY_PREFIX}{user_id}")
        return int(value) if value else 0

    async def deduct_points(self, user_id: int, amount: int) -> Optional[int]:
        """
        Take `amount` points; returns the new balance, or None (and leaves the
        balance untouched) when the user does not have enough.
        """
        key = f"{POINTS_KEY_PREFIX}{user_id}"
        new_balance = await self.rds.decrby(key, amount)
        if new_balance < 0:
            await self.rds.incrby(key, amount)
            return None
        return new_balance

    async def get_preferences(self, user_id: int) -> Dict[str, Any]:
        data = await self.rds.get(f"{PREFS_KEY_PREFIX}{user_id}")
        return json.loads(data) if data else {}

    async def save_preferences(self, user_id: int, prefs: Dict[str, Any]) -> None:
        await self.rds.set(f"{PREFS_KEY_PREFIX}{user_id}", json.dumps(prefs))

    async def add_transaction(self, user_id: int, entry: Transaction) -> None:
        await self.rds.rpush(f"{TRANSACTIONS_KEY_PREFIX}{user_id}", entry.model_dump_json())

    async def get_transactions(self, user_id: int) -> List[Transaction]:
        items = await self.rds.lrange(f"{TRANSACTIONS_KEY_PREFIX}{user_id}", 0, -1)
        return [Transaction.model_validate(json.loads(item)) for item in items]

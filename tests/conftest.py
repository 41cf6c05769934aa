"""Shared fakes for notifier and backend tests."""

import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from backend.model import JobRecord, Transaction
from client.model import PushMessage, VideoStatus


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Replaces asyncio.sleep: records each delay and advances a virtual clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class FakePushChannel:
    """
    Each connection replays the next script. Script items are PushMessages,
    exceptions (raised), or an asyncio.Event to block on before continuing.
    Once scripts run out a connection stays open forever.
    """

    def __init__(self, *scripts: List[Any]) -> None:
        self.scripts = list(scripts)
        self.connects = 0
        self.closed = 0
        self.retry_delay: Optional[float] = None

    async def messages(self, owner_user_id: int):
        self.connects += 1
        try:
            if not self.scripts:
                await asyncio.Event().wait()
            for item in self.scripts.pop(0):
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                yield item
        finally:
            self.closed += 1


class FakePullChannel:
    """Returns scripted statuses in order; the last one repeats. Records call times."""

    def __init__(self, clock: FakeClock, *responses: Any) -> None:
        self.clock = clock
        self.responses = list(responses) or [pending()]
        self.calls: List[float] = []

    async def fetch(self, job_id: str, owner_user_id: int) -> VideoStatus:
        self.calls.append(self.clock.now)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


def pending() -> VideoStatus:
    return VideoStatus(status="pending")


def completed_status(job_id: str = "job-42") -> VideoStatus:
    return VideoStatus(
        status="completed",
        video_id=job_id,
        video_url="https://x/v.mp4",
        new_balance=90,
        points_deducted=10,
    )


def completed_message(job_id: str = "job-42") -> PushMessage:
    return PushMessage(
        type="video_completed",
        job_id=job_id,
        video_url="https://x/v.mp4",
        new_balance=90,
        points_deducted=10,
    )


class InMemoryJobStore:
    """Same surface as backend.store.JobStore, kept in dicts."""

    def __init__(self) -> None:
        self.jobs: Dict[str, JobRecord] = {}
        self.points: Dict[int, int] = {}
        self.prefs: Dict[int, Dict[str, Any]] = {}
        self.transactions: Dict[int, List[Transaction]] = {}
        self.claimed: Set[str] = set()

    async def ping(self) -> bool:
        return True

    async def get_job(self, video_id: str) -> Optional[JobRecord]:
        return self.jobs.get(video_id)

    async def save_job(self, video_id: str, record: JobRecord) -> None:
        self.jobs[video_id] = record

    async def claim_job(self, video_id: str) -> bool:
        if video_id in self.claimed:
            return False
        self.claimed.add(video_id)
        return True

    async def release_job(self, video_id: str) -> None:
        self.claimed.discard(video_id)

    async def get_points(self, user_id: int) -> int:
        return self.points.get(user_id, 0)

    async def deduct_points(self, user_id: int, amount: int) -> Optional[int]:
        balance = self.points.get(user_id, 0)
        if balance < amount:
            return None
        self.points[user_id] = balance - amount
        return self.points[user_id]

    async def get_preferences(self, user_id: int) -> Dict[str, Any]:
        return dict(self.prefs.get(user_id, {}))

    async def save_preferences(self, user_id: int, prefs: Dict[str, Any]) -> None:
        self.prefs[user_id] = dict(prefs)

    async def add_transaction(self, user_id: int, entry: Transaction) -> None:
        self.transactions.setdefault(user_id, []).append(entry)

    async def get_transactions(self, user_id: int) -> List[Transaction]:
        return list(self.transactions.get(user_id, []))

# client/notifier.py
"""
Completion notifier for video generation jobs.

A subscription listens on the owner's SSE stream. If the stream errors or
closes before the job reaches a terminal state, it falls back to polling the
status endpoint with a growing delay, while the stream keeps reconnecting in
the background the way a browser EventSource does. Whichever channel sees the
terminal status first delivers the event; everything after that is dropped.
"""
import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterator, Literal, Optional

import httpx

from config.settings import settings

from .channels import ChannelError, SSEPushChannel, StatusPullChannel
from .model import Expired, GenerationJob, JobEvent

logger = logging.getLogger(__name__)

State = Literal["listening", "polling", "done"]
EventCallback = Callable[[JobEvent], None]
Sleep = Callable[[float], Awaitable[None]]

TRANSPORT_ERRORS = (httpx.HTTPError, ChannelError)


class DuplicateSubscriptionError(RuntimeError):
    pass


@dataclass
class BackoffPolicy:
    initial: float = settings.POLL_INITIAL_DELAY
    step: float = settings.POLL_STEP
    maximum: float = settings.POLL_MAX_DELAY
    # give-up limits, None = unbounded
    max_attempts: Optional[int] = settings.POLL_MAX_ATTEMPTS
    max_elapsed: Optional[float] = settings.POLL_MAX_ELAPSED

    def delays(self) -> Iterator[float]:
        """5, 10, 15, ... never above `maximum`."""
        delay = min(self.initial, self.maximum)
        while True:
            yield delay
            delay = min(delay + self.step, self.maximum)

    def exhausted(self, attempts: int, waited: float) -> bool:
        if self.max_attempts is not None and attempts >= self.max_attempts:
            return True
        if self.max_elapsed is not None and waited >= self.max_elapsed:
            return True
        return False


class Subscription:
    """
    Observation of one job. Calling the subscription (or `cancel()`) stops it.
    """

    def __init__(self, notifier: "CompletionNotifier", job: GenerationJob, on_event: EventCallback):
        self.job = job
        self.state: State = "listening"
        self.attempts = 0
        self._notifier = notifier
        self._on_event = on_event
        self._delivered = False
        self._push_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

    @property
    def job_id(self) -> str:
        return self.job.job_id

    def __call__(self) -> None:
        self.cancel()

    def __repr__(self) -> str:
        return f"<Subscription job_id={self.job_id!r} state={self.state}>"

    def cancel(self) -> None:
        if self.state == "done":
            return
        logger.info("[Notifier] Subscription for job %s cancelled (state=%s)", self.job_id, self.state)
        self._finish()

    async def wait(self) -> None:
        await self._done.wait()

    def _start(self) -> None:
        self._push_task = asyncio.create_task(self._listen())

    def _finish(self) -> None:
        self._delivered = True
        self.state = "done"

        current = asyncio.current_task()
        for task in (self._push_task, self._poll_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        self._notifier._release(self)
        self._done.set()

    def _deliver(self, event: JobEvent, source: str) -> None:
        # check-and-set of the delivered flag, nothing awaited in between
        if self._delivered:
            logger.debug("[Notifier] Dropping %s event for job %s from %s", event.kind, self.job_id, source)
            return
        self._finish()

        logger.info("[Notifier] Job %s %s (via %s)", self.job_id, event.kind, source)
        try:
            self._on_event(event)
        except Exception:
            logger.exception("[Notifier] on_event callback failed for job %s", self.job_id)

    def _start_polling(self) -> None:
        if self.state != "listening":
            return
        logger.info("[Notifier] Push channel lost, polling job %s", self.job_id)
        self.state = "polling"
        self._poll_task = asyncio.create_task(self._poll())

    async def _listen(self) -> None:
        push = self._notifier.push
        owner = self.job.owner_user_id

        while self.state != "done":
            try:
                async with aclosing(push.messages(owner)) as messages:
                    async for message in messages:
                        event = message.to_event(self.job_id)
                        if event is not None:
                            self._deliver(event, "push")
                            return
                        logger.debug("[Notifier] Ignoring %s message for %s", message.type, message.correlation_id)
                logger.info("[Notifier] Push channel closed before job %s finished", self.job_id)
            except TRANSPORT_ERRORS as e:
                logger.warning("[Notifier] Push channel error for job %s: %s", self.job_id, e)

            if self.state == "done":
                return
            self._start_polling()

            if self._notifier.reconnect_delay is None:
                return
            delay = push.retry_delay if push.retry_delay is not None else self._notifier.reconnect_delay
            await self._notifier.sleep(delay)

    async def _poll(self) -> None:
        policy = self._notifier.policy
        pull = self._notifier.pull
        waited = 0.0

        for delay in policy.delays():
            await self._notifier.sleep(delay)
            waited += delay
            if self.state == "done":
                return

            self.attempts += 1
            try:
                status = await pull.fetch(self.job_id, self.job.owner_user_id)
            except TRANSPORT_ERRORS as e:
                logger.warning("[Notifier] Poll #%d for job %s failed: %s", self.attempts, self.job_id, e)
            else:
                event = status.to_event(self.job_id)
                if event is not None:
                    self._deliver(event, "pull")
                    return
                logger.debug("[Notifier] Job %s still %s after %.0fs", self.job_id, status.status, waited)

            if policy.exhausted(self.attempts, waited):
                logger.warning(
                    "[Notifier] Giving up on job %s after %d polls / %.0fs", self.job_id, self.attempts, waited
                )
                self._deliver(Expired(job_id=self.job_id, attempts=self.attempts, waited=waited), "policy")
                return


class CompletionNotifier:
    def __init__(
        self,
        push=None,
        pull=None,
        policy: Optional[BackoffPolicy] = None,
        reconnect_delay: Optional[float] = settings.SSE_RECONNECT_DELAY,
        sleep: Sleep = asyncio.sleep,
    ):
        self.push = push if push is not None else SSEPushChannel()
        self.pull = pull if pull is not None else StatusPullChannel()
        self.policy = policy if policy is not None else BackoffPolicy()
        self.reconnect_delay = reconnect_delay
        self.sleep = sleep
        self._active: Dict[str, Subscription] = {}

    def subscribe(self, job_id: str, owner_user_id: int, on_event: EventCallback) -> Subscription:
        """
        Start observing `job_id`. `on_event` gets at most one terminal event.
        Must be called from a running event loop.
        """
        if not isinstance(job_id, str) or not job_id.strip():
            raise ValueError("job_id must be a non-empty string")
        if isinstance(owner_user_id, bool) or not isinstance(owner_user_id, int):
            raise TypeError(f"owner_user_id must be an int, got {owner_user_id!r}")
        if job_id in self._active:
            raise DuplicateSubscriptionError(f"job {job_id} already has an active subscription")

        job = GenerationJob(job_id=job_id, owner_user_id=owner_user_id)
        sub = Subscription(self, job, on_event)
        sub._start()
        self._active[job_id] = sub
        logger.info("[Notifier] Subscribed to job %s for user %s", job_id, owner_user_id)
        return sub

    async def wait_for_event(self, job_id: str, owner_user_id: int) -> JobEvent:
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _resolve(event: JobEvent) -> None:
            if not future.done():
                future.set_result(event)

        sub = self.subscribe(job_id, owner_user_id, _resolve)
        try:
            return await future
        finally:
            sub.cancel()

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    def _release(self, sub: Subscription) -> None:
        if self._active.get(sub.job_id) is sub:
            del self._active[sub.job_id]

import asyncio
from itertools import islice

import anyio
import httpx
import pytest

from client.channels import ChannelError
from client.model import Completed, Expired, Failed, PushMessage, VideoStatus
from client.notifier import BackoffPolicy, CompletionNotifier, DuplicateSubscriptionError
from conftest import FakeClock, FakePullChannel, FakePushChannel, completed_message, completed_status, pending


def make_notifier(push, pull, clock, reconnect_delay=None, **policy):
    defaults = dict(initial=5, step=5, maximum=60, max_attempts=None, max_elapsed=None)
    defaults.update(policy)
    return CompletionNotifier(
        push=push,
        pull=pull,
        policy=BackoffPolicy(**defaults),
        reconnect_delay=reconnect_delay,
        sleep=clock.sleep,
    )


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def test_backoff_delays_grow_by_step_and_cap():
    policy = BackoffPolicy(initial=5, step=5, maximum=60)
    assert list(islice(policy.delays(), 14)) == [5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55, 60, 60, 60]


def test_backoff_exhausted_only_when_limits_set():
    assert not BackoffPolicy(max_attempts=None, max_elapsed=None).exhausted(1000, 1e9)
    assert BackoffPolicy(max_attempts=3, max_elapsed=None).exhausted(3, 0)
    assert BackoffPolicy(max_attempts=None, max_elapsed=30).exhausted(1, 30)


@pytest.mark.anyio
async def test_push_completion_never_starts_polling():
    clock = FakeClock()
    push = FakePushChannel([completed_message("job-42")])
    pull = FakePullChannel(clock)
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()

    assert len(events) == 1
    assert isinstance(events[0], Completed)
    assert events[0].video_url == "https://x/v.mp4"
    assert pull.calls == []
    assert clock.sleeps == []
    assert sub.state == "done"
    await settle()
    # the stream is released as soon as the event is delivered
    assert push.closed == 1


@pytest.mark.anyio
async def test_push_ignores_messages_for_other_jobs():
    clock = FakeClock()
    push = FakePushChannel(
        [
            PushMessage(type="connected", message="hi"),
            completed_message("job-1"),
            PushMessage(type="video_failed", video_id="job-2"),
            PushMessage(type="video_failed", video_id="job-42", message="render crashed", new_balance=100),
        ]
    )
    notifier = make_notifier(push, FakePullChannel(clock), clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()

    assert events == [Failed(job_id="job-42", message="render crashed", new_point_balance=100)]


@pytest.mark.anyio
async def test_push_error_falls_back_to_polling_after_minimum_delay():
    clock = FakeClock()
    push = FakePushChannel([ChannelError("stream returned 502")])
    responses = [pending()] * 14 + [completed_status()]
    pull = FakePullChannel(clock, *responses)
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()

    assert clock.sleeps[0] == 5
    assert pull.calls[0] == 5
    growing = clock.sleeps[: clock.sleeps.index(60) + 1]
    assert all(b > a for a, b in zip(growing, growing[1:]))
    assert max(clock.sleeps) == 60
    assert clock.sleeps[-3:] == [60, 60, 60]
    assert len(pull.calls) == 15
    assert len(events) == 1


@pytest.mark.anyio
async def test_job_42_scenario_completes_on_second_poll():
    clock = FakeClock()
    push = FakePushChannel([httpx.ConnectError("connection refused")])
    pull = FakePullChannel(clock, pending(), completed_status("job-42"))
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    assert sub.state == "listening"
    with anyio.fail_after(5):
        await sub.wait()
    await settle()

    assert pull.calls == [5, 15]
    assert events == [
        Completed(job_id="job-42", video_url="https://x/v.mp4", new_point_balance=90, points_deducted=10)
    ]
    assert sub.attempts == 2
    assert not notifier.is_active("job-42")


@pytest.mark.anyio
async def test_push_stream_closing_cleanly_also_falls_back():
    clock = FakeClock()
    push = FakePushChannel([PushMessage(type="connected")])
    pull = FakePullChannel(clock, completed_status())
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()

    assert pull.calls == [5]
    assert len(events) == 1


@pytest.mark.anyio
async def test_poll_transport_errors_are_retried_with_backoff():
    clock = FakeClock()
    push = FakePushChannel([ChannelError("down")])
    pull = FakePullChannel(
        clock,
        httpx.ConnectTimeout("timed out"),
        ChannelError("status response is not JSON"),
        completed_status(),
    )
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()

    assert clock.sleeps == [5, 10, 15]
    assert len(events) == 1
    assert isinstance(events[0], Completed)


@pytest.mark.anyio
async def test_failed_status_from_poll_is_delivered_as_data():
    clock = FakeClock()
    push = FakePushChannel([ChannelError("down")])
    pull = FakePullChannel(clock, VideoStatus(status="failed", video_id="job-42", new_balance=100))
    notifier = make_notifier(push, pull, clock)
    events = []

    notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        while not events:
            await asyncio.sleep(0)

    assert len(events) == 1
    assert isinstance(events[0], Failed)
    assert events[0].new_point_balance == 100
    assert "No points were deducted" in events[0].message


@pytest.mark.anyio
async def test_first_terminal_event_wins_when_both_channels_race():
    clock = FakeClock()
    gate = asyncio.Event()
    # first connection fails, the reconnect is held until the poll is in flight
    push = FakePushChannel([ChannelError("down")], [gate, completed_message("job-42")])

    class RacingPull:
        calls = 0

        async def fetch(self, job_id, owner_user_id):
            self.calls += 1
            gate.set()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            return VideoStatus(status="failed", video_id=job_id, message="late failure")

    pull = RacingPull()
    notifier = make_notifier(push, pull, clock, reconnect_delay=3)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()
    await settle()

    assert push.connects == 2
    assert pull.calls == 1
    assert len(events) == 1
    assert isinstance(events[0], Completed)


@pytest.mark.anyio
async def test_cancel_during_poll_discards_late_response():
    clock = FakeClock()
    release = asyncio.Event()
    push = FakePushChannel([ChannelError("down")])

    class SlowPull:
        calls = 0

        async def fetch(self, job_id, owner_user_id):
            self.calls += 1
            await release.wait()
            return completed_status(job_id)

    pull = SlowPull()
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        while pull.calls == 0:
            await asyncio.sleep(0)
    assert sub.state == "polling"

    sub.cancel()
    assert sub.state == "done"
    release.set()
    await settle()

    assert events == []
    assert pull.calls == 1
    assert not notifier.is_active("job-42")


@pytest.mark.anyio
async def test_calling_the_handle_cancels_while_listening():
    clock = FakeClock()
    push = FakePushChannel()  # stays open, never says anything
    pull = FakePullChannel(clock, completed_status())
    notifier = make_notifier(push, pull, clock)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    await settle()
    assert sub.state == "listening"

    sub()
    await settle()

    assert sub.state == "done"
    assert events == []
    assert pull.calls == []


@pytest.mark.anyio
async def test_give_up_policy_delivers_expired():
    clock = FakeClock()
    push = FakePushChannel([ChannelError("down")])
    pull = FakePullChannel(clock, pending())
    notifier = make_notifier(push, pull, clock, max_attempts=3)
    events = []

    sub = notifier.subscribe("job-42", 7, events.append)
    with anyio.fail_after(5):
        await sub.wait()

    assert events == [Expired(job_id="job-42", attempts=3, waited=30)]
    assert len(pull.calls) == 3


@pytest.mark.anyio
async def test_subscribe_rejects_misuse():
    clock = FakeClock()
    notifier = make_notifier(FakePushChannel(), FakePullChannel(clock), clock)

    with pytest.raises(ValueError):
        notifier.subscribe("", 7, lambda event: None)
    with pytest.raises(ValueError):
        notifier.subscribe("   ", 7, lambda event: None)
    with pytest.raises(TypeError):
        notifier.subscribe("job-42", "7", lambda event: None)

    sub = notifier.subscribe("job-42", 7, lambda event: None)
    with pytest.raises(DuplicateSubscriptionError):
        notifier.subscribe("job-42", 7, lambda event: None)

    sub.cancel()
    again = notifier.subscribe("job-42", 7, lambda event: None)
    again.cancel()


@pytest.mark.anyio
async def test_wait_for_event_returns_the_terminal_event():
    clock = FakeClock()
    push = FakePushChannel([completed_message("job-42")])
    notifier = make_notifier(push, FakePullChannel(clock), clock)

    with anyio.fail_after(5):
        event = await notifier.wait_for_event("job-42", 7)

    assert isinstance(event, Completed)
    assert event.new_point_balance == 90
    assert not notifier.is_active("job-42")


@pytest.mark.anyio
async def test_callback_error_does_not_break_delivery_guard():
    clock = FakeClock()
    push = FakePushChannel([completed_message("job-42")])
    notifier = make_notifier(push, FakePullChannel(clock), clock)
    calls = []

    def on_event(event):
        calls.append(event)
        raise RuntimeError("ui blew up")

    sub = notifier.subscribe("job-42", 7, on_event)
    with anyio.fail_after(5):
        await sub.wait()
    await settle()

    assert len(calls) == 1
    assert sub.state == "done"

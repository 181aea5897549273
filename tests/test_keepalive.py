import asyncio

from rtclink.signaling.keepalive import KeepaliveScheduler
from rtclink.signaling.session import DEFAULT_KEEPALIVE_INTERVAL_MS


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


def test_ticks_stop_at_budget() -> None:
    emitted: list[int] = []
    sleep = RecordingSleep()

    async def scenario() -> KeepaliveScheduler:
        scheduler = KeepaliveScheduler("session-1", lambda: True, emitted.append, interval_ms=2500, sleep=sleep)
        scheduler.start()
        await scheduler.wait()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert emitted == list(range(1, 11))
    assert sleep.calls == [2.5] * 9
    assert scheduler.ticks == 10
    assert not scheduler.running


def test_custom_budget() -> None:
    emitted: list[int] = []

    async def scenario() -> None:
        scheduler = KeepaliveScheduler("s", lambda: True, emitted.append, max_ticks=3, sleep=RecordingSleep())
        scheduler.start()
        await scheduler.wait()

    asyncio.run(scenario())

    assert emitted == [1, 2, 3]


def test_stops_when_probe_fails() -> None:
    state = {"connected": True}
    emitted: list[int] = []

    def emit(sequence: int) -> None:
        emitted.append(sequence)
        if sequence == 3:
            state["connected"] = False

    async def scenario() -> int:
        scheduler = KeepaliveScheduler("s", lambda: state["connected"], emit, sleep=RecordingSleep())
        scheduler.start()
        await scheduler.wait()
        return scheduler.ticks

    assert asyncio.run(scenario()) == 3
    assert emitted == [1, 2, 3]


def test_start_twice_is_a_no_op() -> None:
    async def scenario() -> bool:
        scheduler = KeepaliveScheduler("s", lambda: True, lambda seq: None, sleep=RecordingSleep())
        first = scheduler.start()
        second = scheduler.start()
        await scheduler.wait()
        return first is second

    assert asyncio.run(scenario())


def test_stop_cancels_pending_tick() -> None:
    emitted: list[int] = []

    async def never(delay: float) -> None:
        await asyncio.Event().wait()

    async def scenario() -> KeepaliveScheduler:
        scheduler = KeepaliveScheduler("s", lambda: True, emitted.append, sleep=never)
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert emitted == [1]
    assert scheduler.ticks == 1
    assert not scheduler.running


def test_emit_failure_does_not_kill_the_loop() -> None:
    emitted: list[int] = []

    def emit(sequence: int) -> None:
        if sequence == 2:
            raise RuntimeError("broker hiccup")
        emitted.append(sequence)

    async def scenario() -> int:
        scheduler = KeepaliveScheduler("s", lambda: True, emit, sleep=RecordingSleep())
        scheduler.start()
        await scheduler.wait()
        return scheduler.ticks

    assert asyncio.run(scenario()) == 10
    assert 2 not in emitted
    assert len(emitted) == 9


def test_invalid_interval_uses_default() -> None:
    scheduler = KeepaliveScheduler("s", lambda: True, lambda seq: None, interval_ms=0)

    assert scheduler.interval_ms == DEFAULT_KEEPALIVE_INTERVAL_MS

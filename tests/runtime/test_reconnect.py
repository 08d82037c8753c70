import asyncio
from typing import List, Tuple

from linkterm.runtime.reconnect import ReconnectSupervisor


class FakeClock:
    def __init__(self) -> None:
        self.current = 0.0
        self._waiters: List[Tuple[float, asyncio.Future[object]]] = []

    async def sleep(self, delay: float) -> object:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[object] = loop.create_future()
        self._waiters.append((self.current + delay, future))
        try:
            return await future
        finally:
            self._waiters = [(t, f) for (t, f) in self._waiters if f is not future]

    def advance(self, delta: float) -> None:
        self.current += delta
        ready = [future for target, future in self._waiters if target <= self.current]
        self._waiters = [(t, f) for (t, f) in self._waiters if t > self.current]
        for future in ready:
            if not future.done():
                future.set_result(None)


def test_one_attempt_fires_after_the_delay() -> None:
    async def _exercise() -> None:
        clock = FakeClock()
        calls: list[float] = []

        async def _reconnect() -> None:
            calls.append(clock.current)

        supervisor = ReconnectSupervisor(_reconnect, delay=1.0, sleep=clock.sleep)
        supervisor.arm()
        assert supervisor.schedule()
        assert not supervisor.schedule()
        await asyncio.sleep(0)

        clock.advance(0.5)
        await asyncio.sleep(0)
        assert calls == []

        clock.advance(0.5)
        await asyncio.sleep(0)
        assert calls == [1.0]
        assert supervisor.attempts == 1
        assert not supervisor.pending

    asyncio.run(_exercise())


def test_disarm_cancels_pending_attempt() -> None:
    async def _exercise() -> None:
        clock = FakeClock()
        calls: list[int] = []

        async def _reconnect() -> None:
            calls.append(1)

        supervisor = ReconnectSupervisor(_reconnect, sleep=clock.sleep)
        supervisor.arm()
        supervisor.schedule()
        await asyncio.sleep(0)

        supervisor.disarm()
        clock.advance(10.0)
        await asyncio.sleep(0)

        assert calls == []
        assert supervisor.attempts == 0
        assert not supervisor.should_reconnect
        assert not supervisor.schedule()

    asyncio.run(_exercise())


def test_unarmed_supervisor_never_schedules() -> None:
    async def _exercise() -> None:
        async def _reconnect() -> None:
            raise AssertionError("should not reconnect")

        supervisor = ReconnectSupervisor(_reconnect)
        assert not supervisor.schedule()
        assert not supervisor.pending

    asyncio.run(_exercise())


def test_failed_attempt_can_schedule_the_next_one() -> None:
    async def _exercise() -> None:
        clock = FakeClock()
        supervisor: ReconnectSupervisor

        async def _reconnect() -> None:
            if supervisor.attempts < 3:
                supervisor.schedule()

        supervisor = ReconnectSupervisor(_reconnect, delay=1.0, sleep=clock.sleep)
        supervisor.arm()
        supervisor.schedule()
        for _ in range(4):
            await asyncio.sleep(0)
            clock.advance(1.0)
            await asyncio.sleep(0)

        assert supervisor.attempts == 3
        assert not supervisor.pending

    asyncio.run(_exercise())


def test_disarm_cancels_attempt_in_flight() -> None:
    async def _exercise() -> None:
        clock = FakeClock()
        gate = asyncio.Event()
        finished: list[int] = []

        async def _reconnect() -> None:
            await gate.wait()
            finished.append(1)

        supervisor = ReconnectSupervisor(_reconnect, delay=1.0, sleep=clock.sleep)
        supervisor.arm()
        supervisor.schedule()
        await asyncio.sleep(0)
        clock.advance(1.0)
        for _ in range(3):
            await asyncio.sleep(0)
        assert supervisor.attempts == 1
        assert supervisor.pending

        supervisor.disarm()
        gate.set()
        for _ in range(3):
            await asyncio.sleep(0)

        assert finished == []
        assert not supervisor.pending

    asyncio.run(_exercise())

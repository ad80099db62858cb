import asyncio

import pytest

from doom_agent.messages import ConsoleBuffer
from doom_agent.scheduler import CONSOLE_BUFFER_CAPACITY, ConsoleOutputScheduler, new_output_queue

from fakes import wait_until


class Recorder:
    def __init__(self, fail_times: int = 0) -> None:
        self.sent = []
        self.fail_times = fail_times

    async def __call__(self, message):
        if self.fail_times:
            self.fail_times -= 1
            raise OSError("controller went away")
        self.sent.append(message)


def test_output_queue_is_bounded():
    assert new_output_queue().maxsize == CONSOLE_BUFFER_CAPACITY == 1000


@pytest.mark.asyncio
async def test_tick_sends_queued_lines_in_order():
    queue = new_output_queue()
    send = Recorder()
    scheduler = ConsoleOutputScheduler(queue, send)
    for line in ["one", "two", "three"]:
        queue.put_nowait(line)

    message = await scheduler.tick()

    assert message == ConsoleBuffer(lines=["one", "two", "three"])
    assert send.sent == [message]
    assert queue.empty()


@pytest.mark.asyncio
async def test_empty_tick_sends_nothing():
    send = Recorder()
    scheduler = ConsoleOutputScheduler(new_output_queue(), send)
    assert await scheduler.tick() is None
    assert send.sent == []


@pytest.mark.asyncio
async def test_batch_limit_splits_backlog():
    queue = new_output_queue()
    send = Recorder()
    scheduler = ConsoleOutputScheduler(queue, send, batch_limit=2)
    for i in range(5):
        queue.put_nowait(str(i))

    await scheduler.tick()
    await scheduler.tick()
    await scheduler.tick()

    assert [m.lines for m in send.sent] == [["0", "1"], ["2", "3"], ["4"]]


@pytest.mark.asyncio
async def test_lines_produced_during_a_period_arrive_in_one_batch():
    queue = new_output_queue()
    send = Recorder()
    scheduler = ConsoleOutputScheduler(queue, send, period=0.2)
    scheduler.start()
    try:
        await wait_until(lambda: scheduler.running)
        for line in ["a", "b", "c"]:
            queue.put_nowait(line)
        await wait_until(lambda: send.sent)
        assert send.sent[0].lines == ["a", "b", "c"]
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_failed_send_does_not_end_the_schedule():
    queue = new_output_queue()
    send = Recorder(fail_times=1)
    scheduler = ConsoleOutputScheduler(queue, send, period=0.01)
    scheduler.start()
    try:
        queue.put_nowait("lost")
        await wait_until(lambda: send.fail_times == 0)
        queue.put_nowait("kept")
        await wait_until(lambda: send.sent)
        assert send.sent == [ConsoleBuffer(lines=["kept"])]
        assert scheduler.running
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    scheduler = ConsoleOutputScheduler(new_output_queue(), Recorder(), period=0.01)
    await scheduler.stop()
    scheduler.start()
    await asyncio.sleep(0.02)
    await scheduler.stop()
    await scheduler.stop()
    assert not scheduler.running

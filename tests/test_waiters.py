import asyncio

import pytest

from doom_agent.errors import WaiterProtocolError
from doom_agent.waiters import ConsoleResultWaiter, ServerInitWaiter


def test_init_waiter_sends_echo_once_then_completes():
    written = []
    waiter = ServerInitWaiter(written.append)

    waiter.feed("DoomConsoleReady")  # before the server is up: ignored
    assert written == [] and not waiter.done

    waiter.feed("W_Init: Init WADfiles.")
    waiter.feed(">> DoomServerReady <<")
    waiter.feed("DoomServerReady")
    assert written == ["echo DoomConsoleReady"]
    assert not waiter.done

    waiter.feed("DoomConsoleReady")
    assert waiter.done
    assert waiter.result() is None


def test_console_waiter_collects_until_terminator():
    waiter = ConsoleResultWaiter()
    for line in ["players: 2", "map: MAP01", "DoomConsoleResultEnd"]:
        waiter.feed(line)
    assert waiter.done
    assert waiter.result() == ["players: 2", "map: MAP01"]


def test_console_waiter_fails_loudly_after_completion():
    waiter = ConsoleResultWaiter()
    waiter.feed("DoomConsoleResultEnd")
    with pytest.raises(WaiterProtocolError):
        waiter.feed("late line")
    assert waiter.result() == []


@pytest.mark.asyncio
async def test_wait_returns_result_once_fed():
    waiter = ConsoleResultWaiter()

    async def feed_later():
        await asyncio.sleep(0.01)
        waiter.feed("hello")
        waiter.feed("DoomConsoleResultEnd")

    task = asyncio.create_task(feed_later())
    assert await waiter.wait(1.0) == ["hello"]
    await task


@pytest.mark.asyncio
async def test_wait_on_completed_waiter_ignores_spent_timeout():
    waiter = ConsoleResultWaiter()
    waiter.feed("ok")
    waiter.feed("DoomConsoleResultEnd")
    assert await waiter.wait(0.0) == ["ok"]


@pytest.mark.asyncio
async def test_wait_times_out():
    waiter = ConsoleResultWaiter()
    waiter.feed("partial")
    with pytest.raises(TimeoutError):
        await waiter.wait(0.05)

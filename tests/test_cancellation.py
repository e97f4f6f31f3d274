import asyncio

import pytest

from build_healer.cancellation import CancellationToken
from build_healer.errors import CycleCancelledError


@pytest.mark.asyncio
async def test_sleep_completes_without_cancel():
    token = CancellationToken()
    await token.sleep(0.01)
    await token.sleep(0)
    assert token.cancelled is False


@pytest.mark.asyncio
async def test_cancel_wakes_sleep_early():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel, "operator")

    with pytest.raises(CycleCancelledError, match="operator"):
        await asyncio.wait_for(token.sleep(30), timeout=5)


@pytest.mark.asyncio
async def test_guard_returns_result():
    async def work():
        return 42

    assert await CancellationToken().guard(work()) == 42


@pytest.mark.asyncio
async def test_guard_abandons_work_on_cancel():
    token = CancellationToken()
    finished = []

    async def slow():
        await asyncio.sleep(30)
        finished.append(True)

    asyncio.get_running_loop().call_later(0.01, token.cancel)
    with pytest.raises(CycleCancelledError):
        await asyncio.wait_for(token.guard(slow()), timeout=5)
    assert finished == []


@pytest.mark.asyncio
async def test_guard_after_cancel_does_not_start_work():
    token = CancellationToken()
    token.cancel("stop")
    started = []

    async def work():
        started.append(True)

    with pytest.raises(CycleCancelledError):
        await token.guard(work())
    assert started == []

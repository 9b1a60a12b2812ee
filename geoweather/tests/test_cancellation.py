from __future__ import annotations

# ruff: noqa: S101
import asyncio

import pytest

from geoweather.cancellation import CancelToken
from geoweather.errors import OperationCancelled


def test_run_returns_result_when_not_cancelled() -> None:
    async def scenario() -> int:
        async def work() -> int:
            await asyncio.sleep(0)
            return 7

        return await CancelToken().run(work())

    assert asyncio.run(scenario()) == 7


def test_run_cancels_pending_work() -> None:
    finished: list[bool] = []
    cleaned: list[bool] = []

    async def work() -> None:
        try:
            await asyncio.sleep(10)
            finished.append(True)
        finally:
            cleaned.append(True)

    async def scenario() -> None:
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await token.run(work())

    with pytest.raises(OperationCancelled):
        asyncio.run(scenario())
    assert finished == []
    assert cleaned == [True]


def test_run_propagates_work_errors() -> None:
    async def work() -> None:
        raise ValueError("boom")

    async def scenario() -> None:
        await CancelToken().run(work())

    with pytest.raises(ValueError, match="boom"):
        asyncio.run(scenario())


def test_cancelled_token_refuses_new_work() -> None:
    started: list[bool] = []

    async def work() -> None:
        started.append(True)

    async def scenario() -> None:
        token = CancelToken()
        token.cancel()
        assert token.cancelled
        await token.run(work())

    with pytest.raises(OperationCancelled):
        asyncio.run(scenario())
    assert started == []


def test_raise_if_cancelled() -> None:
    token = CancelToken()
    token.raise_if_cancelled()
    token.cancel()

    with pytest.raises(OperationCancelled):
        token.raise_if_cancelled()


def test_outer_cancellation_waits_for_work_cleanup() -> None:
    cleaned: list[bool] = []

    async def work() -> None:
        try:
            await asyncio.sleep(10)
        finally:
            await asyncio.sleep(0)
            cleaned.append(True)

    async def scenario() -> list[bool]:
        task = asyncio.create_task(CancelToken().run(work()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return list(cleaned)

    assert asyncio.run(scenario()) == [True]

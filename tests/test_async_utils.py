import asyncio

import anyio
import pytest

from app.core.async_utils import run_async


async def _sample() -> str:
    await anyio.sleep(0)
    return "ok"


async def _slow() -> str:
    await anyio.sleep(5)
    return "late"


def test_run_async_without_loop():
    assert run_async(_sample()) == "ok"


def test_run_async_timeout():
    with pytest.raises(TimeoutError):
        run_async(_slow(), timeout=0.01)


@pytest.mark.asyncio
async def test_run_async_from_worker_thread_uses_running_loop(monkeypatch):
    def _fail_run(*_args, **_kwargs):
        pytest.fail("asyncio.run should not be used in request threads")

    monkeypatch.setattr(asyncio, "run", _fail_run)

    result = await anyio.to_thread.run_sync(lambda: run_async(_sample()))
    assert result == "ok"


@pytest.mark.asyncio
async def test_run_async_refuses_inside_event_loop():
    with pytest.raises(RuntimeError):
        run_async(_sample())

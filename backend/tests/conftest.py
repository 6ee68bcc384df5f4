import asyncio
from collections.abc import Generator

import pytest
from sqlalchemy.ext import asyncio as sa_asyncio

from coupon_engine.core import metrics


# Every engine a test creates is disposed after it, so aiosqlite worker threads do not outlive the test.
_ENGINES: list[sa_asyncio.AsyncEngine] = []
_create_async_engine = sa_asyncio.create_async_engine


def _recording_create_async_engine(*args, **kwargs):  # type: ignore[no-untyped-def]
    created = _create_async_engine(*args, **kwargs)
    _ENGINES.append(created)
    return created


sa_asyncio.create_async_engine = _recording_create_async_engine  # type: ignore[assignment]


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _dispose_test_engines() -> Generator[None, None, None]:
    mark = len(_ENGINES)
    yield
    created, _ENGINES[mark:] = _ENGINES[mark:], []
    if not created:
        return

    async def _dispose() -> None:
        for engine in created:
            try:
                await engine.dispose()
            except Exception:
                continue

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(_dispose())
    finally:
        loop.close()


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    # Metric counters are process-global and would leak across tests.
    metrics.reset()
    yield
    metrics.reset()

from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator

import pytest

from binder_backend.db import dispose_engine_cache, get_engine


@pytest.fixture
def anyio_backend() -> str:
    # The sync service is built on asyncio primitives (tasks, events, shield).
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_cache_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Dispose the cached AsyncEngine (aiosqlite worker thread) while the
    # per-test event loop is still alive.
    _ = anyio_backend
    yield

    if get_engine.cache_info().currsize:
        result = get_engine().dispose()
        if inspect.isawaitable(result):
            await result

    dispose_engine_cache()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    _ = session, exitstatus
    dispose_engine_cache()

"""Tests for the thread-offloading helpers used by the MCP handlers."""

import asyncio
import threading
import time
from unittest.mock import patch

import pytest

import padsync.core.async_utils as async_utils
from padsync.core.async_utils import (
    init_semaphore,
    run_sync,
    run_sync_limited,
)


@pytest.fixture
def restore_semaphore():
    original = async_utils._semaphore
    yield
    async_utils._semaphore = original


class TestRunSync:
    async def test_runs_off_the_event_loop_thread(self):
        loop_thread = threading.get_ident()
        worker_thread = await run_sync(threading.get_ident)
        assert worker_thread != loop_thread

    async def test_forwards_args_and_kwargs(self):
        def _pad_key(page, pad, *, sep):
            return f"{page}{sep}{pad}"

        assert await run_sync(_pad_key, 2, 7, sep="-") == "2-7"

    async def test_exception_propagates(self):
        def _boom():
            raise ValueError("bad profile")

        with pytest.raises(ValueError, match="bad profile"):
            await run_sync(_boom)


class TestRunSyncLimited:
    async def test_without_semaphore(self):
        with patch.object(async_utils, "_semaphore", None):
            assert await run_sync_limited(sum, [1, 2, 3]) == 6

    async def test_concurrency_bounded(self, restore_semaphore):
        init_semaphore(2)
        active = 0
        peak = 0
        lock = threading.Lock()

        def _work():
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1

        await asyncio.gather(*(run_sync_limited(_work) for _ in range(6)))

        assert peak == 2

    async def test_init_semaphore_replaces_previous(self, restore_semaphore):
        init_semaphore(3)
        first = async_utils._semaphore
        init_semaphore(1)
        assert async_utils._semaphore is not first

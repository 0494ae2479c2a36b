"""Tests for the bounded-parallelism runner."""
from __future__ import annotations

import asyncio

import pytest

from content_engine.concurrency import process_concurrently


class TestProcessConcurrently:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_processes_every_item(self):
        seen = []

        async def _proc(item):
            seen.append(item)

        await process_concurrently(range(10), _proc, concurrency=3)
        assert sorted(seen) == list(range(10))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_bound(self):
        in_flight = 0
        peak = 0

        async def _proc(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            in_flight -= 1

        await process_concurrently(range(20), _proc, concurrency=4)
        assert peak == 4

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_progress_fires_once_per_item(self):
        progress = []

        async def _proc(item):
            await asyncio.sleep(0)

        await process_concurrently(range(5), _proc, concurrency=2, on_progress=lambda c, t: progress.append((c, t)))
        assert progress == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_skips_queued_items(self):
        started = []
        stop = False

        async def _proc(item):
            nonlocal stop
            started.append(item)
            if len(started) == 3:
                stop = True
            await asyncio.sleep(0)

        await process_concurrently(range(50), _proc, concurrency=2, should_stop=lambda: stop)
        # Items already pulled finish; nothing else starts
        assert len(started) <= 4
        assert started[:3] == [0, 1, 2]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_input(self):
        calls = []

        async def _proc(item):
            calls.append(item)

        await process_concurrently([], _proc, concurrency=3)
        assert calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_processor_errors_propagate(self):
        async def _proc(item):
            raise RuntimeError("bad item")

        with pytest.raises(RuntimeError, match="bad item"):
            await process_concurrently([1], _proc)

"""Batched account state fetching."""

import pytest

from liqtier.config import BatchProfile, Config
from liqtier.core.batch import BatchFetchExecutor

from conftest import FakeSource, make_position


def _source(n):
    source = FakeSource()
    for i in range(n):
        source.set_positions(f"0x{i}", make_position(f"0x{i}", "BTC", 1.0, 100.0, 80.0))
    return source


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class TestBatchFetchExecutor:

    @pytest.mark.asyncio
    async def test_fetches_all(self):
        source = _source(7)
        sleep = RecordingSleep()
        executor = BatchFetchExecutor(source, profile=BatchProfile(3, 0.1), sleep=sleep)

        result = await executor.fetch([f"0x{i}" for i in range(7)])

        assert set(result) == {f"0x{i}" for i in range(7)}
        # 3 batches, delay between them only
        assert sleep.calls == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_failures_do_not_block_others(self):
        source = _source(5)
        source.failing.add("0x1")
        del source.accounts["0x3"]
        executor = BatchFetchExecutor(source, profile=BatchProfile(2, 0), sleep=RecordingSleep())

        addresses = [f"0x{i}" for i in range(5)]
        result = await executor.fetch(addresses)

        assert set(result) == {"0x0", "0x2", "0x4"}
        assert len(result) <= len(addresses)
        assert sorted(executor.last_failed) == ["0x1", "0x3"]

    @pytest.mark.asyncio
    async def test_duplicates_fetched_once(self):
        source = _source(2)
        executor = BatchFetchExecutor(source, profile=BatchProfile(10, 0))

        await executor.fetch(["0x0", "0x1", "0x0"])

        assert sorted(source.account_calls) == ["0x0", "0x1"]

    @pytest.mark.asyncio
    async def test_empty_input(self):
        source = _source(0)
        executor = BatchFetchExecutor(source)
        assert await executor.fetch([]) == {}
        assert source.account_calls == []

    @pytest.mark.asyncio
    async def test_progress_callback(self):
        source = _source(5)
        progress = []
        executor = BatchFetchExecutor(source, profile=BatchProfile(2, 0))

        await executor.fetch([f"0x{i}" for i in range(5)], progress_callback=lambda d, t: progress.append((d, t)))

        assert progress == [(2, 5), (4, 5), (5, 5)]

    def test_profile_follows_source_latency(self):
        cfg = Config()
        assert BatchFetchExecutor(FakeSource(low_latency=True), cfg=cfg).profile == cfg.local_batch
        assert BatchFetchExecutor(FakeSource(), cfg=cfg).profile == cfg.remote_batch

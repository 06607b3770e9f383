"""Tests de la escalera de lotes y del retry con backoff."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sense_ingest.audit.batching import chunk_list, progressive_sizes, write_progressively
from sense_ingest.audit.retry import RetryConfig, is_retryable_error, write_with_retry
from sense_ingest.errors import FlushError


# =============================================================================
# BATCHING
# =============================================================================

class TestProgressiveSizes:

    def test_default_ladder(self):
        assert progressive_sizes(1000) == [1000, 500, 250, 100, 10, 1]

    def test_filtered_and_deduplicated(self):
        assert progressive_sizes(100) == [100, 10, 1]
        assert progressive_sizes(300) == [300, 250, 100, 10, 1]
        assert progressive_sizes(1) == [1]

    def test_chunk_list(self):
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk_list([], 10) == []


class TestWriteProgressively:

    @pytest.mark.asyncio
    async def test_success_first_size(self):
        writer = AsyncMock()

        await write_progressively(list(range(5)), writer, max_batch_size=10, context="t")

        writer.assert_awaited_once()
        assert writer.await_args.args[0] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_raises_flush_error_when_all_sizes_fail(self):
        writer = AsyncMock(side_effect=RuntimeError("down"))

        with pytest.raises(FlushError):
            await write_progressively([1, 2], writer, max_batch_size=10, context="t")

        # 1 chunk a 10, 2 chunks a 1
        assert writer.await_count == 3

    @pytest.mark.asyncio
    async def test_whole_set_retried_on_partial_failure(self):
        seen = []

        async def writer(chunk, label):
            seen.append(list(chunk))
            if chunk == [2, 3]:
                raise RuntimeError("bad chunk")

        await write_progressively([0, 1, 2, 3], writer, max_batch_size=2, context="t")

        # El chunk [0, 1] se reescribe al bajar de tamaño
        assert seen == [[0, 1], [2, 3], [0], [1], [2], [3]]


# =============================================================================
# RETRY
# =============================================================================

class TestRetry:

    def test_delay_backoff_capped(self):
        config = RetryConfig(initial_delay=1.0, max_delay=3.0, backoff_multiplier=2.0)
        assert [config.calculate_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_retryable_classification(self):
        assert is_retryable_error(asyncio.TimeoutError())
        assert is_retryable_error(ConnectionRefusedError())
        assert is_retryable_error(RuntimeError("connect ECONNREFUSED 127.0.0.1:8086"))
        assert not is_retryable_error(ValueError("partial write: field type conflict"))

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        write = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), None])
        sleep = AsyncMock()

        await write_with_retry(write, "chunk 1/1", "v2", sleep=sleep)

        assert write.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        write = AsyncMock(side_effect=ValueError("bad request"))
        sleep = AsyncMock()

        with pytest.raises(ValueError):
            await write_with_retry(write, "ctx", "v1", sleep=sleep)

        assert write.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        write = AsyncMock(side_effect=TimeoutError("timed out"))
        sleep = AsyncMock()

        with pytest.raises(TimeoutError):
            await write_with_retry(write, "ctx", "v3", RetryConfig(max_retries=2), sleep=sleep)

        assert write.await_count == 3
        assert sleep.await_count == 2

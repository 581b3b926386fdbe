import pytest

from segflow.batching import chunked, process_in_batches, progress_percent


@pytest.mark.asyncio
async def test_yields_between_chunks_only():
    seen = []
    yields = []
    progress = []

    async def fake_yield():
        yields.append(len(seen))

    n = await process_in_batches(
        list(range(250)),
        seen.append,
        yield_control=fake_yield,
        on_progress=lambda pct, done, total: progress.append((pct, done, total)),
    )
    assert n == 250
    assert seen == list(range(250))
    assert yields == [100, 200]
    assert progress == [(40, 100, 250), (80, 200, 250), (100, 250, 250)]


@pytest.mark.asyncio
async def test_empty_input():
    calls = []
    assert await process_in_batches([], calls.append) == 0
    assert calls == []


@pytest.mark.asyncio
async def test_rejects_bad_batch_size():
    with pytest.raises(ValueError):
        await process_in_batches([1], lambda r: None, batch_size=0)


def test_chunked_and_progress():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert progress_percent(0, 0) == 100
    assert progress_percent(1, 3) == 33

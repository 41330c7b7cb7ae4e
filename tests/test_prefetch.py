from typing import List, Optional

import pytest

from posterwall.engine.prefetch import ImagePrefetcher


class CountingLoader:
    def __init__(self, content: Optional[bytes] = b'image', error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.urls: List[str] = []

    async def __call__(self, url: str) -> Optional[bytes]:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.content


@pytest.mark.asyncio
async def test_warm_requests_each_url_once(scheduler):
    loader = CountingLoader()
    prefetcher = ImagePrefetcher(loader, scheduler)

    assert prefetcher.warm('/proxy?path=a') is True
    assert prefetcher.warm('/proxy?path=a') is False
    assert prefetcher.warm_ahead(['/proxy?path=a', '/proxy?path=b', '', None]) == 1
    await scheduler.settle()

    assert loader.urls == ['/proxy?path=a', '/proxy?path=b']
    assert prefetcher.get('/proxy?path=a') == b'image'
    assert prefetcher.was_requested('/proxy?path=b')


class FlakyLoader(CountingLoader):
    """Fails (or answers empty) for the first calls, then serves bytes."""

    def __init__(self, failures: List[Optional[Exception]]):
        super().__init__()
        self.failures = list(failures)

    async def __call__(self, url: str) -> Optional[bytes]:
        self.urls.append(url)
        if self.failures:
            error = self.failures.pop(0)
            if error is not None:
                raise error
            return None
        return b'image'


@pytest.mark.asyncio
async def test_failed_or_empty_load_is_retried_on_next_warm(scheduler):
    loader = FlakyLoader([RuntimeError('boom'), None])
    prefetcher = ImagePrefetcher(loader, scheduler)

    assert prefetcher.warm('/proxy?path=a') is True
    await scheduler.settle()
    assert prefetcher.get('/proxy?path=a') is None
    assert not prefetcher.was_requested('/proxy?path=a')

    assert prefetcher.warm('/proxy?path=a') is True
    await scheduler.settle()
    assert prefetcher.get('/proxy?path=a') is None

    assert prefetcher.warm('/proxy?path=a') is True
    await scheduler.settle()
    assert prefetcher.get('/proxy?path=a') == b'image'
    assert prefetcher.warm('/proxy?path=a') is False
    assert loader.urls == ['/proxy?path=a'] * 3


@pytest.mark.asyncio
async def test_eviction_allows_warming_again(scheduler):
    loader = CountingLoader()
    prefetcher = ImagePrefetcher(loader, scheduler, max_entries=2)

    prefetcher.warm_ahead(['a', 'b', 'c'])
    await scheduler.settle()

    assert prefetcher.get('a') is None
    assert not prefetcher.was_requested('a')
    assert prefetcher.warm('a') is True
    await scheduler.settle()


def test_warm_ignores_empty_urls(scheduler):
    prefetcher = ImagePrefetcher(CountingLoader(), scheduler)
    assert prefetcher.warm('') is False
    assert prefetcher.get(None) is None

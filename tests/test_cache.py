"""Tests for the onebox cache."""

import asyncio

import pytest

from postbake.services.cache import OneboxCache


@pytest.fixture
def cache():
    """Create a cache instance with short TTL for testing."""
    return OneboxCache(ttl_seconds=1)


@pytest.mark.asyncio
async def test_cache_set_get(cache):
    """Test basic cache set and get."""
    await cache.set("https://news.test/a", "<div>a</div>")
    assert await cache.get("https://news.test/a") == "<div>a</div>"


@pytest.mark.asyncio
async def test_cache_get_missing(cache):
    """Test getting a missing URL."""
    assert await cache.get("https://news.test/missing") is None


@pytest.mark.asyncio
async def test_cache_invalidate(cache):
    """Test dropping a cached preview."""
    await cache.set("https://news.test/a", "<div>a</div>")

    assert await cache.invalidate("https://news.test/a") is True
    assert await cache.get("https://news.test/a") is None
    assert await cache.invalidate("https://news.test/a") is False


@pytest.mark.asyncio
async def test_cache_clear(cache):
    """Test clearing the cache."""
    await cache.set("https://news.test/a", "a")
    await cache.set("https://news.test/b", "b")

    assert await cache.clear() == 2
    assert cache.size == 0


@pytest.mark.asyncio
async def test_cache_expiration():
    """Test that previews expire."""
    cache = OneboxCache(ttl_seconds=0)
    await cache.set("https://news.test/a", "a")

    # Small delay to ensure expiration
    await asyncio.sleep(0.1)

    assert await cache.get("https://news.test/a") is None
    assert cache.size == 0

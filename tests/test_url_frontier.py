# File: tests/test_url_frontier.py
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from searchcrawler.crawler.url_frontier import (
    RedisLinkQueue, QueueError, AlreadyReservedError, NotDelayedError,
)


@pytest.fixture()
def redis_client():
    client = AsyncMock()
    members = set()

    async def sadd(key, link):
        added = link not in members
        members.add(link)
        return int(added)

    async def scard(key):
        return len(members)

    client.sadd.side_effect = sadd
    client.scard.side_effect = scard
    return client


@pytest.fixture()
def queue(redis_client) -> RedisLinkQueue:
    return RedisLinkQueue(redis_client, prefix="t:")


@pytest.mark.asyncio
async def test_add_link_is_idempotent(queue, redis_client):
    await queue.add_link("http://example.com/")
    once = await queue.count_links()
    await queue.add_link("http://example.com/")

    assert await queue.count_links() == once == 1
    redis_client.sadd.assert_awaited_with("t:links", "http://example.com/")


@pytest.mark.asyncio
async def test_queue_link(queue, redis_client):
    redis_client.spop.return_value = "http://example.com/"
    redis_client.set.return_value = True

    assert await queue.queue_link(600) == "http://example.com/"
    redis_client.spop.assert_awaited_once_with("t:links")
    redis_client.set.assert_awaited_once_with("t:q:http://example.com/", "", ex=600, nx=True)


@pytest.mark.asyncio
async def test_queue_link_empty(queue, redis_client):
    redis_client.spop.return_value = None

    assert await queue.queue_link(600) == ""
    redis_client.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_queue_link_already_queued(queue, redis_client):
    redis_client.spop.return_value = "http://example.com/"
    redis_client.set.return_value = None

    assert await queue.queue_link(600) == ""


@pytest.mark.asyncio
async def test_queue_link_store_failure(queue, redis_client):
    redis_client.spop.side_effect = RedisError("connection refused")

    with pytest.raises(QueueError):
        await queue.queue_link(600)


@pytest.mark.asyncio
async def test_reserve_host_twice(queue, redis_client):
    redis_client.set.side_effect = [True, None]

    await queue.reserve_host("http://example.com", 600)
    with pytest.raises(AlreadyReservedError):
        await queue.reserve_host("http://example.com", 600)

    redis_client.set.assert_awaited_with("t:h:http://example.com", "", ex=600, nx=True)


@pytest.mark.asyncio
async def test_delay_host_releases_on_zero(queue, redis_client):
    redis_client.delete.return_value = 1

    await queue.delay_host("http://example.com", 0)
    redis_client.delete.assert_awaited_once_with("t:h:http://example.com")
    redis_client.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_delay_host_release_of_missing_lock(queue, redis_client):
    redis_client.delete.return_value = 0

    with pytest.raises(NotDelayedError):
        await queue.delay_host("http://example.com", 0)


@pytest.mark.asyncio
async def test_delay_host_extends_lock(queue, redis_client):
    redis_client.set.return_value = True

    await queue.delay_host("http://example.com", 600)
    redis_client.set.assert_awaited_once_with("t:h:http://example.com", "", ex=600, xx=True)


@pytest.mark.asyncio
async def test_delay_host_missing_lock(queue, redis_client):
    redis_client.set.return_value = None

    with pytest.raises(NotDelayedError):
        await queue.delay_host("http://example.com", 5)


@pytest.mark.asyncio
async def test_count_links_failure(queue, redis_client):
    redis_client.scard.side_effect = RedisError("timeout")

    with pytest.raises(QueueError):
        await queue.count_links()

"""
Link queue shared by all crawler workers.

Discovered links live in one set. Popping a link installs a "queued" marker
so it cannot be handed out again while the backend still considers it
uncrawled, and each host carries a reservation lock that doubles as its
courtesy delay.
"""

import logging
from abc import ABC, abstractmethod

import redis.asyncio as redis
from redis.exceptions import RedisError


class QueueError(Exception):
    """The queue store failed."""


class AlreadyReservedError(QueueError):
    """Another worker holds the host."""


class NotDelayedError(QueueError):
    """The host lock was missing when it was re-armed or released."""


class LinkQueue(ABC):
    """Operations the crawler needs from a link queue."""

    @abstractmethod
    async def count_links(self) -> int:
        """Number of links waiting in the discovery set."""

    @abstractmethod
    async def add_link(self, link: str):
        """Add a link; adding a link twice is a no-op."""

    @abstractmethod
    async def queue_link(self, ttl: int) -> str:
        """
        Pop a link and mark it queued for ttl seconds.

        Returns "" if the set is empty or the link was already queued.
        """

    @abstractmethod
    async def reserve_host(self, host: str, ttl: int):
        """Reserve a host for ttl seconds or raise AlreadyReservedError."""

    @abstractmethod
    async def delay_host(self, host: str, ttl: int):
        """
        Re-arm a held reservation for ttl seconds, or release it when ttl is 0.

        Raises NotDelayedError if the reservation no longer exists.
        """


class RedisLinkQueue(LinkQueue):
    """
    LinkQueue backed by Redis.

    The client must be created with decode_responses=True.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = 'searchcrawler:'):
        self.redis_client = redis_client
        self.logger = logging.getLogger(__name__)

        # Redis keys
        self.prefix = prefix
        self.links_key = f"{prefix}links"
        self.queue_prefix = f"{prefix}q:"
        self.host_prefix = f"{prefix}h:"

    async def count_links(self) -> int:
        try:
            return int(await self.redis_client.scard(self.links_key))
        except RedisError as e:
            raise QueueError(f"cannot count links: {e}") from e

    async def add_link(self, link: str):
        try:
            await self.redis_client.sadd(self.links_key, link)
        except RedisError as e:
            raise QueueError(f"cannot add link {link!r}: {e}") from e

    async def queue_link(self, ttl: int) -> str:
        try:
            link = await self.redis_client.spop(self.links_key)
            if not link:
                return ""

            queued = await self.redis_client.set(
                f"{self.queue_prefix}{link}", "", ex=seconds(ttl), nx=True)
        except RedisError as e:
            raise QueueError(f"cannot queue a link: {e}") from e

        if not queued:
            self.logger.debug(f"Link already queued: {link}")
            return ""
        return link

    async def reserve_host(self, host: str, ttl: int):
        try:
            reserved = await self.redis_client.set(
                f"{self.host_prefix}{host}", "", ex=seconds(ttl), nx=True)
        except RedisError as e:
            raise QueueError(f"cannot reserve host {host!r}: {e}") from e

        if not reserved:
            raise AlreadyReservedError(f"host already reserved: {host}")

    async def delay_host(self, host: str, ttl: int):
        key = f"{self.host_prefix}{host}"
        s = seconds(ttl)

        try:
            if s == 0:
                deleted = await self.redis_client.delete(key)
                if not deleted:
                    raise NotDelayedError(f"host not delayed: {host}")
                return

            delayed = await self.redis_client.set(key, "", ex=s, xx=True)
        except RedisError as e:
            raise QueueError(f"cannot delay host {host!r}: {e}") from e

        if not delayed:
            raise NotDelayedError(f"host not delayed: {host}")


def seconds(ttl: float) -> int:
    """Whole seconds of a TTL."""
    return int(ttl)

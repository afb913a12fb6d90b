"""
robots.txt records, their cache and the rules they carry.

Records are kept per scheme+host. Like Googlebot we trust a robots.txt for
up to a day, and for only an hour when the server answered with a 5xx.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.robotparser import RobotFileParser

import redis.asyncio as redis
from redis.exceptions import RedisError

DATE_FORMAT = '%Y%m%d%H%M'
ROBOTS_PATH = '/robots.txt'


class RobotsCacheError(Exception):
    """The robots.txt store could not be reached."""


class RobotsError(Exception):
    """A record cannot be turned into crawl rules."""


def now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Robots:
    """A single robots.txt response."""
    scheme_host: str
    status_code: int = 0
    body: str = ''
    expires: str = ''
    cached: bool = False

    def set_expires(self) -> 'Robots':
        """Mark when the record should be refetched, relative to the fetch time."""
        ttl = timedelta(hours=24)
        if 500 <= self.status_code < 600:
            ttl = timedelta(hours=1)
        self.expires = (now() + ttl).strftime(DATE_FORMAT)
        return self

    def expired(self) -> bool:
        """True if the record must be refetched; an unreadable expiry counts as expired."""
        try:
            expires = datetime.strptime(self.expires, DATE_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            logging.getLogger(__name__).warning(
                f"Unparsable robots.txt expiry {self.expires!r} for {self.scheme_host}")
            return True
        return now() >= expires

    def to_mapping(self) -> Dict[str, str]:
        return {
            'status': str(self.status_code),
            'body': self.body,
            'expires': self.expires,
        }

    @classmethod
    def from_mapping(cls, scheme_host: str, data: Dict[str, str]) -> 'Robots':
        return cls(
            scheme_host=scheme_host,
            status_code=int(data.get('status', 0)),
            body=data.get('body', ''),
            expires=data.get('expires', ''),
            cached=True,
        )


class RobotsRules:
    """Allow/disallow rules for one host, evaluated for a user-agent token."""

    def __init__(self, parser: RobotFileParser):
        self.parser = parser

    @classmethod
    def from_record(cls, record: Robots) -> 'RobotsRules':
        """
        2xx means parse the body, 4xx allows everything and 5xx disallows
        everything. Any other status (e.g. the fetch failed) is an error.
        """
        parser = RobotFileParser()
        parser.set_url(record.scheme_host + ROBOTS_PATH)
        status = record.status_code

        if 200 <= status < 300:
            parser.parse(record.body.splitlines())
        elif 400 <= status < 500:
            parser.allow_all = True
        elif 500 <= status < 600:
            parser.disallow_all = True
        else:
            raise RobotsError(f"unexpected robots.txt status {status} for {record.scheme_host}")

        return cls(parser)

    def allowed(self, agent: str, url: str) -> bool:
        return self.parser.can_fetch(agent, url)

    def crawl_delay(self, agent: str) -> Optional[float]:
        if self.parser.allow_all or self.parser.disallow_all:
            return None
        delay = self.parser.crawl_delay(agent)
        if delay is None:
            return None
        try:
            return float(delay)
        except OverflowError:
            return None


class RobotsCache(ABC):
    """Storage for robots.txt records."""

    @abstractmethod
    async def get(self, scheme_host: str) -> Robots:
        """Return the cached record, or an uncached empty one if there is none."""

    @abstractmethod
    def put(self, record: Robots):
        """Store a record. May be buffered; must not block the caller."""

    async def close(self):
        pass


class RedisRobotsCache(RobotsCache):
    """
    Caches robots.txt records as Redis hashes.

    Writes are buffered and flushed in the background with a pipeline;
    buffered records are already visible to get().
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = 'searchcrawler:',
                 batch_size: int = 100):
        self.redis_client = redis_client
        self.key_prefix = f"{prefix}robots:"
        self.batch_size = batch_size
        self.logger = logging.getLogger(__name__)

        self._pending: Dict[str, Robots] = {}
        self._flush_task: Optional[asyncio.Task] = None

    def _key(self, scheme_host: str) -> str:
        return f"{self.key_prefix}{scheme_host}"

    async def get(self, scheme_host: str) -> Robots:
        pending = self._pending.get(scheme_host)
        if pending is not None:
            return Robots(pending.scheme_host, pending.status_code, pending.body,
                          pending.expires, cached=True)

        try:
            data = await self.redis_client.hgetall(self._key(scheme_host))
        except RedisError as e:
            raise RobotsCacheError(f"cannot get robots.txt for {scheme_host}: {e}") from e

        if not data:
            return Robots(scheme_host)
        return Robots.from_mapping(scheme_host, data)

    def put(self, record: Robots):
        self._pending[record.scheme_host] = record
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_soon())

    async def _flush_soon(self):
        # let a few more records collect before writing
        if len(self._pending) < self.batch_size:
            await asyncio.sleep(0)
        try:
            await self.flush()
        except RobotsCacheError as e:
            self.logger.error(str(e))

    async def flush(self):
        """Write all buffered records."""
        if not self._pending:
            return

        batch = dict(self._pending)
        try:
            async with self.redis_client.pipeline(transaction=False) as pipe:
                for scheme_host, record in batch.items():
                    pipe.hset(self._key(scheme_host), mapping=record.to_mapping())
                await pipe.execute()
        except RedisError as e:
            raise RobotsCacheError(f"cannot store {len(batch)} robots.txt records: {e}") from e

        # records replaced while we were writing stay pending
        for scheme_host, record in batch.items():
            if self._pending.get(scheme_host) is record:
                del self._pending[scheme_host]

        self.logger.debug(f"Stored {len(batch)} robots.txt records")

    async def close(self):
        if self._flush_task is not None:
            await self._flush_task
        await self.flush()

# File: tests/conftest.py
from typing import Dict, List, Optional, Set, Tuple

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from searchcrawler.crawler.fetcher import FetchResult
from searchcrawler.crawler.robots import Robots, RobotsCache
from searchcrawler.crawler.url_frontier import LinkQueue, AlreadyReservedError, NotDelayedError
from searchcrawler.storage.database import Backend
from searchcrawler.utils.config import CrawlerConfig


class MemoryLinkQueue(LinkQueue):
    """LinkQueue kept in memory; TTLs are recorded, never expired."""

    def __init__(self):
        self.links: Set[str] = set()
        self.queued: Dict[str, int] = {}
        self.hosts: Dict[str, int] = {}
        self.delays: Dict[str, int] = {}

    async def count_links(self) -> int:
        return len(self.links)

    async def add_link(self, link: str):
        self.links.add(link)

    async def queue_link(self, ttl: int) -> str:
        if not self.links:
            return ""
        link = self.links.pop()
        if link in self.queued:
            return ""
        self.queued[link] = ttl
        return link

    async def reserve_host(self, host: str, ttl: int):
        if host in self.hosts:
            raise AlreadyReservedError(f"host already reserved: {host}")
        self.hosts[host] = ttl

    async def delay_host(self, host: str, ttl: int):
        if host not in self.hosts:
            raise NotDelayedError(f"host not delayed: {host}")
        self.delays[host] = ttl
        if ttl == 0:
            del self.hosts[host]
        else:
            self.hosts[host] = ttl


class MemoryRobotsCache(RobotsCache):
    def __init__(self):
        self.records: Dict[str, Robots] = {}

    async def get(self, scheme_host: str) -> Robots:
        record = self.records.get(scheme_host)
        if record is None:
            return Robots(scheme_host)
        return Robots(record.scheme_host, record.status_code, record.body,
                      record.expires, cached=True)

    def put(self, record: Robots):
        self.records[record.scheme_host] = record


class MockBackend(Backend):
    """Records upserts; answers crawl state from a dict."""

    def __init__(self):
        self.docs = []
        self.state: Dict[str, Tuple] = {}
        self.domain_count = 0
        self.upsert_error: Optional[Exception] = None

    async def setup(self):
        pass

    async def crawled_and_count(self, url, domain):
        return self.state.get(url, (None, self.domain_count))

    async def upsert(self, doc):
        if self.upsert_error:
            raise self.upsert_error
        self.docs.append(doc)


def make_headers(**headers) -> CIMultiDictProxy:
    return CIMultiDictProxy(CIMultiDict(
        (key.replace('_', '-'), value) for key, value in headers.items()))


class StubFetcher:
    """
    Serves canned responses. robots.txt defaults to 404 (allow all),
    unknown pages fail with a transport error.
    """

    def __init__(self):
        self.pages: Dict[str, FetchResult] = {}
        self.robots: Dict[str, FetchResult] = {}
        self.fetched: List[str] = []
        self.robots_fetched: List[str] = []

    def add_page(self, url: str, status: int = 200, body: bytes = b'', **headers):
        self.pages[url] = FetchResult(url=url, status_code=status, headers=make_headers(**headers),
                                      body=body, encoding='utf-8')

    def add_robots(self, url: str, status: int = 200, body: bytes = b''):
        self.robots[url] = FetchResult(url=url, status_code=status, body=body, encoding='utf-8')

    async def fetch(self, url: str, max_bytes: int = -1) -> FetchResult:
        self.fetched.append(url)
        result = self.pages.get(url)
        if result is None:
            return FetchResult(url=url, status_code=0, error=f"{url}: Client error: refused")
        if max_bytes != -1:
            result.body = result.body[:max_bytes]
        return result

    async def fetch_robots(self, url: str) -> FetchResult:
        self.robots_fetched.append(url)
        return self.robots.get(url) or FetchResult(url=url, status_code=404)

    async def close(self):
        pass


@pytest.fixture()
def crawler_config() -> CrawlerConfig:
    """A small, fast crawler configuration."""
    return CrawlerConfig(
        seeds=["http://a.test/", "http://b.test/"],
        workers=10,
        time=1.0,
        since=3600.0,
        timeout=0.5,
        shutdown_grace=0.05,
        idle_wait=0.01,
    )


@pytest.fixture()
def link_queue() -> MemoryLinkQueue:
    return MemoryLinkQueue()


@pytest.fixture()
def robots_cache() -> MemoryRobotsCache:
    return MemoryRobotsCache()


@pytest.fixture()
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture()
def fetcher() -> StubFetcher:
    return StubFetcher()

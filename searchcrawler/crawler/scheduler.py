"""
Crawler scheduler: runs a crawl session over the shared link queue.

Three kinds of tasks cooperate during a session:

* the link handler moves discovered links into the queue,
* the dequeue loop pops links off the queue onto the bounded work queue,
* a fixed pool of workers crawls one link at a time.

A worker owns a host from reserve_host() until delay_host() re-arms the
reservation with the host's courtesy delay, so two workers never fetch
from the same host at once.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Optional

from .delay import calculate_host_delay, MIN_DELAY, NOT_CRAWLED
from .document import Document, InvalidURLError
from .fetcher import WebFetcher
from .parser import ContentParser, sniff_mime, TEXT_MIME_TYPES
from .robots import Robots, RobotsCache, RobotsCacheError, RobotsError, RobotsRules, ROBOTS_PATH
from .stats import CrawlStats
from .url_frontier import LinkQueue, QueueError, AlreadyReservedError, NotDelayedError
from ..storage.database import Backend, DatabaseError
from ..utils.config import CrawlerConfig
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


class CrawlError(Exception):
    """A failure that ended the crawl session."""


def now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HostCourtesy:
    """What the crawl of one link learned about its host's courtesy delay."""
    delay: float = 0.0
    retry_after: str = ''


class CrawlerScheduler:
    """
    Coordinates a crawl session.

    The queue, robots cache and backend are shared with other crawler
    processes; all coordination between workers goes through them.
    """

    def __init__(self, config: CrawlerConfig, queue: LinkQueue, robots: RobotsCache,
                 backend: Backend, fetcher: Optional[WebFetcher] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.queue = queue
        self.robots = robots
        self.backend = backend
        self.fetcher = fetcher or WebFetcher(
            user_agent=config.useragent_full,
            request_timeout=config.timeout,
            dns_cache_ttl=config.dns_cache_ttl,
            max_connections=config.workers * 2,
            robots_max_redirects=config.robots_max_redirects,
        )
        self.parser = ContentParser(
            bot=config.useragent_short,
            truncate_title=config.truncate_title,
            truncate_keywords=config.truncate_keywords,
            truncate_description=config.truncate_description,
        )
        self.monitor = monitor or CrawlerMonitor()
        self.logger = logging.getLogger(__name__)

        self.stats = CrawlStats()
        self.state = 'idle'
        self._closed = False

        self.links: asyncio.Queue = asyncio.Queue()
        self.work: asyncio.Queue = asyncio.Queue(maxsize=config.workers)
        self._errors: asyncio.Queue = asyncio.Queue()
        self._cancel = asyncio.Event()
        self.workers: List[asyncio.Task] = []

    async def start(self, duration: float):
        """
        Crawl until the session deadline or a fatal error, then drain.

        Raises CrawlError with the first fatal error after in-flight work finished.
        """
        if self.state != 'idle':
            raise CrawlError(f"crawler is {self.state}")

        self.state = 'running'
        self.stats = CrawlStats()

        link_handler = asyncio.create_task(self._link_handler())
        dequeue = asyncio.create_task(self._start_queue())

        for seed in self.config.seeds:
            self.links.put_nowait(seed)

        self.workers = [
            asyncio.create_task(self._worker(f"worker-{i}"))
            for i in range(self.config.workers)
        ]
        self.logger.info(f"Started crawling with {self.config.workers} workers for {duration}s")

        error: Optional[Exception] = None
        try:
            error = await asyncio.wait_for(self._errors.get(), timeout=duration)
        except asyncio.TimeoutError:
            self.logger.info("Crawl session deadline reached")

        self.state = 'draining'
        self._cancel.set()
        # a link handed out just before the cancel must still find its worker
        await asyncio.sleep(self.config.shutdown_grace)
        await dequeue
        await asyncio.gather(*self.workers, return_exceptions=True)

        self.links.put_nowait(None)
        await link_handler

        self.state = 'stopped'
        self.logger.info("Crawl session stopped")

        while error is None and not self._errors.empty():
            error = self._errors.get_nowait()
        if error is not None:
            self.monitor.record_error('fatal')
            raise CrawlError(str(error)) from error

    def stop(self):
        """Ask a running session to drain and stop before its deadline."""
        if self.state == 'running':
            self._errors.put_nowait(None)

    def _fail(self, error: Exception):
        """Signal a session-ending error."""
        self.logger.error(f"Fatal crawl error: {error}")
        self._errors.put_nowait(error)

    async def _link_handler(self):
        """Feed discovered links into the queue until the None sentinel."""
        while True:
            link = await self.links.get()
            if link is None:
                return

            try:
                await self.queue.add_link(link)
            except QueueError as e:
                self._fail(e)
                return

    async def _start_queue(self):
        """Hand queued links to the workers until the session is cancelled."""
        try:
            while not self._cancel.is_set():
                # a link must stay marked as queued for at least as long as the
                # backend takes to show it as crawled
                try:
                    link = await self.queue.queue_link(self.config.queued_ttl)
                except QueueError as e:
                    self._fail(e)
                    return

                if not link:
                    await asyncio.sleep(self.config.idle_wait)
                    continue

                await self.work.put(link)
        finally:
            for _ in self.workers:
                await self.work.put(None)

    async def _worker(self, name: str):
        logger = get_crawler_logger(__name__, worker=name)
        logger.debug(f"Worker {name} started")

        while True:
            link = await self.work.get()
            if link is None:
                break

            try:
                await self.crawl(link)
            except Exception as e:
                logger.bind(link=link).exception(f"Worker {name} error: {e}")
                self.monitor.record_error('worker')

        logger.debug(f"Worker {name} finished")

    async def crawl(self, link: str):
        """Crawl a single link."""
        try:
            doc = Document.new(link)
        except InvalidURLError as e:
            self.logger.debug(str(e))
            return

        sh = doc.scheme_host
        try:
            await self.queue.reserve_host(sh, self.config.reserve_ttl)
        except AlreadyReservedError:
            # another worker owns the host; the link is dropped until it is rediscovered
            return
        except QueueError as e:
            self._fail(e)
            return

        async with self._host_reservation(doc) as courtesy:
            await self._crawl(doc, courtesy)

    @asynccontextmanager
    async def _host_reservation(self, doc: Document) -> AsyncIterator[HostCourtesy]:
        """Re-arm the host lock with its courtesy delay however the crawl ends."""
        courtesy = HostCourtesy()
        try:
            yield courtesy
        finally:
            try:
                delay = calculate_host_delay(doc.status_code, courtesy.retry_after, courtesy.delay)
            except (ValueError, OverflowError) as e:
                self.logger.warning(f"Bad courtesy delay for {doc.scheme_host}: {e}")
                delay = MIN_DELAY
            try:
                await self.queue.delay_host(doc.scheme_host, int(delay))
            except NotDelayedError as e:
                # the reservation expired before the crawl finished
                self.logger.error(f"{e} (delay {delay}s)")
                self.monitor.record_error('host_lock')
            except QueueError as e:
                self._fail(e)

    async def _crawl(self, doc: Document, courtesy: HostCourtesy):
        try:
            crawled, count = await self.backend.crawled_and_count(doc.id, doc.domain)
        except DatabaseError as e:
            self._fail(e)
            return

        # crawled recently...always skip
        if crawled is not None and crawled >= now() - timedelta(seconds=self.config.since):
            return

        # new doc? only crawl if we have room for that domain
        # TODO: scale max_domain_links by the domain's votes once they are available
        if crawled is None and count > self.config.max_domain_links:
            return

        doc.set_status_code(NOT_CRAWLED).set_crawled(now())

        try:
            record = await self.fetch_robots(doc)
        except RobotsCacheError as e:
            self._fail(e)
            return

        try:
            rules = RobotsRules.from_record(record)
        except RobotsError as e:
            self.logger.debug(str(e))
            return

        if not rules.allowed(self.config.useragent_short, doc.id):
            self.logger.debug(f"Disallowed by robots.txt: {doc.id}")
            return

        courtesy.delay = rules.crawl_delay(self.config.useragent_short) or 0.0

        result = await self.fetcher.fetch(doc.id, self.config.max_bytes)
        if result.error:
            self.logger.info(result.error)
            self.monitor.record_error('fetch')
            return

        self.stats.update(result.status_code)
        self.monitor.record_status(result.status_code)
        doc.set_status_code(result.status_code)
        courtesy.retry_after = result.headers.get('Retry-After', '')

        if doc.status_code == 200:
            doc = await self._extract(doc, result)
            if doc is None:
                return

        try:
            await self.backend.upsert(doc)
        except DatabaseError as e:
            self._fail(e)

    async def _extract(self, doc: Document, result) -> Optional[Document]:
        """Fill the document from a 200 response; returns what should be stored."""
        self.parser.set_policy_from_header(doc, result.headers)
        doc.mime = sniff_mime(result.body)

        # some html is served as text/xml
        # TODO: extract text from pdf files
        if doc.mime not in TEXT_MIME_TYPES:
            return doc.stub()

        try:
            queued = await self.queue.count_links()
        except QueueError as e:
            self._fail(e)
            return None
        self.monitor.update_queue_size(queued)

        max_links = self.config.max_links
        if queued > self.config.max_queue_links:
            max_links = 0

        try:
            self.parser.set_content(doc, result.body, max_links, self.links.put_nowait,
                                    encoding=result.encoding)
        except Exception as e:
            self.logger.debug(f"document parsing error: {doc.id}: {e}")

        # don't index content if not wanted or if not canonical
        self.parser.set_canonical(doc, result.headers, self.links.put_nowait)
        if not doc.canonical or not doc.index:
            return doc.stub()
        return doc

    async def fetch_robots(self, doc: Document) -> Robots:
        """Return the host's robots.txt record, refetching it once it has expired."""
        sh = doc.scheme_host
        record = await self.robots.get(sh)

        if record.cached and not record.expired():
            return record

        result = await self.fetcher.fetch_robots(sh + ROBOTS_PATH)
        if result.error:
            # fall back to whatever we had, even if it is stale
            self.logger.info(result.error)
            return record

        record = Robots(sh, status_code=result.status_code).set_expires()

        # only a 2xx body matters: 4xx allows all, 5xx disallows all
        if 200 <= result.status_code < 300:
            try:
                record.body = result.body.decode(result.encoding or 'utf-8', errors='replace')
            except LookupError:
                record.body = result.body.decode('utf-8', errors='replace')

        self.robots.put(record)
        return record

    def close(self):
        """Log the final statistics; safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        report = self.stats.elapsed().report()
        if report:
            for line in report.rstrip('\n').split('\n'):
                self.logger.info(line)
        else:
            self.logger.info(f"[stats] Nothing crawled in {self.stats.elapsed_time:.2f}s")

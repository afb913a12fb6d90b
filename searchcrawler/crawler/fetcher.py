"""
HTTP transport for the crawler.

One session serves every host: DNS answers are cached, both address
families are tried and connections are closed after each response, since
we rarely talk to the same host twice in a row.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError
from multidict import CIMultiDict, CIMultiDictProxy


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    headers: CIMultiDictProxy = field(default_factory=lambda: CIMultiDictProxy(CIMultiDict()))
    body: bytes = b''
    encoding: Optional[str] = None
    error: Optional[str] = None


class WebFetcher:
    """
    Fetches pages and robots.txt files.

    Transport problems never raise; they come back as a FetchResult with
    ``error`` set and a status code of 0.
    """

    def __init__(self, user_agent: str, request_timeout: float = 25,
                 dns_cache_ttl: int = 600, max_connections: int = 100,
                 robots_max_redirects: int = 10):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.dns_cache_ttl = dns_cache_ttl
        self.max_connections = max_connections
        self.robots_max_redirects = robots_max_redirects

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    use_dns_cache=True,
                    ttl_dns_cache=self.dns_cache_ttl,
                    family=0,  # IPv4 and IPv6
                    force_close=True,
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str, max_bytes: int = -1) -> FetchResult:
        """Fetch a page. Redirects are not followed, the 3xx is the result."""
        return await self._fetch(url, max_bytes, allow_redirects=False)

    async def fetch_robots(self, url: str) -> FetchResult:
        """Fetch a robots.txt file, following redirects."""
        return await self._fetch(url, -1, allow_redirects=True)

    async def _fetch(self, url: str, max_bytes: int, allow_redirects: bool) -> FetchResult:
        if self.session is None:
            await self.start()

        try:
            async with self.session.get(
                url,
                allow_redirects=allow_redirects,
                max_redirects=self.robots_max_redirects,
            ) as response:
                body = b''
                if 200 <= response.status < 300:
                    body = await self._read_content(response, max_bytes)

                result = FetchResult(
                    url=url,
                    status_code=response.status,
                    headers=CIMultiDictProxy(CIMultiDict(response.headers)),
                    body=body,
                    encoding=response.charset
                )

                self.logger.debug(f"Fetched {url}: {response.status} ({len(body)} bytes)")
                return result

        except asyncio.TimeoutError:
            error_msg = "Request timeout"

        except ClientError as e:
            error_msg = f"Client error: {e}"

        return FetchResult(
            url=url,
            status_code=0,
            error=f"{url}: {error_msg}"
        )

    async def _read_content(self, response: aiohttp.ClientResponse, max_bytes: int) -> bytes:
        """Read the body, truncated to max_bytes unless max_bytes is -1."""
        if max_bytes == -1:
            return await response.read()

        content = bytearray()
        async for chunk in response.content.iter_chunked(8192):
            content.extend(chunk)
            if len(content) >= max_bytes:
                break

        return bytes(content[:max_bytes])

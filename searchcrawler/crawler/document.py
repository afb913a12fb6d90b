"""
Documents: a validated URL plus whatever the crawl learned about the page.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import SplitResult, urlsplit, urlunsplit

import tldextract

CRAWLED_FORMAT = '%Y%m%d'

# bundled public suffix list only, never fetched at runtime
_extract = tldextract.TLDExtract(suffix_list_urls=())


class InvalidURLError(ValueError):
    """A link that cannot be crawled."""


def validate_url(link: str) -> SplitResult:
    """Strip the fragment and make sure the link is an absolute http(s) URL."""
    try:
        parts = urlsplit(link.strip())
    except ValueError as e:
        raise InvalidURLError(f"unparsable link {link!r}: {e}") from e

    if parts.scheme not in ('http', 'https'):
        raise InvalidURLError(f"invalid scheme in {link!r}")

    if not parts.hostname:
        raise InvalidURLError(f"missing host in {link!r}")

    return parts._replace(netloc=parts.netloc.lower(), fragment='')


def extract_domain(host: str) -> str:
    """
    Registrable domain of a host, e.g. "example.co.uk" for "www.example.co.uk".
    Hosts without a public suffix (IPs, localhost) are their own domain.
    """
    ext = _extract(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return ext.domain or host


def path_parts(path: str) -> str:
    """'/path/to/some-page.html' -> 'path to some page'"""
    for ext in ('.html', '.htm', '.php'):
        if path.endswith(ext):
            path = path[:-len(ext)]
    words = path.replace('/', ' ').replace('-', ' ').split()
    return ' '.join(dict.fromkeys(words))


@dataclass
class Document:
    """A crawled (or to be crawled) page."""
    id: str
    url: Optional[SplitResult] = None
    scheme: str = ''
    host: str = ''          # includes the port, robots.txt is per port
    domain: str = ''
    tld: str = ''
    path_parts: str = ''
    crawled: str = ''
    mime: str = ''
    status_code: int = 0
    language: str = ''
    title: str = ''
    keywords: str = ''
    description: str = ''
    canonical: bool = False
    index: bool = False
    follow: bool = False
    canonical_url: str = field(default='', repr=False)

    @classmethod
    def new(cls, link: str) -> 'Document':
        """Validate a link and build its document."""
        url = validate_url(link)
        hostname = url.hostname or ''
        domain = extract_domain(hostname)

        return cls(
            id=urlunsplit(url),
            url=url,
            scheme=url.scheme,
            host=url.netloc,
            domain=domain,
            tld=domain.rsplit('.', 1)[-1],
            path_parts=path_parts(url.path),
        )

    @property
    def scheme_host(self) -> str:
        return f"{self.scheme}://{self.host}"

    def set_status_code(self, code: int) -> 'Document':
        self.status_code = code
        return self

    def set_crawled(self, when: datetime) -> 'Document':
        self.crawled = when.strftime(CRAWLED_FORMAT)
        return self

    def stub(self) -> 'Document':
        """Keep only what is needed to remember the crawl."""
        return Document(
            id=self.id,
            crawled=self.crawled,
            status_code=self.status_code,
            language=self.language,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Storage representation; empty fields are left out, except index."""
        data = {
            'id': self.id,
            'scheme': self.scheme,
            'host': self.host,
            'domain': self.domain,
            'tld': self.tld,
            'path_parts': self.path_parts,
            'crawled': self.crawled,
            'mime': self.mime,
            'status': self.status_code,
            'language': self.language,
            'title': self.title,
            'keywords': self.keywords,
            'description': self.description,
            'canonical': self.canonical,
        }
        data = {key: value for key, value in data.items() if value}
        # a page that turned noindex must overwrite an older index flag
        data['index'] = self.index
        return data

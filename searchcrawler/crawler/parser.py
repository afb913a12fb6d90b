"""
Web page parser: MIME sniffing, indexing policy, metadata, links and canonical URL.
"""

import re
import logging
from typing import Callable, Iterable, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag
from multidict import CIMultiDictProxy, CIMultiDict

from .document import Document

# html, xml and plain text are the only MIME types we extract content from
TEXT_MIME_TYPES = ('text/html', 'text/xml', 'text/plain')

SNIFF_LENGTH = 512

_HTML_SIGNATURES = [
    b'<!doctype html', b'<html', b'<head', b'<script', b'<iframe', b'<h1', b'<div',
    b'<font', b'<table', b'<a', b'<style', b'<title', b'<b', b'<body', b'<br', b'<p',
]

_MAGIC_NUMBERS = [
    (b'%PDF-', 'application/pdf'),
    (b'%!PS-Adobe-', 'application/postscript'),
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'BM', 'image/bmp'),
    (b'PK\x03\x04', 'application/zip'),
    (b'\x1f\x8b\x08', 'application/x-gzip'),
    (b'Rar!\x1a\x07', 'application/x-rar-compressed'),
    (b'\x00\x00\x01\x00', 'image/x-icon'),
    (b'OggS\x00', 'application/ogg'),
]

_BINARY_BYTES = set(range(0x00, 0x09)) | {0x0B} | set(range(0x0E, 0x1B)) | set(range(0x1C, 0x20))

# languages we can analyze; the first one is the fallback
SUPPORTED_LANGUAGES = [
    'en', 'ar', 'bg', 'ca', 'cs', 'da', 'de', 'el', 'en-us', 'en-gb', 'es', 'es-es',
    'es-419', 'fa', 'fi', 'fr', 'fr-ca', 'hi', 'hu', 'hy', 'id', 'it', 'ja', 'ko',
    'lt', 'lv', 'nl', 'no', 'pt', 'pt-br', 'pt-pt', 'ro', 'ru', 'sv', 'th', 'tr',
    'zh', 'zh-hans', 'zh-hant',
]

canonical_header = re.compile(r'<(.*?)>;\s*rel="?canonical"?')

MIN_LINK_LENGTH = 3
MAX_LINK_LENGTH = 2083

Headers = CIMultiDictProxy


def sniff_mime(body: bytes) -> str:
    """Guess the MIME type from the first bytes of a body."""
    data = body[:SNIFF_LENGTH]

    for bom in (b'\xfe\xff', b'\xff\xfe', b'\xef\xbb\xbf'):
        if data.startswith(bom):
            return 'text/plain'

    stripped = data.lstrip(b'\t\n\x0c\r ')
    lowered = stripped.lower()
    for signature in _HTML_SIGNATURES:
        if lowered.startswith(signature):
            tail = lowered[len(signature):len(signature) + 1]
            if tail in (b' ', b'>'):
                return 'text/html'
    if lowered.startswith(b'<!--'):
        return 'text/html'
    if stripped.startswith(b'<?xml'):
        return 'text/xml'

    for magic, mime in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return mime

    if any(byte in _BINARY_BYTES for byte in data):
        return 'application/octet-stream'
    return 'text/plain'


def match_language(lang: Optional[str]) -> str:
    """Closest supported language for an html lang attribute."""
    if not lang:
        return SUPPORTED_LANGUAGES[0]

    tag = lang.strip().lower().replace('_', '-')
    if tag in SUPPORTED_LANGUAGES:
        return tag

    base = tag.split('-')[0]
    if base in SUPPORTED_LANGUAGES:
        return base
    return SUPPORTED_LANGUAGES[0]


def normalize_link(base_url: str, href: str) -> Optional[str]:
    """Resolve href against the page and strip the fragment; None if not crawlable."""
    href = href.strip()
    if len(href) < MIN_LINK_LENGTH or len(href) > MAX_LINK_LENGTH:
        return None

    try:
        parts = urlsplit(urljoin(base_url, href))
    except ValueError:
        return None

    if parts.scheme not in ('http', 'https') or not parts.netloc:
        return None

    return urlunsplit((parts.scheme, parts.netloc.lower(), parts.path, parts.query, ''))


class ContentParser:
    """
    Fills a Document from an HTTP response.

    Links are handed to ``emit`` as soon as they are found.
    """

    def __init__(self, bot: str, truncate_title: int = 100, truncate_keywords: int = 25,
                 truncate_description: int = 250):
        self.bot = bot
        self.truncate_title = truncate_title
        self.truncate_keywords = truncate_keywords
        self.truncate_description = truncate_description
        self.logger = logging.getLogger(__name__)

        self.whitespace_pattern = re.compile(r'\s+')

    def set_policy_from_header(self, doc: Document, headers: Headers) -> Document:
        """Index and follow unless an X-Robots-Tag header says otherwise."""
        doc.index = True
        doc.follow = True

        for value in headers.getall('X-Robots-Tag', []):
            self._set_policy(doc, value)

        return doc

    def _set_policy(self, doc: Document, policy: str):
        # the most restrictive directive wins, so never switch back to True
        # TODO: honor "bot: directive" values aimed at a specific crawler
        for directive in policy.split(','):
            directive = directive.strip().lower()
            if directive == 'none':
                doc.index = False
                doc.follow = False
            elif directive == 'noindex':
                doc.index = False
            elif directive == 'nofollow':
                doc.follow = False

    def set_content(self, doc: Document, body: bytes, max_links: int,
                    emit: Callable[[str], None], encoding: Optional[str] = None) -> Document:
        """
        Parse the page for language, title, keywords, description, robots
        meta tags, the canonical link and outbound links.

        Args:
            doc: Document of the page
            body: Raw (possibly truncated) response body
            max_links: Links to extract, -1 for all, 0 for none
            emit: Receives every discovered link
            encoding: Charset from the response, if any
        """
        soup = BeautifulSoup(body, 'lxml', from_encoding=encoding)

        html_tag = soup.find('html')
        doc.language = match_language(
            html_tag.get('lang') or html_tag.get('xml:lang') if html_tag else None)

        title = soup.find('title')
        if title:
            doc.title = self._extract_text(title.get_text(), self.truncate_title)

        for meta in soup.find_all('meta'):
            self._handle_meta(doc, meta)

        for link in soup.find_all('link', href=True):
            if 'canonical' in self._rel(link):
                canonical = normalize_link(doc.id, link['href'])
                if canonical and canonical != doc.id:
                    doc.canonical_url = canonical
                    emit(canonical)

        if doc.follow:
            self._extract_links(doc, soup.find_all('a', href=True), max_links, emit)

        return doc

    def _handle_meta(self, doc: Document, meta: Tag):
        name = (meta.get('name') or '').strip().lower()
        content = meta.get('content')
        if content is None:
            return

        if name == 'keywords':
            words = list(dict.fromkeys(content.replace(',', ' ').split()))
            if self.truncate_keywords > -1:
                words = words[:self.truncate_keywords]
            doc.keywords = self._extract_text(' '.join(words), -1)
        elif name == 'description':
            doc.description = self._extract_text(content, self.truncate_description)
        elif name in ('robots', self.bot.lower()):
            self._set_policy(doc, content)

    def _extract_links(self, doc: Document, anchors: Iterable[Tag], max_links: int,
                       emit: Callable[[str], None]):
        collected = 0
        for anchor in anchors:
            if max_links != -1 and collected >= max_links:
                break

            if 'nofollow' in self._rel(anchor):
                continue

            link = normalize_link(doc.id, anchor['href'])
            if link and link != doc.id:
                emit(link)
                collected += 1

    def set_canonical(self, doc: Document, headers: Headers,
                      emit: Callable[[str], None]) -> Document:
        """
        Decide whether the document is the canonical version of itself.
        A Link header overrides the <link rel=canonical> tag of the body.
        """
        doc.canonical = True

        link_header = headers.get('Link', '')
        if link_header:
            match = canonical_header.search(link_header.strip())
            if match:
                doc.canonical_url = match.group(1)
                emit(match.group(1))

        if doc.canonical_url and doc.canonical_url != doc.id:
            doc.canonical = False

        return doc

    @staticmethod
    def _rel(tag: Tag) -> List[str]:
        rel = tag.get('rel') or []
        if isinstance(rel, str):
            rel = rel.split()
        return [value.strip().lower() for value in rel]

    def _extract_text(self, text: str, max_length: int) -> str:
        text = self.whitespace_pattern.sub(' ', text).strip()
        if max_length != -1 and len(text) > max_length:
            text = text[:max_length]
        return text.strip()


def empty_headers() -> Headers:
    return CIMultiDictProxy(CIMultiDict())

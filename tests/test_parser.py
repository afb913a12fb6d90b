# File: tests/test_parser.py
import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from searchcrawler.crawler.document import Document
from searchcrawler.crawler.parser import (
    ContentParser, empty_headers, match_language, normalize_link, sniff_mime,
)
from conftest import make_headers

PAGE = b"""<!DOCTYPE html>
<html lang="pt-BR">
<head>
  <title>  A   Very Long
  Title </title>
  <meta name="description" content="All about crawling">
  <meta name="keywords" content="crawl, search, crawl, index">
  <link rel="canonical" href="/canonical">
</head>
<body>
  <a href="/one">one</a>
  <a href="two#section">two</a>
  <a href="http://other.test/three" rel="nofollow">three</a>
  <a href="mailto:me@example.com">mail</a>
  <a href="http://example.com/page">self</a>
  <a href="https://other.test/four">four</a>
</body>
</html>
"""


@pytest.fixture()
def parser() -> ContentParser:
    return ContentParser(bot="searchcrawlerbot", truncate_title=10, truncate_keywords=2,
                         truncate_description=250)


@pytest.fixture()
def doc() -> Document:
    doc = Document.new("http://example.com/page")
    doc.index = doc.follow = True
    return doc


def test_set_content(parser, doc):
    links = []
    parser.set_content(doc, PAGE, -1, links.append)

    assert doc.language == "pt-br"
    assert doc.title == "A Very Lon"
    assert doc.description == "All about crawling"
    assert doc.keywords == "crawl search"
    assert doc.canonical_url == "http://example.com/canonical"
    assert links == [
        "http://example.com/canonical",
        "http://example.com/one",
        "http://example.com/two",
        "https://other.test/four",
    ]


def test_set_content_caps_links(parser, doc):
    links = []
    parser.set_content(doc, PAGE, 1, links.append)
    assert links == ["http://example.com/canonical", "http://example.com/one"]


def test_set_content_without_links(parser, doc):
    links = []
    parser.set_content(doc, PAGE, 0, links.append)
    assert links == ["http://example.com/canonical"]


def test_nofollow_meta_stops_link_extraction(parser, doc):
    links = []
    body = b'<html><head><meta name="robots" content="nofollow"></head>' \
           b'<body><a href="/one">one</a></body></html>'
    parser.set_content(doc, body, -1, links.append)

    assert doc.follow is False
    assert doc.index is True
    assert links == []


def test_bot_specific_meta(parser, doc):
    body = b'<html><head><meta name="searchcrawlerbot" content="noindex"></head></html>'
    parser.set_content(doc, body, -1, lambda link: None)
    assert doc.index is False


@pytest.mark.parametrize(
    "tags, index, follow",
    [
        ([], True, True),
        (["noindex"], False, True),
        (["nofollow"], True, False),
        (["none"], False, False),
        (["noindex, nofollow"], False, False),
        (["noindex", "index, follow"], False, True),
    ],
)
def test_policy_from_header(parser, tags, index, follow):
    doc = Document.new("http://example.com/")
    headers = make_headers()
    if tags:
        headers = CIMultiDictProxy(CIMultiDict([("X-Robots-Tag", tag) for tag in tags]))

    parser.set_policy_from_header(doc, headers)
    assert (doc.index, doc.follow) == (index, follow)


def test_header_and_meta_most_restrictive_wins(parser):
    doc = Document.new("http://example.com/")
    parser.set_policy_from_header(doc, make_headers(X_Robots_Tag="noindex"))
    body = b'<html><head><meta name="robots" content="index, follow"></head></html>'
    parser.set_content(doc, body, -1, lambda link: None)

    assert doc.index is False
    assert doc.follow is True


def test_canonical_header_overrides_body(parser, doc):
    links = []
    doc.canonical_url = "http://example.com/from-body"
    parser.set_canonical(doc, make_headers(Link='<https://x.test/canonical>; rel="canonical"'),
                         links.append)

    assert doc.canonical is False
    assert doc.canonical_url == "https://x.test/canonical"
    assert links == ["https://x.test/canonical"]


def test_page_is_its_own_canonical(parser, doc):
    parser.set_canonical(doc, empty_headers(), lambda link: None)
    assert doc.canonical is True


@pytest.mark.parametrize(
    "body, mime",
    [
        (b"<!DOCTYPE html><html></html>", "text/html"),
        (b"  \n<HTML>", "text/html"),
        (b"<?xml version='1.0'?><rss/>", "text/xml"),
        (b"hello", "text/plain"),
        (b"", "text/plain"),
        (b"%PDF-1.4 ...", "application/pdf"),
        (b"\x89PNG\r\n\x1a\n....", "image/png"),
        (b"\x00\x01\x02binary", "application/octet-stream"),
    ],
)
def test_sniff_mime(body, mime):
    assert sniff_mime(body) == mime


@pytest.mark.parametrize(
    "lang, expected",
    [(None, "en"), ("fr-FR", "fr"), ("en_GB", "en-gb"), ("xx", "en"), ("ZH-Hant", "zh-hant")],
)
def test_match_language(lang, expected):
    assert match_language(lang) == expected


@pytest.mark.parametrize(
    "href, expected",
    [
        ("/ab", "http://example.com/ab"),
        ("/a", None),
        ("b?x=1#frag", "http://example.com/dir/b?x=1"),
        ("HTTP://OTHER.test/", "http://other.test/"),
        ("javascript:void(0)", None),
        ("#", None),
        ("x" * 3000, None),
    ],
)
def test_normalize_link(href, expected):
    assert normalize_link("http://example.com/dir/page", href) == expected

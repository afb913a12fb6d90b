"""
Search Crawler

The crawling core of a web search engine: polite, distributed crawling
over a shared Redis link queue.
"""

__version__ = "1.0.0"
__description__ = "A distributed crawler that feeds a search index"

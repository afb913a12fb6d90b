"""
Web crawler core components.
"""

from .delay import calculate_host_delay
from .document import Document, InvalidURLError
from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser
from .robots import Robots, RobotsCache, RedisRobotsCache, RobotsRules, RobotsError, RobotsCacheError
from .stats import CrawlStats
from .url_frontier import LinkQueue, RedisLinkQueue, QueueError, AlreadyReservedError, NotDelayedError

__all__ = [
    'calculate_host_delay',
    'Document', 'InvalidURLError',
    'WebFetcher', 'FetchResult',
    'ContentParser',
    'Robots', 'RobotsCache', 'RedisRobotsCache', 'RobotsRules', 'RobotsError', 'RobotsCacheError',
    'CrawlStats',
    'LinkQueue', 'RedisLinkQueue', 'QueueError', 'AlreadyReservedError', 'NotDelayedError',
]

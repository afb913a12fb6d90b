#!/usr/bin/env python3
"""
Main entry point for the search crawler.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from searchcrawler.utils.config import load_config, Config
from searchcrawler.utils.logger import setup_logging
from searchcrawler.utils.monitoring import CrawlerMonitor
from searchcrawler.crawler.fetcher import WebFetcher
from searchcrawler.crawler.robots import RedisRobotsCache, RobotsCacheError
from searchcrawler.crawler.scheduler import CrawlerScheduler, CrawlError
from searchcrawler.crawler.url_frontier import RedisLinkQueue
from searchcrawler.storage.database import DatabaseManager, DatabaseError


class CrawlerApp:
    """Main application class for the search crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Drain and stop the session on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.scheduler:
                self.scheduler.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    def _redis_client(self, config: Config) -> redis.Redis:
        return redis.Redis(
            host=config.redis.host,
            port=config.redis.port,
            db=config.redis.db,
            password=config.redis.password,
            decode_responses=True
        )

    async def run(self, config: Config, dry_run: bool = False) -> int:
        """Run the search crawler."""
        setup_logging(config.logging)

        self.logger.info("=== SEARCH CRAWLER STARTING ===")
        self.logger.info(f"Seeds: {config.crawler.seeds}")
        self.logger.info(f"Workers: {config.crawler.workers}")
        self.logger.info(f"Session length: {config.crawler.time}s")
        self.logger.info(f"Database type: {config.database.type}")

        if dry_run:
            self.logger.info("DRY RUN MODE: No actual crawling will be performed")
            await self._dry_run(config)
            return 0

        redis_client = self._redis_client(config)
        backend = DatabaseManager(config.database)
        robots = RedisRobotsCache(redis_client, prefix=config.redis.prefix)
        monitor = CrawlerMonitor()

        try:
            await redis_client.ping()
            self.logger.info("Redis connection established")
            await backend.setup()

            if config.monitoring.metrics_enabled:
                monitor.start_server(config.monitoring.prometheus_port)

            self.scheduler = CrawlerScheduler(
                config.crawler,
                queue=RedisLinkQueue(redis_client, prefix=config.redis.prefix),
                robots=robots,
                backend=backend,
                monitor=monitor,
            )

            self.setup_signal_handlers()
            async with self.scheduler.fetcher:
                await self.scheduler.start(config.crawler.time)

        except (CrawlError, DatabaseError, RedisError) as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.scheduler:
                self.scheduler.close()
            try:
                await robots.close()
            except RobotsCacheError as e:
                self.logger.error(f"Unflushed robots.txt records: {e}")
            await backend.close()
            await redis_client.aclose()
            self.logger.info("=== SEARCH CRAWLER FINISHED ===")

        return 0

    async def _dry_run(self, config: Config):
        """Perform a dry run to test configuration and connections."""
        self.logger.info("Testing Redis connection...")
        redis_client = self._redis_client(config)
        try:
            await redis_client.ping()
            self.logger.info("✓ Redis connection successful")
        except RedisError as e:
            self.logger.error(f"✗ Redis connection failed: {e}")
        finally:
            await redis_client.aclose()

        self.logger.info("Testing database configuration...")
        db_manager = DatabaseManager(config.database)
        try:
            await db_manager.setup()
            self.logger.info("✓ Database initialization successful")
        except DatabaseError as e:
            self.logger.error(f"✗ Database initialization failed: {e}")
        finally:
            await db_manager.close()

        self.logger.info("Testing fetcher configuration...")
        async with WebFetcher(
            user_agent=config.crawler.useragent_full,
            request_timeout=config.crawler.timeout,
            dns_cache_ttl=config.crawler.dns_cache_ttl,
        ) as fetcher:
            result = await fetcher.fetch(config.crawler.seeds[0], config.crawler.max_bytes)
            if result.error:
                self.logger.warning(f"Test fetch failed: {result.error}")
            else:
                self.logger.info(f"✓ Test fetch successful: {result.status_code}")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Search Crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Run with default config.yaml
  python main.py --config my_config.yaml  # Run with custom config
  python main.py --workers 20 --time 600  # 20 workers for 10 minutes
  python main.py --debug                  # Debug output
  python main.py --dry-run                # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Number of workers'
    )

    parser.add_argument(
        '--time',
        type=float,
        help='Duration the crawler should run, in seconds'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Turn on debug output'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Search Crawler 1.0.0'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        config = load_config(args.config)
    except (ValueError, TypeError) as e:
        print(f"Error: invalid configuration: {e}")
        return 1

    if args.workers:
        config.crawler.workers = args.workers
    if args.time:
        config.crawler.time = args.time
    if args.debug:
        config.logging.level = 'DEBUG'

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config, dry_run=args.dry_run))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())

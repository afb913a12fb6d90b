"""
Document storage for crawled pages.
Supports both Cassandra and file-based storage.
"""

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

try:
    from cassandra.cluster import Cluster
    from cassandra.policies import DCAwareRoundRobinPolicy
    CASSANDRA_AVAILABLE = True
except ImportError:
    CASSANDRA_AVAILABLE = False

from ..crawler.document import Document, CRAWLED_FORMAT
from ..utils.config import DatabaseConfig


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


def parse_crawled(value: Optional[str]) -> Optional[datetime]:
    """Crawl date stored as YYYYMMDD, None if never crawled."""
    if not value:
        return None
    return datetime.strptime(value, CRAWLED_FORMAT).replace(tzinfo=timezone.utc)


def url_hash(url: str) -> str:
    return hashlib.sha256(url.encode('utf-8')).hexdigest()


class Backend(ABC):
    """What the crawler needs from its document store."""

    @abstractmethod
    async def setup(self):
        """Create whatever the backend needs before the first crawl."""

    @abstractmethod
    async def crawled_and_count(self, url: str, domain: str) -> Tuple[Optional[datetime], int]:
        """When the url was last crawled (None if never) and how many links its domain has."""

    @abstractmethod
    async def upsert(self, doc: Document):
        """Insert or update a document."""

    async def close(self):
        pass


class FileStorageBackend(Backend):
    """File-based storage backend for development and small-scale deployments."""

    def __init__(self, data_directory: str):
        self.data_directory = Path(data_directory)
        self.index_file = self.data_directory / 'index' / 'url_index.json'
        self.logger = logging.getLogger(__name__)

        # url -> {'crawled', 'domain', 'index'}
        self.url_index: Dict[str, Dict[str, Any]] = {}
        self.domain_counts: Dict[str, int] = {}
        self._index_lock = asyncio.Lock()

    async def setup(self):
        """Create data directory structure and load the url index."""
        try:
            (self.data_directory / 'content').mkdir(parents=True, exist_ok=True)
            self.index_file.parent.mkdir(parents=True, exist_ok=True)

            if self.index_file.exists():
                with open(self.index_file, 'r', encoding='utf-8') as f:
                    self.url_index = json.load(f)

        except (OSError, ValueError) as e:
            raise DatabaseError(f"Failed to initialize file storage: {e}") from e

        self.domain_counts = {}
        for entry in self.url_index.values():
            if entry.get('index') and entry.get('domain'):
                self.domain_counts[entry['domain']] = self.domain_counts.get(entry['domain'], 0) + 1

        self.logger.info(f"File storage initialized at {self.data_directory} "
                         f"with {len(self.url_index)} documents")

    def _get_file_path(self, url: str) -> Path:
        """Generate file path for URL."""
        digest = url_hash(url)
        # Use first 2 chars for directory structure
        return self.data_directory / 'content' / digest[:2] / f"{digest}.json"

    async def crawled_and_count(self, url: str, domain: str) -> Tuple[Optional[datetime], int]:
        entry = self.url_index.get(url) or {}
        try:
            crawled = parse_crawled(entry.get('crawled'))
        except ValueError as e:
            raise DatabaseError(f"Bad crawl date for {url}: {e}") from e
        return crawled, self.domain_counts.get(domain, 0)

    async def upsert(self, doc: Document):
        """Store a document, merging it into any previous version."""
        file_path = self._get_file_path(doc.id)
        try:
            data = await asyncio.to_thread(self._merge_document, file_path, doc.to_dict())
            self._update_index(doc.id, data)
            # one writer at a time, from a snapshot taken on the loop
            async with self._index_lock:
                await asyncio.to_thread(self._write_index,
                                        json.dumps(self.url_index, ensure_ascii=False))

        except (OSError, ValueError) as e:
            raise DatabaseError(f"Error storing {doc.id}: {e}") from e

        self.logger.debug(f"Stored document to {file_path}")

    def _merge_document(self, file_path: Path, fields: Dict[str, Any]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if file_path.exists():
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)

        data.update(fields)

        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        return data

    def _update_index(self, url: str, data: Dict[str, Any]):
        previous = self.url_index.get(url) or {}
        if previous.get('index') and previous.get('domain'):
            self.domain_counts[previous['domain']] -= 1

        entry = {
            'crawled': data.get('crawled', ''),
            'domain': data.get('domain', ''),
            'index': bool(data.get('index')),
        }
        self.url_index[url] = entry
        if entry['index'] and entry['domain']:
            self.domain_counts[entry['domain']] = self.domain_counts.get(entry['domain'], 0) + 1

    def _write_index(self, snapshot: str):
        with open(self.index_file, 'w', encoding='utf-8') as f:
            f.write(snapshot)

    async def close(self):
        self.logger.info(f"File storage holds {len(self.url_index)} documents")


class CassandraStorageBackend(Backend):
    """Cassandra storage backend for production deployments."""

    def __init__(self, config: Dict[str, Any]):
        if not CASSANDRA_AVAILABLE:
            raise DatabaseError("Cassandra driver not available. Install cassandra-driver package.")

        self.config = config
        self.cluster = None
        self.session = None
        self.logger = logging.getLogger(__name__)

    async def setup(self):
        """Initialize Cassandra connection, keyspace and tables."""
        try:
            await asyncio.to_thread(self._setup)
        except Exception as e:
            raise DatabaseError(f"Failed to initialize Cassandra: {e}") from e

    def _setup(self):
        hosts = self.config.get('hosts', ['localhost'])
        port = self.config.get('port', 9042)

        self.cluster = Cluster(
            hosts,
            port=port,
            load_balancing_policy=DCAwareRoundRobinPolicy()
        )
        self.session = self.cluster.connect()

        keyspace = self.config.get('keyspace', 'search')
        replication_factor = self.config.get('replication_factor', 1)

        self.session.execute(f"""
            CREATE KEYSPACE IF NOT EXISTS {keyspace}
            WITH replication = {{
                'class': 'SimpleStrategy',
                'replication_factor': {replication_factor}
            }}
        """)
        self.session.set_keyspace(keyspace)

        self.session.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                url text PRIMARY KEY,
                domain text,
                crawled text,
                indexed boolean,
                status int,
                language text,
                body text
            )
        """)

        # indexed documents per domain
        self.session.execute("""
            CREATE TABLE IF NOT EXISTS domain_links (
                domain text PRIMARY KEY,
                links counter
            )
        """)

        self.logger.info(f"Cassandra storage initialized with keyspace: {keyspace}")

    async def crawled_and_count(self, url: str, domain: str) -> Tuple[Optional[datetime], int]:
        try:
            return await asyncio.to_thread(self._crawled_and_count, url, domain)
        except Exception as e:
            raise DatabaseError(f"Error reading crawl state for {url}: {e}") from e

    def _crawled_and_count(self, url: str, domain: str) -> Tuple[Optional[datetime], int]:
        row = self.session.execute(
            "SELECT crawled FROM documents WHERE url = %s", (url,)).one()
        count_row = self.session.execute(
            "SELECT links FROM domain_links WHERE domain = %s", (domain,)).one()

        crawled = parse_crawled(row.crawled) if row else None
        count = count_row.links if count_row else 0
        return crawled, count

    async def upsert(self, doc: Document):
        try:
            await asyncio.to_thread(self._upsert, doc)
        except Exception as e:
            raise DatabaseError(f"Error storing {doc.id}: {e}") from e

    def _upsert(self, doc: Document):
        previous = self.session.execute(
            "SELECT indexed FROM documents WHERE url = %s", (doc.id,)).one()
        was_indexed = bool(previous and previous.indexed)

        self.session.execute("""
            INSERT INTO documents (url, domain, crawled, indexed, status, language, body)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
        """, (
            doc.id,
            doc.domain,
            doc.crawled,
            doc.index,
            doc.status_code,
            doc.language,
            json.dumps(doc.to_dict(), ensure_ascii=False),
        ))

        if doc.domain and doc.index and not was_indexed:
            self.session.execute(
                "UPDATE domain_links SET links = links + 1 WHERE domain = %s", (doc.domain,))

        self.logger.debug(f"Stored document to Cassandra: {doc.id}")

    async def close(self):
        """Close Cassandra connections."""
        if self.cluster:
            self.cluster.shutdown()
            self.logger.info("Cassandra connections closed")


class DatabaseManager(Backend):
    """Main database manager that handles different storage backends."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.backend: Optional[Backend] = None
        self.logger = logging.getLogger(__name__)

    async def setup(self):
        """Initialize the appropriate storage backend."""
        backend_type = self.config.type.lower()

        if backend_type == 'cassandra':
            self.backend = CassandraStorageBackend(self.config.cassandra)
        elif backend_type == 'file':
            self.backend = FileStorageBackend(self.config.file.get('data_directory', 'data'))
        else:
            raise DatabaseError(f"Unknown database type: {backend_type}")

        await self.backend.setup()
        self.logger.info(f"Database manager initialized with {backend_type} backend")

    async def crawled_and_count(self, url: str, domain: str) -> Tuple[Optional[datetime], int]:
        if not self.backend:
            raise DatabaseError("Database not initialized")
        return await self.backend.crawled_and_count(url, domain)

    async def upsert(self, doc: Document):
        if not self.backend:
            raise DatabaseError("Database not initialized")
        await self.backend.upsert(doc)

    async def close(self):
        """Close database connections."""
        if self.backend:
            await self.backend.close()
            self.logger.info("Database connections closed")

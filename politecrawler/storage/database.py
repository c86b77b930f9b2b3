"""
Persistent store for the crawl frontier.
Supports an embedded SQLite database and a Redis server.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite
import redis.asyncio as redis
from redis.exceptions import RedisError

from ..utils.config import DatabaseConfig


URL_MAX_LEN = 2048
HOST_MAX_LEN = 255
SERVER_MAX_LEN = 255
FILENAME_MAX_LEN = 255

NOT_SAVED = "-"

VISITED_URLS = "visited_urls"
VISITED_HOSTS = "visited_hosts"
URLS_TO_VISIT = "urls_to_visit"
TABLES = (VISITED_URLS, VISITED_HOSTS, URLS_TO_VISIT)


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


class StoreUnavailableError(DatabaseError):
    """The backend could not serve a request (connection lost, table missing...)."""
    pass


class InsertResult(Enum):
    """Outcome of an insert into a uniquely keyed table."""
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class VisitedUrl:
    """A URL whose fetch attempt reached a terminal outcome."""
    url: str
    visited_at: float
    saved_filename: str = NOT_SAVED


@dataclass
class VisitedHost:
    """Most recent visit to a host."""
    host: str
    last_visited_at: float
    server: Optional[str] = None


@dataclass
class PendingUrl:
    """A discovered URL waiting in the frontier."""
    url: str
    host: str
    eligible_at: float


class StorageBackend(ABC):
    """Abstract base class for frontier storage backends."""

    @abstractmethod
    async def initialize(self):
        """Open connections and create the tables if needed."""

    @abstractmethod
    async def close(self):
        """Close storage connections."""

    @abstractmethod
    async def get_visited_url(self, url: str) -> Optional[VisitedUrl]:
        ...

    @abstractmethod
    async def add_visited_url(self, record: VisitedUrl) -> InsertResult:
        ...

    @abstractmethod
    async def delete_visited_url(self, url: str):
        ...

    @abstractmethod
    async def get_visited_host(self, host: str) -> Optional[VisitedHost]:
        ...

    @abstractmethod
    async def upsert_visited_host(self, record: VisitedHost):
        ...

    @abstractmethod
    async def delete_visited_host(self, host: str):
        ...

    @abstractmethod
    async def get_pending_url(self, url: str) -> Optional[PendingUrl]:
        ...

    @abstractmethod
    async def add_pending_url(self, record: PendingUrl) -> InsertResult:
        ...

    @abstractmethod
    async def delete_pending_url(self, url: str):
        """Delete a pending URL. Deleting an absent URL is not an error."""

    @abstractmethod
    async def latest_eligible_at(self, host: str) -> Optional[float]:
        """Latest eligible time scheduled for `host`, or None."""

    @abstractmethod
    async def scan_pending_ordered(self, limit: Optional[int] = None) -> List[PendingUrl]:
        """Pending URLs ordered by eligible time, earliest first."""

    @abstractmethod
    async def scan_visited_urls(self) -> List[VisitedUrl]:
        ...

    @abstractmethod
    async def scan_visited_hosts(self) -> List[VisitedHost]:
        ...

    @abstractmethod
    async def count_pending(self) -> int:
        ...

    @abstractmethod
    async def drop_table(self, table: str):
        """Remove a table and its content. Dropping a missing table is not an error."""


class SQLiteStorageBackend(StorageBackend):
    """Embedded SQLite backend, one connection owned by the crawl worker."""

    SCHEMA = {
        VISITED_URLS: f"""
            CREATE TABLE IF NOT EXISTS {VISITED_URLS} (
                url VARCHAR({URL_MAX_LEN}) NOT NULL PRIMARY KEY,
                visited_at REAL NOT NULL,
                saved_filename VARCHAR({FILENAME_MAX_LEN}) NOT NULL
            )
        """,
        VISITED_HOSTS: f"""
            CREATE TABLE IF NOT EXISTS {VISITED_HOSTS} (
                host VARCHAR({HOST_MAX_LEN}) NOT NULL PRIMARY KEY,
                last_visited_at REAL NOT NULL,
                server VARCHAR({SERVER_MAX_LEN})
            )
        """,
        URLS_TO_VISIT: f"""
            CREATE TABLE IF NOT EXISTS {URLS_TO_VISIT} (
                url VARCHAR({URL_MAX_LEN}) NOT NULL PRIMARY KEY,
                host VARCHAR({HOST_MAX_LEN}) NOT NULL,
                eligible_at REAL NOT NULL
            )
        """,
    }

    INDEXES = [
        f"CREATE INDEX IF NOT EXISTS idx_{URLS_TO_VISIT}_eligible_at "
        f"ON {URLS_TO_VISIT} (eligible_at)",
        f"CREATE INDEX IF NOT EXISTS idx_{URLS_TO_VISIT}_host "
        f"ON {URLS_TO_VISIT} (host, eligible_at)",
    ]

    def __init__(self, path: str):
        self.path = Path(path)
        self.conn: Optional[aiosqlite.Connection] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Open the database file and create missing tables."""
        try:
            if self.path.parent != Path('.'):
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = await aiosqlite.connect(str(self.path))
            self.conn.row_factory = aiosqlite.Row
            for table, sql in self.SCHEMA.items():
                await self.conn.execute(sql)
                self.logger.info(f"Table {table} ready")
            for sql in self.INDEXES:
                await self.conn.execute(sql)
            await self.conn.commit()
            self.logger.info(f"SQLite storage initialized at {self.path}")
        except (aiosqlite.Error, OSError) as e:
            raise DatabaseError(f"Failed to initialize SQLite storage: {e}")

    async def close(self):
        if self.conn:
            await self.conn.close()
            self.conn = None
            self.logger.info("SQLite connection closed")

    async def _fetchone(self, sql: str, params: tuple = ()):
        if self.conn is None:
            raise StoreUnavailableError("SQLite storage not initialized")
        try:
            async with self.conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreUnavailableError(str(e))

    async def _fetchall(self, sql: str, params: tuple = ()):
        if self.conn is None:
            raise StoreUnavailableError("SQLite storage not initialized")
        try:
            async with self.conn.execute(sql, params) as cursor:
                return await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreUnavailableError(str(e))

    async def _write(self, sql: str, params: tuple = ()):
        if self.conn is None:
            raise StoreUnavailableError("SQLite storage not initialized")
        try:
            await self.conn.execute(sql, params)
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise StoreUnavailableError(str(e))

    async def _insert(self, sql: str, params: tuple) -> InsertResult:
        if self.conn is None:
            return InsertResult.STORE_UNAVAILABLE
        try:
            await self.conn.execute(sql, params)
            await self.conn.commit()
            return InsertResult.INSERTED
        except aiosqlite.IntegrityError:
            return InsertResult.ALREADY_EXISTS
        except aiosqlite.Error as e:
            self.logger.warning(f"Insert failed: {e}")
            return InsertResult.STORE_UNAVAILABLE

    async def get_visited_url(self, url: str) -> Optional[VisitedUrl]:
        row = await self._fetchone(
            f"SELECT url, visited_at, saved_filename FROM {VISITED_URLS} WHERE url = ?",
            (url,)
        )
        if row is None:
            return None
        return VisitedUrl(row['url'], row['visited_at'], row['saved_filename'])

    async def add_visited_url(self, record: VisitedUrl) -> InsertResult:
        return await self._insert(
            f"INSERT INTO {VISITED_URLS} (url, visited_at, saved_filename) VALUES (?, ?, ?)",
            (record.url, record.visited_at, record.saved_filename)
        )

    async def delete_visited_url(self, url: str):
        await self._write(f"DELETE FROM {VISITED_URLS} WHERE url = ?", (url,))

    async def get_visited_host(self, host: str) -> Optional[VisitedHost]:
        row = await self._fetchone(
            f"SELECT host, last_visited_at, server FROM {VISITED_HOSTS} WHERE host = ?",
            (host,)
        )
        if row is None:
            return None
        return VisitedHost(row['host'], row['last_visited_at'], row['server'])

    async def upsert_visited_host(self, record: VisitedHost):
        await self._write(
            f"""
            INSERT INTO {VISITED_HOSTS} (host, last_visited_at, server) VALUES (?, ?, ?)
            ON CONFLICT(host) DO UPDATE SET
                last_visited_at = excluded.last_visited_at,
                server = excluded.server
            """,
            (record.host, record.last_visited_at, record.server)
        )

    async def delete_visited_host(self, host: str):
        await self._write(f"DELETE FROM {VISITED_HOSTS} WHERE host = ?", (host,))

    async def get_pending_url(self, url: str) -> Optional[PendingUrl]:
        row = await self._fetchone(
            f"SELECT url, host, eligible_at FROM {URLS_TO_VISIT} WHERE url = ?",
            (url,)
        )
        if row is None:
            return None
        return PendingUrl(row['url'], row['host'], row['eligible_at'])

    async def add_pending_url(self, record: PendingUrl) -> InsertResult:
        return await self._insert(
            f"INSERT INTO {URLS_TO_VISIT} (url, host, eligible_at) VALUES (?, ?, ?)",
            (record.url, record.host, record.eligible_at)
        )

    async def delete_pending_url(self, url: str):
        await self._write(f"DELETE FROM {URLS_TO_VISIT} WHERE url = ?", (url,))

    async def latest_eligible_at(self, host: str) -> Optional[float]:
        row = await self._fetchone(
            f"SELECT MAX(eligible_at) AS latest FROM {URLS_TO_VISIT} WHERE host = ?",
            (host,)
        )
        return row['latest'] if row is not None else None

    async def scan_pending_ordered(self, limit: Optional[int] = None) -> List[PendingUrl]:
        sql = f"SELECT url, host, eligible_at FROM {URLS_TO_VISIT} ORDER BY eligible_at ASC, rowid ASC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        rows = await self._fetchall(sql, params)
        return [PendingUrl(row['url'], row['host'], row['eligible_at']) for row in rows]

    async def scan_visited_urls(self) -> List[VisitedUrl]:
        rows = await self._fetchall(
            f"SELECT url, visited_at, saved_filename FROM {VISITED_URLS} ORDER BY visited_at"
        )
        return [VisitedUrl(row['url'], row['visited_at'], row['saved_filename']) for row in rows]

    async def scan_visited_hosts(self) -> List[VisitedHost]:
        rows = await self._fetchall(
            f"SELECT host, last_visited_at, server FROM {VISITED_HOSTS} ORDER BY host"
        )
        return [VisitedHost(row['host'], row['last_visited_at'], row['server']) for row in rows]

    async def count_pending(self) -> int:
        row = await self._fetchone(f"SELECT COUNT(*) AS total FROM {URLS_TO_VISIT}")
        return row['total']

    async def drop_table(self, table: str):
        if table not in TABLES:
            raise DatabaseError(f"Unknown table: {table}")
        await self._write(f"DROP TABLE IF EXISTS {table}")
        self.logger.info(f"The table {table} has been dropped")


class RedisStorageBackend(StorageBackend):
    """
    Redis backend for a crawler database shared over the network.

    Records live in one hash per table. Pending URLs are additionally indexed
    in a sorted set scored by eligible time, plus one sorted set per host so
    the latest slot of a host is a single lookup.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.client: Optional[redis.Redis] = None
        self.prefix = config.get('key_prefix', 'politecrawler')
        self.logger = logging.getLogger(__name__)

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    @property
    def pending_index_key(self) -> str:
        return self._key(URLS_TO_VISIT, "by_eligible_at")

    def _host_index_key(self, host: str) -> str:
        return self._key(URLS_TO_VISIT, "host", host)

    async def initialize(self):
        """Connect and verify the server answers."""
        try:
            self.client = redis.Redis(
                host=self.config.get('host', 'localhost'),
                port=self.config.get('port', 6379),
                db=self.config.get('db', 0),
                password=self.config.get('password'),
                decode_responses=True
            )
            await self.client.ping()
            self.logger.info(
                f"Redis storage initialized at {self.config.get('host', 'localhost')}:"
                f"{self.config.get('port', 6379)} with prefix '{self.prefix}'"
            )
        except RedisError as e:
            raise DatabaseError(f"Failed to initialize Redis storage: {e}")

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            self.logger.info("Redis connection closed")

    def _require_client(self) -> redis.Redis:
        if self.client is None:
            raise StoreUnavailableError("Redis storage not initialized")
        return self.client

    async def _hget_json(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        client = self._require_client()
        try:
            raw = await client.hget(self._key(table), key)
        except RedisError as e:
            raise StoreUnavailableError(str(e))
        return json.loads(raw) if raw is not None else None

    async def _hsetnx_json(self, table: str, key: str, data: Dict[str, Any]) -> InsertResult:
        if self.client is None:
            return InsertResult.STORE_UNAVAILABLE
        try:
            created = await self.client.hsetnx(self._key(table), key, json.dumps(data))
        except RedisError as e:
            self.logger.warning(f"Insert into {table} failed: {e}")
            return InsertResult.STORE_UNAVAILABLE
        return InsertResult.INSERTED if created else InsertResult.ALREADY_EXISTS

    async def _hdel(self, table: str, key: str):
        client = self._require_client()
        try:
            await client.hdel(self._key(table), key)
        except RedisError as e:
            raise StoreUnavailableError(str(e))

    async def _hgetall_json(self, table: str) -> Dict[str, Dict[str, Any]]:
        client = self._require_client()
        try:
            raw = await client.hgetall(self._key(table))
        except RedisError as e:
            raise StoreUnavailableError(str(e))
        return {key: json.loads(value) for key, value in raw.items()}

    async def get_visited_url(self, url: str) -> Optional[VisitedUrl]:
        data = await self._hget_json(VISITED_URLS, url)
        return VisitedUrl(url=url, **data) if data is not None else None

    async def add_visited_url(self, record: VisitedUrl) -> InsertResult:
        return await self._hsetnx_json(VISITED_URLS, record.url, {
            'visited_at': record.visited_at,
            'saved_filename': record.saved_filename,
        })

    async def delete_visited_url(self, url: str):
        await self._hdel(VISITED_URLS, url)

    async def get_visited_host(self, host: str) -> Optional[VisitedHost]:
        data = await self._hget_json(VISITED_HOSTS, host)
        return VisitedHost(host=host, **data) if data is not None else None

    async def upsert_visited_host(self, record: VisitedHost):
        client = self._require_client()
        try:
            await client.hset(self._key(VISITED_HOSTS), record.host, json.dumps({
                'last_visited_at': record.last_visited_at,
                'server': record.server,
            }))
        except RedisError as e:
            raise StoreUnavailableError(str(e))

    async def delete_visited_host(self, host: str):
        await self._hdel(VISITED_HOSTS, host)

    async def get_pending_url(self, url: str) -> Optional[PendingUrl]:
        data = await self._hget_json(URLS_TO_VISIT, url)
        return PendingUrl(url=url, **data) if data is not None else None

    async def add_pending_url(self, record: PendingUrl) -> InsertResult:
        result = await self._hsetnx_json(URLS_TO_VISIT, record.url, {
            'host': record.host,
            'eligible_at': record.eligible_at,
        })
        if result is not InsertResult.INSERTED:
            return result

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zadd(self.pending_index_key, {record.url: record.eligible_at})
                pipe.zadd(self._host_index_key(record.host), {record.url: record.eligible_at})
                await pipe.execute()
        except RedisError as e:
            self.logger.warning(f"Indexing pending URL {record.url} failed: {e}")
            await self._discard_unindexed(record.url)
            return InsertResult.STORE_UNAVAILABLE
        return InsertResult.INSERTED

    async def _discard_unindexed(self, url: str):
        # A record missing from the indexes would never be scanned but would
        # still block re-insertion of the URL.
        try:
            await self.client.hdel(self._key(URLS_TO_VISIT), url)
        except RedisError as e:
            self.logger.error(f"Cannot remove unindexed pending URL {url}: {e}")

    async def delete_pending_url(self, url: str):
        record = await self.get_pending_url(url)
        client = self._require_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hdel(self._key(URLS_TO_VISIT), url)
                pipe.zrem(self.pending_index_key, url)
                if record is not None:
                    pipe.zrem(self._host_index_key(record.host), url)
                await pipe.execute()
        except RedisError as e:
            raise StoreUnavailableError(str(e))

    async def latest_eligible_at(self, host: str) -> Optional[float]:
        client = self._require_client()
        try:
            latest = await client.zrevrange(self._host_index_key(host), 0, 0, withscores=True)
        except RedisError as e:
            raise StoreUnavailableError(str(e))
        return latest[0][1] if latest else None

    async def scan_pending_ordered(self, limit: Optional[int] = None) -> List[PendingUrl]:
        client = self._require_client()
        end = -1 if limit is None else limit - 1
        try:
            members = await client.zrange(self.pending_index_key, 0, end, withscores=True)
            if not members:
                return []
            raw = await client.hmget(self._key(URLS_TO_VISIT), [url for url, _ in members])
        except RedisError as e:
            raise StoreUnavailableError(str(e))

        pending = []
        for (url, score), value in zip(members, raw):
            host = json.loads(value)['host'] if value is not None else ""
            pending.append(PendingUrl(url=url, host=host, eligible_at=score))
        return pending

    async def scan_visited_urls(self) -> List[VisitedUrl]:
        records = await self._hgetall_json(VISITED_URLS)
        visited = [VisitedUrl(url=url, **data) for url, data in records.items()]
        return sorted(visited, key=lambda r: r.visited_at)

    async def scan_visited_hosts(self) -> List[VisitedHost]:
        records = await self._hgetall_json(VISITED_HOSTS)
        return sorted(
            (VisitedHost(host=host, **data) for host, data in records.items()),
            key=lambda r: r.host
        )

    async def count_pending(self) -> int:
        client = self._require_client()
        try:
            return await client.zcard(self.pending_index_key)
        except RedisError as e:
            raise StoreUnavailableError(str(e))

    async def drop_table(self, table: str):
        if table not in TABLES:
            raise DatabaseError(f"Unknown table: {table}")
        client = self._require_client()
        try:
            keys = [self._key(table)]
            if table == URLS_TO_VISIT:
                keys.append(self.pending_index_key)
                async for key in client.scan_iter(match=self._host_index_key("*")):
                    keys.append(key)
            await client.delete(*keys)
        except RedisError as e:
            raise StoreUnavailableError(str(e))
        self.logger.info(f"The table {table} has been dropped")


class DatabaseManager:
    """Main database manager that handles different storage backends."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.backend: Optional[StorageBackend] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self) -> StorageBackend:
        """Initialize the appropriate storage backend."""
        backend_type = self.config.type.lower()

        if backend_type == 'sqlite':
            self.backend = SQLiteStorageBackend(self.config.sqlite.get('path', 'urlsDB.sqlite3'))
        elif backend_type == 'redis':
            self.backend = RedisStorageBackend(self.config.redis)
        else:
            raise DatabaseError(f"Unknown database type: {backend_type}")

        await self.backend.initialize()
        self.logger.info(f"Database manager initialized with {backend_type} backend")
        return self.backend

    async def close(self):
        """Close database connections."""
        if self.backend:
            await self.backend.close()
            self.backend = None
            self.logger.info("Database connections closed")

"""Persistence of crawl sessions, tasks and results across PostgreSQL, MongoDB and Redis."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextlib import closing, suppress
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

import pymongo
import pymongo.errors
import redis

from .config import MongoDBConfig, PostgreSQLConfig, RedisConfig, StorageConfig
from .models import CrawlResult, CrawlRules, CrawlSession, CrawlTask, SessionStats

RESULTS_COLLECTION = "crawl_results"
RESULT_CACHE_TTL = 3600

SCHEMA = (
    """CREATE TABLE IF NOT EXISTS crawl_sessions (
        id VARCHAR(255) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        start_urls TEXT[],
        rules JSONB,
        status VARCHAR(50),
        created_at TIMESTAMP DEFAULT NOW(),
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        stats JSONB
    )""",
    """CREATE TABLE IF NOT EXISTS crawl_tasks (
        id VARCHAR(255) PRIMARY KEY,
        session_id VARCHAR(255) REFERENCES crawl_sessions(id),
        url TEXT NOT NULL,
        method VARCHAR(10) DEFAULT 'GET',
        headers JSONB,
        priority INTEGER DEFAULT 0,
        max_depth INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT NOW(),
        scheduled_at TIMESTAMP,
        status VARCHAR(50) DEFAULT 'pending'
    )""",
    """CREATE TABLE IF NOT EXISTS proxy_info (
        id VARCHAR(255) PRIMARY KEY,
        host VARCHAR(255) NOT NULL,
        port INTEGER NOT NULL,
        username VARCHAR(255),
        password VARCHAR(255),
        type VARCHAR(50),
        country VARCHAR(50),
        provider VARCHAR(255),
        healthy BOOLEAN DEFAULT true,
        last_checked TIMESTAMP,
        fail_count INTEGER DEFAULT 0
    )""",
    """CREATE TABLE IF NOT EXISTS detection_events (
        id VARCHAR(255) PRIMARY KEY,
        url TEXT NOT NULL,
        proxy_id VARCHAR(255),
        event_type VARCHAR(100),
        description TEXT,
        timestamp TIMESTAMP DEFAULT NOW(),
        worker_id VARCHAR(255)
    )""",
    "CREATE INDEX IF NOT EXISTS idx_crawl_tasks_status ON crawl_tasks(status)",
    "CREATE INDEX IF NOT EXISTS idx_crawl_tasks_session ON crawl_tasks(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_detection_events_timestamp ON detection_events(timestamp)",
)

_PENDING_TASKS_QUERY = """SELECT id, session_id, url, method, headers, priority, max_depth,
    created_at, scheduled_at, status
    FROM crawl_tasks
    WHERE status = 'pending'
    ORDER BY priority DESC, created_at ASC
    LIMIT %s"""

_INSERT_SESSION_QUERY = """INSERT INTO crawl_sessions
    (id, name, description, start_urls, rules, status, created_at, stats)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)"""

_UPDATE_STATS_QUERY = "UPDATE crawl_sessions SET stats = %s WHERE id = %s"

_SESSIONS_QUERY = """SELECT id, name, description, start_urls, rules, status,
    created_at, started_at, completed_at, stats
    FROM crawl_sessions ORDER BY created_at DESC"""


class StorageError(Exception):
    """Raised when a storage backend fails."""


class Storage(ABC):
    """What the crawler needs from its persistence layer."""

    @abstractmethod
    def store_crawl_result(self, result: CrawlResult) -> None: ...

    @abstractmethod
    def get_pending_tasks(self, limit: int) -> list[CrawlTask]: ...

    @abstractmethod
    def create_crawl_session(self, session: CrawlSession) -> None: ...

    @abstractmethod
    def update_session_stats(self, session_id: str, stats: SessionStats) -> None: ...

    @abstractmethod
    def get_crawl_sessions(self) -> list[CrawlSession]: ...

    @abstractmethod
    def get_crawl_results(self, session_id: str, limit: int) -> list[CrawlResult]: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def postgres_dsn(config: PostgreSQLConfig) -> str:
    """The libpq connection string for ``config``."""
    return (
        f"host={config.host} port={config.port} user={config.username} "
        f"password={config.password} dbname={config.database} sslmode=disable"
    )


def _json_value(value: Any) -> Any:
    """Decode a JSON column; undecodable or empty values give None."""
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8", errors="replace")
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return None


def _array_literal(items: Sequence[str]) -> str:
    return "{" + ",".join(items) + "}"


def _parse_array(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    text = str(value)
    if text.startswith("{") and text.endswith("}"):
        inner = text[1:-1]
        return inner.split(",") if inner else []
    return [text] if text else []


class PostgreSQLStorage:
    """Sessions and tasks kept in PostgreSQL through a DB-API connection."""

    def __init__(self, connection: Any) -> None:
        self.connection = connection

    def _rollback(self) -> None:
        with suppress(Exception):
            self.connection.rollback()

    def _write(self, message: str, statements: Sequence[tuple[str, Sequence[Any]]]) -> None:
        try:
            with closing(self.connection.cursor()) as cursor:
                for query, params in statements:
                    cursor.execute(query, tuple(params))
            self.connection.commit()
        except Exception as exc:
            self._rollback()
            raise StorageError(f"{message}: {exc}") from exc

    def _fetch(self, message: str, query: str, params: Sequence[Any] = ()) -> list[Sequence[Any]]:
        try:
            with closing(self.connection.cursor()) as cursor:
                cursor.execute(query, tuple(params))
                return list(cursor.fetchall())
        except Exception as exc:
            self._rollback()
            raise StorageError(f"{message}: {exc}") from exc

    def create_tables(self) -> None:
        """Create the tables and indexes if they do not exist."""
        self._write("failed to execute query", [(query, ()) for query in SCHEMA])

    def get_pending_tasks(self, limit: int) -> list[CrawlTask]:
        """Pending tasks, highest priority first, oldest first within a priority."""
        rows = self._fetch("failed to fetch pending tasks", _PENDING_TASKS_QUERY, (limit,))
        return [self._task_from_row(row) for row in rows]

    @staticmethod
    def _task_from_row(row: Sequence[Any]) -> CrawlTask:
        (task_id, session_id, url, method, headers, priority, max_depth,
         created_at, scheduled_at, status) = row
        created = created_at or datetime.now(timezone.utc)
        decoded = _json_value(headers)
        return CrawlTask(
            id=task_id,
            session_id=session_id or "",
            url=url,
            method=method or "GET",
            headers=dict(decoded) if isinstance(decoded, dict) else {},
            priority=priority or 0,
            max_depth=max_depth or 0,
            created_at=created,
            scheduled_at=scheduled_at or created,
            status=status or "pending",
        )

    def create_crawl_session(self, session: CrawlSession) -> None:
        params = (
            session.id,
            session.name,
            session.description,
            _array_literal(session.start_urls),
            json.dumps(session.rules.to_dict()),
            session.status,
            session.created_at,
            json.dumps(session.stats.to_dict()),
        )
        self._write("failed to create crawl session", [(_INSERT_SESSION_QUERY, params)])

    def update_session_stats(self, session_id: str, stats: SessionStats) -> None:
        params = (json.dumps(stats.to_dict()), session_id)
        self._write("failed to update session stats", [(_UPDATE_STATS_QUERY, params)])

    def get_crawl_sessions(self) -> list[CrawlSession]:
        """All sessions, newest first."""
        rows = self._fetch("failed to fetch crawl sessions", _SESSIONS_QUERY)
        return [self._session_from_row(row) for row in rows]

    @staticmethod
    def _session_from_row(row: Sequence[Any]) -> CrawlSession:
        (session_id, name, description, start_urls, rules, status,
         created_at, started_at, completed_at, stats) = row
        return CrawlSession(
            id=session_id,
            name=name,
            description=description or "",
            start_urls=_parse_array(start_urls),
            rules=CrawlRules.from_dict(_json_value(rules)),
            status=status or "",
            created_at=created_at or datetime.now(timezone.utc),
            started_at=started_at,
            completed_at=completed_at,
            stats=SessionStats.from_dict(_json_value(stats)),
        )

    def close(self) -> None:
        self.connection.close()


class MongoDBStorage:
    """Crawl results kept as documents in MongoDB."""

    def __init__(self, database: Any, client: Any = None) -> None:
        self.database = database
        self.client = client

    @classmethod
    def connect(cls, config: MongoDBConfig) -> MongoDBStorage:
        try:
            client = pymongo.MongoClient(config.uri)
        except pymongo.errors.PyMongoError as exc:
            raise StorageError(str(exc)) from exc
        return cls(client[config.database], client)

    @property
    def _results(self) -> Any:
        return self.database[RESULTS_COLLECTION]

    def store_crawl_result(self, result: CrawlResult) -> None:
        try:
            self._results.insert_one(result.to_dict())
        except pymongo.errors.PyMongoError as exc:
            raise StorageError(f"failed to store crawl result: {exc}") from exc

    def get_crawl_results(self, session_id: str, limit: int) -> list[CrawlResult]:
        """Results newest first, filtered by session when one is given."""
        query: dict[str, Any] = {"session_id": session_id} if session_id else {}
        try:
            cursor = self._results.find(query).sort("start_time", pymongo.DESCENDING).limit(limit)
            return [CrawlResult.from_dict(document) for document in cursor]
        except (pymongo.errors.PyMongoError, ValueError, TypeError) as exc:
            raise StorageError(f"failed to fetch crawl results: {exc}") from exc

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


class RedisStorage:
    """A short-lived cache of crawl results in Redis."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def connect(cls, config: RedisConfig) -> RedisStorage:
        client = redis.Redis(
            host=config.host,
            port=config.port,
            password=config.password or None,
            db=config.db,
        )
        try:
            client.ping()
        except redis.RedisError as exc:
            with suppress(Exception):
                client.close()
            raise StorageError(str(exc)) from exc
        return cls(client)

    def cache_crawl_result(self, result: CrawlResult) -> None:
        key = f"result:{result.task_id}"
        try:
            self.client.set(key, json.dumps(result.to_dict()), ex=RESULT_CACHE_TTL)
        except redis.RedisError as exc:
            raise StorageError(f"failed to cache crawl result: {exc}") from exc

    def close(self) -> None:
        self.client.close()


class MultiStorage(Storage):
    """Routes each kind of data to the backend that keeps it."""

    def __init__(
        self,
        postgres: PostgreSQLStorage | None,
        mongodb: MongoDBStorage | None,
        redis: RedisStorage | None,
    ) -> None:
        self.postgres = postgres
        self.mongodb = mongodb
        self.redis = redis

    def store_crawl_result(self, result: CrawlResult) -> None:
        """Keep the result in MongoDB, then cache it in Redis."""
        self.mongodb.store_crawl_result(result)
        self.redis.cache_crawl_result(result)

    def get_pending_tasks(self, limit: int) -> list[CrawlTask]:
        return self.postgres.get_pending_tasks(limit)

    def create_crawl_session(self, session: CrawlSession) -> None:
        self.postgres.create_crawl_session(session)

    def update_session_stats(self, session_id: str, stats: SessionStats) -> None:
        self.postgres.update_session_stats(session_id, stats)

    def get_crawl_sessions(self) -> list[CrawlSession]:
        return self.postgres.get_crawl_sessions()

    def get_crawl_results(self, session_id: str, limit: int) -> list[CrawlResult]:
        return self.mongodb.get_crawl_results(session_id, limit)

    def close(self) -> None:
        """Close every backend; a failing one does not stop the others."""
        for backend in (self.postgres, self.mongodb, self.redis):
            if backend is not None:
                with suppress(Exception):
                    backend.close()


def create_multi_storage(
    config: StorageConfig, pg_connect: Callable[[str], Any]
) -> MultiStorage:
    """Connect all three backends; ``pg_connect`` opens a DB-API connection from a DSN."""
    try:
        postgres = PostgreSQLStorage(pg_connect(postgres_dsn(config.postgresql)))
    except Exception as exc:
        raise StorageError(f"failed to initialize PostgreSQL: {exc}") from exc
    try:
        postgres.create_tables()
    except StorageError as exc:
        with suppress(Exception):
            postgres.close()
        raise StorageError(f"failed to initialize PostgreSQL: {exc}") from exc

    try:
        mongodb = MongoDBStorage.connect(config.mongodb)
    except StorageError as exc:
        MultiStorage(postgres, None, None).close()
        raise StorageError(f"failed to initialize MongoDB: {exc}") from exc

    try:
        redis_storage = RedisStorage.connect(config.redis)
    except StorageError as exc:
        MultiStorage(postgres, mongodb, None).close()
        raise StorageError(f"failed to initialize Redis: {exc}") from exc

    return MultiStorage(postgres, mongodb, redis_storage)
"""Data records exchanged between the crawler, its storage and its API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _time_in(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        return datetime.fromisoformat(text)
    raise ValueError(f"not a timestamp: {value!r}")


def _get_time(data: Mapping[str, Any], key: str) -> datetime:
    value = data.get(key)
    return _now() if value is None else _time_in(value)


def _get_optional_time(data: Mapping[str, Any], key: str) -> datetime | None:
    value = data.get(key)
    return None if value is None else _time_in(value)


def _duration_out(duration: timedelta) -> int:
    """Durations travel as whole nanoseconds."""
    return (duration // timedelta(microseconds=1)) * 1000


def _duration_in(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return timedelta(microseconds=value // 1000)
    raise ValueError(f"not a duration: {value!r}")


@dataclass
class CrawlTask:
    """A single URL waiting to be fetched."""

    id: str
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    priority: int = 0
    max_depth: int = 0
    created_at: datetime = field(default_factory=_now)
    scheduled_at: datetime = field(default_factory=_now)
    status: str = "pending"
    session_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "priority": self.priority,
            "max_depth": self.max_depth,
            "created_at": self.created_at.isoformat(),
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status,
            "session_id": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrawlTask:
        return cls(
            id=data.get("id", ""),
            url=data.get("url", ""),
            method=data.get("method") or "GET",
            headers=dict(data.get("headers") or {}),
            priority=int(data.get("priority", 0)),
            max_depth=int(data.get("max_depth", 0)),
            created_at=_get_time(data, "created_at"),
            scheduled_at=_get_time(data, "scheduled_at"),
            status=data.get("status") or "pending",
            session_id=data.get("session_id", ""),
        )


@dataclass
class CrawlData:
    """What a fetch brought back from a page."""

    url: str
    status_code: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    content: str = ""
    links: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "status_code": self.status_code,
            "headers": dict(self.headers),
            "content": self.content,
            "links": list(self.links),
            "images": list(self.images),
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrawlData:
        return cls(
            url=data.get("url", ""),
            status_code=int(data.get("status_code", 0)),
            headers=dict(data.get("headers") or {}),
            content=data.get("content", ""),
            links=list(data.get("links") or []),
            images=list(data.get("images") or []),
            metadata=dict(data.get("metadata") or {}),
            timestamp=_get_time(data, "timestamp"),
        )


@dataclass
class CrawlResult:
    """The outcome of processing one task."""

    task_id: str
    url: str
    worker_id: str = ""
    success: bool = False
    data: CrawlData | None = None
    error: str = ""
    start_time: datetime = field(default_factory=_now)
    end_time: datetime = field(default_factory=_now)
    duration: timedelta = timedelta(0)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "task_id": self.task_id,
            "url": self.url,
            "worker_id": self.worker_id,
            "success": self.success,
        }
        if self.data is not None:
            out["data"] = self.data.to_dict()
        if self.error:
            out["error"] = self.error
        out["start_time"] = self.start_time.isoformat()
        out["end_time"] = self.end_time.isoformat()
        out["duration"] = _duration_out(self.duration)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrawlResult:
        payload = data.get("data")
        return cls(
            task_id=data.get("task_id", ""),
            url=data.get("url", ""),
            worker_id=data.get("worker_id", ""),
            success=bool(data.get("success", False)),
            data=None if payload is None else CrawlData.from_dict(payload),
            error=data.get("error") or "",
            start_time=_get_time(data, "start_time"),
            end_time=_get_time(data, "end_time"),
            duration=_duration_in(data.get("duration", 0)),
        )


@dataclass
class CrawlRules:
    """Limits and filters that apply to a crawl session."""

    max_depth: int = 0
    max_pages: int = 0
    allowed_domains: list[str] = field(default_factory=list)
    blocked_domains: list[str] = field(default_factory=list)
    url_patterns: list[str] = field(default_factory=list)
    respect_robots_txt: bool = False
    delay: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_depth": self.max_depth,
            "max_pages": self.max_pages,
            "allowed_domains": list(self.allowed_domains),
            "blocked_domains": list(self.blocked_domains),
            "url_patterns": list(self.url_patterns),
            "respect_robots_txt": self.respect_robots_txt,
            "delay": self.delay,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CrawlRules:
        data = data or {}
        return cls(
            max_depth=int(data.get("max_depth", 0)),
            max_pages=int(data.get("max_pages", 0)),
            allowed_domains=list(data.get("allowed_domains") or []),
            blocked_domains=list(data.get("blocked_domains") or []),
            url_patterns=list(data.get("url_patterns") or []),
            respect_robots_txt=bool(data.get("respect_robots_txt", False)),
            delay=int(data.get("delay", 0)),
        )


@dataclass
class SessionStats:
    """Progress counters of a crawl session."""

    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    pending_tasks: int = 0
    pages_per_minute: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "pending_tasks": self.pending_tasks,
            "pages_per_minute": self.pages_per_minute,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SessionStats:
        data = data or {}
        return cls(
            total_tasks=int(data.get("total_tasks", 0)),
            completed_tasks=int(data.get("completed_tasks", 0)),
            failed_tasks=int(data.get("failed_tasks", 0)),
            pending_tasks=int(data.get("pending_tasks", 0)),
            pages_per_minute=int(data.get("pages_per_minute", 0)),
        )


@dataclass
class CrawlSession:
    """A named crawl started from a set of URLs."""

    id: str
    name: str
    description: str = ""
    start_urls: list[str] = field(default_factory=list)
    rules: CrawlRules = field(default_factory=CrawlRules)
    status: str = ""
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stats: SessionStats = field(default_factory=SessionStats)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "start_urls": list(self.start_urls),
            "rules": self.rules.to_dict(),
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
        if self.started_at is not None:
            out["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            out["completed_at"] = self.completed_at.isoformat()
        out["stats"] = self.stats.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrawlSession:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            start_urls=list(data.get("start_urls") or []),
            rules=CrawlRules.from_dict(data.get("rules")),
            status=data.get("status", ""),
            created_at=_get_time(data, "created_at"),
            started_at=_get_optional_time(data, "started_at"),
            completed_at=_get_optional_time(data, "completed_at"),
            stats=SessionStats.from_dict(data.get("stats")),
        )


@dataclass
class ProxyInfo:
    """A stored description of an outbound proxy."""

    id: str
    host: str
    port: int
    username: str = ""
    password: str = ""
    type: str = ""
    country: str = ""
    provider: str = ""
    healthy: bool = True
    last_checked: datetime = field(default_factory=_now)
    fail_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "type": self.type,
            "country": self.country,
            "provider": self.provider,
            "healthy": self.healthy,
            "last_checked": self.last_checked.isoformat(),
            "fail_count": self.fail_count,
        }


@dataclass
class DetectionEvent:
    """A record that a site appeared to detect the crawler."""

    id: str
    url: str
    proxy_id: str = ""
    event_type: str = ""
    description: str = ""
    timestamp: datetime = field(default_factory=_now)
    worker_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "proxy_id": self.proxy_id,
            "event_type": self.event_type,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "worker_id": self.worker_id,
        }
"""Pools of outbound proxies with round-robin selection and health checking."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator
from urllib.parse import quote, urlsplit

import requests

from .config import ProxyConfig, ProxyPoolConfig

HEALTH_CHECK_URL = "http://httpbin.org/ip"
HEALTH_CHECK_TIMEOUT = 10.0
MAX_FAILURES = 5
DEFAULT_PROXY_PORT = 8080


class ProxyError(Exception):
    """Raised when no usable proxy can be provided."""


@dataclass(eq=False)
class Proxy:
    """One outbound proxy and its health record."""

    id: str
    host: str
    port: int = DEFAULT_PROXY_PORT
    username: str = ""
    password: str = ""
    type: str = ""
    country: str = ""
    provider: str = ""
    healthy: bool = True
    last_used: datetime | None = None
    fail_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def usable(self) -> bool:
        """Healthy and not failed too often."""
        return self.healthy and self.fail_count < MAX_FAILURES

    @property
    def url(self) -> str:
        credentials = ""
        if self.username:
            credentials = quote(self.username, safe="")
            if self.password:
                credentials += ":" + quote(self.password, safe="")
            credentials += "@"
        return f"http://{credentials}{self.host}:{self.port}"

    def mark_used(self) -> None:
        with self._lock:
            self.last_used = datetime.now(timezone.utc)

    def record_failure(self) -> None:
        with self._lock:
            self.healthy = False
            self.fail_count += 1

    def record_success(self) -> None:
        with self._lock:
            self.healthy = True
            self.fail_count = 0


@dataclass(eq=False)
class Pool:
    """A named group of proxies handed out in turn."""

    name: str
    type: str = ""
    proxies: list[Proxy] = field(default_factory=list)
    current: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_healthy_proxy(self) -> Proxy | None:
        """Return the next usable proxy in round-robin order, or None."""
        with self._lock:
            for _ in range(len(self.proxies)):
                proxy = self.proxies[self.current]
                self.current = (self.current + 1) % len(self.proxies)
                if proxy.usable:
                    return proxy
            return None

    @property
    def healthy_count(self) -> int:
        return sum(1 for proxy in self.proxies if proxy.healthy)


def _proxy_from_endpoint(config: ProxyPoolConfig, index: int, endpoint: str) -> Proxy:
    text = endpoint.strip()
    parts = urlsplit(text if "://" in text else f"http://{text}")
    try:
        port = parts.port
    except ValueError as exc:
        raise ProxyError(f"bad endpoint {endpoint!r}: {exc}") from exc
    if not parts.hostname:
        raise ProxyError(f"bad endpoint {endpoint!r}: no host")
    return Proxy(
        id=f"{config.name}-{index}",
        host=parts.hostname,
        port=DEFAULT_PROXY_PORT if port is None else port,
        username=parts.username or "",
        password=parts.password or "",
        type=config.type,
        provider=config.name,
        healthy=True,
    )


def _create_pool(config: ProxyPoolConfig) -> Pool:
    proxies = [
        _proxy_from_endpoint(config, index, endpoint)
        for index, endpoint in enumerate(config.endpoints)
    ]
    return Pool(name=config.name, type=config.type, proxies=proxies)


class HealthChecker:
    """Periodically probes every proxy of a manager through a test URL."""

    def __init__(
        self,
        manager: ProxyManager,
        interval: float,
        test_url: str = HEALTH_CHECK_URL,
        timeout: float = HEALTH_CHECK_TIMEOUT,
    ) -> None:
        self.manager = manager
        self.interval = interval
        self.test_url = test_url
        self.timeout = timeout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def check_proxy(self, proxy: Proxy) -> None:
        """Fetch the test URL through ``proxy`` and record the outcome."""
        proxies = {"http": proxy.url, "https": proxy.url} if proxy.host else None
        try:
            response = requests.get(self.test_url, proxies=proxies, timeout=self.timeout)
        except requests.RequestException:
            proxy.record_failure()
            return
        response.close()
        proxy.record_success()

    def check_all(self) -> None:
        """Check every proxy of every pool concurrently."""
        proxies = list(self.manager._iter_proxies())
        if not proxies:
            return
        with ThreadPoolExecutor(max_workers=min(32, len(proxies))) as executor:
            list(executor.map(self.check_proxy, proxies))

    def start(self) -> None:
        """Run checks in a background thread every ``interval`` seconds."""
        if self.interval <= 0:
            raise ValueError("health check interval must be positive")
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="proxy-health", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.check_all()


class ProxyManager:
    """Holds the configured proxy pools and hands out proxies for requests."""

    def __init__(self, config: ProxyConfig) -> None:
        self.config = config
        self._lock = threading.RLock()
        self._pools: dict[str, Pool] = {}
        for pool_config in config.pools:
            try:
                pool = _create_pool(pool_config)
            except ProxyError as exc:
                raise ProxyError(f"failed to create pool {pool_config.name}: {exc}") from exc
            self._pools[pool_config.name] = pool
        self.health_checker = HealthChecker(self, config.health_check_interval)

    @property
    def pools(self) -> dict[str, Pool]:
        with self._lock:
            return dict(self._pools)

    def _iter_proxies(self) -> Iterator[Proxy]:
        for pool in self.pools.values():
            yield from list(pool.proxies)

    def _select_optimal_pool(self, target_url: str) -> Pool | None:
        return next(iter(self._pools.values()), None)

    def get_proxy(self, target_url: str) -> Proxy | None:
        """Return a proxy for ``target_url``; None when proxying is disabled."""
        if not self.config.enabled:
            return None
        with self._lock:
            pool = self._select_optimal_pool(target_url)
        if pool is None:
            raise ProxyError("no proxy pools available")
        proxy = pool.get_healthy_proxy()
        if proxy is None:
            raise ProxyError("no healthy proxies available")
        proxy.mark_used()
        return proxy

    def start_health_checks(self) -> None:
        self.health_checker.start()

    def close(self) -> None:
        self.health_checker.stop()

    def stats(self) -> dict[str, dict[str, Any]]:
        """Per pool: total proxies, healthy proxies and pool type."""
        with self._lock:
            return {
                name: {"total": len(pool.proxies), "healthy": pool.healthy_count, "type": pool.type}
                for name, pool in self._pools.items()
            }
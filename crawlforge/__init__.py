"""Web crawling service: worker engine, proxy pools, browser profiles, storage and a Flask API."""

__version__ = "1.0.0"
import random
from unittest import mock

import requests

from crawlforge.config import DEFAULT_USER_AGENT, StealthConfig
from crawlforge.proxy import Proxy
from crawlforge.stealth import (
    FONTS,
    PLATFORMS,
    TIMEZONES,
    USER_AGENTS,
    VIEWPORTS,
    WEBGL_RENDERERS,
    WEBGL_VENDORS,
    Profile,
    StealthEngine,
)


def enabled_engine(rotation=True, seed=None):
    config = StealthConfig(enabled=True, user_agent_rotation=rotation)
    rng = random.Random(seed) if seed is not None else None
    return StealthEngine(config, rng=rng)


def test_disabled_engine_returns_empty_profile():
    profile = StealthEngine(StealthConfig(enabled=False)).generate_profile("http://example.com")
    assert profile == Profile()


def test_profile_fields_drawn_from_known_values():
    engine = enabled_engine()
    for _ in range(20):
        profile = engine.generate_profile("http://example.com")
        assert profile.user_agent in USER_AGENTS
        assert profile.viewport in VIEWPORTS
        assert 0.0 <= profile.canvas.noise < 0.1
        assert profile.canvas.text_value.startswith("Crawler")
        assert 0 <= int(profile.canvas.text_value[len("Crawler"):]) < 1000
        assert profile.webgl.vendor in WEBGL_VENDORS
        assert profile.webgl.renderer in WEBGL_RENDERERS
        assert profile.fonts == list(FONTS)
        assert profile.timezone in TIMEZONES
        assert profile.platform in PLATFORMS
        assert profile.language == "en-US,en;q=0.9"


def test_without_rotation_uses_default_agent():
    profile = enabled_engine(rotation=False).generate_profile("http://example.com")
    assert profile.user_agent == DEFAULT_USER_AGENT


def test_same_seed_gives_same_profile():
    first = enabled_engine(seed=7).generate_profile("http://example.com")
    second = enabled_engine(seed=7).generate_profile("http://example.com")
    assert first == second


def test_client_uses_proxy_and_profile():
    engine = enabled_engine(seed=1)
    profile = engine.generate_profile("http://example.com")
    proxy = Proxy(id="p", host="10.0.0.5", port=3128)
    client = engine.create_http_client(proxy, profile)
    assert client.proxies == {"http": proxy.url, "https": proxy.url}
    assert client.headers["User-Agent"] == profile.user_agent
    assert client.headers["Accept-Language"] == profile.language


def test_client_without_proxy_has_no_proxies():
    client = StealthEngine().create_http_client(None, Profile())
    assert client.proxies == {}


def test_client_applies_default_timeout():
    client = StealthEngine().create_http_client(None, None)
    with mock.patch.object(requests.Session, "request") as request:
        response = client.get("http://example.com")
    assert response is request.return_value
    assert request.call_args.kwargs["timeout"] == 30.0


def test_client_keeps_explicit_timeout():
    client = StealthEngine().create_http_client(None, None)
    with mock.patch.object(requests.Session, "request") as request:
        response = client.get("http://example.com", timeout=5)
    assert response is request.return_value
    assert request.call_args.kwargs["timeout"] == 5
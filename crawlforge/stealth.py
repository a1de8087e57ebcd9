"""Randomised browser profiles and HTTP clients that present them."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

import requests

from .config import DEFAULT_USER_AGENT, StealthConfig
from .proxy import Proxy

CLIENT_TIMEOUT = 30.0
DEFAULT_LANGUAGE = "en-US,en;q=0.9"

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
)


@dataclass(frozen=True)
class Viewport:
    width: int = 0
    height: int = 0


@dataclass
class CanvasFingerprint:
    noise: float = 0.0
    text_value: str = ""


@dataclass
class WebGLFingerprint:
    vendor: str = ""
    renderer: str = ""


@dataclass
class Profile:
    """The browser identity presented for one crawl."""

    user_agent: str = ""
    viewport: Viewport = field(default_factory=Viewport)
    canvas: CanvasFingerprint = field(default_factory=CanvasFingerprint)
    webgl: WebGLFingerprint = field(default_factory=WebGLFingerprint)
    fonts: list[str] = field(default_factory=list)
    timezone: str = ""
    language: str = ""
    platform: str = ""


VIEWPORTS = (
    Viewport(1920, 1080),
    Viewport(1366, 768),
    Viewport(1440, 900),
    Viewport(1536, 864),
    Viewport(1280, 720),
)
WEBGL_VENDORS = ("Google Inc.", "Mozilla", "Apple Inc.")
WEBGL_RENDERERS = (
    "ANGLE (Intel(R) HD Graphics 620 Direct3D11 vs_5_0 ps_5_0)",
    "WebKit WebGL",
    "Mozilla -- GPU",
)
FONTS = (
    "Arial", "Helvetica", "Times New Roman", "Courier New",
    "Verdana", "Georgia", "Palatino", "Garamond",
)
TIMEZONES = (
    "America/New_York", "America/Los_Angeles", "Europe/London",
    "Europe/Paris", "Asia/Tokyo", "Asia/Shanghai",
)
PLATFORMS = ("Win32", "MacIntel", "Linux x86_64")


class _TimedSession(requests.Session):
    """A session that applies a default timeout to every request."""

    def __init__(self, timeout: float) -> None:
        super().__init__()
        self.timeout = timeout

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, **kwargs)


class StealthEngine:
    """Produces browser profiles and clients configured with them."""

    def __init__(self, config: StealthConfig | None = None, rng: random.Random | None = None) -> None:
        self.config = config or StealthConfig()
        self.user_agents = list(USER_AGENTS)
        self._rng = rng or random.Random()

    def generate_profile(self, url: str) -> Profile:
        """A fresh random profile, or an empty one when stealth is off."""
        if not self.config.enabled:
            return Profile()
        return Profile(
            user_agent=self._select_user_agent(),
            viewport=self._rng.choice(VIEWPORTS),
            canvas=CanvasFingerprint(
                noise=self._rng.random() * 0.1,
                text_value=f"Crawler{self._rng.randrange(1000)}",
            ),
            webgl=WebGLFingerprint(
                vendor=self._rng.choice(WEBGL_VENDORS),
                renderer=self._rng.choice(WEBGL_RENDERERS),
            ),
            fonts=list(FONTS),
            timezone=self._rng.choice(TIMEZONES),
            language=DEFAULT_LANGUAGE,
            platform=self._rng.choice(PLATFORMS),
        )

    def create_http_client(self, proxy: Proxy | None, profile: Profile | None) -> requests.Session:
        """A session routed through ``proxy`` and presenting ``profile``."""
        session = _TimedSession(CLIENT_TIMEOUT)
        if proxy is not None:
            session.proxies = {"http": proxy.url, "https": proxy.url}
        if profile is not None:
            if profile.user_agent:
                session.headers["User-Agent"] = profile.user_agent
            if profile.language:
                session.headers["Accept-Language"] = profile.language
        return session

    def _select_user_agent(self) -> str:
        if not self.config.user_agent_rotation or not self.user_agents:
            return DEFAULT_USER_AGENT
        return self._rng.choice(self.user_agents)
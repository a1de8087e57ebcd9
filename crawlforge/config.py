"""Application configuration, loaded from a YAML file over built-in defaults."""

from dataclasses import asdict, dataclass, field, fields, is_dataclass
from typing import Any, Mapping, Optional, get_args, get_origin

import yaml

DEFAULT_USER_AGENT = "Crawlforge/1.0"


class ConfigError(ValueError):
    """Raised when a configuration document cannot be applied."""


@dataclass
class ServerConfig:
    port: str = "8080"
    host: str = "0.0.0.0"


@dataclass
class CrawlerConfig:
    max_workers: int = 1000
    queue_size: int = 10000
    rate_limit: int = 1000
    user_agent: str = DEFAULT_USER_AGENT
    timeout: int = 30


@dataclass
class PostgreSQLConfig:
    host: str = ""
    port: int = 0
    database: str = ""
    username: str = ""
    password: str = ""


@dataclass
class MongoDBConfig:
    uri: str = ""
    database: str = ""


@dataclass
class RedisConfig:
    host: str = ""
    port: int = 0
    password: str = ""
    db: int = 0


@dataclass
class StorageConfig:
    postgresql: PostgreSQLConfig = field(default_factory=PostgreSQLConfig)
    mongodb: MongoDBConfig = field(default_factory=MongoDBConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)


@dataclass
class ProxyPoolConfig:
    name: str = ""
    type: str = ""
    providers: list[str] = field(default_factory=list)
    endpoints: list[str] = field(default_factory=list)


@dataclass
class ProxyConfig:
    enabled: bool = False
    pools: list[ProxyPoolConfig] = field(default_factory=list)
    rotation_interval: int = 0
    health_check_interval: int = 0


@dataclass
class StealthConfig:
    enabled: bool = False
    fingerprint_rotation: bool = False
    canvas_noise: bool = False
    webgl_spoofing: bool = False
    user_agent_rotation: bool = False


def _to_str(value: Any, where: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigError(f"{where}: expected a scalar, got {type(value).__name__}")


def _to_int(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{where}: expected an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ConfigError(f"{where}: expected an integer, got {value!r}")


def _to_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{where}: expected a boolean, got {value!r}")


_ZERO = {str: "", int: 0, bool: False}
_CONVERT = {str: _to_str, int: _to_int, bool: _to_bool}


def _coerce(hint: Any, value: Any, current: Any, where: str) -> Any:
    if is_dataclass(hint):
        return _merge(current, value, where)
    if get_origin(hint) is list:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ConfigError(f"{where}: expected a list")
        (item_hint,) = get_args(hint)
        if is_dataclass(item_hint):
            return [_merge(item_hint(), item, f"{where}[{n}]") for n, item in enumerate(value)]
        return [_coerce(item_hint, item, None, f"{where}[{n}]") for n, item in enumerate(value)]
    if value is None:
        return _ZERO[hint]
    return _CONVERT[hint](value, where)


def _merge(target: Any, data: Any, where: str) -> Any:
    """Overlay the keys present in ``data`` onto ``target``; absent keys keep their values."""
    if data is None:
        return target
    if not isinstance(data, Mapping):
        raise ConfigError(f"{where}: expected a mapping")
    for f in fields(target):
        if f.name in data:
            value = _coerce(f.type, data[f.name], getattr(target, f.name), f"{where}.{f.name}")
            setattr(target, f.name, value)
    return target


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    stealth: StealthConfig = field(default_factory=StealthConfig)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Config":
        """Build a configuration from defaults overridden by ``data``."""
        return _merge(cls(), data, "config")

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: str) -> Config:
    """Load the YAML file at ``path``; a missing file yields the defaults."""
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except FileNotFoundError:
        return Config()
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    return Config.from_dict(data)
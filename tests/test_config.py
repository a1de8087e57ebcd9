import pytest

from crawlforge.config import (
    Config,
    ConfigError,
    ProxyPoolConfig,
    load_config,
)


def test_defaults():
    config = Config()
    assert config.server.port == "8080"
    assert config.server.host == "0.0.0.0"
    assert config.crawler.max_workers == 1000
    assert config.crawler.queue_size == 10000
    assert config.crawler.rate_limit == 1000
    assert config.crawler.timeout == 30
    assert config.proxy.enabled is False


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml")) == Config()


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == Config()


def test_partial_override_keeps_other_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 9090\ncrawler:\n  max_workers: 4\n")
    config = load_config(str(path))
    assert config.server.port == "9090"
    assert config.server.host == "0.0.0.0"
    assert config.crawler.max_workers == 4
    assert config.crawler.queue_size == 10000


def test_full_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "storage:\n"
        "  redis:\n"
        "    host: localhost\n"
        "    port: 6379\n"
        "    db: 2\n"
        "proxy:\n"
        "  enabled: true\n"
        "  health_check_interval: 60\n"
        "  pools:\n"
        "    - name: residential\n"
        "      type: http\n"
        "      endpoints: [a, b]\n"
        "stealth:\n"
        "  enabled: true\n"
        "  user_agent_rotation: true\n"
    )
    config = load_config(str(path))
    assert config.storage.redis.host == "localhost"
    assert config.storage.redis.port == 6379
    assert config.storage.redis.db == 2
    assert config.proxy.enabled is True
    assert config.proxy.health_check_interval == 60
    assert config.proxy.pools == [
        ProxyPoolConfig(name="residential", type="http", endpoints=["a", "b"])
    ]
    assert config.stealth.user_agent_rotation is True
    assert config.stealth.canvas_noise is False


def test_unknown_keys_ignored():
    config = Config.from_dict({"extra": 1, "server": {"colour": "red"}})
    assert config == Config()


def test_wrong_type_raises():
    with pytest.raises(ConfigError):
        Config.from_dict({"crawler": {"max_workers": "many"}})
    with pytest.raises(ConfigError):
        Config.from_dict({"stealth": {"enabled": "yes please"}})
    with pytest.raises(ConfigError):
        Config.from_dict({"server": ["not", "a", "mapping"]})


def test_non_mapping_document_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_round_trip_through_dict():
    config = Config.from_dict(
        {
            "server": {"port": "1234"},
            "proxy": {"pools": [{"name": "p", "providers": ["x"]}]},
        }
    )
    again = Config.from_dict(config.to_dict())
    assert again == config
    assert again.to_dict()["proxy"]["pools"][0]["providers"] == ["x"]
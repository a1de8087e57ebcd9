import pytest

from crawlforge.cli import build_parser, main


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.config == "config/config.yaml"
    assert args.log_level == "info"


def test_parser_accepts_options():
    args = build_parser().parse_args(["--config", "other.yaml", "--log-level", "debug"])
    assert (args.config, args.log_level) == ("other.yaml", "debug")


def test_parser_rejects_unknown_level():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--log-level", "loud"])


def test_main_reports_invalid_yaml(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("server: [unclosed\n")
    assert main(["--config", str(path)]) == 1
    assert "Failed to load config" in capsys.readouterr().err


def test_main_reports_wrong_types(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("crawler:\n  max_workers: plenty\n")
    assert main(["--config", str(path)]) == 1
    assert "Failed to load config" in capsys.readouterr().err


def test_main_reports_bad_port(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: http\n")
    assert main(["--config", str(path)]) == 1
    assert "invalid server port" in capsys.readouterr().err


def test_main_stops_when_storage_unavailable(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.yaml")]) == 1
    err = capsys.readouterr().err
    assert "Failed to initialize storage" in err
    assert "PostgreSQL" in err
import pytest
import typer
from typer.testing import CliRunner

import tunnel_cli as cli
from bytetunnel.relay.window import Trigger

runner = CliRunner()


def test_build_config_overrides(tmp_path):
    cfg = cli.build_config(
        config_path=None,
        listen_host="127.0.0.1",
        listen_port=9000,
        upstream_host="dav.local",
        upstream_port=80,
        connect_timeout=2.5,
        capture_dir=tmp_path,
        echo="upstream",
        correct="client",
        preset="webdav",
    )

    assert cfg.listen_port == 9000
    assert cfg.upstream_host == "dav.local"
    assert cfg.connect_timeout == 2.5
    assert cfg.capture.directory == tmp_path
    assert cfg.echo == ("upstream_to_client",)
    assert Trigger(b"\nREPORT ", ord("/")) in cfg.triggers_for("client_to_upstream")
    assert cfg.triggers_for("upstream_to_client") == []


def test_build_config_from_file(tmp_path):
    path = tmp_path / "t.json"
    path.write_text('{"upstream": {"host": "db", "port": 27018}}', encoding="utf-8")
    cfg = cli.build_config(path, None, None, None, None, None, None, "none", "none", "webdav")
    assert cfg.upstream_host == "db"
    assert cfg.upstream_port == 27018
    assert cfg.listen_port == 1234


def test_build_config_rejects_bad_selector():
    with pytest.raises(ValueError):
        cli.build_config(None, None, None, None, None, None, None, "sideways", "none", "webdav")


def test_start_reports_config_errors():
    result = runner.invoke(cli.app, ["start", "--correct", "client", "--preset", "nope"])
    assert result.exit_code == 1


def test_info_command():
    result = runner.invoke(cli.app, ["info"])
    assert result.exit_code == 0
    assert isinstance(cli.app, typer.Typer)

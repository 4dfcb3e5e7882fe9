"""Tests for the command-line front end."""

import pytest

from liquidcache_admin.client.base import Ack, TransportNetworkError
from liquidcache_admin.console import main as cli
from liquidcache_admin.console.app import AdminConsole


@pytest.fixture
def isolated(temp_data_dir, monkeypatch):
    """Keep config discovery away from real config files."""
    monkeypatch.delenv("LIQUIDCACHE_ADMIN_CONFIG", raising=False)
    monkeypatch.setenv("HOME", str(temp_data_dir))
    monkeypatch.setenv("LIQUIDCACHE_ADMIN_DATA_DIR", str(temp_data_dir / "data"))
    monkeypatch.chdir(temp_data_dir)
    return temp_data_dir


@pytest.fixture
def with_transport(transport, monkeypatch):
    monkeypatch.setattr(cli, "AdminConsole", lambda config: AdminConsole(config, client=transport))
    return transport


class TestBuildConfig:
    def test_overrides(self, isolated):
        args = cli.parse_args([
            "--host", "cache.internal:9000",
            "--timeout", "3",
            "--insecure",
            "export",
        ])
        config = cli.build_config(args)
        assert config.service.base_url == "http://cache.internal:9000"
        assert config.poll.request_timeout == 3.0
        assert config.service.verify is False

    def test_defaults_untouched(self, isolated):
        config = cli.build_config(cli.parse_args(["watch"]))
        assert config.service.base_url == "http://localhost:53703"
        assert config.service.verify is True

    def test_secure_flag(self, isolated):
        config = cli.build_config(cli.parse_args(["--secure", "watch"]))
        assert config.service.verify is True

    def test_command_requires_known_kind(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["command", "purge"])


class TestMain:
    def test_watch_prints_initial_view(self, isolated, with_transport, capsys):
        assert cli.main(["watch", "--duration", "0.1"]) == 0
        assert "[overview] LOADING" in capsys.readouterr().out

    def test_watch_unknown_stream(self, isolated, with_transport, capsys):
        assert cli.main(["watch", "--stream", "bogus", "--duration", "0"]) == 2
        assert "Unknown stream name" in capsys.readouterr().err

    def test_export(self, isolated, with_transport, sample_overview, capsys):
        with_transport.script("/overview", sample_overview)
        out_dir = isolated / "out"
        assert cli.main(["export", "--output-dir", str(out_dir)]) == 0
        printed = capsys.readouterr().out.strip().splitlines()[-1]
        assert printed.startswith(str(out_dir))

    def test_export_failure(self, isolated, with_transport, capsys):
        with_transport.script("/overview", TransportNetworkError("/overview", "refused"))
        assert cli.main(["export"]) == 1
        assert "refused" in capsys.readouterr().err

    def test_command_accepted(self, isolated, with_transport, capsys):
        with_transport.command_replies = [Ack(True, "evicting n1")]
        assert cli.main(["command", "evict", "--target", "n1"]) == 0
        assert "[success] evicting n1" in capsys.readouterr().out
        assert with_transport.commands[0].target == "n1"

    def test_command_path_for_dumps(self, isolated, with_transport, capsys):
        with_transport.command_replies = [Ack(True, "Cache stats written to /data/stats")]
        assert cli.main(["command", "cache_stats", "--path", "/data/stats"]) == 0
        assert "[success] Cache stats written" in capsys.readouterr().out
        assert with_transport.commands[0].to_params() == {"path": "/data/stats"}

    def test_watch_system_info(self, isolated, with_transport, capsys):
        assert cli.main(["watch", "--stream", "system-info", "--duration", "0.1"]) == 0
        assert "[system-info] LOADING" in capsys.readouterr().out

    def test_command_rejected(self, isolated, with_transport, capsys):
        with_transport.command_replies = [Ack(False, "busy")]
        assert cli.main(["command", "refresh"]) == 1
        assert "[error]" in capsys.readouterr().out

    def test_invalid_config(self, isolated, with_transport, capsys):
        config_path = isolated / "bad.yaml"
        config_path.write_text("poll:\n  backoff_ceiling: 0\n")
        assert cli.main(["--config", str(config_path), "watch"]) == 2
        assert "backoff_ceiling" in capsys.readouterr().err

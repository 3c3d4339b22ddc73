"""End-to-end tests for the swcache CLI.

Every command runs against an on-disk namespace directory under ``tmp_path``
and the in-process :class:`FakeSite` network, so no real HTTP traffic or
user configuration is involved.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from conftest import INDEX_HTML, ORIGIN, FakeSite
from swcache.app import app, main
from swcache.cache.store import DiskCacheStorage
from swcache.client.fetcher import NetworkFetcher
from swcache.exceptions import EngineStateError, InstallError, InvalidUsageError
from swcache.exit_codes import EXIT_ENGINE_STATE, EXIT_GENERIC_FAILURE

PLAIN = ["--plain", "--no-color"]

MANIFEST = ["/", "/index.html", "/manifest.json", "/icons/icon-192.png"]


@pytest.fixture
def workspace(isolated_config: Path, site: FakeSite, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Route engine commands to ``<tmp>/namespaces`` and the fake site."""
    root = isolated_config / "namespaces"

    def _runtime_parts(config):
        return DiskCacheStorage(root), NetworkFetcher(config, transport=site.transport())

    monkeypatch.setattr("swcache.commands.engine._runtime_parts", _runtime_parts)
    monkeypatch.setenv("SWCACHE_ORIGIN", ORIGIN)
    (isolated_config / "precache.json").write_text(json.dumps(MANIFEST), encoding="utf-8")
    return isolated_config


def _deploy(cli_runner, workspace: Path, version: str = "v1"):
    manifest = str(workspace / "precache.json")
    return cli_runner.invoke(app, [*PLAIN, "deploy", "-m", manifest, "-t", version])


def _namespaces(workspace: Path) -> list[str]:
    root = workspace / "namespaces"
    if not root.is_dir():
        return []
    return sorted(p.name for p in root.iterdir())


class TestDeploy:
    def test_first_deploy(self, cli_runner, workspace: Path) -> None:
        result = _deploy(cli_runner, workspace)

        assert result.exit_code == 0, result.output
        assert "Deploying version v1 (4 assets)" in result.output
        assert "Version v1 active" in result.output
        assert _namespaces(workspace) == ["portfolio-dynamic-v1", "portfolio-static-v1"]

    def test_new_version_evicts_old(self, cli_runner, workspace: Path) -> None:
        _deploy(cli_runner, workspace, "v1")
        result = _deploy(cli_runner, workspace, "v2")

        assert result.exit_code == 0, result.output
        assert "Evicted portfolio-static-v1" in result.output
        assert "Evicted portfolio-dynamic-v1" in result.output
        assert _namespaces(workspace) == ["portfolio-dynamic-v2", "portfolio-static-v2"]

    def test_failed_install_keeps_previous(
        self, cli_runner, workspace: Path, site: FakeSite
    ) -> None:
        _deploy(cli_runner, workspace, "v1")
        site.broken.add("/manifest.json")

        result = _deploy(cli_runner, workspace, "v2")

        assert result.exit_code != 0
        assert isinstance(result.exception, InstallError)
        assert _namespaces(workspace) == ["portfolio-dynamic-v1", "portfolio-static-v1"]

    def test_empty_manifest_warns(self, cli_runner, workspace: Path) -> None:
        (workspace / "precache.json").write_text("[]", encoding="utf-8")
        result = _deploy(cli_runner, workspace)
        assert result.exit_code == 0, result.output
        assert "Warning: Asset manifest is empty" in result.output


class TestFetch:
    def test_served_from_cache(self, cli_runner, workspace: Path, site: FakeSite) -> None:
        _deploy(cli_runner, workspace)
        calls_before = len(site.calls)

        result = cli_runner.invoke(app, [*PLAIN, "fetch", "/index.html"])

        assert result.exit_code == 0, result.output
        assert "HTTP 200 OK (cache)" in result.output
        assert INDEX_HTML in result.output
        assert len(site.calls) == calls_before

    def test_miss_goes_to_network_then_cache(self, cli_runner, workspace: Path) -> None:
        _deploy(cli_runner, workspace)

        first = cli_runner.invoke(app, [*PLAIN, "fetch", "/about.html"])
        second = cli_runner.invoke(app, [*PLAIN, "fetch", "/about.html", "--no-body"])

        assert "(network)" in first.output
        assert "<h1>About</h1>" in first.output
        assert "(cache)" in second.output
        assert "<h1>About</h1>" not in second.output

    def test_offline_navigation(self, cli_runner, workspace: Path, site: FakeSite) -> None:
        (workspace / "precache.json").write_text('["/index.html"]', encoding="utf-8")
        _deploy(cli_runner, workspace)
        site.offline = True

        result = cli_runner.invoke(app, [*PLAIN, "fetch", "/", "--navigate"])

        assert result.exit_code == 0, result.output
        assert "HTTP 200 OK (offline)" in result.output
        assert INDEX_HTML in result.output

    def test_offline_subresource(self, cli_runner, workspace: Path, site: FakeSite) -> None:
        _deploy(cli_runner, workspace)
        site.offline = True

        result = cli_runner.invoke(app, [*PLAIN, "fetch", "/assets/late.js"])

        assert "HTTP 408 Request Timeout (synthetic)" in result.output
        assert "Network error happened" in result.output

    def test_passthrough(self, cli_runner, workspace: Path, site: FakeSite) -> None:
        fonts = "https://fonts.googleapis.com/css2?family=Inter"
        site.add(fonts, "@font-face{}", content_type="text/css")
        _deploy(cli_runner, workspace)

        result = cli_runner.invoke(app, [*PLAIN, "fetch", fonts])

        assert "(passthrough)" in result.output

    def test_not_deployed(self, cli_runner, workspace: Path) -> None:
        result = cli_runner.invoke(app, [*PLAIN, "fetch", "/index.html"])
        assert isinstance(result.exception, EngineStateError)

    def test_relative_url_without_origin(
        self, cli_runner, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("SWCACHE_ORIGIN")
        result = cli_runner.invoke(app, [*PLAIN, "fetch", "/index.html"])
        assert isinstance(result.exception, InvalidUsageError)
        assert result.exception.exit_code == 2
        assert "no origin is configured" in str(result.exception)


class TestStatus:
    def test_no_namespaces(self, cli_runner, workspace: Path) -> None:
        result = cli_runner.invoke(app, [*PLAIN, "status"])
        assert result.exit_code == 0
        assert "No cache namespaces." in result.output

    def test_lists_current_namespaces(self, cli_runner, workspace: Path) -> None:
        _deploy(cli_runner, workspace)
        result = cli_runner.invoke(app, [*PLAIN, "status"])

        assert result.exit_code == 0, result.output
        assert "portfolio-dynamic-v1\t3\tyes" in result.output
        assert "portfolio-static-v1\t1\tyes" in result.output
        assert "stale" not in result.output

    def test_marks_stale_namespaces(
        self, cli_runner, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _deploy(cli_runner, workspace)
        monkeypatch.setenv("SWCACHE_VERSION", "v2")

        result = cli_runner.invoke(app, [*PLAIN, "status"])

        assert "portfolio-static-v1\t1\tno" in result.output
        assert "2 stale namespace(s)" in result.output

    def test_entries(self, cli_runner, workspace: Path) -> None:
        _deploy(cli_runner, workspace)
        result = cli_runner.invoke(app, [*PLAIN, "status", "--entries"])
        assert f"portfolio-static-v1\tGET {ORIGIN}/icons/icon-192.png" in result.output


class TestClear:
    def test_force_clear(self, cli_runner, workspace: Path) -> None:
        _deploy(cli_runner, workspace)
        result = cli_runner.invoke(app, [*PLAIN, "--force", "clear"])

        assert result.exit_code == 0, result.output
        assert "Cleared 2 namespace(s)." in result.output
        assert _namespaces(workspace) == []

    def test_declined_confirmation(self, cli_runner, workspace: Path) -> None:
        _deploy(cli_runner, workspace)
        result = cli_runner.invoke(app, [*PLAIN, "clear"], input="n\n")

        assert "Cancelled." in result.output
        assert len(_namespaces(workspace)) == 2


class TestConfigCommands:
    def test_show(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["--json", "config", "show"])
        assert result.exit_code == 0, result.output
        assert '"cache_prefix": "portfolio"' in result.output

    def test_set_scalar_and_list(self, cli_runner, isolated_config: Path) -> None:
        from swcache.config import load_global_config

        assert cli_runner.invoke(app, [*PLAIN, "config", "set", "engine.version", "v9"]).exit_code == 0
        result = cli_runner.invoke(
            app, [*PLAIN, "config", "set", "engine.precache", "/, /index.html"]
        )
        assert result.exit_code == 0, result.output
        assert cli_runner.invoke(app, [*PLAIN, "config", "set", "engine.max_retries", "2"]).exit_code == 0

        cfg = load_global_config()
        assert cfg.engine.version == "v9"
        assert cfg.engine.precache == ["/", "/index.html"]
        assert cfg.engine.max_retries == 2

    def test_set_origin_from_none(self, cli_runner, isolated_config: Path) -> None:
        from swcache.config import load_global_config

        result = cli_runner.invoke(
            app, [*PLAIN, "config", "set", "engine.origin", "https://portfolio.example/"]
        )
        assert result.exit_code == 0, result.output
        assert load_global_config().engine.origin == ORIGIN

    @pytest.mark.parametrize(
        "key, value",
        [
            ("engine.nope", "1"),
            ("nope.version", "1"),
            ("engine.layout", "sideways"),
            ("engine.timeout", "soon"),
            ("output.format", "fancy"),
        ],
    )
    def test_set_invalid(self, cli_runner, isolated_config: Path, key: str, value: str) -> None:
        result = cli_runner.invoke(app, [*PLAIN, "config", "set", key, value])
        assert result.exit_code == 2

    def test_configured_output_format(self, cli_runner, isolated_config: Path) -> None:
        cli_runner.invoke(app, [*PLAIN, "config", "set", "output.format", "json"])
        result = cli_runner.invoke(app, ["--no-color", "config", "show"])
        assert result.exit_code == 0, result.output
        assert '"format": "json"' in result.output

    def test_reset(self, cli_runner, isolated_config: Path) -> None:
        from swcache.config import load_global_config
        from swcache.models import GlobalConfig

        cli_runner.invoke(app, [*PLAIN, "config", "set", "engine.version", "v9"])
        result = cli_runner.invoke(app, [*PLAIN, "--force", "config", "reset"])

        assert result.exit_code == 0, result.output
        assert load_global_config() == GlobalConfig()


class TestEntryPoint:
    def test_version_flag(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("swcache ")

    def test_swcache_error_maps_to_exit_code(
        self, workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys
    ) -> None:
        monkeypatch.setattr("swcache.app._setup_signal_handlers", lambda: None)
        monkeypatch.setattr(sys, "argv", ["swcache", *PLAIN, "fetch", "/index.html"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == EXIT_ENGINE_STATE
        assert "Error: Version v1 is not deployed" in capsys.readouterr().err

    def test_unexpected_error_writes_crash_log(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch, capsys
    ) -> None:
        def _boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("swcache.app._setup_signal_handlers", lambda: None)
        monkeypatch.setattr("swcache.config.resolve_config", _boom)
        monkeypatch.setattr(sys, "argv", ["swcache", *PLAIN, "status"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == EXIT_GENERIC_FAILURE
        logs = list((isolated_config / "data" / "swcache" / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "RuntimeError: boom" in logs[0].read_text()
        assert "Unexpected error" in capsys.readouterr().err
